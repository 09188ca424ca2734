"""Collaborator interfaces and in-memory adapters."""

from .base import ENTITY_TYPES, EntityProvider, Upserter
from .memory import LocalEntityStore, StaticEntityProvider

__all__ = [
    "ENTITY_TYPES",
    "EntityProvider",
    "Upserter",
    "LocalEntityStore",
    "StaticEntityProvider",
]
