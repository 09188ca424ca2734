"""
Item operations for the built-in job kinds.

A job handler pairs an entity provider with an operation factory: given
an entity type, the factory returns the async callable the batch
processor applies to each record.
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Optional

from ..errors import UnsupportedEntityType
from .batch import ItemOperation
from .cancellation import CancellationToken

if TYPE_CHECKING:
    from ..adapters.base import EntityProvider, Upserter

OperationFactory = Callable[[str], ItemOperation]


@dataclass
class JobHandler:
    """How one job kind fetches candidates and processes each of them."""

    provider: "EntityProvider"
    operation_for: OperationFactory
    default_batch_size: int


def upsert_operation(upserter: "Upserter") -> OperationFactory:
    """
    Build the sync item operation: write each record through the upserter.

    The factory raises UnsupportedEntityType for types the upserter cannot
    write, before any record of that type is fetched.

    Args:
        upserter: Destination for records

    Returns:
        Factory mapping an entity type to its item operation
    """
    def factory(entity_type: str) -> ItemOperation:
        if not upserter.supports(entity_type):
            raise UnsupportedEntityType(entity_type)

        async def apply(record: dict, token: Optional[CancellationToken] = None) -> bool:
            return await upserter.apply(entity_type, record)
        return apply
    return factory


def entity_text(record: dict) -> str:
    """Text used to embed an entity: name and description."""
    name = record.get("name") or ""
    description = record.get("description") or ""
    return f"{name} {description}".strip()
