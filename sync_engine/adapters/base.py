"""
Collaborator interfaces consumed by the orchestration core.

Concrete adapters talk to the external product-management API, a local
database or an embedding model. The core only relies on these methods.
"""

from abc import ABC, abstractmethod
from typing import Optional

ENTITY_TYPES = (
    "products",
    "features",
    "ideas",
    "epics",
    "initiatives",
    "releases",
    "goals",
    "users",
)


class EntityProvider(ABC):
    """Source of entity records for an entity type."""

    @abstractmethod
    async def fetch_page(self, entity_type: str, filter: Optional[dict] = None) -> list[dict]:
        """
        Fetch records for an entity type.

        Args:
            entity_type: Entity category, e.g. "products"
            filter: Optional filter, e.g. {"updated_since": "2024-01-01T00:00:00Z"}

        Returns:
            Ordered list of records with at least "id" and "name"

        Raises:
            UnsupportedEntityType: If the provider cannot serve the type
        """
        pass

    async def fetch_one(self, entity_type: str, entity_id: str) -> Optional[dict]:
        """
        Fetch a single record by id.

        The default scans `fetch_page`; providers with a direct lookup
        should override it.

        Returns:
            The record, or None if the provider has no such id
        """
        for record in await self.fetch_page(entity_type):
            if str(record.get("id")) == str(entity_id):
                return record
        return None


class Upserter(ABC):
    """Destination that writes entity records field by field."""

    @abstractmethod
    async def apply(self, entity_type: str, record: dict) -> bool:
        """
        Insert or update one record.

        Returns:
            True on success, False if the record was rejected
        """
        pass

    def supports(self, entity_type: str) -> bool:
        """Whether records of this entity type can be written."""
        return True
