"""
In-memory adapters for local development and tests.

`StaticEntityProvider` serves fixed record lists, standing in for the
external API. `LocalEntityStore` keeps upserted records per entity type
and can itself serve them back, so embedding jobs read what sync jobs
wrote.
"""

import copy
from datetime import datetime, timezone
from typing import Iterable, Optional

from ..errors import UnsupportedEntityType
from ..ops.jobs import utcnow
from .base import ENTITY_TYPES, EntityProvider, Upserter


def _parse_ts(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _updated_since(records: list[dict], since: Optional[str]) -> list[dict]:
    if not since:
        return records
    cutoff = _parse_ts(since)
    kept = []
    for record in records:
        updated = record.get("updated_at")
        if updated is None or _parse_ts(updated) >= cutoff:
            kept.append(record)
    return kept


class StaticEntityProvider(EntityProvider):
    """Serves records from a {entity_type: [records]} mapping."""

    def __init__(self, records: Optional[dict[str, list[dict]]] = None):
        self.records = {k: list(v) for k, v in (records or {}).items()}
        self.calls: list[tuple[str, dict]] = []

    async def fetch_page(self, entity_type: str, filter: Optional[dict] = None) -> list[dict]:
        filter = filter or {}
        self.calls.append((entity_type, dict(filter)))

        if entity_type not in self.records:
            raise UnsupportedEntityType(entity_type)

        return _updated_since(
            [copy.deepcopy(r) for r in self.records[entity_type]],
            filter.get("updated_since"),
        )


class LocalEntityStore(EntityProvider, Upserter):
    """
    Local record store keyed by entity type and id.

    Records are replaced whole on upsert and stamped with `synced_at`.
    """

    def __init__(self, entity_types: Iterable[str] = ENTITY_TYPES):
        self.entity_types = tuple(entity_types)
        self._records: dict[str, dict[str, dict]] = {t: {} for t in self.entity_types}

    def supports(self, entity_type: str) -> bool:
        return entity_type in self._records

    async def apply(self, entity_type: str, record: dict) -> bool:
        if not self.supports(entity_type):
            raise UnsupportedEntityType(entity_type)
        if not record.get("id"):
            raise ValueError(f"{entity_type} record has no id")
        if not record.get("name"):
            return False

        stored = copy.deepcopy(record)
        stored["synced_at"] = utcnow()
        self._records[entity_type][str(record["id"])] = stored
        return True

    async def fetch_page(self, entity_type: str, filter: Optional[dict] = None) -> list[dict]:
        if entity_type not in self._records:
            raise UnsupportedEntityType(entity_type)
        records = [copy.deepcopy(r) for r in self._records[entity_type].values()]
        return _updated_since(records, (filter or {}).get("updated_since"))

    def get(self, entity_type: str, entity_id: str) -> Optional[dict]:
        return self._records.get(entity_type, {}).get(str(entity_id))

    def count(self, entity_type: Optional[str] = None) -> int:
        if entity_type is not None:
            return len(self._records.get(entity_type, {}))
        return sum(len(v) for v in self._records.values())
