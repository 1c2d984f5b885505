"""Storage collaborator used by the engine, plus an in-memory implementation."""

import copy
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, NamedTuple, Optional, Sequence

logger = logging.getLogger(__name__)

STUDENTS = 'students'
ATTENDANCE = 'attendance_records'
ASSESSMENTS = 'assessments'
PREDICTIONS = 'risk_predictions'
ALERTS = 'alerts'


class RecordNotFoundError(LookupError):
    """Raised when an update targets a record id that does not exist."""


class Filter(NamedTuple):
    field: str
    op: str  # eq, gte, lt, in
    value: Any


def _matches(record: Dict[str, Any], flt: Filter) -> bool:
    value = record.get(flt.field)
    if flt.op == 'eq':
        return value == flt.value
    if flt.op == 'in':
        return value in flt.value
    if value is None:
        return False
    if flt.op == 'gte':
        return value >= flt.value
    if flt.op == 'lt':
        return value < flt.value
    raise ValueError(f"Unsupported filter operator: {flt.op}")


class Storage(ABC):
    """
    Abstract record store.

    Records cross this boundary as plain dicts; callers validate them into
    models. Every method is a coroutine and failures propagate unchanged.
    """

    @abstractmethod
    async def query(
        self,
        collection: str,
        filters: Optional[Sequence[Filter]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """Return records matching all filters, ordered and capped."""

    @abstractmethod
    async def insert(self, collection: str, record: Dict[str, Any]) -> Dict[str, Any]:
        """Persist a record and return it with generated `id` and `created_at`."""

    @abstractmethod
    async def update(
        self,
        collection: str,
        record_id: str,
        changes: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Apply changes to an existing record and return the updated copy."""


class InMemoryStorage(Storage):
    """Dict-backed storage. Returned records are copies."""

    def __init__(self):
        self._collections: Dict[str, List[Dict[str, Any]]] = {}

    async def query(self, collection, filters=None, order_by=None, descending=False, limit=None):
        rows = [
            r for r in self._collections.get(collection, [])
            if all(_matches(r, f) for f in (filters or []))
        ]
        if order_by:
            # Python's sort is stable, so ties keep insertion order
            rows.sort(key=lambda r: r.get(order_by), reverse=descending)
        if limit is not None:
            rows = rows[:limit]
        return copy.deepcopy(rows)

    async def insert(self, collection, record):
        stored = copy.deepcopy(record)
        stored.setdefault('id', str(uuid.uuid4()))
        stored.setdefault('created_at', datetime.now(timezone.utc))
        self._collections.setdefault(collection, []).append(stored)
        logger.debug("Inserted %s into %s", stored['id'], collection)
        return copy.deepcopy(stored)

    async def update(self, collection, record_id, changes):
        for record in self._collections.get(collection, []):
            if record.get('id') == record_id:
                record.update(copy.deepcopy(changes))
                return copy.deepcopy(record)
        raise RecordNotFoundError(f"{collection} record {record_id} not found")

    def clear(self):
        self._collections.clear()
