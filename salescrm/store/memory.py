"""
In-memory record store.
Process-local; backs the 'memory' backend and the test suite. Records are kept
as plain dicts and handed out as fresh dataclass copies, so callers can never
mutate stored state in place.
"""

import asyncio
import copy
import logging
import uuid
from dataclasses import asdict
from typing import Any, Dict, List, Optional

from salescrm.errors import NotFoundError
from salescrm.models import field_names, utcnow
from salescrm.store.base import RecordStore, check_fields, check_required, sort_records

logger = logging.getLogger(__name__)


class MemoryStore(RecordStore):

    def __init__(self, model, clock=utcnow):
        super().__init__(model)
        self._rows: Dict[str, Dict[str, Any]] = {}
        self._clock = clock
        self._fields = field_names(model)

    def _to_record(self, row: Dict[str, Any]):
        return self.model(**copy.deepcopy(row))

    async def list(self, sort_key: Optional[str] = None) -> List[Any]:
        await asyncio.sleep(0)
        records = [self._to_record(row) for row in self._rows.values()]
        return sort_records(records, sort_key)

    async def filter(self, predicate: Dict[str, Any], sort_key: Optional[str] = None,
                     limit: Optional[int] = None) -> List[Any]:
        await asyncio.sleep(0)
        records = [
            self._to_record(row) for row in self._rows.values()
            if all(row.get(key) == value for key, value in predicate.items())
        ]
        records = sort_records(records, sort_key)
        if limit is not None:
            records = records[:limit]
        return records

    async def create(self, fields: Dict[str, Any]) -> Any:
        check_fields(self.model, fields, self.kind)
        check_required(self.model, fields, self.kind)
        await asyncio.sleep(0)

        row = asdict(self.model())
        row.update(copy.deepcopy(fields))
        row['id'] = uuid.uuid4().hex
        now = self._clock()
        if 'created_date' in self._fields:
            row['created_date'] = now
        if 'updated_date' in self._fields:
            row['updated_date'] = now

        self._rows[row['id']] = row
        logger.debug(f"Created {self.kind} {row['id']}")
        return self._to_record(row)

    async def update(self, record_id, patch: Dict[str, Any]) -> Any:
        check_fields(self.model, patch, self.kind)
        await asyncio.sleep(0)

        row = self._rows.get(record_id)
        if row is None:
            raise NotFoundError(self.kind, record_id)
        row.update(copy.deepcopy(patch))
        if 'updated_date' in self._fields:
            row['updated_date'] = self._clock()

        logger.debug(f"Updated {self.kind} {record_id}: {sorted(patch)}")
        return self._to_record(row)

    async def delete(self, record_id) -> None:
        await asyncio.sleep(0)
        if self._rows.pop(record_id, None) is None:
            raise NotFoundError(self.kind, record_id)
        logger.debug(f"Deleted {self.kind} {record_id}")
