"""
PostgreSQL record store.
One table per record kind (see salescrm/db/schema.sql). psycopg2 is blocking, so
every statement runs in a worker thread via asyncio.to_thread; the event loop
keeps serving other coroutines while a query is in flight.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

import psycopg2
from psycopg2.extras import Json

from salescrm.db.connection import get_db_cursor
from salescrm.errors import NotFoundError, StoreError, ValidationError
from salescrm.models import Contact, Interaction, Notification, User, field_names
from salescrm.store.base import RecordStore, check_fields, check_required, parse_sort_key

logger = logging.getLogger(__name__)

TABLES = {
    Contact: 'contacts',
    Interaction: 'interactions',
    User: 'users',
    Notification: 'notifications',
}

# Columns stored as JSONB
_JSON_COLUMNS = {'preferences'}


class PostgresStore(RecordStore):

    def __init__(self, model, database_url: str = None):
        super().__init__(model)
        self.table = TABLES[model]
        self._database_url = database_url
        # Allowlist: column names in SQL text only ever come from the model
        self._columns = field_names(model)

    # -------------------------------------------------------------------------
    # helpers
    # -------------------------------------------------------------------------

    def _order_by(self, sort_key: Optional[str]) -> str:
        attr, descending = parse_sort_key(sort_key)
        if attr is None:
            return ''
        if attr not in self._columns:
            raise ValidationError(f"Invalid {self.kind} sort key: {sort_key!r}")
        return f" ORDER BY {attr} {'DESC' if descending else 'ASC'} NULLS LAST"

    @staticmethod
    def _adapt(values: Dict[str, Any]) -> Dict[str, Any]:
        return {
            key: Json(value) if key in _JSON_COLUMNS and value is not None else value
            for key, value in values.items()
        }

    def _run(self, statement: str, params: Optional[Dict[str, Any]], fetch: Optional[str]):
        try:
            with get_db_cursor(database_url=self._database_url) as cur:
                cur.execute(statement, params)
                if fetch == 'one':
                    return cur.fetchone()
                if fetch == 'all':
                    return cur.fetchall()
                return cur.rowcount
        except psycopg2.Error as e:
            raise StoreError(f"{self.kind} store failure: {e}") from e

    async def _execute(self, statement: str, params: Optional[Dict[str, Any]] = None,
                       fetch: Optional[str] = None):
        return await asyncio.to_thread(self._run, statement, params, fetch)

    # -------------------------------------------------------------------------
    # contract
    # -------------------------------------------------------------------------

    async def list(self, sort_key: Optional[str] = None) -> List[Any]:
        statement = f"SELECT * FROM {self.table}{self._order_by(sort_key)}"
        rows = await self._execute(statement, None, 'all')
        logger.debug(f"{self.table}.list: {len(rows)} rows (sort={sort_key})")
        return [self.model(**row) for row in rows]

    async def filter(self, predicate: Dict[str, Any], sort_key: Optional[str] = None,
                     limit: Optional[int] = None) -> List[Any]:
        unknown = set(predicate) - self._columns
        if unknown:
            raise ValidationError(f"Invalid {self.kind} filter fields: {sorted(unknown)}")

        conditions = []
        params: Dict[str, Any] = {}
        for key, value in predicate.items():
            if value is None:
                conditions.append(f"{key} IS NULL")
            else:
                conditions.append(f"{key} = %({key})s")
                params[key] = value

        statement = f"SELECT * FROM {self.table}"
        if conditions:
            statement += " WHERE " + " AND ".join(conditions)
        statement += self._order_by(sort_key)
        if limit is not None:
            statement += " LIMIT %(_limit)s"
            params['_limit'] = limit

        rows = await self._execute(statement, params, 'all')
        logger.debug(f"{self.table}.filter: {len(rows)} rows ({sorted(predicate)})")
        return [self.model(**row) for row in rows]

    async def create(self, fields: Dict[str, Any]) -> Any:
        check_fields(self.model, fields, self.kind)
        check_required(self.model, fields, self.kind)

        columns = list(fields)
        values = [f"%({c})s" for c in columns]
        for stamp in ('created_date', 'updated_date'):
            if stamp in self._columns:
                columns.append(stamp)
                values.append('NOW()')

        statement = (
            f"INSERT INTO {self.table} ({', '.join(columns)}) "
            f"VALUES ({', '.join(values)}) RETURNING *"
        )
        row = await self._execute(statement, self._adapt(fields), 'one')
        logger.info(f"Created {self.kind} {row['id']}")
        return self.model(**row)

    async def update(self, record_id, patch: Dict[str, Any]) -> Any:
        check_fields(self.model, patch, self.kind)

        set_clauses = [f"{key} = %({key})s" for key in patch]
        if 'updated_date' in self._columns:
            set_clauses.append("updated_date = NOW()")
        params = self._adapt(patch)
        params['_record_id'] = record_id

        if set_clauses:
            statement = (
                f"UPDATE {self.table} SET {', '.join(set_clauses)} "
                f"WHERE id = %(_record_id)s RETURNING *"
            )
        else:
            statement = f"SELECT * FROM {self.table} WHERE id = %(_record_id)s"

        row = await self._execute(statement, params, 'one')
        if row is None:
            raise NotFoundError(self.kind, record_id)
        logger.info(f"Updated {self.kind} {record_id}: {sorted(patch)}")
        return self.model(**row)

    async def delete(self, record_id) -> None:
        rowcount = await self._execute(
            f"DELETE FROM {self.table} WHERE id = %(_record_id)s",
            {'_record_id': record_id},
        )
        if rowcount == 0:
            raise NotFoundError(self.kind, record_id)
        logger.info(f"Deleted {self.kind} {record_id}")
