"""Record store over a direct Postgres connection (service-role access)."""

from __future__ import annotations

from datetime import date, datetime
from uuid import UUID

import anyio
import psycopg2
from psycopg2 import sql
from psycopg2.pool import PoolError

from app.db import fetch_all, fetch_one, get_conn
from pawlog.errors import BackendError, TRANSPORT_CODE


def _plain(row: dict | None) -> dict | None:
    if row is None:
        return None
    out = {}
    for key, val in row.items():
        if isinstance(val, datetime):
            val = val.isoformat().replace("+00:00", "Z")
        elif isinstance(val, date):
            val = val.isoformat()
        elif isinstance(val, UUID):
            val = str(val)
        out[key] = val
    return out


def _backend_error(exc: Exception) -> BackendError:
    if isinstance(exc, psycopg2.Error) and exc.pgcode:
        diag = getattr(exc, "diag", None)
        message = (getattr(diag, "message_primary", None) or exc.pgerror or str(exc)).strip()
        return BackendError(code=exc.pgcode, message=message)
    return BackendError(code=TRANSPORT_CODE, message=str(exc).strip() or exc.__class__.__name__)


class PgRecordStore:
    def _insert_sync(self, relation: str, record: dict) -> dict | None:
        cols = list(record.keys())
        query = sql.SQL("insert into {} ({}) values ({}) returning *").format(
            sql.Identifier(relation),
            sql.SQL(", ").join(sql.Identifier(c) for c in cols),
            sql.SQL(", ").join(sql.Placeholder() for _ in cols),
        )
        with get_conn() as conn:
            return fetch_one(conn, query, [record[c] for c in cols], query_name=f"{relation}.insert")

    def _update_sync(self, relation: str, record_id: str, patch: dict) -> dict | None:
        cols = list(patch.keys())
        query = sql.SQL("update {} set {} where id = %s returning *").format(
            sql.Identifier(relation),
            sql.SQL(", ").join(sql.SQL("{} = %s").format(sql.Identifier(c)) for c in cols),
        )
        with get_conn() as conn:
            return fetch_one(conn, query, [patch[c] for c in cols] + [record_id], query_name=f"{relation}.update")

    def _select_sync(
        self,
        relation: str,
        filters: dict,
        columns: list[str] | None,
        order_by: str | None,
        descending: bool,
        limit: int | None,
    ) -> list[dict]:
        query = sql.SQL("select {} from {}").format(
            sql.SQL(", ").join(sql.Identifier(c) for c in columns) if columns else sql.SQL("*"),
            sql.Identifier(relation),
        )
        cols = list(filters.keys())
        if cols:
            query += sql.SQL(" where ") + sql.SQL(" and ").join(sql.SQL("{} = %s").format(sql.Identifier(c)) for c in cols)
        if order_by:
            query += sql.SQL(" order by {} {}").format(sql.Identifier(order_by), sql.SQL("desc" if descending else "asc"))
        params = [filters[c] for c in cols]
        if limit is not None:
            query += sql.SQL(" limit %s")
            params.append(limit)
        with get_conn() as conn:
            return fetch_all(conn, query, params, query_name=f"{relation}.list")

    async def _run(self, func, *args):
        try:
            return _plain(await anyio.to_thread.run_sync(func, *args))
        except (psycopg2.Error, PoolError) as exc:
            raise _backend_error(exc) from exc

    async def insert(self, relation: str, record: dict) -> dict:
        row = await self._run(self._insert_sync, relation, record)
        if row is None:
            raise BackendError(code="EMPTY_RESULT", message=f"insert into {relation} returned no rows")
        return row

    async def update(self, relation: str, record_id: str, patch: dict) -> dict | None:
        return await self._run(self._update_sync, relation, record_id, patch)

    async def select_rows(
        self,
        relation: str,
        filters: dict | None = None,
        columns: list[str] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict]:
        try:
            rows = await anyio.to_thread.run_sync(
                self._select_sync, relation, dict(filters or {}), columns, order_by, descending, limit
            )
        except (psycopg2.Error, PoolError) as exc:
            raise _backend_error(exc) from exc
        return [_plain(row) for row in rows]

    def with_token(self, access_token: str | None) -> "PgRecordStore":
        return self
