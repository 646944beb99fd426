"""In-memory relational and object stores for development and tests."""

from __future__ import annotations

import copy
import uuid
from typing import Dict, Iterable, List

from pawlog.errors import BackendError, TRANSPORT_CODE


def _undefined_column(relation: str, column: str) -> BackendError:
    return BackendError(
        code="42703",
        message=f'column "{column}" of relation "{relation}" does not exist',
        status=400,
    )


class MemoryRecordStore:
    """Rows keyed by relation and id.

    `columns` maps a relation to its column set; relations not listed accept any
    column. Writes naming a missing column fail like Postgres does (42703).
    """

    def __init__(self, columns: Dict[str, Iterable[str]] | None = None) -> None:
        self._columns: Dict[str, set] = {rel: set(cols) for rel, cols in (columns or {}).items()}
        self._records: Dict[str, Dict[str, dict]] = {}
        self._failures: Dict[str, List[BackendError]] = {}
        self.calls: List[tuple] = []

    def fail_next(self, op: str, error: BackendError) -> None:
        self._failures.setdefault(op, []).append(error)

    def _maybe_fail(self, op: str) -> None:
        queued = self._failures.get(op)
        if queued:
            raise queued.pop(0)

    def _check_columns(self, relation: str, values: dict) -> None:
        allowed = self._columns.get(relation)
        if allowed is None:
            return
        for column in values:
            if column != "id" and column not in allowed:
                raise _undefined_column(relation, column)

    async def insert(self, relation: str, record: dict) -> dict:
        self.calls.append(("insert", relation, copy.deepcopy(record)))
        self._maybe_fail("insert")
        self._check_columns(relation, record)
        row = copy.deepcopy(record)
        row["id"] = str(uuid.uuid4())
        self._records.setdefault(relation, {})[row["id"]] = row
        return copy.deepcopy(row)

    async def update(self, relation: str, record_id: str, patch: dict) -> dict:
        self.calls.append(("update", relation, record_id, copy.deepcopy(patch)))
        self._maybe_fail("update")
        self._check_columns(relation, patch)
        rows = self._records.get(relation, {})
        if record_id not in rows:
            raise BackendError(code="PGRST116", message="record not found", status=406)
        rows[record_id].update(copy.deepcopy(patch))
        return copy.deepcopy(rows[record_id])

    async def select_rows(
        self,
        relation: str,
        filters: dict | None = None,
        columns: list[str] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict]:
        self.calls.append(("select", relation, copy.deepcopy(filters or {})))
        self._maybe_fail("select")
        referenced = list(filters or {}) + list(columns or []) + ([order_by] if order_by else [])
        self._check_columns(relation, dict.fromkeys(referenced))
        rows = [
            row
            for row in self._records.get(relation, {}).values()
            if all(row.get(k) == v for k, v in (filters or {}).items())
        ]
        if order_by:
            rows.sort(key=lambda r: (r.get(order_by) is None, r.get(order_by) or ""), reverse=descending)
        if limit is not None:
            rows = rows[:limit]
        if columns:
            return [{c: copy.deepcopy(row.get(c)) for c in columns} for row in rows]
        return [copy.deepcopy(row) for row in rows]

    def with_token(self, access_token: str | None) -> "MemoryRecordStore":
        return self

    def add_column(self, relation: str, column: str) -> None:
        self._columns.setdefault(relation, set()).add(column)

    def call_count(self, op: str) -> int:
        return len([c for c in self.calls if c[0] == op])


class MemoryObjectStorage:
    def __init__(self, base_url: str = "memory://storage") -> None:
        self._base_url = base_url.rstrip("/")
        self._objects: Dict[str, Dict[str, dict]] = {}
        self._fail: List[BackendError] = []
        self.uploads: List[tuple] = []

    def fail_next(self, error: BackendError | None = None) -> None:
        self._fail.append(error or BackendError(code=TRANSPORT_CODE, message="connection reset"))

    async def upload(self, bucket: str, path: str, data: bytes, content_type: str | None = None) -> str:
        self.uploads.append((bucket, path, len(data)))
        if self._fail:
            raise self._fail.pop(0)
        self._objects.setdefault(bucket, {})[path] = {"data": bytes(data), "content_type": content_type}
        return self.public_url(bucket, path)

    def with_token(self, access_token: str | None) -> "MemoryObjectStorage":
        return self

    def public_url(self, bucket: str, path: str) -> str:
        return f"{self._base_url}/{bucket}/{path}"

    def get(self, bucket: str, path: str) -> bytes | None:
        item = self._objects.get(bucket, {}).get(path)
        return item["data"] if item else None

