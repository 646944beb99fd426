"""Lazy per-relation column knowledge learned from reads and write errors."""

from __future__ import annotations

import logging
from typing import Dict, Tuple

from pawlog.errors import BackendError, undefined_column


logger = logging.getLogger("pawlog.probe")


class CapabilityProber:
    def __init__(self) -> None:
        self._columns: Dict[Tuple[str, str], bool] = {}

    def has_column(self, relation: str, column: str) -> bool:
        """Unknown columns are assumed present; only an observed failure says otherwise."""
        return self._columns.get((relation, column), True)

    def is_known(self, relation: str, column: str) -> bool:
        return (relation, column) in self._columns

    def observe_row(self, relation: str, row: dict | None) -> None:
        if not isinstance(row, dict):
            return
        for column in row.keys():
            key = (relation, column)
            if self._columns.get(key) is False:
                logger.info("probe_column_restored relation=%s column=%s", relation, column)
            self._columns[key] = True

    def observe_error(self, relation: str, error: Exception) -> str | None:
        """Record a missing column if the error is an undefined-column error; return it."""
        if not isinstance(error, BackendError):
            return None
        column = undefined_column(error)
        if column is None:
            return None
        if self._columns.get((relation, column)) is not False:
            logger.warning("probe_column_missing relation=%s column=%s code=%s", relation, column, error.code)
        self._columns[(relation, column)] = False
        return column

    def mark_present(self, relation: str, column: str) -> None:
        self._columns[(relation, column)] = True

    def forget(self, relation: str | None = None) -> None:
        if relation is None:
            self._columns.clear()
            return
        for key in [k for k in self._columns if k[0] == relation]:
            del self._columns[key]

    def snapshot(self) -> dict:
        out: Dict[str, Dict[str, bool]] = {}
        for (relation, column), present in sorted(self._columns.items()):
            out.setdefault(relation, {})[column] = present
        return out
