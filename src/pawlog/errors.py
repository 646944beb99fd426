"""Backend error taxonomy for the entity-creation pipeline."""

from __future__ import annotations

import re
from dataclasses import dataclass


UNDEFINED_COLUMN_CODES = {"42703", "PGRST204"}
TRANSPORT_CODE = "TRANSPORT"

# 42703: column "user_id" of relation "dogs" does not exist / column dogs.user_id does not exist
_PG_COLUMN_RE = re.compile(r'column "?(?:[\w]+\.)?(?P<column>[\w]+)"?(?: of relation "[^"]+")? does not exist')
# PGRST204: Could not find the 'user_id' column of 'dogs' in the schema cache
_PGRST_COLUMN_RE = re.compile(r"'(?P<column>[^']+)' column")


@dataclass
class BackendError(Exception):
    """Raised by store and storage clients with the backend's machine code."""

    code: str
    message: str
    status: int | None = None
    detail: dict | None = None

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        return f"{self.code}: {self.message}"


@dataclass
class WorkflowError(Exception):
    code: str
    message: str
    path: str | None = None

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        base = f"{self.code}: {self.message}"
        return f"{base} (path={self.path})" if self.path else base

    def as_issue(self, detail: dict | None = None) -> dict:
        return {"code": self.code, "message": self.message, "path": self.path, "detail": detail}


@dataclass
class ValidationError(WorkflowError):
    pass


@dataclass
class SchemaDriftError(WorkflowError):
    relation: str | None = None
    column: str | None = None


@dataclass
class TransportError(WorkflowError):
    pass


@dataclass
class ConstraintError(WorkflowError):
    pass


def undefined_column(error: BackendError) -> str | None:
    """Return the missing column named by an undefined-column error, else None."""
    if not isinstance(error, BackendError) or error.code not in UNDEFINED_COLUMN_CODES:
        return None
    message = error.message or ""
    pattern = _PGRST_COLUMN_RE if error.code == "PGRST204" else _PG_COLUMN_RE
    match = pattern.search(message)
    if match:
        return match.group("column")
    return None


def classify_backend_error(error: BackendError, relation: str | None = None) -> WorkflowError:
    code = error.code or ""
    if code in UNDEFINED_COLUMN_CODES:
        column = undefined_column(error)
        if column:
            return SchemaDriftError(
                code="SCHEMA_DRIFT",
                message=error.message,
                path=column,
                relation=relation,
                column=column,
            )
        # an undefined column we cannot name is not safely recoverable
        return TransportError(code="BACKEND_ERROR", message=error.message)
    if code.startswith("23"):
        return ConstraintError(code="CONSTRAINT_VIOLATION", message=error.message)
    if code == TRANSPORT_CODE:
        return TransportError(code="TRANSPORT_FAILED", message=error.message)
    return TransportError(code="BACKEND_ERROR", message=error.message)
