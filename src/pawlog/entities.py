"""Entity definitions and client-side field validation."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date


@dataclass(frozen=True)
class EntityDefinition:
    relation: str
    required_fields: tuple[str, ...]
    date_fields: tuple[str, ...] = ()
    owner_column: str | None = None
    optional_columns: tuple[str, ...] = ()
    media_column: str | None = None
    media_bucket: str = "avatars"
    media_segment: str = ""
    display_field: str = "name"
    extra_fields: tuple[str, ...] = field(default_factory=tuple)

    def strippable_columns(self) -> set[str]:
        """Columns the insert may drop when the backend lacks them."""
        cols = set(self.optional_columns)
        if self.owner_column:
            cols.add(self.owner_column)
        return cols - set(self.required_fields)

    def known_fields(self) -> set[str]:
        return set(self.required_fields) | set(self.date_fields) | set(self.extra_fields)


DOG = EntityDefinition(
    relation="dogs",
    required_fields=("name", "breed", "birthday"),
    date_fields=("birthday",),
    owner_column="user_id",
    optional_columns=("created_at",),
    media_column="photo_url",
    media_bucket="avatars",
    media_segment="dogs",
    display_field="name",
)


def _issue(code: str, message: str, path: str | None = None, detail: dict | None = None) -> dict:
    return {"code": code, "message": message, "path": path, "detail": detail}


def validate_entity_fields(definition: EntityDefinition, data: dict) -> tuple[list[dict], dict]:
    if not isinstance(data, dict):
        return [_issue("INVALID_PAYLOAD", "Entity fields must be an object")], {}

    errors: list[dict] = []
    known = definition.known_fields()
    cleaned: dict = {}
    for key, val in data.items():
        if key not in known:
            errors.append(_issue("UNKNOWN_FIELD", f"Unknown field: {key}", path=key))
            continue
        if isinstance(val, str):
            val = val.strip()
        cleaned[key] = val

    for field_id in definition.required_fields:
        val = cleaned.get(field_id)
        if val is None or val == "":
            errors.append(_issue("REQUIRED_FIELD", f"Missing required field: {field_id}", path=field_id))

    for field_id in definition.date_fields:
        val = cleaned.get(field_id)
        if val is None or val == "":
            continue
        if isinstance(val, date):
            cleaned[field_id] = val.isoformat()
            continue
        if not isinstance(val, str):
            errors.append(_issue("TYPE_MISMATCH", f"{field_id} must be a date string", path=field_id))
            continue
        try:
            date.fromisoformat(val)
        except ValueError:
            errors.append(_issue("INVALID_DATE", f"{field_id} must be YYYY-MM-DD", path=field_id))

    return errors, cleaned
