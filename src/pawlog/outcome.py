"""Results of the deferred media attachment phase."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class Linked:
    url: str
    kind: str = "linked"


@dataclass(frozen=True)
class UploadedOnly:
    """Asset is stored and its URL known, but the record does not reference it."""

    url: str
    reason: str | None = None
    kind: str = "uploaded_only"


@dataclass(frozen=True)
class Skipped:
    reason: str | None = None
    kind: str = "skipped"


AttachmentOutcome = Union[Linked, UploadedOnly, Skipped]


def outcome_url(outcome: AttachmentOutcome) -> str | None:
    if isinstance(outcome, (Linked, UploadedOnly)):
        return outcome.url
    return None


def outcome_to_dict(outcome: AttachmentOutcome) -> dict:
    return {
        "kind": outcome.kind,
        "url": outcome_url(outcome),
        "reason": getattr(outcome, "reason", None),
    }
