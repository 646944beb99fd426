"""Merge persisted entity rows with attachment outcomes for display."""

from __future__ import annotations

import copy

from .outcome import AttachmentOutcome, Linked, UploadedOnly


def reconcile(persisted: dict, outcome: AttachmentOutcome, media_column: str = "photo_url") -> dict:
    """Return the client-visible entity. Pure: inputs are never mutated."""
    if not isinstance(persisted, dict) or persisted.get("id") in (None, ""):
        raise ValueError("persisted entity must carry an id")
    view = copy.deepcopy(persisted)
    if isinstance(outcome, (Linked, UploadedOnly)):
        view[media_column] = outcome.url
        view["media_linked"] = isinstance(outcome, Linked)
    else:
        view.pop(media_column, None)
        view["media_linked"] = False
    return view
