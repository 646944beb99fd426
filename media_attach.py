"""Deferred media attachment: upload once the entity has an id, then link it back."""

from __future__ import annotations

import logging
import time
from typing import Callable

from capability_probe import CapabilityProber
from media_staging import StagedMedia
from pawlog.entities import EntityDefinition
from pawlog.errors import BackendError, classify_backend_error
from pawlog.outcome import AttachmentOutcome, Linked, Skipped, UploadedOnly


logger = logging.getLogger("pawlog.attach")

_EXTENSIONS = {
    "image/jpeg": "jpeg",
    "image/jpg": "jpeg",
    "image/png": "png",
    "image/webp": "webp",
    "image/heic": "heic",
    "image/gif": "gif",
}


def _epoch_ms() -> int:
    return int(time.time() * 1000)


def media_path(definition: EntityDefinition, owner_id: str | None, entity_id: str, content_type: str, stamp: int) -> str:
    ext = _EXTENSIONS.get((content_type or "").lower(), "jpeg")
    parts = [p for p in (owner_id, definition.media_segment) if p]
    parts.append(f"{entity_id}_{stamp}.{ext}")
    return "/".join(str(p).replace("..", "_") for p in parts)


class MediaAttacher:
    def __init__(
        self,
        store,
        storage,
        definition: EntityDefinition,
        prober: CapabilityProber | None = None,
        bucket: str | None = None,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self._store = store
        self._storage = storage
        self._definition = definition
        self._prober = prober
        self._bucket = bucket or definition.media_bucket
        self._clock = clock or _epoch_ms

    async def attach(self, entity_id: str | None, staged: StagedMedia | None, owner_id: str | None) -> AttachmentOutcome:
        if staged is None:
            return Skipped(reason="NO_MEDIA")
        if not entity_id:
            raise ValueError("attach requires a persisted entity id")

        relation = self._definition.relation
        path = media_path(self._definition, owner_id, entity_id, staged.content_type, self._clock())
        try:
            url = await self._storage.upload(self._bucket, path, staged.data, staged.content_type)
        except BackendError as exc:
            logger.warning(
                "media_upload_failed relation=%s id=%s bucket=%s code=%s error=%s",
                relation,
                entity_id,
                self._bucket,
                exc.code,
                exc.message,
            )
            return Skipped(reason="MEDIA_UPLOAD_FAILED")
        logger.info("media_uploaded relation=%s id=%s path=%s", relation, entity_id, path)

        column = self._definition.media_column
        if not column:
            return UploadedOnly(url=url, reason="NO_MEDIA_COLUMN")

        try:
            row = await self._store.update(relation, entity_id, {column: url})
        except BackendError as exc:
            if self._prober is not None:
                self._prober.observe_error(relation, exc)
            err = classify_backend_error(exc, relation)
            logger.warning(
                "media_link_failed relation=%s id=%s column=%s code=%s error=%s",
                relation,
                entity_id,
                column,
                err.code,
                exc.message,
            )
            return UploadedOnly(url=url, reason=err.code)

        if not isinstance(row, dict) or row.get(column) != url:
            # row filtered out (e.g. row-level security) or column silently ignored
            logger.warning("media_link_not_applied relation=%s id=%s column=%s", relation, entity_id, column)
            return UploadedOnly(url=url, reason="LINK_NOT_APPLIED")
        if self._prober is not None:
            self._prober.observe_row(relation, row)
        return Linked(url=url)
