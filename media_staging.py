"""Workflow-scoped holding area for a picked but not yet uploaded asset."""

from __future__ import annotations

import mimetypes
import uuid
from dataclasses import dataclass, field
from pathlib import Path


class StagingError(RuntimeError):
    pass


@dataclass(frozen=True)
class StagedMedia:
    uri: str
    data: bytes
    content_type: str = "image/jpeg"
    handle: str = field(default_factory=lambda: str(uuid.uuid4()))

    @classmethod
    def from_path(cls, path: str | Path, content_type: str | None = None) -> "StagedMedia":
        path_obj = Path(path)
        guessed, _ = mimetypes.guess_type(path_obj.name)
        return cls(
            uri=path_obj.resolve().as_uri(),
            data=path_obj.read_bytes(),
            content_type=content_type or guessed or "image/jpeg",
        )

    @property
    def size(self) -> int:
        return len(self.data)


class MediaStaging:
    """Holds at most one asset; an asset is claimed by at most one attempt at a time."""

    def __init__(self) -> None:
        self._media: StagedMedia | None = None
        self._claimed_by: str | None = None

    @property
    def staged(self) -> StagedMedia | None:
        return self._media

    @property
    def claimed_by(self) -> str | None:
        return self._claimed_by

    def stage(self, media: StagedMedia) -> None:
        if self._claimed_by is not None:
            raise StagingError("staged media is in use by an in-flight attempt")
        self._media = media

    def claim(self, attempt_id: str) -> StagedMedia | None:
        if self._media is None:
            return None
        if self._claimed_by is not None and self._claimed_by != attempt_id:
            raise StagingError("staged media is in use by an in-flight attempt")
        self._claimed_by = attempt_id
        return self._media

    def release(self, attempt_id: str) -> None:
        if self._claimed_by == attempt_id:
            self._claimed_by = None

    def consume(self, attempt_id: str) -> None:
        """Drop the asset once the attempt that claimed it has completed."""
        if self._claimed_by not in (None, attempt_id):
            raise StagingError("staged media is claimed by another attempt")
        self._media = None
        self._claimed_by = None

    def clear(self) -> None:
        if self._claimed_by is not None:
            raise StagingError("staged media is in use by an in-flight attempt")
        self._media = None
