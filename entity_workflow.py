"""Workflow controller for creating an entity with an optional photo.

One instance per form. States:

    idle -> validating -> inserting -> (insert_failed | inserted)
         -> attaching_media -> reconciled -> idle

Only one attempt may be inserting or attaching at a time; a second submit is
rejected, never queued. Once the insert has produced an id, the operation
succeeds whatever happens to the photo.
"""

from __future__ import annotations

import copy
import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List

from capability_probe import CapabilityProber
from entity_insert import insert_entity
from entity_load import check_column, load_owned_entities
from link_outbox import LinkOutbox
from media_attach import MediaAttacher
from media_staging import MediaStaging, StagedMedia
from pawlog.entities import EntityDefinition, validate_entity_fields
from pawlog.errors import ConstraintError, SchemaDriftError, ValidationError, WorkflowError
from pawlog.outcome import Skipped, UploadedOnly, outcome_to_dict
from pawlog.reconcile import reconcile


logger = logging.getLogger("pawlog.workflow")

Issue = Dict[str, Any]


class WorkflowState(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    INSERTING = "inserting"
    INSERT_FAILED = "insert_failed"
    INSERTED = "inserted"
    ATTACHING_MEDIA = "attaching_media"
    RECONCILED = "reconciled"


def _issue(code: str, message: str, path: str | None = None, detail: dict | None = None) -> Issue:
    return {"code": code, "message": message, "path": path, "detail": detail}


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _result(
    ok: bool,
    errors: List[Issue] | None = None,
    warnings: List[Issue] | None = None,
    entity: dict | None = None,
    attachment: dict | None = None,
    message: str | None = None,
    discarded: bool = False,
) -> dict:
    return {
        "ok": ok,
        "errors": errors or [],
        "warnings": warnings or [],
        "entity": entity,
        "attachment": attachment,
        "message": message,
        "discarded": discarded,
    }


class EntityCreationWorkflow:
    def __init__(
        self,
        definition: EntityDefinition,
        store,
        storage,
        identity,
        prober: CapabilityProber | None = None,
        outbox: LinkOutbox | None = None,
        bucket: str | None = None,
    ) -> None:
        self.definition = definition
        self._store = store
        self._identity = identity
        self._prober = prober or CapabilityProber()
        self._outbox = outbox
        self._bucket = bucket
        self._attacher = MediaAttacher(store, storage, definition, prober=self._prober, bucket=bucket)
        self.staging = MediaStaging()
        self.state = WorkflowState.IDLE
        self.history: List[dict] = []
        self._entities: List[dict] = []
        self._existing: List[dict] = []
        self._in_flight: str | None = None
        self._closed = False

    @property
    def entities(self) -> list[dict]:
        return copy.deepcopy(self._entities)

    @property
    def existing(self) -> list[dict]:
        """Rows that were already persisted when the form loaded them."""
        return copy.deepcopy(self._existing)

    @property
    def in_flight(self) -> bool:
        return self._in_flight is not None

    @property
    def closed(self) -> bool:
        return self._closed

    def rebind(self, store, storage) -> None:
        """Use clients carrying the caller's current credentials from now on."""
        self._store = store
        self._attacher = MediaAttacher(store, storage, self.definition, prober=self._prober, bucket=self._bucket)

    async def load_existing(self) -> list[dict]:
        owner_id = self._owner_id()
        if owner_id is None:
            raise ValidationError(code="NOT_AUTHENTICATED", message="You must be logged in to add an entry")
        relation = self.definition.relation
        if self.definition.media_column:
            await check_column(self._store, relation, self.definition.media_column, self._prober)
        rows = await load_owned_entities(self._store, self.definition, owner_id, prober=self._prober)
        if not self._closed:
            self._existing = rows
        return copy.deepcopy(rows)

    def stage_media(self, media: StagedMedia) -> None:
        self.staging.stage(media)

    def clear_media(self) -> None:
        self.staging.clear()

    def close(self) -> None:
        """Tear down; in-flight I/O may finish but its results are dropped."""
        self._closed = True
        logger.info("workflow_closed relation=%s in_flight=%s", self.definition.relation, self.in_flight)

    def _record(self, from_state: WorkflowState, to_state: WorkflowState, attempt_id: str, detail: dict | None = None) -> None:
        self.history.append(
            {
                "at": _now(),
                "attempt_id": attempt_id,
                "from_state": from_state.value,
                "to_state": to_state.value,
                "detail": detail,
            }
        )

    def _transition(self, to_state: WorkflowState, attempt_id: str, detail: dict | None = None) -> None:
        self._record(self.state, to_state, attempt_id, detail)
        self.state = to_state

    def _reject(self, attempt_id: str, errors: List[Issue]) -> dict:
        self._transition(WorkflowState.IDLE, attempt_id, {"errors": [e["code"] for e in errors]})
        return _result(False, errors=errors)

    def _owner_id(self) -> str | None:
        owner = getattr(self._identity, "owner_id", None)
        if callable(owner):
            owner = owner()
        return owner or None

    async def create_entity_with_media(self, fields: dict) -> dict:
        attempt_id = str(uuid.uuid4())
        relation = self.definition.relation
        if self._closed:
            return _result(False, errors=[ValidationError(code="WORKFLOW_CLOSED", message="Form has been closed").as_issue()])
        if self._in_flight is not None:
            logger.info("submit_rejected_in_flight relation=%s current=%s", relation, self._in_flight)
            # The running attempt owns `state`; the rejected one only leaves a trace.
            self._record(WorkflowState.VALIDATING, WorkflowState.IDLE, attempt_id, {"errors": ["SUBMIT_IN_FLIGHT"]})
            return _result(False, errors=[ValidationError(code="SUBMIT_IN_FLIGHT", message="A submission is already in progress").as_issue()])

        self._transition(WorkflowState.VALIDATING, attempt_id)
        owner_id = self._owner_id()
        if owner_id is None:
            err = ValidationError(code="NOT_AUTHENTICATED", message="You must be logged in to add an entry")
            return self._reject(attempt_id, [err.as_issue()])
        errors, cleaned = validate_entity_fields(self.definition, fields)
        if errors:
            return self._reject(attempt_id, errors)

        self._in_flight = attempt_id
        try:
            return await self._run(attempt_id, cleaned, owner_id)
        finally:
            self._in_flight = None
            self.staging.release(attempt_id)
            if self.state != WorkflowState.IDLE:
                self._transition(WorkflowState.IDLE, attempt_id, {"aborted": True})

    async def _run(self, attempt_id: str, cleaned: dict, owner_id: str) -> dict:
        relation = self.definition.relation
        media = self.staging.claim(attempt_id)
        cleaned.setdefault("created_at", _now())

        self._transition(WorkflowState.INSERTING, attempt_id)
        try:
            persisted = await insert_entity(self._store, self.definition, cleaned, owner_id, prober=self._prober)
        except WorkflowError as err:
            self.staging.release(attempt_id)
            self._transition(WorkflowState.INSERT_FAILED, attempt_id, {"code": err.code})
            self._transition(WorkflowState.IDLE, attempt_id)
            if isinstance(err, ConstraintError):
                issue = _issue("INSERT_CONSTRAINT", err.message, err.path)
            elif isinstance(err, SchemaDriftError):
                issue = _issue("INSERT_FAILED", err.message, err.path, {"column": err.column})
            else:
                issue = _issue("INSERT_FAILED", err.message, err.path, {"code": err.code})
            logger.warning("create_failed relation=%s code=%s", relation, err.code)
            return _result(False, errors=[issue])

        if self._closed:
            return self._discard(attempt_id, persisted)
        self._transition(WorkflowState.INSERTED, attempt_id, {"id": persisted.get("id")})

        warnings: List[Issue] = []
        if media is None:
            outcome = Skipped(reason="NO_MEDIA")
        else:
            self._transition(WorkflowState.ATTACHING_MEDIA, attempt_id)
            try:
                outcome = await self._attacher.attach(persisted.get("id"), media, owner_id)
            except Exception:
                logger.exception("media_attach_error relation=%s id=%s", relation, persisted.get("id"))
                outcome = Skipped(reason="MEDIA_UPLOAD_FAILED")
            if self._closed:
                return self._discard(attempt_id, persisted)
            if isinstance(outcome, Skipped):
                warnings.append(_issue("MEDIA_UPLOAD_FAILED", "Photo could not be uploaded", "media", {"reason": outcome.reason}))
            elif isinstance(outcome, UploadedOnly):
                warnings.append(
                    _issue("MEDIA_LINK_FAILED", "Photo uploaded but not saved on the record", "media", {"reason": outcome.reason})
                )
                if self._outbox is not None and self.definition.media_column:
                    self._outbox.enqueue(relation, persisted["id"], self.definition.media_column, outcome.url, owner_id=owner_id)

        view = reconcile(persisted, outcome, self.definition.media_column or "photo_url")
        self._entities.append(view)
        self.staging.consume(attempt_id)
        self._transition(WorkflowState.RECONCILED, attempt_id, {"attachment": outcome.kind})
        self._transition(WorkflowState.IDLE, attempt_id)

        name = view.get(self.definition.display_field) or "Entry"
        logger.info("create_ok relation=%s id=%s attachment=%s", relation, view["id"], outcome.kind)
        return _result(
            True,
            warnings=warnings,
            entity=copy.deepcopy(view),
            attachment=outcome_to_dict(outcome),
            message=f"{name} has been added successfully!",
        )

    def _discard(self, attempt_id: str, persisted: dict) -> dict:
        logger.info("create_discarded relation=%s id=%s", self.definition.relation, persisted.get("id"))
        self.staging.consume(attempt_id)
        self._transition(WorkflowState.IDLE, attempt_id, {"discarded": True})
        return _result(True, discarded=True)
