"""FastAPI surface for the pawlog entity-creation forms."""

from __future__ import annotations

import logging
import os
import sys
import time
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Dict

from fastapi import FastAPI, File, Request, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _load_env_file(path: Path) -> None:
    if not path.exists():
        return
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key and key not in os.environ:
            os.environ[key] = value


_load_env_file(ROOT / "app" / ".env")

from app.attachments import LOCAL_MEDIA_PREFIX, LocalObjectStorage, default_storage, media_bucket
from app.auth import SessionIdentity, SupabaseAuthMiddleware
from app.stores import MemoryObjectStorage, MemoryRecordStore
from capability_probe import CapabilityProber
from entity_workflow import EntityCreationWorkflow
from link_outbox import LinkOutbox
from media_staging import StagedMedia, StagingError
from pawlog.entities import DOG
from pawlog.errors import WorkflowError


logger = logging.getLogger("pawlog")
logging.basicConfig(level=logging.INFO)

SUPABASE_URL = os.getenv("SUPABASE_URL", "").strip()
SUPABASE_AUD = os.getenv("SUPABASE_JWT_AUD", "").strip() or None
STORE_KIND = os.getenv("PAWLOG_STORE", "memory").strip().lower() or "memory"


def _form_idle_ttl() -> float:
    try:
        return float(os.getenv("PAWLOG_FORM_TTL", "1800"))
    except ValueError:
        return 1800.0


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    if STORE_KIND == "db":
        from app.db import close_pool

        close_pool()
        logger.info("db_pool_closed")


app = FastAPI(title="Pawlog", lifespan=lifespan)
app.add_middleware(SupabaseAuthMiddleware, supabase_url=SUPABASE_URL, audience=SUPABASE_AUD)
logger.info("store=%s supabase_url=%s supabase_aud=%s", STORE_KIND, SUPABASE_URL, SUPABASE_AUD)


def _build_store():
    if STORE_KIND == "rest":
        from app.rest_store import RestRecordStore

        return RestRecordStore()
    if STORE_KIND == "db":
        from app.pg_store import PgRecordStore

        return PgRecordStore()
    return MemoryRecordStore()


def _build_storage():
    if STORE_KIND == "memory":
        return MemoryObjectStorage()
    return default_storage()


record_store = _build_store()
object_storage = _build_storage()
prober = CapabilityProber()
link_outbox = LinkOutbox()

if isinstance(object_storage, LocalObjectStorage):
    app.mount(LOCAL_MEDIA_PREFIX, StaticFiles(directory=str(object_storage.root), check_dir=False), name="media")

_ERROR_STATUS = {
    "NOT_AUTHENTICATED": 401,
    "SUBMIT_IN_FLIGHT": 409,
    "INSERT_CONSTRAINT": 409,
    "INSERT_FAILED": 502,
    "WORKFLOW_CLOSED": 410,
    "SCHEMA_DRIFT": 502,
    "TRANSPORT_FAILED": 502,
    "BACKEND_ERROR": 502,
}


class FormSession:
    def __init__(self, form_id: str, identity: SessionIdentity) -> None:
        self.form_id = form_id
        self.opened_by = identity.owner_id
        self.identity = identity
        self.last_used = time.monotonic()
        self.workflow = EntityCreationWorkflow(
            DOG,
            record_store.with_token(identity.access_token),
            object_storage.with_token(identity.access_token),
            identity=self,
            prober=prober,
            outbox=link_outbox,
            bucket=media_bucket(DOG.media_bucket),
        )

    @property
    def owner_id(self) -> str | None:
        return self.identity.owner_id

    def bind(self, identity: SessionIdentity) -> None:
        """Attach the current request's identity; its token is used for all further I/O."""
        self.identity = identity
        self.last_used = time.monotonic()
        self.workflow.rebind(
            record_store.with_token(identity.access_token),
            object_storage.with_token(identity.access_token),
        )


forms: Dict[str, FormSession] = {}


def _evict_idle_forms(now: float | None = None) -> list[str]:
    """Close forms idle longer than the TTL. A form with a submit in flight is kept."""
    now = time.monotonic() if now is None else now
    ttl = _form_idle_ttl()
    evicted = []
    for form_id, form in list(forms.items()):
        if now - form.last_used < ttl or form.workflow.in_flight:
            continue
        form.workflow.close()
        forms.pop(form_id, None)
        evicted.append(form_id)
    if evicted:
        logger.info("forms_evicted count=%s remaining=%s", len(evicted), len(forms))
    return evicted


def _error_response(code: str, message: str, path: str | None = None, detail: dict | None = None, status: int = 400) -> JSONResponse:
    body = {
        "ok": False,
        "errors": [{"code": code, "message": message, "path": path, "detail": detail}],
        "warnings": [],
    }
    return JSONResponse(jsonable_encoder(body), status_code=status)


def _ok_response(payload: dict, warnings: list | None = None, status: int = 200) -> JSONResponse:
    body = {"ok": True, **payload, "errors": [], "warnings": warnings or []}
    return JSONResponse(jsonable_encoder(body), status_code=status)


def _get_form(request: Request, form_id: str) -> FormSession | JSONResponse:
    _evict_idle_forms()
    form = forms.get(form_id)
    identity = SessionIdentity.from_request(request)
    if identity.owner_id is None:
        return _error_response("NOT_AUTHENTICATED", "You must be logged in to add an entry", status=401)
    if form is None or form.opened_by != identity.owner_id:
        return _error_response("FORM_NOT_FOUND", "Form not found", "form_id", status=404)
    form.bind(identity)
    return form


@app.get("/health")
async def health() -> dict:
    return {"ok": True}


@app.post("/forms")
async def open_form(request: Request):
    identity = SessionIdentity.from_request(request)
    if identity.owner_id is None:
        return _error_response("NOT_AUTHENTICATED", "You must be logged in to add an entry", status=401)
    _evict_idle_forms()
    form_id = str(uuid.uuid4())
    forms[form_id] = FormSession(form_id, identity)
    logger.info("form_opened form_id=%s user=%s", form_id, identity.owner_id)
    return _ok_response({"form_id": form_id}, status=201)


@app.put("/forms/{form_id}/media")
async def stage_media(request: Request, form_id: str, file: UploadFile = File(...)):
    form = _get_form(request, form_id)
    if isinstance(form, JSONResponse):
        return form
    data = await file.read()
    if not data:
        return _error_response("MEDIA_EMPTY", "Uploaded file is empty", "file")
    media = StagedMedia(uri=file.filename or "upload", data=data, content_type=file.content_type or "image/jpeg")
    try:
        form.workflow.stage_media(media)
    except StagingError as exc:
        return _error_response("SUBMIT_IN_FLIGHT", str(exc), "file", status=409)
    return _ok_response({"media": {"handle": media.handle, "uri": media.uri, "size": media.size}})


@app.delete("/forms/{form_id}/media")
async def clear_media(request: Request, form_id: str):
    form = _get_form(request, form_id)
    if isinstance(form, JSONResponse):
        return form
    try:
        form.workflow.clear_media()
    except StagingError as exc:
        return _error_response("SUBMIT_IN_FLIGHT", str(exc), status=409)
    return _ok_response({})


@app.post("/forms/{form_id}/submit")
async def submit_form(request: Request, form_id: str):
    form = _get_form(request, form_id)
    if isinstance(form, JSONResponse):
        return form
    try:
        body = await request.json()
    except ValueError:
        return _error_response("INVALID_PAYLOAD", "Body must be JSON")
    fields = body.get("fields") if isinstance(body, dict) else None
    result = await form.workflow.create_entity_with_media(fields if fields is not None else {})
    if not result["ok"]:
        code = result["errors"][0]["code"] if result["errors"] else "CREATE_FAILED"
        body = {"ok": False, "errors": result["errors"], "warnings": result["warnings"]}
        return JSONResponse(jsonable_encoder(body), status_code=_ERROR_STATUS.get(code, 400))
    return _ok_response(
        {"entity": result["entity"], "attachment": result["attachment"], "message": result["message"]},
        warnings=result["warnings"],
        status=201,
    )


@app.get("/forms/{form_id}/entities")
async def list_form_entities(request: Request, form_id: str, load: bool = False):
    form = _get_form(request, form_id)
    if isinstance(form, JSONResponse):
        return form
    if load:
        try:
            await form.workflow.load_existing()
        except WorkflowError as err:
            return _error_response(err.code, err.message, err.path, status=_ERROR_STATUS.get(err.code, 502))
    return _ok_response(
        {
            "entities": form.workflow.entities,
            "existing": form.workflow.existing,
            "state": form.workflow.state.value,
        }
    )


@app.delete("/forms/{form_id}")
async def close_form(request: Request, form_id: str):
    form = _get_form(request, form_id)
    if isinstance(form, JSONResponse):
        return form
    form.workflow.close()
    forms.pop(form_id, None)
    return _ok_response({"form_id": form_id})


@app.get("/ops/capabilities")
async def capabilities() -> dict:
    return {"ok": True, "columns": prober.snapshot(), "errors": [], "warnings": []}


@app.delete("/ops/capabilities")
async def reset_capabilities(relation: str | None = None):
    prober.forget(relation)
    logger.info("capabilities_reset relation=%s", relation or "*")
    return _ok_response({"columns": prober.snapshot()})


@app.post("/ops/links/retry")
async def retry_links(request: Request):
    identity = SessionIdentity.from_request(request)
    if identity.owner_id is None:
        return _error_response("NOT_AUTHENTICATED", "You must be logged in to add an entry", status=401)
    summary = await link_outbox.retry_pending(
        record_store.with_token(identity.access_token),
        prober=prober,
        owner_id=identity.owner_id,
    )
    return _ok_response({"summary": summary, "pending": link_outbox.pending(identity.owner_id)})
