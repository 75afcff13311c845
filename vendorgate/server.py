"""
VendorGate — Vendor Compliance Review API
Thin FastAPI routes over the review orchestrator. Every route is scoped to
the authenticated user's own applications.
"""
import logging
from typing import Optional

import httpx
from fastapi import FastAPI, UploadFile, File, Form, HTTPException, Depends
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from vendorgate.auth import get_current_user
from vendorgate.compliance import (
    build_admin_notification, build_vendor_notification, extract_work_items,
)
from vendorgate.config import VERSION, DRAFT_STATUS, REVIEWED_STATUS, load_settings
from vendorgate.db import (
    AuditLog, JsonStore, StorageReader, build_document_path, documents_by_input_key,
    save_uploaded_file,
)
from vendorgate.engine import resolve_capability
from vendorgate.errors import (
    ApplicationNotFound, ConfigurationError, ReviewError, RemoteCallFailure, status_from_message,
)
from vendorgate.results import label_results
from vendorgate.review import ReviewOrchestrator
from vendorgate.workflow import extract_demo_inputs, extract_demo_results, load_workflow_schema

logger = logging.getLogger(__name__)

app = FastAPI(title="VendorGate", version=VERSION)
app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_credentials=True,
                   allow_methods=["*"], allow_headers=["*"])

_store = JsonStore()

NO_JOB_MESSAGE = "No review job has been started for this application yet."


# ============================================================
# DEPENDENCIES
# ============================================================
def get_store() -> JsonStore:
    return _store


def get_settings():
    return load_settings()


async def get_http_client(settings=Depends(get_settings)):
    async with httpx.AsyncClient(timeout=settings.http_timeout) as client:
        yield client


def get_orchestrator(settings=Depends(get_settings), http=Depends(get_http_client),
                     store=Depends(get_store)) -> ReviewOrchestrator:
    return ReviewOrchestrator(settings, http, AuditLog(store), StorageReader(http))


def _http_error(error: ReviewError) -> HTTPException:
    return HTTPException(error.status_code, {"error": str(error), "fallback": error.fallback})


def _require_application(store: JsonStore, aid: str, user: dict) -> dict:
    application = store.get_application(aid, user["id"])
    if not application:
        raise _http_error(ApplicationNotFound("Application not found"))
    return application


def _notify(store: JsonStore, aid: str, user: dict, application: dict, items: list):
    contact = application.get("contact_json")
    email = contact.get("email") if isinstance(contact, dict) else None
    store.add_notifications([
        {"application_id": aid, "created_by": user["id"], "category": "vendor",
         "recipient_email": email if isinstance(email, str) else None,
         "message": build_vendor_notification(items)},
        {"application_id": aid, "created_by": user["id"], "category": "admin",
         "recipient_user_id": user["id"], "message": build_admin_notification(items)},
    ])


# ============================================================
# HEALTH & SCHEMA
# ============================================================
@app.get("/api/health")
async def health():
    return {"status": "ok", "version": VERSION}


@app.get("/api/workflow/schema")
async def workflow_schema(settings=Depends(get_settings)):
    try:
        schema = load_workflow_schema(settings)
    except ReviewError as e:
        raise HTTPException(500, {"error": str(e), "fallback": e.fallback})
    return {**schema.to_dict(), "capability": resolve_capability(settings).to_dict()}


# ============================================================
# APPLICATIONS (minimal intake)
# ============================================================
class ApplicationBody(BaseModel):
    vendor_name: str
    contact_json: dict = {}


@app.post("/api/applications")
async def create_application(body: ApplicationBody, user=Depends(get_current_user),
                             store=Depends(get_store)):
    return store.insert_application({"vendor_name": body.vendor_name,
                                     "contact_json": body.contact_json,
                                     "created_by": user["id"]})


@app.post("/api/applications/{aid}/documents")
async def upload_document(aid: str, input_key: str = Form(...), file: UploadFile = File(...),
                          user=Depends(get_current_user), store=Depends(get_store)):
    _require_application(store, aid, user)
    content = await file.read()
    storage_path = build_document_path(user["id"], aid, input_key, file.filename or "upload")
    save_uploaded_file(storage_path, content)
    return store.add_document(aid, input_key, storage_path, file.filename or "upload",
                              file.content_type or "application/octet-stream", len(content))


@app.post("/api/applications/{aid}/submit")
async def submit_application(aid: str, user=Depends(get_current_user), store=Depends(get_store)):
    application = _require_application(store, aid, user)
    if application.get("status") != DRAFT_STATUS:
        raise HTTPException(400, "Application already submitted")
    AuditLog(store).record(aid, "application_submitted", {}, user["id"])
    return store.update_application(aid, status="submitted")


# ============================================================
# REVIEW LIFECYCLE
# ============================================================
@app.post("/api/applications/{aid}/review/run")
async def run_review(aid: str, user=Depends(get_current_user), store=Depends(get_store),
                     orchestrator: ReviewOrchestrator = Depends(get_orchestrator)):
    application = _require_application(store, aid, user)
    documents = documents_by_input_key(store.list_documents(aid))
    try:
        run = await orchestrator.start_review(application, documents, user["id"])
    except RemoteCallFailure as e:
        AuditLog(store).record(aid, "job_start_failed", {"error": str(e)}, user["id"])
        raise _http_error(e)
    except ReviewError as e:
        raise _http_error(e)
    except httpx.HTTPError as e:
        message = f"Failed to start compliance review: {e}"
        logger.error("[Review] %s", message)
        AuditLog(store).record(aid, "job_start_failed", {"error": message}, user["id"])
        raise HTTPException(status_from_message(message), {"error": message, "fallback": "retry"})
    return run.to_dict()


@app.get("/api/applications/{aid}/review/status")
async def review_status(aid: str, jobExecutionId: Optional[str] = None,
                        user=Depends(get_current_user), store=Depends(get_store),
                        orchestrator: ReviewOrchestrator = Depends(get_orchestrator)):
    _require_application(store, aid, user)
    job_id = jobExecutionId or orchestrator.get_latest_job_execution_id(aid)
    if not job_id:
        raise HTTPException(400, NO_JOB_MESSAGE)
    try:
        status = await orchestrator.get_status(job_id)
    except ReviewError as e:
        raise _http_error(e)
    return status.to_dict()


class ResultsBody(BaseModel):
    jobExecutionId: Optional[str] = None
    manualResultJson: Optional[dict] = None


@app.post("/api/applications/{aid}/review/results")
async def save_results(aid: str, body: ResultsBody, user=Depends(get_current_user),
                       store=Depends(get_store), settings=Depends(get_settings),
                       orchestrator: ReviewOrchestrator = Depends(get_orchestrator)):
    application = _require_application(store, aid, user)
    if application.get("status") == DRAFT_STATUS:
        raise HTTPException(400, "This application is in Submit stage. Submit it first, "
                                 "then save review results.")

    manual = body.manualResultJson is not None
    job_id = None
    if manual:
        raw = result = body.manualResultJson
    else:
        job_id = body.jobExecutionId or orchestrator.get_latest_job_execution_id(aid)
        if not job_id:
            raise HTTPException(400, NO_JOB_MESSAGE)
        try:
            raw, result = await orchestrator.fetch_results(job_id)
        except ReviewError as e:
            raise _http_error(e)

    items = extract_work_items(result)
    saved = store.save_review_result(aid, result, job_id)
    if saved:
        _notify(store, aid, user, application, items)
        AuditLog(store).record(aid, "manual_result_saved" if manual else "result_saved", {
            "source": "manual" if manual else "engine",
            "work_item_count": len(items),
            "jobExecutionId": job_id,
        }, user["id"])

    try:
        result_schema = load_workflow_schema(settings).job_result_schema
    except ConfigurationError as e:
        # manual entry works without a schema; rows then cover the returned keys only
        logger.warning("[Review] Labelling results without schema: %s", e)
        result_schema = {}
    return {"result_json": result, "raw_response": raw, "saved": saved,
            "rows": label_results(result_schema, result),
            "workItems": [i.to_dict() for i in items]}


@app.get("/api/applications/{aid}/review/audit")
async def review_audit(aid: str, jobExecutionId: Optional[str] = None,
                       user=Depends(get_current_user), store=Depends(get_store),
                       orchestrator: ReviewOrchestrator = Depends(get_orchestrator)):
    _require_application(store, aid, user)
    job_id = jobExecutionId or orchestrator.get_latest_job_execution_id(aid)
    if not job_id:
        raise HTTPException(400, NO_JOB_MESSAGE)
    try:
        audit = await orchestrator.get_audit(job_id)
    except ReviewError as e:
        raise _http_error(e)
    return {"audit": audit, "jobExecutionId": job_id}


@app.post("/api/applications/{aid}/test-mode")
async def apply_test_mode(aid: str, user=Depends(get_current_user), store=Depends(get_store),
                          settings=Depends(get_settings)):
    """Fill an application with the workflow's own sample inputs and results."""
    _require_application(store, aid, user)
    try:
        schema = load_workflow_schema(settings)
    except ReviewError as e:
        raise _http_error(e)
    samples = extract_demo_inputs(schema)
    result = extract_demo_results(schema)

    application = store.update_application(aid, contact_json=samples["contactJson"],
                                           result_json=result, status=REVIEWED_STATUS,
                                           result_job_execution_id=None)
    documents = samples["documents"]
    if documents:
        store.delete_documents(aid, [d["inputKey"] for d in documents])
        for d in documents:
            store.add_document(aid, d["inputKey"], d["url"], d["filename"], d["mimeType"])

    items = extract_work_items(result)
    _notify(store, aid, user, application, items)
    AuditLog(store).record(aid, "test_mode_applied", {
        "source": "workflow_samples", "document_count": len(documents),
        "result_keys": list(result),
    }, user["id"])
    return {"application": application, "demoDocuments": documents,
            "workItems": [i.to_dict() for i in items]}
