"""
VendorGate — Review Orchestration

Drives one compliance review job on the remote engine:

  NOT_STARTED → INITIATED → FILES_UPLOADED → EXECUTING
                                                ↓ (remote, observed by polling)
                                QUEUED / IN_PROGRESS / COMPLETED / FAILED

start_review() owns the first four transitions within a single request.
Everything after EXECUTING is observed by callers polling get_status();
the orchestrator keeps no state between calls. The job execution id is
written to the audit log and read back from there.

Failure policy: any precondition or remote failure aborts the attempt. No
retries, no partial payload submission, no cancellation of a job already
initiated remotely.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import PurePosixPath
from typing import Optional

from vendorgate.config import DRAFT_STATUS
from vendorgate.engine import CapabilityResolver, EngineClient, BackendCapability
from vendorgate.errors import (
    BackendUnavailable, ConfigurationError, InvalidState, MissingRequiredInput,
    RemoteCallFailure,
)
from vendorgate.results import normalize_results
from vendorgate.workflow import (
    ArrayOf, FileRef, ObjectOf, Primitive, WorkflowSchema, WorkflowSchemaLoader,
)

logger = logging.getLogger(__name__)

JOB_STARTED = "job_started"
DEFAULT_EXTENSION = ".pdf"
DEFAULT_CONTENT_TYPE = "application/octet-stream"


class ReviewStage(str, Enum):
    NOT_STARTED = "not_started"
    INITIATED = "initiated"
    FILES_UPLOADED = "files_uploaded"
    EXECUTING = "executing"


class JobState(str, Enum):
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    UNKNOWN = "unknown"


# Substring → coarse state, checked in order
_STATE_HINTS = (
    (("fail", "error", "cancel", "abort"), JobState.FAILED),
    (("complete", "success", "succeed", "done", "finished"), JobState.COMPLETED),
    (("progress", "running", "executing", "processing", "started"), JobState.IN_PROGRESS),
    (("queue", "pending", "created", "initiated", "waiting"), JobState.QUEUED),
)


def classify_job_state(status_text: str) -> JobState:
    lower = (status_text or "").lower()
    for hints, state in _STATE_HINTS:
        if any(h in lower for h in hints):
            return state
    return JobState.UNKNOWN


@dataclass
class ReviewRun:
    job_execution_id: str
    workflow_id: str
    payload: dict = field(default_factory=dict)
    stage: ReviewStage = ReviewStage.NOT_STARTED

    def to_dict(self) -> dict:
        return {"jobExecutionId": self.job_execution_id}


@dataclass
class JobStatus:
    job_execution_id: str
    state: JobState
    status_text: str
    raw: dict

    def to_dict(self) -> dict:
        return {"jobExecutionId": self.job_execution_id, "state": self.state.value,
                "status": self.status_text, "raw": self.raw}


def extension_from_filename(filename: str) -> str:
    return PurePosixPath(filename or "").suffix or DEFAULT_EXTENSION


def _status_text(payload: dict) -> str:
    for node in (payload, payload.get("data"), payload.get("results")):
        if isinstance(node, dict):
            for key in ("status", "jobStatus", "state"):
                if isinstance(node.get(key), str):
                    return node[key]
    return ""


# ============================================================
# ORCHESTRATOR
# ============================================================
class ReviewOrchestrator:
    """
    Collaborators:
      settings            — ReviewSettings (service key, workflow override)
      http                — httpx.AsyncClient shared by engine calls and uploads
      audit               — audit log with record() / latest()
      storage             — document reader with async read_bytes(storage_path)
      schema_loader       — object with load() → WorkflowSchema
      capability_resolver — object with resolve() → BackendCapability
    Schema and capability are resolved again on every operation.
    """

    def __init__(self, settings, http, audit, storage,
                 schema_loader=None, capability_resolver=None):
        self.settings = settings
        self.http = http
        self.audit = audit
        self.storage = storage
        self.schema_loader = schema_loader or WorkflowSchemaLoader(settings.schema_paths)
        self.capability_resolver = capability_resolver or CapabilityResolver.from_settings(settings)

    def capability(self) -> BackendCapability:
        return self.capability_resolver.resolve()

    def _client(self) -> EngineClient:
        capability = self.capability()
        if not capability.enabled:
            raise BackendUnavailable(capability.reason or "Review engine unavailable")
        return EngineClient(capability, self.settings.service_key, self.http)

    # ── start ──
    async def start_review(self, application: dict, documents_by_key: dict,
                           actor_user_id: Optional[str] = None) -> ReviewRun:
        client = self._client()

        if application.get("status") == DRAFT_STATUS:
            raise InvalidState("Submit application before starting backend review.")

        schema = self.schema_loader.load()
        workflow_id = self.settings.workflow_id or schema.workflow_id
        if not workflow_id:
            raise ConfigurationError("No workflow id configured or declared by the workflow schema.")

        await client.call("workflow_details", workflowId=workflow_id)

        initiated = await client.call("initiate_job", {
            "workflowId": workflow_id,
            "title": f"{application.get('vendor_name') or 'Vendor'} Compliance Review",
            "description": "Vendor compliance validation run",
        })
        job_execution_id = initiated.get("jobExecutionId")
        if not isinstance(job_execution_id, str) or not job_execution_id:
            raise RemoteCallFailure("Review engine did not return a jobExecutionId", 502,
                                    str(initiated))
        run = ReviewRun(job_execution_id, workflow_id, stage=ReviewStage.INITIATED)
        logger.info("[Review] Application %s: job %s initiated on workflow %s",
                    application.get("id"), job_execution_id, workflow_id)

        run.payload = await self.assemble_payload(client, schema, application, documents_by_key)
        run.stage = ReviewStage.FILES_UPLOADED

        await client.call("execute_job", {
            "jobExecutionId": job_execution_id,
            "jobPayloadSchemaInstance": run.payload,
        }, jobExecutionId=job_execution_id)
        run.stage = ReviewStage.EXECUTING
        logger.info("[Review] Job %s executing with %d inputs", job_execution_id, len(run.payload))

        self.audit.record(application.get("id"), JOB_STARTED,
                          {"jobExecutionId": job_execution_id}, actor_user_id)
        return run

    async def assemble_payload(self, client: EngineClient, schema: WorkflowSchema,
                               application: dict, documents_by_key: dict) -> dict:
        """Build jobPayloadSchemaInstance. Files are uploaded one at a time,
        each with a fresh upload URL. Nullable inputs with nothing to send
        are left out entirely."""
        payload = {}
        for key, variable in schema.job_input_schema.items():
            shape = variable.shape
            if isinstance(shape, FileRef):
                documents = documents_by_key.get(key) or []
                if isinstance(documents, dict):
                    documents = [documents]
                if not documents:
                    if variable.nullable:
                        continue
                    raise MissingRequiredInput(f"Missing uploaded document for {variable.label}")
                if shape.many:
                    value = [await self.upload_document(client, d) for d in documents]
                else:
                    value = await self.upload_document(client, documents[0])
            elif isinstance(shape, ObjectOf):
                value = application.get("contact_json") or {}
                if not value and not variable.nullable:
                    raise MissingRequiredInput(f"Missing required input for {variable.label}")
            elif isinstance(shape, (Primitive, ArrayOf)):
                value = variable.sample_value
                if value is None:
                    if variable.nullable:
                        continue
                    raise MissingRequiredInput(f"Missing required input for {variable.label}")
            else:
                raise TypeError(f"Unhandled variable shape: {shape!r}")

            payload[key] = {"value": value, "type": variable.type, "displayName": variable.label}
        return payload

    async def upload_document(self, client: EngineClient, document: dict) -> str:
        target = await client.call("get_upload_url", {
            "fileExtension": extension_from_filename(document.get("filename", "")),
            "accessScope": "workspace",
        })
        presigned_url, file_url = target.get("presignedUrl"), target.get("fileUrl")
        if not presigned_url or not file_url:
            raise RemoteCallFailure("Review engine returned no upload target", 502, str(target))

        content = await self.storage.read_bytes(document["storage_path"])
        await client.upload_to_presigned_url(presigned_url, content,
                                             document.get("mime_type") or DEFAULT_CONTENT_TYPE)
        logger.debug("[Review] Uploaded %s for input %s", document.get("filename"),
                     document.get("input_key"))
        return file_url

    # ── polling ──
    def get_latest_job_execution_id(self, application_id: str) -> Optional[str]:
        entry = self.audit.latest(application_id, JOB_STARTED)
        meta = entry.get("meta") if entry else None
        if not isinstance(meta, dict):
            return None
        candidate = meta.get("jobExecutionId")
        return candidate if isinstance(candidate, str) else None

    async def get_status(self, job_execution_id: str) -> JobStatus:
        raw = await self._client().call("status", jobExecutionId=job_execution_id)
        text = _status_text(raw)
        return JobStatus(job_execution_id, classify_job_state(text), text, raw)

    async def fetch_results(self, job_execution_id: str) -> tuple:
        """(raw engine response, normalized result map)"""
        raw = await self._client().call("results", jobExecutionId=job_execution_id)
        return raw, normalize_results(raw)

    async def get_audit(self, job_execution_id: str) -> dict:
        return await self._client().call("audit", jobExecutionId=job_execution_id)
