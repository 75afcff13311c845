"""Shared pytest fixtures for VendorGate tests."""

import json
from pathlib import Path

import httpx
import pytest

from vendorgate.config import ReviewSettings
from vendorgate.db import AuditLog, JsonStore


ENGINE_BASE = "https://engine.test"

INTEGRATION_SECTIONS = {
    "workflow_details": "### 1) Get Workflow Details\n- Method/Path: `GET /workflow/{workflowId}`\n",
    "initiate_job": "### 2) Initiate Job\n- Method/Path: `POST /job/initiate`\n",
    "get_upload_url": "### 3) Get Upload URL\n- Method/Path: `POST /job/file/upload`\n",
    "execute_job": "### 4) Execute Job\n- Method/Path: `POST /job/execute`\n",
    "status": "### 5) Get Job Execution Status\n- Method/Path: `GET /job/{jobExecutionId}/status`\n",
    "results": "### 6) Get Job Execution Results\n- Method/Path: `GET /job/{jobExecutionId}/results`\n",
    "audit": "### 7) Job Audit Log\n- Method/Path: `GET /job/{jobExecutionId}/audit`\n",
}


def integration_doc(skip=(), base_url=ENGINE_BASE) -> str:
    head = f"# Review Engine API\n\nBase URL: `{base_url}`\n\nAuth header: `x-service-key: <key>`\n\n"
    return head + "\n".join(body for name, body in INTEGRATION_SECTIONS.items() if name not in skip)


DEFAULT_SCHEMA = {
    "workflowId": "wf-1",
    "name": "Vendor Compliance",
    "jobPayloadSchema": {
        "trade_license": {"variable_name": "trade_license", "display_name": "Trade License",
                          "type": "file", "is_nullable": False},
        "vat_certificate": {"variable_name": "vat_certificate", "display_name": "VAT Certificate",
                            "type": "file", "is_nullable": True},
        "contact_information": {"variable_name": "contact_information",
                                "display_name": "Contact Information",
                                "type": "object", "is_nullable": False},
        "review_region": {"variable_name": "review_region", "type": "str", "value": "UAE"},
    },
    "jobResultsPayloadSchema": {
        "license_status": {"variable_name": "license_status", "type": "str"},
    },
}


def write_docs(docs_dir: Path, schema=None, doc: str = None):
    (docs_dir / "agents").mkdir(parents=True, exist_ok=True)
    if schema is not None:
        (docs_dir / "workflow.json").write_text(json.dumps(schema))
    if doc is not None:
        (docs_dir / "agents" / "review-engine-api.md").write_text(doc)


class FakeEngine:
    """In-memory review engine behind httpx.MockTransport.

    Hosts:
      engine.test   — the review engine API
      uploads.test  — presigned upload targets
      files.test    — external sample documents
    """

    def __init__(self):
        self.requests = []
        self.uploads = []
        self.jobs = 0
        self.upload_targets = 0
        self.status = "IN_PROGRESS"
        self.results = {"results": {"data": {"jobResultsPayloadSchema": {
            "license_status": {"value": "Mismatch detected", "type": "str"}}}}}
        self.failures = {}

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        host, path = request.url.host, request.url.path

        if (host, path) in self.failures:
            status, text = self.failures[(host, path)]
            return httpx.Response(status, text=text)

        if host == "uploads.test":
            self.uploads.append({"url": str(request.url), "headers": dict(request.headers),
                                 "content": request.content})
            return httpx.Response(200)
        if host == "files.test":
            return httpx.Response(200, content=b"%PDF-external")

        if path.startswith("/workflow/"):
            return httpx.Response(200, json={"workflowId": path.rsplit("/", 1)[-1]})
        if path == "/job/initiate":
            self.jobs += 1
            return httpx.Response(200, json={"jobExecutionId": f"job-{self.jobs}"})
        if path == "/job/file/upload":
            self.upload_targets += 1
            n = self.upload_targets
            return httpx.Response(200, json={"presignedUrl": f"https://uploads.test/put/{n}",
                                             "fileUrl": f"https://files.test/stored/{n}"})
        if path == "/job/execute":
            return httpx.Response(204)
        if path.endswith("/status"):
            return httpx.Response(200, json={"status": self.status})
        if path.endswith("/results"):
            return httpx.Response(200, json=self.results)
        if path.endswith("/audit"):
            return httpx.Response(200, json={"events": [{"step": "initiated"}]})
        return httpx.Response(404, text="unknown route")

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def engine_calls(self) -> list:
        return [(r.method, r.url.path) for r in self.requests if r.url.host == "engine.test"]

    def last_body(self, path: str) -> dict:
        for request in reversed(self.requests):
            if request.url.path == path:
                return json.loads(request.content)
        raise AssertionError(f"no request to {path}")


@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture
def docs_dir(tmp_path):
    path = tmp_path / "documentation"
    write_docs(path, DEFAULT_SCHEMA, integration_doc())
    return path


@pytest.fixture
def settings(docs_dir):
    return ReviewSettings(service_key="test-key", docs_dir=docs_dir)


@pytest.fixture
def store(tmp_path):
    return JsonStore(tmp_path / "db.json")


@pytest.fixture
def audit(store):
    return AuditLog(store)


@pytest.fixture
def upload_dir(tmp_path):
    return tmp_path / "uploads"
