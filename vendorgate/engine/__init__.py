"""
VendorGate — Review Engine Integration

Capability resolution: reads the human-authored API reference for the
review engine and pulls out the base URL, auth header and seven endpoint
templates. Anything missing downgrades to manual mode instead of failing.

Client: thin async wrapper over httpx for authenticated JSON calls and
presigned uploads.
"""
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import httpx

from vendorgate.config import DEFAULT_AUTH_HEADER
from vendorgate.errors import BackendUnavailable, RemoteCallFailure

logger = logging.getLogger(__name__)

UNCONFIGURED = "integration unconfigured"
INCOMPLETE = "Compliance backend integration requires docs configuration."

# ============================================================
# ENDPOINTS
# ============================================================
# field name → (section title in the API reference, HTTP method)
ENDPOINT_SECTIONS = {
    "workflow_details": ("Get Workflow Details", "GET"),
    "initiate_job": ("Initiate Job", "POST"),
    "get_upload_url": ("Get Upload URL", "POST"),
    "execute_job": ("Execute Job", "POST"),
    "status": ("Get Job Execution Status", "GET"),
    "results": ("Get Job Execution Results", "GET"),
    "audit": ("Job Audit Log", "GET"),
}


@dataclass(frozen=True)
class EngineEndpoints:
    workflow_details: str
    initiate_job: str
    get_upload_url: str
    execute_job: str
    status: str
    results: str
    audit: str

    def render(self, name: str, **params) -> str:
        """Substitute {workflowId} / {jobExecutionId} placeholders."""
        path = getattr(self, name)
        for key, value in params.items():
            path = path.replace("{" + key + "}", str(value))
        return path

    def method(self, name: str) -> str:
        return ENDPOINT_SECTIONS[name][1]

    def to_dict(self) -> dict:
        return {name: getattr(self, name) for name in ENDPOINT_SECTIONS}


@dataclass(frozen=True)
class BackendCapability:
    enabled: bool
    mode: str
    reason: Optional[str] = None
    base_url: Optional[str] = None
    auth_header_name: Optional[str] = None
    endpoints: Optional[EngineEndpoints] = None

    @classmethod
    def manual(cls, reason: str, base_url=None, auth_header_name=None):
        return cls(enabled=False, mode="manual", reason=reason,
                   base_url=base_url, auth_header_name=auth_header_name)

    def to_dict(self) -> dict:
        return {
            "enabled": self.enabled, "mode": self.mode, "reason": self.reason,
            "baseUrl": self.base_url, "authHeaderName": self.auth_header_name,
            "endpoints": self.endpoints.to_dict() if self.endpoints else None,
        }


# ============================================================
# CAPABILITY RESOLVER
# ============================================================
_BASE_URL = re.compile(r"Base URL:\s*`([^`]+)`", re.IGNORECASE)
_AUTH_HEADER = re.compile(r"Auth header[^`]*`([^`]+)`", re.IGNORECASE)


def extract_endpoint(markdown: str, title: str, method: str) -> Optional[str]:
    """Find '- Method/Path: `METHOD /path`' inside the '### N) Title' section."""
    pattern = re.compile(
        r"###\s+\d+\)\s*" + re.escape(title)
        + r"(?:(?!\n###)[\s\S])*?-\s*Method/Path:\s*`" + method + r"\s+([^`]+)`",
        re.IGNORECASE,
    )
    m = pattern.search(markdown)
    return m.group(1).strip() if m else None


def parse_integration_doc(markdown: str) -> dict:
    base = _BASE_URL.search(markdown)
    auth = _AUTH_HEADER.search(markdown)
    header = auth.group(1).split(":")[0].strip() if auth else ""
    if not header and DEFAULT_AUTH_HEADER in markdown:
        header = DEFAULT_AUTH_HEADER
    return {
        "base_url": base.group(1).strip() if base else None,
        "auth_header_name": header or None,
        "endpoints": {name: extract_endpoint(markdown, title, method)
                      for name, (title, method) in ENDPOINT_SECTIONS.items()},
    }


class CapabilityResolver:
    """Decides whether the review engine is reachable. Never raises."""

    def __init__(self, doc_path, service_key: str = "", base_url_override: str = ""):
        self.doc_path = Path(doc_path)
        self.service_key = service_key
        self.base_url_override = base_url_override

    @classmethod
    def from_settings(cls, settings):
        return cls(settings.integration_doc_path, settings.service_key, settings.base_url)

    def resolve(self) -> BackendCapability:
        try:
            markdown = self.doc_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError):
            logger.warning("[Engine] Integration doc %s unreadable, manual mode", self.doc_path)
            return BackendCapability.manual(UNCONFIGURED)

        parsed = parse_integration_doc(markdown)
        base_url = (self.base_url_override or parsed["base_url"] or "").rstrip("/") or None
        header = parsed["auth_header_name"]
        found = parsed["endpoints"]
        missing = [name for name, path in found.items() if not path]

        has_markers = "Base URL:" in markdown and bool(header) and header in markdown
        if missing or not base_url or not header or not has_markers or not self.service_key:
            logger.warning("[Engine] Review engine disabled (missing endpoints=%s, base_url=%s, "
                           "header=%s, markers=%s, key=%s)", missing, bool(base_url),
                           bool(header), has_markers, bool(self.service_key))
            return BackendCapability.manual(INCOMPLETE, base_url, header)

        return BackendCapability(enabled=True, mode="live", base_url=base_url,
                                 auth_header_name=header, endpoints=EngineEndpoints(**found))


def resolve_capability(settings) -> BackendCapability:
    return CapabilityResolver.from_settings(settings).resolve()


# ============================================================
# CLIENT
# ============================================================
class EngineClient:
    """Authenticated JSON calls against a live review engine."""

    def __init__(self, capability: BackendCapability, service_key: str, http: httpx.AsyncClient):
        if not capability.enabled or not capability.endpoints:
            raise BackendUnavailable(capability.reason or INCOMPLETE)
        self.capability = capability
        self.endpoints = capability.endpoints
        self.service_key = service_key
        self.http = http

    async def request(self, method: str, path: str, body=None) -> dict:
        headers = {self.capability.auth_header_name: self.service_key}
        kwargs = {}
        if body is not None:
            headers["Content-Type"] = "application/json"
            kwargs["json"] = body
        url = f"{self.capability.base_url}{path}"
        response = await self.http.request(method, url, headers=headers, **kwargs)
        if not response.is_success:
            text = response.text
            raise RemoteCallFailure(
                f"Review engine request failed ({response.status_code}): {text}",
                response.status_code, text)
        if response.status_code == 204 or not response.content:
            return {}
        try:
            data = response.json()
        except ValueError:
            raise RemoteCallFailure(
                f"Review engine returned a non-JSON response ({response.status_code}): "
                f"{response.text[:200]}", 502, response.text)
        if not isinstance(data, dict):
            raise RemoteCallFailure(
                f"Review engine returned an unexpected response body: {response.text[:200]}",
                502, response.text)
        return data

    async def call(self, name: str, body=None, **params) -> dict:
        """Call a named endpoint, filling its path placeholders from params."""
        return await self.request(self.endpoints.method(name),
                                  self.endpoints.render(name, **params), body)

    async def upload_to_presigned_url(self, presigned_url: str, content: bytes, content_type: str):
        # presigned targets carry their own auth; the service key must not leak there
        response = await self.http.put(presigned_url, content=content,
                                       headers={"Content-Type": content_type})
        if not response.is_success:
            raise RemoteCallFailure(f"Presigned upload failed ({response.status_code})",
                                    response.status_code, response.text)
