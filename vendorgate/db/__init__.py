"""
VendorGate — Database Layer
File-based JSON store for applications, documents, audit log and
notifications, plus the document byte reader used for engine uploads.
"""
import json
import logging
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path

import httpx

from vendorgate.config import DB_PATH, UPLOAD_DIR, PERSIST_DATA, REVIEWED_STATUS, STORAGE_BUCKET
from vendorgate.errors import RemoteCallFailure, ReviewError

logger = logging.getLogger(__name__)

# ============================================================
# EMPTY DB SCHEMA
# ============================================================
EMPTY_DB = {
    "applications": [], "application_documents": [], "audit_log": [],
    "notifications": [],
}


def _fresh_db():
    """Return a fresh empty database."""
    return json.loads(json.dumps(EMPTY_DB))


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# ============================================================
# FILE BACKEND
# ============================================================
class JsonStore:
    """Whole-document JSON store. Every mutation is load → change → save
    under one lock."""

    def __init__(self, path: Path = DB_PATH, persist: bool = PERSIST_DATA):
        self.path = Path(path)
        self.persist = persist
        self._cache = None
        self._lock = threading.RLock()

    def load(self) -> dict:
        with self._lock:
            if self._cache is not None:
                return self._cache
            db = _fresh_db()
            if self.path.exists():
                try:
                    db = json.loads(self.path.read_text(encoding="utf-8"))
                except (json.JSONDecodeError, OSError) as e:
                    logger.warning("[DB] Could not read %s (%s), starting empty", self.path, e)
                    db = _fresh_db()
            # Ensure all collections exist
            for k, v in EMPTY_DB.items():
                db.setdefault(k, type(v)())
            self._cache = db
            return db

    def save(self, db: dict):
        with self._lock:
            self._cache = db
            if self.persist:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                self.path.write_text(json.dumps(db, indent=2, default=str), encoding="utf-8")

    def reset(self):
        self.save(_fresh_db())

    # ── applications ──
    def insert_application(self, record: dict) -> dict:
        with self._lock:
            db = self.load()
            row = {"id": str(uuid.uuid4()), "status": "draft", "contact_json": {},
                   "result_json": None, "created_at": _now(), **record}
            db["applications"].append(row)
            self.save(db)
            return row

    def get_application(self, application_id: str, user_id: str = None):
        for app in self.load()["applications"]:
            if app["id"] == application_id and (user_id is None or app.get("created_by") == user_id):
                return app
        return None

    def update_application(self, application_id: str, **fields) -> dict:
        with self._lock:
            db = self.load()
            for app in db["applications"]:
                if app["id"] == application_id:
                    app.update(fields, updated_at=_now())
                    self.save(db)
                    return app
            raise KeyError(application_id)

    def save_review_result(self, application_id: str, result_json: dict,
                           job_execution_id: str = None) -> bool:
        """Store results and mark the application reviewed. Results for a job
        execution that was ever saved before are left alone and False returned."""
        with self._lock:
            app = self.get_application(application_id)
            if app is None:
                raise KeyError(application_id)
            saved_jobs = list(app.get("saved_job_execution_ids") or [])
            if job_execution_id and (job_execution_id in saved_jobs or (
                    app.get("result_job_execution_id") == job_execution_id
                    and app.get("result_json") is not None)):
                logger.info("[DB] Result for job %s already saved, skipping", job_execution_id)
                return False
            if job_execution_id:
                saved_jobs.append(job_execution_id)
            self.update_application(application_id, result_json=result_json, status=REVIEWED_STATUS,
                                    result_job_execution_id=job_execution_id,
                                    saved_job_execution_ids=saved_jobs)
            return True

    def append_audit(self, entry: dict):
        with self._lock:
            db = self.load()
            db["audit_log"].append(entry)
            self.save(db)

    # ── documents ──
    def add_document(self, application_id: str, input_key: str, storage_path: str,
                     filename: str, mime_type: str, size: int = 0) -> dict:
        with self._lock:
            db = self.load()
            row = {"id": str(uuid.uuid4()), "application_id": application_id,
                   "input_key": input_key, "storage_path": storage_path, "filename": filename,
                   "mime_type": mime_type, "size": size, "created_at": _now()}
            db["application_documents"].append(row)
            self.save(db)
            return row

    def list_documents(self, application_id: str) -> list:
        """Documents for an application, newest first."""
        docs = [d for d in self.load()["application_documents"]
                if d["application_id"] == application_id]
        return list(reversed(docs))

    def delete_documents(self, application_id: str, input_keys) -> int:
        keys = set(input_keys)
        with self._lock:
            db = self.load()
            before = len(db["application_documents"])
            db["application_documents"] = [
                d for d in db["application_documents"]
                if not (d["application_id"] == application_id and d["input_key"] in keys)]
            self.save(db)
            return before - len(db["application_documents"])

    # ── notifications ──
    def add_notifications(self, rows: list):
        with self._lock:
            db = self.load()
            for row in rows:
                db["notifications"].append({"id": str(uuid.uuid4()), "created_at": _now(), **row})
            self.save(db)

    def list_notifications(self, application_id: str) -> list:
        return [n for n in self.load()["notifications"] if n.get("application_id") == application_id]


def documents_by_input_key(documents: list) -> dict:
    """Group documents by input key, keeping the given (newest-first) order."""
    grouped = {}
    for doc in documents:
        grouped.setdefault(doc["input_key"], []).append(doc)
    return grouped


# ============================================================
# AUDIT LOG
# ============================================================
class AuditLog:
    """Append-only action log. The latest record wins when read back."""

    def __init__(self, store: JsonStore):
        self.store = store

    def record(self, application_id: str, action: str, meta: dict = None, actor_user_id: str = None):
        self.store.append_audit({
            "id": str(uuid.uuid4()), "application_id": application_id,
            "actor_user_id": actor_user_id, "action": action, "meta": meta or {},
            "created_at": _now(),
        })

    def latest(self, application_id: str, action: str):
        for entry in reversed(self.store.load()["audit_log"]):
            if entry.get("application_id") == application_id and entry.get("action") == action:
                return entry
        return None

    def entries(self, application_id: str) -> list:
        return [e for e in self.store.load()["audit_log"] if e.get("application_id") == application_id]


# ============================================================
# FILE STORAGE
# ============================================================
def sanitize_filename(filename: str) -> str:
    return "".join(c if c.isalnum() or c in "._-" else "_" for c in filename)


def build_document_path(user_id: str, application_id: str, input_key: str, filename: str) -> str:
    return f"{user_id}/{application_id}/{input_key}/{sanitize_filename(filename)}"


def save_uploaded_file(storage_path: str, content: bytes, upload_dir: Path = UPLOAD_DIR) -> Path:
    """Save an uploaded file under the storage bucket directory."""
    path = Path(upload_dir) / STORAGE_BUCKET / storage_path
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    return path


class StorageReader:
    """Raw document bytes from an internal storage path or an external URL."""

    def __init__(self, http: httpx.AsyncClient, upload_dir: Path = UPLOAD_DIR):
        self.http = http
        self.root = (Path(upload_dir) / STORAGE_BUCKET).resolve()

    async def read_bytes(self, storage_path: str) -> bytes:
        if storage_path.startswith(("http://", "https://")):
            response = await self.http.get(storage_path)
            if not response.is_success:
                raise RemoteCallFailure(
                    f"Failed to download external sample file ({response.status_code})",
                    response.status_code, response.text)
            return response.content

        path = (self.root / storage_path).resolve()
        if self.root not in path.parents or not path.is_file():
            raise ReviewError(f"Failed to download file from storage: {storage_path}")
        return path.read_bytes()
