"""
VendorGate — Configuration & Constants
Environment variables, feature flags, paths and review engine settings.
"""
import os
from dataclasses import dataclass, field
from pathlib import Path

# ============================================================
# PATHS
# ============================================================
BASE_DIR = Path(__file__).parent.parent.parent
DATA_DIR = Path(os.environ.get("DATA_DIR", BASE_DIR / "data"))
UPLOAD_DIR = DATA_DIR / "uploads"
DOCS_DIR = Path(os.environ.get("DOCS_DIR", BASE_DIR / "documentation"))

DB_PATH = DATA_DIR / "db.json"

# ============================================================
# FEATURE FLAGS
# ============================================================
PERSIST_DATA = os.environ.get("PERSIST_DATA", "true").lower() == "true"
DEMO_MODE = os.environ.get("DEMO_MODE", "false").lower() == "true"

# ============================================================
# AUTH
# ============================================================
JWT_SECRET = os.environ.get("JWT_SECRET", os.urandom(32).hex())
JWT_ALGORITHM = "HS256"
JWT_EXPIRY_HOURS = 72

# ============================================================
# REVIEW ENGINE
# ============================================================
WORKFLOW_SCHEMA_CANDIDATES = (
    Path("workflow.json"),
    Path("agents") / "workflow.json",
)
INTEGRATION_DOC = Path("agents") / "review-engine-api.md"
DEFAULT_AUTH_HEADER = "x-service-key"
DEFAULT_HTTP_TIMEOUT = 30.0
STORAGE_BUCKET = "vendor-docs"

# Application lifecycle stage that may not be reviewed yet
DRAFT_STATUS = "draft"
REVIEWED_STATUS = "reviewed"


@dataclass(frozen=True)
class ReviewSettings:
    """Explicit configuration handed to each review component."""
    service_key: str = ""
    base_url: str = ""
    workflow_id: str = ""
    docs_dir: Path = DOCS_DIR
    http_timeout: float = DEFAULT_HTTP_TIMEOUT
    schema_candidates: tuple = field(default=WORKFLOW_SCHEMA_CANDIDATES)

    @property
    def schema_paths(self) -> list:
        return [self.docs_dir / p for p in self.schema_candidates]

    @property
    def integration_doc_path(self) -> Path:
        return self.docs_dir / INTEGRATION_DOC


def load_settings(env=None) -> ReviewSettings:
    """Build settings from the process environment (or a given mapping)."""
    env = os.environ if env is None else env
    return ReviewSettings(
        service_key=env.get("REVIEW_ENGINE_SERVICE_KEY", ""),
        base_url=env.get("REVIEW_ENGINE_BASE_URL", ""),
        workflow_id=env.get("REVIEW_ENGINE_WORKFLOW_ID", ""),
        docs_dir=Path(env.get("DOCS_DIR", DOCS_DIR)),
        http_timeout=float(env.get("REVIEW_ENGINE_TIMEOUT", DEFAULT_HTTP_TIMEOUT)),
    )


# ============================================================
# VERSION
# ============================================================
VERSION = "1.0.0"
