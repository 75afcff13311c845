"""
VendorGate — Compliance Work Items
Walks normalized review results for status-like fields and turns every
non-passing one into a work item for the vendor to address.
"""
import json
from dataclasses import asdict, dataclass

STATUS_KEY_HINTS = ("status", "validation", "compliance")
PASS_LIKE = ("valid", "compliant", "approved", "pass", "authentic")

REMEDIATION_ACTION = "Update and re-submit supporting documents or contact details."
MANUAL_REVIEW_ACTION = "No explicit pass/fail statuses detected; perform manual compliance review."
NEEDS_REVIEW = "needs review"
MAX_NOTIFICATION_ITEMS = 6


@dataclass(frozen=True)
class WorkItem:
    path: str
    status: str
    action: str

    def to_dict(self) -> dict:
        return asdict(self)


def key_looks_like_status(key: str) -> bool:
    lower = key.lower()
    return any(hint in lower for hint in STATUS_KEY_HINTS)


def value_passes(raw: str) -> bool:
    lower = raw.lower()
    return any(word in lower for word in PASS_LIKE)


def _status_text(value) -> str:
    if isinstance(value, str):
        return value.strip()
    return json.dumps(value if value is not None else "")


def _walk(value, path: list, out: list):
    if isinstance(value, list):
        for i, entry in enumerate(value):
            _walk(entry, path + [str(i)], out)
    elif isinstance(value, dict):
        for key, nested in value.items():
            next_path = path + [str(key)]
            if key_looks_like_status(str(key)):
                status = _status_text(nested)
                if not status or not value_passes(status):
                    out.append(WorkItem(".".join(next_path), status or NEEDS_REVIEW,
                                        REMEDIATION_ACTION))
            _walk(nested, next_path, out)
    return out


def extract_work_items(results) -> list:
    """Non-passing findings in a result tree. A tree with nothing to classify
    still yields one 'overall' item asking for manual review."""
    if results is None:
        return []
    items = _walk(results, [], [])
    if not items:
        return [WorkItem("overall", NEEDS_REVIEW, MANUAL_REVIEW_ACTION)]
    return items


# ============================================================
# NOTIFICATION SUMMARIES
# ============================================================
def build_vendor_notification(items: list) -> str:
    lines = [f"{i}. {item.path}: {item.status}"
             for i, item in enumerate(items[:MAX_NOTIFICATION_ITEMS], start=1)]
    return "Please address the following compliance items:\n" + "\n".join(lines)


def build_admin_notification(items: list) -> str:
    return f"Compliance review generated {len(items)} follow-up item(s)."
