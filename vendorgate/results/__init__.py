"""
VendorGate — Result Normalization

The review engine is not consistent about where the result map lives in a
response, nor about wrapping individual fields as {value, type} envelopes.
normalize_results() turns any of those shapes into a flat key → value map.

Known limitation: when any field is an envelope, every envelope-shaped field is
unwrapped and the rest pass through as-is. A raw value that merely looks like
an envelope cannot be told apart from a real one.
"""
import json

# Unwrap paths, most specific first
RESULT_PATHS = (
    ("results", "data", "jobResultsPayloadSchema"),
    ("results", "data"),
    ("results", "jobResultsPayloadSchema"),
    ("results",),
    ("jobResultsPayloadSchema",),
    ("data",),
)

PASS_VALUES = {"valid", "compliant", "approved", "pass", "authentic", "approval"}
ISSUE_HINTS = ("mismatch", "flagged", "invalid", "reject", "error", "failed", "disapprove", "review")


def _dig(payload: dict, path: tuple):
    node = payload
    for key in path:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node if isinstance(node, dict) else None


def unwrap_results(payload: dict) -> dict:
    for path in RESULT_PATHS:
        found = _dig(payload, path)
        if found is not None:
            return found
    return payload


def is_envelope(value) -> bool:
    return isinstance(value, dict) and "value" in value and isinstance(value.get("type"), str)


def unwrap_envelopes(values: dict) -> dict:
    """Swap {value, type} envelopes for their value. Maps with no envelope at
    all are returned untouched."""
    if not any(is_envelope(v) for v in values.values()):
        return values
    return {k: v["value"] if is_envelope(v) else v for k, v in values.items()}


def normalize_results(payload) -> dict:
    if not isinstance(payload, dict):
        return {}
    return unwrap_envelopes(unwrap_results(payload))


# ============================================================
# DISPLAY ROWS
# ============================================================
def pretty_label(key: str) -> str:
    return " ".join(w[:1].upper() + w[1:] for w in key.replace("_", " ").split())


def display_value(value) -> str:
    if value is None:
        return "-"
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return json.dumps(value, indent=2)


def classify_value(key: str, value) -> str:
    label = key.lower()
    text = value.lower().strip() if isinstance(value, str) else ""
    if ("status" in label or "validation" in label) and text:
        if text in PASS_VALUES:
            return "pass"
        if any(hint in text for hint in ISSUE_HINTS):
            return "issue"
        return "neutral"
    if "reason" in label and text:
        return "issue"
    return "neutral"


def label_results(result_schema: dict, results) -> list:
    """Rows {key, label, value, tone}: schema keys in schema order, then any
    extra keys the engine returned."""
    if not results:
        return []
    normalized = normalize_results(results)
    rows = []
    for key, variable in result_schema.items():
        value = normalized.get(key)
        rows.append({"key": key, "label": variable.display_name or pretty_label(key),
                     "value": display_value(value), "tone": classify_value(key, value)})
    for key, value in normalized.items():
        if key in result_schema:
            continue
        rows.append({"key": key, "label": pretty_label(key),
                     "value": display_value(value), "tone": classify_value(key, value)})
    return rows
