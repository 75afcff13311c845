"""
VendorGate — Error Taxonomy
Every failure the review core can raise. Each carries the HTTP status the
route layer answers with.
"""
import re


class ReviewError(Exception):
    status_code = 400
    fallback = "retry"

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code


class ConfigurationError(ReviewError):
    """Schema or integration unresolvable until redeployed."""
    fallback = "manual"


class SchemaNotFoundError(ConfigurationError):
    status_code = 500


class SchemaInvalidError(ConfigurationError):
    status_code = 500


class BackendUnavailable(ReviewError):
    """Capability disabled; the caller should offer manual result entry."""
    fallback = "manual"


class InvalidState(ReviewError):
    pass


class MissingRequiredInput(ReviewError):
    pass


class ApplicationNotFound(ReviewError):
    status_code = 404


class RemoteCallFailure(ReviewError):
    """Non-2xx from the review engine or a presigned upload target."""

    def __init__(self, message: str, status_code: int = 500, body: str = ""):
        super().__init__(message, status_code)
        self.body = body


_STATUS_IN_MESSAGE = re.compile(r"\((\d{3})\)")


def status_from_message(message: str, default: int = 500) -> int:
    """Pull an HTTP status like '(404)' out of an error message."""
    m = _STATUS_IN_MESSAGE.search(message or "")
    if not m:
        return default
    return int(m.group(1))
