"""Error taxonomy for the ingestion and review-workflow core.

Every error raised across a component boundary derives from ReviewFlowError
and carries a stable error code plus the HTTP status the API layer renders it
with. Codes are part of the HTTP contract; do not rename them.
"""

from typing import Any, Dict, List, Optional


class ReviewFlowError(Exception):
    """Base class for all domain and infrastructure errors."""

    code: str = "ReviewFlowError"
    status_code: int = 500
    retryable: bool = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class InvalidUpload(ReviewFlowError):
    """Validation rejected the upload request (user-correctable)."""

    code = "InvalidUpload"
    status_code = 400

    def __init__(self, message: str, reasons: Optional[List[str]] = None):
        self.reasons = list(reasons or [])
        super().__init__(message, {"reasons": self.reasons} if self.reasons else None)


class UploadIncomplete(ReviewFlowError):
    """Confirm was called before the object landed in storage."""

    code = "UploadIncomplete"
    status_code = 409
    retryable = True


class NotFound(ReviewFlowError):
    """Unknown id, or an id that belongs to another tenant.

    The two cases are deliberately indistinguishable to callers.
    """

    code = "NotFound"
    status_code = 404


class InvalidTransition(ReviewFlowError):
    """Action is not legal for the file's current stage."""

    code = "InvalidTransition"
    status_code = 409


class InvalidStageConfiguration(ReviewFlowError):
    """Administrative change would break the tenant's stage invariants."""

    code = "InvalidStageConfiguration"
    status_code = 409


class Busy(ReviewFlowError):
    """Another transition holds the per-file lock. Safe to retry with backoff."""

    code = "Busy"
    status_code = 409
    retryable = True


class StorageUnavailable(ReviewFlowError):
    """Object store failed or could not be reached."""

    code = "StorageUnavailable"
    status_code = 503


class PersistenceUnavailable(ReviewFlowError):
    """Relational store failed or could not be reached."""

    code = "PersistenceUnavailable"
    status_code = 503


class LedgerIntegrityError(ReviewFlowError):
    """The file row and its transition ledger disagree about the current stage."""

    code = "LedgerIntegrityError"
    status_code = 500
