"""Files domain module - upload validation, upload status, storage port"""

from .upload_status import UploadStatus, can_transition, ALLOWED_TRANSITIONS
from .validation import (
    BatchValidationResult,
    UploadCandidate,
    ValidationConfig,
    ValidationResult,
    Verdict,
    is_supported_mime_type,
    validate_file_size,
    validate_filename,
    sanitize_filename,
    validate_upload,
    validate_batch,
    MAX_FILE_SIZE,
    MAX_BATCH_FILES,
)

__all__ = [
    "UploadStatus",
    "can_transition",
    "ALLOWED_TRANSITIONS",
    "BatchValidationResult",
    "UploadCandidate",
    "ValidationConfig",
    "ValidationResult",
    "Verdict",
    "is_supported_mime_type",
    "validate_file_size",
    "validate_filename",
    "sanitize_filename",
    "validate_upload",
    "validate_batch",
    "MAX_FILE_SIZE",
    "MAX_BATCH_FILES",
]
