"""File validation for upload requests

The validator is a pure precondition gate consulted by the upload broker
before any bytes move. It inspects the declared name, size and content type,
plus the leading bytes when they are available, and returns a verdict:
accept, accept-with-warnings or reject.

Checks run in order and stop early only on a rejection:
1. Size bounds
2. Extension / MIME allow-list
3. Byte signature
4. Filename sanitation
"""

import os
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, Iterable, List, Optional, Sequence, Tuple

from .signatures import (
    CONTENT_SIGNATURES,
    COMPATIBLE_TYPES,
    HEAD_BYTES,
    detect_content_type,
    detect_executable,
    family_of,
    types_agree,
)


# Extension → MIME types it may legitimately be declared as
EXTENSION_MIME_TYPES = {
    '.jpg': {'image/jpeg', 'image/jpg'},
    '.jpeg': {'image/jpeg', 'image/jpg'},
    '.png': {'image/png'},
    '.gif': {'image/gif'},
    '.webp': {'image/webp'},
    '.svg': {'image/svg+xml'},
    '.bmp': {'image/bmp'},
    '.tif': {'image/tiff'},
    '.tiff': {'image/tiff'},
    '.mp4': {'video/mp4'},
    '.mpeg': {'video/mpeg'},
    '.mov': {'video/quicktime'},
    '.avi': {'video/x-msvideo'},
    '.wmv': {'video/x-ms-wmv'},
    '.webm': {'video/webm'},
    '.pdf': {'application/pdf'},
    '.doc': {'application/msword'},
    '.docx': {'application/vnd.openxmlformats-officedocument.wordprocessingml.document'},
    '.xls': {'application/vnd.ms-excel'},
    '.xlsx': {'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'},
    '.ppt': {'application/vnd.ms-powerpoint'},
    '.pptx': {'application/vnd.openxmlformats-officedocument.presentationml.presentation'},
    '.txt': {'text/plain'},
    '.csv': {'text/csv'},
    '.json': {'application/json'},
    '.xml': {'application/xml', 'text/xml'},
    '.zip': {'application/zip', 'application/x-zip-compressed'},
    '.rar': {'application/x-rar-compressed'},
    '.7z': {'application/x-7z-compressed'},
    '.gz': {'application/gzip', 'application/x-gzip'},
    '.tar': {'application/x-tar'},
}

DEFAULT_ALLOWED_EXTENSIONS = frozenset(EXTENSION_MIME_TYPES)

DEFAULT_ALLOWED_MIME_TYPES = frozenset(
    mime for mimes in EXTENSION_MIME_TYPES.values() for mime in mimes
)

# Never accepted, whatever the declared type says
BLOCKED_EXTENSIONS = frozenset({
    '.exe', '.dll', '.msi', '.bat', '.cmd', '.com', '.scr', '.pif', '.vbs',
    '.js', '.jar', '.app', '.sh', '.ps1', '.py', '.php', '.elf', '.bin',
})

# Declared types for which a signature is expected in the leading bytes
SIGNED_MIME_TYPES = frozenset(
    {mime for _, _, mime in CONTENT_SIGNATURES}
    | {'image/webp', 'video/x-msvideo', 'video/mp4', 'video/quicktime'}
    | set(COMPATIBLE_TYPES)
)

MAX_FILENAME_LENGTH = 255

# File size limit (default 100MB)
MAX_FILE_SIZE = 100 * 1024 * 1024

# Batch upload limit
MAX_BATCH_FILES = 10


class Verdict(str, Enum):
    """Outcome of validating one upload candidate"""
    ACCEPT = "accept"
    ACCEPT_WITH_WARNINGS = "accept-with-warnings"
    REJECT = "reject"


@dataclass(frozen=True)
class ValidationConfig:
    """Limits and allow-lists the validator enforces."""
    max_file_size: int = MAX_FILE_SIZE
    max_files_per_batch: int = MAX_BATCH_FILES
    allowed_mime_types: FrozenSet[str] = DEFAULT_ALLOWED_MIME_TYPES
    allowed_extensions: FrozenSet[str] = DEFAULT_ALLOWED_EXTENSIONS

    @classmethod
    def from_settings(cls, settings) -> "ValidationConfig":
        return cls(
            max_file_size=settings.MAX_UPLOAD_SIZE_BYTES,
            max_files_per_batch=settings.MAX_BATCH_UPLOAD_FILES,
        )


@dataclass
class UploadCandidate:
    """What the client declared about an upload (plus leading bytes, if any)."""
    filename: str
    content_type: str
    size_bytes: int
    head: Optional[bytes] = None


@dataclass
class ValidationResult:
    """Verdict for one candidate"""
    verdict: Verdict
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    detected_type: Optional[str] = None

    @property
    def accepted(self) -> bool:
        return self.verdict != Verdict.REJECT

    @property
    def reasons(self) -> List[str]:
        """Every human-readable reason, rejections first."""
        return self.errors + self.warnings


@dataclass
class BatchValidationResult:
    """Per-candidate verdicts, or batch-level errors that void the whole batch"""
    results: List[ValidationResult] = field(default_factory=list)
    batch_errors: List[str] = field(default_factory=list)

    @property
    def aborted(self) -> bool:
        return bool(self.batch_errors)


def get_extension(filename: str) -> str:
    """Lower-cased extension including the dot ('' if none)."""
    return os.path.splitext(filename or '')[1].lower()


def is_supported_mime_type(mime_type: str, config: Optional[ValidationConfig] = None) -> bool:
    """Check if MIME type is on the allow-list

    Example:
        >>> is_supported_mime_type('application/pdf')
        True
        >>> is_supported_mime_type('application/x-msdownload')
        False
    """
    config = config or ValidationConfig()
    return (mime_type or '').lower() in config.allowed_mime_types


def validate_file_size(size_bytes: int, max_size: Optional[int] = None) -> Tuple[bool, Optional[str]]:
    """Validate file size is within limits

    Returns:
        Tuple of (is_valid, error_message)

    Example:
        >>> validate_file_size(1024)
        (True, None)
        >>> validate_file_size(0)
        (False, 'File is empty (0 bytes)')
    """
    if max_size is None:
        max_size = MAX_FILE_SIZE

    if size_bytes == 0:
        return False, "File is empty (0 bytes)"

    if size_bytes < 0:
        return False, f"File size must be positive (got {size_bytes} bytes)"

    if size_bytes > max_size:
        return False, f"File exceeds maximum size of {max_size} bytes (got {size_bytes} bytes)"

    return True, None


def validate_filename(filename: str) -> Tuple[bool, Optional[str]]:
    """Validate filename

    Validation rules:
    - Not empty
    - Max 255 characters
    - No path traversal (../, ..\\) or directory separators
    - No null bytes or control characters

    Example:
        >>> validate_filename('brief.pdf')
        (True, None)
        >>> validate_filename('../../etc/passwd')
        (False, 'Filename contains path traversal or directory separators')
    """
    if not filename or len(filename.strip()) == 0:
        return False, "Filename cannot be empty"

    if len(filename) > MAX_FILENAME_LENGTH:
        return False, f"Filename exceeds {MAX_FILENAME_LENGTH} characters (got {len(filename)})"

    if '..' in filename or '/' in filename or '\\' in filename:
        return False, "Filename contains path traversal or directory separators"

    if '\x00' in filename:
        return False, "Filename contains null bytes"

    if any(ord(c) < 32 or ord(c) == 127 for c in filename):
        return False, "Filename contains control characters"

    return True, None


def sanitize_filename(filename: str) -> str:
    """Sanitize filename for use inside a storage key

    Example:
        >>> sanitize_filename('../../order.pdf')
        'order.pdf'
        >>> sanitize_filename('order (copy).pdf')
        'order_copy_.pdf'
    """
    # Remove path components (both separators, whatever the host OS)
    filename = re.split(r'[\\/]', filename or '')[-1]

    # Replace problematic characters with underscore
    filename = re.sub(r'[^\w\s.-]', '_', filename, flags=re.ASCII)

    # Collapse multiple spaces/underscores
    filename = re.sub(r'[\s_]+', '_', filename)

    # No hidden files or dot-only names
    filename = filename.lstrip('.')
    if not filename:
        filename = 'file'

    if len(filename) > MAX_FILENAME_LENGTH:
        name, ext = os.path.splitext(filename)
        filename = name[:MAX_FILENAME_LENGTH - len(ext)] + ext

    return filename


def _check_allow_list(candidate: UploadCandidate, config: ValidationConfig, warnings: List[str]) -> Optional[str]:
    ext = get_extension(candidate.filename)
    mime = (candidate.content_type or '').lower()

    if ext in BLOCKED_EXTENSIONS:
        return f"File extension \"{ext}\" is not allowed"

    ext_allowed = ext in config.allowed_extensions
    mime_allowed = is_supported_mime_type(mime, config)
    if not ext_allowed and not mime_allowed:
        return (
            f"File type \"{mime or 'unknown'}\" with extension \"{ext or 'none'}\" is not allowed"
        )

    if ext_allowed and mime not in EXTENSION_MIME_TYPES.get(ext, {mime}):
        warnings.append(
            f"Declared content type \"{mime or 'unknown'}\" does not match extension \"{ext}\""
        )
    elif not ext_allowed:
        warnings.append(f"File extension \"{ext or 'none'}\" is not on the allow-list")
    return None


def _check_signature(candidate: UploadCandidate, warnings: List[str]) -> Tuple[Optional[str], Optional[str]]:
    """Returns (error, detected_type)."""
    head = candidate.head[:HEAD_BYTES]
    declared = (candidate.content_type or '').lower()

    executable = detect_executable(head)
    if executable:
        return (
            f"File content is a {executable}, which is never accepted "
            f"(declared as \"{declared or 'unknown'}\")",
            None,
        )

    detected = detect_content_type(head)
    if detected is None:
        if declared in SIGNED_MIME_TYPES:
            warnings.append(f"File content does not match declared type \"{declared}\"")
        return None, None

    if not types_agree(declared, detected):
        warnings.append(
            f"File content looks like {family_of(detected)} ({detected}) "
            f"but was declared as \"{declared or 'unknown'}\""
        )
    return None, detected


def validate_upload(candidate: UploadCandidate, config: Optional[ValidationConfig] = None) -> ValidationResult:
    """Validate one upload candidate.

    Example:
        >>> validate_upload(UploadCandidate('brief.pdf', 'application/pdf', 2_000_000)).verdict
        <Verdict.ACCEPT: 'accept'>
    """
    config = config or ValidationConfig()
    warnings: List[str] = []
    detected_type = None

    def reject(reason: str) -> ValidationResult:
        return ValidationResult(Verdict.REJECT, [reason], warnings, detected_type)

    # 1. Size bounds
    is_valid, error_msg = validate_file_size(candidate.size_bytes, config.max_file_size)
    if not is_valid:
        return reject(error_msg)

    # 2. Extension / MIME allow-list
    error_msg = _check_allow_list(candidate, config, warnings)
    if error_msg:
        return reject(error_msg)

    # 3. Byte signature
    if candidate.head:
        error_msg, detected_type = _check_signature(candidate, warnings)
        if error_msg:
            return reject(error_msg)

    # 4. Filename sanitation
    is_valid, error_msg = validate_filename(candidate.filename)
    if not is_valid:
        return reject(error_msg)

    verdict = Verdict.ACCEPT_WITH_WARNINGS if warnings else Verdict.ACCEPT
    return ValidationResult(verdict, [], warnings, detected_type)


def validate_batch(
    candidates: Sequence[UploadCandidate],
    config: Optional[ValidationConfig] = None,
) -> BatchValidationResult:
    """Validate a multi-file request.

    Batch-level errors (empty batch, too many files, duplicate names) abort the
    batch: no per-file verdicts are produced.
    """
    config = config or ValidationConfig()
    batch_errors: List[str] = []

    if not candidates:
        batch_errors.append("No files provided. Upload at least one file.")

    if len(candidates) > config.max_files_per_batch:
        batch_errors.append(
            f"Too many files. Maximum {config.max_files_per_batch} files per batch."
        )

    duplicates = _duplicate_names(c.filename for c in candidates)
    if duplicates:
        batch_errors.append(f"Duplicate file names detected: {', '.join(duplicates)}")

    if batch_errors:
        return BatchValidationResult(results=[], batch_errors=batch_errors)

    return BatchValidationResult(
        results=[validate_upload(candidate, config) for candidate in candidates]
    )


def _duplicate_names(names: Iterable[str]) -> List[str]:
    seen = set()
    duplicates = []
    for name in names:
        key = (name or '').lower()
        if key in seen and key not in duplicates:
            duplicates.append(key)
        seen.add(key)
    return duplicates
