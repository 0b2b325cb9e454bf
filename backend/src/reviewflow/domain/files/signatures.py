"""Magic-number signatures for byte-level content sniffing.

Only the leading bytes of an upload are inspected (HEAD_BYTES is enough for
every signature below).
"""

from typing import Optional

HEAD_BYTES = 32

# (offset, signature, mime type); first match wins
CONTENT_SIGNATURES = [
    (0, b"\xff\xd8\xff", "image/jpeg"),
    (0, b"\x89PNG\r\n\x1a\n", "image/png"),
    (0, b"GIF87a", "image/gif"),
    (0, b"GIF89a", "image/gif"),
    (0, b"II*\x00", "image/tiff"),
    (0, b"MM\x00*", "image/tiff"),
    (0, b"%PDF", "application/pdf"),
    (0, b"PK\x03\x04", "application/zip"),
    (0, b"PK\x05\x06", "application/zip"),
    (0, b"PK\x07\x08", "application/zip"),
    (0, b"\x1f\x8b", "application/gzip"),
    (0, b"7z\xbc\xaf\x27\x1c", "application/x-7z-compressed"),
    (0, b"Rar!\x1a\x07", "application/x-rar-compressed"),
    (0, b"\x1a\x45\xdf\xa3", "video/webm"),
    (0, b"\x00\x00\x01\xba", "video/mpeg"),
    (0, b"\x00\x00\x01\xb3", "video/mpeg"),
    (0, b"BM", "image/bmp"),
]

# Signatures that are rejected no matter what type was declared
EXECUTABLE_SIGNATURES = [
    (b"MZ", "Windows executable"),
    (b"\x7fELF", "ELF executable"),
    (b"\xfe\xed\xfa\xce", "Mach-O executable"),
    (b"\xfe\xed\xfa\xcf", "Mach-O executable"),
    (b"\xce\xfa\xed\xfe", "Mach-O executable"),
    (b"\xcf\xfa\xed\xfe", "Mach-O executable"),
    (b"\xca\xfe\xba\xbe", "Java class or universal binary"),
    (b"#!", "script with interpreter line"),
]

# Types whose content may legitimately sniff as another type
COMPATIBLE_TYPES = {
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": {"application/zip"},
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": {"application/zip"},
    "application/vnd.openxmlformats-officedocument.presentationml.presentation": {"application/zip"},
    "application/x-zip-compressed": {"application/zip"},
    "application/x-gzip": {"application/gzip"},
    "image/jpg": {"image/jpeg"},
    "video/x-matroska": {"video/webm"},
}


def detect_executable(head: bytes) -> Optional[str]:
    """Return a label if `head` starts like an executable or script."""
    for signature, label in EXECUTABLE_SIGNATURES:
        if head.startswith(signature):
            return label
    return None


def detect_content_type(head: bytes) -> Optional[str]:
    """Infer a MIME type from the leading bytes, or None if unrecognised.

    Example:
        >>> detect_content_type(b"%PDF-1.7")
        'application/pdf'
    """
    if len(head) >= 12 and head[:4] == b"RIFF":
        if head[8:12] == b"WEBP":
            return "image/webp"
        if head[8:12] == b"AVI ":
            return "video/x-msvideo"
        return None

    # ISO base media: 4-byte box size, then "ftyp" and a brand
    if len(head) >= 12 and head[4:8] == b"ftyp":
        if head[8:12] == b"qt  ":
            return "video/quicktime"
        return "video/mp4"

    for offset, signature, mime_type in CONTENT_SIGNATURES:
        if head[offset:offset + len(signature)] == signature:
            return mime_type
    return None


def types_agree(declared: str, detected: str) -> bool:
    """Whether sniffed content is consistent with the declared type."""
    if declared == detected:
        return True
    return detected in COMPATIBLE_TYPES.get(declared, set())


def family_of(mime_type: str) -> str:
    """Coarse type family used in human-readable reasons."""
    if mime_type.startswith("image/"):
        return "image"
    if mime_type.startswith("video/"):
        return "video"
    if mime_type == "application/pdf":
        return "pdf"
    if mime_type in (
        "application/zip",
        "application/gzip",
        "application/x-7z-compressed",
        "application/x-rar-compressed",
        "application/x-tar",
    ):
        return "archive"
    return "document"
