"""UploadStatus state machine for the ingestion side of a file's lifecycle

State flow:
    (new) → PENDING → CONFIRMED

A file is PENDING from the moment a write grant is issued until the upload
broker has seen the object in storage. Only CONFIRMED files take part in the
review workflow.
"""

from enum import Enum
from typing import Dict, List, Optional


class UploadStatus(str, Enum):
    """Upload sub-state of a File"""
    PENDING = "PENDING"        # Write grant issued, bytes not yet observed
    CONFIRMED = "CONFIRMED"    # Object verified in storage (terminal)


ALLOWED_TRANSITIONS: Dict[Optional[UploadStatus], List[UploadStatus]] = {
    None: [UploadStatus.PENDING],
    UploadStatus.PENDING: [UploadStatus.CONFIRMED],
    UploadStatus.CONFIRMED: [],
}


def can_transition(from_status: Optional[UploadStatus], to_status: UploadStatus) -> bool:
    """Validate if an upload status transition is allowed

    Example:
        >>> can_transition(UploadStatus.PENDING, UploadStatus.CONFIRMED)
        True
        >>> can_transition(UploadStatus.CONFIRMED, UploadStatus.PENDING)
        False
    """
    return to_status in ALLOWED_TRANSITIONS.get(from_status, [])
