"""Client-side helpers for talking to ReviewFlow"""

from .transfer import TransferCancelled, TransferFailed, UploadTransfer

__all__ = ["TransferCancelled", "TransferFailed", "UploadTransfer"]
