"""Append-only per-file transition ledger"""

from .ledger import TransitionLedger

__all__ = ["TransitionLedger"]
