# consentlink/core/transaction.py
"""
Single-transaction helper for service operations.

A state transition and its audit entry commit together or not at all.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.orm import Session


@contextmanager
def atomic(db: Session) -> Iterator[Session]:
    """
    Usage:
        with atomic(db):
            ...guarded update...
            record_event(db, ...)
    """
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
