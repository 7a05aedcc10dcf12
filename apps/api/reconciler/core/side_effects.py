"""Critical and non-critical write wrappers."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from reconciler.core.errors import PersistenceError

logger = logging.getLogger(__name__)


@contextmanager
def non_critical(db: Session, operation: str, **log_context) -> Iterator[None]:
    """
    Run a best-effort write. Failures are logged and swallowed.

    The block must commit its own work. On failure the session is rolled
    back, so a non-critical block must run before critical writes start or
    after they are committed.
    """
    try:
        yield
    except Exception:
        db.rollback()
        logger.exception("Non-critical step failed: %s", operation, extra=log_context)


@contextmanager
def critical(db: Session, operation: str, **log_context) -> Iterator[None]:
    """
    Run a write whose failure must reach the caller.

    Database errors roll back the session and are re-raised as
    PersistenceError so the external orchestrator sees a failure and retries.
    """
    try:
        yield
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Critical step failed: %s: %s", operation, exc, extra=log_context)
        raise PersistenceError(f"{operation} failed") from exc
