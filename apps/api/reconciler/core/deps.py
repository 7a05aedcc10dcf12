"""Request-scoped dependencies."""

from typing import Generator

from sqlalchemy.orm import Session

from reconciler.db.session import SessionLocal


def get_db() -> Generator[Session, None, None]:
    """One session per request, closed once the response is sent."""
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def get_extraction_engine():
    # Imported lazily: building the engine pulls in the provider stack
    from reconciler.services.extraction_service import build_default_engine

    return build_default_engine()
