"""FastAPI dependency injection — database sessions and service factories."""
from __future__ import annotations

from collections.abc import Generator

from fastapi import Depends
from sqlalchemy.orm import Session

from identity_api.core.settings import Settings, get_settings
from identity_api.db.session import get_session_factory
from identity_api.identity.resolver import IdentityResolver


def get_db() -> Generator[Session, None, None]:
    """Yield a SQLAlchemy session; commit on success, rollback on error."""
    db = get_session_factory()()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_identity_resolver(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> IdentityResolver:
    """Return an IdentityResolver bound to the current DB session."""
    return IdentityResolver(db, audit_enabled=settings.audit_enabled)
