from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from identity_api.core.settings import get_settings

_engine = None
_session_factory = None


def get_engine():
    global _engine
    if _engine is None:
        settings = get_settings()
        options = {"pool_pre_ping": True}
        if settings.database_isolation_level:
            options["isolation_level"] = settings.database_isolation_level.upper()
        _engine = create_engine(settings.database_url, **options)
    return _engine


def get_session_factory():
    global _session_factory
    if _session_factory is None:
        _session_factory = sessionmaker(
            bind=get_engine(),
            autocommit=False,
            autoflush=False,
            class_=Session,
        )
    return _session_factory


@contextmanager
def transaction(db: Session) -> Iterator[Session]:
    """Run a block atomically: commit on success, roll back on any error."""
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
