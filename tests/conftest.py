import os
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from identity_api.db.base import Base
from identity_api.db.models import Contact

BASE_TIME = datetime(2023, 4, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture()
def db_engine():
    """In-memory SQLite engine with all tables created."""
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def db_session(db_engine):
    SessionLocal = sessionmaker(bind=db_engine, autocommit=False, autoflush=False)
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture()
def make_contact(db_session: Session):
    """Insert a contact directly, bypassing the resolver.

    ``minutes`` offsets ``created_at`` from a fixed base time so tests
    control which primary is oldest.
    """

    def _make(
        email: str | None = None,
        phone_number: str | None = None,
        *,
        linked_to: Contact | None = None,
        minutes: int = 0,
        deleted: bool = False,
    ) -> Contact:
        created_at = BASE_TIME + timedelta(minutes=minutes)
        contact = Contact(
            email=email,
            phone_number=phone_number,
            link_precedence="secondary" if linked_to is not None else "primary",
            linked_id=linked_to.id if linked_to is not None else None,
            created_at=created_at,
            updated_at=created_at,
            deleted_at=created_at if deleted else None,
        )
        db_session.add(contact)
        db_session.commit()
        return contact

    return _make


@pytest.fixture()
def client(db_session: Session, monkeypatch: pytest.MonkeyPatch) -> TestClient:
    """TestClient with get_db overridden to use the in-memory session."""
    monkeypatch.setenv("DATABASE_URL", "sqlite+pysqlite:///:memory:")

    from identity_api.core.settings import get_settings

    get_settings.cache_clear()

    from identity_api.api.deps import get_db
    from identity_api.main import app

    def _override_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_db
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
    app.dependency_overrides.clear()

    get_settings.cache_clear()
    os.environ.pop("DATABASE_URL", None)
