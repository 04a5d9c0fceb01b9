from __future__ import annotations

from typing import Generic, TypeVar

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from identity_api.db import models

ModelT = TypeVar("ModelT")


class BaseRepository(Generic[ModelT]):
    model: type[ModelT]

    def __init__(self, db: Session):
        self.db = db

    def create(self, **kwargs) -> ModelT:
        entity = self.model(**kwargs)
        self.db.add(entity)
        self.db.flush()
        return entity

    def get(self, entity_id) -> ModelT | None:
        return self.db.get(self.model, entity_id)


class ContactRepository(BaseRepository[models.Contact]):
    """Store contract used by the identity resolver.

    Every read excludes soft-deleted rows and locks what it returns
    (``SELECT ... FOR UPDATE``) on backends that support row locks, so a
    concurrent resolution touching the same cluster waits for this
    transaction to finish.  SQLite silently drops the locking clause.
    """

    model = models.Contact

    def _live(self):
        return (
            select(models.Contact)
            .where(models.Contact.deleted_at.is_(None))
            .order_by(models.Contact.created_at, models.Contact.id)
            .with_for_update()
        )

    def find_matching(self, email: str | None, phone_number: str | None) -> list[models.Contact]:
        """Return live contacts sharing *email* or *phone_number*."""
        conditions = []
        if email is not None:
            conditions.append(models.Contact.email == email)
        if phone_number is not None:
            conditions.append(models.Contact.phone_number == phone_number)
        if not conditions:
            return []
        stmt = self._live().where(or_(*conditions))
        return list(self.db.execute(stmt).scalars().all())

    def find_by_id(self, contact_id: int) -> models.Contact | None:
        stmt = self._live().where(models.Contact.id == contact_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def find_linked_to(self, primary_id: int) -> list[models.Contact]:
        stmt = self._live().where(models.Contact.linked_id == primary_id)
        return list(self.db.execute(stmt).scalars().all())

    def update_by_id(self, contact_id: int, **fields) -> None:
        stmt = (
            update(models.Contact)
            .where(models.Contact.id == contact_id)
            .values(**fields)
            .execution_options(synchronize_session="fetch")
        )
        self.db.execute(stmt)
        self.db.flush()


class AuditEventRepository(BaseRepository[models.AuditEvent]):
    model = models.AuditEvent
