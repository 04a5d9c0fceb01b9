from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import JSON, Boolean, CheckConstraint, DateTime, ForeignKey, Index, Integer, String, func
from sqlalchemy import text as sql_text
from sqlalchemy.orm import Mapped, mapped_column

from identity_api.db.base import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LinkPrecedence(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"


class Contact(Base):
    __tablename__ = "contacts"
    __table_args__ = (
        CheckConstraint("email IS NOT NULL OR phone_number IS NOT NULL", name="ck_contacts_email_or_phone"),
        CheckConstraint("link_precedence IN ('primary', 'secondary')", name="ck_contacts_link_precedence"),
        CheckConstraint(
            "(link_precedence = 'primary' AND linked_id IS NULL) OR "
            "(link_precedence = 'secondary' AND linked_id IS NOT NULL)",
            name="ck_contacts_linked_id_matches_precedence",
        ),
        Index("ix_contacts_linked_id_deleted_at", "linked_id", "deleted_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True, index=True)
    phone_number: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    linked_id: Mapped[int | None] = mapped_column(ForeignKey("contacts.id"), nullable=True)
    link_precedence: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=LinkPrecedence.PRIMARY.value,
        server_default=sql_text("'primary'"),
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now(), onupdate=utcnow
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def is_primary(self) -> bool:
        return self.link_precedence == LinkPrecedence.PRIMARY.value

    def __repr__(self) -> str:
        return f"<Contact id={self.id} precedence={self.link_precedence} linked_id={self.linked_id}>"


class AuditEvent(Base):
    """Append-only record of identity link mutations.

    Written in the same transaction as the mutation it describes.
    """

    __tablename__ = "audit_events"

    audit_event_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    contact_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    primary_contact_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    actor: Mapped[str] = mapped_column(String(128), nullable=False, default="system", server_default=sql_text("'system'"))
    detail: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )
    immutable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=sql_text("true"))
