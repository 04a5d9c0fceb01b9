"""Initial schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19

"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "0001_initial"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "contacts",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("email", sa.String(length=320), nullable=True),
        sa.Column("phone_number", sa.String(length=64), nullable=True),
        sa.Column("linked_id", sa.Integer(), nullable=True),
        sa.Column("link_precedence", sa.String(length=16), server_default=sa.text("'primary'"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("email IS NOT NULL OR phone_number IS NOT NULL", name="ck_contacts_email_or_phone"),
        sa.CheckConstraint("link_precedence IN ('primary', 'secondary')", name="ck_contacts_link_precedence"),
        sa.CheckConstraint(
            "(link_precedence = 'primary' AND linked_id IS NULL) OR "
            "(link_precedence = 'secondary' AND linked_id IS NOT NULL)",
            name="ck_contacts_linked_id_matches_precedence",
        ),
        sa.ForeignKeyConstraint(["linked_id"], ["contacts.id"]),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "audit_events",
        sa.Column("audit_event_id", sa.Uuid(), nullable=False),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("contact_id", sa.Integer(), nullable=True),
        sa.Column("primary_contact_id", sa.Integer(), nullable=True),
        sa.Column("actor", sa.String(length=128), server_default=sa.text("'system'"), nullable=False),
        sa.Column("detail", sa.JSON(), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("immutable", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.PrimaryKeyConstraint("audit_event_id"),
    )

    op.create_index("ix_contacts_email", "contacts", ["email"])
    op.create_index("ix_contacts_phone_number", "contacts", ["phone_number"])
    op.create_index("ix_contacts_linked_id_deleted_at", "contacts", ["linked_id", "deleted_at"])
    op.create_index("ix_audit_events_contact_id", "audit_events", ["contact_id"])


def downgrade() -> None:
    op.drop_index("ix_audit_events_contact_id", table_name="audit_events")
    op.drop_index("ix_contacts_linked_id_deleted_at", table_name="contacts")
    op.drop_index("ix_contacts_phone_number", table_name="contacts")
    op.drop_index("ix_contacts_email", table_name="contacts")
    op.drop_table("audit_events")
    op.drop_table("contacts")
