"""initial schema — companies, phone sessions, list records, outbound messages

Revision ID: 001_initial
Revises: None
Create Date: 2026-10-19
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB, UUID

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # --- companies ---
    op.create_table(
        "companies",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("name", sa.Text(), nullable=False, unique=True),
        sa.Column("api_key_hash", sa.Text(), nullable=False, unique=True),
        sa.Column("settings", JSONB(), nullable=False, server_default="{}"),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()")),
    )

    # --- phone_sessions ---
    op.create_table(
        "phone_sessions",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("company_id", UUID(as_uuid=True), sa.ForeignKey("companies.id"), nullable=False),
        sa.Column("phone_number", sa.String(20), nullable=False),
        sa.Column("state", sa.Text(), nullable=False, server_default="welcome"),
        sa.Column("context", JSONB(), nullable=False, server_default="{}"),
        sa.Column("last_message_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("session_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("session_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()")),
    )
    op.create_index("ix_phone_sessions_company_id", "phone_sessions", ["company_id"])
    op.create_index("ix_phone_sessions_phone_number", "phone_sessions", ["phone_number"])
    op.create_index("ix_phone_sessions_last_message_at", "phone_sessions", ["last_message_at"])
    op.create_index("ix_phone_sessions_session_expires_at", "phone_sessions", ["session_expires_at"])
    op.create_index(
        "uq_phone_sessions_active_company_phone",
        "phone_sessions",
        ["company_id", "phone_number"],
        unique=True,
        postgresql_where=sa.text("active"),
    )

    # --- list_records ---
    op.create_table(
        "list_records",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("session_id", UUID(as_uuid=True), sa.ForeignKey("phone_sessions.id"), nullable=False),
        sa.Column("list_id", sa.String(255), nullable=False),
        sa.Column("status", sa.Text(), nullable=False, server_default="pending"),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expired_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("metadata", JSONB(), nullable=False, server_default="{}"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()")),
        sa.UniqueConstraint("session_id", "list_id", name="uq_list_records_session_list"),
    )
    op.create_index("ix_list_records_session_id", "list_records", ["session_id"])
    op.create_index("ix_list_records_list_id", "list_records", ["list_id"])
    op.create_index("ix_list_records_status", "list_records", ["status"])
    op.create_index("ix_list_records_created_at", "list_records", ["created_at"])

    # --- outbound_messages ---
    op.create_table(
        "outbound_messages",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("company_id", UUID(as_uuid=True), sa.ForeignKey("companies.id"), nullable=False),
        sa.Column("to_phone_number", sa.String(20), nullable=False),
        sa.Column("kind", sa.Text(), nullable=False),
        sa.Column("template_name", sa.Text(), nullable=True),
        sa.Column("parameters", JSONB(), nullable=True),
        sa.Column("body", sa.Text(), nullable=True),
        sa.Column("list_id", sa.String(255), nullable=True),
        sa.Column("provider_message_id", sa.String(128), nullable=True, unique=True),
        sa.Column("status", sa.Text(), nullable=False, server_default="pending"),
        sa.Column("error_code", sa.Text(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("pricing", JSONB(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()")),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_outbound_messages_company_id", "outbound_messages", ["company_id"])
    op.create_index("ix_outbound_messages_to_phone_number", "outbound_messages", ["to_phone_number"])
    op.create_index("ix_outbound_messages_list_id", "outbound_messages", ["list_id"])
    op.create_index("ix_outbound_messages_status", "outbound_messages", ["status"])


def downgrade() -> None:
    op.drop_table("outbound_messages")
    op.drop_table("list_records")
    op.drop_table("phone_sessions")
    op.drop_table("companies")
