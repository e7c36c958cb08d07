"""Create festivals, access log, visitor stats and audit tables.

Revision ID: a7c1e2f3d4b5
Revises:
Create Date: 2026-10-18
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "a7c1e2f3d4b5"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "festivals",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("code", sa.String(16), nullable=False),
        sa.Column("event_name", sa.String(255), nullable=False),
        sa.Column("organiser", sa.String(255), nullable=True),
        sa.Column("location", sa.String(255), nullable=True),
        sa.Column("event_start_date", sa.Date(), nullable=True),
        sa.Column("event_end_date", sa.Date(), nullable=True),
        sa.Column("requires_password", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("viewer_secret", sa.String(255), nullable=True),
        sa.Column("viewer_secret_rotated_at", sa.DateTime(), nullable=True),
        sa.Column("admin_secret", sa.String(255), nullable=True),
        sa.Column("admin_secret_rotated_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("code"),
    )

    op.create_table(
        "access_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("festival_id", sa.Integer(), nullable=False),
        sa.Column("visitor_name", sa.String(255), nullable=False),
        sa.Column("access_method", sa.String(32), nullable=False),
        sa.Column("password_used", sa.String(255), nullable=True),
        sa.Column("accessed_at", sa.DateTime(), nullable=False),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("session_id", sa.String(64), nullable=True),
        sa.ForeignKeyConstraint(["festival_id"], ["festivals.id"], ondelete="CASCADE"),
    )
    op.create_index("idx_access_logs_festival_accessed", "access_logs", ["festival_id", "accessed_at"])
    op.create_index("idx_access_logs_festival_visitor", "access_logs", ["festival_id", "visitor_name"])

    op.create_table(
        "festival_visitor_stats",
        sa.Column("festival_id", sa.Integer(), primary_key=True),
        sa.Column("unique_visitors", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_visits", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_visitor_name", sa.String(255), nullable=True),
        sa.Column("last_visit_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["festival_id"], ["festivals.id"], ondelete="CASCADE"),
    )

    op.create_table(
        "audit_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("request_id", sa.String(64), nullable=True),
        sa.Column("festival_id", sa.Integer(), nullable=True),
        sa.Column("actor_kind", sa.String(32), nullable=True),
        sa.Column("action", sa.String(128), nullable=False),
        sa.Column("entity_type", sa.String(128), nullable=True),
        sa.Column("entity_id", sa.String(128), nullable=True),
        sa.Column("metadata_json", sa.Text(), nullable=True),
        sa.Column("client_ip", sa.String(64), nullable=True),
        sa.ForeignKeyConstraint(["festival_id"], ["festivals.id"], ondelete="SET NULL"),
    )
    op.create_index("idx_audit_events_festival", "audit_events", ["festival_id", "created_at"])


def downgrade() -> None:
    op.drop_index("idx_audit_events_festival", table_name="audit_events")
    op.drop_table("audit_events")
    op.drop_table("festival_visitor_stats")
    op.drop_index("idx_access_logs_festival_visitor", table_name="access_logs")
    op.drop_index("idx_access_logs_festival_accessed", table_name="access_logs")
    op.drop_table("access_logs")
    op.drop_table("festivals")
