"""Initial schema: tenants, users, tradeshows, captures, CRM credentials.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps(with_updated: bool = True) -> list[sa.Column]:
    columns = [sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now())]
    if with_updated:
        columns.append(sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True))
    return columns


def _tenant_fk() -> sa.Column:
    return sa.Column(
        "tenant_id",
        sa.Integer(),
        sa.ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
    )


def upgrade() -> None:
    op.create_table(
        "tenants",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("subdomain", sa.String(63), unique=True, nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("default_country", sa.String(100), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _tenant_fk(),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("role", sa.String(50), server_default=sa.text("'rep'"), nullable=False),
        sa.Column("rep_code", sa.String(100), nullable=True),
        sa.Column("dynamics_user_id", sa.String(64), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        *_timestamps(with_updated=False),
        sa.UniqueConstraint("tenant_id", "email", name="uq_users_tenant_email"),
        sa.UniqueConstraint("tenant_id", "rep_code", name="uq_users_tenant_rep_code"),
    )

    op.create_table(
        "tradeshows",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _tenant_fk(),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("slug", sa.String(100), unique=True, nullable=False),
        sa.Column("default_country", sa.String(100), nullable=True),
        sa.Column("ac_tag_id", sa.String(32), nullable=True),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        *_timestamps(with_updated=False),
    )
    op.create_index("ix_tradeshows_tenant_id", "tradeshows", ["tenant_id"])

    op.create_table(
        "badge_photos",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _tenant_fk(),
        sa.Column("contact_email", sa.String(255), nullable=False),
        sa.Column("contact_name", sa.String(200), nullable=False),
        sa.Column("filename", sa.String(255), nullable=False),
        sa.Column("mime_type", sa.String(100), nullable=False),
        sa.Column("file_size", sa.Integer(), nullable=False),
        sa.Column("image_data", sa.LargeBinary(), nullable=False),
        sa.Column("form_source", sa.String(100), nullable=False),
        *_timestamps(with_updated=False),
    )

    op.create_table(
        "lead_captures",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _tenant_fk(),
        sa.Column(
            "tradeshow_id",
            sa.Integer(),
            sa.ForeignKey("tradeshows.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("rep_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("company", sa.String(200), nullable=True),
        sa.Column("country", sa.String(100), nullable=True),
        sa.Column("comments", sa.Text(), nullable=True),
        sa.Column("form_details", sa.JSON(), nullable=True),
        sa.Column(
            "badge_photo_id",
            sa.Integer(),
            sa.ForeignKey("badge_photos.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("ac_contact_id", sa.String(64), nullable=True),
        sa.Column("dynamics_lead_id", sa.String(64), nullable=True),
        *_timestamps(with_updated=False),
    )
    op.create_index("ix_lead_captures_tenant_email", "lead_captures", ["tenant_id", "email"])

    op.create_table(
        "tenant_crm_connections",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _tenant_fk(),
        sa.Column("crm_type", sa.String(50), nullable=False),
        sa.Column("api_url", sa.String(500), nullable=True),
        sa.Column("api_key", sa.String(500), nullable=True),
        sa.Column("client_id", sa.String(255), nullable=True),
        sa.Column("client_secret", sa.String(500), nullable=True),
        sa.Column("tenant_id_crm", sa.String(255), nullable=True),
        sa.Column("instance_url", sa.String(500), nullable=True),
        sa.Column("field_mappings", sa.JSON(), server_default=sa.text("'{}'"), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("is_connected", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("sync_enabled", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("sync_status", sa.String(50), nullable=True),
        sa.Column("last_sync_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("tenant_id", "crm_type", name="uq_crm_connections_tenant_type"),
    )

    op.create_table(
        "tradeshow_credentials",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "tradeshow_id",
            sa.Integer(),
            sa.ForeignKey("tradeshows.id", ondelete="CASCADE"),
            unique=True,
            nullable=False,
        ),
        sa.Column("ac_api_url", sa.String(500), nullable=True),
        sa.Column("ac_api_key", sa.String(500), nullable=True),
        sa.Column("ac_rep_field_id", sa.String(32), nullable=True),
        sa.Column("ac_country_field_id", sa.String(32), nullable=True),
        sa.Column("ac_company_field_id", sa.String(32), nullable=True),
        sa.Column("ac_comments_field_id", sa.String(32), nullable=True),
        sa.Column("d365_tenant_id", sa.String(255), nullable=True),
        sa.Column("d365_client_id", sa.String(255), nullable=True),
        sa.Column("d365_client_secret", sa.String(500), nullable=True),
        sa.Column("d365_instance_url", sa.String(500), nullable=True),
        sa.Column("lead_topic_format", sa.String(255), nullable=True),
        sa.Column("created_by", sa.Integer(), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _tenant_fk(),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("action", sa.String(100), nullable=False),
        sa.Column("entity_type", sa.String(100), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=True),
        sa.Column("changes", sa.JSON(), nullable=True),
        *_timestamps(with_updated=False),
    )
    op.create_index("ix_audit_logs_tenant_created", "audit_logs", ["tenant_id", "created_at"])


def downgrade() -> None:
    op.drop_index("ix_audit_logs_tenant_created", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_table("tradeshow_credentials")
    op.drop_table("tenant_crm_connections")
    op.drop_index("ix_lead_captures_tenant_email", table_name="lead_captures")
    op.drop_table("lead_captures")
    op.drop_table("badge_photos")
    op.drop_index("ix_tradeshows_tenant_id", table_name="tradeshows")
    op.drop_table("tradeshows")
    op.drop_table("users")
    op.drop_table("tenants")
