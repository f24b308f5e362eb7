"""init schema

Revision ID: 20261018_0001
Revises:
Create Date: 2026-10-18 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    job_status = sa.Enum(
        "pending", "awaiting_auth", "authorized", "populating", "completed", "failed", name="job_status"
    )
    entity_type = sa.Enum("user", "company", name="entity_type")

    op.create_table(
        "provisioning_jobs",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("status", job_status, nullable=False),
        sa.Column("entity_type", entity_type, nullable=False),
        sa.Column("entity_id", sa.String(length=128), nullable=False),
        sa.Column("request_spec", sa.JSON(), nullable=False),
        sa.Column("store_domain", sa.String(length=255), nullable=True),
        sa.Column("external_shop_id", sa.String(length=64), nullable=True),
        sa.Column("install_url", sa.Text(), nullable=True),
        sa.Column("storefront_password", sa.String(length=255), nullable=True),
        sa.Column("access_token_encrypted", sa.Text(), nullable=True),
        sa.Column("generated_content", sa.JSON(), nullable=True),
        sa.Column("created_store_url", sa.String(length=255), nullable=True),
        sa.Column("created_store_admin_url", sa.String(length=255), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("population_claim_id", sa.String(length=36), nullable=True),
        sa.Column("population_claimed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_provisioning_jobs_entity", "provisioning_jobs", ["entity_type", "entity_id"])
    op.create_index("ix_provisioning_jobs_status_created", "provisioning_jobs", ["status", "created_at"])

    op.create_table(
        "job_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("job_id", sa.Uuid(), sa.ForeignKey("provisioning_jobs.id", ondelete="CASCADE"), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_job_logs_job_id_id", "job_logs", ["job_id", "id"])

    op.create_table(
        "job_artifacts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("job_id", sa.Uuid(), sa.ForeignKey("provisioning_jobs.id", ondelete="CASCADE"), nullable=False),
        sa.Column("key", sa.String(length=120), nullable=False),
        sa.Column("external_id", sa.String(length=64), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("job_id", "key", name="uq_job_artifacts_job_key"),
    )

    op.create_table(
        "tenant_plans",
        sa.Column("entity_type", sa.Enum("user", "company", name="entity_type", create_type=False), primary_key=True),
        sa.Column("entity_id", sa.String(length=128), primary_key=True),
        sa.Column("site_limit", sa.Integer(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("tenant_plans")
    op.drop_table("job_artifacts")
    op.drop_index("ix_job_logs_job_id_id", table_name="job_logs")
    op.drop_table("job_logs")
    op.drop_index("ix_provisioning_jobs_status_created", table_name="provisioning_jobs")
    op.drop_index("ix_provisioning_jobs_entity", table_name="provisioning_jobs")
    op.drop_table("provisioning_jobs")

    bind = op.get_bind()
    sa.Enum(name="entity_type").drop(bind, checkfirst=True)
    sa.Enum(name="job_status").drop(bind, checkfirst=True)
