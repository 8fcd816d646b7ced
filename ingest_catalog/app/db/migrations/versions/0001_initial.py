"""initial catalog schema

Revision ID: 0001_initial
Revises: 
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "collections",
        sa.Column("cumulus_id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("version", sa.String(length=255), nullable=False),
        sa.Column("meta", sa.JSON(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("name", "version", name="uq_collections_name_version"),
    )

    op.create_table(
        "providers",
        sa.Column("cumulus_id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=255), nullable=False, unique=True),
        sa.Column("protocol", sa.String(length=32), nullable=False),
        sa.Column("host", sa.String(length=255), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "async_operations",
        sa.Column("cumulus_id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("id", sa.String(length=64), nullable=False, unique=True),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("operation_type", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("output", sa.JSON(), nullable=True),
        sa.Column("task_arn", sa.String(length=255), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_async_operations_operation_type", "async_operations", ["operation_type"])
    op.create_index("ix_async_operations_status", "async_operations", ["status"])

    op.create_table(
        "executions",
        sa.Column("cumulus_id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("arn", sa.String(length=512), nullable=False, unique=True),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("url", sa.Text(), nullable=True),
        sa.Column("workflow_name", sa.String(length=255), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column(
            "parent_cumulus_id",
            sa.Integer(),
            sa.ForeignKey("executions.cumulus_id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "async_operation_cumulus_id",
            sa.Integer(),
            sa.ForeignKey("async_operations.cumulus_id"),
            nullable=True,
        ),
        sa.Column(
            "collection_cumulus_id",
            sa.Integer(),
            sa.ForeignKey("collections.cumulus_id"),
            nullable=True,
        ),
        sa.Column("original_payload", sa.JSON(), nullable=True),
        sa.Column("final_payload", sa.JSON(), nullable=True),
        sa.Column("error", sa.JSON(), nullable=True),
        sa.Column("duration", sa.Float(), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_executions_workflow_name", "executions", ["workflow_name"])
    op.create_index("ix_executions_status", "executions", ["status"])

    op.create_table(
        "granules",
        sa.Column("cumulus_id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("granule_id", sa.String(length=255), nullable=False),
        sa.Column(
            "collection_cumulus_id",
            sa.Integer(),
            sa.ForeignKey("collections.cumulus_id"),
            nullable=False,
        ),
        sa.Column(
            "provider_cumulus_id",
            sa.Integer(),
            sa.ForeignKey("providers.cumulus_id"),
            nullable=True,
        ),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("published", sa.Boolean(), nullable=False),
        sa.Column("cmr_link", sa.Text(), nullable=True),
        sa.Column("original_payload", sa.JSON(), nullable=True),
        sa.Column("final_payload", sa.JSON(), nullable=True),
        sa.Column("error", sa.JSON(), nullable=True),
        sa.Column("duration", sa.Float(), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("granule_id", "collection_cumulus_id", name="uq_granules_granule_collection"),
    )
    op.create_index("ix_granules_granule_id", "granules", ["granule_id"])
    op.create_index("ix_granules_status", "granules", ["status"])
    op.create_index("ix_granules_status_updated", "granules", ["status", "updated_at"])

    op.create_table(
        "files",
        sa.Column("cumulus_id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "granule_cumulus_id",
            sa.Integer(),
            sa.ForeignKey("granules.cumulus_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("bucket", sa.String(length=255), nullable=False),
        sa.Column("key", sa.Text(), nullable=False),
        sa.Column("file_name", sa.String(length=255), nullable=True),
        sa.Column("file_size", sa.Integer(), nullable=True),
        sa.Column("checksum_type", sa.String(length=32), nullable=True),
        sa.Column("checksum_value", sa.String(length=255), nullable=True),
        sa.Column("type", sa.String(length=64), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("bucket", "key", name="uq_files_bucket_key"),
    )
    op.create_index("ix_files_granule_cumulus_id", "files", ["granule_cumulus_id"])

    op.create_table(
        "granules_executions",
        sa.Column(
            "granule_cumulus_id",
            sa.Integer(),
            sa.ForeignKey("granules.cumulus_id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "execution_cumulus_id",
            sa.Integer(),
            sa.ForeignKey("executions.cumulus_id", ondelete="CASCADE"),
            primary_key=True,
        ),
    )
    op.create_index("ix_granules_executions_execution", "granules_executions", ["execution_cumulus_id"])

    op.create_table(
        "rules",
        sa.Column("cumulus_id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=255), nullable=False, unique=True),
        sa.Column("workflow", sa.String(length=255), nullable=False),
        sa.Column("type", sa.String(length=32), nullable=False),
        sa.Column("value", sa.Text(), nullable=True),
        sa.Column("arn", sa.String(length=512), nullable=True),
        sa.Column("log_event_arn", sa.String(length=512), nullable=True),
        sa.Column("enabled", sa.Boolean(), nullable=False),
        sa.Column("collection_cumulus_id", sa.Integer(), sa.ForeignKey("collections.cumulus_id"), nullable=True),
        sa.Column("provider_cumulus_id", sa.Integer(), sa.ForeignKey("providers.cumulus_id"), nullable=True),
        sa.Column("meta", sa.JSON(), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("queue_url", sa.Text(), nullable=True),
        sa.Column("execution_name_prefix", sa.String(length=255), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_rules_type", "rules", ["type"])


def downgrade() -> None:
    op.drop_table("rules")
    op.drop_table("granules_executions")
    op.drop_table("files")
    op.drop_table("granules")
    op.drop_table("executions")
    op.drop_table("async_operations")
    op.drop_table("providers")
    op.drop_table("collections")
