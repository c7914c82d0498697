"""create artifact lifecycle tables

Revision ID: 001
Revises:
Create Date: 2026-10-17 00:00:00

Uploads, splits and split assets; the audit-relevant records detached by
upload cascades; module versions; and the audit log.
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "uploads",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(length=128), nullable=True),
        sa.Column("filename", sa.String(length=512), nullable=False),
        sa.Column("mime", sa.String(length=128), nullable=False),
        sa.Column("size", sa.Integer, nullable=False),
        sa.Column("checksum", sa.String(length=64), nullable=True),
        sa.Column("storage_key", sa.String(length=256), nullable=True),
        sa.Column("meta", sa.JSON, nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index("ix_uploads_user_id", "uploads", ["user_id"])

    op.create_table(
        "splits",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "upload_id",
            sa.String(length=36),
            sa.ForeignKey("uploads.id"),
            nullable=False,
        ),
        sa.Column(
            "status",
            sa.Enum(
                "pending", "processing", "completed", "failed",
                name="split_status",
                create_constraint=True,
            ),
            nullable=False,
            server_default="processing",
        ),
        sa.Column("metrics", sa.JSON, nullable=False),
        sa.Column("project_id", sa.String(length=128), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_splits_upload_id", "splits", ["upload_id"])
    op.create_index("ix_splits_project_id", "splits", ["project_id"])
    op.create_index("ix_splits_status", "splits", ["status"])
    op.create_index("ix_splits_created_at", "splits", ["created_at"])

    op.create_table(
        "split_assets",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "split_id",
            sa.String(length=36),
            sa.ForeignKey("splits.id"),
            nullable=False,
        ),
        sa.Column(
            "kind",
            sa.Enum(
                "json", "image-crop", "html", "css", "other",
                name="asset_kind",
                create_constraint=True,
            ),
            nullable=False,
        ),
        sa.Column("storage_key", sa.String(length=256), nullable=True),
        sa.Column("meta", sa.JSON, nullable=False),
        sa.Column("order_index", sa.Integer, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index("ix_split_assets_split_id", "split_assets", ["split_id"])
    op.create_index("ix_split_assets_kind", "split_assets", ["kind"])
    op.create_index(
        "ix_split_assets_split_order", "split_assets", ["split_id", "order_index"]
    )

    # Records that outlive their split: split_id is nulled on cascade.
    op.create_table(
        "test_runs",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "split_id", sa.String(length=36), sa.ForeignKey("splits.id"), nullable=True
        ),
        sa.Column("module_id", sa.String(length=128), nullable=True),
        sa.Column("type", sa.String(length=50), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("summary", sa.JSON, nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_test_runs_split_id", "test_runs", ["split_id"])
    op.create_index("ix_test_runs_module_id", "test_runs", ["module_id"])

    op.create_table(
        "review_feedback",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "split_id", sa.String(length=36), sa.ForeignKey("splits.id"), nullable=True
        ),
        sa.Column("module_id", sa.String(length=128), nullable=True),
        sa.Column("reviewer", sa.String(length=128), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("comments", sa.Text, nullable=False),
        sa.Column("ratings", sa.JSON, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_review_feedback_split_id", "review_feedback", ["split_id"])
    op.create_index("ix_review_feedback_module_id", "review_feedback", ["module_id"])

    op.create_table(
        "validation_records",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "split_id", sa.String(length=36), sa.ForeignKey("splits.id"), nullable=True
        ),
        sa.Column("validator", sa.String(length=64), nullable=False),
        sa.Column("passed", sa.Boolean, nullable=False),
        sa.Column("findings", sa.JSON, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_validation_records_split_id", "validation_records", ["split_id"]
    )

    op.create_table(
        "module_versions",
        sa.Column("version_id", sa.String(length=64), primary_key=True),
        sa.Column("module_id", sa.String(length=128), nullable=False),
        sa.Column("sequence", sa.Integer, nullable=False),
        sa.Column("version_number", sa.String(length=32), nullable=False),
        sa.Column("package_id", sa.String(length=256), nullable=False),
        sa.Column("deployment_id", sa.String(length=128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_by", sa.String(length=128), nullable=False),
        sa.Column(
            "status",
            sa.Enum(
                "draft", "packaged", "deployed", "active", "inactive", "archived",
                name="module_version_status",
                create_constraint=True,
            ),
            nullable=False,
            server_default="packaged",
        ),
        sa.Column("change_summary", sa.Text, nullable=False),
        sa.Column("change_log", sa.JSON, nullable=False),
        sa.Column("module_name", sa.String(length=256), nullable=False),
        sa.Column("description", sa.Text, nullable=False),
        sa.Column("file_count", sa.Integer, nullable=False),
        sa.Column("total_size_bytes", sa.Integer, nullable=False),
        sa.Column("checksum", sa.String(length=64), nullable=False),
        sa.Column("files", sa.JSON, nullable=False),
        sa.Column("deployment_info", sa.JSON, nullable=True),
        sa.Column("rollback_info", sa.JSON, nullable=True),
        sa.UniqueConstraint(
            "module_id", "sequence", name="uq_module_versions_sequence"
        ),
    )
    op.create_index("ix_module_versions_module_id", "module_versions", ["module_id"])
    op.create_index("ix_module_versions_checksum", "module_versions", ["checksum"])
    op.create_index(
        "ix_module_versions_module_status", "module_versions", ["module_id", "status"]
    )
    op.create_index("ix_module_versions_created_at", "module_versions", ["created_at"])

    op.create_table(
        "audit_log",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "ts",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "actor_kind",
            sa.Enum(
                "human", "agent", "system",
                name="audit_actor_kind",
                create_constraint=True,
            ),
            nullable=False,
        ),
        sa.Column("actor_id", sa.String(length=128), nullable=False),
        sa.Column(
            "action",
            sa.Enum(
                "created", "updated", "status_changed", "deleted",
                "rolled_back", "archived",
                name="audit_action",
                create_constraint=True,
            ),
            nullable=False,
        ),
        sa.Column("entity_kind", sa.String(length=50), nullable=False),
        sa.Column("entity_id", sa.String(length=128), nullable=False),
        sa.Column("before", sa.JSON, nullable=True),
        sa.Column("after", sa.JSON, nullable=True),
        sa.Column("note", sa.Text, nullable=True),
    )
    op.create_index("ix_audit_log_ts", "audit_log", ["ts"])
    op.create_index("ix_audit_log_actor_id", "audit_log", ["actor_id"])
    op.create_index("ix_audit_log_action", "audit_log", ["action"])
    op.create_index("ix_audit_log_entity_kind", "audit_log", ["entity_kind"])
    op.create_index("ix_audit_log_entity_id", "audit_log", ["entity_id"])
    op.create_index("ix_audit_log_entity", "audit_log", ["entity_kind", "entity_id"])
    op.create_index(
        "ix_audit_log_entity_ts", "audit_log", ["entity_kind", "entity_id", "ts"]
    )


def downgrade() -> None:
    op.drop_table("audit_log")
    op.drop_table("module_versions")
    op.drop_table("validation_records")
    op.drop_table("review_feedback")
    op.drop_table("test_runs")
    op.drop_table("split_assets")
    op.drop_table("splits")
    op.drop_table("uploads")

    # Drop PostgreSQL enum types (no-op for SQLite)
    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        for enum_name in (
            "audit_action",
            "audit_actor_kind",
            "module_version_status",
            "asset_kind",
            "split_status",
        ):
            op.execute(f"DROP TYPE IF EXISTS {enum_name}")
