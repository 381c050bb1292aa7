"""add dual-write config and diff tables

Revision ID: dw_2026_001
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID


revision = "dw_2026_001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "system_configs",
        sa.Column("key", sa.String(255), primary_key=True),
        sa.Column("value", sa.JSON(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_table(
        "dual_write_diffs",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("api_endpoint", sa.String(255), nullable=False),
        sa.Column("operation", sa.String(255), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("request_id", sa.String(255), nullable=True),
        sa.Column("result_a", sa.JSON(), nullable=True),
        sa.Column("result_b", sa.JSON(), nullable=True),
        sa.Column("diff", sa.JSON(), nullable=False, server_default=sa.text("'[]'")),
        sa.Column("severity", sa.String(16), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("severity IN ('info', 'warning', 'error')", name="ck_dual_write_diffs_severity"),
    )
    op.create_index("ix_dual_write_diffs_severity_created", "dual_write_diffs", ["severity", "created_at"])
    op.create_index("ix_dual_write_diffs_operation", "dual_write_diffs", ["api_endpoint", "operation"])
    op.execute(
        "INSERT INTO system_configs (key, value) VALUES "
        "('dual_write_feature_flags', '{\"enableDualWrite\": false, \"enableSupabasePrimary\": false}') "
        "ON CONFLICT (key) DO NOTHING"
    )


def downgrade():
    op.drop_index("ix_dual_write_diffs_operation", table_name="dual_write_diffs")
    op.drop_index("ix_dual_write_diffs_severity_created", table_name="dual_write_diffs")
    op.drop_table("dual_write_diffs")
    op.drop_table("system_configs")
