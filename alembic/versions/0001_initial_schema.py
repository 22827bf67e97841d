"""Initial Task Ledger schema."""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create the ledger table and its enums."""
    bind = op.get_bind()

    taskledgertype = sa.Enum(
        "AI_ACTION",
        "SYSTEM_TASK",
        "HUMAN_TASK",
        "APPROVAL",
        name="taskledgertype",
    )
    taskledgercategory = sa.Enum(
        "BILLING",
        "SCHEDULING",
        "MESSAGING",
        "MARKETING",
        "OPERATIONS",
        name="taskledgercategory",
    )
    taskledgerstatus = sa.Enum(
        "PENDING",
        "SCHEDULED",
        "IN_PROGRESS",
        "COMPLETED",
        "FAILED",
        "CANCELLED",
        "UNDONE",
        name="taskledgerstatus",
    )

    taskledgertype.create(bind, checkfirst=True)
    taskledgercategory.create(bind, checkfirst=True)
    taskledgerstatus.create(bind, checkfirst=True)

    op.create_table(
        "task_ledger_entries",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column(
            "type",
            postgresql.ENUM(name="taskledgertype", create_type=False),
            nullable=False,
        ),
        sa.Column(
            "category",
            postgresql.ENUM(name="taskledgercategory", create_type=False),
            nullable=False,
        ),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="50"),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("icon", sa.String(length=64), nullable=True),
        sa.Column("entity_type", sa.String(length=64), nullable=True),
        sa.Column("entity_id", sa.String(length=64), nullable=True),
        sa.Column("action_type", sa.String(length=100), nullable=True),
        sa.Column("action_endpoint", sa.String(length=255), nullable=True),
        sa.Column("payload", postgresql.JSONB, nullable=True),
        sa.Column("idempotency_key", sa.String(length=255), nullable=False),
        sa.Column("trace_id", sa.String(length=64), nullable=False),
        sa.Column("scheduled_for", sa.DateTime(timezone=True), nullable=True),
        sa.Column("undo_window_mins", sa.Integer(), nullable=True),
        sa.Column("undo_endpoint", sa.String(length=255), nullable=True),
        sa.Column("undo_payload", postgresql.JSONB, nullable=True),
        sa.Column(
            "status",
            postgresql.ENUM(name="taskledgerstatus", create_type=False),
            nullable=False,
            server_default="PENDING",
        ),
        sa.Column("executed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("executed_by", sa.String(length=255), nullable=True),
        sa.Column("undone_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("undone_by", sa.String(length=255), nullable=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("result", postgresql.JSONB, nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_retries", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("ai_confidence", sa.Float(), nullable=True),
        sa.Column("ai_reasoning", sa.Text(), nullable=True),
        sa.Column("ai_model", sa.String(length=100), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("idempotency_key", name="uq_task_ledger_idempotency"),
    )
    op.create_index(
        "idx_task_ledger_tenant_status_priority",
        "task_ledger_entries",
        ["tenant_id", "status", "priority", "created_at"],
    )
    op.create_index(
        "idx_task_ledger_tenant_type_status",
        "task_ledger_entries",
        ["tenant_id", "type", "status"],
    )
    op.create_index(
        "idx_task_ledger_entity",
        "task_ledger_entries",
        ["tenant_id", "entity_type", "entity_id"],
    )
    op.create_index(
        "idx_task_ledger_scheduled_for",
        "task_ledger_entries",
        ["tenant_id", "scheduled_for"],
    )


def downgrade() -> None:
    """Drop the ledger table and enums."""
    op.drop_index("idx_task_ledger_scheduled_for", table_name="task_ledger_entries")
    op.drop_index("idx_task_ledger_entity", table_name="task_ledger_entries")
    op.drop_index("idx_task_ledger_tenant_type_status", table_name="task_ledger_entries")
    op.drop_index("idx_task_ledger_tenant_status_priority", table_name="task_ledger_entries")
    op.drop_table("task_ledger_entries")

    bind = op.get_bind()
    sa.Enum(name="taskledgerstatus").drop(bind, checkfirst=True)
    sa.Enum(name="taskledgercategory").drop(bind, checkfirst=True)
    sa.Enum(name="taskledgertype").drop(bind, checkfirst=True)
