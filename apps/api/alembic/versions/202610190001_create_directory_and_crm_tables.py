"""create directory and crm tables

Revision ID: 202610190001
Revises:
Create Date: 2026-10-19 00:01:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610190001"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("tenant_id", sa.Uuid(), nullable=False),
        sa.Column("role", sa.String(length=32), nullable=False),
        sa.Column("email", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("role IN ('admin', 'counselor')", name="ck_users_role"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )
    op.create_index("idx_users_tenant", "users", ["tenant_id"], unique=False)

    op.create_table(
        "teams",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("tenant_id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_teams_tenant", "teams", ["tenant_id"], unique=False)

    op.create_table(
        "user_teams",
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("team_id", sa.Uuid(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["team_id"], ["teams.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("user_id", "team_id"),
    )
    op.create_index("idx_user_teams_user", "user_teams", ["user_id"], unique=False)
    op.create_index("idx_user_teams_team", "user_teams", ["team_id"], unique=False)

    op.create_table(
        "leads",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("tenant_id", sa.Uuid(), nullable=False),
        sa.Column("owner_id", sa.Uuid(), nullable=False),
        sa.Column("stage", sa.String(length=32), nullable=False, server_default="new"),
        sa.Column("first_name", sa.Text(), nullable=True),
        sa.Column("last_name", sa.Text(), nullable=True),
        sa.Column("email", sa.Text(), nullable=True),
        sa.Column("phone", sa.Text(), nullable=True),
        sa.Column("source", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_leads_tenant_id", "leads", ["tenant_id"], unique=False)
    op.create_index("idx_leads_tenant_owner", "leads", ["tenant_id", "owner_id"], unique=False)
    op.create_index("idx_leads_tenant_stage", "leads", ["tenant_id", "stage"], unique=False)
    op.create_index("idx_leads_created_at", "leads", ["created_at"], unique=False)

    op.create_table(
        "applications",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("tenant_id", sa.Uuid(), nullable=False),
        sa.Column("lead_id", sa.Uuid(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="pending"),
        sa.Column("program", sa.Text(), nullable=True),
        sa.Column("counselor_id", sa.Uuid(), nullable=True),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("decision", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["lead_id"], ["leads.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_applications_tenant_id", "applications", ["tenant_id"], unique=False)
    op.create_index("idx_applications_lead_id", "applications", ["lead_id"], unique=False)
    op.create_index("idx_applications_tenant_lead", "applications", ["tenant_id", "lead_id"], unique=False)
    op.create_index("idx_applications_tenant_status", "applications", ["tenant_id", "status"], unique=False)

    op.create_table(
        "tasks",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("tenant_id", sa.Uuid(), nullable=False),
        sa.Column("application_id", sa.Uuid(), nullable=False),
        sa.Column("type", sa.String(length=16), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("assigned_to", sa.Uuid(), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="pending"),
        sa.Column("due_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("type IN ('call', 'email', 'review')", name="ck_tasks_type"),
        sa.CheckConstraint("due_at >= created_at", name="ck_tasks_due_at_after_created"),
        sa.ForeignKeyConstraint(["application_id"], ["applications.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_tasks_tenant_id", "tasks", ["tenant_id"], unique=False)
    op.create_index("idx_tasks_application_id", "tasks", ["application_id"], unique=False)
    op.create_index(
        "idx_tasks_due_status",
        "tasks",
        ["due_at", "status"],
        unique=False,
        postgresql_where=sa.text("status != 'completed'"),
        sqlite_where=sa.text("status != 'completed'"),
    )
    op.create_index("idx_tasks_assigned", "tasks", ["tenant_id", "assigned_to", "status"], unique=False)
    op.create_index(
        "idx_tasks_overdue",
        "tasks",
        ["due_at"],
        unique=False,
        postgresql_where=sa.text("status NOT IN ('completed', 'cancelled')"),
        sqlite_where=sa.text("status NOT IN ('completed', 'cancelled')"),
    )


def downgrade() -> None:
    op.drop_index("idx_tasks_overdue", table_name="tasks")
    op.drop_index("idx_tasks_assigned", table_name="tasks")
    op.drop_index("idx_tasks_due_status", table_name="tasks")
    op.drop_index("idx_tasks_application_id", table_name="tasks")
    op.drop_index("idx_tasks_tenant_id", table_name="tasks")
    op.drop_table("tasks")

    op.drop_index("idx_applications_tenant_status", table_name="applications")
    op.drop_index("idx_applications_tenant_lead", table_name="applications")
    op.drop_index("idx_applications_lead_id", table_name="applications")
    op.drop_index("idx_applications_tenant_id", table_name="applications")
    op.drop_table("applications")

    op.drop_index("idx_leads_created_at", table_name="leads")
    op.drop_index("idx_leads_tenant_stage", table_name="leads")
    op.drop_index("idx_leads_tenant_owner", table_name="leads")
    op.drop_index("idx_leads_tenant_id", table_name="leads")
    op.drop_table("leads")

    op.drop_index("idx_user_teams_team", table_name="user_teams")
    op.drop_index("idx_user_teams_user", table_name="user_teams")
    op.drop_table("user_teams")

    op.drop_index("idx_teams_tenant", table_name="teams")
    op.drop_table("teams")

    op.drop_index("idx_users_tenant", table_name="users")
    op.drop_table("users")
