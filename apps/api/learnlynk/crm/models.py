from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from learnlynk.core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


TASK_TYPES = ("call", "email", "review")
TASK_STATUSES = ("pending", "in_progress", "completed", "cancelled")


class Lead(Base):
    __tablename__ = "leads"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    # Weak reference to users.id: deleting a user does not touch their leads.
    owner_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    stage: Mapped[str] = mapped_column(String(32), nullable=False, default="new", server_default="new")
    first_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    email: Mapped[str | None] = mapped_column(Text, nullable=True)
    phone: Mapped[str | None] = mapped_column(Text, nullable=True)
    source: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    applications: Mapped[list[Application]] = relationship(
        "Application",
        back_populates="lead",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("idx_leads_tenant_id", "tenant_id"),
        Index("idx_leads_tenant_owner", "tenant_id", "owner_id"),
        Index("idx_leads_tenant_stage", "tenant_id", "stage"),
        Index("idx_leads_created_at", "created_at"),
    )


class Application(Base):
    __tablename__ = "applications"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    lead_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("leads.id", ondelete="CASCADE"),
        nullable=False,
    )
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending", server_default="pending")
    program: Mapped[str | None] = mapped_column(Text, nullable=True)
    counselor_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    decision: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    lead: Mapped[Lead] = relationship("Lead", back_populates="applications")
    tasks: Mapped[list[Task]] = relationship(
        "Task",
        back_populates="application",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("idx_applications_tenant_id", "tenant_id"),
        Index("idx_applications_lead_id", "lead_id"),
        Index("idx_applications_tenant_lead", "tenant_id", "lead_id"),
        Index("idx_applications_tenant_status", "tenant_id", "status"),
    )


class Task(Base):
    __tablename__ = "tasks"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    application_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("applications.id", ondelete="CASCADE"),
        nullable=False,
    )
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    assigned_to: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending", server_default="pending")
    due_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    application: Mapped[Application] = relationship("Application", back_populates="tasks")

    __table_args__ = (
        CheckConstraint("type IN ('call', 'email', 'review')", name="ck_tasks_type"),
        CheckConstraint("due_at >= created_at", name="ck_tasks_due_at_after_created"),
        Index("idx_tasks_tenant_id", "tenant_id"),
        Index("idx_tasks_application_id", "application_id"),
        Index(
            "idx_tasks_due_status",
            "due_at",
            "status",
            postgresql_where=text("status != 'completed'"),
            sqlite_where=text("status != 'completed'"),
        ),
        Index("idx_tasks_assigned", "tenant_id", "assigned_to", "status"),
        Index(
            "idx_tasks_overdue",
            "due_at",
            postgresql_where=text("status NOT IN ('completed', 'cancelled')"),
            sqlite_where=text("status NOT IN ('completed', 'cancelled')"),
        ),
    )
