from __future__ import annotations

import uuid
from datetime import date, datetime, time, timezone
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from learnlynk import audit, events
from learnlynk.crm.models import Application, Lead, Task, utcnow
from learnlynk.crm.repositories import ApplicationRepository, LeadRepository, TaskRepository
from learnlynk.crm.schemas import (
    ApplicationCreate,
    ApplicationRead,
    ApplicationUpdate,
    LeadCreate,
    LeadRead,
    LeadUpdate,
    TaskRead,
    TaskUpdate,
)
from learnlynk.directory.service import load_team_ids
from learnlynk.platform.security.context import AuthContext
from learnlynk.platform.security.errors import AuthorizationError
from learnlynk.platform.security.policies import ApplicationRow, LeadRow, ResourceAction


def _actor(ctx: AuthContext) -> str:
    return str(ctx.user_id) if ctx.user_id is not None else "anonymous"


def _tenant(value: uuid.UUID | None) -> str | None:
    return str(value) if value is not None else None


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _publish(event_type: str, payload: dict[str, Any], tenant_id: uuid.UUID) -> None:
    events.publish(events.build_envelope(event_type, payload, tenant_id=str(tenant_id)))


def resolve_zone(tz_name: str) -> ZoneInfo:
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise HTTPException(status_code=422, detail="unknown timezone") from exc


def day_bounds(day: date, zone: ZoneInfo) -> tuple[datetime, datetime]:
    """Return the UTC instants of the first and last microsecond of ``day`` in ``zone``."""

    start = datetime.combine(day, time.min, tzinfo=zone)
    end = datetime.combine(day, time.max, tzinfo=zone)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


class LeadService:
    entity_type = "crm.lead"

    def __init__(self, repository: LeadRepository | None = None) -> None:
        self.repository = repository or LeadRepository()

    def list_leads(
        self,
        session: Session,
        ctx: AuthContext,
        *,
        stage: str | None = None,
        owner_id: uuid.UUID | None = None,
    ) -> list[LeadRead]:
        criteria = []
        if stage:
            criteria.append(Lead.stage == stage)
        if owner_id is not None:
            criteria.append(Lead.owner_id == owner_id)
        return [LeadRead.model_validate(lead) for lead in self.repository.list(session, ctx, *criteria)]

    def get_lead(self, session: Session, ctx: AuthContext, lead_id: uuid.UUID) -> LeadRead:
        return LeadRead.model_validate(self._require(session, ctx, lead_id, ResourceAction.READ))

    def create_lead(self, session: Session, ctx: AuthContext, dto: LeadCreate) -> LeadRead:
        owner_id = dto.owner_id or ctx.user_id
        owner_teams = load_team_ids(session, [owner_id]).get(owner_id, frozenset()) if owner_id else frozenset()
        row = LeadRow(tenant_id=ctx.tenant_id, owner_id=owner_id, owner_team_ids=owner_teams)  # type: ignore[arg-type]
        try:
            self.repository.validate_write_security(row, ctx, action=ResourceAction.INSERT)
        except AuthorizationError as exc:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="forbidden") from exc

        lead = Lead(
            tenant_id=ctx.tenant_id,
            owner_id=owner_id,
            stage=dto.stage,
            first_name=dto.first_name,
            last_name=dto.last_name,
            email=str(dto.email) if dto.email is not None else None,
            phone=dto.phone,
            source=dto.source,
            notes=dto.notes,
        )
        session.add(lead)
        session.flush()
        lead_read = LeadRead.model_validate(lead)

        audit.record(
            actor_user_id=_actor(ctx),
            entity_type=self.entity_type,
            entity_id=str(lead.id),
            action="create",
            before=None,
            after=lead_read.model_dump(mode="json"),
            tenant_id=_tenant(lead.tenant_id),
            correlation_id=ctx.correlation_id,
        )
        _publish("crm.lead.created", {"lead_id": str(lead.id), "stage": lead.stage}, lead.tenant_id)
        session.commit()
        return lead_read

    def update_lead(self, session: Session, ctx: AuthContext, lead_id: uuid.UUID, dto: LeadUpdate) -> LeadRead:
        lead = self._require(session, ctx, lead_id, ResourceAction.UPDATE)
        payload = dto.model_dump(exclude_unset=True)
        try:
            self.repository.validate_write_security(
                self.repository.to_row(session, lead),
                ctx,
                action=ResourceAction.UPDATE,
                payload=payload,
            )
        except AuthorizationError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="lead not found") from exc

        payload.pop("tenant_id", None)
        if "email" in payload:
            payload["email"] = str(payload["email"]) if payload["email"] is not None else None
        if "owner_id" in payload and payload["owner_id"] is None:
            payload.pop("owner_id")
        if not payload:
            return LeadRead.model_validate(lead)

        before = LeadRead.model_validate(lead).model_dump(mode="json")
        for key, value in payload.items():
            setattr(lead, key, value)
        lead.updated_at = utcnow()
        session.flush()
        lead_read = LeadRead.model_validate(lead)

        audit.record(
            actor_user_id=_actor(ctx),
            entity_type=self.entity_type,
            entity_id=str(lead.id),
            action="update",
            before=before,
            after=lead_read.model_dump(mode="json"),
            tenant_id=_tenant(lead.tenant_id),
            correlation_id=ctx.correlation_id,
        )
        _publish("crm.lead.updated", {"lead_id": str(lead.id), "changed_fields": sorted(payload.keys())}, lead.tenant_id)
        session.commit()
        return lead_read

    def delete_lead(self, session: Session, ctx: AuthContext, lead_id: uuid.UUID) -> None:
        lead = self._require(session, ctx, lead_id, ResourceAction.DELETE)
        before = LeadRead.model_validate(lead).model_dump(mode="json")
        tenant_id = lead.tenant_id
        session.delete(lead)
        session.flush()

        audit.record(
            actor_user_id=_actor(ctx),
            entity_type=self.entity_type,
            entity_id=str(lead_id),
            action="delete",
            before=before,
            after=None,
            tenant_id=_tenant(tenant_id),
            correlation_id=ctx.correlation_id,
        )
        _publish("crm.lead.deleted", {"lead_id": str(lead_id)}, tenant_id)
        session.commit()

    def _require(self, session: Session, ctx: AuthContext, lead_id: uuid.UUID, action: ResourceAction) -> Lead:
        lead = self.repository.get(session, ctx, lead_id, action)
        if lead is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="lead not found")
        return lead


class ApplicationService:
    entity_type = "crm.application"

    def __init__(self, repository: ApplicationRepository | None = None) -> None:
        self.repository = repository or ApplicationRepository()
        self.leads = LeadRepository()

    def list_applications(
        self,
        session: Session,
        ctx: AuthContext,
        *,
        lead_id: uuid.UUID | None = None,
        status_filter: str | None = None,
    ) -> list[ApplicationRead]:
        criteria = []
        if lead_id is not None:
            criteria.append(Application.lead_id == lead_id)
        if status_filter:
            criteria.append(Application.status == status_filter)
        return [ApplicationRead.model_validate(item) for item in self.repository.list(session, ctx, *criteria)]

    def get_application(self, session: Session, ctx: AuthContext, application_id: uuid.UUID) -> ApplicationRead:
        return ApplicationRead.model_validate(self._require(session, ctx, application_id, ResourceAction.READ))

    def create_application(self, session: Session, ctx: AuthContext, dto: ApplicationCreate) -> ApplicationRead:
        lead = self.leads.get(session, ctx, dto.lead_id)
        if lead is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="lead not found")

        row = ApplicationRow(tenant_id=lead.tenant_id, lead=self.leads.to_row(session, lead))
        try:
            self.repository.validate_write_security(row, ctx, action=ResourceAction.INSERT)
        except AuthorizationError as exc:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="forbidden") from exc

        application = Application(
            tenant_id=lead.tenant_id,
            lead_id=lead.id,
            status=dto.status,
            program=dto.program,
            counselor_id=dto.counselor_id,
            submitted_at=dto.submitted_at,
        )
        session.add(application)
        session.flush()
        application_read = ApplicationRead.model_validate(application)

        audit.record(
            actor_user_id=_actor(ctx),
            entity_type=self.entity_type,
            entity_id=str(application.id),
            action="create",
            before=None,
            after=application_read.model_dump(mode="json"),
            tenant_id=_tenant(application.tenant_id),
            correlation_id=ctx.correlation_id,
        )
        _publish(
            "crm.application.created",
            {"application_id": str(application.id), "lead_id": str(lead.id), "status": application.status},
            application.tenant_id,
        )
        session.commit()
        return application_read

    def update_application(
        self,
        session: Session,
        ctx: AuthContext,
        application_id: uuid.UUID,
        dto: ApplicationUpdate,
    ) -> ApplicationRead:
        application = self._require(session, ctx, application_id, ResourceAction.UPDATE)
        payload = dto.model_dump(exclude_unset=True)
        try:
            self.repository.validate_write_security(
                self.repository.to_row(session, application),
                ctx,
                action=ResourceAction.UPDATE,
            )
        except AuthorizationError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="application not found") from exc
        if not payload:
            return ApplicationRead.model_validate(application)

        before = ApplicationRead.model_validate(application).model_dump(mode="json")
        for key, value in payload.items():
            setattr(application, key, value)
        application.updated_at = utcnow()
        session.flush()
        application_read = ApplicationRead.model_validate(application)

        audit.record(
            actor_user_id=_actor(ctx),
            entity_type=self.entity_type,
            entity_id=str(application.id),
            action="update",
            before=before,
            after=application_read.model_dump(mode="json"),
            tenant_id=_tenant(application.tenant_id),
            correlation_id=ctx.correlation_id,
        )
        session.commit()
        return application_read

    def delete_application(self, session: Session, ctx: AuthContext, application_id: uuid.UUID) -> None:
        application = self._require(session, ctx, application_id, ResourceAction.DELETE)
        tenant_id = application.tenant_id
        session.delete(application)
        session.flush()

        audit.record(
            actor_user_id=_actor(ctx),
            entity_type=self.entity_type,
            entity_id=str(application_id),
            action="delete",
            before={"application_id": str(application_id)},
            after=None,
            tenant_id=_tenant(tenant_id),
            correlation_id=ctx.correlation_id,
        )
        session.commit()

    def _require(
        self,
        session: Session,
        ctx: AuthContext,
        application_id: uuid.UUID,
        action: ResourceAction,
    ) -> Application:
        application = self.repository.get(session, ctx, application_id, action)
        if application is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="application not found")
        return application


class TaskService:
    entity_type = "crm.task"

    def __init__(self, repository: TaskRepository | None = None) -> None:
        self.repository = repository or TaskRepository()

    def list_due_on(
        self,
        session: Session,
        ctx: AuthContext,
        *,
        day: date | None = None,
        tz_name: str = "UTC",
    ) -> list[TaskRead]:
        """Open tasks due on ``day`` in ``tz_name``, earliest first."""

        zone = resolve_zone(tz_name)
        if day is None:
            day = datetime.now(zone).date()
        start, end = day_bounds(day, zone)
        tasks = self.repository.list(
            session,
            ctx,
            Task.due_at >= start,
            Task.due_at <= end,
            Task.status != "completed",
        )
        return [TaskRead.model_validate(task) for task in tasks]

    def list_overdue(self, session: Session, ctx: AuthContext, *, now: datetime | None = None) -> list[TaskRead]:
        cutoff = _as_utc(now or utcnow())
        tasks = self.repository.list(
            session,
            ctx,
            Task.due_at < cutoff,
            Task.status.not_in(("completed", "cancelled")),
        )
        return [TaskRead.model_validate(task) for task in tasks]

    def get_task(self, session: Session, ctx: AuthContext, task_id: uuid.UUID) -> TaskRead:
        return TaskRead.model_validate(self._require(session, ctx, task_id, ResourceAction.READ))

    def update_task(self, session: Session, ctx: AuthContext, task_id: uuid.UUID, dto: TaskUpdate) -> TaskRead:
        task = self._require(session, ctx, task_id, ResourceAction.UPDATE)
        self._validate_update(session, ctx, task)
        payload = dto.model_dump(exclude_unset=True)
        if "assigned_to" in payload and payload["assigned_to"] != task.assigned_to and not ctx.is_admin:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="only admins can reassign tasks")
        if not payload:
            return TaskRead.model_validate(task)

        before = TaskRead.model_validate(task).model_dump(mode="json")
        now = utcnow()
        for key, value in payload.items():
            setattr(task, key, value)
        if payload.get("status") == "completed" and task.completed_at is None:
            task.completed_at = now
        elif "status" in payload and payload["status"] != "completed":
            task.completed_at = None
        task.updated_at = now
        session.flush()
        task_read = TaskRead.model_validate(task)

        audit.record(
            actor_user_id=_actor(ctx),
            entity_type=self.entity_type,
            entity_id=str(task.id),
            action="update",
            before=before,
            after=task_read.model_dump(mode="json"),
            tenant_id=_tenant(task.tenant_id),
            correlation_id=ctx.correlation_id,
        )
        session.commit()
        return task_read

    def mark_complete(self, session: Session, ctx: AuthContext, task_id: uuid.UUID) -> TaskRead:
        task = self._require(session, ctx, task_id, ResourceAction.UPDATE)
        self._validate_update(session, ctx, task)
        if task.status == "completed":
            return TaskRead.model_validate(task)

        before_status = task.status
        now = utcnow()
        task.status = "completed"
        task.completed_at = now
        task.updated_at = now
        session.flush()
        task_read = TaskRead.model_validate(task)

        audit.record(
            actor_user_id=_actor(ctx),
            entity_type=self.entity_type,
            entity_id=str(task.id),
            action="complete",
            before={"status": before_status},
            after={"status": task.status, "completed_at": task_read.completed_at.isoformat() if task_read.completed_at else None},
            tenant_id=_tenant(task.tenant_id),
            correlation_id=ctx.correlation_id,
        )
        _publish(
            "crm.task.completed",
            {"task_id": str(task.id), "application_id": str(task.application_id)},
            task.tenant_id,
        )
        session.commit()
        return task_read

    def delete_task(self, session: Session, ctx: AuthContext, task_id: uuid.UUID) -> None:
        task = self._require(session, ctx, task_id, ResourceAction.DELETE)
        tenant_id = task.tenant_id
        session.delete(task)
        session.flush()

        audit.record(
            actor_user_id=_actor(ctx),
            entity_type=self.entity_type,
            entity_id=str(task_id),
            action="delete",
            before={"task_id": str(task_id)},
            after=None,
            tenant_id=_tenant(tenant_id),
            correlation_id=ctx.correlation_id,
        )
        session.commit()

    def _validate_update(self, session: Session, ctx: AuthContext, task: Task) -> None:
        try:
            self.repository.validate_write_security(
                self.repository.to_row(session, task),
                ctx,
                action=ResourceAction.UPDATE,
            )
        except AuthorizationError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="task not found") from exc

    def _require(self, session: Session, ctx: AuthContext, task_id: uuid.UUID, action: ResourceAction) -> Task:
        task = self.repository.get(session, ctx, task_id, action)
        if task is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="task not found")
        return task
