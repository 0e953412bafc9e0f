from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import Select, select
from sqlalchemy.orm import Session

from learnlynk.crm.models import Application, Lead, Task
from learnlynk.directory.service import load_team_ids
from learnlynk.platform.security.context import AuthContext
from learnlynk.platform.security.policies import (
    RESOURCE_APPLICATION,
    RESOURCE_LEAD,
    RESOURCE_TASK,
    ApplicationRow,
    LeadRow,
    ResourceAction,
    TaskRow,
)
from learnlynk.platform.security.repository import BaseRepository


class LeadRepository(BaseRepository):
    resource = RESOURCE_LEAD

    def get(
        self,
        session: Session,
        ctx: AuthContext,
        lead_id: uuid.UUID,
        action: ResourceAction = ResourceAction.READ,
    ) -> Lead | None:
        stmt = self.apply_scope_query(select(Lead).where(Lead.id == lead_id), ctx, action)
        return session.scalar(stmt)

    def list(self, session: Session, ctx: AuthContext, *criteria: Any) -> list[Lead]:
        stmt: Select[tuple[Lead]] = self.apply_scope_query(select(Lead), ctx)
        if criteria:
            stmt = stmt.where(*criteria)
        return list(session.scalars(stmt.order_by(Lead.created_at.desc())).all())

    def to_row(self, session: Session, lead: Lead) -> LeadRow:
        owner_teams = load_team_ids(session, [lead.owner_id]).get(lead.owner_id, frozenset())
        return LeadRow(tenant_id=lead.tenant_id, owner_id=lead.owner_id, owner_team_ids=owner_teams)


class ApplicationRepository(BaseRepository):
    resource = RESOURCE_APPLICATION

    def __init__(self, lead_repository: LeadRepository | None = None) -> None:
        self._leads = lead_repository or LeadRepository()

    def get(
        self,
        session: Session,
        ctx: AuthContext,
        application_id: uuid.UUID,
        action: ResourceAction = ResourceAction.READ,
    ) -> Application | None:
        stmt = self.apply_scope_query(select(Application).where(Application.id == application_id), ctx, action)
        return session.scalar(stmt)

    def list(self, session: Session, ctx: AuthContext, *criteria: Any) -> list[Application]:
        stmt: Select[tuple[Application]] = self.apply_scope_query(select(Application), ctx)
        if criteria:
            stmt = stmt.where(*criteria)
        return list(session.scalars(stmt.order_by(Application.created_at.desc())).all())

    def to_row(self, session: Session, application: Application) -> ApplicationRow:
        lead = session.get(Lead, application.lead_id)
        return ApplicationRow(
            tenant_id=application.tenant_id,
            lead=self._leads.to_row(session, lead) if lead is not None else None,
        )


class TaskRepository(BaseRepository):
    resource = RESOURCE_TASK

    def __init__(self, application_repository: ApplicationRepository | None = None) -> None:
        self._applications = application_repository or ApplicationRepository()

    @property
    def applications(self) -> ApplicationRepository:
        return self._applications

    def get(
        self,
        session: Session,
        ctx: AuthContext,
        task_id: uuid.UUID,
        action: ResourceAction = ResourceAction.READ,
    ) -> Task | None:
        stmt = self.apply_scope_query(select(Task).where(Task.id == task_id), ctx, action)
        return session.scalar(stmt)

    def list(self, session: Session, ctx: AuthContext, *criteria: Any) -> list[Task]:
        stmt: Select[tuple[Task]] = self.apply_scope_query(select(Task), ctx)
        if criteria:
            stmt = stmt.where(*criteria)
        return list(session.scalars(stmt.order_by(Task.due_at.asc(), Task.id.asc())).all())

    def to_row(self, session: Session, task: Task) -> TaskRow:
        application = session.get(Application, task.application_id)
        return TaskRow(
            tenant_id=task.tenant_id,
            assigned_to=task.assigned_to,
            application=self._applications.to_row(session, application) if application is not None else None,
        )

    def insert(self, session: Session, ctx: AuthContext, task: Task, application: Application) -> Task:
        row = TaskRow(
            tenant_id=task.tenant_id,
            assigned_to=task.assigned_to,
            application=self._applications.to_row(session, application),
        )
        self.validate_write_security(row, ctx, action=ResourceAction.INSERT)
        session.add(task)
        session.flush()
        return task
