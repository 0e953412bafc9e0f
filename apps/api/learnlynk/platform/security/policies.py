"""Row-level access policies.

Every rule is a pure predicate over ``(AuthContext, row)``. The tenant check
runs before any per-entity rule and cannot be bypassed by a role.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import ClassVar, Union

from learnlynk.platform.security.context import AuthContext


class ResourceAction(StrEnum):
    READ = "read"
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


RESOURCE_LEAD = "lead"
RESOURCE_APPLICATION = "application"
RESOURCE_TASK = "task"
RESOURCE_USER = "user"
RESOURCE_TEAM = "team"
RESOURCE_MEMBERSHIP = "membership"


@dataclass(frozen=True, slots=True)
class LeadRow:
    resource: ClassVar[str] = RESOURCE_LEAD

    tenant_id: uuid.UUID
    owner_id: uuid.UUID | None
    owner_team_ids: frozenset[uuid.UUID] = field(default_factory=frozenset)


@dataclass(frozen=True, slots=True)
class ApplicationRow:
    resource: ClassVar[str] = RESOURCE_APPLICATION

    tenant_id: uuid.UUID
    lead: LeadRow | None


@dataclass(frozen=True, slots=True)
class TaskRow:
    resource: ClassVar[str] = RESOURCE_TASK

    tenant_id: uuid.UUID
    assigned_to: uuid.UUID | None
    application: ApplicationRow | None


@dataclass(frozen=True, slots=True)
class UserRow:
    resource: ClassVar[str] = RESOURCE_USER

    tenant_id: uuid.UUID
    user_id: uuid.UUID


@dataclass(frozen=True, slots=True)
class TeamRow:
    resource: ClassVar[str] = RESOURCE_TEAM

    tenant_id: uuid.UUID
    team_id: uuid.UUID


@dataclass(frozen=True, slots=True)
class MembershipRow:
    resource: ClassVar[str] = RESOURCE_MEMBERSHIP

    tenant_id: uuid.UUID
    user_id: uuid.UUID
    team_id: uuid.UUID


Row = Union[LeadRow, ApplicationRow, TaskRow, UserRow, TeamRow, MembershipRow]
Predicate = Callable[[AuthContext, Row], bool]


def is_teammate(ctx: AuthContext, other_team_ids: frozenset[uuid.UUID]) -> bool:
    """One hop only: the two users share at least one team."""

    return bool(ctx.team_ids & other_team_ids)


def can_read_lead(ctx: AuthContext, lead: LeadRow) -> bool:
    if ctx.is_admin:
        return True
    if lead.owner_id is not None and lead.owner_id == ctx.user_id:
        return True
    return lead.owner_id is not None and is_teammate(ctx, lead.owner_team_ids)


def can_read_application(ctx: AuthContext, application: ApplicationRow) -> bool:
    if ctx.is_admin:
        return True
    return application.lead is not None and can_read_lead(ctx, application.lead)


def can_update_application(ctx: AuthContext, application: ApplicationRow) -> bool:
    if ctx.is_admin:
        return True
    lead = application.lead
    return lead is not None and lead.owner_id is not None and lead.owner_id == ctx.user_id


def can_read_task(ctx: AuthContext, task: TaskRow) -> bool:
    if ctx.is_admin:
        return True
    if task.assigned_to is not None and task.assigned_to == ctx.user_id:
        return True
    return task.application is not None and can_read_application(ctx, task.application)


def can_update_task(ctx: AuthContext, task: TaskRow) -> bool:
    if ctx.is_admin:
        return True
    return task.assigned_to is not None and task.assigned_to == ctx.user_id


def _any_role(ctx: AuthContext, _row: Row) -> bool:
    return ctx.is_admin or ctx.is_counselor


def _admin_only(ctx: AuthContext, _row: Row) -> bool:
    return ctx.is_admin


def _can_read_user(ctx: AuthContext, row: UserRow) -> bool:
    return ctx.is_admin or row.user_id == ctx.user_id


def _can_read_team(ctx: AuthContext, row: TeamRow) -> bool:
    return ctx.is_admin or row.team_id in ctx.team_ids


def _can_read_membership(ctx: AuthContext, row: MembershipRow) -> bool:
    return ctx.is_admin or row.user_id == ctx.user_id


_POLICIES: dict[tuple[str, ResourceAction], Predicate] = {
    (RESOURCE_LEAD, ResourceAction.READ): can_read_lead,  # type: ignore[dict-item]
    (RESOURCE_LEAD, ResourceAction.INSERT): _any_role,
    (RESOURCE_LEAD, ResourceAction.UPDATE): can_read_lead,  # type: ignore[dict-item]
    (RESOURCE_LEAD, ResourceAction.DELETE): _admin_only,
    (RESOURCE_APPLICATION, ResourceAction.READ): can_read_application,  # type: ignore[dict-item]
    (RESOURCE_APPLICATION, ResourceAction.INSERT): _any_role,
    (RESOURCE_APPLICATION, ResourceAction.UPDATE): can_update_application,  # type: ignore[dict-item]
    (RESOURCE_APPLICATION, ResourceAction.DELETE): _admin_only,
    (RESOURCE_TASK, ResourceAction.READ): can_read_task,  # type: ignore[dict-item]
    (RESOURCE_TASK, ResourceAction.INSERT): _any_role,
    (RESOURCE_TASK, ResourceAction.UPDATE): can_update_task,  # type: ignore[dict-item]
    (RESOURCE_TASK, ResourceAction.DELETE): _admin_only,
    (RESOURCE_USER, ResourceAction.READ): _can_read_user,  # type: ignore[dict-item]
    (RESOURCE_TEAM, ResourceAction.READ): _can_read_team,  # type: ignore[dict-item]
    (RESOURCE_MEMBERSHIP, ResourceAction.READ): _can_read_membership,  # type: ignore[dict-item]
}


def decide(ctx: AuthContext, action: ResourceAction, row: Row) -> bool:
    """Return True when ``ctx`` may perform ``action`` on ``row``.

    Malformed principals and unregistered (resource, action) pairs are denied.
    """

    if not ctx.is_well_formed:
        return False
    if row.tenant_id != ctx.tenant_id:
        return False
    predicate = _POLICIES.get((row.resource, action))
    if predicate is None:
        return False
    return predicate(ctx, row)
