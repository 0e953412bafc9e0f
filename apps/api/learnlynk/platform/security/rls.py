from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import ColumnElement, false, or_, select
from sqlalchemy.sql import Select

from learnlynk import audit
from learnlynk.crm.models import Application, Lead, Task
from learnlynk.directory.models import Team, User, UserTeam
from learnlynk.metrics import observe_rls_denied
from learnlynk.platform.security.context import AuthContext, parse_uuid
from learnlynk.platform.security.errors import AuthorizationError
from learnlynk.platform.security.policies import (
    RESOURCE_APPLICATION,
    RESOURCE_LEAD,
    RESOURCE_MEMBERSHIP,
    RESOURCE_TASK,
    RESOURCE_TEAM,
    RESOURCE_USER,
    ResourceAction,
    Row,
    decide,
)


logger = logging.getLogger("learnlynk.security.rls")


def _teammate_user_ids(ctx: AuthContext) -> Select[Any]:
    return select(UserTeam.user_id).where(UserTeam.team_id.in_(sorted(ctx.team_ids)))


def _lead_visible(ctx: AuthContext) -> ColumnElement[bool]:
    return or_(Lead.owner_id == ctx.user_id, Lead.owner_id.in_(_teammate_user_ids(ctx)))


def _visible_lead_ids(ctx: AuthContext) -> Select[Any]:
    return select(Lead.id).where(Lead.tenant_id == ctx.tenant_id, _lead_visible(ctx))


def _visible_application_ids(ctx: AuthContext) -> Select[Any]:
    return select(Application.id).where(
        Application.tenant_id == ctx.tenant_id,
        Application.lead_id.in_(_visible_lead_ids(ctx)),
    )


def _counselor_clause(resource: str, action: ResourceAction, ctx: AuthContext) -> ColumnElement[bool]:
    if action == ResourceAction.DELETE:
        return false()

    if resource == RESOURCE_LEAD:
        return _lead_visible(ctx)

    if resource == RESOURCE_APPLICATION:
        if action == ResourceAction.UPDATE:
            owned_leads = select(Lead.id).where(Lead.tenant_id == ctx.tenant_id, Lead.owner_id == ctx.user_id)
            return Application.lead_id.in_(owned_leads)
        return Application.lead_id.in_(_visible_lead_ids(ctx))

    if resource == RESOURCE_TASK:
        if action == ResourceAction.UPDATE:
            return Task.assigned_to == ctx.user_id
        return or_(Task.assigned_to == ctx.user_id, Task.application_id.in_(_visible_application_ids(ctx)))

    if action != ResourceAction.READ:
        return false()
    if resource == RESOURCE_USER:
        return User.id == ctx.user_id
    if resource == RESOURCE_TEAM:
        return Team.id.in_(sorted(ctx.team_ids))
    if resource == RESOURCE_MEMBERSHIP:
        return UserTeam.user_id == ctx.user_id
    return false()


def _tenant_clause(resource: str, ctx: AuthContext) -> ColumnElement[bool]:
    if resource == RESOURCE_LEAD:
        return Lead.tenant_id == ctx.tenant_id
    if resource == RESOURCE_APPLICATION:
        return Application.tenant_id == ctx.tenant_id
    if resource == RESOURCE_TASK:
        return Task.tenant_id == ctx.tenant_id
    if resource == RESOURCE_USER:
        return User.tenant_id == ctx.tenant_id
    if resource == RESOURCE_TEAM:
        return Team.tenant_id == ctx.tenant_id
    if resource == RESOURCE_MEMBERSHIP:
        return UserTeam.user_id.in_(select(User.id).where(User.tenant_id == ctx.tenant_id))
    return false()


def apply_rls_filter(
    query: Select[Any],
    resource: str,
    ctx: AuthContext,
    action: ResourceAction = ResourceAction.READ,
) -> Select[Any]:
    """Restrict ``query`` to the rows ``ctx`` may access for ``action``.

    The SQL form mirrors the predicates in ``policies``; tenant isolation is
    always applied first, including for admins.
    """

    if not ctx.is_well_formed:
        return query.where(false())

    query = query.where(_tenant_clause(resource, ctx))
    if ctx.is_admin:
        return query
    return query.where(_counselor_clause(resource, action, ctx))


def validate_rls_write(
    row: Row,
    ctx: AuthContext,
    *,
    action: ResourceAction,
    payload: dict[str, Any] | None = None,
) -> None:
    """Raise ``AuthorizationError`` unless ``ctx`` may write ``row``.

    A ``tenant_id`` in ``payload`` must match the principal's tenant, so no
    role can move a row to another tenant.
    """

    if payload is not None and "tenant_id" in payload:
        requested_tenant = parse_uuid(payload.get("tenant_id"))
        if requested_tenant is None or requested_tenant != ctx.tenant_id:
            _emit_rls_denied(row.resource, action, ctx, reason="tenant_reassignment")
            raise AuthorizationError(row.resource, action.value)

    if not decide(ctx, action, row):
        _emit_rls_denied(row.resource, action, ctx, reason="policy")
        raise AuthorizationError(row.resource, action.value)


def _emit_rls_denied(resource: str, action: ResourceAction, ctx: AuthContext, *, reason: str) -> None:
    observe_rls_denied(resource=resource, action=action.value)
    logger.info(
        "rls.denied",
        extra={
            "resource": resource,
            "action": action.value,
            "reason": reason,
            "user_id": str(ctx.user_id) if ctx.user_id else None,
        },
    )
    audit.record(
        actor_user_id=str(ctx.user_id) if ctx.user_id else "anonymous",
        entity_type="security.rls",
        entity_id=resource,
        action="rls.denied",
        before=None,
        after={"resource": resource, "action": action.value, "reason": reason, "role": ctx.role},
        tenant_id=str(ctx.tenant_id) if ctx.tenant_id else None,
        correlation_id=ctx.correlation_id,
    )
