from __future__ import annotations

import uuid
from collections import defaultdict
from collections.abc import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from learnlynk.directory.models import Team, User, UserTeam
from learnlynk.directory.schemas import MembershipRead, TeamRead, UserRead
from learnlynk.metrics import observe_membership_lookup
from learnlynk.platform.security.context import AuthContext
from learnlynk.platform.security.policies import RESOURCE_MEMBERSHIP, RESOURCE_TEAM, RESOURCE_USER
from learnlynk.platform.security.rls import apply_rls_filter


def load_team_ids(session: Session, user_ids: Iterable[uuid.UUID]) -> dict[uuid.UUID, frozenset[uuid.UUID]]:
    """Return the team ids of each requested user (empty set for users without teams)."""

    requested = {user_id for user_id in user_ids if user_id is not None}
    if not requested:
        return {}

    observe_membership_lookup()
    rows = session.execute(
        select(UserTeam.user_id, UserTeam.team_id).where(UserTeam.user_id.in_(sorted(requested)))
    ).all()
    grouped: dict[uuid.UUID, set[uuid.UUID]] = defaultdict(set)
    for row in rows:
        grouped[row.user_id].add(row.team_id)
    return {user_id: frozenset(grouped.get(user_id, set())) for user_id in requested}


def with_team_ids(session: Session, ctx: AuthContext) -> AuthContext:
    """Populate ``ctx.team_ids`` once per request."""

    if ctx.user_id is None or "directory.team_ids" in ctx._cache:
        return ctx
    ctx.team_ids = load_team_ids(session, [ctx.user_id]).get(ctx.user_id, frozenset())
    ctx._cache["directory.team_ids"] = True
    return ctx


class DirectoryService:
    def list_users(self, session: Session, ctx: AuthContext) -> list[UserRead]:
        stmt = apply_rls_filter(select(User), RESOURCE_USER, ctx).order_by(User.email.asc())
        return [UserRead.model_validate(row) for row in session.scalars(stmt).all()]

    def list_teams(self, session: Session, ctx: AuthContext) -> list[TeamRead]:
        stmt = apply_rls_filter(select(Team), RESOURCE_TEAM, ctx).order_by(Team.name.asc())
        return [TeamRead.model_validate(row) for row in session.scalars(stmt).all()]

    def list_memberships(self, session: Session, ctx: AuthContext) -> list[MembershipRead]:
        stmt = apply_rls_filter(select(UserTeam), RESOURCE_MEMBERSHIP, ctx).order_by(
            UserTeam.user_id.asc(),
            UserTeam.team_id.asc(),
        )
        return [MembershipRead.model_validate(row) for row in session.scalars(stmt).all()]
