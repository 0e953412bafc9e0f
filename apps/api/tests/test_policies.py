from __future__ import annotations

import uuid

import pytest

from learnlynk.platform.security.context import AuthContext
from learnlynk.platform.security.policies import (
    ApplicationRow,
    LeadRow,
    MembershipRow,
    ResourceAction,
    TaskRow,
    TeamRow,
    UserRow,
    decide,
    is_teammate,
)

TENANT_A = uuid.uuid4()
TENANT_B = uuid.uuid4()
TEAM_1 = uuid.uuid4()
TEAM_2 = uuid.uuid4()


def _ctx(role: str | None, *, tenant_id: uuid.UUID | None = TENANT_A, team_ids: frozenset[uuid.UUID] = frozenset()) -> AuthContext:
    return AuthContext(user_id=uuid.uuid4(), tenant_id=tenant_id, role=role, team_ids=team_ids)


def _lead(owner_id: uuid.UUID | None, *, tenant_id: uuid.UUID = TENANT_A, owner_teams: frozenset[uuid.UUID] = frozenset()) -> LeadRow:
    return LeadRow(tenant_id=tenant_id, owner_id=owner_id, owner_team_ids=owner_teams)


def test_admin_reads_every_lead_in_own_tenant() -> None:
    admin = _ctx("admin")
    assert decide(admin, ResourceAction.READ, _lead(uuid.uuid4()))
    assert decide(admin, ResourceAction.DELETE, _lead(uuid.uuid4()))


@pytest.mark.parametrize("role", ["admin", "counselor"])
@pytest.mark.parametrize("action", list(ResourceAction))
def test_cross_tenant_rows_are_denied_for_every_role_and_action(role: str, action: ResourceAction) -> None:
    ctx = _ctx(role, team_ids=frozenset({TEAM_1}))
    foreign_lead = _lead(ctx.user_id, tenant_id=TENANT_B, owner_teams=frozenset({TEAM_1}))
    foreign_application = ApplicationRow(tenant_id=TENANT_B, lead=foreign_lead)
    foreign_task = TaskRow(tenant_id=TENANT_B, assigned_to=ctx.user_id, application=foreign_application)

    assert not decide(ctx, action, foreign_lead)
    assert not decide(ctx, action, foreign_application)
    assert not decide(ctx, action, foreign_task)


def test_counselor_reads_own_and_teammate_leads_only() -> None:
    counselor = _ctx("counselor", team_ids=frozenset({TEAM_1}))

    assert decide(counselor, ResourceAction.READ, _lead(counselor.user_id))
    assert decide(counselor, ResourceAction.READ, _lead(uuid.uuid4(), owner_teams=frozenset({TEAM_1, TEAM_2})))
    assert not decide(counselor, ResourceAction.READ, _lead(uuid.uuid4(), owner_teams=frozenset({TEAM_2})))
    assert not decide(counselor, ResourceAction.READ, _lead(uuid.uuid4()))


def test_counselor_without_teams_only_sees_owned_leads() -> None:
    counselor = _ctx("counselor")

    assert decide(counselor, ResourceAction.READ, _lead(counselor.user_id))
    assert not decide(counselor, ResourceAction.READ, _lead(uuid.uuid4(), owner_teams=frozenset({TEAM_1})))


def test_teammate_check_is_one_hop_intersection() -> None:
    counselor = _ctx("counselor", team_ids=frozenset({TEAM_1}))
    assert is_teammate(counselor, frozenset({TEAM_1}))
    assert not is_teammate(counselor, frozenset())
    assert not is_teammate(counselor, frozenset({TEAM_2}))


def test_counselor_never_deletes() -> None:
    counselor = _ctx("counselor")
    own_lead = _lead(counselor.user_id)
    own_application = ApplicationRow(tenant_id=TENANT_A, lead=own_lead)
    own_task = TaskRow(tenant_id=TENANT_A, assigned_to=counselor.user_id, application=own_application)

    assert not decide(counselor, ResourceAction.DELETE, own_lead)
    assert not decide(counselor, ResourceAction.DELETE, own_application)
    assert not decide(counselor, ResourceAction.DELETE, own_task)


def test_application_update_requires_direct_lead_ownership() -> None:
    counselor = _ctx("counselor", team_ids=frozenset({TEAM_1}))
    teammate_lead = _lead(uuid.uuid4(), owner_teams=frozenset({TEAM_1}))
    application = ApplicationRow(tenant_id=TENANT_A, lead=teammate_lead)

    assert decide(counselor, ResourceAction.READ, application)
    assert not decide(counselor, ResourceAction.UPDATE, application)
    assert decide(counselor, ResourceAction.UPDATE, ApplicationRow(tenant_id=TENANT_A, lead=_lead(counselor.user_id)))


def test_task_read_is_broader_than_task_update() -> None:
    counselor = _ctx("counselor")
    own_application = ApplicationRow(tenant_id=TENANT_A, lead=_lead(counselor.user_id))
    unassigned = TaskRow(tenant_id=TENANT_A, assigned_to=uuid.uuid4(), application=own_application)
    assigned = TaskRow(
        tenant_id=TENANT_A,
        assigned_to=counselor.user_id,
        application=ApplicationRow(tenant_id=TENANT_A, lead=_lead(uuid.uuid4())),
    )

    assert decide(counselor, ResourceAction.READ, unassigned)
    assert not decide(counselor, ResourceAction.UPDATE, unassigned)
    assert decide(counselor, ResourceAction.READ, assigned)
    assert decide(counselor, ResourceAction.UPDATE, assigned)


def test_inserts_are_role_gated() -> None:
    for role in ("admin", "counselor"):
        ctx = _ctx(role)
        assert decide(ctx, ResourceAction.INSERT, _lead(uuid.uuid4()))
        assert decide(ctx, ResourceAction.INSERT, TaskRow(tenant_id=TENANT_A, assigned_to=None, application=None))

    assert not decide(_ctx("viewer"), ResourceAction.INSERT, _lead(uuid.uuid4()))


@pytest.mark.parametrize(
    "ctx",
    [
        AuthContext(user_id=None, tenant_id=TENANT_A, role="admin"),
        AuthContext(user_id=uuid.uuid4(), tenant_id=None, role="admin"),
        AuthContext(user_id=uuid.uuid4(), tenant_id=TENANT_A, role=None),
        AuthContext(user_id=uuid.uuid4(), tenant_id=TENANT_A, role="superuser"),
    ],
)
def test_malformed_principal_is_denied(ctx: AuthContext) -> None:
    assert not decide(ctx, ResourceAction.READ, _lead(ctx.user_id))
    assert not decide(ctx, ResourceAction.INSERT, _lead(ctx.user_id))


def test_directory_rows_follow_membership_rules() -> None:
    counselor = _ctx("counselor", team_ids=frozenset({TEAM_1}))
    admin = _ctx("admin")
    other_user = uuid.uuid4()

    assert decide(counselor, ResourceAction.READ, UserRow(tenant_id=TENANT_A, user_id=counselor.user_id))
    assert not decide(counselor, ResourceAction.READ, UserRow(tenant_id=TENANT_A, user_id=other_user))
    assert decide(counselor, ResourceAction.READ, TeamRow(tenant_id=TENANT_A, team_id=TEAM_1))
    assert not decide(counselor, ResourceAction.READ, TeamRow(tenant_id=TENANT_A, team_id=TEAM_2))
    assert decide(
        counselor,
        ResourceAction.READ,
        MembershipRow(tenant_id=TENANT_A, user_id=counselor.user_id, team_id=TEAM_1),
    )
    assert not decide(counselor, ResourceAction.READ, MembershipRow(tenant_id=TENANT_A, user_id=other_user, team_id=TEAM_1))
    assert decide(admin, ResourceAction.READ, UserRow(tenant_id=TENANT_A, user_id=other_user))
    assert not decide(admin, ResourceAction.UPDATE, UserRow(tenant_id=TENANT_A, user_id=other_user))
