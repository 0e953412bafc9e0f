from __future__ import annotations

import uuid
from collections.abc import Generator
from dataclasses import dataclass

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from learnlynk import audit
from learnlynk.core.database import Base
from learnlynk.crm.models import Application, Lead, Task, utcnow
from learnlynk.crm.repositories import ApplicationRepository, LeadRepository, TaskRepository
from learnlynk.directory.models import Team, User, UserTeam
from learnlynk.directory.service import load_team_ids, with_team_ids
from learnlynk.platform.security.context import AuthContext
from learnlynk.platform.security.errors import AuthorizationError
from learnlynk.platform.security.policies import LeadRow, ResourceAction, decide
from learnlynk.platform.security.rls import apply_rls_filter, validate_rls_write


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def clear_audit() -> Generator[None, None, None]:
    audit.audit_entries.clear()
    yield
    audit.audit_entries.clear()


@dataclass
class World:
    tenant_a: uuid.UUID
    tenant_b: uuid.UUID
    admin: User
    alice: User
    bob: User
    carol: User
    outsider: User
    leads: dict[str, Lead]
    applications: dict[str, Application]
    tasks: dict[str, Task]


def _seed(session: Session) -> World:
    tenant_a = uuid.uuid4()
    tenant_b = uuid.uuid4()
    admin = User(tenant_id=tenant_a, role="admin", email="admin@a.test")
    alice = User(tenant_id=tenant_a, role="counselor", email="alice@a.test")
    bob = User(tenant_id=tenant_a, role="counselor", email="bob@a.test")
    carol = User(tenant_id=tenant_a, role="counselor", email="carol@a.test")
    outsider = User(tenant_id=tenant_b, role="admin", email="admin@b.test")
    session.add_all([admin, alice, bob, carol, outsider])
    session.flush()

    team = Team(tenant_id=tenant_a, name="Admissions")
    session.add(team)
    session.flush()
    session.add_all([UserTeam(user_id=alice.id, team_id=team.id), UserTeam(user_id=bob.id, team_id=team.id)])

    leads = {
        "alice": Lead(tenant_id=tenant_a, owner_id=alice.id, first_name="Ann"),
        "bob": Lead(tenant_id=tenant_a, owner_id=bob.id, first_name="Ben"),
        "carol": Lead(tenant_id=tenant_a, owner_id=carol.id, first_name="Cid"),
        "foreign": Lead(tenant_id=tenant_b, owner_id=outsider.id, first_name="Dee"),
    }
    session.add_all(leads.values())
    session.flush()

    applications = {
        key: Application(tenant_id=lead.tenant_id, lead_id=lead.id, program="BSc") for key, lead in leads.items()
    }
    session.add_all(applications.values())
    session.flush()

    due_at = utcnow().replace(microsecond=0)
    tasks = {
        key: Task(
            tenant_id=application.tenant_id,
            application_id=application.id,
            type="call",
            title=f"Call {key}",
            due_at=due_at,
            created_at=due_at,
            updated_at=due_at,
        )
        for key, application in applications.items()
    }
    tasks["carol_assigned_to_alice"] = Task(
        tenant_id=tenant_a,
        application_id=applications["carol"].id,
        type="email",
        title="Email carol lead",
        assigned_to=alice.id,
        due_at=due_at,
        created_at=due_at,
        updated_at=due_at,
    )
    session.add_all(tasks.values())
    session.commit()
    return World(tenant_a, tenant_b, admin, alice, bob, carol, outsider, leads, applications, tasks)


def _ctx(session: Session, user: User) -> AuthContext:
    return with_team_ids(session, AuthContext(user_id=user.id, tenant_id=user.tenant_id, role=user.role))


def _ids(session: Session, stmt) -> set[uuid.UUID]:  # type: ignore[no-untyped-def]
    return {row.id for row in session.scalars(stmt).all()}


def test_counselor_lead_filter_includes_teammates(db_session: Session) -> None:
    world = _seed(db_session)

    visible = _ids(db_session, apply_rls_filter(select(Lead), "lead", _ctx(db_session, world.alice)))
    assert visible == {world.leads["alice"].id, world.leads["bob"].id}

    carol_visible = _ids(db_session, apply_rls_filter(select(Lead), "lead", _ctx(db_session, world.carol)))
    assert carol_visible == {world.leads["carol"].id}


def test_admin_filter_is_still_tenant_scoped(db_session: Session) -> None:
    world = _seed(db_session)

    visible = _ids(db_session, apply_rls_filter(select(Lead), "lead", _ctx(db_session, world.admin)))
    assert world.leads["foreign"].id not in visible
    assert len(visible) == 3

    foreign_visible = _ids(db_session, apply_rls_filter(select(Task), "task", _ctx(db_session, world.outsider)))
    assert foreign_visible == {world.tasks["foreign"].id}


def test_task_filter_includes_assigned_tasks_on_invisible_applications(db_session: Session) -> None:
    world = _seed(db_session)
    alice = _ctx(db_session, world.alice)

    visible = _ids(db_session, apply_rls_filter(select(Task), "task", alice))
    assert visible == {
        world.tasks["alice"].id,
        world.tasks["bob"].id,
        world.tasks["carol_assigned_to_alice"].id,
    }

    updatable = _ids(db_session, apply_rls_filter(select(Task), "task", alice, ResourceAction.UPDATE))
    assert updatable == {world.tasks["carol_assigned_to_alice"].id}


def test_application_update_filter_excludes_teammate_leads(db_session: Session) -> None:
    world = _seed(db_session)
    alice = _ctx(db_session, world.alice)

    readable = _ids(db_session, apply_rls_filter(select(Application), "application", alice))
    updatable = _ids(db_session, apply_rls_filter(select(Application), "application", alice, ResourceAction.UPDATE))

    assert readable == {world.applications["alice"].id, world.applications["bob"].id}
    assert updatable == {world.applications["alice"].id}


def test_sql_filter_agrees_with_row_predicates(db_session: Session) -> None:
    world = _seed(db_session)
    leads = LeadRepository()
    applications = ApplicationRepository()
    tasks = TaskRepository()

    for user in (world.admin, world.alice, world.bob, world.carol, world.outsider):
        ctx = _ctx(db_session, user)
        for action in (ResourceAction.READ, ResourceAction.UPDATE, ResourceAction.DELETE):
            lead_ids = _ids(db_session, apply_rls_filter(select(Lead), "lead", ctx, action))
            for lead in db_session.scalars(select(Lead)).all():
                assert (lead.id in lead_ids) == decide(ctx, action, leads.to_row(db_session, lead))

            application_ids = _ids(db_session, apply_rls_filter(select(Application), "application", ctx, action))
            for application in db_session.scalars(select(Application)).all():
                expected = decide(ctx, action, applications.to_row(db_session, application))
                assert (application.id in application_ids) == expected

            task_ids = _ids(db_session, apply_rls_filter(select(Task), "task", ctx, action))
            for task in db_session.scalars(select(Task)).all():
                assert (task.id in task_ids) == decide(ctx, action, tasks.to_row(db_session, task))


def test_malformed_principal_sees_nothing(db_session: Session) -> None:
    _seed(db_session)
    ctx = AuthContext(user_id=uuid.uuid4(), tenant_id=None, role="admin")

    assert _ids(db_session, apply_rls_filter(select(Lead), "lead", ctx)) == set()
    assert _ids(db_session, apply_rls_filter(select(Task), "task", ctx)) == set()


def test_directory_filters(db_session: Session) -> None:
    world = _seed(db_session)
    alice = _ctx(db_session, world.alice)
    admin = _ctx(db_session, world.admin)

    assert _ids(db_session, apply_rls_filter(select(User), "user", alice)) == {world.alice.id}
    assert len(_ids(db_session, apply_rls_filter(select(User), "user", admin))) == 4
    assert len(db_session.scalars(apply_rls_filter(select(Team), "team", alice)).all()) == 1
    assert db_session.scalars(apply_rls_filter(select(Team), "team", _ctx(db_session, world.carol))).all() == []

    memberships = db_session.scalars(apply_rls_filter(select(UserTeam), "membership", alice)).all()
    assert [membership.user_id for membership in memberships] == [world.alice.id]
    assert len(db_session.scalars(apply_rls_filter(select(UserTeam), "membership", admin)).all()) == 2


def test_load_team_ids_returns_empty_set_for_users_without_teams(db_session: Session) -> None:
    world = _seed(db_session)

    team_ids = load_team_ids(db_session, [world.alice.id, world.carol.id])
    assert len(team_ids[world.alice.id]) == 1
    assert team_ids[world.carol.id] == frozenset()


def test_validate_rls_write_blocks_tenant_reassignment(db_session: Session) -> None:
    world = _seed(db_session)
    admin = _ctx(db_session, world.admin)
    row = LeadRow(tenant_id=world.tenant_a, owner_id=world.alice.id)

    with pytest.raises(AuthorizationError):
        validate_rls_write(row, admin, action=ResourceAction.UPDATE, payload={"tenant_id": str(world.tenant_b)})

    validate_rls_write(row, admin, action=ResourceAction.UPDATE, payload={"tenant_id": str(world.tenant_a)})

    denials = [entry for entry in audit.audit_entries if entry["action"] == "rls.denied"]
    assert len(denials) == 1
    assert denials[0]["after"]["reason"] == "tenant_reassignment"


def test_validate_rls_write_rejects_counselor_delete(db_session: Session) -> None:
    world = _seed(db_session)
    alice = _ctx(db_session, world.alice)

    with pytest.raises(AuthorizationError) as exc_info:
        validate_rls_write(
            LeadRepository().to_row(db_session, world.leads["alice"]),
            alice,
            action=ResourceAction.DELETE,
        )
    assert exc_info.value.resource == "lead"
