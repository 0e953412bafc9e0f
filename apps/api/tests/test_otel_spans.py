from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import StatusCode
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("OTEL_ENABLED", "true")

from learnlynk.core.config import get_settings
from learnlynk.core.database import Base, get_db
from learnlynk.crm.models import Application, Lead
from learnlynk.directory.models import User
from learnlynk.main import app
from learnlynk.otel import setup_inmemory_otel


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


@pytest.fixture()
def span_exporter() -> InMemorySpanExporter:
    exporter = setup_inmemory_otel("learnlynk-api")
    exporter.clear()
    return exporter


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture()
def application(db_session: Session) -> Application:
    admin = User(tenant_id=uuid.uuid4(), role="admin", email="admin@otel.test")
    db_session.add(admin)
    db_session.flush()
    lead = Lead(tenant_id=admin.tenant_id, owner_id=admin.id)
    db_session.add(lead)
    db_session.flush()
    application = Application(tenant_id=admin.tenant_id, lead_id=lead.id)
    db_session.add(application)
    db_session.commit()
    return application


def _headers(application: Application, correlation_id: str) -> dict[str, str]:
    settings = get_settings()
    lead = application.lead
    token = jwt.encode(
        {"sub": str(lead.owner_id), "tenant_id": str(application.tenant_id), "role": "admin"},
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
    )
    return {"Authorization": f"Bearer {token}", "X-Correlation-Id": correlation_id}


def test_request_span_contains_correlation_id(
    client: TestClient,
    span_exporter: InMemorySpanExporter,
    application: Application,
) -> None:
    response = client.get("/api/tasks/overdue", headers=_headers(application, "otel-corr-1"))
    assert response.status_code == 200

    spans = span_exporter.get_finished_spans()
    assert spans
    assert any(span.attributes.get("correlation_id") == "otel-corr-1" for span in spans)
    assert any(span.attributes.get("learnlynk.route_group") == "tasks" for span in spans)


def test_task_create_span_records_task_id(
    client: TestClient,
    span_exporter: InMemorySpanExporter,
    application: Application,
) -> None:
    due_at = (datetime.now(timezone.utc) + timedelta(days=1)).isoformat()
    response = client.post(
        "/api/tasks/create-task",
        json={"application_id": str(application.id), "task_type": "review", "due_at": due_at},
        headers=_headers(application, "otel-task-1"),
    )
    assert response.status_code == 200

    task_spans = [span for span in span_exporter.get_finished_spans() if span.name == "task.create"]
    assert task_spans
    assert any(
        span.attributes.get("task_id") == response.json()["task_id"]
        and span.attributes.get("task.type") == "review"
        and span.attributes.get("application_id") == str(application.id)
        for span in task_spans
    )


def test_rejected_task_create_span_is_marked_as_error(
    client: TestClient,
    span_exporter: InMemorySpanExporter,
    application: Application,
) -> None:
    response = client.post(
        "/api/tasks/create-task",
        json={"application_id": str(application.id), "task_type": "review"},
        headers=_headers(application, "otel-task-2"),
    )
    assert response.status_code == 400

    task_spans = [span for span in span_exporter.get_finished_spans() if span.name == "task.create"]
    assert task_spans
    assert task_spans[-1].status.status_code == StatusCode.ERROR
