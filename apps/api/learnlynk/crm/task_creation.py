"""Validation, persistence and notification pipeline behind ``create-task``.

Validation is fail-fast: the first failing rule is reported and nothing
touches the database until the request is well formed. The application
lookup goes through the row-scoped repository, so an application the caller
cannot read is reported exactly like one that does not exist.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from learnlynk import audit
from learnlynk.core.config import get_settings
from learnlynk.crm.errors import (
    InvalidEnumError,
    InvalidTimestampError,
    MissingFieldError,
    NotFoundError,
    PastDueDateError,
    PersistenceError,
    TaskCreationError,
)
from learnlynk.crm.models import TASK_TYPES, Application, Task, utcnow
from learnlynk.crm.repositories import TaskRepository
from learnlynk.metrics import observe_task_creation, observe_task_notification_failure
from learnlynk.notifications import NotificationChannel, get_notification_channel
from learnlynk.platform.security.context import AuthContext, parse_uuid
from learnlynk.platform.security.errors import AuthorizationError

logger = logging.getLogger("learnlynk.crm.tasks")
tracer = trace.get_tracer("learnlynk.crm.tasks")

APPLICATION_ID_MESSAGE = "application_id is required and must be a valid UUID string"
TASK_TYPE_REQUIRED_MESSAGE = "task_type is required"
TASK_TYPE_ENUM_MESSAGE = f"task_type must be one of: {', '.join(TASK_TYPES)}"
DUE_AT_REQUIRED_MESSAGE = "due_at is required"
DUE_AT_FORMAT_MESSAGE = "due_at must be a valid ISO 8601 timestamp (e.g., 2025-01-01T12:00:00Z)"
DUE_AT_PAST_MESSAGE = "due_at must be a future timestamp"
APPLICATION_NOT_FOUND_MESSAGE = "Application not found"


@dataclass(frozen=True)
class TaskCreationRequest:
    application_id: str
    task_type: str
    due_at: datetime
    title: str | None = None
    description: str | None = None
    assigned_to: Any = None


@dataclass(frozen=True)
class TaskCreationResult:
    task_id: uuid.UUID


def default_title(task_type: str) -> str:
    return f"{task_type[:1].upper()}{task_type[1:]} task"


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO 8601 string into an aware UTC datetime; naive input is UTC."""

    if not isinstance(value, str):
        raise InvalidTimestampError(DUE_AT_FORMAT_MESSAGE)
    try:
        parsed = datetime.fromisoformat(value.strip())
        if parsed.tzinfo is None:
            return parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)
    except (ValueError, OverflowError) as exc:
        # An offset can push the UTC instant outside the datetime range.
        raise InvalidTimestampError(DUE_AT_FORMAT_MESSAGE) from exc


def format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class TaskCreationService:
    entity_type = "crm.task"

    def __init__(
        self,
        *,
        repository: TaskRepository | None = None,
        clock: Callable[[], datetime] = utcnow,
        channel_factory: Callable[[], NotificationChannel] = get_notification_channel,
    ) -> None:
        self._repository = repository or TaskRepository()
        self._clock = clock
        self._channel_factory = channel_factory

    def validate_request(self, body: Mapping[str, Any]) -> TaskCreationRequest:
        application_id = body.get("application_id")
        if not application_id or not isinstance(application_id, str):
            raise MissingFieldError("application_id", APPLICATION_ID_MESSAGE)

        task_type = body.get("task_type")
        if not task_type:
            raise MissingFieldError("task_type", TASK_TYPE_REQUIRED_MESSAGE)
        if not isinstance(task_type, str) or task_type not in TASK_TYPES:
            raise InvalidEnumError("task_type", TASK_TYPE_ENUM_MESSAGE)

        raw_due_at = body.get("due_at")
        if not raw_due_at:
            raise MissingFieldError("due_at", DUE_AT_REQUIRED_MESSAGE)
        due_at = parse_timestamp(raw_due_at)
        if due_at <= self._now():
            raise PastDueDateError(DUE_AT_PAST_MESSAGE)

        title = body.get("title")
        description = body.get("description")
        return TaskCreationRequest(
            application_id=application_id,
            task_type=task_type,
            due_at=due_at,
            title=title if isinstance(title, str) and title else None,
            description=description if isinstance(description, str) and description else None,
            assigned_to=body.get("assigned_to") or None,
        )

    def create_task(self, session: Session, ctx: AuthContext, body: Mapping[str, Any]) -> TaskCreationResult:
        with tracer.start_as_current_span("task.create") as span:
            try:
                request = self.validate_request(body)
                span.set_attribute("task.type", request.task_type)
                span.set_attribute("application_id", request.application_id)
                application = self._find_application(session, ctx, request.application_id)
                task_id = self._persist(session, ctx, application, request)
            except TaskCreationError as exc:
                observe_task_creation(exc.reason)
                span.set_status(Status(StatusCode.ERROR, exc.reason))
                logger.info(
                    "task.create.rejected",
                    extra={"reason": exc.reason, "status_code": exc.status_code},
                )
                raise

            observe_task_creation("created")
            span.set_attribute("task_id", str(task_id))
            logger.info(
                "task.created",
                extra={
                    "task_id": str(task_id),
                    "application_id": str(application.id),
                    "tenant_id": str(application.tenant_id),
                },
            )
            self._notify(task_id, application, request)
            return TaskCreationResult(task_id=task_id)

    def _now(self) -> datetime:
        now = self._clock()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return now

    def _find_application(self, session: Session, ctx: AuthContext, raw_application_id: str) -> Application:
        application_id = parse_uuid(raw_application_id.strip())
        if application_id is None:
            raise NotFoundError(APPLICATION_NOT_FOUND_MESSAGE)
        application = self._repository.applications.get(session, ctx, application_id)
        if application is None:
            raise NotFoundError(APPLICATION_NOT_FOUND_MESSAGE)
        return application

    def _persist(
        self,
        session: Session,
        ctx: AuthContext,
        application: Application,
        request: TaskCreationRequest,
    ) -> uuid.UUID:
        assigned_to = parse_uuid(request.assigned_to) if request.assigned_to is not None else None
        if request.assigned_to is not None and assigned_to is None:
            logger.warning("task.create.invalid_assignee", extra={"application_id": str(application.id)})
            raise PersistenceError()

        now = self._now()
        task = Task(
            tenant_id=application.tenant_id,
            application_id=application.id,
            type=request.task_type,
            title=request.title or default_title(request.task_type),
            description=request.description,
            assigned_to=assigned_to,
            status="pending",
            due_at=request.due_at,
            created_at=now,
            updated_at=now,
        )
        try:
            self._repository.insert(session, ctx, task, application)
            task_id = task.id
            audit.record(
                actor_user_id=str(ctx.user_id),
                entity_type=self.entity_type,
                entity_id=str(task_id),
                action="create",
                before=None,
                after={
                    "application_id": str(application.id),
                    "type": task.type,
                    "title": task.title,
                    "status": task.status,
                    "due_at": format_timestamp(task.due_at),
                },
                tenant_id=str(application.tenant_id),
                correlation_id=ctx.correlation_id,
            )
            session.commit()
        except AuthorizationError as exc:
            session.rollback()
            raise NotFoundError(APPLICATION_NOT_FOUND_MESSAGE) from exc
        except SQLAlchemyError as exc:
            session.rollback()
            logger.error(
                "task.create.persist_failed",
                extra={"application_id": str(application.id), "error": str(exc)},
            )
            raise PersistenceError() from exc
        return task_id

    def _notify(self, task_id: uuid.UUID, application: Application, request: TaskCreationRequest) -> None:
        payload = {
            "task_id": str(task_id),
            "application_id": str(application.id),
            "type": request.task_type,
            "due_at": format_timestamp(request.due_at),
        }
        backend = "unknown"
        try:
            channel = self._channel_factory()
            backend = getattr(channel, "backend", backend)
            channel.publish(get_settings().notification_topic, payload, tenant_id=str(application.tenant_id))
        except Exception as exc:
            observe_task_notification_failure(backend)
            logger.warning(
                "task.notification_failed",
                extra={"task_id": str(task_id), "topic": get_settings().notification_topic, "error": str(exc)},
            )

