from __future__ import annotations

import logging
from typing import Any, Protocol

from celery import Celery

from learnlynk import events
from learnlynk.core.celery_app import celery_app
from learnlynk.core.config import ConfigError, Settings, get_settings

logger = logging.getLogger("learnlynk.notifications")

BROADCAST_TASK_NAME = "learnlynk.notifications.broadcast_task_created"


class NotificationChannel(Protocol):
    backend: str

    def publish(self, topic: str, payload: dict[str, Any], *, tenant_id: str | None = None) -> None: ...


class InProcessNotificationChannel:
    """Publishes onto the in-process event bus of the API worker."""

    backend = "inprocess"

    def publish(self, topic: str, payload: dict[str, Any], *, tenant_id: str | None = None) -> None:
        events.publish(events.build_envelope(topic, payload, tenant_id=tenant_id))


class CeleryNotificationChannel:
    """Hands the broadcast to a Celery worker without waiting for it."""

    backend = "celery"

    def __init__(self, app: Celery | None = None) -> None:
        self._app = app or celery_app

    def publish(self, topic: str, payload: dict[str, Any], *, tenant_id: str | None = None) -> None:
        self._app.send_task(BROADCAST_TASK_NAME, args=[topic, payload], kwargs={"tenant_id": tenant_id})


class DisabledNotificationChannel:
    backend = "disabled"

    def publish(self, topic: str, payload: dict[str, Any], *, tenant_id: str | None = None) -> None:
        logger.debug("notification.skipped", extra={"topic": topic})


def get_notification_channel(settings: Settings | None = None) -> NotificationChannel:
    resolved = settings or get_settings()
    backend = resolved.notification_backend.strip().lower()
    if backend == "inprocess":
        return InProcessNotificationChannel()
    if backend == "celery":
        return CeleryNotificationChannel()
    if backend == "disabled":
        return DisabledNotificationChannel()
    raise ConfigError("NOTIFICATION_BACKEND")


@celery_app.task(name=BROADCAST_TASK_NAME)
def broadcast_task_created(topic: str, payload: dict[str, Any], tenant_id: str | None = None) -> None:
    logger.info("notification.broadcast", extra={"topic": topic, "task_id": payload.get("task_id")})
    InProcessNotificationChannel().publish(topic, payload, tenant_id=tenant_id)
