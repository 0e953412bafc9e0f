from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from learnlynk.api.routes import router as api_router
from learnlynk.core.config import ConfigError, get_settings
from learnlynk.core.context import RequestContextMiddleware
from learnlynk.core.events import InternalEvent, event_bus
from learnlynk.crm.api import CONFIG_ERROR_MESSAGE, error_response
from learnlynk.logging import configure_logging
from learnlynk.middleware.correlation_id import CorrelationIdMiddleware
from learnlynk.middleware.request_logging import RequestLoggingMiddleware
from learnlynk.otel import get_fastapi_server_request_hook, setup_otel


configure_logging()
logger = logging.getLogger("learnlynk.lifecycle")
notification_logger = logging.getLogger("learnlynk.notifications")
_subscriptions_registered = False

CREATE_TASK_PATH = "/api/tasks/create-task"


def _on_system_started(event: InternalEvent) -> None:
    logger.info("system.started", extra={"topic": event.name})


def _on_task_created(event: InternalEvent) -> None:
    envelope = event.payload if isinstance(event.payload, dict) else {}
    payload = envelope.get("payload") if isinstance(envelope.get("payload"), dict) else {}
    notification_logger.info(
        "notification.delivered",
        extra={
            "topic": event.name,
            "task_id": payload.get("task_id"),
            "application_id": payload.get("application_id"),
        },
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _subscriptions_registered
    settings = get_settings()
    if not _subscriptions_registered:
        event_bus.subscribe("system.started", _on_system_started)
        event_bus.subscribe(settings.notification_topic, _on_task_created)
        _subscriptions_registered = True
    event_bus.publish("system.started", {"service": "api"})
    yield


async def _handle_config_error(request: Request, exc: Exception) -> JSONResponse:
    logger.error("config.missing", extra={"error": str(exc), "path": request.url.path})
    if request.url.path == CREATE_TASK_PATH:
        return JSONResponse(status_code=500, content={"success": False, "error": CONFIG_ERROR_MESSAGE})
    return error_response(request, status_code=500, code="config_error", message=CONFIG_ERROR_MESSAGE)


settings = get_settings()

app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)
app.add_exception_handler(ConfigError, _handle_config_error)
app.add_middleware(RequestContextMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["authorization", "x-client-info", "apikey", "content-type", "x-correlation-id"],
    expose_headers=["x-correlation-id", "x-request-id"],
)
app.include_router(api_router)

if settings.otel_enabled:
    setup_otel("learnlynk-api", True)

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=get_fastapi_server_request_hook())
