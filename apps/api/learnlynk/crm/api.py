from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from sqlalchemy.orm import Session

from learnlynk.context import get_correlation_id, reset_tenant_id, set_tenant_id
from learnlynk.core.auth import get_current_context
from learnlynk.core.config import ConfigError
from learnlynk.core.database import get_db
from learnlynk.crm.errors import TaskCreationError
from learnlynk.crm.schemas import (
    ApplicationCreate,
    ApplicationRead,
    ApplicationUpdate,
    CreateTaskResponse,
    LeadCreate,
    LeadRead,
    LeadUpdate,
    TaskRead,
    TaskUpdate,
)
from learnlynk.crm.service import ApplicationService, LeadService, TaskService
from learnlynk.crm.task_creation import TaskCreationResult, TaskCreationService
from learnlynk.platform.security.context import AuthContext

logger = logging.getLogger("learnlynk.crm.api")

leads_router = APIRouter(prefix="/api/leads", tags=["crm.leads"])
applications_router = APIRouter(prefix="/api/applications", tags=["crm.applications"])
tasks_router = APIRouter(prefix="/api/tasks", tags=["crm.tasks"])
lead_service = LeadService()
application_service = ApplicationService()
task_service = TaskService()
task_creation_service = TaskCreationService()

INVALID_JSON_MESSAGE = "Invalid JSON in request body"
METHOD_NOT_ALLOWED_MESSAGE = "Method not allowed. Use POST."
CONFIG_ERROR_MESSAGE = "Internal server configuration error"
INTERNAL_ERROR_MESSAGE = "Internal server error"


@dataclass
class ErrorEnvelope:
    code: str
    message: str
    details: Any
    correlation_id: str | None


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
) -> JSONResponse:
    correlation_id = get_correlation_id() or getattr(getattr(request.state, "context", None), "request_id", None)
    payload = ErrorEnvelope(
        code=code,
        message=message,
        details=details,
        correlation_id=correlation_id,
    )
    return JSONResponse(status_code=status_code, content=payload.__dict__)


def task_creation_response(status_code: int, payload: CreateTaskResponse) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=payload.model_dump(exclude_none=True))


@leads_router.get("", response_model=list[LeadRead])
def list_leads(
    request: Request,
    stage: str | None = Query(default=None),
    owner_id: uuid.UUID | None = Query(default=None),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_context),
) -> list[LeadRead] | JSONResponse:
    try:
        return lead_service.list_leads(db, ctx, stage=stage, owner_id=owner_id)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_lead_list_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@leads_router.post("", response_model=LeadRead, status_code=status.HTTP_201_CREATED)
def create_lead(
    request: Request,
    dto: LeadCreate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_context),
) -> LeadRead | JSONResponse:
    try:
        return lead_service.create_lead(db, ctx, dto)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_lead_create_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@leads_router.get("/{lead_id}", response_model=LeadRead)
def get_lead(
    request: Request,
    lead_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_context),
) -> LeadRead | JSONResponse:
    try:
        return lead_service.get_lead(db, ctx, lead_id)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_lead_get_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@leads_router.patch("/{lead_id}", response_model=LeadRead)
def patch_lead(
    request: Request,
    lead_id: uuid.UUID,
    dto: LeadUpdate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_context),
) -> LeadRead | JSONResponse:
    try:
        return lead_service.update_lead(db, ctx, lead_id, dto)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_lead_update_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@leads_router.delete("/{lead_id}", status_code=status.HTTP_204_NO_CONTENT, response_class=Response)
def delete_lead(
    request: Request,
    lead_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_context),
) -> Response:
    try:
        lead_service.delete_lead(db, ctx, lead_id)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_lead_delete_failed",
            message=str(exc.detail),
            details=exc.detail,
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@applications_router.get("", response_model=list[ApplicationRead])
def list_applications(
    request: Request,
    lead_id: uuid.UUID | None = Query(default=None),
    status_filter: str | None = Query(default=None, alias="status"),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_context),
) -> list[ApplicationRead] | JSONResponse:
    try:
        return application_service.list_applications(db, ctx, lead_id=lead_id, status_filter=status_filter)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_application_list_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@applications_router.post("", response_model=ApplicationRead, status_code=status.HTTP_201_CREATED)
def create_application(
    request: Request,
    dto: ApplicationCreate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_context),
) -> ApplicationRead | JSONResponse:
    try:
        return application_service.create_application(db, ctx, dto)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_application_create_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@applications_router.get("/{application_id}", response_model=ApplicationRead)
def get_application(
    request: Request,
    application_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_context),
) -> ApplicationRead | JSONResponse:
    try:
        return application_service.get_application(db, ctx, application_id)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_application_get_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@applications_router.patch("/{application_id}", response_model=ApplicationRead)
def patch_application(
    request: Request,
    application_id: uuid.UUID,
    dto: ApplicationUpdate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_context),
) -> ApplicationRead | JSONResponse:
    try:
        return application_service.update_application(db, ctx, application_id, dto)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_application_update_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@applications_router.delete("/{application_id}", status_code=status.HTTP_204_NO_CONTENT, response_class=Response)
def delete_application(
    request: Request,
    application_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_context),
) -> Response:
    try:
        application_service.delete_application(db, ctx, application_id)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_application_delete_failed",
            message=str(exc.detail),
            details=exc.detail,
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@tasks_router.options("/create-task", include_in_schema=False)
def create_task_preflight() -> PlainTextResponse:
    return PlainTextResponse("ok")


@tasks_router.api_route("/create-task", methods=["GET", "HEAD", "PUT", "PATCH", "DELETE"], include_in_schema=False)
def create_task_wrong_method() -> JSONResponse:
    return task_creation_response(
        status.HTTP_405_METHOD_NOT_ALLOWED,
        CreateTaskResponse(success=False, error=METHOD_NOT_ALLOWED_MESSAGE),
    )


def _create_task_for_principal(db: Session, ctx: AuthContext, body: dict[str, Any]) -> TaskCreationResult:
    token = set_tenant_id(str(ctx.tenant_id) if ctx.tenant_id else None)
    try:
        return task_creation_service.create_task(db, ctx, body)
    finally:
        reset_tenant_id(token)


@tasks_router.post("/create-task", response_model=CreateTaskResponse)
async def create_task(
    request: Request,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_context),
) -> JSONResponse:
    try:
        body = await request.json()
    except ValueError:
        body = None
    if not isinstance(body, dict):
        return task_creation_response(
            status.HTTP_400_BAD_REQUEST,
            CreateTaskResponse(success=False, error=INVALID_JSON_MESSAGE),
        )

    try:
        result = await run_in_threadpool(_create_task_for_principal, db, ctx, body)
    except TaskCreationError as exc:
        return task_creation_response(exc.status_code, CreateTaskResponse(success=False, error=exc.message))
    except ConfigError as exc:
        logger.error("config.missing", extra={"error": str(exc)})
        return task_creation_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            CreateTaskResponse(success=False, error=CONFIG_ERROR_MESSAGE),
        )
    except Exception:
        logger.exception("task.create.unexpected_error")
        return task_creation_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            CreateTaskResponse(success=False, error=INTERNAL_ERROR_MESSAGE),
        )

    return task_creation_response(status.HTTP_200_OK, CreateTaskResponse(success=True, task_id=str(result.task_id)))


@tasks_router.get("/today", response_model=list[TaskRead])
def list_tasks_due_today(
    request: Request,
    tz: str = Query(default="UTC"),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_context),
) -> list[TaskRead] | JSONResponse:
    try:
        return task_service.list_due_on(db, ctx, tz_name=tz)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_task_list_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@tasks_router.get("/due", response_model=list[TaskRead])
def list_tasks_due_on(
    request: Request,
    day: date = Query(),
    tz: str = Query(default="UTC"),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_context),
) -> list[TaskRead] | JSONResponse:
    try:
        return task_service.list_due_on(db, ctx, day=day, tz_name=tz)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_task_list_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@tasks_router.get("/overdue", response_model=list[TaskRead])
def list_overdue_tasks(
    request: Request,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_context),
) -> list[TaskRead] | JSONResponse:
    try:
        return task_service.list_overdue(db, ctx)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_task_list_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@tasks_router.get("/{task_id}", response_model=TaskRead)
def get_task(
    request: Request,
    task_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_context),
) -> TaskRead | JSONResponse:
    try:
        return task_service.get_task(db, ctx, task_id)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_task_get_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@tasks_router.patch("/{task_id}", response_model=TaskRead)
def patch_task(
    request: Request,
    task_id: uuid.UUID,
    dto: TaskUpdate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_context),
) -> TaskRead | JSONResponse:
    try:
        return task_service.update_task(db, ctx, task_id, dto)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_task_update_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@tasks_router.post("/{task_id}/complete", response_model=TaskRead)
def complete_task(
    request: Request,
    task_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_context),
) -> TaskRead | JSONResponse:
    try:
        return task_service.mark_complete(db, ctx, task_id)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_task_complete_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@tasks_router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT, response_class=Response)
def delete_task(
    request: Request,
    task_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_context),
) -> Response:
    try:
        task_service.delete_task(db, ctx, task_id)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_task_delete_failed",
            message=str(exc.detail),
            details=exc.detail,
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
