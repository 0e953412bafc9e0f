from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator


TaskStatus = Literal["pending", "in_progress", "completed", "cancelled"]


def _reject_explicit_nulls(model: BaseModel, *fields: str) -> None:
    for name in fields:
        if name in model.model_fields_set and getattr(model, name) is None:
            raise ValueError(f"{name} cannot be null")


class LeadCreate(BaseModel):
    owner_id: UUID | None = None
    stage: str = Field(default="new", min_length=1, max_length=32)
    first_name: str | None = None
    last_name: str | None = None
    email: EmailStr | None = None
    phone: str | None = None
    source: str | None = None
    notes: str | None = None


class LeadUpdate(BaseModel):
    tenant_id: UUID | None = None
    owner_id: UUID | None = None
    stage: str | None = Field(default=None, min_length=1, max_length=32)
    first_name: str | None = None
    last_name: str | None = None
    email: EmailStr | None = None
    phone: str | None = None
    source: str | None = None
    notes: str | None = None

    @model_validator(mode="after")
    def reject_null_stage(self) -> "LeadUpdate":
        _reject_explicit_nulls(self, "stage")
        return self


class LeadRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: UUID
    owner_id: UUID
    stage: str
    first_name: str | None
    last_name: str | None
    email: str | None
    phone: str | None
    source: str | None
    notes: str | None
    created_at: datetime
    updated_at: datetime


class ApplicationCreate(BaseModel):
    lead_id: UUID
    status: str = Field(default="pending", min_length=1, max_length=32)
    program: str | None = None
    counselor_id: UUID | None = None
    submitted_at: datetime | None = None


class ApplicationUpdate(BaseModel):
    status: str | None = Field(default=None, min_length=1, max_length=32)
    program: str | None = None
    counselor_id: UUID | None = None
    submitted_at: datetime | None = None
    reviewed_at: datetime | None = None
    decision: str | None = None

    @model_validator(mode="after")
    def reject_null_status(self) -> "ApplicationUpdate":
        _reject_explicit_nulls(self, "status")
        return self


class ApplicationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: UUID
    lead_id: UUID
    status: str
    program: str | None
    counselor_id: UUID | None
    submitted_at: datetime | None
    reviewed_at: datetime | None
    decision: str | None
    created_at: datetime
    updated_at: datetime


class TaskUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1)
    description: str | None = None
    status: TaskStatus | None = None
    assigned_to: UUID | None = None

    @model_validator(mode="after")
    def reject_null_required_fields(self) -> "TaskUpdate":
        _reject_explicit_nulls(self, "title", "status")
        return self


class TaskRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: UUID
    application_id: UUID
    type: str
    title: str
    description: str | None
    assigned_to: UUID | None
    status: str
    due_at: datetime
    completed_at: datetime | None
    created_at: datetime
    updated_at: datetime


class CreateTaskResponse(BaseModel):
    success: bool
    task_id: str | None = None
    error: str | None = None
