from __future__ import annotations

from datetime import date, datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


InvoiceStatus = Literal["draft", "sent", "paid", "overdue", "cancelled"]
TaskStatus = Literal["pending", "in_progress", "completed", "cancelled"]


class RecordCreate(BaseModel):
    # Only honoured for cross-tenant sessions; tenant sessions must omit it or match their own.
    organization_id: str | None = None


class OrganizationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    created_at: datetime


class CustomerCreate(RecordCreate):
    name: str = Field(min_length=1)
    email: str | None = None
    phone: str | None = None
    address: str | None = None


class CustomerRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    organization_id: str
    name: str
    email: str | None
    phone: str | None
    address: str | None
    created_at: datetime


class VehicleCreate(RecordCreate):
    make: str = Field(min_length=1)
    model: str = Field(min_length=1)
    customer_id: UUID | None = None
    year: int | None = Field(default=None, ge=1886, le=2100)
    license_plate: str | None = None
    vin: str | None = Field(default=None, max_length=32)


class VehicleRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    organization_id: str
    customer_id: UUID | None
    make: str
    model: str
    year: int | None
    license_plate: str | None
    vin: str | None
    created_at: datetime


class InvoiceCreate(RecordCreate):
    number: str = Field(min_length=1)
    customer_id: UUID | None = None
    vehicle_id: UUID | None = None
    status: InvoiceStatus = "draft"
    due_date: date | None = None
    notes: str | None = None


class InvoiceRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    organization_id: str
    customer_id: UUID | None
    vehicle_id: UUID | None
    number: str
    status: str
    due_date: date | None
    notes: str | None
    created_at: datetime


class TaskCreate(RecordCreate):
    title: str = Field(min_length=1)
    invoice_id: UUID | None = None
    status: TaskStatus = "pending"
    assigned_to: str | None = None


class TaskRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    organization_id: str
    invoice_id: UUID | None
    title: str
    status: str
    assigned_to: str | None
    created_at: datetime
