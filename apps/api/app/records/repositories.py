from __future__ import annotations

from app.platform.security.capabilities import ResourceKind
from app.platform.security.repository import BaseRepository
from app.records.models import Customer, Invoice, Organization, Task, Vehicle


class OrganizationRepository(BaseRepository[Organization]):
    resource = ResourceKind.ORGANIZATIONS.value
    model = Organization


class CustomerRepository(BaseRepository[Customer]):
    resource = ResourceKind.CUSTOMERS.value
    model = Customer


class VehicleRepository(BaseRepository[Vehicle]):
    resource = ResourceKind.VEHICLES.value
    model = Vehicle


class InvoiceRepository(BaseRepository[Invoice]):
    resource = ResourceKind.INVOICES.value
    model = Invoice


class TaskRepository(BaseRepository[Task]):
    resource = ResourceKind.TASKS.value
    model = Task
