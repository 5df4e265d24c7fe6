import uuid
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.rbac import require_elevated_session, require_permission
from app.platform.security.capabilities import Action, ResourceKind
from app.platform.security.context import SecurityContext
from app.platform.security.repository import BaseRepository
from app.platform.security.rls import validate_scope_write
from app.records.repositories import (
    CustomerRepository,
    InvoiceRepository,
    OrganizationRepository,
    TaskRepository,
    VehicleRepository,
)
from app.records.schemas import (
    CustomerCreate,
    CustomerRead,
    InvoiceCreate,
    InvoiceRead,
    OrganizationRead,
    TaskCreate,
    TaskRead,
    VehicleCreate,
    VehicleRead,
)


customer_repository = CustomerRepository()
vehicle_repository = VehicleRepository()
invoice_repository = InvoiceRepository()
task_repository = TaskRepository()
organization_repository = OrganizationRepository()


def _ensure_references(
    session: Session,
    ctx: SecurityContext,
    payload: dict[str, Any],
    references: dict[str, BaseRepository[Any]],
    organization_id: str,
) -> None:
    """Referenced records must be visible in the caller's scope and belong to the same organization."""

    for field_name, repository in references.items():
        reference_id = payload.get(field_name)
        if reference_id is None:
            continue
        referenced = repository.get(session, reference_id, ctx)
        if referenced is None:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=f"{field_name} not found")
        if referenced.organization_id != organization_id:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=f"{field_name} belongs to another organization",
            )


def build_records_router(
    *,
    prefix: str,
    resource: ResourceKind,
    repository: BaseRepository[Any],
    create_schema: type[BaseModel],
    read_schema: type[BaseModel],
    references: dict[str, BaseRepository[Any]] | None = None,
) -> APIRouter:
    router = APIRouter(prefix=prefix, tags=[f"records.{resource.value}"])
    label = resource.value.rstrip("s")
    reference_repositories = references or {}

    @router.get("", response_model=list[read_schema])  # type: ignore[valid-type]
    def list_records(
        limit: int = Query(default=50, ge=1, le=200),
        offset: int = Query(default=0, ge=0),
        db: Session = Depends(get_db),
        ctx: SecurityContext = Depends(require_permission(resource, Action.VIEW, needs_scope=True)),
    ) -> list[Any]:
        rows = repository.list_records(db, ctx, limit=limit, offset=offset)
        return [read_schema.model_validate(row) for row in rows]

    @router.get("/{record_id}", response_model=read_schema)
    def get_record(
        record_id: uuid.UUID,
        db: Session = Depends(get_db),
        ctx: SecurityContext = Depends(require_permission(resource, Action.VIEW, needs_scope=True)),
    ) -> Any:
        row = repository.get(db, record_id, ctx)
        if row is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{label} not found")
        return read_schema.model_validate(row)

    @router.post("", response_model=read_schema, status_code=status.HTTP_201_CREATED)
    def create_record(
        dto: create_schema,  # type: ignore[valid-type]
        db: Session = Depends(get_db),
        ctx: SecurityContext = Depends(require_permission(resource, Action.CREATE, needs_scope=True)),
    ) -> Any:
        payload = dto.model_dump()  # type: ignore[attr-defined]
        if payload.get("organization_id") is None:
            payload.pop("organization_id", None)
        target_organization = validate_scope_write(resource.value, payload, ctx)
        if ctx.is_unscoped and organization_repository.get(db, target_organization, ctx) is None:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="organization_id not found")
        _ensure_references(db, ctx, payload, reference_repositories, target_organization)
        row = repository.create(db, payload, ctx)
        return read_schema.model_validate(row)

    @router.delete("/{record_id}", status_code=status.HTTP_200_OK)
    def delete_record(
        record_id: uuid.UUID,
        db: Session = Depends(get_db),
        ctx: SecurityContext = Depends(require_permission(resource, Action.DELETE, needs_scope=True)),
    ) -> None:
        row = repository.get(db, record_id, ctx)
        if row is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{label} not found")
        repository.delete(db, row, ctx)

    return router


customers_router = build_records_router(
    prefix="/api/customers",
    resource=ResourceKind.CUSTOMERS,
    repository=customer_repository,
    create_schema=CustomerCreate,
    read_schema=CustomerRead,
)

vehicles_router = build_records_router(
    prefix="/api/vehicles",
    resource=ResourceKind.VEHICLES,
    repository=vehicle_repository,
    create_schema=VehicleCreate,
    read_schema=VehicleRead,
    references={"customer_id": customer_repository},
)

invoices_router = build_records_router(
    prefix="/api/invoices",
    resource=ResourceKind.INVOICES,
    repository=invoice_repository,
    create_schema=InvoiceCreate,
    read_schema=InvoiceRead,
    references={"customer_id": customer_repository, "vehicle_id": vehicle_repository},
)

tasks_router = build_records_router(
    prefix="/api/tasks",
    resource=ResourceKind.TASKS,
    repository=task_repository,
    create_schema=TaskCreate,
    read_schema=TaskRead,
    references={"invoice_id": invoice_repository},
)

organizations_router = APIRouter(prefix="/api/organizations", tags=["records.organizations"])


@organizations_router.get("", response_model=list[OrganizationRead])
def list_organizations(
    db: Session = Depends(get_db),
    _elevated: SecurityContext = Depends(require_elevated_session),
    ctx: SecurityContext = Depends(require_permission(ResourceKind.ORGANIZATIONS, Action.VIEW, needs_scope=True)),
) -> list[OrganizationRead]:
    rows = organization_repository.list_records(db, ctx, limit=500)
    return [OrganizationRead.model_validate(row) for row in rows]


@organizations_router.get("/current", response_model=OrganizationRead)
def get_current_organization(
    db: Session = Depends(get_db),
    ctx: SecurityContext = Depends(require_permission(ResourceKind.ORGANIZATIONS, Action.VIEW, needs_scope=True)),
) -> OrganizationRead:
    if ctx.organization_id is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="organization not found")
    row = organization_repository.get(db, ctx.organization_id, ctx)
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="organization not found")
    return OrganizationRead.model_validate(row)
