from __future__ import annotations

from typing import Any, Generic, TypeVar

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.sql import Select

from app.platform.security.context import SecurityContext
from app.platform.security.rls import TENANT_COLUMN, apply_scope, validate_record_scope, validate_scope_write


ModelT = TypeVar("ModelT")


class BaseRepository(Generic[ModelT]):
    """Tenant-aware data access; every multi-row read and write goes through the scope interceptor."""

    resource = ""
    model: type[ModelT]

    def apply_scope_query(self, query: Select[Any], ctx: SecurityContext) -> Select[Any]:
        return apply_scope(query, ctx.scope)

    def list_records(self, session: Session, ctx: SecurityContext, *, limit: int = 100, offset: int = 0) -> list[ModelT]:
        stmt = self.apply_scope_query(select(self.model), ctx)
        stmt = stmt.order_by(getattr(self.model, "created_at").desc()).limit(limit).offset(offset)
        return list(session.scalars(stmt).all())

    def get(self, session: Session, record_id: Any, ctx: SecurityContext) -> ModelT | None:
        stmt = self.apply_scope_query(select(self.model).where(getattr(self.model, "id") == record_id), ctx)
        return session.scalar(stmt)

    def create(self, session: Session, payload: dict[str, Any], ctx: SecurityContext) -> ModelT:
        organization_id = validate_scope_write(self.resource, payload, ctx)
        values = {key: value for key, value in payload.items() if key != TENANT_COLUMN}
        record = self.model(**values, **{TENANT_COLUMN: organization_id})
        session.add(record)
        session.commit()
        session.refresh(record)
        return record

    def delete(self, session: Session, record: ModelT, ctx: SecurityContext) -> None:
        tenant_column = getattr(self.model, "__tenant_column__", TENANT_COLUMN)
        validate_record_scope(self.resource, getattr(record, tenant_column), ctx)
        session.delete(record)
        session.commit()
