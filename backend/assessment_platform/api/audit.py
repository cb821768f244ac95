"""
Audit API Router: query the audit trail and verify hash-chain integrity.

Platform roles see every tenant's entries; anyone else only their own.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from assessment_platform.config import settings
from assessment_platform.api.deps import get_db, require
from assessment_platform.auth.permissions import Permission
from assessment_platform.auth.context import RequestContext
from assessment_platform.auth.roles import is_platform_role
from assessment_platform.services.audit_service import AuditService
from assessment_platform.schemas.schemas import AuditListResponse, AuditEntry, IntegrityCheckResponse

router = APIRouter(prefix=f"{settings.api_prefix}/audit", tags=["audit"])


@router.get("", response_model=AuditListResponse)
async def list_audit_entries(
    event_type: str | None = Query(None, alias="eventType"),
    resource_type: str | None = Query(None, alias="resourceType"),
    resource_id: str | None = Query(None, alias="resourceId"),
    page: int = Query(1, ge=1),
    size: int = Query(50, ge=1, le=200),
    ctx: RequestContext = Depends(require(Permission.READ_AUDIT)),
    db: AsyncSession = Depends(get_db),
) -> AuditListResponse:
    tenant_id = None if is_platform_role(ctx.role) else ctx.tenant_id
    entries, total = await AuditService(db).query_entries(
        tenant_id=tenant_id,
        event_type=event_type,
        resource_type=resource_type,
        resource_id=resource_id,
        limit=size,
        offset=(page - 1) * size,
    )
    pages = (total + size - 1) // size if total > 0 else 1

    return AuditListResponse(
        total=total,
        page=page,
        size=size,
        pages=pages,
        items=[AuditEntry.model_validate(e) for e in entries],
    )


@router.get("/integrity", response_model=IntegrityCheckResponse)
async def check_integrity(
    ctx: RequestContext = Depends(require(Permission.READ_AUDIT)),
    db: AsyncSession = Depends(get_db),
) -> IntegrityCheckResponse:
    """Walk the whole chain; a tampered entry is reported by event id."""
    result = await AuditService(db).verify_chain_integrity()
    return IntegrityCheckResponse(**result)
