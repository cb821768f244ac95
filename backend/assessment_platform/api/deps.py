"""
API Dependencies: DB session, Redis, auth context, permission guards.

`get_request_context`:
  1. Extracts the Bearer token from the Authorization header
  2. Decodes and validates the JWT
  3. Loads the user, tenant and role rows (all three must be active)
  4. Resolves the role's permissions from role_permissions
"""

import logging
from typing import AsyncGenerator

import redis.asyncio as aioredis
from fastapi import Depends, Request, HTTPException
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from assessment_platform.config import settings
from assessment_platform.database import async_session
from assessment_platform.auth.permissions import Permission
from assessment_platform.auth.context import RequestContext
from assessment_platform.auth.jwt import decode_access_token
from assessment_platform.models import (
    Tenant, User, RoleDefinition, PermissionDefinition, RolePermission,
)
from assessment_platform.workflow import WorkflowRegistry

logger = logging.getLogger(__name__)


# ── Database session ─────────────────────────────────────────────────────────

async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield a DB session per request, commit on success, rollback on error."""
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# ── Redis (refresh tokens) ───────────────────────────────────────────────────

async def get_redis() -> AsyncGenerator[aioredis.Redis, None]:
    r = aioredis.from_url(settings.redis_url, decode_responses=True)
    try:
        yield r
    finally:
        await r.aclose()


# ── Workflows ────────────────────────────────────────────────────────────────

_workflows = WorkflowRegistry()


def get_workflows() -> WorkflowRegistry:
    return _workflows


# ── Request context (JWT authentication) ──────────────────────────────────────

async def role_permission_keys(db: AsyncSession, role_id: str) -> list[str]:
    result = await db.execute(
        select(PermissionDefinition.permission_key)
        .join(RolePermission, RolePermission.permission_id == PermissionDefinition.permission_id)
        .where(RolePermission.role_id == role_id)
        .order_by(PermissionDefinition.permission_key)
    )
    return list(result.scalars())


async def build_context(db: AsyncSession, user_id: str, role_key: str | None = None) -> RequestContext | None:
    """
    Load user + tenant + role and return a RequestContext, or None if any of
    them is missing or inactive. `role_key` overrides the user's stored role
    (the token's role claim after a role switch).
    """
    row = (await db.execute(
        select(User, Tenant)
        .join(Tenant, Tenant.tenant_id == User.tenant_id)
        .where(User.user_id == user_id)
    )).first()
    if row is None:
        return None
    user, tenant = row
    if not user.is_active or not tenant.is_active:
        return None

    if role_key:
        role_query = select(RoleDefinition).where(RoleDefinition.role_key == role_key)
    else:
        role_query = select(RoleDefinition).where(RoleDefinition.role_id == user.role_id)
    role = (await db.execute(role_query)).scalar_one_or_none()
    if role is None or not role.is_active:
        return None

    return RequestContext(
        user_id=user.user_id,
        tenant_id=tenant.tenant_id,
        role=role.role_key,
        role_id=role.role_id,
        permissions=await role_permission_keys(db, role.role_id),
        email=user.email,
        full_name=user.full_name,
        tenant_name=tenant.tenant_name,
        role_name=role.role_name,
        assigned_domains=list(user.assigned_domains or []),
    )


async def get_request_context(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> RequestContext:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Access token required")

    token = auth_header[7:]
    try:
        claims = decode_access_token(token)
    except JWTError as e:
        logger.debug("JWT decode failed: %s", e)
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    ctx = await build_context(db, claims.sub, claims.role)
    if ctx is None:
        raise HTTPException(status_code=401, detail="User not found or inactive")
    return ctx


# ── Permission guards ────────────────────────────────────────────────────────

def require(*perms: Permission | str):
    """
    FastAPI dependency that checks the caller has ALL listed permissions.

    Usage:
        @router.post("/assessments")
        async def create(ctx: RequestContext = Depends(require(Permission.WRITE_ASSESSMENTS))):
            ...
    """
    async def _check(ctx: RequestContext = Depends(get_request_context)) -> RequestContext:
        for p in perms:
            ctx.require_permission(p)
        return ctx
    return _check


def require_any(*perms: Permission | str):
    """FastAPI dependency that checks the caller has AT LEAST ONE of the listed permissions."""
    async def _check(ctx: RequestContext = Depends(get_request_context)) -> RequestContext:
        ctx.require_any(*perms)
        return ctx
    return _check
