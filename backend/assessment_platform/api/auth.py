"""Authentication API: login, refresh, logout, profile, demo role switch."""

import logging

import redis.asyncio as aioredis
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from assessment_platform.config import settings
from assessment_platform.api.deps import get_db, get_redis, get_request_context, build_context
from assessment_platform.api.rbac import serialize_role
from assessment_platform.auth.context import RequestContext
from assessment_platform.auth.jwt import (
    create_access_token, create_refresh_token, parse_refresh_grant, refresh_grant, refresh_key,
)
from assessment_platform.auth.passwords import verify_and_update
from assessment_platform.database import utcnow
from assessment_platform.errors import NotFound, PermissionDenied, ValidationError
from assessment_platform.middleware.metrics import login_attempts_total
from assessment_platform.models import Tenant, User, RoleDefinition
from assessment_platform.schemas.schemas import (
    LoginRequest, RefreshRequest, LogoutRequest, RoleSwitchRequest,
)
from assessment_platform.services.audit_service import AuditService

logger = logging.getLogger(__name__)

router = APIRouter(prefix=settings.api_prefix, tags=["auth"])

REFRESH_TOKEN_TTL = settings.refresh_token_expire_days * 86400  # seconds


# ── Helpers ───────────────────────────────────────────────────────────────────

async def _issue_tokens(r: aioredis.Redis, ctx: RequestContext) -> dict:
    """Access token for the context's role plus a fresh refresh token."""
    access_token = create_access_token(ctx.user_id, ctx.tenant_id, ctx.role, ctx.email)
    refresh_token = create_refresh_token()
    await r.setex(refresh_key(refresh_token), REFRESH_TOKEN_TTL, refresh_grant(ctx.user_id, ctx.role))
    return {
        "token": access_token,
        "refreshToken": refresh_token,
        "expiresIn": settings.access_token_expire_minutes * 60,
    }


def _profile(ctx: RequestContext) -> dict:
    return {**ctx.user_dict(), "permissions": ctx.permissions}


# ── Endpoints ─────────────────────────────────────────────────────────────────

@router.post("/auth/login")
async def login(body: LoginRequest,
                db: AsyncSession = Depends(get_db),
                r: aioredis.Redis = Depends(get_redis)):
    """Authenticate with email + password, receive a JWT and a refresh token."""
    if not body.email or not body.password:
        raise ValidationError("Email and password are required")

    row = (await db.execute(
        select(User, Tenant)
        .join(Tenant, Tenant.tenant_id == User.tenant_id)
        .where(User.email == body.email.strip().lower())
    )).first()

    if row is None or not row[0].is_active or not row[1].is_active:
        login_attempts_total.labels(outcome="failure").inc()
        raise HTTPException(status_code=401, detail="Invalid email or password")
    user = row[0]

    valid, new_hash = verify_and_update(body.password, user.password_hash)
    if not valid:
        login_attempts_total.labels(outcome="failure").inc()
        raise HTTPException(status_code=401, detail="Invalid email or password")
    if new_hash:
        user.password_hash = new_hash
    user.last_login_at = utcnow()

    ctx = await build_context(db, user.user_id)
    if ctx is None:
        login_attempts_total.labels(outcome="failure").inc()
        raise HTTPException(status_code=401, detail="Invalid email or password")

    tokens = await _issue_tokens(r, ctx)
    await AuditService(db).log_login(ctx.user_id, ctx.email, ctx.role, ctx.tenant_id)
    login_attempts_total.labels(outcome="success").inc()
    logger.info("Login: %s (%s)", ctx.email, ctx.role)

    return {"success": True, **tokens, "user": _profile(ctx)}


@router.post("/auth/refresh")
async def refresh(body: RefreshRequest,
                  db: AsyncSession = Depends(get_db),
                  r: aioredis.Redis = Depends(get_redis)):
    """Exchange a valid refresh token for a new access token (rotating)."""
    stored = await r.get(refresh_key(body.refresh_token))
    if not stored:
        raise HTTPException(status_code=401, detail="Invalid or expired refresh token")

    user_id, role_key = parse_refresh_grant(stored)
    ctx = await build_context(db, user_id, role_key)
    if ctx is None:
        raise HTTPException(status_code=401, detail="User not found or inactive")

    await r.delete(refresh_key(body.refresh_token))
    tokens = await _issue_tokens(r, ctx)
    return {"success": True, **tokens, "user": _profile(ctx)}


@router.post("/auth/logout")
async def logout(body: LogoutRequest | None = None,
                 r: aioredis.Redis = Depends(get_redis)):
    """Revoke the refresh token. Access tokens simply expire."""
    if body is not None and body.refresh_token:
        await r.delete(refresh_key(body.refresh_token))
    return {"success": True, "message": "Logged out"}


@router.get("/auth/me")
async def me(ctx: RequestContext = Depends(get_request_context)):
    return {"success": True, "user": _profile(ctx)}


@router.put("/user/role")
async def switch_role(body: RoleSwitchRequest,
                      ctx: RequestContext = Depends(get_request_context),
                      db: AsyncSession = Depends(get_db),
                      r: aioredis.Redis = Depends(get_redis)):
    """
    Demo role switch: re-issue the caller's tokens for another role.

    The stored user row keeps its role; only the token's role claim changes.
    Disabled in production by `ROLE_SWITCH_ENABLED=false`.
    """
    if not settings.role_switch_enabled:
        raise PermissionDenied("Role switching is disabled")

    role = (await db.execute(
        select(RoleDefinition)
        .where(RoleDefinition.role_key == body.role)
        .where(RoleDefinition.is_active.is_(True))
    )).scalar_one_or_none()
    if role is None:
        raise NotFound(f"Role not found: {body.role}")

    new_ctx = await build_context(db, ctx.user_id, role.role_key)
    if new_ctx is None:
        raise HTTPException(status_code=401, detail="User not found or inactive")

    tokens = await _issue_tokens(r, new_ctx)
    await AuditService(db).log_role_switched(ctx.user_id, ctx.role, role.role_key, ctx.tenant_id)
    logger.info("Role switch: %s %s → %s", ctx.email, ctx.role, role.role_key)

    return {"success": True, **tokens, "role": serialize_role(role), "user": _profile(new_ctx)}
