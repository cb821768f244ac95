"""Roles, permissions and navigation for the current user."""

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from assessment_platform.config import settings
from assessment_platform.api.deps import get_db, get_request_context
from assessment_platform.auth.context import RequestContext
from assessment_platform.menus import annotate_menu
from assessment_platform.models import (
    RoleDefinition, PermissionDefinition, RolePermission, UiMenu, RoleMenu,
)

router = APIRouter(prefix=settings.api_prefix, tags=["rbac"])


def serialize_role(role: RoleDefinition) -> dict:
    return {
        "role_id": role.role_id,
        "role_key": role.role_key,
        "role_name": role.role_name,
        "description": role.description,
        "role_type": role.role_type,
        "is_platform_role": role.is_platform_role,
        "icon": role.icon,
        "color": role.color,
        "read_only": role.read_only,
        "navigation": role.navigation,
        "banner": role.banner,
    }


@router.get("/roles")
async def list_roles(ctx: RequestContext = Depends(get_request_context),
                     db: AsyncSession = Depends(get_db)):
    result = await db.execute(
        select(RoleDefinition)
        .where(RoleDefinition.is_active.is_(True))
        .order_by(RoleDefinition.role_name)
    )
    return {"success": True, "roles": [serialize_role(r) for r in result.scalars()]}


@router.get("/permissions")
async def list_permissions(ctx: RequestContext = Depends(get_request_context),
                           db: AsyncSession = Depends(get_db)):
    """Permissions granted to the caller's current role."""
    result = await db.execute(
        select(PermissionDefinition)
        .join(RolePermission, RolePermission.permission_id == PermissionDefinition.permission_id)
        .where(RolePermission.role_id == ctx.role_id)
        .order_by(PermissionDefinition.permission_key)
    )
    permissions = [
        {
            "permission_id": p.permission_id,
            "permission_key": p.permission_key,
            "resource_type": p.resource_type,
            "action": p.action,
            "scope": p.scope,
        }
        for p in result.scalars()
    ]
    return {"success": True, "role": ctx.role, "permissions": permissions}


@router.get("/navigation")
async def navigation(active: str | None = None,
                     ctx: RequestContext = Depends(get_request_context),
                     db: AsyncSession = Depends(get_db)):
    """
    Every active menu item, flagged `allowed` / `disabled` for the caller's
    role. Items outside the role's menus are returned disabled, not omitted.
    """
    menus = list((await db.execute(
        select(UiMenu)
        .where(UiMenu.is_active.is_(True))
        .order_by(UiMenu.sort_order)
    )).scalars())
    granted = set((await db.execute(
        select(RoleMenu.menu_id).where(RoleMenu.role_id == ctx.role_id)
    )).scalars())

    items = [
        {
            "id": m.menu_key,
            "menu_id": m.menu_id,
            "label": m.label,
            "href": m.href,
            "icon": m.icon,
            "category": m.category,
            "description": m.description,
            "keywords": m.keywords or [],
            "parent_id": m.parent_id,
            "sort_order": m.sort_order,
        }
        for m in menus
    ]
    allowed = [m.menu_key for m in menus if m.menu_id in granted]
    return {"success": True, "navigation": annotate_menu(items, allowed, active)}
