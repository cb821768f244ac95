"""
RequestContext: the "who is asking, what can they do, which tenant" abstraction.

Every authenticated API request gets a RequestContext, built in
`api.deps.get_request_context` from the JWT plus a lookup of the user,
tenant and role rows (all three must be active). It carries:
- user_id / tenant_id: who is asking and whose data they can see
- role: the role key (e.g. "customer_admin")
- permissions: the role's grant list, straight from role_permissions
"""

from __future__ import annotations

from dataclasses import dataclass, field

from fastapi import HTTPException

from assessment_platform.auth.permissions import Permission, has_permission_key, permission_matches


@dataclass
class RequestContext:
    user_id: str
    tenant_id: str
    role: str
    role_id: str | None = None
    permissions: list[str] = field(default_factory=list)
    email: str | None = None
    full_name: str | None = None
    tenant_name: str | None = None
    role_name: str | None = None
    assigned_domains: list[str] = field(default_factory=list)

    def has_permission(self, perm: Permission | str) -> bool:
        return has_permission_key(self.permissions, perm)

    def can(self, action: str, resource: str | None = None) -> bool:
        return permission_matches(self.permissions, action, resource)

    def require_permission(self, perm: Permission | str) -> None:
        """Raise 403 if the caller lacks the given permission."""
        if not self.has_permission(perm):
            value = perm.value if isinstance(perm, Permission) else perm
            raise HTTPException(
                status_code=403,
                detail=f"Insufficient permissions: requires {value}",
            )

    def require_any(self, *perms: Permission | str) -> None:
        """Raise 403 if the caller lacks ALL of the given permissions."""
        if not any(self.has_permission(p) for p in perms):
            needed = ", ".join(p.value if isinstance(p, Permission) else p for p in perms)
            raise HTTPException(
                status_code=403,
                detail=f"Insufficient permissions: requires one of [{needed}]",
            )

    @property
    def actor(self) -> str:
        """Identity string for audit logging."""
        return f"{self.role}:{self.user_id}"

    def user_dict(self) -> dict:
        return {
            "id": self.user_id,
            "email": self.email,
            "name": self.full_name,
            "tenantId": self.tenant_id,
            "tenantName": self.tenant_name,
            "role": self.role,
            "roleName": self.role_name,
            "assignedDomains": list(self.assigned_domains),
        }
