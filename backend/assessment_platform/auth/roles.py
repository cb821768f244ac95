"""
Default role catalogue: which bundles of permissions make up each role.

At runtime roles and grants come from the `roles` / `role_permissions`
tables (or the client's local JSON data). This module is the seed for both,
and the fallback grant list when a role has no rows yet.

Platform roles (operated by REABEL staff) carry the `reabel_` prefix;
everything else is a customer-side role.
"""

from enum import Enum
from assessment_platform.auth.permissions import Permission, WILDCARD

PLATFORM_ROLE_PREFIX = "reabel_"


class Role(str, Enum):
    SUPERADMIN = "reabel_superadmin"
    CONSULTANT = "reabel_consultant"
    CUSTOMER_ADMIN = "customer_admin"
    DOMAIN_MANAGER = "domain_manager"
    CONTRIBUTOR = "contributor"
    REVIEWER = "reviewer"
    EXECUTIVE = "executive_viewer"


DEFAULT_ROLE = Role.CUSTOMER_ADMIN


def is_platform_role(role_key: str) -> bool:
    return role_key.startswith(PLATFORM_ROLE_PREFIX)


# ── Read-only baseline ──
_VIEWER_PERMS: list[str] = [
    Permission.READ_ASSESSMENTS.value,
    Permission.READ_QUESTIONS.value,
    Permission.READ_TEMPLATES.value,
]

# ── Contributor: answers questions ──
_CONTRIBUTOR_PERMS: list[str] = _VIEWER_PERMS + [
    Permission.WRITE_ASSESSMENTS.value,
    Permission.WRITE_RESPONSES.value,
]

# ── Reviewer: approves / rejects responses ──
_REVIEWER_PERMS: list[str] = _VIEWER_PERMS + [
    Permission.REVIEW_RESPONSES.value,
    Permission.EXPORT_ASSESSMENTS.value,
]

# ── Domain manager: contributor + assignment within their domains ──
_DOMAIN_MANAGER_PERMS: list[str] = _CONTRIBUTOR_PERMS + [
    Permission.ASSIGN_ASSESSMENTS.value,
    Permission.REVIEW_RESPONSES.value,
]

# ── Customer admin: everything on assessments inside their tenant ──
_CUSTOMER_ADMIN_PERMS: list[str] = _DOMAIN_MANAGER_PERMS + [
    "create:*",
    "delete:assessments",
    Permission.EXPORT_ASSESSMENTS.value,
    Permission.MANAGE_USERS.value,
]

# ── Consultant: cross-tenant review and export ──
_CONSULTANT_PERMS: list[str] = _REVIEWER_PERMS + [
    Permission.WRITE_ASSESSMENTS.value,
    Permission.CREATE_QUESTIONS.value,
    Permission.WRITE_TEMPLATES.value,
    Permission.READ_AUDIT.value,
]


ROLE_PERMISSIONS: dict[Role, list[str]] = {
    Role.SUPERADMIN: [WILDCARD],
    Role.CONSULTANT: _CONSULTANT_PERMS,
    Role.CUSTOMER_ADMIN: _CUSTOMER_ADMIN_PERMS,
    Role.DOMAIN_MANAGER: _DOMAIN_MANAGER_PERMS,
    Role.CONTRIBUTOR: _CONTRIBUTOR_PERMS,
    Role.REVIEWER: _REVIEWER_PERMS,
    Role.EXECUTIVE: list(_VIEWER_PERMS),
}


# ── Row-level scope applied to assessment lists ──
class DataScope(str, Enum):
    ALL = "all"
    ALL_CUSTOMERS = "all_customers"
    OWN_COMPANY = "own_company"
    ASSIGNED_DOMAINS = "assigned_domains"
    ASSIGNED_ONLY = "assigned_only"
    PENDING_REVIEW = "pending_review"


ASSESSMENT_DATA_FILTERS: dict[str, DataScope] = {
    Role.SUPERADMIN.value: DataScope.ALL,
    Role.CONSULTANT.value: DataScope.ALL_CUSTOMERS,
    Role.CUSTOMER_ADMIN.value: DataScope.OWN_COMPANY,
    Role.DOMAIN_MANAGER.value: DataScope.ASSIGNED_DOMAINS,
    Role.CONTRIBUTOR.value: DataScope.ASSIGNED_ONLY,
    Role.REVIEWER.value: DataScope.PENDING_REVIEW,
    Role.EXECUTIVE.value: DataScope.OWN_COMPANY,
}


def data_scope(role_key: str) -> DataScope:
    """Scope for a role; unknown roles only see their own company."""
    return ASSESSMENT_DATA_FILTERS.get(role_key, DataScope.OWN_COMPANY)


def in_scope(scope: DataScope | str, record: dict, *, user_id: str, tenant_id: str | None,
             assigned_domains: list[str] | None = None) -> bool:
    """
    Row-level check for one assessment record (plain dict, snake_case keys).

    Shared by the API list endpoint and the client AssessmentService.
    """
    scope = DataScope(scope)
    if scope in (DataScope.ALL, DataScope.ALL_CUSTOMERS):
        return True
    if tenant_id is not None and record.get("tenant_id") not in (None, tenant_id):
        return False
    if scope == DataScope.OWN_COMPANY:
        return True
    if scope == DataScope.ASSIGNED_ONLY:
        return user_id in (record.get("assigned_to") or [])
    if scope == DataScope.PENDING_REVIEW:
        return record.get("status") == "in_review" or user_id in (record.get("reviewers") or [])
    # ASSIGNED_DOMAINS
    domains = set(assigned_domains or [])
    dims = {d.get("id") for d in record.get("dimensions") or [] if isinstance(d, dict)}
    return bool(domains & dims) or user_id in (record.get("assigned_to") or [])
