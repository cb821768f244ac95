"""
Permission keys and the matching rule used everywhere a grant is checked.

Each permission follows the pattern `action:resource`. A role's grant list
may also hold wildcards:

    "*"           everything
    "admin:*"     everything (platform super-admin marker)
    "action:*"    that action on every resource

The same `permission_matches` function backs the API guards and the client
RoleService, so both sides always agree on what a role can do.
"""

from enum import Enum
from typing import Iterable

WILDCARD = "*"
SUPERADMIN_WILDCARD = "admin:*"


class Permission(str, Enum):
    # ── Assessments ──
    READ_ASSESSMENTS = "read:assessments"
    CREATE_ASSESSMENTS = "create:assessments"
    WRITE_ASSESSMENTS = "write:assessments"
    ASSIGN_ASSESSMENTS = "assign:assessments"
    DELETE_ASSESSMENTS = "delete:assessments"
    EXPORT_ASSESSMENTS = "export:assessments"

    # ── Questions / responses ──
    READ_QUESTIONS = "read:questions"
    CREATE_QUESTIONS = "create:questions"
    WRITE_RESPONSES = "write:responses"
    REVIEW_RESPONSES = "review:responses"

    # ── Templates ──
    READ_TEMPLATES = "read:templates"
    WRITE_TEMPLATES = "write:templates"

    # ── Administration ──
    MANAGE_USERS = "manage:users"
    MANAGE_ROLES = "manage:roles"
    READ_AUDIT = "read:audit"


def split_permission(key: str) -> tuple[str, str | None]:
    """Split `action:resource` into its parts. Bare actions have no resource."""
    action, sep, resource = key.partition(":")
    return action, (resource if sep else None)


def permission_matches(granted: Iterable[str], action: str, resource: str | None = None) -> bool:
    """
    True if the grant list allows `action` (optionally on `resource`).

    With a resource, `action:resource` or `action:*` grants it. Without one,
    only the bare `action` entry does. `*` and `admin:*` grant everything.
    """
    granted = set(granted)
    if WILDCARD in granted or SUPERADMIN_WILDCARD in granted:
        return True
    if f"{action}:{WILDCARD}" in granted:
        return True
    if resource is not None:
        return f"{action}:{resource}" in granted
    return action in granted


def has_permission_key(granted: Iterable[str], key: str | Permission) -> bool:
    """Check a full `action:resource` key against a grant list."""
    action, resource = split_permission(key.value if isinstance(key, Permission) else key)
    return permission_matches(granted, action, resource)
