from assessment_platform.auth.permissions import Permission, permission_matches, has_permission_key
from assessment_platform.auth.roles import Role, ROLE_PERMISSIONS, DEFAULT_ROLE, PLATFORM_ROLE_PREFIX
from assessment_platform.auth.context import RequestContext

__all__ = [
    "Permission", "permission_matches", "has_permission_key",
    "Role", "ROLE_PERMISSIONS", "DEFAULT_ROLE", "PLATFORM_ROLE_PREFIX",
    "RequestContext",
]
