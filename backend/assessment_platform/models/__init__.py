from assessment_platform.models.tenant import Tenant, User  # noqa: F401
from assessment_platform.models.rbac import (  # noqa: F401
    RoleDefinition, PermissionDefinition, RolePermission, UiMenu, RoleMenu,
)
from assessment_platform.models.template import (  # noqa: F401
    AssessmentTemplate, TemplateDimension, TemplateQuestion,
)
from assessment_platform.models.assessment import Assessment, Response  # noqa: F401
from assessment_platform.models.audit import AuditLog  # noqa: F401
