"""Seed reference data: roles, navigation, assessment templates and questions."""

from assessment_platform.auth.roles import ROLE_PERMISSIONS, ASSESSMENT_DATA_FILTERS as _DATA_FILTERS, Role

# ──────────────────────────────────────────────
# Roles (UI metadata + navigation allow-lists)
# Allow-list entries are substring-matched against nav item id / href.
# ──────────────────────────────────────────────
ROLES = {
    Role.SUPERADMIN.value: {
        "name": "REABEL Super Admin", "type": "platform", "icon": "shield",
        "description": "Full platform administration across all tenants",
        "color": "#1F2937", "readOnly": False, "navigation": "all",
        "banner": {"text": "Platform administrator mode", "type": "warning"},
    },
    Role.CONSULTANT.value: {
        "name": "REABEL Consultant", "type": "platform", "icon": "briefcase",
        "description": "Supports customers through assessments and reviews",
        "color": "#667EEA", "readOnly": False,
        "navigation": ["dashboard", "assessment", "templates", "reviews", "reports"],
        "banner": None,
    },
    Role.CUSTOMER_ADMIN.value: {
        "name": "Customer Admin", "type": "customer", "icon": "building",
        "description": "Manages assessments, team and settings for their company",
        "color": "#48A9A6", "readOnly": False,
        "navigation": ["dashboard", "assessment", "templates", "questionnaire",
                       "reviews", "action", "reports", "team", "settings"],
        "banner": None,
    },
    Role.DOMAIN_MANAGER.value: {
        "name": "Domain Manager", "type": "customer", "icon": "layers",
        "description": "Owns one or more assessment dimensions",
        "color": "#F59E0B", "readOnly": False,
        "navigation": ["dashboard", "assessment", "questionnaire", "action", "team"],
        "banner": None,
    },
    Role.CONTRIBUTOR.value: {
        "name": "Contributor", "type": "customer", "icon": "edit",
        "description": "Answers questions on assigned assessments",
        "color": "#10B981", "readOnly": False,
        "navigation": ["dashboard", "assessment", "questionnaire"],
        "banner": None,
    },
    Role.REVIEWER.value: {
        "name": "Reviewer", "type": "customer", "icon": "check-circle",
        "description": "Approves or rejects submitted responses",
        "color": "#8B5CF6", "readOnly": False,
        "navigation": ["dashboard", "assessment", "reviews"],
        "banner": None,
    },
    Role.EXECUTIVE.value: {
        "name": "Executive Viewer", "type": "customer", "icon": "eye",
        "description": "Read-only access to dashboards and reports",
        "color": "#6B7280", "readOnly": True,
        "navigation": ["dashboard", "reports"],
        "banner": {"text": "Read-only view", "type": "info"},
    },
}

# Row-level scope applied to the assessment list per role
ASSESSMENT_DATA_FILTERS = {role: scope.value for role, scope in _DATA_FILTERS.items()}

PERMISSIONS_BY_ROLE = {role.value: list(perms) for role, perms in ROLE_PERMISSIONS.items()}


# ──────────────────────────────────────────────
# Navigation items
# ──────────────────────────────────────────────
NAVIGATION = [
    {"id": "dashboard", "label": "Dashboard", "icon": "layout-dashboard", "href": "02_dashboard.html",
     "category": "main", "description": "Overview of assessment progress", "keywords": ["home", "overview"]},
    {"id": "templates", "label": "Templates", "icon": "library", "href": "03_templates.html",
     "category": "assessments", "description": "Framework templates", "keywords": ["framework", "iso", "nist"]},
    {"id": "assessment-list", "label": "Assessments", "icon": "file-text", "href": "04_assessments.html",
     "category": "assessments", "description": "All assessments", "keywords": ["list", "evaluation"]},
    {"id": "assessment-detail", "label": "Assessment Detail", "icon": "file-search", "href": "05_assessment_detail.html",
     "category": "assessments", "description": "Dimensions and scores", "keywords": ["score", "dimension"]},
    {"id": "questionnaire", "label": "Questionnaire", "icon": "list-checks", "href": "06_questionnaire.html",
     "category": "assessments", "description": "Answer assessment questions", "keywords": ["answer", "questions"]},
    {"id": "reviews", "label": "Reviews", "icon": "check-square", "href": "07_reviews.html",
     "category": "review", "description": "Approve or reject responses", "keywords": ["approve", "reject"]},
    {"id": "action-plans", "label": "Action Plans", "icon": "target", "href": "08_action_plans.html",
     "category": "improvement", "description": "Follow-up actions", "keywords": ["actions", "remediation"]},
    {"id": "reports", "label": "Reports", "icon": "bar-chart", "href": "09_reports.html",
     "category": "insights", "description": "Scores and trends", "keywords": ["analytics", "export"]},
    {"id": "team", "label": "Team", "icon": "users", "href": "10_team.html",
     "category": "admin", "description": "Team members and assignments", "keywords": ["people", "assign"]},
    {"id": "settings", "label": "Settings", "icon": "settings", "href": "11_settings.html",
     "category": "admin", "description": "Company settings", "keywords": ["configuration"]},
    {"id": "tenants", "label": "Tenants", "icon": "building-2", "href": "12_admin_tenants.html",
     "category": "platform", "description": "Customer tenants", "keywords": ["customers", "platform"]},
]


# ──────────────────────────────────────────────
# Templates (dimensions are ordered)
# ──────────────────────────────────────────────
TEMPLATES = [
    {
        "id": "iso27001",
        "name": "ISO/IEC 27001 Readiness",
        "description": "Information security management system readiness against ISO/IEC 27001 controls",
        "framework": "iso27001",
        "estimated_duration_weeks": 6,
        "dimensions": [
            {"id": "policies", "name": "Information Security Policies", "weight": 1.0, "max_score": 5},
            {"id": "organization", "name": "Organization of Information Security", "weight": 1.0, "max_score": 5},
            {"id": "hr_security", "name": "Human Resource Security", "weight": 1.0, "max_score": 5},
            {"id": "asset_management", "name": "Asset Management", "weight": 1.0, "max_score": 5},
            {"id": "access_control", "name": "Access Control", "weight": 1.0, "max_score": 5},
            {"id": "cryptography", "name": "Cryptography", "weight": 1.0, "max_score": 5},
            {"id": "physical_security", "name": "Physical and Environmental Security", "weight": 1.0, "max_score": 5},
            {"id": "operations_security", "name": "Operations Security", "weight": 1.0, "max_score": 5},
            {"id": "incident_management", "name": "Incident Management", "weight": 1.0, "max_score": 5},
        ],
    },
    {
        "id": "nist_csf",
        "name": "NIST Cybersecurity Framework",
        "description": "Maturity across the five NIST CSF functions",
        "framework": "nist_csf",
        "estimated_duration_weeks": 4,
        "dimensions": [
            {"id": "identify", "name": "Identify", "weight": 1.0, "max_score": 5},
            {"id": "protect", "name": "Protect", "weight": 1.5, "max_score": 5},
            {"id": "detect", "name": "Detect", "weight": 1.0, "max_score": 5},
            {"id": "respond", "name": "Respond", "weight": 1.0, "max_score": 5},
            {"id": "recover", "name": "Recover", "weight": 0.5, "max_score": 5},
        ],
    },
]


def _maturity_question(template_id: str, dim: dict, order: int) -> dict:
    return {
        "id": f"{template_id}.{dim['id']}.maturity",
        "template_id": template_id,
        "dimension_id": dim["id"],
        "question_type": "scale",
        "question_text": f"How mature are your {dim['name'].lower()} practices?",
        "is_required": True,
        "scale_min": 1,
        "scale_max": 5,
        "scale_labels": {"1": "Initial", "3": "Defined", "5": "Optimized"},
        "scoring_rubric": {"direct_mapping": True},
        "sort_order": order,
    }


QUESTIONS = [
    _maturity_question(t["id"], dim, i)
    for t in TEMPLATES
    for i, dim in enumerate(t["dimensions"])
] + [
    {
        "id": "iso27001.policies.owner",
        "template_id": "iso27001",
        "dimension_id": "policies",
        "question_type": "text",
        "question_text": "Who owns and approves the information security policy?",
        "is_required": False,
        "validation_rules": {"min_length": 3, "max_length": 500},
        "sort_order": 20,
    },
    {
        "id": "iso27001.access_control.mfa",
        "template_id": "iso27001",
        "dimension_id": "access_control",
        "question_type": "multiple_choice",
        "question_text": "Where is multi-factor authentication enforced?",
        "is_required": True,
        "options": [
            {"id": "none", "label": "Nowhere"},
            {"id": "remote", "label": "Remote access only"},
            {"id": "privileged", "label": "Remote and privileged accounts"},
            {"id": "all", "label": "All user accounts"},
        ],
        "scoring_rubric": {"options": [
            {"id": "none", "score": 0}, {"id": "remote", "score": 2},
            {"id": "privileged", "score": 4}, {"id": "all", "score": 5},
        ]},
        "sort_order": 20,
    },
    {
        "id": "iso27001.incident_management.coverage",
        "template_id": "iso27001",
        "dimension_id": "incident_management",
        "question_type": "matrix",
        "question_text": "Rate your incident handling capabilities",
        "is_required": True,
        "matrix_rows": [
            {"id": "detection", "label": "Detection", "required": True},
            {"id": "escalation", "label": "Escalation", "required": True},
            {"id": "lessons", "label": "Lessons learned", "required": False},
        ],
        "matrix_columns": [
            {"value": "none", "label": "None"}, {"value": "partial", "label": "Partial"},
            {"value": "full", "label": "Full"},
        ],
        "scoring_rubric": {"rows": [
            {"id": row, "options": [
                {"value": "none", "score": 0}, {"value": "partial", "score": 2.5}, {"value": "full", "score": 5},
            ]}
            for row in ("detection", "escalation", "lessons")
        ]},
        "sort_order": 20,
    },
]
