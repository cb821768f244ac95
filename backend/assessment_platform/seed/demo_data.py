"""
Seed orchestrator: inserts reference data and a demo tenant, or exports the
same data as the JSON files the client reads in local mode.

Usage:
    python -m assessment_platform.seed.demo_data                 # Seed everything
    python -m assessment_platform.seed.demo_data --clean         # Drop all data + re-seed
    python -m assessment_platform.seed.demo_data --export DIR    # Write local-mode JSON files
"""

import asyncio
import json
import logging
import sys
import time
from pathlib import Path

from sqlalchemy import delete, select, func
from sqlalchemy.ext.asyncio import AsyncSession

from assessment_platform.auth.passwords import hash_password
from assessment_platform.auth.permissions import split_permission
from assessment_platform.auth.roles import is_platform_role
from assessment_platform.database import Base, engine, async_session
from assessment_platform.menus import is_item_allowed
from assessment_platform.models import (
    Tenant, User, RoleDefinition, PermissionDefinition, RolePermission, UiMenu, RoleMenu,
    AssessmentTemplate, TemplateDimension, TemplateQuestion, Assessment, Response, AuditLog,
)
from assessment_platform.seed.reference_data import (
    ROLES, PERMISSIONS_BY_ROLE, ASSESSMENT_DATA_FILTERS, NAVIGATION, TEMPLATES, QUESTIONS,
)

logger = logging.getLogger(__name__)

DEMO_PASSWORD = "Demo1234!"
DEMO_TENANT = "Acme Manufacturing"

# Question keys stored as real columns; everything else goes into type_config
_QUESTION_COLUMNS = {
    "id", "template_id", "dimension_id", "question_type", "question_text", "help_text",
    "is_required", "validation_rules", "scoring_rubric", "sort_order",
}


async def seed_roles_and_permissions(session: AsyncSession) -> dict[str, RoleDefinition]:
    """Insert roles, permissions, role_permissions, ui_menus and role_menus."""
    roles: dict[str, RoleDefinition] = {}
    for key, meta in ROLES.items():
        role = RoleDefinition(
            role_key=key,
            role_name=meta["name"],
            description=meta.get("description"),
            role_type=meta.get("type", "customer"),
            is_platform_role=is_platform_role(key),
            icon=meta.get("icon"),
            color=meta.get("color"),
            read_only=meta.get("readOnly", False),
            navigation=meta["navigation"],
            banner=meta.get("banner"),
        )
        session.add(role)
        roles[key] = role
    await session.flush()

    permissions: dict[str, PermissionDefinition] = {}
    for key in sorted({p for perms in PERMISSIONS_BY_ROLE.values() for p in perms}):
        action, resource = split_permission(key)
        perm = PermissionDefinition(
            permission_key=key,
            action=action,
            resource_type=resource or "*",
            scope="platform" if key == "*" else "tenant",
        )
        session.add(perm)
        permissions[key] = perm
    await session.flush()

    for role_key, perms in PERMISSIONS_BY_ROLE.items():
        for key in perms:
            session.add(RolePermission(
                role_id=roles[role_key].role_id,
                permission_id=permissions[key].permission_id,
            ))

    menus: list[UiMenu] = []
    for order, item in enumerate(NAVIGATION):
        menu = UiMenu(
            menu_key=item["id"],
            label=item["label"],
            href=item["href"],
            icon=item.get("icon"),
            category=item.get("category"),
            description=item.get("description"),
            keywords=item.get("keywords", []),
            sort_order=order,
        )
        session.add(menu)
        menus.append(menu)
    await session.flush()

    for role_key, meta in ROLES.items():
        for menu, item in zip(menus, NAVIGATION):
            if is_item_allowed(item, meta["navigation"]):
                session.add(RoleMenu(role_id=roles[role_key].role_id, menu_id=menu.menu_id))
    await session.flush()

    logger.info("Seeded %d roles, %d permissions, %d menus", len(roles), len(permissions), len(menus))
    return roles


async def seed_templates(session: AsyncSession) -> dict[str, AssessmentTemplate]:
    """Insert templates with their ordered dimensions and questions."""
    templates: dict[str, AssessmentTemplate] = {}
    for t in TEMPLATES:
        questions = [q for q in QUESTIONS if q["template_id"] == t["id"]]
        template = AssessmentTemplate(
            template_key=t["id"],
            template_name=t["name"],
            description=t.get("description"),
            framework_type=t.get("framework", "custom"),
            estimated_duration_weeks=t.get("estimated_duration_weeks"),
            total_questions=len(questions),
        )
        session.add(template)
        await session.flush()

        dimension_ids: dict[str, str] = {}
        for order, dim in enumerate(t["dimensions"]):
            dimension = TemplateDimension(
                template_id=template.template_id,
                dimension_key=dim["id"],
                dimension_name=dim["name"],
                description=dim.get("description"),
                weight=dim.get("weight", 1.0),
                max_score=dim.get("max_score", 5),
                sort_order=order,
            )
            session.add(dimension)
            await session.flush()
            dimension_ids[dim["id"]] = dimension.dimension_id

        for q in questions:
            session.add(TemplateQuestion(
                dimension_id=dimension_ids[q["dimension_id"]],
                question_text=q["question_text"],
                question_type=q["question_type"],
                help_text=q.get("help_text"),
                is_required=q.get("is_required", False),
                validation_rules=q.get("validation_rules", {}),
                scoring_rubric=q.get("scoring_rubric"),
                sort_order=q.get("sort_order", 0),
                type_config={k: v for k, v in q.items() if k not in _QUESTION_COLUMNS},
            ))
        templates[t["id"]] = template
    await session.flush()

    logger.info("Seeded %d templates, %d questions", len(templates), len(QUESTIONS))
    return templates


async def seed_demo_tenant(
    session: AsyncSession,
    roles: dict[str, RoleDefinition],
    password: str = DEMO_PASSWORD,
    role_keys: list[str] | None = None,
) -> tuple[Tenant, dict[str, User]]:
    """One demo tenant with a user per role (`<role_key>@demo.reabel.io`)."""
    tenant = Tenant(tenant_name=DEMO_TENANT, subscription_tier="enterprise")
    session.add(tenant)
    await session.flush()

    password_hash = hash_password(password)
    users: dict[str, User] = {}
    for key in role_keys or list(roles):
        user = User(
            tenant_id=tenant.tenant_id,
            role_id=roles[key].role_id,
            email=f"{key}@demo.reabel.io",
            full_name=roles[key].role_name,
            password_hash=password_hash,
            assigned_domains=["access_control", "incident_management"] if key == "domain_manager" else [],
        )
        session.add(user)
        users[key] = user
    await session.flush()
    return tenant, users


async def seed_all(session: AsyncSession) -> None:
    roles = await seed_roles_and_permissions(session)
    await seed_templates(session)
    await seed_demo_tenant(session, roles)


async def clean_all(session: AsyncSession) -> None:
    """Delete all rows, children first (preserves schema)."""
    for model in (Response, Assessment, AuditLog, User, Tenant, TemplateQuestion,
                  TemplateDimension, AssessmentTemplate, RoleMenu, UiMenu,
                  RolePermission, PermissionDefinition, RoleDefinition):
        await session.execute(delete(model))
    await session.commit()
    logger.info("All data cleaned")


# ── Local-mode JSON export ────────────────────────────────────────────────────

def local_data_files() -> dict[str, dict]:
    """The client's local-mode resources, keyed by file name."""
    return {
        "roles.json": {"roles": ROLES},
        "permissions.json": {**PERMISSIONS_BY_ROLE,
                             "data_filters": {"assessments": ASSESSMENT_DATA_FILTERS}},
        "navigation.json": {"navigation": NAVIGATION},
        "templates.json": {"templates": TEMPLATES},
        "questions.json": {"questions": QUESTIONS},
        "assessments.json": {"assessments": []},
        "actions.json": {"actions": []},
        "team.json": {"team": []},
        "responses.json": {"responses": []},
    }


def write_local_data(directory: str | Path) -> list[Path]:
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    written = []
    for name, payload in local_data_files().items():
        path = directory / name
        path.write_text(json.dumps(payload, indent=2))
        written.append(path)
    return written


async def run_seed():
    """Main seed entry point."""
    start = time.time()

    if "--export" in sys.argv:
        target = sys.argv[sys.argv.index("--export") + 1]
        for path in write_local_data(target):
            print(f"  wrote {path}")
        return

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with async_session() as session:
        if "--clean" in sys.argv:
            await clean_all(session)

        existing = (await session.execute(
            select(func.count()).select_from(RoleDefinition)
        )).scalar()
        if existing:
            print("Database already seeded. Use --clean to re-seed.")
            await engine.dispose()
            return

        print("=" * 60)
        print("REABEL Assessment Platform: Demo Seed")
        print("=" * 60)
        await seed_all(session)
        await session.commit()

    await engine.dispose()
    print(f"\nSeed completed in {time.time() - start:.1f}s (demo password: {DEMO_PASSWORD})")


if __name__ == "__main__":
    asyncio.run(run_seed())
