"""Assessment templates and their questions."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from assessment_platform.config import settings
from assessment_platform.api.deps import get_db, require
from assessment_platform.auth.context import RequestContext
from assessment_platform.auth.permissions import Permission
from assessment_platform.errors import ValidationError
from assessment_platform.models import AssessmentTemplate
from assessment_platform.services.response_manager import ResponseManager

router = APIRouter(prefix=settings.api_prefix, tags=["templates"])


@router.get("/templates")
async def list_templates(ctx: RequestContext = Depends(require(Permission.READ_TEMPLATES)),
                         db: AsyncSession = Depends(get_db)):
    result = await db.execute(
        select(AssessmentTemplate)
        .options(selectinload(AssessmentTemplate.dimensions))
        .where(AssessmentTemplate.is_active.is_(True))
        .order_by(AssessmentTemplate.template_name)
    )
    templates = [
        {
            "template_id": t.template_id,
            "template_key": t.template_key,
            "template_name": t.template_name,
            "description": t.description,
            "framework_type": t.framework_type,
            "total_questions": t.total_questions,
            "estimated_duration_weeks": t.estimated_duration_weeks,
            "dimensions": [
                {"id": d.dimension_key, "dimension_id": d.dimension_id, "name": d.dimension_name,
                 "weight": d.weight, "max_score": d.max_score, "color": d.color, "icon": d.icon}
                for d in t.dimensions
            ],
        }
        for t in result.scalars()
    ]
    return {"success": True, "templates": templates}


@router.get("/questions")
async def list_questions(template_id: str | None = Query(None, alias="templateId"),
                         ctx: RequestContext = Depends(require(Permission.READ_QUESTIONS)),
                         db: AsyncSession = Depends(get_db)):
    """Questions of one template (by id or key), dimension order first."""
    if not template_id:
        raise ValidationError("Template ID is required", field="templateId")
    questions = await ResponseManager(db).questions_for_template(template_id)
    return {"success": True, "questions": questions}
