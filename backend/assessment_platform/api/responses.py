"""Question responses: submit / save draft, list, review."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from assessment_platform.config import settings
from assessment_platform.api.deps import get_db, require
from assessment_platform.auth.context import RequestContext
from assessment_platform.auth.permissions import Permission
from assessment_platform.questions import ResponseData
from assessment_platform.schemas.schemas import ResponseSubmit, ResponseReview
from assessment_platform.services.response_manager import ResponseManager, serialize_response

router = APIRouter(prefix=f"{settings.api_prefix}/responses", tags=["responses"])


@router.get("")
async def list_responses(
    assessment_id: str | None = Query(None, alias="assessmentId"),
    status: str | None = None,
    ctx: RequestContext = Depends(require(Permission.READ_ASSESSMENTS)),
    db: AsyncSession = Depends(get_db),
):
    responses = await ResponseManager(db).list_responses(ctx, assessment_id, status)
    return {"success": True, "responses": [serialize_response(r) for r in responses]}


@router.post("", status_code=201)
async def submit_response(
    body: ResponseSubmit,
    ctx: RequestContext = Depends(require(Permission.WRITE_RESPONSES)),
    db: AsyncSession = Depends(get_db),
):
    """Validate, score and save an answer (or store it as a draft)."""
    response = await ResponseManager(db).submit(
        ctx, body.assessment_id, body.question_id,
        ResponseData(text=body.response_text, data=body.response_data),
        draft=body.draft,
    )
    return {"success": True, "response": serialize_response(response)}


@router.put("/{response_id}")
async def review_response(
    response_id: str,
    body: ResponseReview,
    ctx: RequestContext = Depends(require(Permission.REVIEW_RESPONSES)),
    db: AsyncSession = Depends(get_db),
):
    response = await ResponseManager(db).review(ctx, response_id, body.approved, body.comments)
    return {"success": True, "response": serialize_response(response)}
