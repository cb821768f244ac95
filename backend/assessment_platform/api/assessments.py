"""Assessment CRUD and workflow transitions."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from assessment_platform.config import settings
from assessment_platform.api.deps import get_db, get_request_context, get_workflows, require
from assessment_platform.auth.context import RequestContext
from assessment_platform.auth.permissions import Permission
from assessment_platform.schemas.schemas import AssessmentCreate, AssessmentUpdate
from assessment_platform.services.assessment_manager import AssessmentManager, serialize_assessment
from assessment_platform.workflow import TransitionOutcome, WorkflowRegistry

router = APIRouter(prefix=f"{settings.api_prefix}/assessments", tags=["assessments"])


def _outcome_to_dict(outcome: TransitionOutcome) -> dict:
    return {
        "from": outcome.from_state,
        "to": outcome.to_state,
        "postActions": [
            {"type": r.type, "ok": r.ok, "skipped": r.skipped, "error": r.error}
            for r in outcome.post_actions
        ],
    }


@router.get("")
async def list_assessments(
    status: str | None = None,
    template_id: str | None = Query(None, alias="templateId"),
    search: str | None = None,
    ctx: RequestContext = Depends(require(Permission.READ_ASSESSMENTS)),
    db: AsyncSession = Depends(get_db),
):
    """Assessments visible to the caller's role, newest first."""
    rows = await AssessmentManager(db).list_assessments(
        ctx, status=status, template_ref=template_id, search=search,
    )
    assessments = [serialize_assessment(a, t) for a, t in rows]
    return {"success": True, "assessments": assessments, "total": len(assessments)}


@router.post("", status_code=201)
async def create_assessment(
    body: AssessmentCreate,
    ctx: RequestContext = Depends(require(Permission.CREATE_ASSESSMENTS)),
    db: AsyncSession = Depends(get_db),
    workflows: WorkflowRegistry = Depends(get_workflows),
):
    assessment, template = await AssessmentManager(db, workflows).create(
        ctx, body.name, body.template_id,
        description=body.description,
        due_date=body.due_date,
        priority=body.priority,
        assigned_to=body.assigned_to,
    )
    return {"success": True, "assessment": serialize_assessment(assessment, template)}


@router.get("/{assessment_id}")
async def get_assessment(
    assessment_id: str,
    ctx: RequestContext = Depends(require(Permission.READ_ASSESSMENTS)),
    db: AsyncSession = Depends(get_db),
    workflows: WorkflowRegistry = Depends(get_workflows),
):
    """One assessment plus the transitions the caller may take from its status."""
    assessment, template = await AssessmentManager(db, workflows).get(ctx, assessment_id)
    allowed = workflows.get("assessment").allowed_transitions(assessment.status, ctx.role)
    return {
        "success": True,
        "assessment": serialize_assessment(assessment, template),
        "transitions": [{"to": t.to, "label": t.label} for t in allowed],
    }


@router.put("/{assessment_id}")
async def update_assessment(
    assessment_id: str,
    body: AssessmentUpdate,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
    workflows: WorkflowRegistry = Depends(get_workflows),
):
    """
    Update fields and/or status. A status change is a workflow transition:
    409 when the caller's role may not take it.
    """
    assessment, template, outcome = await AssessmentManager(db, workflows).update(
        ctx, assessment_id, body.changes(),
    )
    result = {"success": True, "assessment": serialize_assessment(assessment, template)}
    if outcome is not None:
        result["transition"] = _outcome_to_dict(outcome)
    return result


@router.delete("/{assessment_id}")
async def delete_assessment(
    assessment_id: str,
    ctx: RequestContext = Depends(require(Permission.DELETE_ASSESSMENTS)),
    db: AsyncSession = Depends(get_db),
):
    await AssessmentManager(db).delete(ctx, assessment_id)
    return {"success": True, "message": "Assessment deleted"}
