"""
Response Manager Service

Stores answers to template questions. Each (assessment, question) pair has
at most one response, which moves draft → submitted → approved | rejected.
Answers are validated and scored with the question's own type rules before
they are saved.
"""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from assessment_platform.auth.context import RequestContext
from assessment_platform.auth.permissions import Permission
from assessment_platform.database import utcnow
from assessment_platform.errors import NotFound, PermissionDenied, ValidationError
from assessment_platform.models import (
    Assessment, AssessmentTemplate, TemplateDimension, TemplateQuestion, Response,
)
from assessment_platform.questions import ResponseData, parse_question, validate_response, calculate_score
from assessment_platform.services.audit_service import AuditService

logger = logging.getLogger(__name__)

# Assessment states in which answers may still change
ANSWERABLE_STATES = ("draft", "active")


def question_payload(q: TemplateQuestion, dim: TemplateDimension) -> dict:
    """Flatten a stored question into the dict the question union parses."""
    return {
        **(q.type_config or {}),
        "question_id": q.question_id,
        "template_id": dim.template_id,
        "dimension_id": dim.dimension_key,
        "dimension_name": dim.dimension_name,
        "question_type": q.question_type,
        "question_text": q.question_text,
        "help_text": q.help_text,
        "is_required": q.is_required,
        "validation_rules": q.validation_rules or {},
        "scoring_rubric": q.scoring_rubric,
        "sort_order": q.sort_order,
    }


def serialize_response(r: Response) -> dict:
    return {
        "response_id": r.response_id,
        "assessment_id": r.assessment_id,
        "question_id": r.question_id,
        "user_id": r.user_id,
        "response_text": r.response_text,
        "response_data": r.response_data,
        "score": r.score,
        "status": r.status,
        "reviewer_id": r.reviewer_id,
        "reviewer_comments": r.reviewer_comments,
        "submitted_at": r.submitted_at.isoformat() if r.submitted_at else None,
        "reviewed_at": r.reviewed_at.isoformat() if r.reviewed_at else None,
    }


class ResponseManager:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.audit = AuditService(session)

    async def questions_for_template(self, template_ref: str) -> list[dict]:
        """All questions of a template, by dimension order then question order."""
        result = await self.session.execute(
            select(TemplateQuestion, TemplateDimension)
            .join(TemplateDimension, TemplateDimension.dimension_id == TemplateQuestion.dimension_id)
            .join(AssessmentTemplate, AssessmentTemplate.template_id == TemplateDimension.template_id)
            .where((AssessmentTemplate.template_id == template_ref)
                   | (AssessmentTemplate.template_key == template_ref))
            .order_by(TemplateDimension.sort_order, TemplateQuestion.sort_order)
        )
        return [question_payload(q, d) for q, d in result.all()]

    async def _assessment(self, ctx: RequestContext, assessment_id: str) -> Assessment:
        assessment = (await self.session.execute(
            select(Assessment)
            .where(Assessment.assessment_id == assessment_id)
            .where(Assessment.tenant_id == ctx.tenant_id)
            .where(Assessment.is_deleted.is_(False))
        )).scalar_one_or_none()
        if assessment is None:
            raise NotFound("Assessment not found")
        return assessment

    async def _question(self, question_id: str) -> tuple[TemplateQuestion, TemplateDimension]:
        row = (await self.session.execute(
            select(TemplateQuestion, TemplateDimension)
            .join(TemplateDimension, TemplateDimension.dimension_id == TemplateQuestion.dimension_id)
            .where(TemplateQuestion.question_id == question_id)
        )).first()
        if row is None:
            raise NotFound("Question not found")
        return row[0], row[1]

    async def list_responses(self, ctx: RequestContext, assessment_id: str | None = None,
                             status: str | None = None) -> list[Response]:
        query = (
            select(Response)
            .join(Assessment, Assessment.assessment_id == Response.assessment_id)
            .where(Assessment.tenant_id == ctx.tenant_id)
            .order_by(Response.created_at)
        )
        if assessment_id:
            query = query.where(Response.assessment_id == assessment_id)
        if status:
            query = query.where(Response.status == status)
        return list((await self.session.execute(query)).scalars())

    async def submit(
        self,
        ctx: RequestContext,
        assessment_id: str,
        question_id: str,
        answer: ResponseData,
        *,
        draft: bool = False,
    ) -> Response:
        """
        Validate, score and upsert a response.

        Drafts skip validation and scoring. A resubmission replaces the
        previous answer and clears any earlier review.
        """
        if not ctx.has_permission(Permission.WRITE_RESPONSES):
            raise PermissionDenied("Insufficient permissions: requires write:responses")

        assessment = await self._assessment(ctx, assessment_id)
        if assessment.status not in ANSWERABLE_STATES:
            raise ValidationError(f"Assessment is {assessment.status}; responses are locked")

        q, dim = await self._question(question_id)
        if dim.template_id != assessment.template_id:
            raise ValidationError("Question does not belong to this assessment's template",
                                  field="question_id")

        score = None
        if not draft:
            question = parse_question(question_payload(q, dim))
            validate_response(question, answer)
            score = calculate_score(question, answer)

        response = (await self.session.execute(
            select(Response)
            .where(Response.assessment_id == assessment_id)
            .where(Response.question_id == question_id)
        )).scalar_one_or_none()
        if response is None:
            response = Response(assessment_id=assessment_id, question_id=question_id, user_id=ctx.user_id)
            self.session.add(response)

        response.user_id = ctx.user_id
        response.response_text = answer.text
        response.response_data = answer.data
        response.score = score
        response.status = "draft" if draft else "submitted"
        response.submitted_at = None if draft else utcnow()
        response.reviewer_id = None
        response.reviewer_comments = None
        response.reviewed_at = None
        await self.session.flush()

        if not draft:
            await self.audit.log_response_submitted(
                response.response_id, assessment_id, question_id,
                actor=ctx.actor, tenant_id=ctx.tenant_id,
            )
        return response

    async def review(self, ctx: RequestContext, response_id: str, approved: bool,
                     comments: str | None = None) -> Response:
        if not ctx.has_permission(Permission.REVIEW_RESPONSES):
            raise PermissionDenied("Insufficient permissions: requires review:responses")

        response = (await self.session.execute(
            select(Response)
            .join(Assessment, Assessment.assessment_id == Response.assessment_id)
            .where(Response.response_id == response_id)
            .where(Assessment.tenant_id == ctx.tenant_id)
        )).scalar_one_or_none()
        if response is None:
            raise NotFound("Response not found")
        if response.status != "submitted":
            raise ValidationError(f"Only submitted responses can be reviewed (status: {response.status})")

        response.status = "approved" if approved else "rejected"
        response.reviewer_id = ctx.user_id
        response.reviewer_comments = comments
        response.reviewed_at = utcnow()
        await self.session.flush()

        await self.audit.log_response_reviewed(response.response_id, approved,
                                               actor=ctx.actor, tenant_id=ctx.tenant_id)
        logger.info("Response %s %s", response_id, response.status)
        return response
