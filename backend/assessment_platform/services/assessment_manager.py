"""
Assessment Manager Service

Manages the assessment lifecycle inside one tenant:
- Creation from a template (dimension snapshot, initial workflow state)
- Row-level scoped listing
- Field updates and workflow transitions with post-actions
- Score aggregation from dimension scores and reviewed responses
"""

import logging
from datetime import date

from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from assessment_platform.auth.context import RequestContext
from assessment_platform.auth.permissions import Permission
from assessment_platform.auth.roles import Role, data_scope, in_scope, DataScope
from assessment_platform.database import utcnow
from assessment_platform.errors import NotFound, PermissionDenied, ValidationError
from assessment_platform.middleware.metrics import (
    assessment_transitions_total, post_action_failures_total,
)
from assessment_platform.models import (
    Assessment, AssessmentTemplate, TemplateDimension, TemplateQuestion, Response,
    User, RoleDefinition,
)
from assessment_platform.scoring import ScoreSummary, calculate_scores
from assessment_platform.services.audit_service import AuditService
from assessment_platform.workflow import (
    PostAction, PostActionType, TransitionOutcome, WorkflowRegistry, run_post_actions,
)

logger = logging.getLogger(__name__)

WORKFLOW_TYPE = "assessment"
PRIORITIES = ("low", "medium", "high", "critical")

# Roles that may edit any assessment in their scope, not just their own
_EDITOR_ROLES = {Role.SUPERADMIN.value, Role.CONSULTANT.value, Role.CUSTOMER_ADMIN.value}

# Response statuses whose scores count toward a dimension
_SCORING_STATUSES = ("submitted", "approved")

# Fields a PUT may change directly; status goes through the workflow
_EDITABLE = {"assessment_name", "description", "due_date", "priority", "assigned_to", "reviewers"}


def assessment_record(a: Assessment) -> dict:
    """Plain dict view used for row-level scope checks."""
    return {
        "tenant_id": a.tenant_id,
        "status": a.status,
        "assigned_to": a.assigned_to or [],
        "reviewers": a.reviewers or [],
        "dimensions": a.dimensions or [],
    }


def serialize_assessment(a: Assessment, template: AssessmentTemplate | None = None) -> dict:
    data = {
        "assessment_id": a.assessment_id,
        "tenant_id": a.tenant_id,
        "template_id": a.template_id,
        "assessment_name": a.assessment_name,
        "description": a.description,
        "status": a.status,
        "priority": a.priority,
        "completion_percentage": a.completion_percentage,
        "overall_score": a.overall_score,
        "dimensions": a.dimensions or [],
        "dimension_scores": a.dimension_scores or [],
        "assigned_to": a.assigned_to or [],
        "reviewers": a.reviewers or [],
        "action_items": a.action_items or [],
        "due_date": a.due_date.isoformat() if a.due_date else None,
        "created_by": a.created_by,
        "created_at": a.created_at.isoformat() if a.created_at else None,
        "updated_at": a.updated_at.isoformat() if a.updated_at else None,
        **(a.state_stamps or {}),
    }
    if template is not None:
        data["template_name"] = template.template_name
        data["framework_type"] = template.framework_type
    return data


class AssessmentManager:
    """Assessment lifecycle: create, list, update, transition, score."""

    def __init__(self, session: AsyncSession, workflows: WorkflowRegistry | None = None):
        self.session = session
        self.audit = AuditService(session)
        self.workflows = workflows or WorkflowRegistry()

    # ── Templates ────────────────────────────────────────────────────────

    async def resolve_template(self, template_ref: str) -> AssessmentTemplate:
        """Look up an active template by id or key (e.g. "iso27001")."""
        result = await self.session.execute(
            select(AssessmentTemplate)
            .options(selectinload(AssessmentTemplate.dimensions))
            .where(or_(AssessmentTemplate.template_id == template_ref,
                       AssessmentTemplate.template_key == template_ref))
            .where(AssessmentTemplate.is_active.is_(True))
        )
        template = result.scalar_one_or_none()
        if template is None:
            raise NotFound(f"Template not found: {template_ref}")
        return template

    # ── Creation ─────────────────────────────────────────────────────────

    async def create(
        self,
        ctx: RequestContext,
        name: str,
        template_ref: str,
        *,
        description: str | None = None,
        due_date: date | None = None,
        priority: str = "medium",
        assigned_to: list[str] | None = None,
    ) -> tuple[Assessment, AssessmentTemplate]:
        """
        Create an assessment in the workflow's initial state.

        The template's dimensions are copied onto the assessment (ordered,
        unscored) so later template edits do not move existing scores.
        """
        if not ctx.has_permission(Permission.CREATE_ASSESSMENTS):
            raise PermissionDenied("Insufficient permissions: requires create:assessments")
        if not (name or "").strip() or not template_ref:
            raise ValidationError("Name and template ID are required", field="name")
        if priority not in PRIORITIES:
            raise ValidationError(f"Invalid priority: {priority}", field="priority")

        template = await self.resolve_template(template_ref)
        workflow = self.workflows.get(WORKFLOW_TYPE)

        assessment = Assessment(
            tenant_id=ctx.tenant_id,
            template_id=template.template_id,
            assessment_name=name.strip(),
            description=description,
            status=workflow.initial_state,
            priority=priority,
            due_date=due_date,
            created_by=ctx.user_id,
            assigned_to=list(assigned_to or []),
            reviewers=[],
            dimensions=[_dimension_snapshot(d) for d in template.dimensions],
            dimension_scores=[],
            action_items=[],
            state_stamps={},
            completion_percentage=0,
        )
        self.session.add(assessment)
        await self.session.flush()

        await self.audit.log_assessment_created(
            assessment_id=assessment.assessment_id,
            name=assessment.assessment_name,
            template_id=template.template_id,
            actor=ctx.actor,
            tenant_id=ctx.tenant_id,
        )
        logger.info("Assessment %s created from %s", assessment.assessment_id, template.template_key)
        return assessment, template

    # ── Reads ────────────────────────────────────────────────────────────

    async def get(self, ctx: RequestContext, assessment_id: str) -> tuple[Assessment, AssessmentTemplate]:
        """Load one non-deleted assessment the caller is allowed to see."""
        row = (await self.session.execute(
            select(Assessment, AssessmentTemplate)
            .join(AssessmentTemplate, AssessmentTemplate.template_id == Assessment.template_id)
            .where(Assessment.assessment_id == assessment_id)
            .where(Assessment.is_deleted.is_(False))
        )).first()
        if row is None:
            raise NotFound("Assessment not found")
        assessment, template = row
        scope = data_scope(ctx.role)
        if scope not in (DataScope.ALL, DataScope.ALL_CUSTOMERS) and assessment.tenant_id != ctx.tenant_id:
            raise NotFound("Assessment not found")
        return assessment, template

    async def list_assessments(
        self,
        ctx: RequestContext,
        *,
        status: str | None = None,
        template_ref: str | None = None,
        search: str | None = None,
    ) -> list[tuple[Assessment, AssessmentTemplate]]:
        """Assessments visible to the caller, newest first."""
        scope = data_scope(ctx.role)
        query = (
            select(Assessment, AssessmentTemplate)
            .join(AssessmentTemplate, AssessmentTemplate.template_id == Assessment.template_id)
            .where(Assessment.is_deleted.is_(False))
            .order_by(Assessment.created_at.desc())
        )
        if scope not in (DataScope.ALL, DataScope.ALL_CUSTOMERS):
            query = query.where(Assessment.tenant_id == ctx.tenant_id)
        if status:
            query = query.where(Assessment.status == status)
        if template_ref:
            query = query.where(or_(AssessmentTemplate.template_id == template_ref,
                                    AssessmentTemplate.template_key == template_ref))
        if search:
            query = query.where(Assessment.assessment_name.ilike(f"%{search}%"))

        rows = (await self.session.execute(query)).all()
        return [
            (a, t) for a, t in rows
            if in_scope(scope, assessment_record(a), user_id=ctx.user_id,
                        tenant_id=ctx.tenant_id, assigned_domains=ctx.assigned_domains)
        ]

    # ── Updates ──────────────────────────────────────────────────────────

    def can_edit(self, ctx: RequestContext, assessment: Assessment) -> bool:
        if not ctx.has_permission(Permission.WRITE_ASSESSMENTS):
            return False
        return (
            ctx.role in _EDITOR_ROLES
            or assessment.created_by == ctx.user_id
            or ctx.user_id in (assessment.assigned_to or [])
        )

    async def update(
        self, ctx: RequestContext, assessment_id: str, changes: dict,
    ) -> tuple[Assessment, AssessmentTemplate, TransitionOutcome | None]:
        """
        Apply field changes, dimension score edits and (optionally) a status
        change. A status change is a workflow transition and is checked
        against the caller's role.
        """
        assessment, template = await self.get(ctx, assessment_id)
        new_status = changes.pop("status", None)
        dimension_updates = changes.pop("dimensions", None)
        unknown = set(changes) - _EDITABLE
        if unknown:
            raise ValidationError(f"Unknown fields: {', '.join(sorted(unknown))}")

        if changes or dimension_updates:
            if not self.can_edit(ctx, assessment):
                raise PermissionDenied("You are not allowed to edit this assessment")
            if "priority" in changes and changes["priority"] not in PRIORITIES:
                raise ValidationError(f"Invalid priority: {changes['priority']}", field="priority")
            if "assigned_to" in changes and not ctx.has_permission(Permission.ASSIGN_ASSESSMENTS):
                raise PermissionDenied("Insufficient permissions: requires assign:assessments")
            for key, value in changes.items():
                setattr(assessment, key, value)
            if dimension_updates:
                assessment.dimensions = _apply_dimension_scores(assessment.dimensions, dimension_updates)
                self._apply_summary(assessment, calculate_scores(assessment.dimensions))
            fields = list(changes) + (["dimensions"] if dimension_updates else [])
            await self.audit.log_assessment_updated(
                assessment.assessment_id, fields, actor=ctx.actor, tenant_id=ctx.tenant_id,
            )

        outcome = None
        if new_status and new_status != assessment.status:
            outcome = await self.transition(ctx, assessment, new_status)
        await self.session.flush()
        return assessment, template, outcome

    async def transition(self, ctx: RequestContext, assessment: Assessment, new_state: str) -> TransitionOutcome:
        """
        Move the assessment to `new_state`.

        Raises TransitionNotAllowed if the workflow has no such edge for the
        caller's role. The new status and `<state>_at` / `<state>_by` stamps
        are flushed before post-actions run; post-action failures are
        recorded in the outcome and never undo the state change.
        """
        old_state = assessment.status
        transition = self.workflows.require_transition(WORKFLOW_TYPE, old_state, new_state, ctx.role)

        assessment.status = new_state
        assessment.state_stamps = {
            **(assessment.state_stamps or {}),
            f"{new_state}_at": utcnow().isoformat(),
            f"{new_state}_by": ctx.user_id,
        }
        await self.session.flush()
        assessment_transitions_total.labels(from_state=old_state, to_state=new_state).inc()

        handlers = {
            PostActionType.NOTIFY: lambda action: self._notify(assessment, action),
            PostActionType.ASSIGN: lambda action: self._auto_assign(assessment, action),
            PostActionType.CALCULATE_SCORE: lambda action: self.refresh_scores(assessment),
            PostActionType.CREATE_ACTION_ITEMS: lambda action: self._create_action_items(assessment, action),
        }
        results = await run_post_actions(
            transition.post_actions,
            {kind: self._in_savepoint(assessment, handler) for kind, handler in handlers.items()},
        )
        for r in results:
            if not r.ok:
                post_action_failures_total.labels(action=r.type).inc()

        await self.audit.log_assessment_transitioned(
            assessment.assessment_id, old_state, new_state,
            actor=ctx.actor, tenant_id=ctx.tenant_id,
            post_actions=[{"type": r.type, "ok": r.ok, "skipped": r.skipped, "error": r.error}
                          for r in results],
        )
        logger.info("Assessment %s: %s → %s", assessment.assessment_id, old_state, new_state)
        return TransitionOutcome(from_state=old_state, to_state=new_state,
                                 entity=assessment, post_actions=results)

    async def delete(self, ctx: RequestContext, assessment_id: str) -> Assessment:
        """Soft-delete: the row stays but is hidden from every read."""
        if not ctx.has_permission(Permission.DELETE_ASSESSMENTS):
            raise PermissionDenied("Insufficient permissions: requires delete:assessments")
        assessment, _ = await self.get(ctx, assessment_id)
        assessment.is_deleted = True
        await self.session.flush()
        await self.audit.log_event(
            event_type="assessment_deleted",
            actor=ctx.actor,
            action=f"Assessment {assessment_id} deleted",
            resource_type="assessment",
            resource_id=assessment_id,
            tenant_id=ctx.tenant_id,
        )
        return assessment

    # ── Scoring ──────────────────────────────────────────────────────────

    async def refresh_scores(self, assessment: Assessment) -> ScoreSummary:
        """
        Recompute dimension scores from submitted/approved responses, then
        aggregate. Dimensions with no scored responses keep their score.
        """
        result = await self.session.execute(
            select(TemplateDimension.dimension_key, Response.score)
            .join(TemplateQuestion, TemplateQuestion.question_id == Response.question_id)
            .join(TemplateDimension, TemplateDimension.dimension_id == TemplateQuestion.dimension_id)
            .where(Response.assessment_id == assessment.assessment_id)
            .where(Response.status.in_(_SCORING_STATUSES))
            .where(Response.score.is_not(None))
        )
        per_dimension: dict[str, list[float]] = {}
        for dimension_key, score in result.all():
            per_dimension.setdefault(dimension_key, []).append(float(score))

        if per_dimension:
            assessment.dimensions = _apply_dimension_scores(
                assessment.dimensions,
                [{"id": key, "score": sum(scores) / len(scores)} for key, scores in per_dimension.items()],
            )

        summary = calculate_scores(assessment.dimensions or [])
        self._apply_summary(assessment, summary)
        await self.session.flush()
        return summary

    @staticmethod
    def _apply_summary(assessment: Assessment, summary: ScoreSummary) -> None:
        update = summary.as_update()
        assessment.overall_score = update["overall_score"]
        assessment.completion_percentage = update["progress"]
        assessment.dimension_scores = update["dimension_scores"]

    # ── Post-actions ─────────────────────────────────────────────────────

    def _in_savepoint(self, assessment: Assessment, handler):
        """
        Run one post-action inside a SAVEPOINT. A failure rolls back only
        that action's writes; the assessment is reloaded because the
        rollback expires whatever the action touched.
        """
        async def run(action: PostAction) -> None:
            try:
                async with self.session.begin_nested():
                    await handler(action)
            except Exception:
                await self.session.refresh(assessment)
                raise
        return run

    async def _notify(self, assessment: Assessment, action: PostAction) -> None:
        recipients = action.config.get("recipients", "assignees")
        users = assessment.reviewers if recipients == "reviewers" else assessment.assigned_to
        logger.info(
            "Notify %s of assessment %s (%s): %d user(s)",
            recipients, assessment.assessment_id, assessment.status, len(users or []),
        )

    async def _auto_assign(self, assessment: Assessment, action: PostAction) -> None:
        """Add every active user of the configured role in the tenant as a reviewer."""
        role_key = action.config.get("role")
        if not role_key:
            raise ValidationError("assign post-action needs a role")
        result = await self.session.execute(
            select(User.user_id)
            .join(RoleDefinition, RoleDefinition.role_id == User.role_id)
            .where(RoleDefinition.role_key == role_key)
            .where(User.tenant_id == assessment.tenant_id)
            .where(User.is_active.is_(True))
        )
        user_ids = list(result.scalars())
        assessment.reviewers = sorted(set(assessment.reviewers or []) | set(user_ids))
        await self.session.flush()

    async def _create_action_items(self, assessment: Assessment, action: PostAction) -> None:
        """One follow-up per scored dimension below the threshold percentage."""
        threshold = float(action.config.get("threshold", 60))
        summary = calculate_scores(assessment.dimensions or [])
        existing = {item["dimension_id"] for item in assessment.action_items or []}
        items = list(assessment.action_items or [])
        for dim in summary.dimension_scores:
            if dim.percentage < threshold and dim.dimension_id not in existing:
                items.append({
                    "dimension_id": dim.dimension_id,
                    "title": f"Improve {dim.dimension_name or dim.dimension_id}",
                    "percentage": round(dim.percentage, 1),
                    "status": "open",
                    "created_at": utcnow().isoformat(),
                })
        assessment.action_items = items
        await self.session.flush()


def _dimension_snapshot(dim: TemplateDimension) -> dict:
    return {
        "id": dim.dimension_key,
        "dimension_id": dim.dimension_id,
        "name": dim.dimension_name,
        "weight": dim.weight,
        "max_score": dim.max_score,
        "score": None,
    }


def _apply_dimension_scores(dimensions: list[dict], updates: list[dict]) -> list[dict]:
    """Return a new dimension list with scores replaced by id."""
    by_id = {u["id"]: u.get("score") for u in updates}
    known = {d["id"] for d in dimensions or []}
    missing = set(by_id) - known
    if missing:
        raise ValidationError(f"Unknown dimension: {', '.join(sorted(missing))}", field="dimensions")

    result = []
    for d in dimensions or []:
        if d["id"] in by_id:
            score = by_id[d["id"]]
            if score is not None and not 0 <= float(score) <= float(d.get("max_score") or 5):
                raise ValidationError(f"Score for {d['id']} is out of range", field="dimensions")
            d = {**d, "score": score}
        result.append(d)
    return result
