"""
Assessment Service: client-side assessment lifecycle.

Keeps the role-scoped list of assessments the current user may see and
drives create / update / assign / delete / export and workflow transitions.
In API mode writes go to the backend, which runs the same workflow engine
and post-actions; in local mode the transition's post-actions run here.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Mapping

from assessment_platform.auth.roles import Role, in_scope
from assessment_platform.client.config_service import ConfigService
from assessment_platform.client.events import EventBus, Events
from assessment_platform.client.loader import ResourceLoader
from assessment_platform.client.notifications import toast_errors
from assessment_platform.client.role_service import RoleService
from assessment_platform.client.settings import ClientSettings
from assessment_platform.client.store import Store, thaw
from assessment_platform.errors import NotFound, PermissionDenied, TransitionNotAllowed, ValidationError
from assessment_platform.forms import field_error, rules_as_field
from assessment_platform.scoring import ScoreSummary, calculate_scores
from assessment_platform.workflow import (
    PostAction, PostActionResult, PostActionType, TransitionOutcome, run_post_actions,
)

logger = logging.getLogger(__name__)

WORKFLOW_TYPE = "assessment"
_ADMIN_ROLES = {Role.CUSTOMER_ADMIN.value, Role.SUPERADMIN.value}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _records(payload: Any, key: str) -> list[dict]:
    items = payload.get(key, payload) if isinstance(payload, dict) else payload
    return [dict(i) for i in items or []]


def normalize_template(raw: Mapping[str, Any]) -> dict[str, Any]:
    """Local template files and API template rows → one shape."""
    return {
        "id": raw.get("id") or raw.get("template_key") or raw.get("template_id"),
        "template_id": raw.get("template_id") or raw.get("id"),
        "name": raw.get("name") or raw.get("template_name"),
        "description": raw.get("description") or "",
        "framework": raw.get("framework") or raw.get("framework_type") or "custom",
        "dimensions": [dict(d) for d in raw.get("dimensions") or []],
    }


def normalize_assessment(raw: Mapping[str, Any]) -> dict[str, Any]:
    """API assessment rows use the table's column names; map them onto ours."""
    record = dict(raw)
    record.setdefault("id", raw.get("assessment_id"))
    record.setdefault("title", raw.get("assessment_name"))
    record.setdefault("progress", raw.get("completion_percentage") or 0)
    record.setdefault("description", "")
    record.setdefault("dimensions", [])
    record.setdefault("assigned_to", [])
    record.setdefault("reviewers", [])
    return record


def initialize_dimensions(template: Mapping[str, Any]) -> list[dict[str, Any]]:
    return [
        {
            "id": dim["id"],
            "name": dim.get("name"),
            "description": dim.get("description"),
            "weight": dim.get("weight") or 1.0,
            "score": None,
            "max_score": dim.get("max_score") or 5,
            "percentage": None,
            "status": "not_started",
            "questions_total": len(dim.get("questions") or []),
            "questions_answered": 0,
            "assigned_to": None,
            "color": dim.get("color") or "#48A9A6",
            "icon": dim.get("icon") or "target",
        }
        for dim in template.get("dimensions") or []
    ]


class AssessmentService:
    def __init__(self, loader: ResourceLoader, bus: EventBus, store: Store,
                 roles: RoleService, config: ConfigService, settings: ClientSettings):
        self.loader = loader
        self.bus = bus
        self.store = store
        self.roles = roles
        self.config = config
        self.settings = settings
        self.templates: list[dict[str, Any]] = []
        self.assessments: list[dict[str, Any]] = []
        self.initialized = False
        # Every loaded record; ``assessments`` is the slice the active role may see
        self._all: list[dict[str, Any]] = []
        self.reloading: asyncio.Task | None = None
        self._unsubscribe = bus.on(Events.ROLE_CHANGED, self._on_role_changed)

    async def initialize(self) -> None:
        self.templates = [normalize_template(t) for t in _records(await self.loader.load("templates"), "templates")]
        await self.load_user_assessments()
        self.initialized = True
        self.store.merge("data", {"templates": self.templates})
        self.bus.emit(Events.ASSESSMENT_INITIALIZED, {"template_count": len(self.templates)})
        logger.info("Assessment service ready: %d templates", len(self.templates))

    async def load_user_assessments(self) -> list[dict[str, Any]]:
        """Load assessments and keep only those inside the role's data scope."""
        records = [normalize_assessment(r) for r in _records(await self.loader.load("assessments"), "assessments")]
        self._all = [r for r in records if not r.get("is_deleted")]
        return self._apply_scope()

    def _apply_scope(self) -> list[dict[str, Any]]:
        scope = self.roles.assessment_scope()
        user = self.store.state.user
        self.assessments = [
            r for r in self._all
            if in_scope(scope, r, user_id=user.get("id"), tenant_id=user.get("tenant_id"),
                        assigned_domains=list(user.get("assigned_domains") or ()))
        ]
        self.store.merge("data", {"assessments": self.assessments})
        logger.info("%d of %d assessments in scope %s", len(self.assessments), len(self._all), scope.value)
        return self.assessments

    def _on_role_changed(self, _data: dict) -> None:
        """
        Re-scope the list for the new role. In API mode the server filters by
        role too, so the list is fetched again in the background; local
        records created this session live only in memory and are re-filtered.
        """
        if not self.initialized:
            return
        self._apply_scope()
        if self.settings.is_api:
            if self.reloading is not None and not self.reloading.done():
                self.reloading.cancel()
            self.reloading = asyncio.get_running_loop().create_task(self.load_user_assessments())
            self.reloading.add_done_callback(self._reload_done)

    def _reload_done(self, task: asyncio.Task) -> None:
        if not task.cancelled() and task.exception() is not None:
            logger.error("Assessment reload after role change failed: %s", task.exception())
            self.bus.emit(Events.DATA_ERROR, {"service": "AssessmentService", "action": "reload",
                                              "error": task.exception()})

    def close(self) -> None:
        self._unsubscribe()
        if self.reloading is not None and not self.reloading.done():
            self.reloading.cancel()

    # ── Lookup ───────────────────────────────────────────────────────────

    def get_templates(self) -> list[dict[str, Any]]:
        return list(self.templates)

    def get_template(self, template_id: str) -> dict[str, Any] | None:
        return next((t for t in self.templates if template_id in (t["id"], t["template_id"])), None)

    async def get_assessment(self, assessment_id: str) -> dict[str, Any] | None:
        found = next((a for a in self.assessments if a.get("id") == assessment_id), None)
        if found is not None or not self.settings.is_api:
            return found
        try:
            result = await self.loader.request("GET", f"/assessments/{assessment_id}")
        except NotFound:
            return None
        return normalize_assessment(result["assessment"])

    async def _require(self, assessment_id: str) -> dict[str, Any]:
        assessment = await self.get_assessment(assessment_id)
        if assessment is None:
            raise NotFound("Assessment not found")
        return assessment

    def get_assessments(self, *, status: str | None = None, template_id: str | None = None,
                        search: str | None = None, sort_by: str | None = None,
                        sort_order: str = "asc") -> list[dict[str, Any]]:
        items = list(self.assessments)
        if status:
            items = [a for a in items if a.get("status") == status]
        if template_id:
            items = [a for a in items if a.get("template_id") == template_id]
        if search:
            needle = search.lower()
            items = [
                a for a in items
                if needle in (a.get("title") or "").lower() or needle in (a.get("description") or "").lower()
            ]
        if sort_by:
            # Missing values sort last ascending, first descending
            items.sort(key=lambda a: (a.get(sort_by) is None, a.get(sort_by)),
                       reverse=sort_order == "desc")
        return items

    # ── Create / update ──────────────────────────────────────────────────

    def validate_assessment_data(self, data: Mapping[str, Any]) -> None:
        title = data.get("title") or ""
        if len(title) < 3:
            raise ValidationError("Title must be at least 3 characters", field="title")
        if not data.get("template_id"):
            raise ValidationError("Template is required", field="template_id")
        for name, rules in (self.config.get_validation_rules("assessment") or {}).items():
            error = field_error(rules_as_field(name, rules), data.get(name), data)
            if error:
                raise ValidationError(error, field=name)

    @toast_errors
    async def create_assessment(self, data: Mapping[str, Any]) -> dict[str, Any]:
        self.validate_assessment_data(data)
        if not self.roles.has_permission("create", "assessments"):
            raise PermissionDenied("Permission denied: Cannot create assessments")
        template = self.get_template(data["template_id"])
        if template is None:
            raise NotFound("Template not found")

        if self.settings.is_api:
            result = await self.loader.save("assessments", {
                "name": data["title"],
                "templateId": template["id"],
                "description": data.get("description"),
                "dueDate": data.get("due_date"),
                "priority": data.get("priority") or "medium",
                "assignedTo": list(data.get("assigned_to") or []),
            })
            assessment = normalize_assessment(result["assessment"])
        else:
            assessment = self._new_record(data, template)
            await self.loader.save("assessments", assessment)

        self._all.append(assessment)
        self.assessments.append(assessment)
        self.bus.emit(Events.ASSESSMENT_CREATED, assessment)
        logger.info("Assessment created: %s", assessment["id"])
        return assessment

    def _new_record(self, data: Mapping[str, Any], template: Mapping[str, Any]) -> dict[str, Any]:
        user = self.store.state.user
        now = _now()
        return {
            "id": f"assess_{uuid.uuid4().hex}",
            "title": data["title"],
            "description": data.get("description") or "",
            "template_id": template["id"],
            "template_name": template["name"],
            "tenant_id": user.get("tenant_id"),
            "created_by": user.get("id"),
            "created_by_name": user.get("name"),
            "status": self.config.get_workflow(WORKFLOW_TYPE).initial_state,
            "progress": 0,
            "overall_score": None,
            "dimensions": initialize_dimensions(template),
            "dimension_scores": [],
            "assigned_to": list(data.get("assigned_to") or []),
            "reviewers": [],
            "action_items": [],
            "metadata": {
                "framework": template.get("framework") or "custom",
                "scope": data.get("scope") or "company",
                "priority": data.get("priority") or "medium",
                "tags": list(data.get("tags") or []),
            },
            "started_at": now,
            "due_date": data.get("due_date"),
            "completed_at": None,
            "created_at": now,
            "updated_at": now,
        }

    def can_update(self, assessment: Mapping[str, Any]) -> bool:
        if not self.roles.has_permission("write", "assessments"):
            return False
        user_id = self.store.get("user.id")
        if user_id and assessment.get("created_by") == user_id:
            return True
        if user_id and user_id in (assessment.get("assigned_to") or []):
            return True
        return self.roles.current_role in _ADMIN_ROLES

    @toast_errors
    async def update_assessment(self, assessment_id: str, updates: Mapping[str, Any]) -> dict[str, Any]:
        assessment = await self._require(assessment_id)
        if not self.can_update(assessment):
            raise PermissionDenied("Permission denied: Cannot update this assessment")
        updated, _ = await self._persist(assessment, dict(updates))
        self.bus.emit(Events.ASSESSMENT_UPDATED, updated)
        return updated

    async def _persist(self, assessment: dict[str, Any],
                       changes: dict[str, Any]) -> tuple[dict[str, Any], dict | None]:
        """Write changes through the loader and refresh the local copy."""
        assessment_id = assessment["id"]
        transition = None
        if self.settings.is_api:
            result = await self.loader.save(f"assessments/{assessment_id}", self._api_body(changes), "PUT")
            updated = normalize_assessment(result["assessment"])
            transition = result.get("transition")
        else:
            updated = {**assessment, **changes, "updated_at": _now()}
            await self.loader.save(f"assessments/{assessment_id}", updated, "PUT")
        self._replace(updated)
        return updated, transition

    @staticmethod
    def _api_body(changes: Mapping[str, Any]) -> dict[str, Any]:
        renames = {"title": "name", "due_date": "dueDate", "assigned_to": "assignedTo"}
        passthrough = {"description", "priority", "reviewers", "status"}
        body = {}
        for key, value in changes.items():
            if key in renames:
                body[renames[key]] = value
            elif key in passthrough:
                body[key] = value
            elif key == "dimensions":
                body["dimensions"] = [{"id": d["id"], "score": d.get("score")} for d in value]
        return body

    def _replace(self, updated: dict[str, Any]) -> None:
        for records in (self._all, self.assessments):
            for i, existing in enumerate(records):
                if existing.get("id") == updated["id"]:
                    records[i] = updated
                    break
            else:
                records.append(updated)

    # ── Workflow ─────────────────────────────────────────────────────────

    @toast_errors
    async def transition_state(self, assessment_id: str, new_state: str) -> TransitionOutcome:
        """
        Move an assessment through the workflow.

        The new status and ``<state>_at`` / ``<state>_by`` stamps are saved
        first. Post-actions then run one by one; a failing action is
        recorded in the outcome and does not undo the state change.
        """
        assessment = await self._require(assessment_id)
        current = assessment.get("status")
        role_id = self.roles.current_role
        if not self.config.can_transition(WORKFLOW_TYPE, current, new_state, role_id):
            raise TransitionNotAllowed(current, new_state, role_id)

        user_id = self.store.get("user.id")
        changes = {"status": new_state, f"{new_state}_at": _now(), f"{new_state}_by": user_id}
        updated, remote = await self._persist(assessment, changes)

        if self.settings.is_api:
            results = tuple(
                PostActionResult(type=r["type"], ok=r["ok"], skipped=r.get("skipped", False), error=r.get("error"))
                for r in (remote or {}).get("postActions", [])
            )
        else:
            transition = self.config.get_workflow(WORKFLOW_TYPE).find_transition(current, new_state)
            results = await run_post_actions(transition.post_actions, self._post_action_handlers(assessment_id))
            updated = await self._require(assessment_id)

        self.bus.emit(Events.ASSESSMENT_UPDATED, updated)
        if new_state == "in_review":
            self.bus.emit(Events.ASSESSMENT_SUBMITTED, updated)
        self.bus.emit(Events.NOTIFICATION_SHOW, {"type": "success", "message": f"Assessment moved to {new_state}"})
        logger.info("Assessment %s: %s → %s", assessment_id, current, new_state)
        return TransitionOutcome(from_state=current, to_state=new_state, entity=updated, post_actions=results)

    def _post_action_handlers(self, assessment_id: str):
        return {
            PostActionType.NOTIFY: lambda action: self._send_notification(assessment_id, action),
            PostActionType.ASSIGN: lambda action: self._auto_assign(assessment_id, action),
            PostActionType.CALCULATE_SCORE: lambda action: self.calculate_scores(assessment_id),
            PostActionType.CREATE_ACTION_ITEMS: lambda action: self.generate_action_items(assessment_id, action),
        }

    async def _send_notification(self, assessment_id: str, action: PostAction) -> None:
        assessment = await self._require(assessment_id)
        recipients = action.config.get("recipients", "assignees")
        users = assessment.get("reviewers") if recipients == "reviewers" else assessment.get("assigned_to")
        logger.info("Notify %s of assessment %s: %d user(s)", recipients, assessment_id, len(users or []))

    async def _auto_assign(self, assessment_id: str, action: PostAction) -> None:
        """Add every team member holding the configured role as a reviewer."""
        role_key = action.config.get("role")
        if not role_key:
            raise ValidationError("assign post-action needs a role")
        assessment = await self._require(assessment_id)
        team = _records(await self.loader.load("team"), "team")
        members = {m["id"] for m in team if m.get("role") == role_key and m.get("id")}
        reviewers = sorted(set(assessment.get("reviewers") or []) | members)
        await self._persist(assessment, {"reviewers": reviewers})

    async def calculate_scores(self, assessment_id: str) -> ScoreSummary:
        """Aggregate dimension scores and save progress and overall score."""
        assessment = await self._require(assessment_id)
        summary = calculate_scores(assessment.get("dimensions") or [])
        by_id = {d.dimension_id: d.percentage for d in summary.dimension_scores}
        dimensions = [{**d, "percentage": by_id.get(str(d.get("id")))} for d in assessment.get("dimensions") or []]
        await self._persist(assessment, {**summary.as_update(), "dimensions": dimensions})
        return summary

    async def generate_action_items(self, assessment_id: str, action: PostAction | None = None) -> list[dict]:
        """One open follow-up per scored dimension below the threshold."""
        threshold = float((action.config if action else {}).get("threshold", 60))
        assessment = await self._require(assessment_id)
        summary = calculate_scores(assessment.get("dimensions") or [])
        items = list(assessment.get("action_items") or [])
        existing = {i.get("dimension_id") for i in items}
        for dim in summary.dimension_scores:
            if dim.percentage < threshold and dim.dimension_id not in existing:
                items.append({
                    "dimension_id": dim.dimension_id,
                    "title": f"Improve {dim.dimension_name or dim.dimension_id}",
                    "percentage": round(dim.percentage, 1),
                    "status": "open",
                    "created_at": _now(),
                })
        if not self.settings.is_api:
            await self._persist(assessment, {"action_items": items})
        return items

    # ── Assignment / delete / export ─────────────────────────────────────

    @toast_errors
    async def assign_assessment(self, assessment_id: str, assignments: list[Mapping[str, Any]]) -> dict[str, Any]:
        if not self.roles.has_permission("assign", "assessments"):
            raise PermissionDenied("Permission denied: Cannot assign assessments")
        assessment = await self._require(assessment_id)
        user_ids = [a["user_id"] for a in assignments]
        assigned = list(dict.fromkeys([*(assessment.get("assigned_to") or []), *user_ids]))
        updated, _ = await self._persist(assessment, {"assigned_to": assigned})
        self.bus.emit(Events.NOTIFICATION_SHOW, {
            "type": "success",
            "message": f"Assessment assigned to {len(assignments)} user(s)",
        })
        return updated

    @toast_errors
    async def delete_assessment(self, assessment_id: str) -> None:
        if not self.roles.has_permission("delete", "assessments"):
            raise PermissionDenied("Permission denied: Cannot delete assessments")
        assessment = await self._require(assessment_id)
        # The loader publishes data:deleted; the server keeps the row soft-deleted
        await self.loader.delete("assessments", assessment_id)
        self._all = [a for a in self._all if a.get("id") != assessment_id]
        self.assessments = [a for a in self.assessments if a.get("id") != assessment_id]
        self.bus.emit(Events.NOTIFICATION_SHOW, {
            "type": "success",
            "message": f'Assessment "{assessment.get("title")}" deleted',
        })

    @toast_errors
    async def export_assessment(self, assessment_id: str) -> str:
        """JSON document of the assessment plus who exported it and when."""
        if not self.roles.has_permission("export", "assessments"):
            raise PermissionDenied("Permission denied: Cannot export assessments")
        assessment = await self._require(assessment_id)
        document = {
            "assessment": thaw(assessment),
            "exported_at": _now(),
            "exported_by": self.store.get("user.name"),
        }
        return json.dumps(document, indent=2, default=str)
