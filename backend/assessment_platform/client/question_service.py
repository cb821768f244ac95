"""
Question Service: questions of the active assessment and their answers.

Answers are validated and scored with the question's own type rules
(``assessment_platform.questions``) before they are saved, so local mode
and the API agree on what is acceptable and what it scores.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from assessment_platform.client.events import EventBus, Events
from assessment_platform.client.loader import ResourceLoader
from assessment_platform.client.notifications import toast_errors
from assessment_platform.client.role_service import RoleService
from assessment_platform.client.settings import ClientSettings
from assessment_platform.client.store import Store
from assessment_platform.errors import NotFound, PermissionDenied, ValidationError
from assessment_platform.questions import ResponseData, calculate_score, parse_question, validate_response

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class QuestionService:
    def __init__(self, loader: ResourceLoader, bus: EventBus, store: Store,
                 roles: RoleService, settings: ClientSettings):
        self.loader = loader
        self.bus = bus
        self.store = store
        self.roles = roles
        self.settings = settings
        self.questions: list[dict[str, Any]] = []
        self.responses: dict[tuple[str, str], dict[str, Any]] = {}
        self.template_id: str | None = None

    async def initialize(self, template_id: str | None = None) -> None:
        """Load the questions of one template (all of them in local mode when None)."""
        params = {"templateId": template_id} if template_id and self.settings.is_api else None
        data = await self.loader.load("questions", params)
        items = data.get("questions", data) if isinstance(data, dict) else data
        questions = [dict(q) for q in items or []]
        # The API filters by id or key server-side; local files hold every template
        if template_id and not self.settings.is_api:
            questions = [q for q in questions if q.get("template_id") in (template_id, None)]
        questions.sort(key=lambda q: q.get("sort_order") or 0)
        self.questions = questions
        self.template_id = template_id
        self.store.merge("data", {"questions": self.questions})
        logger.info("Loaded %d questions (template %s)", len(self.questions), template_id or "*")

    # ── Lookup ───────────────────────────────────────────────────────────

    def get_question(self, question_id: str) -> dict[str, Any] | None:
        return next((q for q in self.questions if self._qid(q) == question_id), None)

    def get_questions_by_dimension(self, dimension_id: str) -> list[dict[str, Any]]:
        return [q for q in self.questions if q.get("dimension_id") == dimension_id]

    def get_response(self, assessment_id: str, question_id: str) -> dict[str, Any] | None:
        return self.responses.get((assessment_id, question_id))

    @staticmethod
    def _qid(question: dict[str, Any]) -> str:
        return question.get("id") or question.get("question_id")

    def _require_question(self, question_id: str) -> dict[str, Any]:
        question = self.get_question(question_id)
        if question is None:
            raise NotFound("Question not found")
        return question

    # ── Answering ────────────────────────────────────────────────────────

    @toast_errors
    async def submit_response(self, assessment_id: str, question_id: str,
                              answer: ResponseData) -> dict[str, Any]:
        """Validate, score and save an answer; a resubmission clears any review."""
        if not self.roles.has_permission("write", "responses"):
            raise PermissionDenied("Permission denied: Cannot submit responses")
        question = parse_question(self._require_question(question_id))
        validate_response(question, answer)
        score = calculate_score(question, answer)

        response = await self._save(assessment_id, question_id, answer, score=score, status="submitted")
        self.bus.emit(Events.QUESTION_ANSWERED, response)
        return response

    @toast_errors
    async def save_draft(self, assessment_id: str, question_id: str, answer: ResponseData) -> dict[str, Any]:
        """Store an unvalidated, unscored answer."""
        if not self.roles.has_permission("write", "responses"):
            raise PermissionDenied("Permission denied: Cannot submit responses")
        self._require_question(question_id)
        response = await self._save(assessment_id, question_id, answer, score=None, status="draft")
        self.bus.emit(Events.QUESTION_SAVED, response)
        return response

    async def _save(self, assessment_id: str, question_id: str, answer: ResponseData, *,
                    score: float | None, status: str) -> dict[str, Any]:
        draft = status == "draft"
        if self.settings.is_api:
            result = await self.loader.save("responses", {
                "assessmentId": assessment_id,
                "questionId": question_id,
                "responseText": answer.text,
                "responseData": answer.data,
                "draft": draft,
            })
            response = dict(result["response"])
        else:
            existing = self.responses.get((assessment_id, question_id)) or {}
            response = {
                "response_id": existing.get("response_id") or f"resp_{uuid.uuid4().hex}",
                "assessment_id": assessment_id,
                "question_id": question_id,
                "user_id": self.store.get("user.id"),
                "response_text": answer.text,
                "response_data": answer.data,
                "score": score,
                "status": status,
                "reviewer_id": None,
                "reviewer_comments": None,
                "submitted_at": None if draft else _now(),
                "reviewed_at": None,
            }
            await self.loader.save("responses", response)
        self.responses[(assessment_id, question_id)] = response
        return response

    @toast_errors
    async def review_response(self, assessment_id: str, question_id: str, approved: bool,
                              comments: str | None = None) -> dict[str, Any]:
        if not self.roles.has_permission("review", "responses"):
            raise PermissionDenied("Permission denied: Cannot review responses")
        response = self.get_response(assessment_id, question_id)
        if response is None:
            raise NotFound("Response not found")
        if response.get("status") != "submitted":
            raise ValidationError(f"Only submitted responses can be reviewed (status: {response.get('status')})")

        if self.settings.is_api:
            result = await self.loader.save(f"responses/{response['response_id']}",
                                            {"approved": approved, "comments": comments}, "PUT")
            reviewed = dict(result["response"])
        else:
            reviewed = {
                **response,
                "status": "approved" if approved else "rejected",
                "reviewer_id": self.store.get("user.id"),
                "reviewer_comments": comments,
                "reviewed_at": _now(),
            }
            await self.loader.save(f"responses/{response['response_id']}", reviewed, "PUT")
        self.responses[(assessment_id, question_id)] = reviewed
        self.bus.emit(Events.REVIEW_APPROVED if approved else Events.REVIEW_REJECTED, reviewed)
        return reviewed

    # ── Progress ─────────────────────────────────────────────────────────

    def get_progress(self, assessment_id: str) -> dict[str, int]:
        """Answer counts for one assessment; drafts count as remaining."""
        total = len(self.questions)
        statuses = [
            (self.responses.get((assessment_id, self._qid(q))) or {}).get("status")
            for q in self.questions
        ]
        answered = sum(1 for s in statuses if s in ("submitted", "approved", "rejected"))
        approved = statuses.count("approved")
        pending = statuses.count("submitted")
        return {
            "total": total,
            "answered": answered,
            "approved": approved,
            "pending": pending,
            "remaining": total - answered,
            "percentage": round(answered / total * 100) if total else 0,
        }

    def dimension_scores(self, assessment_id: str) -> dict[str, float]:
        """Mean answer score per dimension, scored answers only."""
        buckets: dict[str, list[float]] = {}
        for q in self.questions:
            response = self.responses.get((assessment_id, self._qid(q)))
            if response and response.get("score") is not None and response.get("status") != "draft":
                buckets.setdefault(q.get("dimension_id"), []).append(float(response["score"]))
        return {dim: sum(scores) / len(scores) for dim, scores in buckets.items()}

    @toast_errors
    async def import_questions(self, questions: list[dict[str, Any]]) -> int:
        """Add question definitions; each must parse as a known question type."""
        if not self.roles.has_permission("create", "questions"):
            raise PermissionDenied("Permission denied: Cannot import questions")
        known = {self._qid(q) for q in self.questions}
        added = 0
        for raw in questions:
            try:
                parse_question(raw)
            except ValueError as exc:
                raise ValidationError(f"Invalid question {raw.get('id')!r}: {exc}") from exc
            if self._qid(raw) in known:
                continue
            self.questions.append(dict(raw))
            known.add(self._qid(raw))
            added += 1
        self.store.merge("data", {"questions": self.questions})
        logger.info("Imported %d questions", added)
        return added
