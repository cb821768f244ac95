"""
Workflow engine: data-driven state machines for entity lifecycles.

A workflow definition lists the states, the initial state and, per source
state, the transitions out of it. Nothing here knows about specific states:
the assessment lifecycle

    draft → active → in_review → approved → published   (+ active → archived)

is only the default table in DEFAULT_WORKFLOWS. Definitions can be replaced
from configuration (`config_workflows` resource on the client side).

A transition's `roles` list restricts who may take it; `None` means anyone.
`post_actions` are run by the caller after the new state is persisted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping, Sequence

from pydantic import BaseModel, ConfigDict, Field

from assessment_platform.errors import NotFound, TransitionNotAllowed

logger = logging.getLogger(__name__)


class PostActionType(str, Enum):
    NOTIFY = "notify"
    ASSIGN = "assign"
    CALCULATE_SCORE = "calculate_score"
    CREATE_ACTION_ITEMS = "create_action_items"


class PostAction(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: PostActionType
    config: dict[str, Any] = Field(default_factory=dict)


class Transition(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    to: str
    label: str = ""
    roles: tuple[str, ...] | None = None
    post_actions: tuple[PostAction, ...] = ()

    def allows(self, role_id: str | None) -> bool:
        return self.roles is None or role_id in self.roles


class WorkflowDefinition(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    entity_type: str = Field(default="assessment", alias="entityType")
    states: tuple[str, ...]
    initial_state: str = Field(alias="initialState")
    transitions: dict[str, tuple[Transition, ...]] = Field(default_factory=dict)

    def transitions_from(self, from_state: str) -> tuple[Transition, ...]:
        return self.transitions.get(from_state, ())

    def find_transition(self, from_state: str, to_state: str) -> Transition | None:
        for t in self.transitions_from(from_state):
            if t.to == to_state:
                return t
        return None

    def allowed_transitions(self, from_state: str, role_id: str | None) -> list[Transition]:
        """Transitions out of `from_state` that `role_id` may take."""
        return [t for t in self.transitions_from(from_state) if t.allows(role_id)]

    def can_transition(self, from_state: str, to_state: str, role_id: str | None) -> bool:
        return any(t.to == to_state for t in self.allowed_transitions(from_state, role_id))

    def is_terminal(self, state: str) -> bool:
        return not self.transitions_from(state)

    def validate_definition(self) -> list[str]:
        """
        Report structural problems without enforcing anything.

        Checks that transition endpoints are declared states, that the initial
        state has no incoming edges, and that every declared state is
        reachable from the initial state. States without outgoing transitions
        are treated as terminal.
        """
        problems: list[str] = []
        declared = set(self.states)

        if self.initial_state not in declared:
            problems.append(f"initial state '{self.initial_state}' is not declared")

        for source, targets in self.transitions.items():
            if source not in declared:
                problems.append(f"transition source '{source}' is not declared")
            for t in targets:
                if t.to not in declared:
                    problems.append(f"transition target '{t.to}' (from '{source}') is not declared")
                if t.to == self.initial_state:
                    problems.append(f"initial state '{self.initial_state}' has an incoming edge from '{source}'")

        reachable = {self.initial_state}
        frontier = [self.initial_state]
        while frontier:
            state = frontier.pop()
            for t in self.transitions_from(state):
                if t.to not in reachable:
                    reachable.add(t.to)
                    frontier.append(t.to)
        for state in self.states:
            if state not in reachable:
                problems.append(f"state '{state}' is unreachable from '{self.initial_state}'")

        return problems


class WorkflowRegistry:
    """Workflow definitions keyed by workflow type ("assessment", ...)."""

    def __init__(self, definitions: dict[str, WorkflowDefinition] | None = None):
        self._definitions: dict[str, WorkflowDefinition] = dict(
            definitions if definitions is not None else DEFAULT_WORKFLOWS
        )

    @classmethod
    def from_config(cls, raw: dict[str, dict]) -> "WorkflowRegistry":
        return cls({name: WorkflowDefinition.model_validate({"entity_type": name, **body})
                    for name, body in raw.items()})

    def get(self, workflow_type: str) -> WorkflowDefinition:
        try:
            return self._definitions[workflow_type]
        except KeyError:
            raise NotFound(f"Workflow not found: {workflow_type}") from None

    def types(self) -> list[str]:
        return list(self._definitions)

    def can_transition(self, workflow_type: str, from_state: str, to_state: str,
                       role_id: str | None) -> bool:
        if workflow_type not in self._definitions:
            return False
        return self._definitions[workflow_type].can_transition(from_state, to_state, role_id)

    def require_transition(self, workflow_type: str, from_state: str, to_state: str,
                           role_id: str | None) -> Transition:
        """Return the transition or raise TransitionNotAllowed."""
        if not self.can_transition(workflow_type, from_state, to_state, role_id):
            raise TransitionNotAllowed(from_state, to_state, role_id)
        return self.get(workflow_type).find_transition(from_state, to_state)


def _t(to: str, label: str, roles: list[str] | None, *actions: tuple[str, dict]) -> Transition:
    return Transition(
        to=to, label=label,
        roles=tuple(roles) if roles is not None else None,
        post_actions=tuple(PostAction(type=kind, config=cfg) for kind, cfg in actions),
    )


ASSESSMENT_WORKFLOW = WorkflowDefinition(
    entity_type="assessment",
    states=("draft", "active", "in_review", "approved", "published", "archived"),
    initial_state="draft",
    transitions={
        "draft": (
            _t("active", "Activate", ["customer_admin", "domain_manager"],
               ("notify", {"recipients": "assignees"})),
        ),
        "active": (
            _t("in_review", "Submit for Review", ["contributor", "domain_manager"],
               ("assign", {"role": "reviewer"}),
               ("notify", {"recipients": "reviewers"})),
            _t("archived", "Archive", ["customer_admin"]),
        ),
        "in_review": (
            _t("approved", "Approve", ["reviewer", "customer_admin"],
               ("calculate_score", {})),
            _t("active", "Reject", ["reviewer", "customer_admin"],
               ("notify", {"recipients": "assignees"})),
        ),
        "approved": (
            _t("published", "Publish", ["customer_admin"],
               ("calculate_score", {}),
               ("create_action_items", {"threshold": 60})),
        ),
    },
)

DEFAULT_WORKFLOWS: dict[str, WorkflowDefinition] = {"assessment": ASSESSMENT_WORKFLOW}


# ── Post-action execution ────────────────────────────────────────────────────

PostActionHandler = Callable[[PostAction], Awaitable[Any]]


@dataclass(frozen=True)
class PostActionResult:
    type: str
    ok: bool
    skipped: bool = False
    error: str | None = None


@dataclass(frozen=True)
class TransitionOutcome:
    """What a transition did. The state change stands even if actions failed."""

    from_state: str
    to_state: str
    entity: Any = None
    post_actions: tuple[PostActionResult, ...] = ()

    @property
    def failed_actions(self) -> list[PostActionResult]:
        return [r for r in self.post_actions if not r.ok]


async def run_post_actions(
    actions: Sequence[PostAction],
    handlers: Mapping[PostActionType, PostActionHandler],
) -> tuple[PostActionResult, ...]:
    """
    Run post-actions one at a time in declaration order.

    A failing action is logged and recorded; it neither undoes the state
    change nor stops the remaining actions. Types without a handler are
    recorded as skipped.
    """
    results: list[PostActionResult] = []
    for action in actions:
        handler = handlers.get(action.type)
        if handler is None:
            results.append(PostActionResult(type=action.type.value, ok=True, skipped=True))
            continue
        try:
            await handler(action)
        except Exception as exc:
            logger.error("Post-action %s failed: %s", action.type.value, exc, exc_info=True)
            results.append(PostActionResult(type=action.type.value, ok=False, error=str(exc)))
        else:
            results.append(PostActionResult(type=action.type.value, ok=True))
    return tuple(results)
