"""
Runtime configuration: UI settings, workflow tables, form schemas, entity
validation rules, menus and feature flags.

Each block is loaded as a ``config_<name>`` resource; a block that cannot be
loaded falls back to the built-in default below.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from assessment_platform.client.events import EventBus, Events
from assessment_platform.client.loader import ResourceLoader
from assessment_platform.errors import PlatformError
from assessment_platform.forms import FormSchema
from assessment_platform.workflow import DEFAULT_WORKFLOWS, Transition, WorkflowDefinition, WorkflowRegistry

logger = logging.getLogger(__name__)

CONFIG_TYPES = ("ui", "workflows", "forms", "validations", "menus", "features")

DEFAULT_UI = {
    "theme": "default",
    "primaryColor": "#48A9A6",
    "secondaryColor": "#667eea",
    "pageSize": 20,
    "dateFormat": "YYYY-MM-DD",
    "timeFormat": "HH:mm",
    "language": "en",
}

DEFAULT_FORMS = {
    "assessment": {
        "fields": [
            {"name": "title", "type": "text", "label": "Assessment Title",
             "required": True, "maxLength": 200},
            {"name": "description", "type": "textarea", "label": "Description",
             "required": False, "rows": 4},
            {"name": "template_id", "type": "select", "label": "Template",
             "required": True, "options": "templates"},
        ],
    },
}

DEFAULT_VALIDATIONS = {
    "assessment": {
        "title": {"required": True, "minLength": 3, "maxLength": 200, "pattern": r"^[a-zA-Z0-9\s-]+$"},
        "description": {"maxLength": 1000},
    },
}

DEFAULT_MENUS = {
    "main": [
        {"id": "dashboard", "label": "Dashboard", "icon": "layout-dashboard", "href": "02_dashboard.html"},
        {"id": "assessments", "label": "Assessments", "icon": "file-text", "href": "03_templates.html"},
    ],
}

DEFAULT_FEATURES = {
    "collaboration": True,
    "comments": True,
    "attachments": True,
    "notifications": True,
    "analytics": True,
    "export": True,
}


def _default(config_type: str) -> Any:
    if config_type == "workflows":
        return WorkflowRegistry(DEFAULT_WORKFLOWS)
    return {
        "ui": DEFAULT_UI,
        "forms": DEFAULT_FORMS,
        "validations": DEFAULT_VALIDATIONS,
        "menus": DEFAULT_MENUS,
        "features": DEFAULT_FEATURES,
    }[config_type]


def _unwrap(config_type: str, data: Any) -> Any:
    if isinstance(data, dict) and set(data) == {config_type}:
        return data[config_type]
    return data


class ConfigService:
    def __init__(self, loader: ResourceLoader, bus: EventBus):
        self.loader = loader
        self.bus = bus
        self.configs: dict[str, Any] = {}
        self.initialized = False

    async def initialize(self) -> None:
        blocks = await asyncio.gather(*(self._load(t) for t in CONFIG_TYPES))
        self.configs = dict(zip(CONFIG_TYPES, blocks))
        self.initialized = True
        self.bus.emit(Events.CONFIG_LOADED, self.configs)
        logger.info("Configuration loaded")

    async def _load(self, config_type: str) -> Any:
        try:
            data = await self.loader.load(f"config_{config_type}", silent=True)
        except PlatformError as exc:
            logger.info("Using default %s config (%s)", config_type, exc.message)
            return _default(config_type)
        return self._parse(config_type, data)

    @staticmethod
    def _parse(config_type: str, data: Any) -> Any:
        data = _unwrap(config_type, data)
        if config_type == "workflows":
            return WorkflowRegistry.from_config(data)
        return data

    async def refresh_config(self, config_type: str) -> None:
        """Reload one block, bypassing the loader cache. Errors propagate."""
        self.loader.clear_cache(f"config_{config_type}")
        data = await self.loader.load(f"config_{config_type}")
        self.configs[config_type] = self._parse(config_type, data)
        self.bus.emit(Events.CONFIG_REFRESHED, {"type": config_type, "data": self.configs[config_type]})

    async def refresh_all(self) -> None:
        for config_type in CONFIG_TYPES:
            self.loader.clear_cache(f"config_{config_type}")
        await self.initialize()

    # ── Accessors ────────────────────────────────────────────────────────

    def get_ui_config(self, key: str | None = None) -> Any:
        ui = self.configs.get("ui", DEFAULT_UI)
        return ui.get(key) if key else ui

    @property
    def workflows(self) -> WorkflowRegistry:
        return self.configs.get("workflows") or _default("workflows")

    def get_workflow(self, workflow_type: str) -> WorkflowDefinition:
        return self.workflows.get(workflow_type)

    def get_workflow_states(self, workflow_type: str) -> list[str]:
        return list(self.get_workflow(workflow_type).states)

    def get_allowed_transitions(self, workflow_type: str, current_state: str,
                                role_id: str | None) -> list[Transition]:
        if workflow_type not in self.workflows.types():
            return []
        return self.get_workflow(workflow_type).allowed_transitions(current_state, role_id)

    def can_transition(self, workflow_type: str, from_state: str, to_state: str,
                       role_id: str | None) -> bool:
        return self.workflows.can_transition(workflow_type, from_state, to_state, role_id)

    def get_form_schema(self, form_name: str) -> FormSchema | None:
        raw = self.configs.get("forms", DEFAULT_FORMS).get(form_name)
        return FormSchema.model_validate(raw) if raw is not None else None

    def get_field_config(self, entity: str, field_name: str):
        schema = self.get_form_schema(entity)
        return schema.get_field(field_name) if schema is not None else None

    def get_validation_rules(self, entity: str, field: str | None = None) -> dict | None:
        rules = self.configs.get("validations", DEFAULT_VALIDATIONS).get(entity)
        if rules is None:
            return None
        return rules.get(field) if field else rules

    def get_menu(self, menu_id: str) -> list[dict] | None:
        return self.configs.get("menus", DEFAULT_MENUS).get(menu_id)

    def is_feature_enabled(self, name: str) -> bool:
        return self.configs.get("features", DEFAULT_FEATURES).get(name) is True

    def get_all_features(self) -> dict[str, bool]:
        return dict(self.configs.get("features", DEFAULT_FEATURES))
