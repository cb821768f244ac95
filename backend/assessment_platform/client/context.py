"""
Client wiring.

``ClientContext`` builds every client service with its collaborators and
brings them up in dependency order:

    config → roles → navigation → session restore → assessments → questions

Nothing here is a module-level singleton; tests build as many contexts as
they need, each with its own bus, store and loader.
"""

from __future__ import annotations

import logging

import httpx

from assessment_platform.client.assessment_service import AssessmentService
from assessment_platform.client.auth_service import AuthService
from assessment_platform.client.config_service import ConfigService
from assessment_platform.client.events import EventBus
from assessment_platform.client.loader import ResourceLoader
from assessment_platform.client.navigation import NavigationService
from assessment_platform.client.notifications import NotificationService
from assessment_platform.client.question_service import QuestionService
from assessment_platform.client.role_service import RoleService
from assessment_platform.client.settings import ClientSettings
from assessment_platform.client.storage import ClientStorage
from assessment_platform.client.store import Store

logger = logging.getLogger(__name__)


class ClientContext:
    def __init__(self, settings: ClientSettings | None = None,
                 transport: httpx.AsyncBaseTransport | None = None):
        self.settings = settings or ClientSettings()
        self.bus = EventBus()
        self.store = Store(self.bus)
        self.storage = ClientStorage(self.settings.storage_prefix, self.settings.storage_file)
        self.loader = ResourceLoader(self.settings, self.bus, self.store, transport=transport)

        self.config = ConfigService(self.loader, self.bus)
        self.notifications = NotificationService(self.bus, self.settings, self.store)
        self.auth = AuthService(self.loader, self.bus, self.store, self.storage, self.settings)
        self.roles = RoleService(self.loader, self.bus, self.store, self.storage, self.settings)
        self.navigation = NavigationService(self.loader, self.bus, self.store, self.roles)
        self.assessments = AssessmentService(self.loader, self.bus, self.store, self.roles,
                                             self.config, self.settings)
        self.questions = QuestionService(self.loader, self.bus, self.store, self.roles, self.settings)
        self.initialized = False

    async def initialize(self) -> "ClientContext":
        """
        Load configuration and reference data. In API mode the session must
        exist first (login or restore) since every resource needs a token;
        questions are then loaded per template on demand.
        """
        self.notifications.initialize()
        self.auth.restore_session()
        await self.config.initialize()
        await self.roles.initialize()
        await self.navigation.initialize()
        await self.assessments.initialize()
        if not self.settings.is_api:
            await self.questions.initialize()
        self.initialized = True
        logger.info("Client initialized (%s mode, role %s)", self.loader.mode, self.roles.current_role)
        return self

    async def aclose(self) -> None:
        self.notifications.close()
        self.assessments.close()
        await self.loader.aclose()

    async def __aenter__(self) -> "ClientContext":
        return await self.initialize()

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
