from assessment_platform.client.context import ClientContext
from assessment_platform.client.events import EventBus, Events
from assessment_platform.client.settings import ClientSettings
from assessment_platform.client.store import AppState, Store

__all__ = [
    "ClientContext", "ClientSettings",
    "EventBus", "Events",
    "AppState", "Store",
]
