from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ClientSettings(BaseSettings):
    # Data source: "local" reads JSON files from data_dir, "api" calls the backend
    data_mode: str = "local"
    data_dir: Path = Path("data")
    api_base_url: str = "http://localhost:8000/api/v1"
    timeout: float = 30.0
    retry_attempts: int = 3

    # App
    environment: str = "demo"
    default_role: str = "customer_admin"
    platform_role_prefix: str = "reabel_"

    # Durable storage
    storage_prefix: str = "reabel_"
    storage_file: Path | None = None
    storage_keys: dict[str, str] = Field(default_factory=lambda: {
        "role": "demoRole",
        "user": "currentUser",
        "theme": "theme",
        "session": "sessionData",
    })

    # UI
    notification_duration_ms: int = 3000
    error_notification_duration_ms: int = 5000
    max_visible_notifications: int = 3
    page_size: int = 20
    session_hours: int = 24

    model_config = SettingsConfigDict(env_prefix="ASSESSMENT_CLIENT_", env_file=".env", extra="ignore")

    @property
    def is_api(self) -> bool:
        return self.data_mode == "api"

    @property
    def is_demo(self) -> bool:
        return self.environment == "demo"
