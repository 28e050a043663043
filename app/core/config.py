import json
import os

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ALLOW_ALL_SENTINEL = "0.0.0.0/0"


def _env_files() -> list[str]:
    env = os.getenv("RP_ENVIRONMENT", "").strip().lower()
    files = [".env"]
    if env and env != "development":
        files.append(f".env.{env}")
    else:
        files.append(".env.local")
    return files


class Settings(BaseSettings):
    app_name: str = "Recruitment Pipeline"
    environment: str = "development"
    log_level: str = "INFO"

    database_url: str
    database_echo: bool = False
    database_pool_pre_ping: bool = True

    webhook_secret: str = ""
    webhook_secret_header: str = "x-webhook-secret"
    webhook_ip_allowlist: str = ALLOW_ALL_SENTINEL
    # Skips the IP allow-list and accepts requests while no secret is configured.
    webhook_dev_bypass: bool = False
    webhook_rate_limit: int = 100
    webhook_rate_limit_window_seconds: int = 60

    gc_threshold: float = 800
    gc_scale: int = 1000

    enable_email: bool = False
    email_sender_address: str = "recruitment@example.com"
    email_sender_name: str = "Recruitment Team"
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True

    gc_assessment_url: str = ""
    agreement_form_url: str = ""

    stage_display_names_json: str = ""

    model_config = SettingsConfigDict(env_prefix="RP_", env_file=_env_files(), extra="ignore")

    @model_validator(mode="after")
    def _reject_production_bypass(self) -> "Settings":
        if self.webhook_dev_bypass and self.is_production:
            raise ValueError("RP_WEBHOOK_DEV_BYPASS cannot be enabled in production")
        return self

    @property
    def is_production(self) -> bool:
        return self.environment.strip().lower() == "production"

    @property
    def webhook_allowlist_entries(self) -> list[str]:
        return [item.strip() for item in (self.webhook_ip_allowlist or "").split(",") if item.strip()]

    @property
    def webhook_allow_all(self) -> bool:
        return ALLOW_ALL_SENTINEL in self.webhook_allowlist_entries

    @property
    def stage_display_names(self) -> dict[str, str]:
        raw = (self.stage_display_names_json or "").strip()
        if not raw:
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(k): str(v) for k, v in data.items()}


settings = Settings()
