# shiftdesk/config.py
import re
from decimal import Decimal
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

_E164_RE = re.compile(r"^\+[1-9]\d{1,14}$")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    app_env: Literal["dev", "staging", "prod"] = "dev"
    log_level: str = "INFO"
    app_base_url: str | None = None  # Public site URL, used for schedule links and invite redirects
    app_timezone: str = "America/Chicago"  # Shift times are stored in UTC, shown to workers in this zone
    allowed_origins: list[str] = ["*"]
    enable_request_logging: bool = True

    # Operational endpoints
    metrics_token: str | None = None  # Bearer token for /metrics (if not set, uses internal network check)
    internal_networks: str = "10.0.0.0/8,172.16.0.0/12,192.168.0.0/16,127.0.0.0/8,::1/128"
    trust_proxy_headers: bool = False  # Honour X-Forwarded-For when resolving the client IP

    # Database
    database_url: str | None = None
    pghost: str = "localhost"
    pgport: int = 5432
    pguser: str = "postgres"
    pgpassword: str = ""
    pgdatabase: str = "postgres"
    pg_pool_min: int = 2
    pg_pool_max: int = 10
    pg_connect_timeout: int = 5
    pg_statement_timeout_ms: int = 30000

    # Identity provider (Supabase Auth admin API)
    supabase_url: str | None = None
    supabase_service_role_key: str | None = None
    identity_page_size: int = 1000  # Users fetched per page when looking up by email

    # Twilio SMS
    twilio_account_sid: str | None = None
    twilio_auth_token: str | None = None
    twilio_from_number: str | None = None
    twilio_webhook_url: str | None = None  # Public URL Twilio signs inbound requests with
    require_webhook_validation: bool = True

    # Workers
    default_pay_rate: Decimal = Decimal("25.00")

    @property
    def is_production(self) -> bool:
        return self.app_env == "prod"

    @property
    def is_staging(self) -> bool:
        return self.app_env == "staging"

    @property
    def twilio_enabled(self) -> bool:
        """SMS is only sent when all three Twilio settings are present"""
        return bool(
            self.twilio_account_sid
            and self.twilio_auth_token
            and self.twilio_from_number
        )

    @property
    def identity_enabled(self) -> bool:
        return bool(self.supabase_url and self.supabase_service_role_key)

    @property
    def database_dsn(self) -> str:
        if self.database_url:
            return self.database_url

        return (
            f"postgresql://{self.pguser}:{self.pgpassword}"
            f"@{self.pghost}:{self.pgport}/{self.pgdatabase}"
        )

    @property
    def invite_redirect_url(self) -> str | None:
        if not self.app_base_url:
            return None
        return f"{self.app_base_url.rstrip('/')}/update-password"

    @property
    def schedule_url(self) -> str | None:
        if not self.app_base_url:
            return None
        return f"{self.app_base_url.rstrip('/')}/me/schedule"

    def validate_required_for_production(self) -> list[str]:
        """Validate that required settings exist for production"""
        if not self.is_production:
            return []

        required_fields = [
            ("supabase_url", self.supabase_url),
            ("supabase_service_role_key", self.supabase_service_role_key),
        ]

        missing = []
        for field_name, value in required_fields:
            if not value:
                missing.append(field_name)

        if not self.database_url and not self.pgpassword:
            missing.append("database_url or pgpassword")

        return missing


def warn_on_risky_config(s: "Settings") -> list[str]:
    warnings: list[str] = []

    # --- Twilio: all three or none ---
    twilio_values = [s.twilio_account_sid, s.twilio_auth_token, s.twilio_from_number]
    configured = sum(1 for v in twilio_values if v)
    if 0 < configured < 3:
        warnings.append(
            "Twilio configuration incomplete: set all of twilio_account_sid, "
            "twilio_auth_token, twilio_from_number (SMS is disabled until then)."
        )
    elif configured == 0:
        warnings.append("Twilio is not configured (shift notifications will be skipped).")

    if s.twilio_from_number and not _E164_RE.match(s.twilio_from_number):
        warnings.append("twilio_from_number must be in E.164 format (e.g. +12025551234).")

    if s.twilio_enabled and s.require_webhook_validation and not s.twilio_webhook_url:
        warnings.append("twilio: require_webhook_validation=True but twilio_webhook_url is not set.")

    # --- Identity provider ---
    if s.supabase_url and not s.supabase_url.startswith("https://"):
        warnings.append("supabase_url should start with https://")
    if not s.identity_enabled:
        warnings.append("Identity provider is not configured (worker provisioning will fail).")

    # --- Links ---
    if not s.app_base_url:
        warnings.append("app_base_url is not set (invites have no redirect, SMS has no schedule link).")

    if s.is_production and s.allowed_origins == ["*"]:
        warnings.append("prod: allowed_origins=['*'] (CORS is wide open).")

    # --- Metrics ---
    if not s.metrics_token and not s.internal_networks.strip():
        warnings.append("metrics_token and internal_networks are both empty: /metrics is unreachable.")

    return warnings


def validate_or_warn(s: "Settings") -> None:
    """
    In prod: enforce required settings (hard fail).
    In non-prod: warn only.
    """
    missing = s.validate_required_for_production()

    if missing:
        raise RuntimeError(f"Missing required settings for production: {', '.join(missing)}")

    for msg in warn_on_risky_config(s):
        print(f"[WARN][config] {msg}")

settings = Settings()
validate_or_warn(settings)
