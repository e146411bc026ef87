# caredispatch/config.py
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Literal


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

    # Storage
    # "postgres" - asyncpg pool against DATABASE_URL / PG* settings
    # "memory"   - process-local store (dev and tests only, nothing survives a restart)
    storage_backend: Literal["postgres", "memory"] = "postgres"

    # Database
    expected_schema_version: str = "002_dispatch_lookup_indexes.sql"  # Update on deploy when new migrations are added
    database_url: str | None = None
    pghost: str = "localhost"
    pgport: int = 5432
    pguser: str = "postgres"
    pgpassword: str = ""
    pgdatabase: str = "postgres"
    pg_pool_min: int = 2
    pg_pool_max: int = 20
    pg_connect_timeout: int = 5
    pg_statement_timeout_ms: int = 30000
    pg_idle_in_tx_timeout_ms: int = 30000

    # Security
    admin_token: str | None = None
    metrics_token: str | None = None
    allowed_origins: list[str] = ["*"]
    rate_limit_per_minute: int = 60
    complaint_rate_limit_per_minute: int = 5  # Max complaints per reporter phone per minute (anti-spam)

    # Caller identity
    # The upstream auth gateway verifies the volunteer session and forwards
    # X-Volunteer-Id / X-Volunteer-Category. When this secret is set the gateway
    # must also send X-Identity-Signature = hex(HMAC-SHA256(secret, "<id>:<category>")).
    identity_signing_secret: str | None = None

    # Volunteer notifications
    volunteer_notifications_enabled: bool = True

    # Dev seeding (fictional volunteers around a center point)
    fictional_volunteer_count: int = 10
    fictional_volunteer_center: str = "12.9716,77.5946"
    fictional_volunteer_spread_deg: float = 0.5

    # Feature Flags
    enable_request_logging: bool = True

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, v: str) -> str:
        return v.upper()

    @field_validator("fictional_volunteer_center")
    @classmethod
    def _center_is_lat_lon(cls, v: str) -> str:
        parts = v.split(",")
        try:
            if len(parts) != 2:
                raise ValueError
            float(parts[0]), float(parts[1])
        except ValueError:
            raise ValueError(f"fictional_volunteer_center must be 'lat,lon', got {v!r}") from None
        return v.strip()

    @property
    def is_production(self) -> bool:
        return self.app_env == "prod"

    @property
    def is_staging(self) -> bool:
        return self.app_env == "staging"

    @property
    def uses_postgres(self) -> bool:
        return self.storage_backend == "postgres"

    @property
    def database_dsn(self) -> str:
        if self.database_url:
            return self.database_url

        return (
            f"postgresql://{self.pguser}:{self.pgpassword}"
            f"@{self.pghost}:{self.pgport}/{self.pgdatabase}"
        )

    def validate_required_for_production(self) -> list[str]:
        """Validate that required settings exist for production"""
        if not self.is_production:
            return []

        missing = []

        required_fields = [
            ("admin_token", self.admin_token),
            ("identity_signing_secret", self.identity_signing_secret),
        ]

        for field_name, value in required_fields:
            if not value:
                missing.append(field_name)

        if self.storage_backend != "postgres":
            missing.append("storage_backend=postgres")

        return missing


def warn_on_risky_config(s: "Settings") -> list[str]:
    warnings: list[str] = []

    # --- Identity ---
    if not s.identity_signing_secret:
        warnings.append(
            "identity_signing_secret is not set: volunteer identity headers are trusted without a signature."
        )

    # --- Admin / Security ---
    if s.is_production and s.allowed_origins == ["*"]:
        warnings.append("prod: allowed_origins=['*'] (CORS is wide open).")

    if not s.metrics_token:
        warnings.append("metrics_token is not set: /metrics is only reachable in dev.")

    # --- Storage ---
    if s.storage_backend == "memory" and s.app_env != "dev":
        warnings.append(
            f"{s.app_env}: storage_backend=memory (complaints and dispatches are lost on restart)."
        )

    if not s.volunteer_notifications_enabled:
        warnings.append("volunteer_notifications_enabled=False: matched volunteers will not be notified.")

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
