from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=None, extra="ignore")

    # Runtime
    environment: str = Field(default="development", validation_alias="NODE_ENV")
    port: int = Field(default=8080, validation_alias="PORT")

    # CORS / Frontend
    frontend_base_url: str = Field(
        default="http://localhost:3000", validation_alias="FRONTEND_BASE_URL"
    )
    frontend_urls: str | None = Field(default=None, validation_alias="FRONTEND_URLS")
    # Preview deployments of the web client, matched as a regex (e.g. Vercel previews).
    cors_origin_regex: str | None = Field(
        default=r"^https://([a-z0-9-]+\.)*vercel\.app$", validation_alias="CORS_ORIGIN_REGEX"
    )

    # AWS / data
    aws_region: str = Field(default="us-east-1", validation_alias="AWS_REGION")
    ddb_table_name: str | None = Field(default=None, validation_alias="DDB_TABLE_NAME")

    # Auth (Cognito)
    cognito_user_pool_id: str | None = Field(
        default=None, validation_alias="COGNITO_USER_POOL_ID"
    )
    cognito_client_id: str | None = Field(
        default=None, validation_alias="COGNITO_CLIENT_ID"
    )
    cognito_region: str = Field(default="us-east-1", validation_alias="COGNITO_REGION")
    # Members of this Cognito group hold the administrator capability.
    admin_group_name: str = Field(default="Admin", validation_alias="ADMIN_GROUP_NAME")

    # Email (SES)
    email_enabled: bool = Field(default=True, validation_alias="EMAIL_ENABLED")
    email_sender: str | None = Field(default=None, validation_alias="EMAIL_SENDER")
    email_send_timeout_seconds: int = Field(
        default=5, validation_alias="EMAIL_SEND_TIMEOUT_SECONDS"
    )

    # Video rooms (100ms)
    hms_app_access_key: str | None = Field(default=None, validation_alias="HMS_APP_ACCESS_KEY")
    hms_app_secret: str | None = Field(default=None, validation_alias="HMS_APP_SECRET")
    hms_template_id: str | None = Field(default=None, validation_alias="HMS_TEMPLATE_ID")
    hms_api_base: str = Field(
        default="https://api.100ms.live/v2", validation_alias="HMS_API_BASE"
    )
    hms_token_ttl_seconds: int = Field(default=24 * 3600, validation_alias="HMS_TOKEN_TTL_SECONDS")

    # Job lifecycle policy
    jobs_auto_publish_on_approve: bool = Field(
        default=True, validation_alias="JOBS_AUTO_PUBLISH_ON_APPROVE"
    )
    job_match_alert_limit: int = Field(default=100, validation_alias="JOB_MATCH_ALERT_LIMIT")

    # AI match analysis (optional)
    openai_api_key: str | None = Field(default=None, validation_alias="OPENAI_API_KEY")
    openai_model: str = Field(default="gpt-4o-mini", validation_alias="OPENAI_MODEL")
    # Guardrail: clamp max output tokens.
    openai_max_output_tokens_cap: int = Field(
        default=1500, validation_alias="OPENAI_MAX_OUTPUT_TOKENS_CAP"
    )

    # Logging
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    # "json" for deployed environments, "console" for a readable local terminal.
    log_format: str = Field(default="json", validation_alias="LOG_FORMAT")

    # Observability (OpenTelemetry)
    otel_enabled: bool = Field(default=False, validation_alias="OTEL_ENABLED")
    otel_service_name: str | None = Field(
        default="campus-connect-backend", validation_alias="OTEL_SERVICE_NAME"
    )
    # OTLP/HTTP endpoint (e.g. http://adot-collector:4318/v1/traces)
    otel_exporter_otlp_endpoint: str | None = Field(
        default=None, validation_alias="OTEL_EXPORTER_OTLP_ENDPOINT"
    )

    # ---- helpers / derived flags ----
    @property
    def normalized_environment(self) -> str:
        v = (self.environment or "").strip().lower()
        if v in ("prod", "production"):
            return "production"
        if v in ("stage", "staging"):
            return "staging"
        if v in ("dev", "development"):
            return "development"
        return v or "development"

    @property
    def is_production(self) -> bool:
        return self.normalized_environment == "production"

    @property
    def is_development(self) -> bool:
        return self.normalized_environment == "development"

    @property
    def cors_origins(self) -> list[str]:
        origins = {"http://localhost:3000", "http://127.0.0.1:3000"}
        for raw in [self.frontend_base_url, *(str(self.frontend_urls or "").split(","))]:
            origin = str(raw or "").strip().rstrip("/")
            if origin:
                origins.add(origin)
        return sorted(origins)

    @property
    def video_configured(self) -> bool:
        return bool(
            (self.hms_app_access_key or "").strip()
            and (self.hms_app_secret or "").strip()
            and (self.hms_template_id or "").strip()
        )

    def require_in_production(self) -> None:
        """
        Enforce required settings in production.

        Development/staging are allowed to run with partial config for local work,
        but production must be fully configured. Video settings are checked lazily
        when a call request is accepted.
        """
        if not self.is_production:
            return

        missing: list[str] = []

        if not self.cognito_user_pool_id:
            missing.append("COGNITO_USER_POOL_ID")
        if not self.cognito_client_id:
            missing.append("COGNITO_CLIENT_ID")
        if not self.ddb_table_name:
            missing.append("DDB_TABLE_NAME")

        if bool(self.email_enabled) and not (self.email_sender and str(self.email_sender).strip()):
            missing.append("EMAIL_SENDER (or EMAIL_ENABLED=false)")

        if missing:
            raise RuntimeError(
                "Missing required production environment variables: "
                + ", ".join(missing)
            )

    def to_log_safe_dict(self) -> dict[str, object]:
        """
        A redacted representation safe for structured logs / diagnostics.
        """
        def _has(v: object) -> bool:
            return v is not None and str(v).strip() != ""

        return {
            "environment": self.normalized_environment,
            "port": self.port,
            "log_level": self.log_level,
            "log_format": self.log_format,
            "frontend": {
                "frontend_base_url": self.frontend_base_url,
                "frontend_urls": self.frontend_urls,
            },
            "aws": {
                "aws_region": self.aws_region,
                "ddb_table_name": self.ddb_table_name,
            },
            "auth": {
                "cognito_user_pool_id": self.cognito_user_pool_id,
                "cognito_client_id": self.cognito_client_id,
                "cognito_region": self.cognito_region,
                "admin_group_name": self.admin_group_name,
            },
            "lifecycle": {
                "jobs_auto_publish_on_approve": bool(self.jobs_auto_publish_on_approve),
                "job_match_alert_limit": self.job_match_alert_limit,
            },
            "integrations": {
                "email_enabled": bool(self.email_enabled),
                "email_sender": self.email_sender if _has(self.email_sender) else None,
                "email_send_timeout_seconds": self.email_send_timeout_seconds,
                "video_configured": self.video_configured,
                "hms_api_base": self.hms_api_base,
                "openai_api_key_configured": _has(self.openai_api_key),
                "openai_model": self.openai_model,
            },
        }


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    s = Settings()
    s.require_in_production()
    return s


# Backwards-compatible module-level singleton.
settings = get_settings()
