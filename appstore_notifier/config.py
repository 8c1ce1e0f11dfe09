"""
Application Configuration - Pydantic Settings for type-safe config.

Settings are loaded lazily on first use so a misconfigured deployment still
answers webhooks with a configuration error instead of failing at import.
"""

import json
from functools import lru_cache

from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from appstore_notifier.exceptions import ConfigurationError
from appstore_notifier.models.domain import PushTarget, TenantConfig

DEDUPE_TTL_SECONDS = 60 * 60 * 24 * 30
SUBSCRIPTION_STATE_TTL_SECONDS = 60 * 60 * 24 * 730


def _blank_to_none(value: object) -> object:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


def _parse_app_apple_id(value: object) -> int:
    """Accept a positive int or a string of digits."""
    if isinstance(value, bool):
        raise ValueError("appAppleId must be a number")
    if isinstance(value, int):
        parsed = value
    elif isinstance(value, str) and value.strip().isdigit():
        parsed = int(value.strip())
    else:
        raise ValueError("appAppleId must be a positive integer or numeric string")
    if parsed <= 0:
        raise ValueError(f"appAppleId must be positive: {parsed}")
    return parsed


class AppleAppEntry(BaseModel):
    """One entry of APPLE_APPS_JSON."""

    bundle_id: str | None = Field(None, alias="bundleId")
    app_apple_id: int = Field(..., alias="appAppleId")
    pushover_user_key: str | None = Field(None, alias="pushoverUserKey")
    pushover_device: str | None = Field(None, alias="pushoverDevice")

    @field_validator("bundle_id", "pushover_user_key", "pushover_device", mode="before")
    @classmethod
    def strip_optional(cls, v: object) -> object:
        """Treat blank strings as unset."""
        return _blank_to_none(v)

    @field_validator("app_apple_id", mode="before")
    @classmethod
    def validate_app_apple_id(cls, v: object) -> int:
        """Validate numeric app id."""
        return _parse_app_apple_id(v)


_apple_apps_adapter = TypeAdapter(list[AppleAppEntry])


class RuntimeSettings(BaseSettings):
    """Process-level settings. Every field has a default, so loading never fails."""

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "App Store Notifier"
    api_version: str = "0.1.0"
    api_description: str = "Pushes App Store purchase and refund notifications"

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability
    metrics_enabled: bool = True
    tracing_enabled: bool = False
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "appstore-notifier"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


class Settings(RuntimeSettings):
    """Webhook settings loaded from environment variables."""

    # Webhook
    webhook_secret: str = ""

    # Pushover
    pushover_app_token: str = ""
    pushover_user_key: str = ""
    pushover_device: str | None = None
    pushover_api_url: str = "https://api.pushover.net/1/messages.json"

    # Apple
    apple_bundle_id: str | None = None
    apple_app_id: str | None = None
    apple_apps_json: str | None = None
    apple_enable_online_checks: bool = False
    apple_root_ca_dir: str = "certs/apple"

    # Key-value store
    redis_url: str = ""
    dedupe_ttl_seconds: int = DEDUPE_TTL_SECONDS
    subscription_state_ttl_seconds: int = SUBSCRIPTION_STATE_TTL_SECONDS

    @field_validator(
        "pushover_device", "apple_bundle_id", "apple_app_id", "apple_apps_json", mode="before"
    )
    @classmethod
    def strip_optional(cls, v: object) -> object:
        """Treat blank strings as unset."""
        return _blank_to_none(v)

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: Validate everything a webhook delivery needs.

        Collects every problem so a single error lists all of them.
        """
        errors: list[str] = []

        if not self.webhook_secret:
            errors.append("WEBHOOK_SECRET is required")
        if not self.pushover_app_token:
            errors.append("PUSHOVER_APP_TOKEN is required")
        if not self.pushover_user_key:
            errors.append("PUSHOVER_USER_KEY is required")
        if not self.redis_url:
            errors.append("REDIS_URL is required")
        elif not self.redis_url.startswith(("redis://", "rediss://", "unix://")):
            errors.append("REDIS_URL must be a redis:// or rediss:// URL")

        if self.pushover_user_key:
            try:
                self.tenants()
            except ConfigurationError as exc:
                errors.append(exc.message)

        if errors:
            raise ConfigurationError("; ".join(errors))

        return self

    @property
    def default_push_target(self) -> PushTarget:
        """Global Pushover routing used when a tenant has no override."""
        return PushTarget(user_key=self.pushover_user_key, device=self.pushover_device)

    def tenants(self) -> tuple[TenantConfig, ...]:
        """Ordered tenant list. The first tenant that verifies an envelope wins."""
        if self.apple_apps_json:
            return parse_apple_apps(self.apple_apps_json, self.default_push_target)
        return (build_single_app_tenant(self.apple_bundle_id, self.apple_app_id, self.default_push_target),)


def parse_apple_apps(raw_json: str, default_target: PushTarget) -> tuple[TenantConfig, ...]:
    """
    Parse APPLE_APPS_JSON into tenants.

    Raises:
        ConfigurationError: On invalid JSON, an empty list, missing bundle ids
            in a multi-app setup, or duplicate bundle ids
    """
    try:
        parsed = json.loads(raw_json)
    except (json.JSONDecodeError, RecursionError) as exc:
        raise ConfigurationError("APPLE_APPS_JSON must be valid JSON") from exc

    try:
        entries = _apple_apps_adapter.validate_python(parsed)
    except ValidationError as exc:
        raise ConfigurationError(f"APPLE_APPS_JSON is invalid: {exc.error_count()} error(s)") from exc

    if not entries:
        raise ConfigurationError("APPLE_APPS_JSON must contain at least one app")

    if len(entries) > 1 and any(entry.bundle_id is None for entry in entries):
        raise ConfigurationError(
            "Each APPLE_APPS_JSON entry must include bundleId when multiple apps are configured"
        )

    seen: set[str] = set()
    tenants: list[TenantConfig] = []
    for position, entry in enumerate(entries):
        if entry.bundle_id is not None:
            if entry.bundle_id in seen:
                raise ConfigurationError(f"Duplicate bundleId in APPLE_APPS_JSON: '{entry.bundle_id}'")
            seen.add(entry.bundle_id)

        tenants.append(
            TenantConfig(
                app_apple_id=entry.app_apple_id,
                bundle_id=entry.bundle_id,
                position=position,
                push_target=PushTarget(
                    user_key=entry.pushover_user_key or default_target.user_key,
                    device=entry.pushover_device or default_target.device,
                ),
            )
        )

    return tuple(tenants)


def build_single_app_tenant(
    bundle_id: str | None, app_id: str | None, default_target: PushTarget
) -> TenantConfig:
    """Tenant from APPLE_BUNDLE_ID / APPLE_APP_ID when APPLE_APPS_JSON is unset."""
    if app_id is None:
        raise ConfigurationError("APPLE_APP_ID is required when APPLE_APPS_JSON is not set")
    try:
        app_apple_id = _parse_app_apple_id(app_id)
    except ValueError as exc:
        raise ConfigurationError(f"APPLE_APP_ID is invalid: {exc}") from exc

    return TenantConfig(app_apple_id=app_apple_id, bundle_id=bundle_id, push_target=default_target)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Get application settings instance.

    Raises:
        ConfigurationError: If the environment is missing or has invalid values
    """
    try:
        return Settings()
    except ValidationError as exc:
        raise ConfigurationError(f"invalid settings: {exc.error_count()} error(s)") from exc


@lru_cache(maxsize=1)
def get_runtime_settings() -> RuntimeSettings:
    """Process-level settings for logging, tracing and the ASGI server."""
    return RuntimeSettings()
