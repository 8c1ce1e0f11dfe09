#!/usr/bin/env python3
"""
Request an App Store Server test notification.

Asks Apple to send a TEST notification to the URL configured in App Store
Connect, then polls its delivery status until Apple reports SUCCESS or the
poll budget runs out.

Usage:
    # Sandbox (default)
    python3 scripts/request_test_notification.py

    # Production, more patient polling
    APP_STORE_ENVIRONMENT=PRODUCTION python3 scripts/request_test_notification.py --attempts 20

Environment (read from the process, .env.local and .env):
    APP_STORE_ISSUER_ID          (or ASC_ISSUER_ID)
    APP_STORE_KEY_ID             (or ASC_KEY_ID)
    APP_STORE_BUNDLE_ID          (or APPLE_BUNDLE_ID)
    APP_STORE_PRIVATE_KEY_PATH   (or ASC_PRIVATE_KEY_PATH)
    APP_STORE_PRIVATE_KEY        (or ASC_PRIVATE_KEY; literal \\n allowed)
    APP_STORE_ENVIRONMENT        SANDBOX | PRODUCTION | XCODE | LOCAL_TESTING
    APP_STORE_TEST_POLL_ATTEMPTS default 8
    APP_STORE_TEST_POLL_INTERVAL_MS default 3000
"""

import argparse
import sys
import time
from datetime import UTC, datetime
from pathlib import Path

from appstoreserverlibrary.api_client import APIException, AppStoreServerAPIClient
from appstoreserverlibrary.models.Environment import Environment
from pydantic import AliasChoices, Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Apple: "test notification not found" while the send is still pending
TEST_NOTIFICATION_NOT_READY = 4040008

ENVIRONMENTS = {
    "PRODUCTION": Environment.PRODUCTION,
    "SANDBOX": Environment.SANDBOX,
    "XCODE": Environment.XCODE,
    "LOCAL_TESTING": Environment.LOCAL_TESTING,
}


class TestNotificationSettings(BaseSettings):
    """App Store Server API credentials."""

    issuer_id: str | None = Field(None, validation_alias=AliasChoices("APP_STORE_ISSUER_ID", "ASC_ISSUER_ID"))
    key_id: str | None = Field(None, validation_alias=AliasChoices("APP_STORE_KEY_ID", "ASC_KEY_ID"))
    bundle_id: str | None = Field(
        None, validation_alias=AliasChoices("APP_STORE_BUNDLE_ID", "APPLE_BUNDLE_ID")
    )
    private_key_path: str | None = Field(
        None, validation_alias=AliasChoices("APP_STORE_PRIVATE_KEY_PATH", "ASC_PRIVATE_KEY_PATH")
    )
    private_key: str | None = Field(
        None, validation_alias=AliasChoices("APP_STORE_PRIVATE_KEY", "ASC_PRIVATE_KEY")
    )
    environment: str = Field("SANDBOX", validation_alias="APP_STORE_ENVIRONMENT")
    poll_attempts: int = Field(8, validation_alias="APP_STORE_TEST_POLL_ATTEMPTS")
    poll_interval_ms: int = Field(3000, validation_alias="APP_STORE_TEST_POLL_INTERVAL_MS")

    model_config = SettingsConfigDict(
        env_file=(".env", ".env.local"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("issuer_id", "key_id", "bundle_id", "private_key_path", "private_key", mode="before")
    @classmethod
    def strip_optional(cls, v: object) -> object:
        """Treat blank strings as unset."""
        if isinstance(v, str):
            return v.strip() or None
        return v

    @field_validator("poll_attempts", "poll_interval_ms", mode="before")
    @classmethod
    def positive_or_default(cls, v: object, info: ValidationInfo) -> object:
        """Fall back to the default for non-positive or unparsable values."""
        defaults = {"poll_attempts": 8, "poll_interval_ms": 3000}
        try:
            parsed = int(str(v).strip())
        except ValueError:
            return defaults[info.field_name]
        return parsed if parsed > 0 else defaults[info.field_name]

    def missing(self) -> list[str]:
        """Names of required variables that are unset."""
        missing = []
        if not self.issuer_id:
            missing.append("APP_STORE_ISSUER_ID")
        if not self.key_id:
            missing.append("APP_STORE_KEY_ID")
        if not self.bundle_id:
            missing.append("APP_STORE_BUNDLE_ID (or APPLE_BUNDLE_ID)")
        if not self.private_key_path and not self.private_key:
            missing.append("APP_STORE_PRIVATE_KEY_PATH or APP_STORE_PRIVATE_KEY")
        return missing

    def signing_key(self) -> bytes:
        """The .p8 key, from the path when set, else the inline value."""
        if self.private_key_path:
            return (Path.cwd() / self.private_key_path).read_bytes()
        return (self.private_key or "").replace("\\n", "\n").encode("utf-8")

    def app_store_environment(self) -> Environment:
        return ENVIRONMENTS.get(self.environment.strip().upper(), Environment.SANDBOX)


def format_attempt_date(epoch_ms: int | None) -> str:
    if epoch_ms is None:
        return "n/a"
    return datetime.fromtimestamp(epoch_ms / 1000, tz=UTC).isoformat()


def poll_status(client: AppStoreServerAPIClient, token: str, attempts: int, interval_ms: int) -> object:
    """Poll the send status; returns the last status response (or None)."""
    latest_status = None
    for attempt in range(1, attempts + 1):
        if attempt > 1:
            time.sleep(interval_ms / 1000)

        try:
            latest_status = client.get_test_notification_status(token)
        except APIException as e:
            if e.raw_api_error == TEST_NOTIFICATION_NOT_READY:
                print(f"[poll {attempt}/{attempts}] sendAttempts=0 latestResult=PENDING at=n/a")
                continue
            raise

        send_attempts = latest_status.sendAttempts or []
        latest_attempt = send_attempts[-1] if send_attempts else None
        result = (latest_attempt.rawSendAttemptResult if latest_attempt else None) or "PENDING"
        attempt_date = format_attempt_date(latest_attempt.attemptDate if latest_attempt else None)

        print(
            f"[poll {attempt}/{attempts}] sendAttempts={len(send_attempts)} "
            f"latestResult={result} at={attempt_date}"
        )

        if result == "SUCCESS":
            break

    return latest_status


def main() -> int:
    parser = argparse.ArgumentParser(description="Request an App Store Server test notification")
    parser.add_argument("--attempts", type=int, help="Status poll attempts (overrides env)")
    parser.add_argument("--interval-ms", type=int, help="Delay between polls (overrides env)")
    args = parser.parse_args()

    settings = TestNotificationSettings()

    missing = settings.missing()
    if missing:
        print("Missing required environment variables:", file=sys.stderr)
        for item in missing:
            print(f"- {item}", file=sys.stderr)
        return 1

    environment = settings.app_store_environment()
    client = AppStoreServerAPIClient(
        settings.signing_key(),
        settings.key_id,
        settings.issuer_id,
        settings.bundle_id,
        environment,
    )

    print(f"Environment: {environment.value}")
    print(f"Bundle ID: {settings.bundle_id}")
    print("Requesting test notification...")

    try:
        response = client.request_test_notification()
        token = response.testNotificationToken
        if not token:
            print("No testNotificationToken returned by Apple.", file=sys.stderr)
            return 1

        print(f"testNotificationToken: {token}")

        latest_status = poll_status(
            client,
            token,
            args.attempts or settings.poll_attempts,
            args.interval_ms or settings.poll_interval_ms,
        )
    except APIException as e:
        print("Failed to request test notification.", file=sys.stderr)
        print(f"HTTP {e.http_status_code} apiError={e.raw_api_error} {e.error_message or ''}", file=sys.stderr)
        return 1

    print("Final status:")
    print(latest_status)
    return 0


if __name__ == "__main__":
    sys.exit(main())
