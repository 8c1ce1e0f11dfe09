"""
API Routes - App Store Server Notifications webhook and health.
"""

import json
import secrets

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from structlog import get_logger

from appstore_notifier.api.dependencies import NotifierContainer, get_container
from appstore_notifier.config import get_runtime_settings
from appstore_notifier.exceptions import ConfigurationError
from appstore_notifier.models.api import HealthResponse, WebhookResult
from appstore_notifier.models.domain import PipelineResult
from appstore_notifier.services.pipeline import extract_signed_payload

logger = get_logger(__name__)

router = APIRouter()

NO_STORE_HEADERS = {"Cache-Control": "no-store"}

WEBHOOK_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]

_RESULT_RESPONSES: dict[PipelineResult, tuple[int, WebhookResult]] = {
    PipelineResult.INVALID_PAYLOAD: (
        status.HTTP_400_BAD_REQUEST,
        WebhookResult(ok=False, error="invalid_payload"),
    ),
    PipelineResult.INVALID_SIGNATURE: (
        status.HTTP_400_BAD_REQUEST,
        WebhookResult(ok=False, error="invalid_signature"),
    ),
    PipelineResult.IGNORED: (status.HTTP_200_OK, WebhookResult(ok=True, ignored=True)),
    PipelineResult.DEDUPED: (status.HTTP_200_OK, WebhookResult(ok=True, deduped=True)),
    PipelineResult.PUSHED: (status.HTTP_200_OK, WebhookResult(ok=True)),
    PipelineResult.INFRA_ERROR: (
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        WebhookResult(ok=False, error="internal_error"),
    ),
    PipelineResult.CONFIGURATION_ERROR: (
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        WebhookResult(ok=False, error="invalid_configuration"),
    ),
}


def webhook_response(status_code: int, result: WebhookResult) -> JSONResponse:
    """JSON response with unset flags omitted and caching disabled."""
    return JSONResponse(
        status_code=status_code,
        content=result.model_dump(exclude_none=True),
        headers=NO_STORE_HEADERS,
    )


def _parse_body(raw_body: bytes) -> object:
    try:
        return json.loads(raw_body)
    except (ValueError, RecursionError):
        return None


@router.api_route("/api/app-store-notifications/{secret}", methods=WEBHOOK_METHODS)
async def app_store_notification_webhook(
    secret: str,
    request: Request,
    container: NotifierContainer = Depends(get_container),
) -> JSONResponse:
    """
    Handle App Store Server Notifications V2.

    Apple retries non-2xx responses, so only infrastructure failures answer
    500. Bad input and bad signatures answer 400; Apple's retry won't fix them.
    """
    if request.method != "POST":
        return webhook_response(
            status.HTTP_405_METHOD_NOT_ALLOWED, WebhookResult(ok=False, error="method_not_allowed")
        )

    try:
        settings = container.settings()
    except ConfigurationError as exc:
        logger.error("webhook_configuration_invalid", error=exc.message)
        return webhook_response(*_RESULT_RESPONSES[PipelineResult.CONFIGURATION_ERROR])

    if not secrets.compare_digest(secret.encode("utf-8"), settings.webhook_secret.encode("utf-8")):
        logger.warning("webhook_secret_mismatch")
        return webhook_response(status.HTTP_404_NOT_FOUND, WebhookResult(ok=False, error="not_found"))

    try:
        pipeline = container.pipeline()
    except ConfigurationError as exc:
        logger.error("webhook_configuration_invalid", error=exc.message)
        return webhook_response(*_RESULT_RESPONSES[PipelineResult.CONFIGURATION_ERROR])

    signed_payload = extract_signed_payload(_parse_body(await request.body()))
    outcome = await pipeline.process(signed_payload)

    logger.info(
        "app_store_webhook_handled",
        result=outcome.result.value,
        notification_uuid=outcome.notification.notification_uuid if outcome.notification else None,
        notification_type=outcome.notification.notification_type if outcome.notification else None,
        environment=outcome.notification.environment if outcome.notification else None,
    )
    return webhook_response(*_RESULT_RESPONSES[outcome.result])


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Liveness probe. Does not touch webhook configuration or the key-value store."""
    runtime = get_runtime_settings()
    return HealthResponse(status="healthy", service=runtime.service_name, version=runtime.api_version)
