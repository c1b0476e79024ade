"""Authentication for worker task routes.

Worker routes (/tasks/*) are called by the push subscription for the
payment feed and by external schedulers. Both present a Google-signed
OIDC token; in local dev (TASKS_OIDC_AUDIENCE=carrental-tasks-local) a
shared X-Internal-Task-Secret header is accepted instead.
"""

from __future__ import annotations

import hmac
import os

from fastapi import Request
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token

from carrental.observability.logging import get_logger
from carrental.observability.redaction import safe_log_context

logger = get_logger(__name__)

LOCAL_DEV_AUDIENCE = "carrental-tasks-local"
INTERNAL_SECRET_HEADER = "X-Internal-Task-Secret"


def extract_bearer_token(request: Request) -> str | None:
    """Token from an "Authorization: Bearer <token>" header, else None."""
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme != "Bearer" or not token:
        return None
    return token


def verify_task_oidc(token: str) -> bool:
    """Verify a Google-signed OIDC token against TASKS_OIDC_AUDIENCE.

    When TASKS_OIDC_SERVICE_ACCOUNT is set, the token's email claim must
    match it. Fails closed when no audience is configured.
    """
    if not token:
        return False

    audience = os.environ.get("TASKS_OIDC_AUDIENCE")
    if not audience:
        logger.error(
            "TASKS_OIDC_AUDIENCE not configured - fail closed",
            extra={"extra_fields": safe_log_context(reason="missing_audience_env")},
        )
        return False

    try:
        claims = id_token.verify_oauth2_token(
            token, google_requests.Request(), audience=audience
        )
    except ValueError as e:
        logger.warning(
            "OIDC token verification failed",
            extra={
                "extra_fields": safe_log_context(error=str(e), expected_audience=audience)
            },
        )
        return False

    expected_email = os.environ.get("TASKS_OIDC_SERVICE_ACCOUNT")
    if expected_email and claims.get("email", "") != expected_email:
        logger.warning(
            "OIDC service account mismatch",
            extra={"extra_fields": safe_log_context(reason="service_account_mismatch")},
        )
        return False

    return True


def _internal_secret_matches(request: Request) -> bool:
    expected = os.environ.get("INTERNAL_TASK_SECRET", "")
    provided = request.headers.get(INTERNAL_SECRET_HEADER, "")
    return bool(expected) and hmac.compare_digest(provided, expected)


def verify_task_auth(request: Request) -> bool:
    """True if the caller may invoke a worker task route."""
    if os.environ.get("TASKS_OIDC_AUDIENCE", "") == LOCAL_DEV_AUDIENCE:
        if _internal_secret_matches(request):
            logger.info(
                "task auth via internal secret (local dev)",
                extra={"extra_fields": safe_log_context(auth_method="internal_secret")},
            )
            return True

    token = extract_bearer_token(request)
    if not token:
        logger.warning(
            "task auth failed: missing Bearer token",
            extra={"extra_fields": safe_log_context(reason="missing_bearer_token")},
        )
        return False
    return verify_task_oidc(token)
