"""HTTP client for the external credit-card approval service.

The approval call is wrapped in a circuit breaker and a bounded retry.
Timeouts, connection errors and 5xx responses are transient: they are
retried and count against the breaker. 4xx responses are a definitive
answer from the service: not retried, not a breaker failure.

Security: NEVER log the full payment reference. Only masked values.
"""

from __future__ import annotations

import os
import time
from typing import Callable

import requests

from carrental.observability.logging import get_logger
from carrental.observability.redaction import mask_identifier, safe_log_context
from carrental.payments.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitOpenError,
)

logger = get_logger(__name__)

CARD_SERVICE_URL = os.environ.get("CARD_SERVICE_URL", "http://localhost:9090")
CARD_SERVICE_BASE_PATH = os.environ.get(
    "CARD_SERVICE_BASE_PATH", "/host/credit-card-payment-api"
)
HTTP_TIMEOUT = float(os.environ.get("CARD_SERVICE_TIMEOUT_SECONDS", "5"))

# Retry config
MAX_ATTEMPTS = int(os.environ.get("CARD_RETRY_ATTEMPTS", "2"))
RETRY_DELAY = float(os.environ.get("CARD_RETRY_BACKOFF_SECONDS", "0.5"))

BREAKER_NAME = "creditCardService"
PAYMENT_STATUS_APPROVED = "APPROVED"


class CardValidationRejectedError(Exception):
    """The service answered with a 4xx for this reference."""

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        super().__init__(message)


class CardServiceUnavailableError(Exception):
    """Breaker open or retries exhausted; the outcome is unknown, not a rejection."""


class _TransientCardError(Exception):
    """Timeout, connection failure or 5xx. Retry-eligible."""


def _is_breaker_failure(exc: BaseException) -> bool:
    return not isinstance(exc, CardValidationRejectedError)


def breaker_config_from_env() -> CircuitBreakerConfig:
    """Build the card-service breaker config from CARD_BREAKER_* env vars."""
    return CircuitBreakerConfig(
        failure_rate_threshold=float(os.environ.get("CARD_BREAKER_FAILURE_RATE", "60")),
        window_size=int(os.environ.get("CARD_BREAKER_WINDOW_SIZE", "10")),
        minimum_calls=int(os.environ.get("CARD_BREAKER_MIN_CALLS", "5")),
        open_seconds=float(os.environ.get("CARD_BREAKER_OPEN_SECONDS", "45")),
        half_open_calls=int(os.environ.get("CARD_BREAKER_HALF_OPEN_CALLS", "3")),
    )


class CardValidationClient:
    """Approval capability: given a payment reference, is the payment approved?

    Usage:
        client = CardValidationClient()
        if client.validate_payment("CC-REF-123"):
            ...
    """

    def __init__(
        self,
        *,
        base_url: str | None = None,
        base_path: str | None = None,
        timeout: float | None = None,
        max_attempts: int | None = None,
        retry_delay: float | None = None,
        breaker: CircuitBreaker | None = None,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        base_url = (base_url or CARD_SERVICE_URL).rstrip("/")
        base_path = base_path if base_path is not None else CARD_SERVICE_BASE_PATH
        self._url = f"{base_url}{base_path}/payment-status"
        self._timeout = timeout if timeout is not None else HTTP_TIMEOUT
        self._max_attempts = max(1, max_attempts if max_attempts is not None else MAX_ATTEMPTS)
        self._retry_delay = retry_delay if retry_delay is not None else RETRY_DELAY
        self._session = session or requests.Session()
        self._sleep = sleep
        self.breaker = breaker or CircuitBreaker(
            name=BREAKER_NAME,
            config=breaker_config_from_env(),
            is_failure=_is_breaker_failure,
        )

    def validate_payment(self, payment_reference: str) -> bool:
        """Ask the service whether the payment is approved.

        Args:
            payment_reference: Card payment reference from the booking request.

        Returns:
            True if the service reports APPROVED, False for any other status.

        Raises:
            CardValidationRejectedError: Service answered 4xx.
            CardServiceUnavailableError: Breaker open or retries exhausted.
        """
        try:
            return self.breaker.call(self._fetch_with_retry, payment_reference)
        except CircuitOpenError as e:
            logger.warning(
                "card service circuit open",
                extra={
                    "extra_fields": safe_log_context(
                        breaker=self.breaker.name,
                        reference=mask_identifier(payment_reference),
                    )
                },
            )
            raise CardServiceUnavailableError(
                "Credit card validation service is currently unavailable"
            ) from e

    def _fetch_with_retry(self, payment_reference: str) -> bool:
        last_error: Exception | None = None
        for attempt in range(1, self._max_attempts + 1):
            try:
                return self._fetch_status(payment_reference)
            except _TransientCardError as e:
                last_error = e
                logger.warning(
                    "card service call failed",
                    extra={
                        "extra_fields": safe_log_context(
                            attempt=attempt,
                            max_attempts=self._max_attempts,
                            error=str(e),
                        )
                    },
                )
                if attempt < self._max_attempts:
                    self._sleep(self._retry_delay)

        raise CardServiceUnavailableError(
            "Failed to validate credit card payment"
        ) from last_error

    def _fetch_status(self, payment_reference: str) -> bool:
        try:
            response = self._session.post(
                self._url,
                json={"paymentReference": payment_reference},
                timeout=self._timeout,
            )
        except (requests.Timeout, requests.ConnectionError) as e:
            raise _TransientCardError(f"{type(e).__name__}: {e}") from e

        if 400 <= response.status_code < 500:
            logger.error(
                "card service rejected request",
                extra={
                    "extra_fields": safe_log_context(
                        status_code=response.status_code,
                        reference=mask_identifier(payment_reference),
                    )
                },
            )
            raise CardValidationRejectedError(
                response.status_code,
                f"Credit card validation failed with status {response.status_code}",
            )
        if response.status_code >= 500:
            raise _TransientCardError(f"HTTP {response.status_code}")

        try:
            body = response.json()
        except ValueError as e:
            raise _TransientCardError("invalid json from card service") from e
        if not isinstance(body, dict):
            raise _TransientCardError("card service response is not a JSON object")
        status = body.get("status")

        approved = status == PAYMENT_STATUS_APPROVED
        logger.info(
            "card payment status received",
            extra={
                "extra_fields": safe_log_context(
                    approved=approved,
                    payment_status=status,
                    reference=mask_identifier(payment_reference),
                )
            },
        )
        return approved
