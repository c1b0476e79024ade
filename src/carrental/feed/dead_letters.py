"""Dead-letter channel for payment events that cannot be applied.

Provides multiple backends selectable via DEAD_LETTER_BACKEND env var:
- memory (default): keeps messages in a list (for dev/tests)
- kafka: publishes to the dead-letter topic via confluent-kafka

Every dead-letter message is a JSON object:
    {"originalMessage": ..., "errorReason": "...", "timestamp": "<ISO-8601>"}
originalMessage is the payload itself when it was valid JSON, else the raw
string, so an operator can re-publish it to the main topic unchanged. The
Kafka backend splices the original text into the envelope so numbers keep
their exact digits; the memory backend parses floats as Decimal.

The Kafka backend waits for the broker to acknowledge each dead letter and
raises DeadLetterDeliveryError when it does not.
"""

from __future__ import annotations

import json
import os
import threading
from datetime import datetime
from decimal import Decimal
from typing import Any, Protocol

from confluent_kafka import Producer

from carrental.infra.time import utc_now
from carrental.observability.logging import get_logger
from carrental.observability.redaction import safe_log_context

logger = get_logger(__name__)

DEFAULT_DLQ_TOPIC = "bank-transfer-payment-events-dlq"


class DeadLetterDeliveryError(Exception):
    """Raised when the broker does not acknowledge a dead letter."""

    pass


class DeadLetterPublisher(Protocol):
    def publish(self, original: str, reason: str) -> None: ...


def _reject_constant(name: str) -> Any:
    raise ValueError(f"non-standard JSON constant {name}")


def _parse_original(original: str) -> tuple[bool, Any]:
    try:
        return True, json.loads(original, parse_float=Decimal, parse_constant=_reject_constant)
    except (TypeError, ValueError):
        return False, original


def build_dead_letter_message(
    original: str,
    reason: str,
    *,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Build the dead-letter envelope for a raw message."""
    _, original_message = _parse_original(original)
    return {
        "originalMessage": original_message,
        "errorReason": reason,
        "timestamp": (now or utc_now()).isoformat(),
    }


def encode_dead_letter_message(
    original: str,
    reason: str,
    *,
    now: datetime | None = None,
) -> str:
    """Serialize the dead-letter envelope, embedding valid JSON byte for byte."""
    is_json, _ = _parse_original(original)
    timestamp = (now or utc_now()).isoformat()
    if not is_json:
        return json.dumps(
            {"originalMessage": original, "errorReason": reason, "timestamp": timestamp}
        )
    return (
        '{"originalMessage": '
        + original.strip()
        + ', "errorReason": '
        + json.dumps(reason)
        + ', "timestamp": '
        + json.dumps(timestamp)
        + "}"
    )


class InMemoryDeadLetterPublisher:
    """Collects dead-letter envelopes in memory."""

    def __init__(self) -> None:
        self.messages: list[dict[str, Any]] = []
        self._lock = threading.Lock()

    def publish(self, original: str, reason: str) -> None:
        message = build_dead_letter_message(original, reason)
        with self._lock:
            self.messages.append(message)
        logger.info(
            "message dead-lettered",
            extra={"extra_fields": safe_log_context(backend="memory", reason=reason)},
        )


class KafkaDeadLetterPublisher:
    """Publishes dead-letter envelopes to a Kafka topic.

    publish blocks until the broker acknowledges the message or the flush
    timeout runs out.
    """

    def __init__(
        self,
        *,
        topic: str | None = None,
        producer: Producer | None = None,
        flush_timeout: float | None = None,
    ) -> None:
        self.topic = topic or os.environ.get("PAYMENT_EVENTS_DLQ_TOPIC", DEFAULT_DLQ_TOPIC)
        self.flush_timeout = (
            flush_timeout
            if flush_timeout is not None
            else float(os.environ.get("DLQ_FLUSH_TIMEOUT_SECONDS", "5"))
        )
        self._producer = producer or Producer(
            {
                "bootstrap.servers": os.environ.get("KAFKA_BOOTSTRAP_SERVERS", "localhost:9092"),
                "acks": "all",
                "retries": 3,
            }
        )

    def publish(self, original: str, reason: str) -> None:
        """Produce one envelope and wait for its delivery report.

        Raises:
            DeadLetterDeliveryError: Delivery failed or was not confirmed in time.
        """
        delivery_errors: list[Any] = []

        def on_delivery(err: Any, _msg: Any) -> None:
            if err is not None:
                delivery_errors.append(err)

        self._producer.produce(
            topic=self.topic,
            value=encode_dead_letter_message(original, reason).encode("utf-8"),
            on_delivery=on_delivery,
        )
        remaining = self._producer.flush(self.flush_timeout)

        if delivery_errors:
            raise DeadLetterDeliveryError(
                f"dead letter to {self.topic} failed: {delivery_errors[0]}"
            )
        if remaining:
            raise DeadLetterDeliveryError(
                f"dead letter to {self.topic} not acknowledged within {self.flush_timeout}s"
            )

        logger.info(
            "message dead-lettered",
            extra={
                "extra_fields": safe_log_context(
                    backend="kafka", topic=self.topic, reason=reason
                )
            },
        )

    def flush(self, timeout: float = 5.0) -> None:
        self._producer.flush(timeout)


_publisher: DeadLetterPublisher | None = None
_singleton_lock = threading.Lock()


def get_dead_letter_publisher() -> DeadLetterPublisher:
    """Get the process-wide dead-letter publisher for DEAD_LETTER_BACKEND.

    Raises:
        ValueError: If DEAD_LETTER_BACKEND is not memory or kafka.
    """
    global _publisher
    with _singleton_lock:
        if _publisher is None:
            backend = os.environ.get("DEAD_LETTER_BACKEND", "memory")
            if backend == "kafka":
                _publisher = KafkaDeadLetterPublisher()
            elif backend == "memory":
                _publisher = InMemoryDeadLetterPublisher()
            else:
                raise ValueError(f"Unknown DEAD_LETTER_BACKEND: {backend}")
        return _publisher


def reset_dead_letter_publisher() -> None:
    """Drop the process-wide publisher (useful for testing)."""
    global _publisher
    with _singleton_lock:
        _publisher = None
