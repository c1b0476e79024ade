"""Kafka consumers for the bank-transfer payment feed.

PaymentFeedConsumer runs PAYMENT_FEED_WORKERS threads, each owning its own
confluent-kafka Consumer in the same group, so partitions are processed in
parallel and each partition in order. Auto-commit is off: a message's
offset is committed only after process_payment_message has decided its
outcome (at-least-once delivery; the ledger handles redelivery).

DeadLetterLogConsumer tails the dead-letter topic in its own group and logs
every message at error level for operators.

Config:
    KAFKA_BOOTSTRAP_SERVERS (default localhost:9092)
    PAYMENT_EVENTS_TOPIC (default bank-transfer-payment-events)
    PAYMENT_EVENTS_DLQ_TOPIC (default bank-transfer-payment-events-dlq)
    KAFKA_CONSUMER_GROUP (default car-booking-service-group)
    PAYMENT_FEED_WORKERS (default 3)
"""

from __future__ import annotations

import os
import signal
import threading
from typing import Any, Callable

from confluent_kafka import Consumer, KafkaError, Message

from carrental.domain.payment_events import process_payment_message
from carrental.feed.dead_letters import (
    DEFAULT_DLQ_TOPIC,
    DeadLetterPublisher,
    get_dead_letter_publisher,
)
from carrental.infra.stores import (
    BookingStore,
    PaymentLedger,
    get_booking_store,
    get_payment_ledger,
)
from carrental.observability.correlation import correlation_scope
from carrental.observability.logging import configure_root_logging, get_logger
from carrental.observability.redaction import safe_log_context

logger = get_logger(__name__)

DEFAULT_TOPIC = "bank-transfer-payment-events"
DEFAULT_GROUP = "car-booking-service-group"

POLL_TIMEOUT_SECONDS = 1.0

ConsumerFactory = Callable[[dict[str, Any]], Consumer]


def consumer_config(group_id: str) -> dict[str, Any]:
    """Base consumer config. Manual commit, earliest offset for new groups."""
    return {
        "bootstrap.servers": os.environ.get("KAFKA_BOOTSTRAP_SERVERS", "localhost:9092"),
        "group.id": group_id,
        "auto.offset.reset": "earliest",
        "enable.auto.commit": False,
        "session.timeout.ms": 45000,
        "heartbeat.interval.ms": 15000,
    }


def _decode(msg: Message) -> str:
    value = msg.value()
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


class PaymentFeedConsumer:
    """Runs the payment pipeline over the payment events topic.

    Usage:
        feed = PaymentFeedConsumer()
        feed.start()
        ...
        feed.stop()
    """

    def __init__(
        self,
        *,
        store: BookingStore | None = None,
        ledger: PaymentLedger | None = None,
        dead_letters: DeadLetterPublisher | None = None,
        topic: str | None = None,
        group_id: str | None = None,
        workers: int | None = None,
        consumer_factory: ConsumerFactory = Consumer,
    ) -> None:
        self.store = store or get_booking_store()
        self.ledger = ledger or get_payment_ledger()
        self.dead_letters = dead_letters or get_dead_letter_publisher()
        self.topic = topic or os.environ.get("PAYMENT_EVENTS_TOPIC", DEFAULT_TOPIC)
        self.group_id = group_id or os.environ.get("KAFKA_CONSUMER_GROUP", DEFAULT_GROUP)
        self.workers = workers or int(os.environ.get("PAYMENT_FEED_WORKERS", "3"))
        self._consumer_factory = consumer_factory
        self._stop_event = threading.Event()
        self._threads: list[threading.Thread] = []

    @property
    def running(self) -> bool:
        return any(t.is_alive() for t in self._threads)

    def handle_message(self, consumer: Consumer, msg: Message) -> None:
        """Process one message and commit its offset."""
        with correlation_scope():
            logger.info(
                "payment event received",
                extra={
                    "extra_fields": safe_log_context(
                        topic=msg.topic(),
                        partition=msg.partition(),
                        offset=msg.offset(),
                    )
                },
            )
            result = process_payment_message(
                _decode(msg),
                store=self.store,
                ledger=self.ledger,
                dead_letters=self.dead_letters,
            )
            consumer.commit(message=msg, asynchronous=False)
            logger.info(
                "payment event acknowledged",
                extra={
                    "extra_fields": safe_log_context(
                        outcome=result.outcome,
                        payment_id=result.payment_id,
                        booking_id=result.booking_id,
                    )
                },
            )

    def poll_once(self, consumer: Consumer) -> bool:
        """Poll and handle at most one message. Returns True if one was handled."""
        msg = consumer.poll(timeout=POLL_TIMEOUT_SECONDS)
        if msg is None:
            return False
        if msg.error():
            if msg.error().code() != KafkaError._PARTITION_EOF:
                logger.error(
                    "kafka error",
                    extra={"extra_fields": safe_log_context(error=str(msg.error()))},
                )
            return False
        self.handle_message(consumer, msg)
        return True

    def _run_worker(self, index: int) -> None:
        consumer = self._consumer_factory(consumer_config(self.group_id))
        consumer.subscribe([self.topic])
        logger.info(
            "payment feed worker started",
            extra={
                "extra_fields": safe_log_context(
                    worker=index, topic=self.topic, group=self.group_id
                )
            },
        )
        try:
            while not self._stop_event.is_set():
                try:
                    self.poll_once(consumer)
                except Exception as e:
                    # Offset stays uncommitted; the message is redelivered after rebalance/restart
                    logger.error(
                        "payment feed loop error",
                        extra={"extra_fields": safe_log_context(worker=index, error=str(e))},
                        exc_info=True,
                    )
                    self._stop_event.wait(1.0)
        finally:
            consumer.close()
            logger.info(
                "payment feed worker stopped",
                extra={"extra_fields": safe_log_context(worker=index)},
            )

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._threads = [
            threading.Thread(
                target=self._run_worker,
                args=(i,),
                name=f"payment-feed-{i}",
                daemon=True,
            )
            for i in range(self.workers)
        ]
        for t in self._threads:
            t.start()

    def stop(self, timeout: float = 10.0) -> None:
        self._stop_event.set()
        for t in self._threads:
            t.join(timeout)
        self._threads = []


class DeadLetterLogConsumer:
    """Logs every dead-lettered message so operators can pick it up."""

    def __init__(
        self,
        *,
        topic: str | None = None,
        group_id: str | None = None,
        consumer_factory: ConsumerFactory = Consumer,
    ) -> None:
        self.topic = topic or os.environ.get("PAYMENT_EVENTS_DLQ_TOPIC", DEFAULT_DLQ_TOPIC)
        base_group = os.environ.get("KAFKA_CONSUMER_GROUP", DEFAULT_GROUP)
        self.group_id = group_id or f"{base_group}-dlq"
        self._consumer_factory = consumer_factory
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def handle_message(self, consumer: Consumer, msg: Message) -> None:
        # Account numbers inside the payload are masked by safe_log_context
        logger.error(
            "dead letter received - manual intervention required",
            extra={
                "extra_fields": safe_log_context(
                    partition=msg.partition(),
                    offset=msg.offset(),
                    message=_decode(msg),
                )
            },
        )
        consumer.commit(message=msg, asynchronous=False)

    def _run(self) -> None:
        consumer = self._consumer_factory(consumer_config(self.group_id))
        consumer.subscribe([self.topic])
        try:
            while not self._stop_event.is_set():
                msg = consumer.poll(timeout=POLL_TIMEOUT_SECONDS)
                if msg is None:
                    continue
                if msg.error():
                    if msg.error().code() != KafkaError._PARTITION_EOF:
                        logger.error(
                            "kafka error",
                            extra={"extra_fields": safe_log_context(error=str(msg.error()))},
                        )
                    continue
                self.handle_message(consumer, msg)
        finally:
            consumer.close()

    def start(self) -> None:
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="dead-letter-log", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 10.0) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None


def main() -> None:
    """Run the payment feed and dead-letter log consumers until SIGTERM/SIGINT."""
    configure_root_logging()
    feed = PaymentFeedConsumer()
    dead_letter_log = DeadLetterLogConsumer()
    stopping = threading.Event()

    def _shutdown(signum: int, frame: Any) -> None:
        stopping.set()

    signal.signal(signal.SIGTERM, _shutdown)
    signal.signal(signal.SIGINT, _shutdown)

    feed.start()
    dead_letter_log.start()
    logger.info(
        "payment feed running",
        extra={"extra_fields": safe_log_context(topic=feed.topic, workers=feed.workers)},
    )

    while not stopping.wait(1.0):
        pass

    feed.stop()
    dead_letter_log.stop()
    publisher = feed.dead_letters
    if hasattr(publisher, "flush"):
        publisher.flush()
    logger.info("payment feed stopped")


if __name__ == "__main__":
    main()
