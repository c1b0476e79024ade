"""Tests for the dead-letter channel."""

import json
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from carrental.feed.dead_letters import (
    DEFAULT_DLQ_TOPIC,
    DeadLetterDeliveryError,
    InMemoryDeadLetterPublisher,
    KafkaDeadLetterPublisher,
    build_dead_letter_message,
    encode_dead_letter_message,
    get_dead_letter_publisher,
)


class TestBuildDeadLetterMessage:
    def test_valid_json_is_embedded_parsed(self):
        raw = '{"paymentId": "PAY-1", "paymentAmount": 10}'
        now = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

        message = build_dead_letter_message(raw, "Processing failed: boom", now=now)

        assert message == {
            "originalMessage": {"paymentId": "PAY-1", "paymentAmount": 10},
            "errorReason": "Processing failed: boom",
            "timestamp": "2026-03-01T12:00:00+00:00",
        }

    def test_invalid_json_kept_as_string(self):
        message = build_dead_letter_message("{oops", "Invalid JSON format: x")
        assert message["originalMessage"] == "{oops"

    def test_fractional_amount_keeps_exact_digits(self):
        raw = '{"paymentId": "PAY-1", "paymentAmount": 12345678901234567.891}'
        message = build_dead_letter_message(raw, "Processing failed: boom")
        assert message["originalMessage"]["paymentAmount"] == Decimal("12345678901234567.891")


class TestEncodeDeadLetterMessage:
    def test_original_text_embedded_unchanged(self):
        raw = '{"paymentId": "PAY-1", "paymentAmount": 12345678901234567.891, "note": 1e400}'
        now = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

        encoded = encode_dead_letter_message(raw, 'Processing failed: "quoted"', now=now)

        assert encoded.startswith('{"originalMessage": ' + raw + ",")
        body = json.loads(encoded, parse_float=Decimal)
        assert body["originalMessage"]["paymentAmount"] == Decimal("12345678901234567.891")
        assert body["errorReason"] == 'Processing failed: "quoted"'
        assert body["timestamp"] == "2026-03-01T12:00:00+00:00"

    def test_invalid_json_encoded_as_string(self):
        body = json.loads(encode_dead_letter_message("{oops", "Invalid JSON format: x"))
        assert body["originalMessage"] == "{oops"

    def test_nan_constant_encoded_as_string(self):
        body = json.loads(encode_dead_letter_message('{"paymentAmount": NaN}', "bad"))
        assert body["originalMessage"] == '{"paymentAmount": NaN}'


class TestInMemoryPublisher:
    def test_collects_messages(self):
        publisher = InMemoryDeadLetterPublisher()
        publisher.publish("{oops", "bad")
        publisher.publish("{}", "worse")

        assert [m["errorReason"] for m in publisher.messages] == ["bad", "worse"]


def _producer(delivery_error=None, remaining=0):
    producer = MagicMock()

    def produce(topic, value, on_delivery):
        on_delivery(delivery_error, None)

    producer.produce.side_effect = produce
    producer.flush.return_value = remaining
    return producer


class TestKafkaPublisher:
    def test_produces_envelope_to_topic(self):
        producer = _producer()
        publisher = KafkaDeadLetterPublisher(
            topic="payments-dlq", producer=producer, flush_timeout=3.0
        )

        publisher.publish('{"paymentId": "PAY-1"}', "Schema validation failed: x")

        producer.produce.assert_called_once()
        kwargs = producer.produce.call_args.kwargs
        assert kwargs["topic"] == "payments-dlq"
        body = json.loads(kwargs["value"].decode("utf-8"))
        assert body["originalMessage"] == {"paymentId": "PAY-1"}
        assert body["errorReason"] == "Schema validation failed: x"
        producer.flush.assert_called_once_with(3.0)

    def test_value_keeps_original_amount_text(self):
        producer = _producer()
        raw = '{"paymentId": "PAY-1", "paymentAmount": 12345678901234567.891}'

        KafkaDeadLetterPublisher(producer=producer).publish(raw, "Processing failed: boom")

        value = producer.produce.call_args.kwargs["value"].decode("utf-8")
        assert "12345678901234567.891" in value

    def test_delivery_error_raises(self):
        producer = _producer(delivery_error="Broker: Not enough in-sync replicas")
        publisher = KafkaDeadLetterPublisher(producer=producer)

        with pytest.raises(DeadLetterDeliveryError, match="in-sync replicas"):
            publisher.publish("{}", "bad")

    def test_unacknowledged_within_timeout_raises(self):
        producer = MagicMock()
        producer.flush.return_value = 1
        publisher = KafkaDeadLetterPublisher(producer=producer, flush_timeout=0.5)

        with pytest.raises(DeadLetterDeliveryError, match="not acknowledged"):
            publisher.publish("{}", "bad")

    def test_flush_timeout_from_env(self, monkeypatch):
        monkeypatch.setenv("DLQ_FLUSH_TIMEOUT_SECONDS", "12")
        assert KafkaDeadLetterPublisher(producer=MagicMock()).flush_timeout == 12.0

    def test_default_topic(self, monkeypatch):
        monkeypatch.delenv("PAYMENT_EVENTS_DLQ_TOPIC", raising=False)
        publisher = KafkaDeadLetterPublisher(producer=MagicMock())
        assert publisher.topic == DEFAULT_DLQ_TOPIC

    def test_flush(self):
        producer = MagicMock()
        KafkaDeadLetterPublisher(producer=producer).flush(2.0)
        producer.flush.assert_called_once_with(2.0)


class TestBackendSelection:
    def test_memory_by_default(self, monkeypatch):
        monkeypatch.delenv("DEAD_LETTER_BACKEND", raising=False)
        assert isinstance(get_dead_letter_publisher(), InMemoryDeadLetterPublisher)

    def test_singleton(self):
        assert get_dead_letter_publisher() is get_dead_letter_publisher()

    def test_unknown_backend(self, monkeypatch):
        monkeypatch.setenv("DEAD_LETTER_BACKEND", "carrier-pigeon")
        with pytest.raises(ValueError, match="DEAD_LETTER_BACKEND"):
            get_dead_letter_publisher()
