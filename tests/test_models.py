"""Unit tests for Courier models."""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta

import pytest
from pydantic import ValidationError

from courier.models import (
    ALL_EVENT_TYPES,
    EVENT_CATALOG_VERSION,
    DeliveryAttempt,
    DeliveryOutcome,
    DeliveryRecord,
    Envelope,
    Subscriber,
    generate_id,
    is_known_event,
)


class TestEventCatalog:
    """Tests for the event catalog."""

    def test_catalog_contents(self) -> None:
        assert len(ALL_EVENT_TYPES) == 22
        assert len(set(ALL_EVENT_TYPES)) == 22
        assert "deal.stage_changed" in ALL_EVENT_TYPES
        assert EVENT_CATALOG_VERSION >= 1

    def test_is_known_event(self) -> None:
        assert is_known_event("quote.accepted")
        assert not is_known_event("quote.exploded")
        assert not is_known_event("")


class TestSubscriber:
    """Tests for Subscriber model."""

    def test_defaults(self) -> None:
        subscriber = Subscriber(name="s", url="https://e.com/h", events=["deal.won"])

        assert subscriber.id.startswith("sub_")
        assert subscriber.active is True
        assert subscriber.paused is False
        assert subscriber.failure_count == 0
        assert subscriber.max_retries == 3
        assert subscriber.retry_delay_seconds == 60
        assert subscriber.secret is None

    def test_rejects_unknown_event(self) -> None:
        with pytest.raises(ValidationError):
            Subscriber(name="s", url="https://e.com/h", events=["deal.exploded"])

    def test_max_retries_bounds(self) -> None:
        with pytest.raises(ValidationError):
            Subscriber(name="s", url="https://e.com/h", events=[], max_retries=11)
        with pytest.raises(ValidationError):
            Subscriber(name="s", url="https://e.com/h", events=[], max_retries=-1)

    def test_eligibility(self) -> None:
        """Only active, unpaused subscribers receive events."""
        base = {"name": "s", "url": "https://e.com/h", "events": ["deal.won"]}

        assert Subscriber(**base).subscribes_to("deal.won")
        assert not Subscriber(**base).subscribes_to("deal.lost")
        assert not Subscriber(**base, paused=True).subscribes_to("deal.won")
        assert not Subscriber(**base, active=False).subscribes_to("deal.won")

    def test_to_target(self) -> None:
        subscriber = Subscriber(
            name="s",
            url="https://e.com/h",
            events=[],
            secret="k",
            headers={"X-A": "1"},
        )
        target = subscriber.to_target()
        assert (target.url, target.secret, target.headers) == ("https://e.com/h", "k", {"X-A": "1"})


class TestEnvelope:
    """Tests for the transmitted envelope."""

    def test_wire_field_names(self) -> None:
        envelope = Envelope(
            delivery_id="dlv_1",
            event="deal.won",
            timestamp=datetime(2024, 1, 1, tzinfo=UTC),
            data={"id": "d1"},
        )
        parsed = json.loads(envelope.to_bytes())

        assert parsed["deliveryId"] == "dlv_1"
        assert "delivery_id" not in parsed
        assert Envelope.from_bytes(envelope.to_bytes()) == envelope


class TestDeliveryRecord:
    """Tests for DeliveryRecord state changes."""

    def make_record(self) -> DeliveryRecord:
        return DeliveryRecord(subscriber_id="sub_1", event="deal.won", payload=b"{}")

    def test_defaults(self) -> None:
        record = self.make_record()
        assert record.status == "pending"
        assert record.retry_count == 0
        assert not record.is_terminal

    def test_apply_failure(self) -> None:
        record = self.make_record()
        record.claim_token = "clm_1"
        next_retry = datetime(2024, 1, 1, tzinfo=UTC) + timedelta(seconds=60)
        outcome = DeliveryOutcome(
            success=False,
            status_code=500,
            response_body="y" * 2000,
            error="HTTP 500: Internal Server Error",
            error_kind="application",
            latency_ms=5,
        )

        record.apply_outcome(outcome, next_retry)

        assert record.status == "failed"
        assert record.response_body == "y" * 2000
        assert record.next_retry_at == next_retry
        assert record.sent_at == outcome.attempted_at
        assert record.claim_token is None
        assert not record.is_terminal

    def test_apply_success_clears_retry(self) -> None:
        record = self.make_record()
        outcome = DeliveryOutcome(success=True, status_code=200)

        record.apply_outcome(outcome, datetime.now(UTC))

        assert record.status == "success"
        assert record.next_retry_at is None
        assert record.is_terminal

    def test_failed_without_retry_is_terminal(self) -> None:
        record = self.make_record()
        record.apply_outcome(DeliveryOutcome(success=False, error="x"), None)
        assert record.is_terminal


class TestDeliveryAttempt:
    def test_from_outcome(self) -> None:
        outcome = DeliveryOutcome(success=False, error="timeout", error_kind="transport")
        attempt = DeliveryAttempt.from_outcome("dlv_1", 2, outcome)

        assert attempt.id.startswith("att_")
        assert attempt.delivery_id == "dlv_1"
        assert attempt.attempt_number == 2
        assert attempt.error_kind == "transport"
        assert attempt.attempted_at == outcome.attempted_at

    def test_attempt_number_starts_at_one(self) -> None:
        with pytest.raises(ValidationError):
            DeliveryAttempt(delivery_id="dlv_1", attempt_number=0, success=True)


def test_generate_id_prefix() -> None:
    assert generate_id("dlv").startswith("dlv_")
    assert generate_id("dlv") != generate_id("dlv")
