"""Tests for per-message webhook processing (outcomes, isolation, dedup)."""

from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock

import pytest

from shopledger.domain.ledger import InMemoryLedger
from shopledger.domain.pipeline import MAX_TEXT_LENGTH, WebhookPipeline
from shopledger.domain.rate_limit import MAX_MESSAGES_PER_WINDOW
from shopledger.whatsapp.meta_adapter import InvalidPayloadError
from shopledger.whatsapp.models import InboundMessage

from .helpers import TEST_PHONE, RecordingSender, make_payload, text_message


@pytest.fixture
def ledger():
    return InMemoryLedger()


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def pipeline(ledger, sender):
    return WebhookPipeline(ledger=ledger, sender=sender)


def _msg(text: str, message_id: str = "wamid.1", sender_id: str = TEST_PHONE) -> InboundMessage:
    return InboundMessage(message_id=message_id, sender_id=sender_id, text=text, kind="text")


class TestProcessMessage:
    def test_transaction_recorded_and_replied(self, pipeline, ledger, sender):
        outcome = pipeline.process_message(_msg("Sold 5 items for ₹500"))

        assert outcome.status == "replied"
        assert outcome.delivered is True
        assert outcome.reply == "✅ Recorded: income of 500 (sales)"
        assert sender.sent == [(TEST_PHONE, outcome.reply)]
        assert len(ledger.entries_for(TEST_PHONE)) == 1

    def test_unrecognized_gets_usage_hint_without_mutation(self, pipeline, ledger, sender):
        outcome = pipeline.process_message(_msg("hello there"))

        assert outcome.status == "replied"
        assert outcome.reply.startswith("I couldn't understand that.")
        assert ledger.entries_for(TEST_PHONE) == []

    def test_too_long_text_is_rejected_before_parsing(self, pipeline, ledger):
        outcome = pipeline.process_message(_msg("sold 5 " + "x" * MAX_TEXT_LENGTH))

        assert outcome.status == "replied"
        assert "too long" in outcome.reply
        assert ledger.entries_for(TEST_PHONE) == []

    def test_over_long_messages_count_against_rate_limit(self, pipeline, ledger, sender):
        too_long = "sold 5 " + "x" * MAX_TEXT_LENGTH
        outcomes = [
            pipeline.process_message(_msg(too_long, message_id=f"wamid.long{i}"))
            for i in range(MAX_MESSAGES_PER_WINDOW + 1)
        ]

        assert [o.status for o in outcomes[:-1]] == ["replied"] * MAX_MESSAGES_PER_WINDOW
        assert outcomes[-1].status == "rate_limited"
        assert ledger.entries_for(TEST_PHONE) == []

    def test_rate_limited_sender_gets_notice(self, pipeline, ledger, sender):
        for i in range(MAX_MESSAGES_PER_WINDOW):
            pipeline.process_message(_msg(f"sold {i + 1}", message_id=f"wamid.{i}"))

        outcome = pipeline.process_message(_msg("sold 99", message_id="wamid.over"))

        assert outcome.status == "rate_limited"
        assert outcome.reply.startswith("⏳ You're sending messages too fast.")
        assert len(ledger.entries_for(TEST_PHONE)) == MAX_MESSAGES_PER_WINDOW

    def test_redelivered_message_resends_same_reply_without_side_effects(self, pipeline, ledger, sender):
        first = pipeline.process_message(_msg("Sold 5 items for ₹500", message_id="wamid.dup"))
        second = pipeline.process_message(_msg("Sold 5 items for ₹500", message_id="wamid.dup"))

        assert second.status == "duplicate"
        assert second.reply == first.reply
        assert len(ledger.entries_for(TEST_PHONE)) == 1
        assert sender.bodies == [first.reply, first.reply]

    def test_redelivery_does_not_consume_rate_budget(self, pipeline, ledger):
        pipeline.process_message(_msg("sold 1", message_id="wamid.same"))
        for _ in range(MAX_MESSAGES_PER_WINDOW * 2):
            pipeline.process_message(_msg("sold 1", message_id="wamid.same"))

        outcome = pipeline.process_message(_msg("sold 2", message_id="wamid.fresh"))

        assert outcome.status == "replied"

    def test_identical_text_with_new_id_gets_same_reply(self, pipeline):
        a = pipeline.process_message(_msg("Bought supplies ₹200", message_id="wamid.a"))
        b = pipeline.process_message(_msg("Bought supplies ₹200", message_id="wamid.b"))

        assert a.reply == b.reply

    def test_ledger_failure_sends_error_notice(self, sender):
        ledger = MagicMock()
        ledger.get_processed_reply.return_value = None
        ledger.increment_rate_counter.return_value = MagicMock(blocked=False, retry_after_ms=0)
        ledger.insert_entry.side_effect = RuntimeError("db down")
        ledger.apply_once.side_effect = lambda message_id, sender_id, handler: (handler(ledger), True)
        pipeline = WebhookPipeline(ledger=ledger, sender=sender)

        outcome = pipeline.process_message(_msg("Sold 5 items for ₹500"))

        assert outcome.status == "failed"
        assert outcome.error == "RuntimeError"
        assert sender.bodies == ["⚠️ Sorry, something went wrong. Please try again."]


class TestProcessPayload:
    def test_messages_processed_in_order(self, pipeline, sender):
        payload = make_payload(
            text_message("Sold tea ₹40", message_id="m1"),
            text_message("balance", message_id="m2"),
            text_message("undo", message_id="m3"),
        )

        outcomes = pipeline.process_payload(payload)

        assert [o.message_id for o in outcomes] == ["m1", "m2", "m3"]
        assert sender.bodies[1].startswith("📊 Balance\nIncome: 40")
        assert sender.bodies[2] == "↩️ Undone: income of 40 (Sold tea ₹40)"

    def test_non_text_and_malformed_are_skipped(self, pipeline, sender):
        payload = make_payload(
            {"from": TEST_PHONE, "id": "img1", "type": "image", "image": {"id": "x"}},
            {"id": "bad1", "type": "text", "text": {"body": "sold 5"}},
            text_message("sold 5", message_id="ok1"),
        )

        outcomes = pipeline.process_payload(payload)

        assert [(o.message_id, o.status) for o in outcomes] == [
            ("img1", "skipped"),
            ("bad1", "skipped"),
            ("ok1", "replied"),
        ]
        assert len(sender.sent) == 1

    def test_failure_in_one_message_does_not_stop_others(self, ledger, sender):
        pipeline = WebhookPipeline(ledger=ledger, sender=sender)
        original_insert = ledger.insert_entry
        calls = {"n": 0}

        def flaky_insert(entry):
            calls["n"] += 1
            if calls["n"] == 1:
                raise RuntimeError("transient")
            return original_insert(entry)

        ledger.insert_entry = flaky_insert
        payload = make_payload(
            text_message("sold 10", message_id="m1"),
            text_message("sold 20", message_id="m2"),
        )

        outcomes = pipeline.process_payload(payload)

        assert [o.status for o in outcomes] == ["failed", "replied"]
        assert [e.amount for e in ledger.entries_for(TEST_PHONE)] == [20]

    def test_status_payload_has_no_side_effects(self, pipeline, sender):
        payload = make_payload(statuses=[{"id": "wamid.X", "status": "delivered"}])

        assert pipeline.process_payload(payload) == []
        assert sender.sent == []

    def test_not_an_envelope_raises(self, pipeline):
        with pytest.raises(InvalidPayloadError):
            pipeline.process_payload({"hello": "world"})


class FailingReplyCache(InMemoryLedger):
    """Ledger whose reply cache write fails once."""

    def __init__(self):
        super().__init__()
        self.failures = 1

    def store_reply(self, message_id, sender_id, reply):
        if self.failures:
            self.failures -= 1
            raise RuntimeError("cache write failed")
        super().store_reply(message_id, sender_id, reply)


class TestApplyOnce:
    def test_failed_reply_cache_write_rolls_back_entry(self, sender):
        ledger = FailingReplyCache()
        pipeline = WebhookPipeline(ledger=ledger, sender=sender)

        first = pipeline.process_message(_msg("Sold 5 items for ₹500", message_id="wamid.X"))

        assert first.status == "failed"
        assert ledger.entries_for(TEST_PHONE) == []
        assert ledger.get_processed_reply("wamid.X") is None

        second = pipeline.process_message(_msg("Sold 5 items for ₹500", message_id="wamid.X"))

        assert second.status == "replied"
        assert len(ledger.entries_for(TEST_PHONE)) == 1

    def test_already_applied_message_skips_handler(self, ledger):
        handler = MagicMock(return_value="✅ done")

        assert ledger.apply_once("wamid.once", TEST_PHONE, handler) == ("✅ done", True)
        assert ledger.apply_once("wamid.once", TEST_PHONE, handler) == ("✅ done", False)
        handler.assert_called_once_with(ledger)

    def test_concurrent_deliveries_record_one_entry(self, ledger, sender):
        pipeline = WebhookPipeline(ledger=ledger, sender=sender)
        ledger.get_processed_reply = lambda message_id: None

        with ThreadPoolExecutor(max_workers=4) as pool:
            outcomes = list(
                pool.map(
                    lambda _: pipeline.process_message(_msg("Sold 5 items for ₹500", message_id="wamid.race")),
                    range(4),
                )
            )

        assert sorted(o.status for o in outcomes) == ["duplicate"] * 3 + ["replied"]
        assert len(ledger.entries_for(TEST_PHONE)) == 1
