"""Pipeline behaviour: persistence, quota gate, order creation, corrections, stats."""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest

from whatsapp_parser.classifier import MessageClassifier
from whatsapp_parser.errors import InvalidInput, NotFound, QuotaExceeded
from whatsapp_parser.models import (
    Category,
    ExtractionStatus,
    InboundMessage,
    StoredExtraction,
)
from whatsapp_parser.service import (
    FEATURE_NAME,
    PROGRESS_METRIC,
    ParserService,
    month_key,
)
from whatsapp_parser.store import InMemoryOrderBook, InMemoryStore

ORDER_TEXT = "nak 2 nasi lemak rm15 nama: Ali hp: 0123456789"
PAYMENT_TEXT = "dah transfer rm18"
INQUIRY_TEXT = "Hello, kedai buka pukul berapa?"


def _msg(content, **fields):
    return InboundMessage(content=content, **fields)


def _run(coro):
    return asyncio.run(coro)


def _history(service, user_id, limit=50, offset=0):
    return _run(service.get_extraction_history(user_id, limit, offset))


# ── PARSE ─────────────────────────────────────────────────────

def test_parse_persists_one_record(service, user_id):
    result = _run(service.parse_message(user_id, _msg(ORDER_TEXT)))
    rows = _history(service, user_id)

    assert len(rows) == 1
    record = rows[0]
    assert record.id
    assert record.category == Category.ORDER
    assert record.confidence == result.confidence
    assert record.status == ExtractionStatus.PROCESSED
    assert record.raw_text == ORDER_TEXT
    assert record.customer_phone == "+60123456789"


def test_inquiry_is_stored_for_manual_review(service, user_id):
    result = _run(service.parse_message(user_id, _msg(INQUIRY_TEXT)))

    assert result.category == Category.CUSTOMER_INQUIRY
    assert result.confidence == 0.3
    assert result.payload is None
    assert _history(service, user_id)[0].status == ExtractionStatus.NEEDS_MANUAL_REVIEW


@pytest.mark.parametrize("content", ["", "   \n\t "])
def test_empty_content_rejected(service, user_id, content):
    with pytest.raises(InvalidInput):
        _run(service.parse_message(user_id, _msg(content)))
    assert _history(service, user_id) == []


def test_content_length_limit(service, user_id):
    with pytest.raises(InvalidInput):
        _run(service.parse_message(user_id, _msg("a" * 5001)))

    # Exactly at the limit is accepted
    result = _run(service.parse_message(user_id, _msg("a" * 5000)))
    assert result.category == Category.CUSTOMER_INQUIRY


def test_raw_text_is_untrimmed_original(service, user_id):
    result = _run(service.parse_message(user_id, _msg("  Dah transfer RM50 ref: ABC123  ")))
    assert result.raw_text == "  Dah transfer RM50 ref: ABC123  "
    assert result.payload.reference_number == "ABC123"


# ── PROCESS / AUTO-CREATE ─────────────────────────────────────

def test_process_creates_order_and_links_it(store, order_book, service, user_id):
    outcome = _run(service.process_and_maybe_create_order(user_id, _msg(ORDER_TEXT), auto_create=True))

    assert outcome.success
    assert outcome.order_id in order_book.orders
    owner, draft = order_book.orders[outcome.order_id]
    assert owner == user_id
    assert draft.status == "pending"
    assert draft.customer_name == "Ali"
    assert draft.notes.startswith("WhatsApp order: ")
    assert [(i.name, i.price, i.quantity) for i in draft.items] == [("nasi lemak", 15.0, 2)]

    assert _history(service, user_id)[0].order_id == outcome.order_id
    assert _run(store.get_feature_usage(user_id, FEATURE_NAME, month_key())).count == 1
    assert store.get_user_progress(user_id, PROGRESS_METRIC) == 1


def test_unpriced_items_drafted_at_zero(order_book, service, user_id):
    outcome = _run(service.process_and_maybe_create_order(
        user_id, _msg("nak nasi lemak", sender_display_name="Aminah"), auto_create=True,
    ))
    _, draft = order_book.orders[outcome.order_id]
    assert draft.items[0].price == 0.0
    assert draft.customer_name == "Aminah"


def test_no_order_without_auto_create(order_book, service, user_id):
    outcome = _run(service.process_and_maybe_create_order(user_id, _msg(ORDER_TEXT)))
    assert outcome.success
    assert outcome.order_id is None
    assert order_book.orders == {}


def test_payment_never_creates_order(order_book, service, user_id):
    outcome = _run(service.process_and_maybe_create_order(user_id, _msg(PAYMENT_TEXT), auto_create=True))
    assert outcome.success
    assert outcome.order_id is None
    assert order_book.orders == {}


def test_auto_create_without_collaborator(store, user_id):
    service = ParserService(store)
    outcome = _run(service.process_and_maybe_create_order(user_id, _msg(ORDER_TEXT), auto_create=True))
    assert outcome.success
    assert outcome.order_id is None


def test_process_reports_invalid_input_as_failure(store, service, user_id):
    outcome = _run(service.process_and_maybe_create_order(user_id, _msg("   ")))

    assert not outcome.success
    assert outcome.error_kind == "InvalidInput"
    assert outcome.extraction.category == Category.CUSTOMER_INQUIRY
    assert outcome.extraction.confidence == 0.0
    assert _run(store.get_feature_usage(user_id, FEATURE_NAME, month_key())).count == 0


def test_progress_failure_does_not_fail_processing(user_id):
    class BrokenProgressStore(InMemoryStore):
        async def increment_user_progress(self, user_id, metric, amount=1):
            raise RuntimeError("progress table missing")

    service = ParserService(BrokenProgressStore())
    outcome = _run(service.process_and_maybe_create_order(user_id, _msg(ORDER_TEXT)))
    assert outcome.success


# ── QUOTA ─────────────────────────────────────────────────────

def test_quota_blocks_before_any_work(store, user_id):
    spy = Mock(wraps=MessageClassifier())
    service = ParserService(store, InMemoryOrderBook(), classifier=spy, free_tier_limit=50)
    store.set_feature_usage(user_id, FEATURE_NAME, month_key(), 50)

    outcome = _run(service.process_and_maybe_create_order(user_id, _msg(ORDER_TEXT), auto_create=True))

    assert not outcome.success
    assert outcome.error_kind == "QuotaExceeded"
    spy.classify.assert_not_called()
    assert _history(service, user_id) == []
    assert _run(store.get_feature_usage(user_id, FEATURE_NAME, month_key())).count == 50


def test_quota_error_details(store, user_id):
    service = ParserService(store, free_tier_limit=50)
    store.set_feature_usage(user_id, FEATURE_NAME, month_key(), 50)

    with pytest.raises(QuotaExceeded) as excinfo:
        _run(service.check_feature_limit(user_id))

    assert excinfo.value.feature == "whatsapp_extract"
    assert excinfo.value.current_usage == 50
    assert excinfo.value.limit == 50
    assert excinfo.value.to_dict()["currentUsage"] == 50


def test_one_below_limit_still_allowed(store, user_id):
    service = ParserService(store, free_tier_limit=50)
    store.set_feature_usage(user_id, FEATURE_NAME, month_key(), 49)

    outcome = _run(service.process_and_maybe_create_order(user_id, _msg(ORDER_TEXT)))
    assert outcome.success
    assert _run(store.get_feature_usage(user_id, FEATURE_NAME, month_key())).count == 50


def test_paid_tier_not_capped_at_free_limit(store, user_id):
    service = ParserService(store, free_tier_limit=50)
    store.set_subscription_tier(user_id, "premium")
    store.set_feature_usage(user_id, FEATURE_NAME, month_key(), 500)

    outcome = _run(service.process_and_maybe_create_order(user_id, _msg(ORDER_TEXT)))
    assert outcome.success


def test_quota_check_is_not_atomic(user_id):
    class SlowUsageStore(InMemoryStore):
        async def get_feature_usage(self, user_id, feature, month_key):
            usage = await super().get_feature_usage(user_id, feature, month_key)
            await asyncio.sleep(0)
            return usage

    store = SlowUsageStore()
    service = ParserService(store, free_tier_limit=50)
    store.set_feature_usage(user_id, FEATURE_NAME, month_key(), 49)

    async def both():
        return await asyncio.gather(
            service.process_and_maybe_create_order(user_id, _msg(ORDER_TEXT)),
            service.process_and_maybe_create_order(user_id, _msg(PAYMENT_TEXT)),
        )

    outcomes = _run(both())

    # Both read 49 before either incremented
    assert all(o.success for o in outcomes)
    assert _run(store.get_feature_usage(user_id, FEATURE_NAME, month_key())).count == 51


def test_month_key_format():
    assert month_key(datetime(2024, 3, 9, tzinfo=timezone.utc)) == "2024-03"


# ── HISTORY ───────────────────────────────────────────────────

def test_history_pagination(service, user_id):
    for text in (ORDER_TEXT, PAYMENT_TEXT, INQUIRY_TEXT):
        _run(service.parse_message(user_id, _msg(text)))

    assert len(_history(service, user_id, limit=2)) == 2
    assert len(_history(service, user_id, limit=2, offset=2)) == 1
    assert _history(service, "someone-else") == []


def test_history_newest_first(store, service, user_id):
    now = datetime.now(timezone.utc)
    for text, age in ((ORDER_TEXT, 3), (PAYMENT_TEXT, 1), (INQUIRY_TEXT, 2)):
        result = service.extract(_msg(text))
        record = StoredExtraction.from_result(user_id, result, now - timedelta(hours=age))
        _run(store.insert_extraction(record))

    categories = [r.category for r in _history(service, user_id)]
    assert categories == [Category.PAYMENT, Category.CUSTOMER_INQUIRY, Category.ORDER]


def test_extractions_by_type(service, user_id):
    for text in (ORDER_TEXT, PAYMENT_TEXT, "want 3 pcs chicken rm25"):
        _run(service.parse_message(user_id, _msg(text)))

    orders = _run(service.get_extractions_by_type(user_id, Category.ORDER))
    assert len(orders) == 2
    assert all(r.category == Category.ORDER for r in orders)


def test_extractions_by_type_offset(store, service, user_id):
    now = datetime.now(timezone.utc)
    for text, age in ((ORDER_TEXT, 3), (PAYMENT_TEXT, 2), ("want 3 pcs chicken rm25", 1)):
        record = StoredExtraction.from_result(user_id, service.extract(_msg(text)), now - timedelta(hours=age))
        _run(store.insert_extraction(record))

    second = _run(service.get_extractions_by_type(user_id, Category.ORDER, limit=1, offset=1))
    assert [r.raw_text for r in second] == [ORDER_TEXT]


# ── STATS ─────────────────────────────────────────────────────

def test_stats_over_window(store, service, user_id):
    _run(service.parse_message(user_id, _msg(ORDER_TEXT)))
    _run(service.parse_message(user_id, _msg("nak 1 teh ais rm3 hp: 0123456789")))
    _run(service.parse_message(user_id, _msg(PAYMENT_TEXT)))
    _run(service.parse_message(user_id, _msg(INQUIRY_TEXT)))

    old = StoredExtraction.from_result(
        user_id,
        service.extract(_msg(ORDER_TEXT)),
        datetime.now(timezone.utc) - timedelta(days=40),
    )
    _run(store.insert_extraction(old))

    stats = _run(service.get_stats(user_id))

    assert stats.total_extractions == 4
    assert stats.order_extractions == 2
    assert stats.payment_confirmations == 1
    assert stats.delivery_confirmations == 0
    assert stats.customer_inquiries == 1
    assert stats.average_confidence == pytest.approx(0.7375)
    assert stats.success_rate == pytest.approx(75.0)
    assert len(stats.top_customers) == 1
    top = stats.top_customers[0]
    assert (top.phone, top.name, top.extraction_count) == ("+60123456789", "Ali", 2)


def test_stats_empty(service, user_id):
    stats = _run(service.get_stats(user_id))
    assert stats.total_extractions == 0
    assert stats.success_rate == 0.0
    assert stats.top_customers == []


# ── CORRECTIONS / TRAINING ────────────────────────────────────

def _only_id(service, user_id):
    rows = _history(service, user_id)
    assert len(rows) == 1
    return rows[0].id


def test_manual_correction_overlays_payload(service, user_id):
    _run(service.parse_message(user_id, _msg("nak nasi lemak")))
    extraction_id = _only_id(service, user_id)

    corrected = _run(service.apply_manual_correction(
        extraction_id, {"customerName": "Siti", "totalAmount": 20},
    ))

    assert corrected.confidence == 1.0
    assert corrected.status == ExtractionStatus.PROCESSED
    assert corrected.manually_corrected
    assert corrected.corrections == {"customerName": "Siti", "totalAmount": 20}
    assert corrected.payload.customer_name == "Siti"
    assert corrected.payload.total_amount == 20.0
    assert corrected.payload.items[0].name == "nasi lemak"
    # Denormalized columns follow the corrected payload
    assert corrected.customer_name == "Siti"
    assert corrected.order_amount == 20.0


def test_correction_cannot_change_category(service, user_id):
    _run(service.parse_message(user_id, _msg(PAYMENT_TEXT)))
    extraction_id = _only_id(service, user_id)

    corrected = _run(service.apply_manual_correction(
        extraction_id, {"category": "order", "method": "Cash"},
    ))
    assert corrected.category == Category.PAYMENT
    assert corrected.payload.method == "Cash"
    assert corrected.payment_method == "Cash"


def test_inquiry_correction_keeps_no_payload(service, user_id):
    _run(service.parse_message(user_id, _msg(INQUIRY_TEXT)))
    extraction_id = _only_id(service, user_id)

    corrected = _run(service.apply_manual_correction(extraction_id, {"note": "opening hours"}))
    assert corrected.payload is None
    assert corrected.confidence == 1.0
    assert corrected.corrections == {"note": "opening hours"}


def test_invalid_correction_rejected(service, user_id):
    _run(service.parse_message(user_id, _msg(ORDER_TEXT)))
    extraction_id = _only_id(service, user_id)

    with pytest.raises(InvalidInput):
        _run(service.apply_manual_correction(extraction_id, {"totalAmount": -5}))


def test_correction_scoped_to_owner(service, user_id):
    _run(service.parse_message(user_id, _msg(ORDER_TEXT)))
    extraction_id = _only_id(service, user_id)

    with pytest.raises(NotFound):
        _run(service.apply_manual_correction(extraction_id, {"customerName": "Siti"}, "other-user"))

    untouched = _history(service, user_id)[0]
    assert not untouched.manually_corrected
    assert untouched.customer_name == "Ali"

    owned = _run(service.apply_manual_correction(extraction_id, {"customerName": "Siti"}, user_id))
    assert owned.customer_name == "Siti"


def test_correcting_unknown_extraction(service):
    with pytest.raises(NotFound):
        _run(service.apply_manual_correction("does-not-exist", {"customerName": "Siti"}))


def test_training_uses_only_corrected_records(store, service, user_id):
    _run(service.parse_message(user_id, _msg(ORDER_TEXT)))
    target = _only_id(service, user_id)
    _run(service.parse_message(user_id, _msg(PAYMENT_TEXT)))
    _run(service.apply_manual_correction(target, {"customerName": "Siti"}))

    assert _run(service.train_with_corrections(user_id)) == 1

    samples = store.get_training_samples(user_id)
    assert len(samples) == 1
    assert samples[0].pattern_type == Category.ORDER
    assert samples[0].language == "ms"
    assert samples[0].sample_text == ORDER_TEXT
    assert samples[0].accuracy_score == 0.95
    assert samples[0].expected_extraction["customer_name"] == "Siti"


def test_training_with_nothing_corrected(service, user_id):
    _run(service.parse_message(user_id, _msg(ORDER_TEXT)))
    assert _run(service.train_with_corrections(user_id)) == 0
