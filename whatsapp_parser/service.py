"""Parser pipeline and public API: classify, extract, persist, gate, report.

One ``ParserService`` is built at startup around a store and, optionally, an
order collaborator. It keeps no per-call state; every call is independent,
and the only suspension points are the store round-trips.

The monthly quota check and the usage increment are two separate store
calls. Two concurrent calls for the same user can both pass the check when
the counter sits one below the limit; the gate does not reserve quota.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Protocol

from pydantic import ValidationError

from whatsapp_parser.classifier import MessageClassifier, classifier as default_classifier
from whatsapp_parser.config import FREE_TIER_MONTHLY_LIMIT
from whatsapp_parser.errors import InvalidInput, NotFound, ParserError, QuotaExceeded
from whatsapp_parser.extractor import MessageExtractor, extractor as default_extractor
from whatsapp_parser.language import detect_language
from whatsapp_parser.models import (
    INQUIRY_CONFIDENCE,
    MAX_CONTENT_LENGTH,
    Category,
    ExtractionFilters,
    ExtractionResult,
    ExtractionStatus,
    InboundMessage,
    OrderDraft,
    OrderDraftItem,
    OrderPayload,
    ProcessResult,
    StatsSummary,
    StoredExtraction,
    TrainingSample,
)
from whatsapp_parser.stats import summarize
from whatsapp_parser.store import ExtractionStore

logger = logging.getLogger(__name__)

FEATURE_NAME: str = "whatsapp_extract"
PROGRESS_METRIC: str = "whatsapp_extractions"
PREMIUM_MONTHLY_LIMIT: int = 999999
TRAINING_ACCURACY: float = 0.95


class OrderCreator(Protocol):
    async def create_order(self, user_id: str, draft: OrderDraft) -> str:
        ...


def month_key(now: Optional[datetime] = None) -> str:
    """'YYYY-MM' in UTC, the feature_usage bucket."""
    return (now or datetime.now(timezone.utc)).strftime("%Y-%m")


class ParserService:
    """WhatsApp extraction pipeline bound to one store."""

    def __init__(
        self,
        store: ExtractionStore,
        order_creator: Optional[OrderCreator] = None,
        classifier: MessageClassifier = default_classifier,
        extractor: MessageExtractor = default_extractor,
        free_tier_limit: int = FREE_TIER_MONTHLY_LIMIT,
    ) -> None:
        self._store = store
        self._order_creator = order_creator
        self._classifier = classifier
        self._extractor = extractor
        self._free_tier_limit = free_tier_limit

    # ==================== Pipeline ====================

    def extract(self, message: InboundMessage) -> ExtractionResult:
        """Pure classification + extraction, no persistence."""
        content = (message.content or "").strip()
        if not content:
            raise InvalidInput("Message content is empty")
        if len(message.content) > MAX_CONTENT_LENGTH:
            raise InvalidInput(
                f"Message content exceeds {MAX_CONTENT_LENGTH} characters "
                f"({len(message.content)})"
            )

        category = self._classifier.classify(content.lower())
        if category == Category.CUSTOMER_INQUIRY:
            return ExtractionResult.inquiry(message.content, INQUIRY_CONFIDENCE)
        return self._extractor.extract(category, content, message)

    async def parse_message(self, user_id: str, message: InboundMessage) -> ExtractionResult:
        """Classify and extract one message, then persist the result."""
        result = self.extract(message)
        record = StoredExtraction.from_result(
            user_id, result, created_at=datetime.now(timezone.utc)
        )
        extraction_id = await self._store.insert_extraction(record)

        logger.info(
            f"[{user_id[:8]}] EXTRACTED  id={extraction_id[:8]}  "
            f"type={result.category.value}  confidence={result.confidence:.2f}  "
            f"status={record.status.value}"
        )
        return result

    async def process_and_maybe_create_order(
        self,
        user_id: str,
        message: InboundMessage,
        auto_create: bool = False,
    ) -> ProcessResult:
        """Quota-gated parse with optional order creation.

        Failures of the kinds in ``errors`` come back as an unsuccessful
        result carrying a zero-confidence inquiry; anything else propagates.
        """
        try:
            await self.check_feature_limit(user_id)

            result = self.extract(message)
            record = StoredExtraction.from_result(
                user_id, result, created_at=datetime.now(timezone.utc)
            )

            order_id = None
            if auto_create:
                order_id = await self._maybe_create_order(user_id, message, result)
                record = record.model_copy(update={"order_id": order_id})

            extraction_id = await self._store.insert_extraction(record)
            logger.info(
                f"[{user_id[:8]}] PROCESSED  id={extraction_id[:8]}  "
                f"type={result.category.value}  confidence={result.confidence:.2f}  "
                f"order={'created' if order_id else 'no'}"
            )

            await self._store.increment_feature_usage(user_id, FEATURE_NAME, month_key())
            await self._update_progress(user_id)

            return ProcessResult(extraction=result, order_id=order_id, success=True)

        except ParserError as exc:
            logger.warning(f"[{user_id[:8]}] Processing failed: {exc.kind}: {exc.message}")
            return ProcessResult(
                extraction=ExtractionResult.inquiry(message.content, 0.0),
                success=False,
                error=exc.message,
                error_kind=exc.kind,
            )

    async def check_feature_limit(self, user_id: str) -> None:
        """Raise QuotaExceeded when this month's usage has reached the tier cap."""
        usage = await self._store.get_feature_usage(user_id, FEATURE_NAME, month_key())
        tier = await self._store.get_subscription_tier(user_id)
        limit = self._free_tier_limit if tier == "free" else PREMIUM_MONTHLY_LIMIT

        if usage.count >= limit:
            raise QuotaExceeded(FEATURE_NAME, usage.count, limit)

    async def _maybe_create_order(
        self,
        user_id: str,
        message: InboundMessage,
        result: ExtractionResult,
    ) -> Optional[str]:
        payload = result.payload
        if not isinstance(payload, OrderPayload) or not payload.items:
            return None
        if self._order_creator is None:
            logger.warning(f"[{user_id[:8]}] Auto-create requested but no order collaborator configured")
            return None

        draft = OrderDraft(
            customer_name=payload.customer_name or message.sender_display_name,
            customer_phone=payload.customer_phone or message.sender_phone,
            items=[
                # Unpriced items are created at 0 and priced manually later
                OrderDraftItem(name=item.name, price=item.unit_price or 0.0, quantity=item.quantity)
                for item in payload.items
            ],
            notes=f"WhatsApp order: {payload.notes or message.content}",
            status="pending",
        )
        return await self._order_creator.create_order(user_id, draft)

    async def _update_progress(self, user_id: str) -> None:
        try:
            await self._store.increment_user_progress(user_id, PROGRESS_METRIC, 1)
        except Exception as exc:
            logger.warning(f"[{user_id[:8]}] Failed to update user progress: {exc}")

    # ==================== History / stats ====================

    async def get_extraction_history(
        self, user_id: str, limit: int = 50, offset: int = 0,
    ) -> List[StoredExtraction]:
        return await self._store.query_extractions(user_id, None, limit, offset)

    async def get_extractions_by_type(
        self, user_id: str, category: Category, limit: int = 20, offset: int = 0,
    ) -> List[StoredExtraction]:
        filters = ExtractionFilters(category=category)
        return await self._store.query_extractions(user_id, filters, limit, offset)

    async def get_stats(self, user_id: str, window_days: int = 30) -> StatsSummary:
        cutoff = datetime.now(timezone.utc) - timedelta(days=window_days)
        rows: List[StoredExtraction] = []
        page = 500
        offset = 0
        while True:
            batch = await self._store.query_extractions(
                user_id, ExtractionFilters(since=cutoff), page, offset
            )
            rows.extend(batch)
            if len(batch) < page:
                break
            offset += page
        return summarize(rows)

    # ==================== Corrections / training ====================

    async def apply_manual_correction(
        self,
        extraction_id: str,
        corrections: Dict[str, Any],
        user_id: Optional[str] = None,
    ) -> StoredExtraction:
        """Overlay operator-supplied fields; the record becomes fully trusted.

        With ``user_id`` given, a record owned by someone else is reported
        as NotFound, same as a missing one.
        """
        record = await self._store.get_extraction(extraction_id)
        if record is None or (user_id is not None and record.user_id != user_id):
            raise NotFound(f"Extraction {extraction_id} not found")

        payload = record.payload
        if payload is not None:
            fields = type(payload).model_fields
            by_alias = {(info.alias or name): name for name, info in fields.items()}
            merged = payload.model_dump()
            for key, value in corrections.items():
                name = by_alias.get(key, key)
                if name in fields and name != "category":
                    merged[name] = value
            try:
                payload = type(payload).model_validate(merged)
            except ValidationError as exc:
                raise InvalidInput(f"Invalid correction: {exc.errors()[0]['msg']}")

        updated = record.model_copy(update={
            "payload": payload,
            "confidence": 1.0,
            "status": ExtractionStatus.PROCESSED,
            "manually_corrected": True,
            "corrections": {**record.corrections, **corrections},
        }).with_denormalized_columns()

        saved = await self._store.update_extraction(updated)
        logger.info(f"[{record.user_id[:8]}] CORRECTED  id={extraction_id[:8]}")
        return saved

    async def train_with_corrections(self, user_id: str) -> int:
        """Turn manually corrected extractions into language-tagged training samples."""
        corrected = await self._store.query_extractions(
            user_id,
            ExtractionFilters(status=ExtractionStatus.PROCESSED, manually_corrected=True),
            limit=1000,
        )
        if not corrected:
            return 0

        samples = [
            TrainingSample(
                pattern_type=record.category,
                language=detect_language(record.raw_text),
                sample_text=record.raw_text,
                expected_extraction=(
                    record.payload.model_dump(mode="json") if record.payload else dict(record.corrections)
                ),
                accuracy_score=TRAINING_ACCURACY,
            )
            for record in corrected
        ]
        written = await self._store.save_training_samples(user_id, samples)
        logger.info(f"[{user_id[:8]}] TRAINING  samples={written}")
        return written
