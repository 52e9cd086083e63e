"""Extraction store backed by a Supabase (PostgREST) project.

Talks plain HTTP through ``requests``; each blocking call runs on a worker
thread so the service's awaits never stall the event loop. Network failures
and non-2xx responses surface as ``StoreUnavailable``. No retries here:
retry policy belongs to the caller.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import requests

from whatsapp_parser.config import STORE_TIMEOUT_SECONDS, SUPABASE_KEY, SUPABASE_URL
from whatsapp_parser.errors import StoreUnavailable
from whatsapp_parser.models import (
    Category,
    ExtractionFilters,
    FeatureUsage,
    OrderDraft,
    StoredExtraction,
    TrainingSample,
)
from whatsapp_parser.store import ExtractionStore

logger = logging.getLogger(__name__)

EXTRACTIONS_TABLE: str = "whatsapp_extractions"

# whatsapp_patterns.pattern_type uses shorter labels than source_type
_PATTERN_TYPES: Dict[Category, str] = {
    Category.ORDER: "order",
    Category.PAYMENT: "payment",
    Category.DELIVERY_CONFIRMATION: "delivery",
    Category.CUSTOMER_INQUIRY: "inquiry",
}


class SupabaseClient:
    """Minimal PostgREST client: one session, shared auth headers."""

    def __init__(
        self,
        url: str = SUPABASE_URL,
        key: str = SUPABASE_KEY,
        timeout: float = STORE_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._base = f"{url.rstrip('/')}/rest/v1"
        self._timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update({
            "apikey": key,
            "Authorization": f"Bearer {key}",
            "Content-Type": "application/json",
        })

    async def call(self, method: str, path: str, **kwargs) -> Any:
        return await asyncio.to_thread(self.request, method, path, **kwargs)

    def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, str]] = None,
        json: Any = None,
        prefer: Optional[str] = None,
    ) -> Any:
        """Execute one request and return the decoded JSON body (None if empty)."""
        headers = {"Prefer": prefer} if prefer else {}
        try:
            response = self._session.request(
                method,
                f"{self._base}/{path}",
                params=params,
                json=json,
                headers=headers,
                timeout=self._timeout,
            )
        except requests.exceptions.Timeout:
            logger.error(f"Store request timed out: {method} {path}")
            raise StoreUnavailable(f"Store request timed out: {method} {path}")
        except requests.exceptions.RequestException as exc:
            logger.error(f"Store network error: {method} {path}: {exc}")
            raise StoreUnavailable(f"Store network error: {exc}")

        if response.status_code >= 300:
            logger.error(
                f"Store rejected {method} {path}: "
                f"{response.status_code} {response.text[:200]}"
            )
            raise StoreUnavailable(
                f"Store rejected {method} {path} ({response.status_code})",
                status_code=response.status_code,
            )

        if not response.content:
            return None
        return response.json()


# ================================================================
# ROW MAPPING
# ================================================================

def record_to_row(record: StoredExtraction) -> Dict[str, Any]:
    extracted: Dict[str, Any] = {}
    if record.payload is not None:
        extracted.update(record.payload.model_dump(mode="json"))
    if record.manually_corrected:
        extracted["manually_corrected"] = True
        extracted["corrections"] = record.corrections

    return {
        "user_id": record.user_id,
        "message_content": record.raw_text,
        "extracted_data": extracted or None,
        "source_type": record.category.value,
        "confidence_score": round(record.confidence, 2),
        "customer_name": record.customer_name,
        "customer_phone": record.customer_phone,
        "order_amount": record.order_amount,
        "payment_method": record.payment_method,
        "status": record.status.value,
        "created_at": record.created_at.isoformat(),
        "order_id": record.order_id,
    }


def row_to_record(row: Dict[str, Any]) -> StoredExtraction:
    extracted = dict(row.get("extracted_data") or {})
    manually_corrected = bool(extracted.pop("manually_corrected", False))
    corrections = extracted.pop("corrections", None) or {}

    category = Category(row["source_type"])
    payload = None
    if category != Category.CUSTOMER_INQUIRY and extracted:
        extracted.setdefault("category", category.value)
        payload = extracted

    return StoredExtraction.model_validate({
        "id": str(row["id"]),
        "user_id": str(row["user_id"]),
        "category": category,
        "confidence": float(row.get("confidence_score") or 0.0),
        "raw_text": row.get("message_content") or "",
        "payload": payload,
        "status": row.get("status"),
        "created_at": row.get("created_at") or datetime.now(timezone.utc),
        "customer_name": row.get("customer_name"),
        "customer_phone": row.get("customer_phone"),
        "order_amount": row.get("order_amount"),
        "payment_method": row.get("payment_method"),
        "order_id": row.get("order_id"),
        "manually_corrected": manually_corrected,
        "corrections": corrections,
    })


class SupabaseStore(ExtractionStore):
    """ExtractionStore over the whatsapp_extractions / feature_usage tables."""

    def __init__(self, client: Optional[SupabaseClient] = None) -> None:
        self._client = client or SupabaseClient()

    async def insert_extraction(self, record: StoredExtraction) -> str:
        rows = await self._client.call(
            "POST", EXTRACTIONS_TABLE,
            json=record_to_row(record),
            prefer="return=representation",
        )
        return str(rows[0]["id"])

    async def get_extraction(self, extraction_id: str) -> Optional[StoredExtraction]:
        rows = await self._client.call(
            "GET", EXTRACTIONS_TABLE,
            params={"select": "*", "id": f"eq.{extraction_id}"},
        )
        return row_to_record(rows[0]) if rows else None

    async def update_extraction(self, record: StoredExtraction) -> StoredExtraction:
        row = record_to_row(record)
        row.pop("created_at")
        rows = await self._client.call(
            "PATCH", EXTRACTIONS_TABLE,
            params={"id": f"eq.{record.id}"},
            json=row,
            prefer="return=representation",
        )
        return row_to_record(rows[0]) if rows else record

    async def query_extractions(
        self,
        user_id: str,
        filters: Optional[ExtractionFilters] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[StoredExtraction]:
        filters = filters or ExtractionFilters()
        params = {
            "select": "*",
            "user_id": f"eq.{user_id}",
            "order": "created_at.desc",
            "limit": str(limit),
            "offset": str(offset),
        }
        if filters.category is not None:
            params["source_type"] = f"eq.{filters.category.value}"
        if filters.status is not None:
            params["status"] = f"eq.{filters.status.value}"
        if filters.since is not None:
            params["created_at"] = f"gte.{filters.since.isoformat()}"
        if filters.manually_corrected is not None:
            flag = "extracted_data->>manually_corrected"
            params[flag] = "eq.true" if filters.manually_corrected else "is.null"

        rows = await self._client.call("GET", EXTRACTIONS_TABLE, params=params)
        return [row_to_record(row) for row in rows or []]

    async def get_feature_usage(self, user_id: str, feature: str, month_key: str) -> FeatureUsage:
        rows = await self._client.call(
            "GET", "feature_usage",
            params={
                "select": "usage_count,limit_exceeded",
                "user_id": f"eq.{user_id}",
                "feature_name": f"eq.{feature}",
                "month_year": f"eq.{month_key}",
            },
        )
        if not rows:
            return FeatureUsage()
        return FeatureUsage(
            count=int(rows[0].get("usage_count") or 0),
            limit_exceeded=bool(rows[0].get("limit_exceeded")),
        )

    async def increment_feature_usage(self, user_id: str, feature: str, month_key: str) -> None:
        await self._client.call(
            "POST", "rpc/increment_feature_usage",
            json={
                "p_user_id": user_id,
                "p_feature_name": feature,
                "p_month_year": month_key,
            },
        )

    async def get_subscription_tier(self, user_id: str) -> str:
        rows = await self._client.call(
            "GET", "subscriptions",
            params={
                "select": "tier,status",
                "user_id": f"eq.{user_id}",
                "status": "eq.active",
                "limit": "1",
            },
        )
        if not rows:
            return "free"
        return rows[0].get("tier") or "free"

    async def save_training_samples(self, user_id: str, samples: List[TrainingSample]) -> int:
        if not samples:
            return 0
        payload = [
            {
                "pattern_type": _PATTERN_TYPES[sample.pattern_type],
                "language": sample.language,
                "regex_pattern": "",
                "sample_text": sample.sample_text,
                "expected_extraction": sample.expected_extraction,
                "accuracy_score": sample.accuracy_score,
            }
            for sample in samples
        ]
        await self._client.call(
            "POST", "whatsapp_patterns",
            json=payload,
            prefer="resolution=merge-duplicates",
        )
        return len(payload)

    async def increment_user_progress(self, user_id: str, metric: str, amount: int = 1) -> None:
        await self._client.call(
            "POST", "rpc/update_user_progress",
            json={
                "p_user_id": user_id,
                "p_metric_name": metric,
                "p_increment": amount,
            },
        )


class SupabaseOrderCreator:
    """Creates an order plus its line items from a WhatsApp order draft."""

    def __init__(self, client: Optional[SupabaseClient] = None) -> None:
        self._client = client or SupabaseClient()

    async def create_order(self, user_id: str, draft: OrderDraft) -> str:
        amount = sum(item.price * item.quantity for item in draft.items)
        rows = await self._client.call(
            "POST", "orders",
            json={
                "user_id": user_id,
                "amount": amount,
                "status": draft.status,
                "notes": draft.notes,
            },
            prefer="return=representation",
        )
        order_id = str(rows[0]["id"])
        await self._client.call(
            "POST", "order_items",
            json=[
                {
                    "order_id": order_id,
                    "name": item.name,
                    "price": item.price,
                    "quantity": item.quantity,
                }
                for item in draft.items
            ],
        )
        logger.info(f"[{user_id[:8]}] Order {order_id[:8]} created from WhatsApp draft")
        return order_id
