"""Extraction store contract and a thread-safe in-memory implementation.

The service only talks to the abstract ``ExtractionStore``. The in-memory
store backs tests and the default ``STORE_BACKEND=memory`` deployment; the
PostgREST-backed store lives in ``supabase_store``.
"""

import threading
import uuid
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Tuple

from whatsapp_parser.models import (
    ExtractionFilters,
    FeatureUsage,
    OrderDraft,
    StoredExtraction,
    TrainingSample,
)


class ExtractionStore(ABC):
    """Persistence operations the parser service depends on.

    Implementations raise ``StoreUnavailable`` when the backend cannot be
    reached; the service never retries.
    """

    @abstractmethod
    async def insert_extraction(self, record: StoredExtraction) -> str:
        """Persist a new extraction and return its id."""

    @abstractmethod
    async def get_extraction(self, extraction_id: str) -> Optional[StoredExtraction]:
        ...

    @abstractmethod
    async def update_extraction(self, record: StoredExtraction) -> StoredExtraction:
        ...

    @abstractmethod
    async def query_extractions(
        self,
        user_id: str,
        filters: Optional[ExtractionFilters] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[StoredExtraction]:
        """Extractions for a user, newest first."""

    @abstractmethod
    async def get_feature_usage(self, user_id: str, feature: str, month_key: str) -> FeatureUsage:
        ...

    @abstractmethod
    async def increment_feature_usage(self, user_id: str, feature: str, month_key: str) -> None:
        ...

    @abstractmethod
    async def get_subscription_tier(self, user_id: str) -> str:
        """Active subscription tier, "free" when there is none."""

    @abstractmethod
    async def save_training_samples(self, user_id: str, samples: List[TrainingSample]) -> int:
        ...

    async def increment_user_progress(self, user_id: str, metric: str, amount: int = 1) -> None:
        """Bump a gamification metric. Optional for backends without one."""


class InMemoryStore(ExtractionStore):
    """Dict-backed store guarded by one lock. State lives for the process."""

    def __init__(self) -> None:
        self._extractions: Dict[str, StoredExtraction] = {}
        self._usage: Dict[Tuple[str, str, str], int] = {}
        self._tiers: Dict[str, str] = {}
        self._training: Dict[str, List[TrainingSample]] = {}
        self._progress: Dict[Tuple[str, str], int] = {}
        self._lock = threading.Lock()

    # ==================== Extractions ====================

    async def insert_extraction(self, record: StoredExtraction) -> str:
        extraction_id = str(uuid.uuid4())
        with self._lock:
            self._extractions[extraction_id] = record.model_copy(update={"id": extraction_id})
        return extraction_id

    async def get_extraction(self, extraction_id: str) -> Optional[StoredExtraction]:
        with self._lock:
            return self._extractions.get(extraction_id)

    async def update_extraction(self, record: StoredExtraction) -> StoredExtraction:
        with self._lock:
            self._extractions[record.id] = record
        return record

    async def query_extractions(
        self,
        user_id: str,
        filters: Optional[ExtractionFilters] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[StoredExtraction]:
        filters = filters or ExtractionFilters()
        with self._lock:
            rows = [r for r in self._extractions.values() if r.user_id == user_id]

        if filters.category is not None:
            rows = [r for r in rows if r.category == filters.category]
        if filters.status is not None:
            rows = [r for r in rows if r.status == filters.status]
        if filters.since is not None:
            rows = [r for r in rows if r.created_at >= filters.since]
        if filters.manually_corrected is not None:
            rows = [r for r in rows if r.manually_corrected == filters.manually_corrected]

        rows.sort(key=lambda r: r.created_at, reverse=True)
        return rows[offset:offset + limit]

    # ==================== Feature usage ====================

    async def get_feature_usage(self, user_id: str, feature: str, month_key: str) -> FeatureUsage:
        with self._lock:
            count = self._usage.get((user_id, feature, month_key), 0)
        return FeatureUsage(count=count)

    async def increment_feature_usage(self, user_id: str, feature: str, month_key: str) -> None:
        key = (user_id, feature, month_key)
        with self._lock:
            self._usage[key] = self._usage.get(key, 0) + 1

    def set_feature_usage(self, user_id: str, feature: str, month_key: str, count: int) -> None:
        with self._lock:
            self._usage[(user_id, feature, month_key)] = count

    # ==================== Subscriptions ====================

    async def get_subscription_tier(self, user_id: str) -> str:
        with self._lock:
            return self._tiers.get(user_id, "free")

    def set_subscription_tier(self, user_id: str, tier: str) -> None:
        with self._lock:
            self._tiers[user_id] = tier

    # ==================== Training / progress ====================

    async def save_training_samples(self, user_id: str, samples: List[TrainingSample]) -> int:
        with self._lock:
            self._training.setdefault(user_id, []).extend(samples)
        return len(samples)

    def get_training_samples(self, user_id: str) -> List[TrainingSample]:
        with self._lock:
            return list(self._training.get(user_id, []))

    async def increment_user_progress(self, user_id: str, metric: str, amount: int = 1) -> None:
        key = (user_id, metric)
        with self._lock:
            self._progress[key] = self._progress.get(key, 0) + amount

    def get_user_progress(self, user_id: str, metric: str) -> int:
        with self._lock:
            return self._progress.get((user_id, metric), 0)


class InMemoryOrderBook:
    """Order collaborator that just keeps drafts keyed by generated id."""

    def __init__(self) -> None:
        self.orders: Dict[str, Tuple[str, OrderDraft]] = {}
        self._lock = threading.Lock()

    async def create_order(self, user_id: str, draft: OrderDraft) -> str:
        order_id = str(uuid.uuid4())
        with self._lock:
            self.orders[order_id] = (user_id, draft)
        return order_id
