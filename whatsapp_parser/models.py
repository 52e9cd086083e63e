"""Pydantic models for inbound messages, extraction results and stored records.

Field names are snake_case in Python and camelCase on the wire (the mobile
client and the HTTP API both speak camelCase).
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

# Pipeline-wide policy constants
PROCESSED_THRESHOLD: float = 0.7
INQUIRY_CONFIDENCE: float = 0.3
MAX_CONTENT_LENGTH: int = 5000


class Category(str, Enum):
    ORDER = "order"
    PAYMENT = "payment"
    DELIVERY_CONFIRMATION = "delivery_confirmation"
    CUSTOMER_INQUIRY = "customer_inquiry"


class ExtractionStatus(str, Enum):
    PROCESSED = "processed"
    NEEDS_MANUAL_REVIEW = "manual_review"


def status_for(confidence: float) -> ExtractionStatus:
    """Processed strictly above the 0.7 threshold, manual review otherwise."""
    if confidence > PROCESSED_THRESHOLD:
        return ExtractionStatus.PROCESSED
    return ExtractionStatus.NEEDS_MANUAL_REVIEW


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class InboundMessage(_CamelModel):
    """One WhatsApp message as handed over by the caller."""

    model_config = ConfigDict(frozen=True)

    content: str = Field(...)
    timestamp: Optional[datetime] = Field(default=None)
    sender_display_name: Optional[str] = Field(default=None)
    sender_phone: Optional[str] = Field(default=None)


# ================================================================
# CATEGORY PAYLOADS
# ================================================================

class OrderItem(_CamelModel):
    name: str
    quantity: int = Field(default=1, ge=1)
    unit_price: Optional[float] = Field(default=None, gt=0)


class OrderPayload(_CamelModel):
    category: Literal["order"] = "order"
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    items: List[OrderItem] = Field(default_factory=list)
    total_amount: Optional[float] = Field(default=None, gt=0)
    notes: str = ""


class PaymentPayload(_CamelModel):
    category: Literal["payment"] = "payment"
    amount: float = Field(default=0.0, ge=0)
    method: str = "Unknown"
    reference_number: Optional[str] = None
    bank_name: Optional[str] = None
    sender_info: Optional[str] = None


class DeliveryPayload(_CamelModel):
    category: Literal["delivery_confirmation"] = "delivery_confirmation"
    address: Optional[str] = None
    delivery_time: Optional[str] = None
    instructions: str = ""
    customer_phone: Optional[str] = None


Payload = Annotated[
    Union[OrderPayload, PaymentPayload, DeliveryPayload],
    Field(discriminator="category"),
]


class ExtractionResult(_CamelModel):
    """Classified message plus the payload matching its category.

    Customer inquiries carry no payload.
    """

    category: Category
    confidence: float = Field(..., ge=0.0, le=1.0)
    raw_text: str
    payload: Optional[Payload] = None

    @model_validator(mode="after")
    def _payload_matches_category(self) -> "ExtractionResult":
        if self.category == Category.CUSTOMER_INQUIRY:
            if self.payload is not None:
                raise ValueError("customer inquiries carry no payload")
        elif self.payload is None or self.payload.category != self.category:
            raise ValueError(f"{self.category.value} result needs a matching payload")
        return self

    @classmethod
    def inquiry(cls, raw_text: str, confidence: float = INQUIRY_CONFIDENCE) -> "ExtractionResult":
        return cls(
            category=Category.CUSTOMER_INQUIRY,
            confidence=confidence,
            raw_text=raw_text,
        )


# ================================================================
# PERSISTENCE RECORDS
# ================================================================

class StoredExtraction(_CamelModel):
    """Row of the whatsapp_extractions table."""

    id: Optional[str] = None
    user_id: str
    category: Category
    confidence: float = Field(..., ge=0.0, le=1.0)
    raw_text: str
    payload: Optional[Payload] = None
    status: ExtractionStatus
    created_at: datetime

    # Denormalized columns for list views and stats
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    order_amount: Optional[float] = None
    payment_method: Optional[str] = None
    order_id: Optional[str] = None

    manually_corrected: bool = False
    corrections: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_result(cls, user_id: str, result: ExtractionResult,
                    created_at: datetime) -> "StoredExtraction":
        record = cls(
            user_id=user_id,
            category=result.category,
            confidence=result.confidence,
            raw_text=result.raw_text,
            payload=result.payload,
            status=status_for(result.confidence),
            created_at=created_at,
        )
        return record.with_denormalized_columns()

    def with_denormalized_columns(self) -> "StoredExtraction":
        payload = self.payload
        update: Dict[str, Any] = {}
        if isinstance(payload, OrderPayload):
            update.update(
                customer_name=payload.customer_name,
                customer_phone=payload.customer_phone,
                order_amount=payload.total_amount,
            )
        elif isinstance(payload, PaymentPayload):
            update.update(
                payment_method=payload.method,
                order_amount=payload.amount,
            )
        elif isinstance(payload, DeliveryPayload):
            update.update(customer_phone=payload.customer_phone)
        return self.model_copy(update=update)


class FeatureUsage(_CamelModel):
    count: int = 0
    limit_exceeded: bool = False


class ExtractionFilters(_CamelModel):
    category: Optional[Category] = None
    status: Optional[ExtractionStatus] = None
    since: Optional[datetime] = None
    manually_corrected: Optional[bool] = None


class TrainingSample(_CamelModel):
    pattern_type: Category
    language: str
    sample_text: str
    expected_extraction: Dict[str, Any] = Field(default_factory=dict)
    accuracy_score: float = 0.95


# ================================================================
# SERVICE RESULTS
# ================================================================

class OrderDraftItem(_CamelModel):
    name: str
    price: float = 0.0
    quantity: int = 1


class OrderDraft(_CamelModel):
    """What the order collaborator receives when auto-creation is on."""

    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    items: List[OrderDraftItem] = Field(default_factory=list)
    notes: str = ""
    status: str = "pending"


class ProcessResult(_CamelModel):
    extraction: ExtractionResult
    order_id: Optional[str] = None
    success: bool = True
    error: Optional[str] = None
    error_kind: Optional[str] = None


class TopCustomer(_CamelModel):
    phone: str
    name: Optional[str] = None
    extraction_count: int = 0


class StatsSummary(_CamelModel):
    total_extractions: int = 0
    order_extractions: int = 0
    payment_confirmations: int = 0
    delivery_confirmations: int = 0
    customer_inquiries: int = 0
    average_confidence: float = 0.0
    success_rate: float = 0.0
    top_customers: List[TopCustomer] = Field(default_factory=list)
