"""Summary statistics over a window of stored extractions."""

from collections import Counter
from typing import Dict, Iterable, List

from whatsapp_parser.models import (
    Category,
    ExtractionStatus,
    StatsSummary,
    StoredExtraction,
    TopCustomer,
)

TOP_CUSTOMER_COUNT: int = 5


def summarize(extractions: Iterable[StoredExtraction]) -> StatsSummary:
    """Counts per category, mean confidence, processed rate and top senders.

    ``success_rate`` is a percentage. Top customers are keyed by phone and
    keep the first name seen for that phone; ties keep first-seen order.
    """
    rows: List[StoredExtraction] = list(extractions)
    total = len(rows)
    if total == 0:
        return StatsSummary()

    per_category = Counter(r.category for r in rows)
    processed = sum(1 for r in rows if r.status == ExtractionStatus.PROCESSED)

    counts: Counter = Counter()
    names: Dict[str, str] = {}
    for row in rows:
        if not row.customer_phone:
            continue
        counts[row.customer_phone] += 1
        if row.customer_name and row.customer_phone not in names:
            names[row.customer_phone] = row.customer_name

    top = [
        TopCustomer(phone=phone, name=names.get(phone), extraction_count=count)
        for phone, count in counts.most_common(TOP_CUSTOMER_COUNT)
    ]

    return StatsSummary(
        total_extractions=total,
        order_extractions=per_category[Category.ORDER],
        payment_confirmations=per_category[Category.PAYMENT],
        delivery_confirmations=per_category[Category.DELIVERY_CONFIRMATION],
        customer_inquiries=per_category[Category.CUSTOMER_INQUIRY],
        average_confidence=sum(r.confidence for r in rows) / total,
        success_rate=processed / total * 100,
        top_customers=top,
    )
