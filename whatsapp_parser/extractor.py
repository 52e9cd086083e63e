"""Category extractors for order, payment and delivery messages.

Each extractor walks its slice of the rule tables in ``patterns`` and keeps
a running confidence that only ever rises to the weight of a matching rule.
Weights are never summed. Nothing here raises on a non-match: missing
fields stay empty and the confidence stays at the category baseline, which
the pipeline turns into a manual-review status.
"""

import re
from typing import List, Optional, Tuple

from whatsapp_parser.models import (
    Category,
    DeliveryPayload,
    ExtractionResult,
    InboundMessage,
    OrderItem,
    OrderPayload,
    PaymentPayload,
)
from whatsapp_parser.patterns import (
    ADDRESS_RULE,
    AMOUNT_RULES,
    BANK_DISPLAY_NAMES,
    DELIVERY_TIME_RULE,
    NAME_RULE,
    ORDER_RULES,
    PAYMENT_METHOD_RULES,
    PHONE_RULE,
    UNIT_WORDS,
)
from whatsapp_parser.phone import first_number, normalize_phone

Span = Tuple[int, int]


def parse_amount(raw: Optional[str]) -> Optional[float]:
    """'1,250.50' -> 1250.5; None for missing or unparseable input."""
    if not raw:
        return None
    try:
        return float(raw.replace(",", ""))
    except ValueError:
        return None


def first_amount(text: str) -> Tuple[Optional[float], float]:
    """Return (amount, rule weight) for the first amount rule that matches."""
    for rule in AMOUNT_RULES:
        match = rule.regex.search(text)
        if match:
            return parse_amount(match.group(1)), rule.confidence
    return None, 0.0


def _clean_item_name(raw: Optional[str]) -> str:
    name = UNIT_WORDS.sub("", (raw or "").strip())
    name = re.sub(r"\s+", " ", name)
    return name.strip(" -/&'")


def _overlaps(span: Span, claimed: List[Span]) -> bool:
    start, end = span
    return any(start < c_end and c_start < end for c_start, c_end in claimed)


class MessageExtractor:
    """Turns classified text into a typed payload with a confidence score."""

    PAYMENT_BASELINE: float = 0.6
    DELIVERY_BASELINE: float = 0.5

    def extract(self, category: Category, text: str, message: InboundMessage) -> ExtractionResult:
        """Dispatch to the extractor for ``category``.

        ``text`` is the trimmed message content; customer inquiries get no
        payload here, the pipeline assigns their fixed confidence.
        """
        if category == Category.ORDER:
            return self.extract_order(text, message)
        if category == Category.PAYMENT:
            return self.extract_payment(text, message)
        if category == Category.DELIVERY_CONFIRMATION:
            return self.extract_delivery(text, message)
        return ExtractionResult.inquiry(message.content)

    # ==================== Order ====================

    def extract_order(self, text: str, message: InboundMessage) -> ExtractionResult:
        """Collect line items from every order rule, plus total and customer.

        Rules are not mutually exclusive: a message with several phrasings
        yields several items. Two rules matching the same stretch of text
        (``nak 2 nasi lemak rm15`` hits both the verb and the priced rule)
        produce one item; the later match still counts toward confidence.
        """
        items: List[OrderItem] = []
        claimed: List[Span] = []
        confidence = 0.0

        for rule in ORDER_RULES:
            for match in rule.regex.finditer(text):
                name = _clean_item_name(match.group(2))
                if not name:
                    continue
                confidence = max(confidence, rule.confidence)

                span = match.span(2)
                if _overlaps(span, claimed):
                    continue
                claimed.append(span)

                quantity = int(match.group(1)) if match.group(1) else 1
                price = parse_amount(match.group(3))
                items.append(OrderItem(
                    name=name,
                    quantity=max(quantity, 1),
                    unit_price=price if price and price > 0 else None,
                ))

        total, weight = first_amount(text)
        if weight:
            confidence = max(confidence, weight)

        customer_name = self._search(NAME_RULE, text) or message.sender_display_name
        customer_phone = self._search_phone(text) or message.sender_phone

        payload = OrderPayload(
            customer_name=customer_name,
            customer_phone=normalize_phone(customer_phone) if customer_phone else None,
            items=items,
            total_amount=total if total and total > 0 else None,
            notes=text,
        )
        return ExtractionResult(
            category=Category.ORDER,
            confidence=confidence,
            raw_text=message.content,
            payload=payload,
        )

    # ==================== Payment ====================

    def extract_payment(self, text: str, message: InboundMessage) -> ExtractionResult:
        """Amount, method, reference and bank from a payment confirmation.

        The reported method comes from the heaviest matching method rule, so
        a named bank (0.95) outranks a bare "transfer" token (0.85).
        """
        confidence = self.PAYMENT_BASELINE

        amount, weight = first_amount(text)
        if weight:
            confidence = max(confidence, weight)

        method = "Unknown"
        method_weight = 0.0
        captured = {}

        for rule in PAYMENT_METHOD_RULES:
            match = rule.regex.search(text)
            if not match:
                continue
            confidence = max(confidence, rule.confidence)
            if rule.field and rule.field not in captured:
                captured[rule.field] = match.group(1)
            if rule.method and rule.confidence > method_weight:
                method = rule.method
                method_weight = rule.confidence

        bank_name = None
        if "bank_name" in captured:
            key = re.sub(r"\s+", "", captured["bank_name"].lower())
            bank_name = BANK_DISPLAY_NAMES.get(key, captured["bank_name"])

        payload = PaymentPayload(
            amount=amount or 0.0,
            method=method,
            reference_number=captured.get("reference_number"),
            bank_name=bank_name,
            sender_info=message.sender_display_name,
        )
        return ExtractionResult(
            category=Category.PAYMENT,
            confidence=confidence,
            raw_text=message.content,
            payload=payload,
        )

    # ==================== Delivery ====================

    def extract_delivery(self, text: str, message: InboundMessage) -> ExtractionResult:
        confidence = self.DELIVERY_BASELINE

        address = self._search(ADDRESS_RULE, text)
        if address:
            confidence = max(confidence, ADDRESS_RULE.confidence)

        phone = self._search_phone(text)
        if phone:
            confidence = max(confidence, PHONE_RULE.confidence)

        # Instructions are not parsed separately; the whole text is kept.
        payload = DeliveryPayload(
            address=address,
            delivery_time=self._search(DELIVERY_TIME_RULE, text),
            instructions=text,
            customer_phone=normalize_phone(phone) if phone else None,
        )
        return ExtractionResult(
            category=Category.DELIVERY_CONFIRMATION,
            confidence=confidence,
            raw_text=message.content,
            payload=payload,
        )

    @staticmethod
    def _search(rule, text: str) -> Optional[str]:
        match = rule.regex.search(text)
        if not match:
            return None
        value = match.group(1).strip()
        return value or None

    def _search_phone(self, text: str) -> Optional[str]:
        raw = self._search(PHONE_RULE, text)
        return first_number(raw) if raw else None


# Module-level singleton
extractor = MessageExtractor()
