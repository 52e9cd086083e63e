"""Keyword classifier assigning exactly one category to a chat message.

Precedence is fixed: order, then payment, then delivery, then the
customer-inquiry fallback. A message such as "nak order, dah transfer rm20"
carries both order and payment language and is classified as an order.
"""

from typing import Tuple

from whatsapp_parser.models import Category
from whatsapp_parser.patterns import DELIVERY_KEYWORDS, ORDER_KEYWORDS, PAYMENT_KEYWORDS


class MessageClassifier:
    """Substring keyword matcher over lower-cased, trimmed text. Holds no state."""

    RULES: Tuple[Tuple[Category, Tuple[str, ...]], ...] = (
        (Category.ORDER,                 ORDER_KEYWORDS),
        (Category.PAYMENT,               PAYMENT_KEYWORDS),
        (Category.DELIVERY_CONFIRMATION, DELIVERY_KEYWORDS),
    )

    def classify(self, text: str) -> Category:
        lowered = (text or "").lower().strip()
        for category, keywords in self.RULES:
            if any(kw in lowered for kw in keywords):
                return category
        return Category.CUSTOMER_INQUIRY


# Module-level singleton
classifier = MessageClassifier()


def classify(text: str) -> Category:
    return classifier.classify(text)
