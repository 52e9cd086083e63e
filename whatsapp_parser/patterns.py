"""Declarative rule tables for WhatsApp business-message extraction.

Each rule is a compiled regex plus the language it targets and the
confidence weight it contributes when it matches. Extractors walk these
tables in order and keep the running maximum of matched weights, so adding
a phrasing variant or another language is a data change here, not a new
code path in the extractors.

All regexes are compiled case-insensitive and are run against the trimmed
original text so captured values (names, reference numbers) keep their case.
"""

import re
from dataclasses import dataclass
from typing import Dict, Optional, Pattern, Tuple


@dataclass(frozen=True)
class PatternRule:
    """One extraction rule: regex, target language ("ms"/"en"/"both") and weight."""
    name: str
    regex: Pattern
    language: str
    confidence: float
    method: Optional[str] = None
    field: Optional[str] = None


def _rule(name: str, pattern: str, language: str, confidence: float,
          method: Optional[str] = None, field: Optional[str] = None) -> PatternRule:
    return PatternRule(
        name=name,
        regex=re.compile(pattern, re.IGNORECASE),
        language=language,
        confidence=confidence,
        method=method,
        field=field,
    )


# ================================================================
# CLASSIFIER KEYWORDS: checked in this order: order, payment, delivery
# ================================================================
ORDER_KEYWORDS: Tuple[str, ...] = (
    'nak', 'mau', 'order', 'pesan', 'beli', 'want', 'need', 'buy',
    'ambil', 'take', 'booking',
)

PAYMENT_KEYWORDS: Tuple[str, ...] = (
    'dah transfer', 'sudah bayar', 'done payment', 'paid', 'transfer done',
    'ref:', 'reference', 'receipt', 'maybank', 'cimb', 'public bank',
)

DELIVERY_KEYWORDS: Tuple[str, ...] = (
    'alamat', 'address', 'hantar', 'deliver', 'pos', 'courier',
    'sampai bila', 'when arrive', 'location',
)


# ================================================================
# SHARED FRAGMENTS
# ================================================================
_PRICE = r'((?:\d{1,3}(?:,\d{3})+|\d+)(?:\.\d{1,2})?)'
_CURRENCY_MS = r'(?:\brm|\bringgit)'
_CURRENCY_EN = r'(?:\brm|\bringgit|\$)'
_UNIT = r'(?:pcs|pc|pieces|units?|keping|biji|bungkus|kotak|x)'

# Item names never start with an order verb or a currency word and never
# contain digits; the quantity of the next line item ends the name.
_ITEM = (
    r"((?!(?:nak|mau|order|pesan|beli|ambil|want|need|buy|take|rm|ringgit)\b)"
    r"[a-z][a-z'&/\- ]*?)"
)
_ITEM_END = (
    r'(?=\s*(?:[,;.\n\r$]|$|\d'
    r'|(?:and|dan|nama|name|hp|phone|tel|no|alamat|address|total|rm|ringgit)\b))'
)

UNIT_WORDS = re.compile(r'^(?:' + _UNIT + r'\b\s*)+', re.IGNORECASE)


# ================================================================
# ORDER LINE-ITEM RULES: groups: (quantity, item, unit price)
# ================================================================
ORDER_RULES: Tuple[PatternRule, ...] = (
    # nak 2 nasi lemak rm15 / beli 3 biji kuih
    _rule(
        'ms_order_verb',
        r'\b(?:nak|mau|order|pesan|beli|ambil)\s+(?:(\d+)\s*(?:' + _UNIT + r'\b\s*)?)?'
        + _ITEM + r'(?:\s*' + _CURRENCY_MS + r'\s*' + _PRICE + r')?' + _ITEM_END,
        'ms', 0.85,
    ),
    # 2 keping roti canai rm3
    _rule(
        'ms_priced_item',
        r'\b(\d+)\s*(?:' + _UNIT + r'\b\s*)?' + _ITEM + r'\s*' + _CURRENCY_MS + r'\s*' + _PRICE,
        'ms', 0.9,
    ),
    # want 3 pcs chicken rm25 / buy 2x burger
    _rule(
        'en_order_verb',
        r'\b(?:want|need|order|buy|take)\s+(?:(\d+)\s*(?:' + _UNIT + r'\b\s*)?)?'
        + _ITEM + r'(?:\s*' + _CURRENCY_EN + r'\s*' + _PRICE + r')?' + _ITEM_END,
        'en', 0.85,
    ),
    # 3 pcs chicken $25
    _rule(
        'en_priced_item',
        r'\b(\d+)\s*(?:' + _UNIT + r'\b\s*)?' + _ITEM + r'\s*' + _CURRENCY_EN + r'\s*' + _PRICE,
        'en', 0.9,
    ),
)


# ================================================================
# AMOUNT RULES: first match wins, group 1 is the amount. A "total" label
# only counts with a colon or a currency word after it.
# ================================================================
AMOUNT_CONFIDENCE: float = 0.8

AMOUNT_RULES: Tuple[PatternRule, ...] = (
    _rule('currency_prefix', _CURRENCY_EN + r'\s*' + _PRICE, 'both', AMOUNT_CONFIDENCE),
    _rule('currency_suffix', r'\b' + _PRICE + r'\s*' + _CURRENCY_MS + r'\b', 'ms', AMOUNT_CONFIDENCE),
    _rule(
        'total_amount',
        r'\btotal\s*(?::\s*' + _CURRENCY_EN + r'?|' + _CURRENCY_EN + r')\s*' + _PRICE,
        'both', AMOUNT_CONFIDENCE,
    ),
)


# ================================================================
# CUSTOMER / DELIVERY FIELD RULES: group 1 is the field value
# ================================================================
NAME_RULE = _rule(
    'customer_name',
    r'\b(?:nama|name)\s*:?\s*([^\n\r,;:]+?)'
    r'(?=\s+(?:hp|phone|tel|no|alamat|address)\b|\s*[,;\n\r]|\s*$)',
    'both', 0.0,
)

PHONE_RULE = _rule(
    'customer_phone',
    r'\b(?:hp|phone|tel|no)\s*[:.]?\s*(\+?\d[\d\s\-]{7,14}\d)',
    'both', 0.7,
)

ADDRESS_RULE = _rule(
    'delivery_address',
    r'\b(?:alamat|address)\s*:?\s*([0-9a-z][^\n\r]*?)'
    r'(?=\s+(?:hp|phone|tel|nama|name)\s*[:.]|\s*[\n\r]|\s*$)',
    'both', 0.8,
)

DELIVERY_TIME_RULE = _rule(
    'delivery_time',
    r'\b(esok|lusa|tomorrow|today|tonight|hari ini|malam ini|petang ini|pagi ini'
    r'|(?:pukul|jam|at|by|before|sebelum)\s*\d{1,2}(?:[:.]\d{2})?\s*(?:am|pm|pagi|petang|malam)?'
    r'|\d{1,2}(?:[:.]\d{2})?\s*(?:am|pm))(?![a-z])',
    'both', 0.0,
)


# ================================================================
# PAYMENT METHOD RULES: reported method comes from the highest weight
# ================================================================
BANK_TRANSFER = 'Bank Transfer'

PAYMENT_METHOD_RULES: Tuple[PatternRule, ...] = (
    _rule(
        'reference_number',
        r'\bref(?:erence)?\b\.?\s*(?:no\b\.?|number\b|#)?\s*[:#]?\s*'
        r'((?!(?:no|number)\b)[a-z0-9][a-z0-9\-]*)',
        'both', 0.9, BANK_TRANSFER, field='reference_number',
    ),
    _rule(
        'bank_name',
        r'\b(maybank|cimb|public\s*bank|rhb|bank\s*islam|hong\s*leong|ocbc|uob)\b',
        'both', 0.95, BANK_TRANSFER, field='bank_name',
    ),
    _rule('transfer_token', r'\b(?:transfer|trf|bank\s*in|banked\s*in)\b', 'both', 0.85, BANK_TRANSFER),
    _rule('duitnow', r'\bduit\s*now\b', 'ms', 0.85, 'DuitNow'),
    _rule(
        'e_wallet',
        r"\b(?:tng|touch\s*'?n\s*go|grab\s*pay|boost|shopee\s*pay)\b",
        'both', 0.85, 'E-Wallet',
    ),
    _rule('cash', r'\b(?:cash|tunai)\b', 'both', 0.7, 'Cash'),
)

BANK_DISPLAY_NAMES: Dict[str, str] = {
    'maybank':    'Maybank',
    'cimb':       'CIMB',
    'publicbank': 'Public Bank',
    'rhb':        'RHB',
    'bankislam':  'Bank Islam',
    'hongleong':  'Hong Leong',
    'ocbc':       'OCBC',
    'uob':        'UOB',
}
