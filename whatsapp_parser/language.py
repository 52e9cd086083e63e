"""Keyword heuristic telling Malay and English chat text apart.

Only used to tag training samples; extraction rules already cover both
languages, so the result never gates parsing.
"""

from typing import Tuple

MALAY_WORDS: Tuple[str, ...] = (
    'nak', 'mau', 'dah', 'sudah', 'beli', 'pesan', 'alamat', 'hantar',
)
ENGLISH_WORDS: Tuple[str, ...] = (
    'want', 'need', 'buy', 'order', 'address', 'deliver', 'paid', 'done',
)


def detect_language(text: str) -> str:
    """Return "ms" when more Malay keywords are present than English ones, else "en"."""
    lowered = (text or '').lower()
    malay = sum(1 for word in MALAY_WORDS if word in lowered)
    english = sum(1 for word in ENGLISH_WORDS if word in lowered)
    return 'ms' if malay > english else 'en'
