"""Malaysian phone-number normalization for extracted and sender numbers."""

import re

_NON_DIGIT = re.compile(r'\D')


def normalize_phone(raw: str) -> str:
    """Canonicalize a raw phone substring to +60 international format.

    "0123456789" -> "+60123456789", "60123456789" -> "+60123456789",
    bare 9+ digit numbers get "+60" prepended. Anything shorter is returned
    untouched rather than guessed at.
    """
    cleaned = _NON_DIGIT.sub('', raw or '')

    if cleaned.startswith('60'):
        return f"+{cleaned}"
    if cleaned.startswith('0'):
        return f"+6{cleaned}"
    if len(cleaned) >= 9:
        return f"+60{cleaned}"

    return raw


MIN_NUMBER_DIGITS = 9


def first_number(raw: str) -> str:
    """Cut a captured digit run down to a single phone number.

    Space-separated groups are joined only while the number is still short
    of ``MIN_NUMBER_DIGITS``, so "0123456789 2" (a quantity right after the
    number) keeps just "0123456789" while "012 345 6789" stays whole.
    """
    groups = raw.split()
    if not groups:
        return raw
    number = groups[0]
    for group in groups[1:]:
        if len(_NON_DIGIT.sub('', number)) >= MIN_NUMBER_DIGITS:
            break
        number = f"{number} {group}"
    return number
