"""Search token normalization for the contacts.words column."""

from __future__ import annotations

from typing import Iterable, List, Optional
import re
import unicodedata

MIN_WORD_LENGTH = 2

_SEPARATORS = re.compile(r"[\s;,\"'/+-]+")


def _strip_accents(value: str) -> str:
    decomposed = unicodedata.normalize("NFKD", value)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def tokenize(value: str) -> List[str]:
    """Split a field into lowercase, accent-free tokens."""
    tokens = []
    for token in _SEPARATORS.split(_strip_accents(value).lower()):
        if len(token) >= MIN_WORD_LENGTH:
            tokens.append(token)
    return tokens


def normalize_words(values: Iterable[Optional[str]]) -> str:
    """Build the space-delimited search string for a contact.

    The result carries a leading and trailing space so ``LIKE '% token%'``
    matches the start of any word. Duplicates keep their first position.
    """
    seen: dict[str, None] = {}
    for value in values:
        if not value:
            continue
        for token in tokenize(str(value)):
            seen.setdefault(token, None)
    if not seen:
        return ""
    return " " + " ".join(seen) + " "
