"""Trailing filler-token cleanup for final transcripts."""

from __future__ import annotations

import logging
import re
from typing import Iterable

logger = logging.getLogger(__name__)

FILLER_TOKENS = ("以上", "いじょう", "イジョウ")

_TRAILING_PUNCT = re.compile(r"[。、．，.,!?！？\s]+$")


def filter_text(text: str, tokens: Iterable[str] = FILLER_TOKENS) -> str:
    """Strip trailing filler tokens and sentence-ending punctuation.

    Only a token at the very end of the text is removed; earlier
    occurrences are kept as spoken.
    """
    filtered = _TRAILING_PUNCT.sub("", text)
    for token in tokens:
        filtered = re.sub(rf"\s*{re.escape(token)}\s*$", "", filtered, flags=re.IGNORECASE)
    filtered = _TRAILING_PUNCT.sub("", filtered).strip()
    if filtered != text:
        logger.debug("Filtered text: %r -> %r", text, filtered)
    return filtered
