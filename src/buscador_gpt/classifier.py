"""Heuristic complexity classifier for user requests."""

from __future__ import annotations

from collections.abc import Iterable

from .config import DETAILED_KEYWORDS, DETAILED_LENGTH_THRESHOLD
from .models import Tier


def classify(
    text: str | None,
    *,
    threshold: int = DETAILED_LENGTH_THRESHOLD,
    keywords: Iterable[str] = DETAILED_KEYWORDS,
) -> Tier:
    """Classify a request as BASIC or DETAILED.

    A request is DETAILED when it is longer than ``threshold`` characters or
    contains any planning/analysis keyword (case-insensitive substring match).
    Either condition alone is enough.
    """
    text = text or ""
    if len(text) > threshold:
        return Tier.DETAILED
    txt = text.lower()
    if any(k.lower() in txt for k in keywords):
        return Tier.DETAILED
    return Tier.BASIC
