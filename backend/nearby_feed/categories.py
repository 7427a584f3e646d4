"""
categories.py
~~~~~~~~~~~~~
Category browsing derived from the records the app already holds.

* :func:`popular_categories` – most frequent categories first.
* :func:`suggest_categories` – categories matching a typed query, prefix
  matches ahead of substring matches.

``"Uncategorized"`` never shows up in either list.
"""

from __future__ import annotations

from collections import Counter
from typing import Iterable

from .models import BusinessRecord

UNCATEGORIZED = "Uncategorized"
DEFAULT_LIMIT = 5


def _counts(records: Iterable[BusinessRecord]) -> Counter[str]:
    counts: Counter[str] = Counter()
    for rec in records:
        category = rec.category.strip()
        if category and category != UNCATEGORIZED:
            counts[category] += 1
    return counts


def popular_categories(records: Iterable[BusinessRecord], limit: int = DEFAULT_LIMIT) -> list[str]:
    """Categories by record count (desc), ties alphabetical."""
    counts = _counts(records)
    ranked = sorted(counts, key=lambda c: (-counts[c], c.lower()))
    return ranked[: max(0, limit)]


def suggest_categories(
    records: Iterable[BusinessRecord],
    query: str,
    limit: int = DEFAULT_LIMIT,
) -> list[str]:
    """
    Case-insensitive match of *query* against known categories.

    An empty query falls back to :func:`popular_categories`.
    """
    records = list(records)
    needle = query.strip().lower()
    if not needle:
        return popular_categories(records, limit)

    counts = _counts(records)
    hits = [c for c in counts if needle in c.lower()]
    hits.sort(key=lambda c: (not c.lower().startswith(needle), -counts[c], c.lower()))
    return hits[: max(0, limit)]


__all__ = ["popular_categories", "suggest_categories"]
