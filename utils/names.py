"""Helpers for matching and ordering item display names.

Catalog imports and OCR output refer to items by free text, so names are
compared through :func:`normalize_item_name` rather than verbatim.
"""

from __future__ import annotations

import re
import unicodedata
from typing import Tuple

_IMPRINT_TAG = re.compile(r"[(（]\s*imprint\s*[)）]", re.IGNORECASE)


def clean_display_name(raw: str | None) -> str:
    """Trim ``raw`` and collapse runs of whitespace to single spaces."""
    return " ".join(str(raw or "").split())


def normalize_item_name(raw: str | None) -> str:
    """Return the lookup key used for name-based item resolution.

    Trims, strips an optional ``(imprint)`` tag, collapses internal
    whitespace and case-folds.
    """
    text = _IMPRINT_TAG.sub(" ", str(raw or ""))
    return " ".join(text.split()).casefold()


def name_sort_key(name: str) -> Tuple[str, str]:
    """Sort key approximating a locale-aware, case-insensitive ordering."""
    folded = unicodedata.normalize("NFKC", name).casefold()
    return folded, name


__all__ = ["clean_display_name", "normalize_item_name", "name_sort_key"]
