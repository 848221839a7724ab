"""Shared constants for the Workshop Economy Simulator project."""

from __future__ import annotations

# Version of the persisted workshop state document.
WORKSHOP_STATE_VERSION = 1

# Price snapshots are an append-only log; only the newest entries are kept.
PRICE_HISTORY_LIMIT = 8000

ITEM_CATEGORIES = ("material", "equipment", "component", "other")
DEFAULT_ITEM_CATEGORY = "material"
PRICE_SOURCES = ("manual", "import")

DEFAULT_TAX_RATE = 0.1
TAX_RATE_MIN = 0.0
TAX_RATE_MAX = 0.95

EXPANSION_MODES = ("expanded", "direct")

MOVING_AVERAGE_WINDOW = 7
DEFAULT_LOOKBACK_DAYS = 30
LOOKBACK_DAYS_MIN = 1
LOOKBACK_DAYS_MAX = 365

DEFAULT_SIGNAL_THRESHOLD = 0.08
SIGNAL_THRESHOLD_MIN = 0.01
SIGNAL_THRESHOLD_MAX = 0.5

NEAR_CRAFT_SORT_MODES = ("max_budget_profit", "min_gap_cost")

__all__ = [
    "WORKSHOP_STATE_VERSION",
    "PRICE_HISTORY_LIMIT",
    "ITEM_CATEGORIES",
    "DEFAULT_ITEM_CATEGORY",
    "PRICE_SOURCES",
    "DEFAULT_TAX_RATE",
    "TAX_RATE_MIN",
    "TAX_RATE_MAX",
    "EXPANSION_MODES",
    "MOVING_AVERAGE_WINDOW",
    "DEFAULT_LOOKBACK_DAYS",
    "LOOKBACK_DAYS_MIN",
    "LOOKBACK_DAYS_MAX",
    "DEFAULT_SIGNAL_THRESHOLD",
    "SIGNAL_THRESHOLD_MIN",
    "SIGNAL_THRESHOLD_MAX",
    "NEAR_CRAFT_SORT_MODES",
]
