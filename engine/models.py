"""
Domain records for the workshop economy.

All records are immutable dataclasses; mutators in :mod:`engine.mutations`
return new :class:`WorkshopState` values instead of editing in place.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Tuple

from utils.constants import DEFAULT_LOOKBACK_DAYS, DEFAULT_SIGNAL_THRESHOLD, WORKSHOP_STATE_VERSION


@dataclass(frozen=True)
class Item:
    """A named catalog entry."""
    id: str
    name: str
    category: str
    created_at: datetime
    updated_at: datetime
    icon: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class RecipeInput:
    item_id: str
    quantity: int


@dataclass(frozen=True)
class Recipe:
    """Produces ``output_quantity`` of one item from a multiset of inputs."""
    id: str
    output_item_id: str
    output_quantity: int
    inputs: Tuple[RecipeInput, ...]
    updated_at: datetime


@dataclass(frozen=True)
class PriceSnapshot:
    """One observed unit price for an item."""
    id: str
    item_id: str
    unit_price: int
    captured_at: datetime
    source: str = "manual"
    note: Optional[str] = None


@dataclass(frozen=True)
class InventoryRow:
    item_id: str
    quantity: int
    updated_at: datetime


@dataclass(frozen=True)
class SignalRule:
    """Persisted default for the buy-signal detector."""
    enabled: bool = True
    lookback_days: int = DEFAULT_LOOKBACK_DAYS
    drop_below_weekday_average_ratio: float = DEFAULT_SIGNAL_THRESHOLD


@dataclass(frozen=True)
class WorkshopState:
    """Whole-document state handed between the store and the engine."""
    version: int = WORKSHOP_STATE_VERSION
    items: Tuple[Item, ...] = ()
    recipes: Tuple[Recipe, ...] = ()
    prices: Tuple[PriceSnapshot, ...] = ()
    inventory: Tuple[InventoryRow, ...] = ()
    signal_rule: SignalRule = field(default_factory=SignalRule)
