"""
Validating mutators for the workshop state.

Every function takes a :class:`WorkshopState` and returns the next, fully
renormalized state. Validation is fail-fast: an invalid reference or value
raises before anything is applied, so callers never see a partial update.
"""

import dataclasses
import logging
from datetime import datetime
from typing import Any, Iterable, Optional

from utils.constants import (
    ITEM_CATEGORIES,
    LOOKBACK_DAYS_MAX,
    LOOKBACK_DAYS_MIN,
    PRICE_HISTORY_LIMIT,
    SIGNAL_THRESHOLD_MAX,
    SIGNAL_THRESHOLD_MIN,
)
from utils.names import clean_display_name, normalize_item_name
from utils.timefmt import now_utc, parse_instant

from .crafting import find_recipe_cycle
from .errors import DuplicateItemError, ValidationError
from .models import InventoryRow, Item, PriceSnapshot, Recipe, RecipeInput, WorkshopState
from .state import (
    items_by_id,
    new_id,
    normalize_recipe_inputs,
    renormalize,
    require_int,
    require_item,
)

log = logging.getLogger(__name__)


def _optional_text(raw: Optional[str]) -> Optional[str]:
    return raw.strip() or None if isinstance(raw, str) else None


def upsert_item(state: WorkshopState, name: str, category: str = "material",
                icon: Optional[str] = None, notes: Optional[str] = None,
                item_id: Optional[str] = None, now: Optional[datetime] = None) -> WorkshopState:
    """Create an item, or update the one with ``item_id``."""
    now = now or now_utc()
    clean = clean_display_name(name)
    if not clean:
        raise ValidationError("Item name must not be empty.")
    if category not in ITEM_CATEGORIES:
        raise ValidationError(f"Unknown item category: {category}")

    key = normalize_item_name(clean)
    duplicate = next((it for it in state.items if it.id != item_id and normalize_item_name(it.name) == key), None)
    if duplicate is not None:
        raise DuplicateItemError(f"Duplicate item name: {duplicate.name}")

    existing = items_by_id(state).get(item_id) if item_id else None
    if existing is not None:
        next_item = dataclasses.replace(
            existing, name=clean, category=category,
            icon=_optional_text(icon), notes=_optional_text(notes), updated_at=now,
        )
    else:
        next_item = Item(
            id=new_id(), name=clean, category=category,
            icon=_optional_text(icon), notes=_optional_text(notes),
            created_at=now, updated_at=now,
        )

    items = tuple(it for it in state.items if it.id != next_item.id) + (next_item,)
    return renormalize(dataclasses.replace(state, items=items))


def delete_item(state: WorkshopState, item_id: str) -> WorkshopState:
    """Remove an item and cascade to recipes, prices and inventory referencing it."""
    if item_id not in items_by_id(state):
        return state
    return renormalize(dataclasses.replace(
        state,
        items=tuple(it for it in state.items if it.id != item_id),
        recipes=tuple(
            r for r in state.recipes
            if r.output_item_id != item_id and all(i.item_id != item_id for i in r.inputs)
        ),
        prices=tuple(p for p in state.prices if p.item_id != item_id),
        inventory=tuple(row for row in state.inventory if row.item_id != item_id),
    ))


def _validated_inputs(raw_inputs: Iterable[Any]) -> tuple:
    checked = []
    for entry in raw_inputs or ():
        if isinstance(entry, RecipeInput):
            item_id, quantity = entry.item_id, entry.quantity
        elif isinstance(entry, dict):
            item_id, quantity = entry.get("item_id"), entry.get("quantity")
        elif isinstance(entry, (list, tuple)) and len(entry) == 2:
            item_id, quantity = entry
        else:
            raise ValidationError("Malformed recipe input.")
        if not isinstance(item_id, str) or not item_id:
            raise ValidationError("Recipe input is missing an item id.")
        checked.append(RecipeInput(item_id=item_id, quantity=require_int(quantity, "Input quantity", minimum=1)))
    return normalize_recipe_inputs(checked)


def upsert_recipe(state: WorkshopState, output_item_id: str, output_quantity: Any,
                  inputs: Iterable[Any], recipe_id: Optional[str] = None,
                  now: Optional[datetime] = None) -> WorkshopState:
    """
    Create or replace the recipe producing ``output_item_id``.

    Saving a recipe that closes a cycle is allowed; it is only logged here
    and rejected when the recipe is expanded.
    """
    require_item(state, output_item_id)
    quantity = require_int(output_quantity, "Output quantity", minimum=1)

    normalized = _validated_inputs(inputs)
    if not normalized:
        raise ValidationError("A recipe needs at least one input.")
    for inp in normalized:
        require_item(state, inp.item_id)
    if any(inp.item_id == output_item_id for inp in normalized):
        raise ValidationError("Recipe inputs must not include the output item.")

    duplicate = next(
        (r for r in state.recipes if r.id != recipe_id and r.output_item_id == output_item_id), None
    )
    if duplicate is not None:
        raise ValidationError("Only one recipe per output item is allowed; delete the old recipe first.")

    recipe = Recipe(
        id=recipe_id or new_id(),
        output_item_id=output_item_id,
        output_quantity=quantity,
        inputs=normalized,
        updated_at=now or now_utc(),
    )
    next_state = renormalize(dataclasses.replace(
        state, recipes=tuple(r for r in state.recipes if r.id != recipe.id) + (recipe,)
    ))

    cycle = find_recipe_cycle(next_state, output_item_id)
    if cycle:
        names = items_by_id(next_state)
        log.warning("Saved recipe closes a cycle: %s",
                    " -> ".join(names[i].name if i in names else i for i in cycle))
    return next_state


def delete_recipe(state: WorkshopState, recipe_id: str) -> WorkshopState:
    if not any(r.id == recipe_id for r in state.recipes):
        return state
    return renormalize(dataclasses.replace(
        state, recipes=tuple(r for r in state.recipes if r.id != recipe_id)
    ))


def add_price_snapshot(state: WorkshopState, item_id: str, unit_price: Any,
                       captured_at: Any = None, source: str = "manual",
                       note: Optional[str] = None, now: Optional[datetime] = None,
                       history_limit: int = PRICE_HISTORY_LIMIT) -> WorkshopState:
    """Append a price observation; the log keeps the newest ``history_limit`` entries."""
    require_item(state, item_id)
    price = require_int(unit_price, "Unit price", minimum=0)
    if captured_at is None:
        captured = now or now_utc()
    else:
        captured = parse_instant(captured_at)
        if captured is None:
            raise ValidationError(f"Unparsable capture time: {captured_at!r}")

    snapshot = PriceSnapshot(
        id=new_id(),
        item_id=item_id,
        unit_price=price,
        captured_at=captured,
        source="import" if source == "import" else "manual",
        note=_optional_text(note),
    )
    prices = (state.prices + (snapshot,))[-history_limit:]
    return renormalize(dataclasses.replace(state, prices=prices), history_limit=history_limit)


def upsert_inventory(state: WorkshopState, item_id: str, quantity: Any,
                     now: Optional[datetime] = None) -> WorkshopState:
    """Set the owned quantity of an item; zero removes the row."""
    require_item(state, item_id)
    count = require_int(quantity, "Inventory quantity", minimum=0)
    rows = tuple(row for row in state.inventory if row.item_id != item_id)
    if count > 0:
        rows += (InventoryRow(item_id=item_id, quantity=count, updated_at=now or now_utc()),)
    return renormalize(dataclasses.replace(state, inventory=rows))


def update_signal_rule(state: WorkshopState, enabled: Optional[bool] = None,
                       lookback_days: Any = None,
                       drop_below_weekday_average_ratio: Any = None) -> WorkshopState:
    """Change the persisted signal rule; out-of-range values raise."""
    rule = state.signal_rule
    if enabled is not None:
        rule = dataclasses.replace(rule, enabled=bool(enabled))
    if lookback_days is not None:
        days = require_int(lookback_days, "Lookback days", minimum=LOOKBACK_DAYS_MIN)
        if days > LOOKBACK_DAYS_MAX:
            raise ValidationError(f"Lookback days must be at most {LOOKBACK_DAYS_MAX}.")
        rule = dataclasses.replace(rule, lookback_days=days)
    if drop_below_weekday_average_ratio is not None:
        ratio = drop_below_weekday_average_ratio
        if (isinstance(ratio, bool) or not isinstance(ratio, (int, float))
                or not SIGNAL_THRESHOLD_MIN <= ratio <= SIGNAL_THRESHOLD_MAX):
            raise ValidationError(
                f"Threshold ratio must be within [{SIGNAL_THRESHOLD_MIN}, {SIGNAL_THRESHOLD_MAX}]."
            )
        rule = dataclasses.replace(rule, drop_below_weekday_average_ratio=float(ratio))
    return renormalize(dataclasses.replace(state, signal_rule=rule))


__all__ = [
    "upsert_item",
    "delete_item",
    "upsert_recipe",
    "delete_recipe",
    "add_price_snapshot",
    "upsert_inventory",
    "update_signal_rule",
]
