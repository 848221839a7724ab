"""
State normalization for the workshop engine.

Turns an untrusted state document (as loaded from the store or an import)
into a validated :class:`WorkshopState`, renders it back to a serializable
document, and offers the lookup maps the calculators share.
"""

import math
import uuid
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from utils.constants import (
    DEFAULT_ITEM_CATEGORY,
    ITEM_CATEGORIES,
    PRICE_HISTORY_LIMIT,
    WORKSHOP_STATE_VERSION,
)
from utils.names import clean_display_name, name_sort_key, normalize_item_name
from utils.sanitize import (
    sanitize_lookback_days,
    sanitize_signal_threshold,
    to_non_negative_int,
    to_positive_int,
)
from utils.timefmt import as_utc, now_utc, to_iso

from .errors import ItemNotFoundError, ValidationError
from .models import InventoryRow, Item, PriceSnapshot, Recipe, RecipeInput, SignalRule, WorkshopState


def new_id() -> str:
    return str(uuid.uuid4())


def _field(raw: Mapping[str, Any], *keys: str) -> Any:
    """Return the first present key; documents may use snake or camel case."""
    for key in keys:
        if key in raw:
            return raw[key]
    return None


def _text(raw: Any) -> str:
    return raw.strip() if isinstance(raw, str) else ""


def sanitize_category(raw: Any) -> str:
    if raw in ITEM_CATEGORIES:
        return raw
    return DEFAULT_ITEM_CATEGORY


def normalize_recipe_inputs(raw: Any) -> Tuple[RecipeInput, ...]:
    """Deduplicate inputs by item id (quantities summed) and sort them."""
    if not isinstance(raw, (list, tuple)):
        return ()

    dedup: Dict[str, int] = {}
    for entry in raw:
        if isinstance(entry, RecipeInput):
            item_id, quantity = entry.item_id, entry.quantity
        elif isinstance(entry, Mapping):
            item_id = _field(entry, "item_id", "itemId")
            quantity = entry.get("quantity")
        elif isinstance(entry, (list, tuple)) and len(entry) == 2:
            item_id, quantity = entry
        else:
            continue
        if not isinstance(item_id, str) or not item_id:
            continue
        quantity = to_positive_int(quantity, 0)
        if quantity <= 0:
            continue
        dedup[item_id] = dedup.get(item_id, 0) + quantity

    return tuple(RecipeInput(item_id=k, quantity=v) for k, v in sorted(dedup.items()))


def _normalize_item(raw: Any, index: int, now: datetime) -> Optional[Item]:
    if not isinstance(raw, Mapping):
        return None
    item_id = _text(raw.get("id")) or new_id()
    fallback_name = f"Item-{index + 1}"
    name = clean_display_name(raw.get("name") if isinstance(raw.get("name"), str) else "") or fallback_name
    return Item(
        id=item_id,
        name=name,
        category=sanitize_category(raw.get("category")),
        icon=_text(raw.get("icon")) or None,
        notes=_text(raw.get("notes")) or None,
        created_at=as_utc(_field(raw, "created_at", "createdAt"), now),
        updated_at=as_utc(_field(raw, "updated_at", "updatedAt"), now),
    )


def _normalize_recipe(raw: Any, now: datetime) -> Optional[Recipe]:
    if not isinstance(raw, Mapping):
        return None
    output_item_id = _text(_field(raw, "output_item_id", "outputItemId"))
    if not output_item_id:
        return None
    inputs = normalize_recipe_inputs(raw.get("inputs"))
    if not inputs:
        return None
    return Recipe(
        id=_text(raw.get("id")) or new_id(),
        output_item_id=output_item_id,
        output_quantity=to_positive_int(_field(raw, "output_quantity", "outputQuantity"), 1),
        inputs=inputs,
        updated_at=as_utc(_field(raw, "updated_at", "updatedAt"), now),
    )


def _normalize_price(raw: Any, now: datetime) -> Optional[PriceSnapshot]:
    if not isinstance(raw, Mapping):
        return None
    item_id = _text(_field(raw, "item_id", "itemId"))
    if not item_id:
        return None
    unit_price = to_non_negative_int(_field(raw, "unit_price", "unitPrice"), -1)
    if unit_price < 0:
        return None
    return PriceSnapshot(
        id=_text(raw.get("id")) or new_id(),
        item_id=item_id,
        unit_price=unit_price,
        captured_at=as_utc(_field(raw, "captured_at", "capturedAt"), now),
        source="import" if raw.get("source") == "import" else "manual",
        note=_text(raw.get("note")) or None,
    )


def _normalize_inventory_row(raw: Any, now: datetime) -> Optional[InventoryRow]:
    if not isinstance(raw, Mapping):
        return None
    item_id = _text(_field(raw, "item_id", "itemId"))
    if not item_id:
        return None
    quantity = to_non_negative_int(raw.get("quantity"), -1)
    if quantity < 0:
        return None
    return InventoryRow(
        item_id=item_id,
        quantity=quantity,
        updated_at=as_utc(_field(raw, "updated_at", "updatedAt"), now),
    )


def _normalize_signal_rule(raw: Any) -> SignalRule:
    if not isinstance(raw, Mapping):
        return SignalRule()
    enabled = raw.get("enabled")
    return SignalRule(
        enabled=enabled if isinstance(enabled, bool) else True,
        lookback_days=sanitize_lookback_days(_field(raw, "lookback_days", "lookbackDays")),
        drop_below_weekday_average_ratio=sanitize_signal_threshold(
            _field(raw, "drop_below_weekday_average_ratio", "dropBelowWeekdayAverageRatio")
        ),
    )


def _as_list(raw: Mapping[str, Any], *keys: str) -> List[Any]:
    value = _field(raw, *keys)
    return list(value) if isinstance(value, (list, tuple)) else []


def normalize_workshop_state(raw: Any, now: Optional[datetime] = None,
                             history_limit: int = PRICE_HISTORY_LIMIT) -> WorkshopState:
    """Build a valid :class:`WorkshopState` from an untrusted document.

    Never raises; malformed entries are dropped or coerced.
    """
    now = now or now_utc()
    entity: Mapping[str, Any] = raw if isinstance(raw, Mapping) else {}

    item_map: Dict[str, Item] = {}
    for index, entry in enumerate(_as_list(entity, "items")):
        item = _normalize_item(entry, index, now)
        if item is not None:
            item_map[item.id] = item
    items = sorted(item_map.values(), key=lambda it: name_sort_key(it.name))
    valid_ids = set(item_map)

    recipe_map: Dict[str, Recipe] = {}
    for entry in _as_list(entity, "recipes"):
        recipe = _normalize_recipe(entry, now)
        if recipe is None or recipe.output_item_id not in valid_ids:
            continue
        input_ids = {inp.item_id for inp in recipe.inputs}
        if not input_ids <= valid_ids or recipe.output_item_id in input_ids:
            continue
        recipe_map[recipe.id] = recipe

    # at most one recipe per output item; the most recently updated wins
    by_output: Dict[str, Recipe] = {}
    for recipe in recipe_map.values():
        current = by_output.get(recipe.output_item_id)
        if current is None or recipe.updated_at >= current.updated_at:
            by_output[recipe.output_item_id] = recipe
    recipes = sorted(by_output.values(), key=lambda r: r.id)
    recipes.sort(key=lambda r: r.updated_at, reverse=True)

    prices = [
        snap for snap in (_normalize_price(e, now) for e in _as_list(entity, "prices"))
        if snap is not None and snap.item_id in valid_ids
    ]
    if history_limit > 0:
        prices = prices[-history_limit:]

    inventory_map: Dict[str, InventoryRow] = {}
    for entry in _as_list(entity, "inventory"):
        row = _normalize_inventory_row(entry, now)
        if row is not None and row.item_id in valid_ids:
            inventory_map[row.item_id] = row

    return WorkshopState(
        version=WORKSHOP_STATE_VERSION,
        items=tuple(items),
        recipes=tuple(recipes),
        prices=tuple(prices),
        inventory=tuple(sorted(inventory_map.values(), key=lambda r: r.item_id)),
        signal_rule=_normalize_signal_rule(_field(entity, "signal_rule", "signalRule")),
    )


def state_to_document(state: WorkshopState) -> Dict[str, Any]:
    """Render ``state`` as a JSON-serializable document."""
    return {
        "version": state.version,
        "items": [
            {
                "id": it.id,
                "name": it.name,
                "category": it.category,
                "icon": it.icon,
                "notes": it.notes,
                "created_at": to_iso(it.created_at),
                "updated_at": to_iso(it.updated_at),
            }
            for it in state.items
        ],
        "recipes": [
            {
                "id": r.id,
                "output_item_id": r.output_item_id,
                "output_quantity": r.output_quantity,
                "inputs": [{"item_id": i.item_id, "quantity": i.quantity} for i in r.inputs],
                "updated_at": to_iso(r.updated_at),
            }
            for r in state.recipes
        ],
        "prices": [
            {
                "id": p.id,
                "item_id": p.item_id,
                "unit_price": p.unit_price,
                "captured_at": to_iso(p.captured_at),
                "source": p.source,
                "note": p.note,
            }
            for p in state.prices
        ],
        "inventory": [
            {"item_id": row.item_id, "quantity": row.quantity, "updated_at": to_iso(row.updated_at)}
            for row in state.inventory
        ],
        "signal_rule": {
            "enabled": state.signal_rule.enabled,
            "lookback_days": state.signal_rule.lookback_days,
            "drop_below_weekday_average_ratio": state.signal_rule.drop_below_weekday_average_ratio,
        },
    }


def renormalize(state: WorkshopState, history_limit: int = PRICE_HISTORY_LIMIT) -> WorkshopState:
    """Round-trip ``state`` through its document form."""
    return normalize_workshop_state(state_to_document(state), history_limit=history_limit)


# Lookup helpers -----------------------------------------------------

def items_by_id(state: WorkshopState) -> Dict[str, Item]:
    return {item.id: item for item in state.items}


def recipes_by_output(state: WorkshopState) -> Dict[str, Recipe]:
    return {recipe.output_item_id: recipe for recipe in state.recipes}


def inventory_by_item(state: WorkshopState) -> Dict[str, int]:
    return {row.item_id: row.quantity for row in state.inventory}


def items_by_normalized_name(items: Iterable[Item]) -> Dict[str, Item]:
    index: Dict[str, Item] = {}
    for item in items:
        index.setdefault(normalize_item_name(item.name), item)
    return index


def latest_price_map(state: WorkshopState) -> Dict[str, PriceSnapshot]:
    """Most recent snapshot per item; on equal capture times the later log entry wins."""
    latest: Dict[str, PriceSnapshot] = {}
    for snap in state.prices:
        prev = latest.get(snap.item_id)
        if prev is None or snap.captured_at >= prev.captured_at:
            latest[snap.item_id] = snap
    return latest


def require_item(state: WorkshopState, item_id: str) -> Item:
    for item in state.items:
        if item.id == item_id:
            return item
    raise ItemNotFoundError(item_id)


def require_int(raw: Any, label: str, minimum: int = 0) -> int:
    """Floor a finite number and check it against ``minimum``.

    Unlike the sanitizers this raises :class:`ValidationError`.
    """
    if isinstance(raw, bool) or not isinstance(raw, (int, float)) or not math.isfinite(raw):
        raise ValidationError(f"{label} must be a number.")
    value = math.floor(raw)
    if value < minimum:
        if minimum == 1:
            raise ValidationError(f"{label} must be a positive integer.")
        raise ValidationError(f"{label} must be an integer >= {minimum}.")
    return int(value)


__all__ = [
    "new_id",
    "sanitize_category",
    "normalize_recipe_inputs",
    "normalize_workshop_state",
    "state_to_document",
    "renormalize",
    "items_by_id",
    "recipes_by_output",
    "inventory_by_item",
    "items_by_normalized_name",
    "latest_price_map",
    "require_item",
    "require_int",
]
