"""Small three-tier sample economy for first runs and demos."""

import dataclasses
from datetime import datetime
from typing import Dict, List, Optional

from utils.timefmt import now_utc

from .models import InventoryRow, Item, PriceSnapshot, Recipe, RecipeInput, WorkshopState
from .state import latest_price_map, new_id, normalize_recipe_inputs, renormalize

SAMPLE_NOTE = "sample-seed"

SAMPLE_ITEMS = [
    ("Sample Ore", "material", "Basic gathered material"),
    ("Sample Dungeon Core", "material", "Dungeon drop"),
    ("Sample Grinding Powder", "component", "Intermediate material"),
    ("Sample Reinforced Ingot", "component", "Advanced intermediate"),
    ("Sample Hero Longsword", "equipment", "Sample finished gear"),
]

# output name, output quantity, [(input name, quantity)]
SAMPLE_RECIPES = [
    ("Sample Grinding Powder", 1, [("Sample Ore", 3)]),
    ("Sample Reinforced Ingot", 1, [("Sample Grinding Powder", 2), ("Sample Dungeon Core", 1)]),
    ("Sample Hero Longsword", 1, [("Sample Reinforced Ingot", 5), ("Sample Dungeon Core", 2)]),
]

SAMPLE_PRICES = {
    "Sample Ore": 80,
    "Sample Dungeon Core": 1200,
    "Sample Grinding Powder": 320,
    "Sample Reinforced Ingot": 1900,
    "Sample Hero Longsword": 18000,
}

SAMPLE_INVENTORY = {
    "Sample Ore": 480,
    "Sample Dungeon Core": 26,
    "Sample Grinding Powder": 8,
    "Sample Reinforced Ingot": 3,
    "Sample Hero Longsword": 0,
}


def seed_sample_data(state: WorkshopState, now: Optional[datetime] = None) -> WorkshopState:
    """
    Insert or refresh the sample items, recipes, prices and inventory.

    Seeding twice is harmless: items and recipes are matched by name and
    output, and a price is only appended when it differs from the latest one.
    """
    now = now or now_utc()

    by_name: Dict[str, Item] = {item.name: item for item in state.items}
    items: List[Item] = list(state.items)
    for name, category, notes in SAMPLE_ITEMS:
        existing = by_name.get(name)
        if existing is not None:
            updated = dataclasses.replace(existing, category=category, notes=notes, updated_at=now)
            items[items.index(existing)] = updated
        else:
            updated = Item(id=new_id(), name=name, category=category, notes=notes,
                           created_at=now, updated_at=now)
            items.append(updated)
        by_name[name] = updated
    ids = {name: by_name[name].id for name, _, _ in SAMPLE_ITEMS}

    recipes: Dict[str, Recipe] = {r.output_item_id: r for r in state.recipes}
    for output_name, quantity, inputs in SAMPLE_RECIPES:
        output_id = ids[output_name]
        existing_recipe = recipes.get(output_id)
        recipes[output_id] = Recipe(
            id=existing_recipe.id if existing_recipe is not None else new_id(),
            output_item_id=output_id,
            output_quantity=quantity,
            inputs=normalize_recipe_inputs([RecipeInput(ids[n], q) for n, q in inputs]),
            updated_at=now,
        )

    prices = list(state.prices)
    latest = latest_price_map(state)
    for name, unit_price in SAMPLE_PRICES.items():
        snap = latest.get(ids[name])
        if snap is not None and snap.unit_price == unit_price:
            continue
        prices.append(PriceSnapshot(id=new_id(), item_id=ids[name], unit_price=unit_price,
                                    captured_at=now, source="manual", note=SAMPLE_NOTE))

    inventory = {row.item_id: row for row in state.inventory}
    for name, quantity in SAMPLE_INVENTORY.items():
        inventory[ids[name]] = InventoryRow(item_id=ids[name], quantity=quantity, updated_at=now)

    return renormalize(dataclasses.replace(
        state,
        items=tuple(items),
        recipes=tuple(recipes.values()),
        prices=tuple(prices),
        inventory=tuple(inventory.values()),
    ))
