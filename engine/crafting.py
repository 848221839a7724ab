"""
Recipe expansion engine for the workshop economy.

Expands a recipe through every intermediate tier down to base materials
(items no recipe produces), then prices the bill against inventory and the
latest known market prices.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple

from utils.constants import EXPANSION_MODES
from utils.names import name_sort_key

from .errors import RecipeCycleError, RecipeNotFoundError, ValidationError
from .fees import FeeCalculator
from .models import Recipe, WorkshopState
from .state import inventory_by_item, items_by_id, latest_price_map, recipes_by_output, require_int

log = logging.getLogger(__name__)


class ExpansionMode(Enum):
    """How deep a recipe is expanded."""
    EXPANDED = "expanded"
    DIRECT = "direct"


@dataclass
class MaterialRow:
    """One base material in a simulation bill."""
    item_id: str
    item_name: str
    required: int
    owned: int
    missing: int
    latest_unit_price: Optional[int]
    required_cost: Optional[int]
    missing_cost: Optional[int]


@dataclass
class CraftStep:
    """Craft operations needed for one item of the chain."""
    item_id: str
    item_name: str
    runs: int


@dataclass
class SimulationResult:
    """Complete simulation of N runs of a recipe."""
    recipe_id: str
    output_item_id: str
    output_item_name: str
    output_quantity: int
    runs: int
    total_output_quantity: int
    tax_rate: float
    mode: str
    material_rows: List[MaterialRow] = field(default_factory=list)
    craft_steps: List[CraftStep] = field(default_factory=list)
    craftable_now: bool = False
    unknown_price_item_ids: List[str] = field(default_factory=list)
    required_material_cost: Optional[int] = None
    missing_purchase_cost: Optional[int] = None
    output_unit_price: Optional[int] = None
    gross_revenue: Optional[int] = None
    net_revenue_after_tax: Optional[float] = None
    estimated_profit: Optional[float] = None
    estimated_profit_rate: Optional[float] = None


def _ceil_div(numerator: int, denominator: int) -> int:
    return -(-numerator // denominator)


def expand_requirements(recipe: Recipe, runs: int, recipes: Dict[str, Recipe],
                        names: Optional[Dict[str, str]] = None) -> Tuple[Dict[str, int], Dict[str, int]]:
    """
    Expand ``runs`` of ``recipe`` into base materials and craft-run counts.

    Depth-first over (item, quantity) pairs with an explicit stack. The
    active path is tracked so a revisit raises before descending. Partial
    sums are never memoized: quantities multiply along each path.

    Returns:
        (required materials by item id, craft runs by item id)
    """
    names = names or {}
    required: Dict[str, int] = {}
    craft_runs: Dict[str, int] = {recipe.output_item_id: runs}

    path: List[str] = [recipe.output_item_id]
    on_path = {recipe.output_item_id}
    stack: List[Iterator[Tuple[str, int]]] = [
        iter([(inp.item_id, inp.quantity * runs) for inp in recipe.inputs])
    ]

    while stack:
        try:
            item_id, needed = next(stack[-1])
        except StopIteration:
            stack.pop()
            on_path.discard(path.pop())
            continue

        if needed <= 0:
            continue

        nested = recipes.get(item_id)
        if nested is None:
            required[item_id] = required.get(item_id, 0) + needed
            continue

        if item_id in on_path:
            loop = path + [item_id]
            raise RecipeCycleError(loop, [names.get(i, i) for i in loop])

        nested_runs = _ceil_div(needed, nested.output_quantity)
        craft_runs[item_id] = craft_runs.get(item_id, 0) + nested_runs
        path.append(item_id)
        on_path.add(item_id)
        stack.append(iter([(inp.item_id, inp.quantity * nested_runs) for inp in nested.inputs]))

    return required, craft_runs


def direct_requirements(recipe: Recipe, runs: int) -> Tuple[Dict[str, int], Dict[str, int]]:
    """Treat the immediate inputs as flat materials; nested recipes are ignored."""
    required: Dict[str, int] = {}
    for inp in recipe.inputs:
        required[inp.item_id] = required.get(inp.item_id, 0) + inp.quantity * runs
    return required, {recipe.output_item_id: runs}


def find_recipe_cycle(state: WorkshopState, output_item_id: str) -> Optional[List[str]]:
    """Return the first cycle (as item ids) reachable from ``output_item_id``."""
    recipes = recipes_by_output(state)
    recipe = recipes.get(output_item_id)
    if recipe is None:
        return None
    try:
        expand_requirements(recipe, 1, recipes)
    except RecipeCycleError as e:
        return e.path
    return None


def expand_recipe(state: WorkshopState, recipe: Recipe, runs: int, tax_rate: Any = None,
                  mode: str = ExpansionMode.EXPANDED.value,
                  fee_calculator: Optional[FeeCalculator] = None) -> SimulationResult:
    """
    Simulate ``runs`` of ``recipe`` against the inventory and prices in ``state``.

    Raises:
        ValidationError: non-positive ``runs`` or an unknown ``mode``
        RecipeCycleError: the recipe graph loops back onto the active path
    """
    if isinstance(runs, bool) or not isinstance(runs, int) or runs <= 0:
        raise ValidationError("Run count must be a positive integer.")
    if mode not in EXPANSION_MODES:
        raise ValidationError(f"Unknown expansion mode: {mode}")

    fee_calculator = fee_calculator or FeeCalculator()
    rate = fee_calculator.get_tax_rate(tax_rate)

    items = items_by_id(state)
    names = {item_id: item.name for item_id, item in items.items()}
    inventory = inventory_by_item(state)
    latest = latest_price_map(state)

    if mode == ExpansionMode.DIRECT.value:
        required, craft_runs = direct_requirements(recipe, runs)
    else:
        required, craft_runs = expand_requirements(recipe, runs, recipes_by_output(state), names)

    rows: List[MaterialRow] = []
    for item_id, needed in required.items():
        required_qty = max(0, int(needed))
        owned = max(0, int(inventory.get(item_id, 0)))
        missing = max(0, required_qty - owned)
        snap = latest.get(item_id)
        price = snap.unit_price if snap is not None else None
        rows.append(MaterialRow(
            item_id=item_id,
            item_name=names.get(item_id, item_id),
            required=required_qty,
            owned=owned,
            missing=missing,
            latest_unit_price=price,
            required_cost=None if price is None else price * required_qty,
            missing_cost=None if price is None else price * missing,
        ))
    rows.sort(key=lambda r: name_sort_key(r.item_name))
    rows.sort(key=lambda r: r.missing, reverse=True)

    output_snap = latest.get(recipe.output_item_id)
    total_output = recipe.output_quantity * runs
    economics = fee_calculator.calculate_craft_economics(
        required_costs=[r.required_cost for r in rows],
        missing_costs=[r.missing_cost for r in rows],
        output_unit_price=output_snap.unit_price if output_snap is not None else None,
        total_output_quantity=total_output,
        tax_rate=rate,
    )

    steps = [CraftStep(item_id=i, item_name=names.get(i, i), runs=n) for i, n in craft_runs.items()]
    steps.sort(key=lambda s: name_sort_key(s.item_name))
    steps.sort(key=lambda s: s.runs, reverse=True)

    result = SimulationResult(
        recipe_id=recipe.id,
        output_item_id=recipe.output_item_id,
        output_item_name=names.get(recipe.output_item_id, recipe.output_item_id),
        output_quantity=recipe.output_quantity,
        runs=runs,
        total_output_quantity=total_output,
        tax_rate=rate,
        mode=mode,
        material_rows=rows,
        craft_steps=steps,
        craftable_now=all(r.missing <= 0 for r in rows),
        unknown_price_item_ids=[r.item_id for r in rows if r.latest_unit_price is None],
        required_material_cost=economics.required_material_cost,
        missing_purchase_cost=economics.missing_purchase_cost,
        output_unit_price=economics.output_unit_price,
        gross_revenue=economics.gross_revenue,
        net_revenue_after_tax=economics.net_revenue_after_tax,
        estimated_profit=economics.estimated_profit,
        estimated_profit_rate=economics.estimated_profit_rate,
    )
    log.debug("Simulated %s x%d (%s): %d materials, profit=%s",
              result.output_item_name, runs, mode, len(rows), result.estimated_profit)
    return result


def simulate_craft(state: WorkshopState, recipe_id: str, runs: Any, tax_rate: Any = None,
                   mode: str = ExpansionMode.EXPANDED.value,
                   fee_calculator: Optional[FeeCalculator] = None) -> SimulationResult:
    """Look up ``recipe_id`` and simulate it; ``runs`` is floored to an integer."""
    recipe = next((r for r in state.recipes if r.id == recipe_id), None)
    if recipe is None:
        raise RecipeNotFoundError(recipe_id)
    run_count = require_int(runs, "Run count", minimum=1)
    return expand_recipe(state, recipe, run_count, tax_rate, mode, fee_calculator)


__all__ = [
    "ExpansionMode",
    "MaterialRow",
    "CraftStep",
    "SimulationResult",
    "expand_requirements",
    "direct_requirements",
    "find_recipe_cycle",
    "expand_recipe",
    "simulate_craft",
]
