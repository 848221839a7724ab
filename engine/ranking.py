"""Craft feasibility ranking and budget-scoped near-craft suggestions."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional

from utils.constants import NEAR_CRAFT_SORT_MODES
from utils.names import name_sort_key
from utils.sanitize import sanitize_budget

from .crafting import MaterialRow, SimulationResult, expand_recipe
from .errors import ValidationError
from .fees import FeeCalculator, sum_known
from .models import WorkshopState

log = logging.getLogger(__name__)


@dataclass
class CraftOption:
    """A recipe evaluated for one run under current inventory and prices."""
    recipe_id: str
    output_item_id: str
    output_item_name: str
    craftable_count: int
    required_material_cost_per_run: Optional[int]
    estimated_profit_per_run: Optional[float]
    unknown_price_item_ids: List[str] = field(default_factory=list)
    missing_rows_for_one_run: List[MaterialRow] = field(default_factory=list)


@dataclass
class NearCraftSuggestion:
    """A recipe short on materials, scoped to a purchase budget."""
    option: CraftOption
    missing_rows: List[MaterialRow]
    missing_purchase_cost_per_run: int
    affordable_runs: int
    estimated_budget_profit: Optional[float]


def craftable_count(simulation: SimulationResult) -> int:
    """Whole runs the inventory covers; 0 when the recipe consumes nothing."""
    counts = [row.owned // row.required for row in simulation.material_rows if row.required > 0]
    if not counts:
        return 0
    return max(0, min(counts))


def _profit_desc(value: Optional[float]) -> tuple:
    # unknown profit sorts after every known one
    return (value is None, -(value or 0.0))


def rank_craft_options(state: WorkshopState, tax_rate: Any = None,
                       fee_calculator: Optional[FeeCalculator] = None) -> List[CraftOption]:
    """
    Evaluate every recipe for one expanded run and rank them.

    Order: craftable count desc, profit per run desc (unknown last),
    output name asc. A cyclic recipe aborts the whole ranking.
    """
    options: List[CraftOption] = []
    for recipe in state.recipes:
        sim = expand_recipe(state, recipe, 1, tax_rate, fee_calculator=fee_calculator)
        options.append(CraftOption(
            recipe_id=recipe.id,
            output_item_id=recipe.output_item_id,
            output_item_name=sim.output_item_name,
            craftable_count=craftable_count(sim),
            required_material_cost_per_run=sim.required_material_cost,
            estimated_profit_per_run=sim.estimated_profit,
            unknown_price_item_ids=list(sim.unknown_price_item_ids),
            missing_rows_for_one_run=[row for row in sim.material_rows if row.missing > 0],
        ))

    options.sort(key=lambda o: (
        -o.craftable_count,
        _profit_desc(o.estimated_profit_per_run),
        name_sort_key(o.output_item_name),
    ))
    log.debug("Ranked %d craft options", len(options))
    return options


def near_craft_suggestions(options: List[CraftOption], budget: Any,
                           sort_mode: str = "max_budget_profit",
                           include_unaffordable: bool = False) -> List[NearCraftSuggestion]:
    """
    Suggest recipes whose shortfall can be bought within ``budget``.

    Only options with at least one missing material and a fully known
    shortfall cost qualify. ``sort_mode`` is ``max_budget_profit`` or
    ``min_gap_cost``.
    """
    if sort_mode not in NEAR_CRAFT_SORT_MODES:
        raise ValidationError(f"Unknown near-craft sort mode: {sort_mode}")
    budget_value = sanitize_budget(budget)

    suggestions: List[NearCraftSuggestion] = []
    for option in options:
        missing_rows = [row for row in option.missing_rows_for_one_run if row.missing > 0]
        if not missing_rows:
            continue
        gap_cost = sum_known(row.missing_cost for row in missing_rows)
        if gap_cost is None:
            continue
        affordable = budget_value // gap_cost if gap_cost > 0 else 0
        profit = option.estimated_profit_per_run
        budget_profit = None if profit is None or affordable <= 0 else profit * affordable
        if affordable <= 0 and not include_unaffordable:
            continue
        suggestions.append(NearCraftSuggestion(
            option=option,
            missing_rows=missing_rows,
            missing_purchase_cost_per_run=gap_cost,
            affordable_runs=affordable,
            estimated_budget_profit=budget_profit,
        ))

    if sort_mode == "min_gap_cost":
        suggestions.sort(key=lambda s: (
            s.missing_purchase_cost_per_run,
            -s.affordable_runs,
            _profit_desc(s.estimated_budget_profit),
            _profit_desc(s.option.estimated_profit_per_run),
            name_sort_key(s.option.output_item_name),
        ))
    else:
        suggestions.sort(key=lambda s: (
            _profit_desc(s.estimated_budget_profit),
            _profit_desc(s.option.estimated_profit_per_run),
            s.missing_purchase_cost_per_run,
            name_sort_key(s.option.output_item_name),
        ))
    return suggestions


__all__ = [
    "CraftOption",
    "NearCraftSuggestion",
    "craftable_count",
    "rank_craft_options",
    "near_craft_suggestions",
]
