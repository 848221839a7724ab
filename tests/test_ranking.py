import pytest

from conftest import T0, ids_by_name
from engine.crafting import MaterialRow, SimulationResult
from engine.errors import RecipeCycleError, ValidationError
from engine.mutations import add_price_snapshot, upsert_inventory, upsert_recipe
from engine.ranking import craftable_count, near_craft_suggestions, rank_craft_options


def _priced(state, owned_a=0):
    ids = ids_by_name(state)
    state = add_price_snapshot(state, ids["A"], 10, captured_at=T0)
    state = add_price_snapshot(state, ids["C"], 100, captured_at=T0)
    if owned_a:
        state = upsert_inventory(state, ids["A"], owned_a, now=T0)
    return state


def _sim(rows):
    return SimulationResult(
        recipe_id="r", output_item_id="o", output_item_name="O", output_quantity=1,
        runs=1, total_output_quantity=1, tax_rate=0.1, mode="expanded", material_rows=rows,
    )


def _row(required, owned):
    return MaterialRow("i", "I", required, owned, max(0, required - owned), None, None, None)


def test_craftable_count_edges():
    assert craftable_count(_sim([])) == 0
    assert craftable_count(_sim([_row(0, 5)])) == 0
    assert craftable_count(_sim([_row(3, 10), _row(2, 3)])) == 1
    assert craftable_count(_sim([_row(3, 2)])) == 0


def test_rank_orders_by_craftable_count(three_tier):
    options = rank_craft_options(_priced(three_tier, owned_a=20))
    assert [(o.output_item_name, o.craftable_count) for o in options] == [("B", 10), ("C", 6)]
    c = options[1]
    assert c.required_material_cost_per_run == 30
    assert c.estimated_profit_per_run == pytest.approx(60)
    assert c.missing_rows_for_one_run == []


def test_unknown_profit_sorts_last(three_tier):
    options = rank_craft_options(_priced(three_tier))
    assert [o.output_item_name for o in options] == ["C", "B"]
    assert options[1].estimated_profit_per_run is None
    assert all(o.craftable_count == 0 for o in options)


def test_cyclic_recipe_aborts_ranking(three_tier):
    ids = ids_by_name(three_tier)
    state = upsert_recipe(three_tier, ids["A"], 1, [(ids["C"], 1)], now=T0)
    with pytest.raises(RecipeCycleError):
        rank_craft_options(state)


def test_near_craft_max_budget_profit(three_tier):
    options = rank_craft_options(_priced(three_tier))
    suggestions = near_craft_suggestions(options, 100)
    assert [s.option.output_item_name for s in suggestions] == ["C", "B"]
    c, b = suggestions
    assert c.missing_purchase_cost_per_run == 30
    assert c.affordable_runs == 3
    assert c.estimated_budget_profit == pytest.approx(180)
    assert b.affordable_runs == 5
    assert b.estimated_budget_profit is None


def test_near_craft_min_gap_cost(three_tier):
    options = rank_craft_options(_priced(three_tier))
    suggestions = near_craft_suggestions(options, 100, sort_mode="min_gap_cost")
    assert [s.missing_purchase_cost_per_run for s in suggestions] == [20, 30]


def test_near_craft_unaffordable_filtering(three_tier):
    options = rank_craft_options(_priced(three_tier))
    assert near_craft_suggestions(options, 10) == []
    kept = near_craft_suggestions(options, 10, include_unaffordable=True)
    assert len(kept) == 2
    assert all(s.affordable_runs == 0 and s.estimated_budget_profit is None for s in kept)


def test_near_craft_requires_known_gap_cost(three_tier):
    ids = ids_by_name(three_tier)
    state = add_price_snapshot(three_tier, ids["C"], 100, captured_at=T0)
    assert near_craft_suggestions(rank_craft_options(state), 1000) == []


def test_near_craft_rejects_unknown_sort(three_tier):
    with pytest.raises(ValidationError):
        near_craft_suggestions(rank_craft_options(three_tier), 100, sort_mode="cheapest")
