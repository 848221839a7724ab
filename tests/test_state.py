from datetime import timedelta

from conftest import T0, ids_by_name
from engine.models import WorkshopState
from engine.mutations import add_price_snapshot, upsert_inventory
from engine.state import (
    latest_price_map,
    normalize_workshop_state,
    renormalize,
    state_to_document,
)
from services.price_history import resolve_window, window_snapshots


def test_non_mapping_documents_give_empty_state():
    for raw in (None, [], "state", 42):
        state = normalize_workshop_state(raw, now=T0)
        assert state == WorkshopState()


def test_renormalize_is_idempotent(three_tier):
    ids = ids_by_name(three_tier)
    state = add_price_snapshot(three_tier, ids["A"], 10, captured_at=T0)
    state = upsert_inventory(state, ids["A"], 4, now=T0)
    assert renormalize(state) == state
    assert normalize_workshop_state(state_to_document(state), now=T0) == state


def test_malformed_items_are_repaired_or_dropped():
    doc = {"items": ["junk", {"id": "a", "category": "weapon"}, {"id": "b", "name": "  Iron   Bar "}]}
    state = normalize_workshop_state(doc, now=T0)
    names = {it.id: (it.name, it.category) for it in state.items}
    assert names == {"a": ("Item-2", "material"), "b": ("Iron Bar", "material")}
    assert state.items[0].created_at == T0


def test_dangling_references_are_dropped_and_prices_clamped():
    doc = {
        "items": [{"id": "a", "name": "A"}, {"id": "b", "name": "B"}],
        "recipes": [
            {"id": "r1", "output_item_id": "b", "inputs": [{"item_id": "ghost", "quantity": 1}]},
            {"id": "r2", "output_item_id": "b", "inputs": [{"item_id": "b", "quantity": 1}]},
            {"id": "r3", "output_item_id": "a", "inputs": []},
        ],
        "prices": [
            {"item_id": "ghost", "unit_price": 5},
            {"item_id": "a", "unit_price": -5},
            {"itemId": "a", "unitPrice": 7.9, "capturedAt": "2024-01-01T00:00:00Z", "source": "x"},
        ],
        "inventory": [{"item_id": "ghost", "quantity": 3}, {"item_id": "a", "quantity": "many"}],
    }
    state = normalize_workshop_state(doc, now=T0)
    assert state.recipes == ()
    assert [(p.item_id, p.unit_price, p.source) for p in state.prices] == [("a", 0, "manual"), ("a", 7, "manual")]
    assert state.prices[0].captured_at == T0
    assert state.inventory == ()


def test_newest_recipe_per_output_wins():
    doc = {
        "items": [{"id": "a", "name": "A"}, {"id": "b", "name": "B"}],
        "recipes": [
            {"id": "old", "output_item_id": "b", "inputs": [{"item_id": "a", "quantity": 1}],
             "updated_at": "2024-01-01T00:00:00Z"},
            {"id": "new", "outputItemId": "b", "inputs": [{"itemId": "a", "quantity": 2}],
             "updatedAt": "2024-02-01T00:00:00Z"},
        ],
    }
    state = normalize_workshop_state(doc, now=T0)
    assert [r.id for r in state.recipes] == ["new"]
    assert state.recipes[0].output_quantity == 1


def test_signal_rule_is_sanitized():
    doc = {"signal_rule": {"enabled": "yes", "lookback_days": 1000,
                           "drop_below_weekday_average_ratio": 0.001}}
    rule = normalize_workshop_state(doc, now=T0).signal_rule
    assert (rule.enabled, rule.lookback_days, rule.drop_below_weekday_average_ratio) == (True, 365, 0.01)


def test_history_limit_keeps_newest_entries():
    doc = {
        "items": [{"id": "a", "name": "A"}],
        "prices": [{"item_id": "a", "unit_price": n} for n in range(10)],
    }
    state = normalize_workshop_state(doc, now=T0, history_limit=3)
    assert [p.unit_price for p in state.prices] == [7, 8, 9]


def test_latest_price_prefers_later_log_entry_on_ties():
    doc = {
        "items": [{"id": "a", "name": "A"}],
        "prices": [
            {"id": "p2", "item_id": "a", "unit_price": 2, "captured_at": "2024-01-01T00:00:00Z"},
            {"id": "p1", "item_id": "a", "unit_price": 1, "captured_at": "2024-01-01T00:00:00Z"},
        ],
    }
    state = normalize_workshop_state(doc, now=T0)
    assert latest_price_map(state)["a"].unit_price == 1


def test_same_instant_appends_keep_log_order(three_tier):
    a = ids_by_name(three_tier)["A"]
    for _ in range(20):
        state = add_price_snapshot(three_tier, a, 10, captured_at=T0)
        state = add_price_snapshot(state, a, 20, captured_at=T0)
        assert latest_price_map(state)[a].unit_price == 20
        window = resolve_window(T0, T0 + timedelta(days=1))
        assert [s.unit_price for s in window_snapshots(state, a, window)] == [10, 20]
