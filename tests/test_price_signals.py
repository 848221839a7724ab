from datetime import timedelta

import pytest

from conftest import T0, ids_by_name
from engine.errors import ItemNotFoundError, PriceWindowError
from engine.mutations import add_price_snapshot, update_signal_rule
from services.price_signals import BUY_ZONE, SELL_ZONE, WATCH, SignalQuery, compute_signals

NOW = T0 + timedelta(days=10)


def _two_mondays(state, item_id, first, second):
    state = add_price_snapshot(state, item_id, first, captured_at=T0)
    return add_price_snapshot(state, item_id, second, captured_at=T0 + timedelta(days=7))


def test_drop_below_weekday_average_triggers(three_tier):
    ids = ids_by_name(three_tier)
    state = _two_mondays(three_tier, ids["A"], 115, 85)
    result = compute_signals(state, now=NOW)

    assert result.rule_enabled is True
    assert result.threshold_ratio == pytest.approx(0.08)
    (row,) = result.rows
    assert row.item_name == "A"
    assert row.latest_price == 85
    assert row.latest_weekday == 1
    assert row.weekday_average_price == pytest.approx(100)
    assert row.deviation_ratio_from_weekday_average == pytest.approx(-0.15)
    assert row.ma7_price is None
    assert row.deviation_ratio_from_ma7 is None
    assert row.triggered is True
    assert row.trend_tag == BUY_ZONE
    assert result.triggered_count == 1


def test_small_drop_does_not_trigger(three_tier):
    ids = ids_by_name(three_tier)
    state = _two_mondays(three_tier, ids["A"], 105, 95)
    (row,) = compute_signals(state, now=NOW).rows
    assert row.deviation_ratio_from_weekday_average == pytest.approx(-0.05)
    assert row.triggered is False
    assert row.trend_tag == WATCH


def test_rise_is_tagged_sell_zone(three_tier):
    ids = ids_by_name(three_tier)
    state = _two_mondays(three_tier, ids["A"], 85, 115)
    (row,) = compute_signals(state, now=NOW).rows
    assert row.trend_tag == SELL_ZONE
    assert row.triggered is False


def test_disabled_rule_never_triggers(three_tier):
    ids = ids_by_name(three_tier)
    state = _two_mondays(three_tier, ids["A"], 115, 85)
    state = update_signal_rule(state, enabled=False)
    (row,) = compute_signals(state, now=NOW).rows
    assert row.deviation_ratio_from_weekday_average == pytest.approx(-0.15)
    assert (row.triggered, row.trend_tag) == (False, WATCH)

    forced = compute_signals(state, SignalQuery(enabled=True), now=NOW)
    assert forced.rows[0].triggered is True


def test_query_overrides_threshold_and_lookback(three_tier):
    ids = ids_by_name(three_tier)
    state = _two_mondays(three_tier, ids["A"], 115, 85)
    strict = compute_signals(state, SignalQuery(drop_below_weekday_average_ratio=0.2), now=NOW)
    assert strict.threshold_ratio == pytest.approx(0.2)
    assert strict.rows[0].triggered is False

    short = compute_signals(state, SignalQuery(lookback_days=5), now=NOW)
    assert short.lookback_days == 5
    (row,) = short.rows
    assert row.sample_count == 1
    assert row.deviation_ratio_from_weekday_average == pytest.approx(0.0)


def test_rows_sort_triggered_first(three_tier):
    ids = ids_by_name(three_tier)
    state = _two_mondays(three_tier, ids["A"], 105, 95)
    state = _two_mondays(state, ids["B"], 115, 85)
    state = _two_mondays(state, ids["C"], 130, 70)
    result = compute_signals(state, SignalQuery(item_ids=[ids["A"], ids["B"], ids["C"]]), now=NOW)
    assert [r.item_name for r in result.rows] == ["C", "B", "A"]


def test_items_without_samples(three_tier):
    ids = ids_by_name(three_tier)
    state = _two_mondays(three_tier, ids["A"], 115, 85)
    assert [r.item_name for r in compute_signals(state, now=NOW).rows] == ["A"]

    result = compute_signals(state, SignalQuery(item_ids=[ids["B"], ids["A"]]), now=NOW)
    assert [r.item_name for r in result.rows] == ["A", "B"]
    empty = result.rows[1]
    assert (empty.sample_count, empty.latest_price, empty.trend_tag) == (0, None, WATCH)


def test_query_errors(three_tier):
    with pytest.raises(ItemNotFoundError):
        compute_signals(three_tier, SignalQuery(item_ids=["missing"]), now=NOW)
    with pytest.raises(PriceWindowError):
        compute_signals(three_tier, SignalQuery(start=NOW, end=T0), now=NOW)
