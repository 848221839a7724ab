from datetime import timedelta

import pytest

from conftest import T0, ids_by_name
from engine.errors import ItemNotFoundError, PriceWindowError
from engine.mutations import add_price_snapshot
from services.price_history import query_price_history, resolve_window

DAILY = [100, 110, 90, 120, 95, 105, 115, 100]


def _daily_state(three_tier, prices=DAILY):
    item_id = ids_by_name(three_tier)["A"]
    state = three_tier
    for day, price in enumerate(prices):
        state = add_price_snapshot(state, item_id, price, captured_at=T0 + timedelta(days=day))
    return state, item_id


def test_moving_average_needs_seven_samples(three_tier):
    state, item_id = _daily_state(three_tier)
    window = resolve_window(T0, T0 + timedelta(days=8))
    result = query_price_history(state, item_id, window)

    assert result.sample_count == 8
    assert [p.ma7 for p in result.points[:6]] == [None] * 6
    assert result.points[6].ma7 == pytest.approx(sum(DAILY[:7]) / 7)
    assert result.points[7].ma7 == pytest.approx(sum(DAILY[1:]) / 7)
    assert result.average_price == pytest.approx(sum(DAILY) / 8)
    assert result.latest_price == 100
    assert result.latest_captured_at == T0 + timedelta(days=7)


def test_points_carry_utc_weekday_and_date(three_tier):
    state, item_id = _daily_state(three_tier)
    result = query_price_history(state, item_id, resolve_window(T0, T0 + timedelta(days=8)))
    # 2024-01-01 is a Monday
    assert [p.weekday for p in result.points] == [1, 2, 3, 4, 5, 6, 0, 1]
    assert result.points[0].date_key == "2024-01-01"
    monday = result.weekday_averages[1]
    assert (monday.weekday, monday.average_price, monday.sample_count) == (1, 100.0, 2)
    assert result.weekday_average(0) == 115
    assert result.weekday_average(3) == 90
    assert [w.weekday for w in result.weekday_averages] == list(range(7))


def test_window_is_half_open(three_tier):
    state, item_id = _daily_state(three_tier)
    result = query_price_history(state, item_id, resolve_window(T0 + timedelta(days=1), T0 + timedelta(days=3)))
    assert [p.unit_price for p in result.points] == [110, 90]


def test_empty_window(three_tier):
    state, item_id = _daily_state(three_tier)
    result = query_price_history(state, item_id, resolve_window(T0 - timedelta(days=5), T0))
    assert result.sample_count == 0
    assert result.average_price is None
    assert result.latest_price is None
    assert result.weekday_averages == []


def test_resolve_window_defaults():
    now = T0 + timedelta(days=40)
    window = resolve_window(lookback_days=10, now=now)
    assert (window.start, window.end, window.lookback_days) == (now - timedelta(days=10), now, 10)

    only_end = resolve_window(end="2024-01-31T00:00:00Z", lookback_days=30, now=now)
    assert only_end.start == T0 + timedelta(days=0)

    only_start = resolve_window(start=T0, now=now)
    assert (only_start.start, only_start.end) == (T0, now)

    assert resolve_window(lookback_days=9999, now=now).lookback_days == 365
    assert resolve_window(lookback_days="junk", now=now).lookback_days == 30


def test_resolve_window_errors():
    with pytest.raises(PriceWindowError):
        resolve_window(T0 + timedelta(days=1), T0)
    with pytest.raises(PriceWindowError):
        resolve_window(start="not a date", now=T0)
    assert resolve_window(T0, T0).start == T0


def test_unknown_item(three_tier):
    with pytest.raises(ItemNotFoundError):
        query_price_history(three_tier, "missing")
