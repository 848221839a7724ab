"""Buy and sell signals from weekday price cycles."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List, Optional, Sequence

from engine.models import WorkshopState
from engine.state import items_by_id, require_item
from utils.names import name_sort_key
from utils.sanitize import sanitize_lookback_days, sanitize_signal_threshold
from utils.timefmt import now_utc

from .price_history import HistoryWindow, resolve_window, summarize_snapshots, window_snapshots

log = logging.getLogger(__name__)

BUY_ZONE = "buy-zone"
SELL_ZONE = "sell-zone"
WATCH = "watch"


@dataclass
class SignalQuery:
    """Per-query overrides of the persisted signal rule."""
    enabled: Optional[bool] = None
    lookback_days: Any = None
    drop_below_weekday_average_ratio: Any = None
    item_ids: Optional[Sequence[str]] = None
    start: Any = None
    end: Any = None


@dataclass
class SignalRow:
    item_id: str
    item_name: str
    sample_count: int = 0
    latest_price: Optional[int] = None
    latest_captured_at: Optional[datetime] = None
    latest_weekday: Optional[int] = None
    weekday_average_price: Optional[float] = None
    ma7_price: Optional[float] = None
    deviation_ratio_from_weekday_average: Optional[float] = None
    deviation_ratio_from_ma7: Optional[float] = None
    triggered: bool = False
    trend_tag: str = WATCH


@dataclass
class SignalResult:
    generated_at: datetime
    window: HistoryWindow
    rule_enabled: bool
    lookback_days: int
    threshold_ratio: float
    rows: List[SignalRow] = field(default_factory=list)

    @property
    def triggered_count(self) -> int:
        return sum(1 for row in self.rows if row.triggered)


def _deviation(latest: Optional[int], reference: Optional[float]) -> Optional[float]:
    if latest is None or reference is None or reference == 0:
        return None
    return (latest - reference) / reference


def _trend_tag(deviation: Optional[float], threshold: float, enabled: bool) -> str:
    if not enabled or deviation is None:
        return WATCH
    if deviation <= -threshold:
        return BUY_ZONE
    if deviation >= threshold:
        return SELL_ZONE
    return WATCH


def _signal_row(state: WorkshopState, item_id: str, item_name: str, window: HistoryWindow,
                threshold: float, enabled: bool) -> SignalRow:
    history = summarize_snapshots(item_id, item_name, window_snapshots(state, item_id, window), window)
    row = SignalRow(item_id=item_id, item_name=item_name, sample_count=history.sample_count)
    if not history.points:
        return row

    latest = history.points[-1]
    row.latest_price = latest.unit_price
    row.latest_captured_at = latest.captured_at
    row.latest_weekday = latest.weekday
    row.weekday_average_price = history.weekday_average(latest.weekday)
    row.ma7_price = latest.ma7
    row.deviation_ratio_from_weekday_average = _deviation(latest.unit_price, row.weekday_average_price)
    row.deviation_ratio_from_ma7 = _deviation(latest.unit_price, latest.ma7)
    row.trend_tag = _trend_tag(row.deviation_ratio_from_weekday_average, threshold, enabled)
    row.triggered = row.trend_tag == BUY_ZONE
    return row


def _row_order(row: SignalRow) -> tuple:
    deviation = row.deviation_ratio_from_weekday_average
    return (
        not row.triggered,
        deviation is None,
        deviation if deviation is not None else 0.0,
        -row.sample_count,
        name_sort_key(row.item_name),
    )


def compute_signals(state: WorkshopState, query: Optional[SignalQuery] = None,
                    now: Optional[datetime] = None) -> SignalResult:
    """
    Compare each item's latest in-window price against its weekday average.

    A row triggers when the effective rule is enabled and the latest price
    sits at least ``threshold`` below the average for the same weekday.
    Without ``item_ids`` only items with in-window samples are reported.

    Raises:
        ItemNotFoundError: a requested item id is unknown
        PriceWindowError: the explicit bounds are invalid
    """
    query = query or SignalQuery()
    rule = state.signal_rule
    enabled = rule.enabled if query.enabled is None else bool(query.enabled)
    lookback = sanitize_lookback_days(
        rule.lookback_days if query.lookback_days is None else query.lookback_days
    )
    threshold = sanitize_signal_threshold(
        rule.drop_below_weekday_average_ratio
        if query.drop_below_weekday_average_ratio is None
        else query.drop_below_weekday_average_ratio
    )
    now = now or now_utc()
    window = resolve_window(query.start, query.end, lookback, now)

    if query.item_ids:
        targets = [require_item(state, item_id) for item_id in dict.fromkeys(query.item_ids)]
    else:
        in_window = {p.item_id for p in state.prices if window.contains(p.captured_at)}
        targets = [item for item_id, item in items_by_id(state).items() if item_id in in_window]

    rows = [_signal_row(state, item.id, item.name, window, threshold, enabled) for item in targets]
    rows.sort(key=_row_order)

    result = SignalResult(
        generated_at=now,
        window=window,
        rule_enabled=enabled,
        lookback_days=lookback,
        threshold_ratio=threshold,
        rows=rows,
    )
    log.debug("Signals: %d rows, %d triggered", len(rows), result.triggered_count)
    return result


__all__ = [
    "BUY_ZONE",
    "SELL_ZONE",
    "WATCH",
    "SignalQuery",
    "SignalRow",
    "SignalResult",
    "compute_signals",
]
