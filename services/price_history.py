"""
Price history statistics for a single item.

Snapshots inside a half-open ``[start, end)`` window are aggregated with
pandas: a 7-sample simple moving average, the window mean and per-weekday
means. Weekdays are computed in UTC with Sunday as 0.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, List, Optional

import pandas as pd

from engine.errors import PriceWindowError
from engine.models import PriceSnapshot, WorkshopState
from engine.state import require_item
from utils.constants import MOVING_AVERAGE_WINDOW
from utils.sanitize import sanitize_lookback_days
from utils.timefmt import now_utc, parse_instant, weekday_index

log = logging.getLogger(__name__)


@dataclass
class HistoryWindow:
    start: datetime
    end: datetime
    lookback_days: int

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment < self.end


@dataclass
class HistoryPoint:
    id: str
    captured_at: datetime
    unit_price: int
    weekday: int
    date_key: str
    ma7: Optional[float] = None


@dataclass
class WeekdayAverage:
    weekday: int
    average_price: float
    sample_count: int


@dataclass
class PriceHistoryResult:
    item_id: str
    item_name: str
    window: HistoryWindow
    sample_count: int = 0
    points: List[HistoryPoint] = field(default_factory=list)
    average_price: Optional[float] = None
    latest_price: Optional[int] = None
    latest_captured_at: Optional[datetime] = None
    weekday_averages: List[WeekdayAverage] = field(default_factory=list)

    def weekday_average(self, weekday: int) -> Optional[float]:
        for entry in self.weekday_averages:
            if entry.weekday == weekday:
                return entry.average_price
        return None


def _explicit_bound(raw: Any, label: str) -> Optional[datetime]:
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return None
    parsed = parse_instant(raw)
    if parsed is None:
        raise PriceWindowError(f"Unparsable {label} time: {raw!r}")
    return parsed


def resolve_window(start: Any = None, end: Any = None, lookback_days: Any = None,
                   now: Optional[datetime] = None) -> HistoryWindow:
    """
    Resolve optional bounds into a concrete ``[start, end)`` window.

    Only ``end`` given: the window reaches ``lookback_days`` back from it.
    Only ``start`` given: the window runs until ``now``. Neither: the last
    ``lookback_days`` up to ``now``.

    Raises:
        PriceWindowError: a bound is unparsable or ``start`` is after ``end``
    """
    days = sanitize_lookback_days(lookback_days)
    now = now or now_utc()
    start_at = _explicit_bound(start, "start")
    end_at = _explicit_bound(end, "end")

    if start_at is None and end_at is None:
        end_at = now
        start_at = now - timedelta(days=days)
    elif start_at is None:
        start_at = end_at - timedelta(days=days)
    elif end_at is None:
        end_at = now

    if start_at > end_at:
        raise PriceWindowError("Window start must not be after its end.")
    return HistoryWindow(start=start_at, end=end_at, lookback_days=days)


def window_snapshots(state: WorkshopState, item_id: str, window: HistoryWindow) -> List[PriceSnapshot]:
    """In-window snapshots of ``item_id`` ordered by capture time, then log order."""
    snaps = [p for p in state.prices if p.item_id == item_id and window.contains(p.captured_at)]
    snaps.sort(key=lambda p: p.captured_at)
    return snaps


def _optional_float(value: Any) -> Optional[float]:
    return None if pd.isna(value) else float(value)


def summarize_snapshots(item_id: str, item_name: str, snaps: List[PriceSnapshot],
                        window: HistoryWindow) -> PriceHistoryResult:
    """Build the statistics for already windowed and ordered snapshots."""
    result = PriceHistoryResult(item_id=item_id, item_name=item_name, window=window)
    if not snaps:
        return result

    frame = pd.DataFrame({
        "unit_price": [p.unit_price for p in snaps],
        "weekday": [weekday_index(p.captured_at) for p in snaps],
    })
    frame["ma7"] = frame["unit_price"].rolling(
        MOVING_AVERAGE_WINDOW, min_periods=MOVING_AVERAGE_WINDOW
    ).mean()
    by_weekday = frame.groupby("weekday")["unit_price"].agg(["mean", "count"])

    result.points = [
        HistoryPoint(
            id=snap.id,
            captured_at=snap.captured_at,
            unit_price=snap.unit_price,
            weekday=int(weekday),
            date_key=snap.captured_at.strftime("%Y-%m-%d"),
            ma7=_optional_float(ma7),
        )
        for snap, weekday, ma7 in zip(snaps, frame["weekday"], frame["ma7"])
    ]
    result.sample_count = len(snaps)
    result.average_price = float(frame["unit_price"].mean())
    result.latest_price = snaps[-1].unit_price
    result.latest_captured_at = snaps[-1].captured_at
    result.weekday_averages = [
        WeekdayAverage(weekday=int(weekday), average_price=float(row["mean"]), sample_count=int(row["count"]))
        for weekday, row in by_weekday.sort_index().iterrows()
    ]
    return result


def query_price_history(state: WorkshopState, item_id: str,
                        window: Optional[HistoryWindow] = None) -> PriceHistoryResult:
    """
    Price history of one item inside ``window``.

    Without a window the persisted signal rule's lookback up to now is used.

    Raises:
        ItemNotFoundError: ``item_id`` is not in ``state``
    """
    item = require_item(state, item_id)
    if window is None:
        window = resolve_window(lookback_days=state.signal_rule.lookback_days)
    result = summarize_snapshots(item.id, item.name, window_snapshots(state, item.id, window), window)
    log.debug("History for %s: %d samples in window", item.name, result.sample_count)
    return result


__all__ = [
    "HistoryWindow",
    "HistoryPoint",
    "WeekdayAverage",
    "PriceHistoryResult",
    "resolve_window",
    "window_snapshots",
    "summarize_snapshots",
    "query_price_history",
]
