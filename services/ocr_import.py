"""Turn parsed OCR rows into price snapshots."""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Set, Tuple

from engine.errors import ValidationError
from engine.models import Item, PriceSnapshot, WorkshopState
from engine.state import items_by_normalized_name, latest_price_map, new_id, renormalize
from utils.constants import DEFAULT_ITEM_CATEGORY, ITEM_CATEGORIES, PRICE_HISTORY_LIMIT
from utils.names import normalize_item_name
from utils.timefmt import now_utc, parse_instant

from .ocr_lines import OcrInvalidLine, OcrParseResult

log = logging.getLogger(__name__)

OCR_NOTE = "ocr-import"


@dataclass
class ImportedEntry:
    item_id: str
    item_name: str
    unit_price: int
    line_number: int
    created_item: bool = False


@dataclass
class OcrImportResult:
    state: WorkshopState
    imported_count: int = 0
    duplicate_skipped_count: int = 0
    created_item_count: int = 0
    unknown_item_names: List[str] = field(default_factory=list)
    invalid_lines: List[OcrInvalidLine] = field(default_factory=list)
    imported_entries: List[ImportedEntry] = field(default_factory=list)


def import_ocr_prices(state: WorkshopState, parsed: OcrParseResult, source: str = "import",
                      captured_at: Any = None, dedupe_within_seconds: float = 0,
                      auto_create_missing_items: bool = False,
                      default_category: str = DEFAULT_ITEM_CATEGORY,
                      history_limit: int = PRICE_HISTORY_LIMIT,
                      now: Optional[datetime] = None) -> OcrImportResult:
    """
    Record one snapshot per parsed row whose name resolves to an item.

    A row is skipped as a duplicate when the same item and price was already
    imported in this batch, or when the item's latest snapshot has the same
    price and was captured within ``dedupe_within_seconds``.
    """
    if default_category not in ITEM_CATEGORIES:
        raise ValidationError(f"Unknown item category: {default_category}")
    now = now or now_utc()
    if captured_at is None:
        captured = now
    else:
        captured = parse_instant(captured_at)
        if captured is None:
            raise ValidationError(f"Unparsable capture time: {captured_at!r}")
    window = timedelta(seconds=max(0.0, float(dedupe_within_seconds or 0)))

    items: List[Item] = list(state.items)
    index: Dict[str, Item] = items_by_normalized_name(items)
    latest: Dict[str, PriceSnapshot] = latest_price_map(state)
    prices: List[PriceSnapshot] = list(state.prices)
    seen: Set[Tuple[str, int]] = set()
    result = OcrImportResult(state=state, invalid_lines=list(parsed.invalid_lines))

    for row in parsed.valid_rows:
        key = normalize_item_name(row.item_name)
        item = index.get(key)
        created = False
        if item is None:
            if not auto_create_missing_items:
                if row.item_name not in result.unknown_item_names:
                    result.unknown_item_names.append(row.item_name)
                continue
            item = Item(id=new_id(), name=row.item_name, category=default_category,
                        notes=f"source: {OCR_NOTE}", created_at=now, updated_at=now)
            items.append(item)
            index[key] = item
            result.created_item_count += 1
            created = True

        marker = (item.id, row.unit_price)
        previous = latest.get(item.id)
        if marker in seen or (
            window and previous is not None
            and previous.unit_price == row.unit_price
            and abs(captured - previous.captured_at) <= window
        ):
            result.duplicate_skipped_count += 1
            continue

        snapshot = PriceSnapshot(
            id=new_id(),
            item_id=item.id,
            unit_price=row.unit_price,
            captured_at=captured,
            source="import" if source == "import" else "manual",
            note=OCR_NOTE,
        )
        prices.append(snapshot)
        latest[item.id] = snapshot
        seen.add(marker)
        result.imported_entries.append(ImportedEntry(
            item_id=item.id,
            item_name=item.name,
            unit_price=row.unit_price,
            line_number=row.line_number,
            created_item=created,
        ))

    result.imported_count = len(result.imported_entries)
    result.state = renormalize(
        dataclasses.replace(state, items=tuple(items), prices=tuple(prices[-history_limit:])),
        history_limit=history_limit,
    )
    log.info(
        "OCR import: %d imported, %d duplicates, %d created, %d unknown, %d invalid",
        result.imported_count, result.duplicate_skipped_count, result.created_item_count,
        len(result.unknown_item_names), len(result.invalid_lines),
    )
    return result


__all__ = ["ImportedEntry", "OcrImportResult", "import_ocr_prices"]
