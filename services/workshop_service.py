"""
Workshop orchestration service.

Every operation follows the same cycle: snapshot-read the whole state from
the store, run a pure engine function, and replace the whole stored state
with the result in a single transaction. The engine holds no locks. Callers
that share one database must not interleave mutations, since the last
replace wins.
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Sequence

from core.signals import signals
from engine import mutations
from engine.config import ConfigManager
from engine.crafting import SimulationResult, simulate_craft
from engine.fees import FeeCalculator
from engine.models import WorkshopState
from engine.ranking import CraftOption, NearCraftSuggestion, near_craft_suggestions, rank_craft_options
from engine.samples import seed_sample_data
from engine.state import normalize_workshop_state
from logging_config import configure_logging
from recipes.catalog import parse_catalog
from recipes.loader import CatalogLoader
from recipes.merge import CatalogImportResult, import_catalog
from store.db import DatabaseManager
from utils.paths import init_app_paths

from .ocr_import import OcrImportResult, import_ocr_prices
from .ocr_lines import OcrParseResult, parse_ocr_lines, parse_ocr_trade_rows
from .price_history import PriceHistoryResult, query_price_history, resolve_window
from .price_signals import SignalQuery, SignalResult, compute_signals

log = logging.getLogger(__name__)


def _emit_state_changed(state: WorkshopState) -> None:
    signals.workshop_state_changed.emit(state)


class WorkshopService:
    """Load -> compute -> replace wrapper around the workshop store."""

    def __init__(self, db: DatabaseManager, config: Optional[ConfigManager] = None,
                 on_change: Optional[Callable[[WorkshopState], None]] = None):
        self.db = db
        self.config = config or ConfigManager()
        self.fees = FeeCalculator(self.config.get_config())
        self.on_change = on_change or _emit_state_changed

    # -- state ---------------------------------------------------------

    def get_state(self) -> WorkshopState:
        document = self.db.load_document()
        if document.get('signal_rule') is None:
            document['signal_rule'] = self.config.get_signal_defaults()
        return normalize_workshop_state(document, history_limit=self.config.get_history_limit())

    def _commit(self, state: WorkshopState) -> WorkshopState:
        self.db.save_state(state)
        self.on_change(state)
        return state

    def _mutate(self, fn: Callable[..., WorkshopState], *args, **kwargs) -> WorkshopState:
        return self._commit(fn(self.get_state(), *args, **kwargs))

    # -- validating mutators -------------------------------------------

    def upsert_item(self, name: str, category: str = "material", icon: Optional[str] = None,
                    notes: Optional[str] = None, item_id: Optional[str] = None) -> WorkshopState:
        return self._mutate(mutations.upsert_item, name, category, icon, notes, item_id)

    def delete_item(self, item_id: str) -> WorkshopState:
        return self._mutate(mutations.delete_item, item_id)

    def upsert_recipe(self, output_item_id: str, output_quantity: Any, inputs: Sequence[Any],
                      recipe_id: Optional[str] = None) -> WorkshopState:
        return self._mutate(mutations.upsert_recipe, output_item_id, output_quantity, inputs, recipe_id)

    def delete_recipe(self, recipe_id: str) -> WorkshopState:
        return self._mutate(mutations.delete_recipe, recipe_id)

    def add_price_snapshot(self, item_id: str, unit_price: Any, captured_at: Any = None,
                           source: str = "manual", note: Optional[str] = None) -> WorkshopState:
        return self._mutate(
            mutations.add_price_snapshot, item_id, unit_price, captured_at, source, note,
            history_limit=self.config.get_history_limit(),
        )

    def upsert_inventory(self, item_id: str, quantity: Any) -> WorkshopState:
        return self._mutate(mutations.upsert_inventory, item_id, quantity)

    def update_signal_rule(self, enabled: Optional[bool] = None, lookback_days: Any = None,
                           drop_below_weekday_average_ratio: Any = None) -> WorkshopState:
        return self._mutate(mutations.update_signal_rule, enabled, lookback_days,
                            drop_below_weekday_average_ratio)

    def seed_sample_data(self) -> WorkshopState:
        return self._mutate(seed_sample_data)

    # -- imports -------------------------------------------------------

    def import_catalog_text(self, text: str, source_tag: Optional[str] = None) -> CatalogImportResult:
        parsed = parse_catalog(text)
        result = import_catalog(self.get_state(), parsed, source_tag or self.config.get_catalog_source_tag())
        self._commit(result.state)
        return result

    def import_catalog_file(self, path: str, source_tag: Optional[str] = None) -> CatalogImportResult:
        result = CatalogLoader(path).import_into(self.get_state(), source_tag)
        self._commit(result.state)
        return result

    def import_ocr(self, parsed: OcrParseResult, captured_at: Any = None,
                   dedupe_within_seconds: Optional[float] = None) -> OcrImportResult:
        ocr = self.config.get_ocr_config()
        if dedupe_within_seconds is None:
            dedupe_within_seconds = ocr['dedupe_within_seconds']
        result = import_ocr_prices(
            self.get_state(),
            parsed,
            source="import",
            captured_at=captured_at,
            dedupe_within_seconds=dedupe_within_seconds,
            auto_create_missing_items=ocr['auto_create_missing_items'],
            default_category=ocr['default_category'],
            history_limit=self.config.get_history_limit(),
        )
        if result.imported_count or result.created_item_count:
            self._commit(result.state)
        return result

    def import_ocr_text(self, text: str, captured_at: Any = None,
                        dedupe_within_seconds: Optional[float] = None) -> OcrImportResult:
        return self.import_ocr(parse_ocr_lines(text), captured_at, dedupe_within_seconds)

    def import_ocr_rows(self, rows: Sequence[Any], captured_at: Any = None,
                        dedupe_within_seconds: Optional[float] = None) -> OcrImportResult:
        parsed = parse_ocr_trade_rows(rows, self.config.get_ocr_config()['price_column'])
        return self.import_ocr(parsed, captured_at, dedupe_within_seconds)

    # -- queries -------------------------------------------------------

    def simulate(self, recipe_id: str, runs: Any, tax_rate: Any = None,
                 mode: Optional[str] = None) -> SimulationResult:
        return simulate_craft(self.get_state(), recipe_id, runs, tax_rate,
                              mode or self.config.get_default_mode(), self.fees)

    def craft_options(self, tax_rate: Any = None) -> List[CraftOption]:
        return rank_craft_options(self.get_state(), tax_rate, self.fees)

    def near_craft(self, budget: Any, sort_mode: str = "max_budget_profit",
                   include_unaffordable: bool = False, tax_rate: Any = None) -> List[NearCraftSuggestion]:
        return near_craft_suggestions(self.craft_options(tax_rate), budget, sort_mode, include_unaffordable)

    def price_history(self, item_id: str, start: Any = None, end: Any = None,
                      lookback_days: Any = None) -> PriceHistoryResult:
        state = self.get_state()
        if lookback_days is None:
            lookback_days = state.signal_rule.lookback_days
        return query_price_history(state, item_id, resolve_window(start, end, lookback_days))

    def price_signals(self, query: Optional[SignalQuery] = None) -> SignalResult:
        return compute_signals(self.get_state(), query)

    def stats(self) -> Dict[str, Any]:
        return self.db.get_database_stats()

    def close(self):
        self.db.close()


def create_service(config_path: Optional[str] = None) -> WorkshopService:
    """Bootstrap paths, configuration, logging and the database."""
    init_app_paths()
    config = ConfigManager(config_path)
    cfg = config.load_config()
    configure_logging(cfg)
    for problem in config.validate_config():
        log.warning("Config: %s", problem)

    db = DatabaseManager(cfg)
    db.initialize_database()
    return WorkshopService(db, config)
