"""
Database manager for the Workshop Economy Simulator.

Persists the workshop state as a whole document: a load reads every table,
a save replaces every table inside one transaction.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, close_all_sessions, sessionmaker

from engine.models import WorkshopState
from engine.state import normalize_workshop_state, state_to_document
from utils.constants import PRICE_HISTORY_LIMIT
from utils.paths import DB_PATH
from utils.timefmt import now_utc, parse_instant, to_iso

from .models import (
    AppSettings,
    Base,
    InventoryRecord,
    ItemRecord,
    PriceSnapshotRecord,
    RecipeInputRecord,
    RecipeRecord,
)

STATE_VERSION_KEY = 'workshop.version'
SIGNAL_RULE_KEY = 'workshop.signal_rule'


def _encode_setting(value: Any):
    if isinstance(value, bool):
        return str(value).lower(), 'bool'
    if isinstance(value, int):
        return str(value), 'int'
    if isinstance(value, float):
        return str(value), 'float'
    if isinstance(value, (dict, list)):
        return json.dumps(value), 'json'
    return str(value), 'string'


def _decode_setting(setting: AppSettings) -> Any:
    if setting.value_type == 'int':
        return int(setting.value)
    elif setting.value_type == 'float':
        return float(setting.value)
    elif setting.value_type == 'bool':
        return setting.value.lower() in ('true', '1', 'yes')
    elif setting.value_type == 'json':
        return json.loads(setting.value)
    return setting.value


def _ts(value) -> Optional[str]:
    return to_iso(value) if value is not None else None


class DatabaseManager:
    """Manages database operations for the application."""

    def __init__(self, config: Dict[str, Any]):
        """Initialize database manager with configuration."""
        self.config = config
        self.logger = logging.getLogger(__name__)

        db_path = config.get('database', {}).get('path', str(DB_PATH))
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.db_url = f"sqlite:///{self.db_path}"

        self.engine = None
        self.SessionLocal = None

    def initialize_database(self):
        """Initialize database engine and create tables."""
        try:
            self.logger.info(f"Initializing database at {self.db_path}")
            self.engine = create_engine(
                self.db_url,
                echo=False,
                pool_pre_ping=True,
                connect_args={"check_same_thread": False}  # For SQLite
            )
            self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)
            Base.metadata.create_all(bind=self.engine)
            self.logger.info("Database initialized successfully")
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to initialize database: {e}")
            raise

    def get_session(self) -> Session:
        """Get a new database session."""
        if not self.SessionLocal:
            raise RuntimeError("Database not initialized. Call initialize_database() first.")
        return self.SessionLocal()

    def load_document(self) -> Dict[str, Any]:
        """Read the whole workshop state as an (unnormalized) document."""
        session = self.get_session()
        try:
            settings = {s.key: s for s in session.query(AppSettings).all()}
            version = settings.get(STATE_VERSION_KEY)
            signal_rule = settings.get(SIGNAL_RULE_KEY)

            items = [
                {
                    'id': it.id,
                    'name': it.name,
                    'category': it.category,
                    'icon': it.icon,
                    'notes': it.notes,
                    'created_at': _ts(it.created_at),
                    'updated_at': _ts(it.updated_at),
                }
                for it in session.query(ItemRecord).all()
            ]
            recipes = [
                {
                    'id': r.id,
                    'output_item_id': r.output_item_id,
                    'output_quantity': r.output_quantity,
                    'inputs': [{'item_id': i.item_id, 'quantity': i.quantity} for i in r.inputs],
                    'updated_at': _ts(r.updated_at),
                }
                for r in session.query(RecipeRecord).all()
            ]
            prices = [
                {
                    'id': p.id,
                    'item_id': p.item_id,
                    'unit_price': p.unit_price,
                    'captured_at': _ts(p.captured_at),
                    'source': p.source,
                    'note': p.note,
                }
                for p in session.query(PriceSnapshotRecord).order_by(PriceSnapshotRecord.position).all()
            ]
            inventory = [
                {'item_id': row.item_id, 'quantity': row.quantity, 'updated_at': _ts(row.updated_at)}
                for row in session.query(InventoryRecord).all()
            ]
            return {
                'version': _decode_setting(version) if version else None,
                'items': items,
                'recipes': recipes,
                'prices': prices,
                'inventory': inventory,
                'signal_rule': _decode_setting(signal_rule) if signal_rule else None,
            }
        except (SQLAlchemyError, ValueError) as e:
            self.logger.error(f"Failed to load workshop state: {e}")
            raise
        finally:
            session.close()

    def save_document(self, document: Dict[str, Any]):
        """Replace the whole stored state with ``document`` in one transaction."""
        session = self.get_session()
        try:
            session.query(RecipeInputRecord).delete()
            session.query(RecipeRecord).delete()
            session.query(PriceSnapshotRecord).delete()
            session.query(InventoryRecord).delete()
            session.query(ItemRecord).delete()

            fallback = now_utc()

            def when(raw):
                return parse_instant(raw) or fallback

            for it in document.get('items', []):
                session.add(ItemRecord(
                    id=it['id'],
                    name=it['name'],
                    category=it['category'],
                    icon=it.get('icon'),
                    notes=it.get('notes'),
                    created_at=when(it.get('created_at')),
                    updated_at=when(it.get('updated_at')),
                ))
            for r in document.get('recipes', []):
                session.add(RecipeRecord(
                    id=r['id'],
                    output_item_id=r['output_item_id'],
                    output_quantity=r['output_quantity'],
                    updated_at=when(r.get('updated_at')),
                    inputs=[
                        RecipeInputRecord(item_id=i['item_id'], quantity=i['quantity'])
                        for i in r.get('inputs', [])
                    ],
                ))
            for position, p in enumerate(document.get('prices', [])):
                session.add(PriceSnapshotRecord(
                    id=p['id'],
                    position=position,
                    item_id=p['item_id'],
                    unit_price=p['unit_price'],
                    captured_at=when(p.get('captured_at')),
                    source=p.get('source', 'manual'),
                    note=p.get('note'),
                ))
            for row in document.get('inventory', []):
                session.add(InventoryRecord(
                    item_id=row['item_id'],
                    quantity=row['quantity'],
                    updated_at=when(row.get('updated_at')),
                ))

            self._put_setting(session, STATE_VERSION_KEY, document.get('version'))
            if document.get('signal_rule') is not None:
                self._put_setting(session, SIGNAL_RULE_KEY, document['signal_rule'])

            session.commit()
            self.logger.debug(
                "Saved workshop state: %d items, %d recipes, %d prices",
                len(document.get('items', [])), len(document.get('recipes', [])),
                len(document.get('prices', [])),
            )
        except SQLAlchemyError as e:
            session.rollback()
            self.logger.error(f"Failed to save workshop state: {e}")
            raise
        finally:
            session.close()

    def load_state(self, history_limit: int = PRICE_HISTORY_LIMIT) -> WorkshopState:
        """Load and normalize the stored state."""
        return normalize_workshop_state(self.load_document(), history_limit=history_limit)

    def save_state(self, state: WorkshopState):
        self.save_document(state_to_document(state))

    def _put_setting(self, session: Session, key: str, value: Any):
        value_str, value_type = _encode_setting(value)
        setting = session.query(AppSettings).filter(AppSettings.key == key).first()
        if setting:
            setting.value = value_str
            setting.value_type = value_type
        else:
            session.add(AppSettings(key=key, value=value_str, value_type=value_type))

    def get_database_stats(self) -> Dict[str, Any]:
        """Get database statistics."""
        session = self.get_session()
        try:
            return {
                'items': session.query(ItemRecord).count(),
                'recipes': session.query(RecipeRecord).count(),
                'price_snapshots': session.query(PriceSnapshotRecord).count(),
                'inventory_rows': session.query(InventoryRecord).count(),
                'database_size_mb': self._get_database_size_mb(),
            }
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to get database stats: {e}")
            raise
        finally:
            session.close()

    def _get_database_size_mb(self) -> float:
        """Get database file size in MB."""
        try:
            if self.db_path.exists():
                return self.db_path.stat().st_size / (1024 * 1024)
            return 0.0
        except OSError:
            return 0.0

    def close(self):
        """Cleanly dispose sessions and engine."""
        if getattr(self, "SessionLocal", None):
            close_all_sessions()
        if getattr(self, "engine", None):
            self.engine.dispose()
