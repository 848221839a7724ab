"""
Configuration manager for the Workshop Economy Simulator.

Handles loading and managing application configuration from YAML files.
"""

import logging
import os
from pathlib import Path
from typing import Dict, Any, List, Optional

import yaml

from utils.constants import (
    DEFAULT_ITEM_CATEGORY,
    DEFAULT_LOOKBACK_DAYS,
    DEFAULT_SIGNAL_THRESHOLD,
    DEFAULT_TAX_RATE,
    EXPANSION_MODES,
    ITEM_CATEGORIES,
    LOOKBACK_DAYS_MAX,
    LOOKBACK_DAYS_MIN,
    PRICE_HISTORY_LIMIT,
    SIGNAL_THRESHOLD_MAX,
    SIGNAL_THRESHOLD_MIN,
    TAX_RATE_MAX,
    TAX_RATE_MIN,
)
from utils.paths import CONFIG_PATH, DB_PATH, LOG_DIR

OCR_PRICE_COLUMNS = ("left", "right")


class ConfigError(Exception):
    """Raised when the configuration file exists but cannot be read or parsed."""


class ConfigManager:
    """Manages application configuration."""

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration manager."""
        self.logger = logging.getLogger(__name__)

        if config_path:
            self.config_path = Path(config_path)
        else:
            self.config_path = CONFIG_PATH

        self._config = None

    def load_config(self) -> Dict[str, Any]:
        """Load configuration from YAML file.

        A missing file yields the defaults; an unreadable or corrupt file
        raises :class:`ConfigError`.
        """
        if not self.config_path.exists():
            self.logger.warning("Config file not found at %s, using defaults", self.config_path)
            self._config = self.get_default_config()
            return self._config

        try:
            with self.config_path.open('r', encoding='utf-8') as f:
                config = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            self.logger.error("Failed to load configuration from %s: %s", self.config_path, e)
            raise ConfigError(f"Cannot load configuration from {self.config_path}: {e}") from e

        if config is None:
            config = {}
        if not isinstance(config, dict):
            raise ConfigError(f"Configuration root must be a mapping: {self.config_path}")

        # Merge with defaults to ensure all required keys exist
        self._config = self._merge_configs(self.get_default_config(), self._migrate_config(config))
        self.logger.info("Configuration loaded from %s", self.config_path)
        return self._config

    def get_config(self) -> Dict[str, Any]:
        """Get current configuration, loading if necessary."""
        if self._config is None:
            return self.load_config()
        return self._config

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value by key (supports dot notation)."""
        value = self.get_config()
        try:
            for k in key.split('.'):
                value = value[k]
            return value
        except (KeyError, TypeError):
            return default

    def set(self, key: str, value: Any):
        """Set configuration value by key (supports dot notation)."""
        keys = key.split('.')
        current = self.get_config()
        for k in keys[:-1]:
            if not isinstance(current.get(k), dict):
                current[k] = {}
            current = current[k]
        current[keys[-1]] = value

    def save_config(self, config: Optional[Dict[str, Any]] = None, config_path: Optional[str] = None):
        """Save configuration to YAML file atomically."""
        if config is not None:
            self._config = config

        if not self._config:
            self.logger.warning("No configuration to save")
            return

        save_path = Path(config_path) if config_path else self.config_path
        save_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            tmp_path = save_path.with_suffix(save_path.suffix + ".tmp")
            with open(tmp_path, 'w', encoding='utf-8') as f:
                yaml.safe_dump(self._config, f, default_flow_style=False, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, save_path)
            self.logger.info("Configuration saved to %s", save_path)
        except OSError as e:
            self.logger.error("Failed to save configuration: %s", e)
            raise

    def get_default_config(self) -> Dict[str, Any]:
        """Return default configuration values."""
        return {
            'fees': {
                'tax_rate': DEFAULT_TAX_RATE,
            },
            'crafting': {
                'default_mode': 'expanded',
            },
            'prices': {
                'history_limit': PRICE_HISTORY_LIMIT,
            },
            'signals': {
                'enabled': True,
                'lookback_days': DEFAULT_LOOKBACK_DAYS,
                'drop_below_weekday_average_ratio': DEFAULT_SIGNAL_THRESHOLD,
            },
            'ocr': {
                'auto_create_missing_items': True,
                'default_category': DEFAULT_ITEM_CATEGORY,
                'dedupe_within_seconds': 600,
                'max_consecutive_failures': 3,
                'price_column': 'left',
            },
            'catalog': {
                'source_tag': 'catalog-import',
            },
            'app': {
                'name': "Workshop Economy Simulator",
                'version': "1.0.0",
                'description': "Crafting economy simulator for a game workshop",
            },
            'database': {
                'path': str(DB_PATH),
            },
            'logging': {
                'level': "INFO",
                'file': str(LOG_DIR / "app.log"),
                'max_size_mb': 2,
                'backup_count': 5,
            },
        }

    def _merge_configs(self, default: Dict[str, Any], user: Dict[str, Any]) -> Dict[str, Any]:
        """Merge user configuration with defaults."""
        result = default.copy()

        for key, value in user.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_configs(result[key], value)
            else:
                result[key] = value

        return result

    def _migrate_config(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """Handle legacy configuration keys."""
        app_cfg = config.get('app', {})
        logging_cfg = config.setdefault('logging', {})
        if 'log_level' in app_cfg and 'level' not in logging_cfg:
            logging_cfg['level'] = app_cfg['log_level']
        app_cfg.pop('log_level', None)

        # older files kept the market tax next to the signal rule
        signals_cfg = config.get('signals', {})
        if 'tax_rate' in signals_cfg:
            config.setdefault('fees', {}).setdefault('tax_rate', signals_cfg['tax_rate'])
            signals_cfg.pop('tax_rate')
        return config

    def get_tax_rate(self) -> float:
        return self.get('fees.tax_rate', DEFAULT_TAX_RATE)

    def get_default_mode(self) -> str:
        return self.get('crafting.default_mode', 'expanded')

    def get_history_limit(self) -> int:
        return self.get('prices.history_limit', PRICE_HISTORY_LIMIT)

    def get_signal_defaults(self) -> Dict[str, Any]:
        """Get the signal rule used to seed a fresh state."""
        return self.get('signals', {})

    def get_ocr_config(self) -> Dict[str, Any]:
        cfg = self.get('ocr', {})
        return {
            'auto_create_missing_items': cfg.get('auto_create_missing_items', True),
            'default_category': cfg.get('default_category', DEFAULT_ITEM_CATEGORY),
            'dedupe_within_seconds': cfg.get('dedupe_within_seconds', 600),
            'max_consecutive_failures': cfg.get('max_consecutive_failures', 3),
            'price_column': cfg.get('price_column', 'left'),
        }

    def get_catalog_source_tag(self) -> str:
        return self.get('catalog.source_tag', 'catalog-import')

    def validate_config(self) -> List[str]:
        """Validate configuration and return list of errors."""
        errors = []
        config = self.get_config()

        for section in ('fees', 'signals', 'ocr'):
            if section not in config:
                errors.append(f"Missing required section: {section}")

        tax_rate = self.get_tax_rate()
        if not isinstance(tax_rate, (int, float)) or not (TAX_RATE_MIN <= tax_rate <= TAX_RATE_MAX):
            errors.append(f"Tax rate must be between {TAX_RATE_MIN} and {TAX_RATE_MAX}")

        if self.get_default_mode() not in EXPANSION_MODES:
            errors.append(f"Default crafting mode must be one of {', '.join(EXPANSION_MODES)}")

        history_limit = self.get_history_limit()
        if not isinstance(history_limit, int) or history_limit <= 0:
            errors.append("Price history limit must be a positive integer")

        lookback = self.get('signals.lookback_days')
        if not isinstance(lookback, int) or not (LOOKBACK_DAYS_MIN <= lookback <= LOOKBACK_DAYS_MAX):
            errors.append(f"Lookback days must be between {LOOKBACK_DAYS_MIN} and {LOOKBACK_DAYS_MAX}")

        ratio = self.get('signals.drop_below_weekday_average_ratio')
        if not isinstance(ratio, (int, float)) or not (SIGNAL_THRESHOLD_MIN <= ratio <= SIGNAL_THRESHOLD_MAX):
            errors.append(
                f"Signal threshold must be between {SIGNAL_THRESHOLD_MIN} and {SIGNAL_THRESHOLD_MAX}"
            )

        ocr = self.get_ocr_config()
        if ocr['default_category'] not in ITEM_CATEGORIES:
            errors.append(f"OCR default category must be one of {', '.join(ITEM_CATEGORIES)}")
        if ocr['price_column'] not in OCR_PRICE_COLUMNS:
            errors.append("OCR price column must be 'left' or 'right'")
        if not isinstance(ocr['max_consecutive_failures'], int) or ocr['max_consecutive_failures'] < 1:
            errors.append("OCR max consecutive failures must be at least 1")
        if not isinstance(ocr['dedupe_within_seconds'], (int, float)) or ocr['dedupe_within_seconds'] < 0:
            errors.append("OCR dedupe window must not be negative")

        return errors
