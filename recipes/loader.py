"""
Catalog loader for the Workshop Economy Simulator.

Reads a catalog text file handed over by the caller and parses it.
"""

import logging
from pathlib import Path
from typing import Optional, Union

from engine.errors import CatalogParseError
from engine.models import WorkshopState

from .catalog import CatalogParseResult, parse_catalog
from .merge import CatalogImportResult, import_catalog


class CatalogLoader:
    """Loads item and recipe catalogs from text files."""

    def __init__(self, catalog_file: Union[str, Path], encoding: str = "utf-8"):
        """Initialize catalog loader."""
        self.logger = logging.getLogger(__name__)
        self.catalog_file = Path(catalog_file)
        self.encoding = encoding
        self.last_result: Optional[CatalogParseResult] = None

    def read_text(self) -> str:
        try:
            # utf-8-sig drops a BOM left by spreadsheet exports
            encoding = "utf-8-sig" if self.encoding.lower() == "utf-8" else self.encoding
            with self.catalog_file.open("r", encoding=encoding) as f:
                return f.read()
        except FileNotFoundError as e:
            self.logger.error(f"Catalog file not found: {self.catalog_file}")
            raise CatalogParseError(f"Catalog file not found: {self.catalog_file}") from e
        except (OSError, UnicodeDecodeError) as e:
            self.logger.error(f"Failed to read catalog file {self.catalog_file}: {e}")
            raise CatalogParseError(f"Cannot read catalog file {self.catalog_file}: {e}") from e

    def load(self) -> CatalogParseResult:
        """Read and parse the catalog file."""
        result = parse_catalog(self.read_text())
        for warning in result.warnings:
            self.logger.warning(
                "%s:%d skipped (%s): %s",
                self.catalog_file.name, warning.line_number, warning.reason, warning.text,
            )
        self.last_result = result
        return result

    def import_into(self, state: WorkshopState, source_tag: Optional[str] = None) -> CatalogImportResult:
        """Load the file and merge it into ``state``; the file name is the default source tag."""
        parsed = self.load()
        return import_catalog(state, parsed, source_tag or self.catalog_file.stem)
