"""
Parser for plain-text item and recipe catalogs.

A catalog is a pipe- or tab-separated listing, for example::

    # Metals
    name | category | alias
    Iron Ore | raw material | ore
    output | quantity | inputs
    Iron Ingot | 1 | Iron Ore 3; Coal x1

Markdown tables work as well: leading and trailing pipes are ignored and
``---`` separator rows are skipped. Parsing never stops on a bad line; the
line is reported in ``warnings`` and the rest of the document is read.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional

from engine.errors import CatalogParseError
from utils.names import clean_display_name

log = logging.getLogger(__name__)

ITEM_HEADER_WORDS = {"name", "item"}
RECIPE_HEADER_WORDS = {"output", "recipe", "product"}
COLUMN_HEADER_WORDS = ITEM_HEADER_WORDS | RECIPE_HEADER_WORDS | {
    "category", "type", "alias", "main", "quantity", "qty", "count",
    "input", "inputs", "materials", "ingredients",
}

_FIELD_SPLIT = re.compile(r"\s*[|\t]\s*")
_INPUT_SPLIT = re.compile(r"[;；,，]")
_SEPARATOR_FIELD = re.compile(r"^:?-{2,}:?$")
_QUANTITY = re.compile(r"^(?:[x×*]\s*)?([+-]?\d+)$", re.IGNORECASE)
_INPUT_ENTRY = re.compile(
    r"^(?P<name>.+?)(?:\s+[x×*]?\s*|\s*[×*]\s*)(?P<qty>[+-]?\d+)$", re.IGNORECASE
)

# keyword -> item category, checked in order against the raw label
_CATEGORY_KEYWORDS = [
    ("equipment", ("equip", "weapon", "armor", "armour", "gear", "tool")),
    ("component", ("component", "intermediate", "part", "refined")),
    ("material", ("material", "resource", "raw", "ore", "drop", "reagent")),
]


@dataclass
class CatalogWarning:
    line_number: int
    text: str
    reason: str


@dataclass
class CatalogItemRow:
    """An item declared by the catalog."""
    line_number: int
    name: str
    category: str
    raw_category: str = ""
    main_category: Optional[str] = None
    alias: Optional[str] = None


@dataclass
class CatalogRecipeInputRow:
    name: str
    quantity: int


@dataclass
class CatalogRecipeRow:
    """A recipe declared by the catalog; names are resolved on merge."""
    line_number: int
    output_name: str
    output_quantity: int
    inputs: List[CatalogRecipeInputRow]
    main_category: Optional[str] = None


@dataclass
class CatalogParseResult:
    items: List[CatalogItemRow] = field(default_factory=list)
    recipes: List[CatalogRecipeRow] = field(default_factory=list)
    warnings: List[CatalogWarning] = field(default_factory=list)


class _LineError(Exception):
    """Reason a single catalog line was rejected."""


def map_category(raw_label: Optional[str], main_category: Optional[str] = None) -> str:
    """Map a free-form category label (or the section heading) to an item category."""
    for is_heading, label in ((False, raw_label), (True, main_category)):
        text = (label or "").casefold()
        if not text:
            continue
        for category, keywords in _CATEGORY_KEYWORDS:
            if any(word in text for word in keywords):
                return category
        if not is_heading:
            return "other"
    return "material"


def split_fields(line: str) -> List[str]:
    text = line.strip()
    if text.startswith("|"):
        text = text[1:]
    if text.endswith("|"):
        text = text[:-1]
    return [part.strip() for part in _FIELD_SPLIT.split(text.strip())]


def parse_quantity(raw: str, label: str) -> int:
    match = _QUANTITY.match(raw.strip())
    if match is None:
        raise _LineError(f"non-numeric {label}")
    value = int(match.group(1))
    if value <= 0:
        raise _LineError(f"non-positive {label}")
    return value


def parse_inputs(raw: str) -> List[CatalogRecipeInputRow]:
    entries = [part.strip() for part in _INPUT_SPLIT.split(raw)]
    entries = [entry for entry in entries if entry]
    if not entries:
        raise _LineError("empty input list")

    inputs: List[CatalogRecipeInputRow] = []
    for entry in entries:
        match = _INPUT_ENTRY.match(entry)
        if match is None:
            raise _LineError(f"malformed input entry: {entry}")
        name = clean_display_name(match.group("name"))
        if not name:
            raise _LineError(f"malformed input entry: {entry}")
        quantity = int(match.group("qty"))
        if quantity <= 0:
            raise _LineError(f"non-positive input quantity: {entry}")
        inputs.append(CatalogRecipeInputRow(name=name, quantity=quantity))
    return inputs


def _parse_item(fields: List[str], line_number: int, main: Optional[str]) -> CatalogItemRow:
    name = clean_display_name(fields[0])
    if not name:
        raise _LineError("empty item name")
    raw_category = fields[1] if len(fields) > 1 else ""
    alias = clean_display_name(fields[2]) if len(fields) > 2 else ""
    return CatalogItemRow(
        line_number=line_number,
        name=name,
        category=map_category(raw_category, main),
        raw_category=raw_category,
        main_category=main,
        alias=alias or None,
    )


def _parse_recipe(fields: List[str], line_number: int, main: Optional[str]) -> CatalogRecipeRow:
    output_name = clean_display_name(fields[0])
    if not output_name:
        raise _LineError("empty output name")
    if len(fields) < 2 or not fields[1]:
        raise _LineError("missing output quantity")
    quantity = parse_quantity(fields[1], "output quantity")
    if len(fields) < 3:
        raise _LineError("empty input list")
    inputs = parse_inputs(" ; ".join(fields[2:]))
    return CatalogRecipeRow(
        line_number=line_number,
        output_name=output_name,
        output_quantity=quantity,
        inputs=inputs,
        main_category=main,
    )


def _header_mode(fields: List[str]) -> Optional[str]:
    """Section mode for a header row; None for a data row.

    Every non-empty cell must be a column word, so an item called "Product"
    is still read as data.
    """
    cells = [f.casefold() for f in fields if f]
    if not cells or any(cell not in COLUMN_HEADER_WORDS for cell in cells):
        return None
    if fields[0].casefold() in ITEM_HEADER_WORDS:
        return "item"
    if fields[0].casefold() in RECIPE_HEADER_WORDS:
        return "recipe"
    return None


def parse_catalog(text: Optional[str]) -> CatalogParseResult:
    """
    Parse a catalog document into item rows, recipe rows and warnings.

    Raises:
        CatalogParseError: ``text`` is absent or blank
    """
    if not isinstance(text, str) or not text.strip():
        raise CatalogParseError("Catalog text is empty.")

    result = CatalogParseResult()
    mode = "item"
    main: Optional[str] = None

    for line_number, line in enumerate(text.splitlines(), start=1):
        stripped = line.strip()
        if not stripped:
            continue

        if stripped.startswith("#"):
            main = clean_display_name(stripped.lstrip("#")) or None
            continue

        fields = split_fields(stripped)
        if all(_SEPARATOR_FIELD.match(f) or not f for f in fields):
            continue

        header = _header_mode(fields)
        if header is not None:
            mode = header
            continue

        try:
            if mode == "recipe":
                result.recipes.append(_parse_recipe(fields, line_number, main))
            else:
                result.items.append(_parse_item(fields, line_number, main))
        except _LineError as e:
            result.warnings.append(CatalogWarning(line_number=line_number, text=stripped, reason=str(e)))

    log.debug(
        "Parsed catalog: %d items, %d recipes, %d warnings",
        len(result.items), len(result.recipes), len(result.warnings),
    )
    return result


__all__ = [
    "CatalogWarning",
    "CatalogItemRow",
    "CatalogRecipeInputRow",
    "CatalogRecipeRow",
    "CatalogParseResult",
    "map_category",
    "split_fields",
    "parse_quantity",
    "parse_inputs",
    "parse_catalog",
]
