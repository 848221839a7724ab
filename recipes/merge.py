"""
Merge parsed catalog rows into a workshop state.

Items are resolved by normalized name (and by registered aliases); unknown
names referenced by recipes become new items tagged with the import source.
Notes carry machine-generated ``key: value`` tags next to anything the user
wrote by hand; a merge only rewrites the generated keys it supplies.
"""

import dataclasses
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Set

from engine.models import Item, Recipe, RecipeInput, WorkshopState
from engine.state import new_id, normalize_recipe_inputs, renormalize
from utils.names import normalize_item_name
from utils.timefmt import now_utc

from .catalog import CatalogItemRow, CatalogParseResult, CatalogRecipeRow, CatalogWarning

log = logging.getLogger(__name__)

NOTE_SEPARATOR = "; "
GENERATED_NOTE_KEYS = ("category", "main", "alias", "source")

# name keyword -> icon key
_ICON_KEYWORDS = [
    ("weapon", ("sword", "blade", "axe", "bow", "staff", "spear", "dagger", "mace", "hammer")),
    ("armor", ("armor", "armour", "helm", "boots", "shield", "robe", "jacket", "gloves")),
    ("ingot", ("ingot", "bar", "metal")),
    ("ore", ("ore", "stone", "rock")),
    ("wood", ("wood", "plank", "log", "timber")),
    ("cloth", ("cloth", "fiber", "fibre", "leather", "hide", "thread")),
    ("gem", ("core", "gem", "crystal", "essence", "shard", "rune")),
    ("powder", ("powder", "dust", "sand")),
]
_CATEGORY_ICONS = {
    "material": "material",
    "equipment": "equipment",
    "component": "component",
    "other": "misc",
}


@dataclass
class CatalogImportResult:
    state: WorkshopState
    created_item_count: int = 0
    updated_item_count: int = 0
    imported_recipe_count: int = 0
    warnings: List[CatalogWarning] = field(default_factory=list)


def infer_icon(name: str, category: str) -> str:
    """Guess an icon key from keywords in ``name``, falling back to the category."""
    words = normalize_item_name(name).replace("-", " ").split()
    for icon, keywords in _ICON_KEYWORDS:
        if any(word.startswith(keyword) for word in words for keyword in keywords):
            return icon
    return _CATEGORY_ICONS.get(category, "misc")


def split_note_segments(notes: Optional[str]) -> List[str]:
    return [seg.strip() for seg in (notes or "").split(";") if seg.strip()]


def _segment_key(segment: str) -> Optional[str]:
    key, sep, _ = segment.partition(":")
    key = key.strip().casefold()
    return key if sep and key in GENERATED_NOTE_KEYS else None


def note_tag_values(notes: Optional[str], key: str) -> List[str]:
    """Return the values of every generated ``key:`` tag in ``notes``."""
    values = []
    for segment in split_note_segments(notes):
        if _segment_key(segment) == key:
            value = segment.partition(":")[2].strip()
            if value:
                values.append(value)
    return values


def merge_notes(existing: Optional[str], tags: Dict[str, Optional[str]]) -> Optional[str]:
    """
    Refresh generated tags in ``existing`` while keeping manual segments.

    Keys in ``tags`` replace any previous tag with the same key; a ``None``
    value leaves the previous tag alone.
    """
    replaced = {key for key, value in tags.items() if value}
    kept = [seg for seg in split_note_segments(existing) if _segment_key(seg) not in replaced]
    generated = [f"{key}: {tags[key]}" for key in GENERATED_NOTE_KEYS if tags.get(key)]
    manual = [seg for seg in kept if _segment_key(seg) is None]
    previous_tags = [seg for seg in kept if _segment_key(seg) is not None]
    merged = manual + previous_tags + generated
    return NOTE_SEPARATOR.join(merged) or None


class _Merger:
    """Mutable working copy used during one import run."""

    def __init__(self, state: WorkshopState, source_tag: str, now: datetime):
        self.source_tag = source_tag
        self.now = now
        self.items: Dict[str, Item] = {item.id: item for item in state.items}
        self.recipes: Dict[str, Recipe] = {r.output_item_id: r for r in state.recipes}
        self.index: Dict[str, str] = {}
        for item in state.items:
            self.index.setdefault(normalize_item_name(item.name), item.id)
        for item in state.items:
            for alias in note_tag_values(item.notes, "alias"):
                self.index.setdefault(normalize_item_name(alias), item.id)
        self.created: Set[str] = set()
        self.updated: Set[str] = set()

    def resolve(self, name: str) -> Optional[Item]:
        item_id = self.index.get(normalize_item_name(name))
        return self.items.get(item_id) if item_id else None

    def _store(self, item: Item, *aliases: Optional[str]) -> Item:
        self.items[item.id] = item
        self.index.setdefault(normalize_item_name(item.name), item.id)
        for alias in aliases:
            if alias:
                self.index.setdefault(normalize_item_name(alias), item.id)
        return item

    def create(self, name: str, category: str, tags: Dict[str, Optional[str]],
               alias: Optional[str] = None) -> Item:
        item = Item(
            id=new_id(),
            name=name,
            category=category,
            icon=infer_icon(name, category),
            notes=merge_notes(None, tags),
            created_at=self.now,
            updated_at=self.now,
        )
        self.created.add(item.id)
        return self._store(item, alias)

    def apply_item_row(self, row: CatalogItemRow) -> None:
        tags = {
            "category": row.raw_category or None,
            "main": row.main_category,
            "alias": row.alias,
        }
        existing = self.resolve(row.name)
        if existing is None:
            self.create(row.name, row.category, dict(tags, source=self.source_tag), row.alias)
            return
        updated = dataclasses.replace(
            existing,
            category=row.category,
            notes=merge_notes(existing.notes, tags),
            updated_at=self.now,
        )
        if existing.id not in self.created:
            self.updated.add(existing.id)
        self._store(updated, row.alias)

    def resolve_or_create(self, name: str, category: str, main: Optional[str]) -> Item:
        item = self.resolve(name)
        if item is None:
            item = self.create(name, category, {"main": main, "source": self.source_tag})
        return item

    def apply_recipe_row(self, row: CatalogRecipeRow, touched: Set[str],
                         warnings: List[CatalogWarning]) -> bool:
        def warn(reason: str) -> bool:
            warnings.append(CatalogWarning(
                line_number=row.line_number,
                text=f"{row.output_name} | {row.output_quantity}",
                reason=reason,
            ))
            return False

        output_key = normalize_item_name(row.output_name)
        if any(normalize_item_name(inp.name) == output_key for inp in row.inputs):
            return warn("recipe inputs contain its own output")
        existing_output = self.resolve(row.output_name)
        if existing_output is not None and existing_output.id in touched:
            return warn("duplicate recipe for output in this import")

        output = existing_output or self.resolve_or_create(row.output_name, "component", row.main_category)
        inputs = []
        for inp in row.inputs:
            item = self.resolve_or_create(inp.name, "material", row.main_category)
            inputs.append(RecipeInput(item_id=item.id, quantity=inp.quantity))
        normalized = normalize_recipe_inputs(inputs)
        if any(inp.item_id == output.id for inp in normalized):
            # an alias resolved an input onto the output
            return warn("recipe inputs contain its own output")

        previous = self.recipes.get(output.id)
        self.recipes[output.id] = Recipe(
            id=previous.id if previous is not None else new_id(),
            output_item_id=output.id,
            output_quantity=row.output_quantity,
            inputs=normalized,
            updated_at=self.now,
        )
        touched.add(output.id)
        return True


def import_catalog(state: WorkshopState, parsed: CatalogParseResult,
                   source_tag: str = "catalog-import",
                   now: Optional[datetime] = None) -> CatalogImportResult:
    """Apply a parsed catalog to ``state`` and report what changed."""
    merger = _Merger(state, source_tag, now or now_utc())
    warnings = list(parsed.warnings)

    for row in parsed.items:
        merger.apply_item_row(row)

    touched: Set[str] = set()
    imported = 0
    for row in parsed.recipes:
        if merger.apply_recipe_row(row, touched, warnings):
            imported += 1

    next_state = renormalize(dataclasses.replace(
        state,
        items=tuple(merger.items.values()),
        recipes=tuple(merger.recipes.values()),
    ))
    result = CatalogImportResult(
        state=next_state,
        created_item_count=len(merger.created),
        updated_item_count=len(merger.updated),
        imported_recipe_count=imported,
        warnings=warnings,
    )
    log.info(
        "Catalog import (%s): %d items created, %d updated, %d recipes, %d warnings",
        source_tag, result.created_item_count, result.updated_item_count,
        imported, len(warnings),
    )
    return result


__all__ = [
    "CatalogImportResult",
    "infer_icon",
    "merge_notes",
    "note_tag_values",
    "import_catalog",
]
