import pytest

from conftest import T0, ids_by_name
from engine.errors import CatalogParseError
from engine.models import WorkshopState
from engine.mutations import upsert_item
from engine.state import items_by_id, recipes_by_output
from recipes.catalog import map_category, parse_catalog, parse_inputs
from recipes.loader import CatalogLoader
from recipes.merge import import_catalog, infer_icon, merge_notes, note_tag_values

CATALOG = """\
# Metals
name | category | alias
Iron Ore | raw material | ore
Coal | fuel
output | quantity | inputs
Iron Ingot | 1 | Iron Ore 3; Coal x1
Steel Bar | two | Iron Ingot 2
Broken | 1 |
"""


def test_parse_items_recipes_and_warnings():
    parsed = parse_catalog(CATALOG)

    assert [(i.name, i.category, i.main_category, i.alias) for i in parsed.items] == [
        ("Iron Ore", "material", "Metals", "ore"),
        ("Coal", "other", "Metals", None),
    ]
    (recipe,) = parsed.recipes
    assert (recipe.line_number, recipe.output_name, recipe.output_quantity) == (6, "Iron Ingot", 1)
    assert [(i.name, i.quantity) for i in recipe.inputs] == [("Iron Ore", 3), ("Coal", 1)]
    assert [(w.line_number, w.reason) for w in parsed.warnings] == [
        (7, "non-numeric output quantity"),
        (8, "empty input list"),
    ]


def test_markdown_table_rows():
    text = "| output | quantity | inputs |\n|---|:---:|---|\n| Blade | x2 | Ingot × 3, Leather*1 |\n"
    parsed = parse_catalog(text)
    assert parsed.warnings == []
    (recipe,) = parsed.recipes
    assert recipe.output_quantity == 2
    assert [(i.name, i.quantity) for i in recipe.inputs] == [("Ingot", 3), ("Leather", 1)]


def test_bad_recipe_lines_become_warnings():
    text = "output\nA | 0 | B 1\nB | 1 | C -1\nC | 1 | Box\n| | 1 | D 1 |\nD\n"
    parsed = parse_catalog(text)
    assert parsed.recipes == []
    reasons = [w.reason for w in parsed.warnings]
    assert reasons[0] == "non-positive output quantity"
    assert reasons[1].startswith("non-positive input quantity")
    assert reasons[2].startswith("malformed input entry")
    assert reasons[3] == "empty output name"
    assert reasons[4] == "missing output quantity"


def test_input_entry_needs_separator():
    assert [(i.name, i.quantity) for i in parse_inputs("Box 3")] == [("Box", 3)]
    assert [(i.name, i.quantity) for i in parse_inputs("Gear Part x12")] == [("Gear Part", 12)]


def test_blank_catalog_raises():
    with pytest.raises(CatalogParseError):
        parse_catalog("  \n ")
    with pytest.raises(CatalogParseError):
        parse_catalog(None)


def test_map_category():
    assert map_category("Two-handed Weapon") == "equipment"
    assert map_category("refined goods") == "component"
    assert map_category("gizmo", "Raw Resources") == "other"
    assert map_category("", "Raw Resources") == "material"
    assert map_category(None, "Misc") == "material"


def test_note_helpers():
    assert merge_notes("keep me; source: old; alias: x", {"alias": "y", "main": None}) == \
        "keep me; source: old; alias: y"
    assert merge_notes(None, {}) is None
    assert note_tag_values("alias: a; Alias: b; other", "alias") == ["a", "b"]


def test_infer_icon():
    assert infer_icon("Iron Sword", "equipment") == "weapon"
    assert infer_icon("Hero Longsword", "equipment") == "equipment"
    assert infer_icon("Reinforced Ingot", "component") == "ingot"
    assert infer_icon("Coal", "other") == "misc"
    assert infer_icon("Coal", "material") == "material"


def test_import_merges_into_existing_items():
    state = upsert_item(WorkshopState(), "iron   ore", notes="bought at market", now=T0)
    result = import_catalog(state, parse_catalog(CATALOG), now=T0)

    assert (result.created_item_count, result.updated_item_count, result.imported_recipe_count) == (2, 1, 1)
    assert len(result.warnings) == 2

    items = {it.name: it for it in result.state.items}
    assert sorted(items) == ["Coal", "Iron Ingot", "iron ore"]
    ore = items["iron ore"]
    assert ore.notes == "bought at market; category: raw material; main: Metals; alias: ore"
    assert items["Coal"].notes == "category: fuel; main: Metals; source: catalog-import"
    assert items["Iron Ingot"].category == "component"
    assert items["Iron Ingot"].icon == "ingot"

    recipe = recipes_by_output(result.state)[items["Iron Ingot"].id]
    names = items_by_id(result.state)
    assert {names[i.item_id].name: i.quantity for i in recipe.inputs} == {"iron ore": 3, "Coal": 1}


def test_reimport_resolves_aliases_and_keeps_recipe_id():
    first = import_catalog(WorkshopState(), parse_catalog(CATALOG), now=T0).state
    ids = ids_by_name(first)
    old_recipe = recipes_by_output(first)[ids["Iron Ingot"]]

    second = import_catalog(first, parse_catalog("output\nIron Ingot | 2 | ore 4\n"), now=T0)
    assert second.created_item_count == 0
    recipe = recipes_by_output(second.state)[ids["Iron Ingot"]]
    assert recipe.id == old_recipe.id
    assert recipe.output_quantity == 2
    assert [(i.item_id, i.quantity) for i in recipe.inputs] == [(ids["Iron Ore"], 4)]


def test_duplicate_and_self_referencing_recipes_are_skipped():
    text = "output\nX | 1 | A 1\nX | 1 | A 2\nY | 1 | Y 2\n"
    result = import_catalog(WorkshopState(), parse_catalog(text), source_tag="test", now=T0)
    assert result.imported_recipe_count == 1
    assert [w.reason for w in result.warnings] == [
        "duplicate recipe for output in this import",
        "recipe inputs contain its own output",
    ]
    ids = ids_by_name(result.state)
    assert sorted(ids) == ["A", "X"]
    assert recipes_by_output(result.state)[ids["X"]].inputs[0].quantity == 1
    assert "source: test" in items_by_id(result.state)[ids["A"]].notes


def test_loader_reads_file(tmp_path, caplog):
    path = tmp_path / "metals.txt"
    path.write_text("\ufeff" + CATALOG, encoding="utf-8")
    loader = CatalogLoader(path)
    result = loader.import_into(WorkshopState())
    assert loader.last_result is not None
    assert result.imported_recipe_count == 1
    coal = next(it for it in result.state.items if it.name == "Coal")
    assert "source: metals" in coal.notes
    assert any("non-numeric output quantity" in r.message for r in caplog.records)


def test_loader_missing_file(tmp_path):
    with pytest.raises(CatalogParseError):
        CatalogLoader(tmp_path / "nope.txt").load()


def test_items_named_like_headers_are_data():
    parsed = parse_catalog("name | category\nProduct | material\nOre | raw\n")
    assert parsed.warnings == []
    assert [(i.name, i.category) for i in parsed.items] == [("Product", "material"), ("Ore", "material")]
