import pytest

pytest.importorskip("PySide6")

from engine.config import ConfigManager
from engine.errors import DuplicateItemError
from engine.state import recipes_by_output
from services.price_signals import SignalQuery
from services.workshop_service import WorkshopService
from store.db import DatabaseManager


@pytest.fixture
def service(tmp_path):
    config = ConfigManager(config_path=str(tmp_path / 'config.yaml'))
    config.load_config()
    db = DatabaseManager({'database': {'path': str(tmp_path / 'workshop.db')}})
    db.initialize_database()
    changes = []
    svc = WorkshopService(db, config, on_change=changes.append)
    svc.changes = changes
    yield svc
    svc.close()


def _ids(state):
    return {item.name: item.id for item in state.items}


def test_mutations_are_persisted_and_broadcast(service):
    state = service.upsert_item("Iron Ore")
    assert service.changes == [state]
    assert _ids(service.get_state()) == _ids(state)

    with pytest.raises(DuplicateItemError):
        service.upsert_item("iron ore")
    assert len(service.changes) == 1


def test_fresh_state_uses_configured_signal_rule(service):
    service.config.set('signals.lookback_days', 14)
    assert service.get_state().signal_rule.lookback_days == 14

    service.update_signal_rule(lookback_days=20)
    service.config.set('signals.lookback_days', 7)
    assert service.get_state().signal_rule.lookback_days == 20


def test_simulate_seeded_sample(service):
    state = service.seed_sample_data()
    ids = _ids(state)
    sword = recipes_by_output(state)[ids["Sample Hero Longsword"]]
    sim = service.simulate(sword.id, 1)
    assert sim.tax_rate == 0.1
    assert sim.mode == "expanded"
    assert {row.item_name: row.required for row in sim.material_rows} == {
        "Sample Ore": 30, "Sample Dungeon Core": 7,
    }
    assert [o.output_item_name for o in service.craft_options()][0] == "Sample Grinding Powder"
    assert isinstance(service.near_craft(100000), list)


def test_ocr_import_commits_only_when_something_changed(service):
    service.upsert_item("Coal")
    service.config.set('ocr.auto_create_missing_items', False)

    result = service.import_ocr_text("Nothing Known 5")
    assert result.unknown_item_names == ["Nothing Known"]
    assert len(service.changes) == 1

    result = service.import_ocr_text("Coal 80\nFresh Item 5")
    assert result.imported_count == 1
    assert len(service.changes) == 2
    assert [p.unit_price for p in service.get_state().prices] == [80]

    service.config.set('ocr.auto_create_missing_items', True)
    result = service.import_ocr_rows([("Fresh Item", "5  7")])
    assert result.created_item_count == 1
    assert "Fresh Item" in _ids(service.get_state())


def test_catalog_import_uses_configured_tag(service):
    result = service.import_catalog_text("output\nIngot | 1 | Ore 2\n")
    assert result.imported_recipe_count == 1
    ore = next(it for it in service.get_state().items if it.name == "Ore")
    assert "source: catalog-import" in ore.notes


def test_catalog_file_import(service, tmp_path):
    path = tmp_path / 'smithing.txt'
    path.write_text("name | category\nOre | raw\n", encoding='utf-8')
    result = service.import_catalog_file(str(path))
    assert result.created_item_count == 1
    assert "source: smithing" in service.get_state().items[0].notes


def test_history_and_signals(service):
    state = service.upsert_item("Coal")
    coal = _ids(state)["Coal"]
    service.add_price_snapshot(coal, 100)
    service.add_price_snapshot(coal, 80)

    history = service.price_history(coal)
    assert history.sample_count == 2
    assert history.latest_price == 80

    signals = service.price_signals(SignalQuery(item_ids=[coal]))
    (row,) = signals.rows
    assert row.weekday_average_price == pytest.approx(90)
    assert row.triggered is True
    assert service.stats()['price_snapshots'] == 2


def test_create_service_bootstraps_from_config(tmp_path, monkeypatch, caplog):
    import logging_config
    from services import workshop_service

    monkeypatch.setattr(workshop_service, "init_app_paths", lambda: None)
    monkeypatch.setattr(logging_config, "_LOG_CONFIGURED", True)
    cfg_path = tmp_path / 'config.yaml'
    cfg_path.write_text(
        f"database:\n  path: {tmp_path / 'boot.db'}\nocr:\n  price_column: middle\n",
        encoding='utf-8',
    )

    svc = workshop_service.create_service(str(cfg_path))
    try:
        assert svc.db.db_path == tmp_path / 'boot.db'
        assert svc.get_state().items == ()
        assert any("price column" in r.message for r in caplog.records)
    finally:
        svc.close()
