from datetime import timedelta

import pytest

pytest.importorskip("PySide6")

from conftest import T0
from core.signals import signals
from engine.config import ConfigManager
from services.ocr_session import OcrImportSession
from services.workshop_service import WorkshopService
from store.db import DatabaseManager


class FakeCapture:
    def __init__(self, *results):
        self.results = list(results)
        self.calls = 0

    def __call__(self):
        self.calls += 1
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, Exception):
            raise result
        return result


@pytest.fixture
def service(tmp_path):
    config = ConfigManager(config_path=str(tmp_path / 'config.yaml'))
    config.load_config()
    db = DatabaseManager({'database': {'path': str(tmp_path / 'workshop.db')}})
    db.initialize_database()
    svc = WorkshopService(db, config, on_change=lambda state: None)
    svc.upsert_item("Coal")
    yield svc
    svc.close()


def _clock():
    return T0 + timedelta(days=1)


def test_manual_run_imports_and_broadcasts(service):
    received = []

    def on_finished(result):
        received.append(result)

    signals.ocr_run_finished.connect(on_finished)
    try:
        session = OcrImportSession(service, FakeCapture("Coal 80\nMystery 5\nnonsense"), clock=_clock)
        result = session.run_once()
    finally:
        signals.ocr_run_finished.disconnect(on_finished)

    assert result.success is True
    assert result.trigger == "manual"
    assert (result.imported_count, result.created_item_count, result.invalid_line_count) == (2, 1, 1)
    assert result.message == "Imported 2 prices, 0 unmatched, 1 invalid."
    assert result.warnings == ["1 lines could not be parsed"]
    assert received == [result]
    assert session.last_result is result


def test_manual_runs_do_not_dedupe(service):
    session = OcrImportSession(service, FakeCapture("Coal 80"), clock=_clock)
    session.run_once()
    assert session.run_once().imported_count == 1
    assert len(service.get_state().prices) == 2


def test_failures_are_reported(service):
    session = OcrImportSession(service, FakeCapture(OSError("screen locked"), "   ", []), clock=_clock)
    assert session.run_once().message == "Capture failed: screen locked"
    assert session.run_once().message == "OCR returned no text."
    assert session.run_once().message == "OCR returned no rows."

    service.config.set('ocr.price_column', 'middle')
    session = OcrImportSession(service, FakeCapture([("Coal", "80")]), clock=_clock)
    result = session.run_once()
    assert result.success is False
    assert "price column" in result.message


def test_unmatched_names_warning(service):
    service.config.set('ocr.auto_create_missing_items', False)
    session = OcrImportSession(service, FakeCapture("Mystery 5"), clock=_clock)
    result = session.run_once()
    assert result.success is True
    assert result.warnings == ["1 unmatched item names: Mystery"]


def test_auto_run_pauses_after_consecutive_failures(service):
    session = OcrImportSession(service, FakeCapture(RuntimeError("no window")), clock=_clock)
    assert session.tick() is None

    state = session.enable_auto_run()
    assert state.enabled and state.started_at == _clock()
    session.tick()
    session.tick()
    assert session.auto_run.enabled is True
    assert session.auto_run.consecutive_failure_count == 2
    session.tick()

    state = session.auto_run
    assert state.enabled is False
    assert state.running is False
    assert (state.loop_count, state.failure_count, state.success_count) == (3, 3, 0)
    assert state.last_message == "Auto capture paused after 3 consecutive failures."
    assert session.tick() is None


def test_auto_run_success_resets_failures_and_dedupes(service):
    capture = FakeCapture(RuntimeError("blink"), "Coal 80", "Coal 80")
    session = OcrImportSession(service, capture, clock=_clock, max_consecutive_failures=2)
    session.enable_auto_run()

    session.tick()
    assert session.auto_run.consecutive_failure_count == 1
    first = session.tick()
    assert first.imported_count == 1
    assert session.auto_run.consecutive_failure_count == 0
    second = session.tick()
    assert (second.imported_count, second.duplicate_skipped_count) == (0, 1)
    assert session.auto_run.success_count == 2

    state = session.disable_auto_run()
    assert state.enabled is False and state.started_at is None


def test_unexpected_capture_error_counts_as_failure(service):
    received = []

    def on_finished(result):
        received.append(result)

    session = OcrImportSession(service, FakeCapture(ValueError("bad frame")), clock=_clock,
                               max_consecutive_failures=1)
    session.enable_auto_run()
    signals.ocr_run_finished.connect(on_finished)
    try:
        result = session.tick()
    finally:
        signals.ocr_run_finished.disconnect(on_finished)

    assert result.success is False
    assert result.message == "Capture failed: bad frame"
    assert received == [result]
    state = session.auto_run
    assert state.running is False
    assert state.enabled is False
    assert (state.failure_count, state.consecutive_failure_count) == (1, 1)
