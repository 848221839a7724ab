"""
OCR price-capture session.

Wraps one capture collaborator and the workshop service. A run captures
recognized text (or two-column row candidates), imports it, and broadcasts
the outcome on the signal bus. Auto-run bookkeeping lives here too; the
timer that calls :meth:`OcrImportSession.tick` is owned by the caller.
"""

import dataclasses
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, List, Optional, Sequence, Union

from core.signals import signals
from engine.errors import WorkshopError
from utils.timefmt import now_utc

from .ocr_import import ImportedEntry, OcrImportResult
from .workshop_service import WorkshopService

log = logging.getLogger(__name__)

CaptureResult = Union[str, Sequence[Any]]

UNKNOWN_NAME_SAMPLE = 8


@dataclass
class OcrRunResult:
    at: datetime
    success: bool
    message: str
    trigger: str = "manual"
    imported_count: int = 0
    duplicate_skipped_count: int = 0
    created_item_count: int = 0
    unknown_item_count: int = 0
    invalid_line_count: int = 0
    warnings: List[str] = field(default_factory=list)
    imported_entries: List[ImportedEntry] = field(default_factory=list)


@dataclass
class AutoRunState:
    enabled: bool = False
    running: bool = False
    max_consecutive_failures: int = 3
    consecutive_failure_count: int = 0
    started_at: Optional[datetime] = None
    loop_count: int = 0
    success_count: int = 0
    failure_count: int = 0
    last_result_at: Optional[datetime] = None
    last_message: Optional[str] = None


def build_import_warnings(result: OcrImportResult) -> List[str]:
    warnings = []
    names = result.unknown_item_names
    if names:
        sample = ", ".join(names[:UNKNOWN_NAME_SAMPLE])
        more = " and more" if len(names) > UNKNOWN_NAME_SAMPLE else ""
        warnings.append(f"{len(names)} unmatched item names: {sample}{more}")
    if result.invalid_lines:
        warnings.append(f"{len(result.invalid_lines)} lines could not be parsed")
    return warnings


def summarize_import(result: OcrImportResult) -> str:
    text = f"Imported {result.imported_count} prices"
    if result.duplicate_skipped_count:
        text += f", skipped {result.duplicate_skipped_count} duplicates"
    return (f"{text}, {len(result.unknown_item_names)} unmatched, "
            f"{len(result.invalid_lines)} invalid.")


class OcrImportSession:
    """Runs capture -> parse -> import cycles and tracks auto-run health."""

    def __init__(self, service: WorkshopService, capture: Callable[[], CaptureResult],
                 clock: Callable[[], datetime] = now_utc,
                 max_consecutive_failures: Optional[int] = None):
        self.service = service
        self.capture = capture
        self.clock = clock
        if max_consecutive_failures is None:
            max_consecutive_failures = service.config.get_ocr_config()['max_consecutive_failures']
        self.auto_run = AutoRunState(max_consecutive_failures=max(1, int(max_consecutive_failures)))
        self.last_result: Optional[OcrRunResult] = None
        self._running = False

    def _failure(self, message: str, trigger: str, warnings: Optional[List[str]] = None) -> OcrRunResult:
        return OcrRunResult(at=self.clock(), success=False, message=message,
                            trigger=trigger, warnings=list(warnings or []))

    def _run(self, trigger: str) -> OcrRunResult:
        try:
            captured = self.capture()
        except Exception as e:
            log.exception("OCR capture failed: %s", e)
            return self._failure(f"Capture failed: {e}", trigger)

        if isinstance(captured, str) and not captured.strip():
            return self._failure("OCR returned no text.", trigger)
        if not captured:
            return self._failure("OCR returned no rows.", trigger)

        # manual runs always record; auto runs skip repeats inside the window
        dedupe = None if trigger == "auto" else 0
        try:
            if isinstance(captured, str):
                imported = self.service.import_ocr_text(captured, self.clock(), dedupe)
            else:
                imported = self.service.import_ocr_rows(captured, self.clock(), dedupe)
        except WorkshopError as e:
            log.warning("OCR import failed: %s", e)
            return self._failure(str(e), trigger)
        except Exception as e:
            log.exception("OCR import failed: %s", e)
            return self._failure(f"Import failed: {e}", trigger)

        return OcrRunResult(
            at=self.clock(),
            success=True,
            message=summarize_import(imported),
            trigger=trigger,
            imported_count=imported.imported_count,
            duplicate_skipped_count=imported.duplicate_skipped_count,
            created_item_count=imported.created_item_count,
            unknown_item_count=len(imported.unknown_item_names),
            invalid_line_count=len(imported.invalid_lines),
            warnings=build_import_warnings(imported),
            imported_entries=list(imported.imported_entries),
        )

    def run_once(self, trigger: str = "manual") -> OcrRunResult:
        """Capture and import once, then broadcast the result."""
        if self._running:
            return self._failure("Previous capture is still running.", trigger)
        self._running = True
        try:
            result = self._run(trigger)
        finally:
            self._running = False
        self.last_result = result
        log.info("OCR %s run: %s", trigger, result.message)
        signals.ocr_run_finished.emit(result)
        return result

    def _update_auto_run(self, **changes) -> AutoRunState:
        self.auto_run = dataclasses.replace(self.auto_run, **changes)
        signals.ocr_auto_run_changed.emit(self.auto_run)
        return self.auto_run

    def enable_auto_run(self, max_consecutive_failures: Optional[int] = None) -> AutoRunState:
        limit = self.auto_run.max_consecutive_failures
        if max_consecutive_failures is not None:
            limit = max(1, int(max_consecutive_failures))
        if self.auto_run.enabled:
            return self._update_auto_run(max_consecutive_failures=limit)
        return self._update_auto_run(**dataclasses.asdict(AutoRunState(
            enabled=True,
            max_consecutive_failures=limit,
            started_at=self.clock(),
        )))

    def disable_auto_run(self) -> AutoRunState:
        return self._update_auto_run(enabled=False, running=False, consecutive_failure_count=0,
                                     started_at=None)

    def tick(self) -> Optional[OcrRunResult]:
        """One scheduled auto-run step; returns None when auto-run is off."""
        if not self.auto_run.enabled:
            return None
        self._update_auto_run(running=True)
        result = self.run_once("auto")

        state = self.auto_run
        failures = 0 if result.success else state.consecutive_failure_count + 1
        pause = not result.success and failures >= state.max_consecutive_failures
        message = result.message
        if pause:
            message = f"Auto capture paused after {failures} consecutive failures."
            log.warning(message)
        self._update_auto_run(
            enabled=not pause,
            running=False,
            loop_count=state.loop_count + 1,
            success_count=state.success_count + (1 if result.success else 0),
            failure_count=state.failure_count + (0 if result.success else 1),
            consecutive_failure_count=failures,
            last_result_at=result.at,
            last_message=message,
        )
        return result
