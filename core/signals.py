from PySide6.QtCore import QObject, Signal


class AppSignals(QObject):
    """Central application-wide signals bus."""

    workshop_state_changed = Signal(object)
    ocr_run_finished = Signal(object)
    ocr_auto_run_changed = Signal(object)


signals = AppSignals()
