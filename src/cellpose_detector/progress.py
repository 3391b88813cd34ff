import logging
import threading
from typing import Protocol


class ProgressSink(Protocol):
    """Where a run reports log lines, a status label and progress in [0, 1].

    Implementations must accept calls from the log tailer thread.
    """

    def log(self, message: str) -> None: ...

    def set_status(self, status: str) -> None: ...

    def set_progress(self, value: float) -> None: ...


class VoidProgress:
    def log(self, message: str) -> None:
        pass

    def set_status(self, status: str) -> None:
        pass

    def set_progress(self, value: float) -> None:
        pass


class LoggingProgress:
    """Forwards everything to the package logger and remembers the last state."""

    def __init__(self, logger: logging.Logger | None = None):
        self._log = logger or logging.getLogger("cellpose_detector")
        self._lock = threading.Lock()
        self.status = ""
        self.progress = 0.0

    def log(self, message: str) -> None:
        text = message.rstrip("\n")
        if text:
            self._log.info(text)

    def set_status(self, status: str) -> None:
        with self._lock:
            self.status = status
        if status:
            self._log.info("[status] %s", status)

    def set_progress(self, value: float) -> None:
        value = min(1.0, max(0.0, float(value)))
        with self._lock:
            self.progress = value
        self._log.debug("[progress] %.1f%%", 100.0 * value)
