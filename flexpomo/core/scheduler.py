from __future__ import annotations

from PyQt6.QtCore import QObject, QTimer

from flexpomo.common.logger import log
from flexpomo.core.context import TimerContext

DEFAULT_TICK_INTERVAL_MS = 1000


class TickScheduler(QObject):
    """Drives ``TimerContext.tick`` from the Qt event loop."""

    def __init__(
        self,
        context: TimerContext,
        interval_ms: int = DEFAULT_TICK_INTERVAL_MS,
        parent: QObject | None = None,
    ) -> None:
        super().__init__(parent)
        if interval_ms <= 0:
            raise ValueError("Tick interval must be positive")
        self._context = context
        self._interval_ms = interval_ms
        self._timer: QTimer | None = None

    @property
    def interval_ms(self) -> int:
        return self._interval_ms

    @property
    def is_active(self) -> bool:
        return self._timer is not None and self._timer.isActive()

    def start(self) -> None:
        # One synchronous tick so a resumed session is current before the first timeout.
        self._on_timeout()
        if self._timer is None:
            self._timer = QTimer(self)
            self._timer.setInterval(self._interval_ms)
            self._timer.timeout.connect(self._on_timeout)
        self._timer.start()
        log.debug(f"Tick scheduler started every {self._interval_ms} ms")

    def stop(self) -> None:
        if self._timer is not None:
            self._timer.stop()
            log.debug("Tick scheduler stopped")

    def _on_timeout(self) -> None:
        self._context.tick()
