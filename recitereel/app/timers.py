"""Cancellable single-shot timers on the Qt event loop."""

import logging
from typing import Callable, Dict, List

from PySide6.QtCore import QObject, QTimer

logger = logging.getLogger(__name__)


class TimerRegistry(QObject):
    """Owns every deferred callback of a playback session.

    ``cancel_all()`` guarantees none of them fires afterwards.  Timers
    are children of the registry and are reused once fired or
    cancelled; they are destroyed only together with the registry.
    """

    def __init__(self, parent: QObject | None = None) -> None:
        super().__init__(parent)
        self._pending: Dict[QTimer, Callable[[], None]] = {}
        self._idle: List[QTimer] = []

    def schedule(self, delay_ms: float, callback: Callable[[], None]) -> QTimer:
        timer = self._idle.pop() if self._idle else self._new_timer()
        timer.setInterval(max(0, int(round(delay_ms))))
        self._pending[timer] = callback
        timer.start()
        return timer

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def cancel_all(self) -> int:
        count = len(self._pending)
        for timer in self._pending:
            timer.stop()
        self._idle.extend(self._pending)
        self._pending.clear()
        if count:
            logger.debug("Cancelled %d pending timers", count)
        return count

    def _new_timer(self) -> QTimer:
        timer = QTimer(self)
        timer.setSingleShot(True)
        timer.timeout.connect(lambda: self._fire(timer))
        return timer

    def _fire(self, timer: QTimer) -> None:
        callback = self._pending.pop(timer, None)
        if callback is None:
            return
        self._idle.append(timer)
        callback()
