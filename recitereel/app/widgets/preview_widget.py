"""Preview widget — shows the latest composed reel frame, aspect-fit."""

import logging
from typing import Optional

from PySide6.QtCore import QRectF, Qt
from PySide6.QtGui import QColor, QImage, QPainter
from PySide6.QtWidgets import QWidget

logger = logging.getLogger(__name__)


class PreviewWidget(QWidget):
    """Displays frames emitted by the playback controller.

    The reel canvas is portrait (9:16); it is letterboxed into whatever
    space the window gives it.
    """

    def __init__(self, parent: QWidget | None = None) -> None:
        super().__init__(parent)
        self.setObjectName("PreviewWidget")
        self.setMinimumSize(270, 480)
        self._frame: Optional[QImage] = None

    # ── public API ──────────────────────────────────────────────────

    def set_frame(self, frame: QImage) -> None:
        self._frame = frame
        self.update()

    def clear(self) -> None:
        self._frame = None
        self.update()

    @property
    def frame(self) -> Optional[QImage]:
        return self._frame

    def target_rect(self, src_w: int, src_h: int) -> QRectF:
        """Largest rect with the source aspect ratio, centred in the widget."""
        W, H = float(self.width()), float(self.height())
        if src_w <= 0 or src_h <= 0 or W <= 0 or H <= 0:
            return QRectF(0, 0, W, H)
        scale = min(W / src_w, H / src_h)
        w, h = src_w * scale, src_h * scale
        return QRectF((W - w) / 2, (H - h) / 2, w, h)

    # ── painting ────────────────────────────────────────────────────

    def paintEvent(self, event) -> None:  # type: ignore[override]
        painter = QPainter(self)
        painter.setRenderHint(QPainter.RenderHint.SmoothPixmapTransform)
        painter.fillRect(self.rect(), QColor(0, 0, 0))
        if self._frame is None or self._frame.isNull():
            painter.setPen(QColor("#52525b"))
            painter.drawText(self.rect(), Qt.AlignmentFlag.AlignCenter, "—")
        else:
            painter.drawImage(
                self.target_rect(self._frame.width(), self._frame.height()),
                self._frame,
            )
        painter.end()
