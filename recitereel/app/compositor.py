"""Compositor — paints one reel frame from the current engine state.

Layers, bottom to top: background footage (cover-fit, audio-reactive
zoom), legibility gradient, particle field, mirrored spectrum bars,
header, captions, progress bar and recording dot.

Used by the live preview and by capture so the recorded file looks
identical to the in-app preview.  Any missing input (no footage frame
yet, no analyser data) only skips its own layer.
"""

import logging
import random
from dataclasses import dataclass, field
from typing import Optional, Sequence

import numpy as np

from PySide6.QtCore import QPointF, QRectF, Qt
from PySide6.QtGui import (
    QColor,
    QFont,
    QFontMetricsF,
    QImage,
    QLinearGradient,
    QPainter,
)

from .caption_chunker import CaptionTrack, make_font, primary_font, translation_font
from .models import EngineConfig, DEFAULT_CONFIG, SurahInfo
from .particles import ParticleField
from .timeline import Timeline
from .utils import format_time

logger = logging.getLogger(__name__)

# ── Visual constants ────────────────────────────────────────────────

AMP_SMOOTHING = 0.9
MAX_ZOOM = 0.04                       # +4% at full amplitude

GRADIENT_STOPS = ((0.0, 0.3), (0.3, 0.1), (0.7, 0.6), (1.0, 0.9))  # (pos, alpha)

BAR_RGB = (250, 204, 21)
BAR_WIDTH = 12
BAR_GAP = 6
BAR_MAX_HEIGHT = 120
BAR_MIN_HEIGHT = 4
BAR_BASELINE_FROM_BOTTOM = 300
RELEVANT_BIN_FRACTION = 0.7

HEADER_Y = 80
SUBTITLE_Y = 125
SUBTITLE_COLOR = QColor("#EAB308")

PRIMARY_BLOCK_OFFSET = -200           # from vertical centre
TRANSLATION_GAP = 60
TRANSLATION_MIN_OFFSET = 100          # from vertical centre
TEXT_SHADOW = QColor(0, 0, 0, 204)
TRANSLATION_COLOR = QColor(255, 255, 255, 230)

PROGRESS_MARGIN = 50
PROGRESS_FROM_BOTTOM = 100
PROGRESS_HEIGHT = 6
PROGRESS_TRACK = QColor(255, 255, 255, 51)
PROGRESS_FILL = QColor("#FACC15")

RECORD_DOT = QColor("#ef4444")
RECORD_DOT_CENTER = (50, 50)
RECORD_DOT_RADIUS = 15

# Ring offsets approximating a 4px blurred drop shadow
_SHADOW_OFFSETS = [(dx, dy) for dx in (-2, 0, 2) for dy in (-2, 0, 2) if dx or dy]


@dataclass
class FrameState:
    """Everything the compositor reads for one frame."""
    timeline: Timeline = field(default_factory=Timeline)
    captions: Sequence[CaptionTrack] = ()
    ayah_numbers: Sequence[int] = ()
    surah: Optional[SurahInfo] = None
    segment_index: int = 0              # visual cue from the segment timers
    playing: bool = False
    recording: bool = False
    background: Optional[QImage] = None
    spectrum: Optional[np.ndarray] = None


class Compositor:
    """Owns the particle pool and the smoothed amplitude."""

    def __init__(self, config: EngineConfig = DEFAULT_CONFIG,
                 rng: Optional[random.Random] = None) -> None:
        self._config = config
        self._w = config.canvas_width
        self._h = config.canvas_height
        self.particles = ParticleField(self._w, self._h, config.particle_count, rng)
        self.smoothed_amplitude = 0.0

        layout = config.captions
        self._primary_font = primary_font(layout)
        self._translation_font = translation_font(layout)
        self._header_font = make_font(layout.header_family, layout.header_pixel_size, 700)
        self._subtitle_font = make_font(layout.subtitle_family, layout.subtitle_pixel_size, 400)
        self._time_font = make_font(layout.subtitle_family, layout.subtitle_pixel_size, 600)

    def reset(self) -> None:
        self.smoothed_amplitude = 0.0

    # ── frame ───────────────────────────────────────────────────────

    def render(self, state: FrameState, elapsed: Optional[float]) -> QImage:
        """Paint one frame.

        *elapsed* is seconds since the session start on the audio clock,
        or None when nothing is playing.
        """
        self._update_amplitude(state.spectrum)

        image = QImage(self._w, self._h, QImage.Format.Format_ARGB32_Premultiplied)
        image.fill(Qt.GlobalColor.black)
        painter = QPainter(image)
        try:
            painter.setRenderHint(QPainter.RenderHint.Antialiasing, True)
            painter.setRenderHint(QPainter.RenderHint.SmoothPixmapTransform, True)
            if state.background is not None and not state.background.isNull():
                self._paint_background(painter, state.background)
            self._paint_gradient(painter)
            self.particles.step(state.playing)
            self.particles.paint(painter)
            if state.playing and state.spectrum is not None:
                self._paint_visualizer(painter, state.spectrum)
            self._paint_header(painter, state)
            self._paint_captions(painter, state, elapsed)
            if state.playing and elapsed is not None and state.timeline.total_duration > 0:
                self._paint_progress(painter, elapsed, state.timeline.total_duration)
            if state.recording:
                self._paint_record_dot(painter)
        finally:
            painter.end()
        return image

    # ── layers ──────────────────────────────────────────────────────

    def _update_amplitude(self, spectrum: Optional[np.ndarray]) -> None:
        instant = 0.0
        if spectrum is not None and len(spectrum) > 0:
            instant = float(np.mean(spectrum)) / 255.0
        self.smoothed_amplitude = (
            self.smoothed_amplitude * AMP_SMOOTHING + instant * (1.0 - AMP_SMOOTHING)
        )

    def _paint_background(self, painter: QPainter, frame: QImage) -> None:
        painter.drawImage(self.cover_rect(frame.width(), frame.height()), frame)

    def cover_rect(self, src_w: int, src_h: int) -> QRectF:
        """Cover-fit target rect for a source, zoomed about its centre."""
        W, H = float(self._w), float(self._h)
        vid_ratio = src_w / max(src_h, 1)
        if vid_ratio > W / H:
            dh = H
            dw = dh * vid_ratio
            dx, dy = (W - dw) / 2, 0.0
        else:
            dw = W
            dh = dw / vid_ratio
            dx, dy = 0.0, (H - dh) / 2
        zoom = 1.0 + self.smoothed_amplitude * MAX_ZOOM
        zw, zh = dw * zoom, dh * zoom
        return QRectF(dx - (zw - dw) / 2, dy - (zh - dh) / 2, zw, zh)

    def _paint_gradient(self, painter: QPainter) -> None:
        grad = QLinearGradient(0, 0, 0, self._h)
        for pos, alpha in GRADIENT_STOPS:
            grad.setColorAt(pos, QColor(0, 0, 0, int(round(alpha * 255))))
        painter.fillRect(QRectF(0, 0, self._w, self._h), grad)

    def _paint_visualizer(self, painter: QPainter, spectrum: np.ndarray) -> None:
        relevant = int(len(spectrum) * RELEVANT_BIN_FRACTION)
        cx = self._w / 2
        cy = self._h - BAR_BASELINE_FROM_BOTTOM
        color = QColor(*BAR_RGB)
        for i in range(relevant):
            value = float(spectrum[i])
            height = max(BAR_MIN_HEIGHT, value / 255.0 * BAR_MAX_HEIGHT)
            color.setAlphaF(min(1.0, 0.3 + value / 255.0 * 0.7))
            x_off = i * (BAR_WIDTH + BAR_GAP)
            painter.fillRect(QRectF(cx + x_off + BAR_GAP, cy - height, BAR_WIDTH, height), color)
            painter.fillRect(QRectF(cx - x_off - BAR_WIDTH - BAR_GAP, cy - height, BAR_WIDTH, height), color)

    def _paint_header(self, painter: QPainter, state: FrameState) -> None:
        cx = self._w / 2
        painter.setPen(QColor("#ffffff"))
        _draw_text(painter, self._header_font, state.surah.name if state.surah else "",
                   cx, HEADER_Y)

        english = state.surah.english_name if state.surah else ""
        ayah = ""
        if 0 <= state.segment_index < len(state.ayah_numbers):
            ayah = str(state.ayah_numbers[state.segment_index])
        painter.setPen(SUBTITLE_COLOR)
        _draw_text(painter, self._subtitle_font, f"{english} • الآية {ayah}", cx, SUBTITLE_Y)

    def _paint_captions(self, painter: QPainter, state: FrameState,
                        elapsed: Optional[float]) -> None:
        if state.playing and elapsed is not None and len(state.timeline) > 0:
            index, progress = state.timeline.locate(elapsed)
        else:
            index, progress = state.segment_index, 0.0
        if not 0 <= index < len(state.captions):
            return
        primary, translation = state.captions[index].select(progress)

        layout = self._config.captions
        cx = self._w / 2
        y = self._h / 2 + PRIMARY_BLOCK_OFFSET
        painter.setLayoutDirection(Qt.LayoutDirection.RightToLeft)
        for i, line in enumerate(primary):
            baseline = y + i * layout.primary_line_height
            painter.setPen(TEXT_SHADOW)
            for dx, dy in _SHADOW_OFFSETS:
                _draw_text(painter, self._primary_font, line, cx + dx, baseline + dy, alpha=0.25)
            painter.setPen(QColor("#ffffff"))
            _draw_text(painter, self._primary_font, line, cx, baseline)
        primary_end = y + len(primary) * layout.primary_line_height

        painter.setLayoutDirection(Qt.LayoutDirection.LeftToRight)
        ty = max(primary_end + TRANSLATION_GAP, self._h / 2 + TRANSLATION_MIN_OFFSET)
        painter.setPen(TRANSLATION_COLOR)
        for i, line in enumerate(translation):
            _draw_text(painter, self._translation_font, line, cx,
                       ty + i * layout.translation_line_height)

    def _paint_progress(self, painter: QPainter, elapsed: float, total: float) -> None:
        progress = min(1.0, max(0.0, elapsed / total))
        bar_w = self._w - 2 * PROGRESS_MARGIN
        bar_x = PROGRESS_MARGIN
        bar_y = self._h - PROGRESS_FROM_BOTTOM
        painter.fillRect(QRectF(bar_x, bar_y, bar_w, PROGRESS_HEIGHT), PROGRESS_TRACK)

        filled = QRectF(bar_x, bar_y, bar_w * progress, PROGRESS_HEIGHT)
        if progress > 0:
            glow = QColor(PROGRESS_FILL)
            glow.setAlpha(70)
            painter.fillRect(filled.adjusted(-4, -4, 4, 4), glow)
        painter.fillRect(filled, PROGRESS_FILL)

        painter.setPen(QColor("#ffffff"))
        readout = f"{format_time(elapsed)} / {format_time(total)}"
        _draw_text(painter, self._time_font, readout, self._w - PROGRESS_MARGIN,
                   bar_y - 15, align="right")

    def _paint_record_dot(self, painter: QPainter) -> None:
        painter.save()
        painter.setPen(Qt.PenStyle.NoPen)
        painter.setBrush(RECORD_DOT)
        painter.drawEllipse(QPointF(*RECORD_DOT_CENTER), RECORD_DOT_RADIUS, RECORD_DOT_RADIUS)
        painter.restore()


def _draw_text(painter: QPainter, font: QFont, text: str, x: float,
               baseline: float, align: str = "center", alpha: float = 1.0) -> None:
    """Draw ``text`` with its baseline at ``baseline``, anchored at ``x``."""
    if not text:
        return
    painter.setFont(font)
    width = QFontMetricsF(font).horizontalAdvance(text)
    left = x - width / 2 if align == "center" else x - width
    if alpha < 1.0:
        painter.setOpacity(alpha)
        painter.drawText(QPointF(left, baseline), text)
        painter.setOpacity(1.0)
    else:
        painter.drawText(QPointF(left, baseline), text)
