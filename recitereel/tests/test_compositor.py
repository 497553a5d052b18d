"""Tests for app.compositor — layer order, cover fit, overlays."""

import random

import numpy as np
import pytest

from PySide6.QtGui import QColor, QImage

from app.caption_chunker import CaptionTrack
from app.compositor import (
    PROGRESS_FROM_BOTTOM,
    PROGRESS_MARGIN,
    RECORD_DOT_CENTER,
    Compositor,
    FrameState,
)
from app.models import EngineConfig, SurahInfo
from app.timeline import Timeline


@pytest.fixture
def config() -> EngineConfig:
    return EngineConfig(canvas_width=360, canvas_height=640, particle_count=0)


@pytest.fixture
def compositor(qapp, config) -> Compositor:
    return Compositor(config, rng=random.Random(1))


def _solid(w: int, h: int, color: QColor) -> QImage:
    img = QImage(w, h, QImage.Format.Format_RGB32)
    img.fill(color)
    return img


# ── frame basics ────────────────────────────────────────────────────


class TestRender:
    def test_canvas_size(self, compositor: Compositor) -> None:
        image = compositor.render(FrameState(), None)
        assert (image.width(), image.height()) == (360, 640)
        assert image.format() == QImage.Format.Format_ARGB32_Premultiplied

    def test_black_without_background(self, compositor: Compositor) -> None:
        image = compositor.render(FrameState(), None)
        c = image.pixelColor(180, 320)
        assert c.red() < 10 and c.green() < 10 and c.blue() < 10

    def test_background_under_gradient(self, compositor: Compositor) -> None:
        state = FrameState(background=_solid(16, 9, QColor(255, 0, 0)))
        image = compositor.render(state, None)
        c = image.pixelColor(20, 300)
        # darkened by the gradient but still clearly red
        assert c.red() > 100
        assert c.red() < 255
        assert c.blue() < 30

    def test_missing_inputs_skip_layers(self, compositor: Compositor) -> None:
        state = FrameState(
            timeline=Timeline.from_durations([2.0]),
            captions=[CaptionTrack(primary=[["بسم الله"]], translation=[["In the name"]])],
            ayah_numbers=[1],
            surah=SurahInfo(1, "الفاتحة", "Al-Fatiha"),
            playing=True,
        )
        image = compositor.render(state, 0.5)
        assert not image.isNull()

    def test_caption_index_out_of_range(self, compositor: Compositor) -> None:
        state = FrameState(segment_index=5, captions=[], ayah_numbers=[1])
        assert not compositor.render(state, None).isNull()


# ── overlays ────────────────────────────────────────────────────────


class TestOverlays:
    def test_record_dot(self, compositor: Compositor) -> None:
        image = compositor.render(FrameState(recording=True), None)
        c = image.pixelColor(*RECORD_DOT_CENTER)
        assert c.red() > 200
        assert c.green() < 100

    def test_no_record_dot_when_not_recording(self, compositor: Compositor) -> None:
        c = compositor.render(FrameState(), None).pixelColor(*RECORD_DOT_CENTER)
        assert c.red() < 50

    def test_progress_bar_fill(self, compositor: Compositor, config) -> None:
        state = FrameState(timeline=Timeline.from_durations([2.0]), playing=True)
        image = compositor.render(state, 1.0)
        y = config.canvas_height - PROGRESS_FROM_BOTTOM + 3
        filled = image.pixelColor(PROGRESS_MARGIN + 10, y)
        unfilled = image.pixelColor(config.canvas_width - PROGRESS_MARGIN - 10, y)
        assert filled.red() > 200 and filled.blue() < 80
        assert unfilled.red() < 150

    def test_no_progress_when_idle(self, compositor: Compositor, config) -> None:
        state = FrameState(timeline=Timeline.from_durations([2.0]), playing=False)
        image = compositor.render(state, None)
        y = config.canvas_height - PROGRESS_FROM_BOTTOM + 3
        assert image.pixelColor(PROGRESS_MARGIN + 10, y).red() < 50

    def test_visualizer_only_when_playing(self, compositor: Compositor, config) -> None:
        spectrum = np.full(32, 255, dtype=np.uint8)
        y = config.canvas_height - 300 - 10
        x = config.canvas_width // 2 + 6 + 3
        idle = compositor.render(FrameState(spectrum=spectrum), None)
        compositor.reset()
        playing = compositor.render(FrameState(spectrum=spectrum, playing=True), None)
        assert idle.pixelColor(x, y).red() < 50
        assert playing.pixelColor(x, y).red() > 200


# ── amplitude / cover fit ───────────────────────────────────────────


class TestCoverFit:
    def test_smoothed_amplitude(self, compositor: Compositor) -> None:
        compositor.render(FrameState(spectrum=np.full(32, 255, dtype=np.uint8)), None)
        assert compositor.smoothed_amplitude == pytest.approx(0.1)
        compositor.reset()
        assert compositor.smoothed_amplitude == 0.0

    def test_wide_source_fills_height(self, compositor: Compositor) -> None:
        rect = compositor.cover_rect(1920, 1080)
        assert rect.height() == pytest.approx(640)
        assert rect.width() == pytest.approx(640 * 1920 / 1080)
        assert rect.center().x() == pytest.approx(180)

    def test_tall_source_fills_width(self, compositor: Compositor) -> None:
        rect = compositor.cover_rect(100, 400)
        assert rect.width() == pytest.approx(360)
        assert rect.height() == pytest.approx(1440)
        assert rect.top() == pytest.approx((640 - 1440) / 2)

    def test_zoom_grows_about_centre(self, compositor: Compositor) -> None:
        base = compositor.cover_rect(360, 640)
        compositor.smoothed_amplitude = 1.0
        zoomed = compositor.cover_rect(360, 640)
        assert zoomed.width() == pytest.approx(base.width() * 1.04)
        assert zoomed.center().x() == pytest.approx(base.center().x())
        assert zoomed.center().y() == pytest.approx(base.center().y())
