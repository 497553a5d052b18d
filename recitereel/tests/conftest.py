"""Shared pytest fixtures for ReciteReel tests."""

import os

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

from typing import Dict, List, Set

import numpy as np
import pytest

from PySide6.QtGui import QColor, QImage
from PySide6.QtWidgets import QApplication

from app.capture_controller import CaptureController
from app.errors import AssetFetchError, RecorderRuntimeError, UnsupportedCaptureFormat
from app.models import (
    AudioClip,
    CaptionLayout,
    EngineConfig,
    ReelManifest,
    SegmentRecord,
    SurahInfo,
)
from app.playback_controller import PlaybackController


# ── Qt ──────────────────────────────────────────────────────────────

@pytest.fixture(scope="session")
def qapp() -> QApplication:
    """One QApplication for the whole run (fonts, painters, timers)."""
    app = QApplication.instance() or QApplication([])
    return app


# ── Config ──────────────────────────────────────────────────────────

@pytest.fixture
def small_config() -> EngineConfig:
    """A 108×192 canvas so rendering in tests stays cheap."""
    return EngineConfig(
        canvas_width=108,
        canvas_height=192,
        particle_count=5,
        captions=CaptionLayout(primary_margin=10, translation_margin=10),
    )


# ── Audio helpers ───────────────────────────────────────────────────

def plateau(before: float, loud: float, after: float, sample_rate: int = 44100,
            channels: int = 2, level: float = 0.5) -> AudioClip:
    """Silence, a constant-level block, silence."""
    a = int(before * sample_rate)
    b = int(loud * sample_rate)
    c = int(after * sample_rate)
    mono = np.concatenate([
        np.zeros(a, dtype=np.float32),
        np.full(b, level, dtype=np.float32),
        np.zeros(c, dtype=np.float32),
    ])
    return AudioClip(samples=np.tile(mono, (channels, 1)), sample_rate=sample_rate)


@pytest.fixture
def plateau_clip() -> AudioClip:
    """0.5s silence, 1.0s at 0.5, 0.5s silence (stereo, 44.1 kHz)."""
    return plateau(0.5, 1.0, 0.5)


@pytest.fixture
def make_plateau():
    return plateau


class FakeDecoder:
    """Stands in for ``decode_audio``; records every ref it is asked for."""

    def __init__(self) -> None:
        self.clips: Dict[str, AudioClip] = {}
        self.failing: Set[str] = set()
        self.calls: List[str] = []

    def __call__(self, ref: str, sample_rate: int, channels: int) -> AudioClip:
        self.calls.append(ref)
        if ref in self.failing:
            raise AssetFetchError(ref, "404")
        if ref in self.clips:
            return self.clips[ref]
        return plateau(0.2, 1.0, 0.2, sample_rate, channels)


@pytest.fixture
def fake_decode() -> FakeDecoder:
    return FakeDecoder()


# ── Manifest ────────────────────────────────────────────────────────

@pytest.fixture
def manifest() -> ReelManifest:
    """Al-Fatiha 1–2 with two background clips."""
    return ReelManifest(
        surah=SurahInfo(number=1, name="الفاتحة", english_name="Al-Fatiha"),
        segments=[
            SegmentRecord(1, "بسم الله الرحمن الرحيم",
                          "In the name of Allah, the Most Gracious, the Most Merciful",
                          "seg-1.mp3"),
            SegmentRecord(2, "الحمد لله رب العالمين",
                          "All praise is due to Allah, Lord of the worlds",
                          "seg-2.mp3"),
        ],
        backgrounds=["bg-a.mp4", "bg-b.mp4"],
        reciter_id="Alafasy_128kbps",
    )


# ── Fake collaborators ──────────────────────────────────────────────

class FakeOutput:
    """Audio backend that never pulls; tests call ``graph.render`` directly."""

    def __init__(self, graph, block_size: int) -> None:
        self.graph = graph
        self.block_size = block_size
        self.closed = False

    def close(self) -> None:
        self.closed = True


class OutputRecorder:
    def __init__(self) -> None:
        self.created: List[FakeOutput] = []

    def __call__(self, graph, block_size: int) -> FakeOutput:
        out = FakeOutput(graph, block_size)
        self.created.append(out)
        return out


class FakeBackground:
    def __init__(self, sources: List[str]) -> None:
        self.sources = list(sources)
        self.primed = False
        self.playing = False
        self.released = False
        self.selected: List[int] = []
        self._frame = QImage(16, 9, QImage.Format.Format_RGB32)
        self._frame.fill(QColor(40, 40, 40))

    def prime(self) -> None:
        self.primed = True

    def play(self) -> None:
        self.playing = True

    def pause(self) -> None:
        self.playing = False

    def select_for_segment(self, index: int) -> None:
        self.selected.append(index)

    def current_frame(self) -> QImage:
        return self._frame

    def release(self) -> None:
        self.released = True
        self.playing = False


class BackgroundRecorder:
    def __init__(self) -> None:
        self.created: List[FakeBackground] = []

    def __call__(self, sources: List[str]) -> FakeBackground:
        bg = FakeBackground(sources)
        self.created.append(bg)
        return bg


class FakeSink:
    """Capture sink that keeps everything in memory."""

    def __init__(self, factory: "SinkRecorder", fmt, params, on_chunk, on_error) -> None:
        self.factory = factory
        self.fmt = fmt
        self.params = params
        self.on_chunk = on_chunk
        self.on_error = on_error
        self.started = False
        self.finished = False
        self.aborted = False
        self.video_writes = 0
        self.audio_bytes = 0
        self.queue_full = False

    def start(self) -> None:
        if self.fmt.mime_type in self.factory.reject:
            raise UnsupportedCaptureFormat(self.fmt.mime_type, "encoder missing")
        self.started = True

    def write_video(self, data: bytes) -> bool:
        if self.queue_full:
            return False
        self.video_writes += 1
        return True

    def write_audio(self, data: bytes) -> None:
        self.audio_bytes += len(data)

    def finish(self, timeout: float = 30.0) -> None:
        self.finished = True
        if self.factory.fail_finish:
            raise RecorderRuntimeError("ffmpeg exit code 1")
        self.on_chunk(b"reel-")
        self.on_chunk(b"bytes")

    def abort(self) -> None:
        self.aborted = True


class SinkRecorder:
    def __init__(self) -> None:
        self.created: List[FakeSink] = []
        self.reject: Set[str] = set()
        self.fail_finish = False

    def __call__(self, fmt, params, on_chunk, on_error) -> FakeSink:
        sink = FakeSink(self, fmt, params, on_chunk, on_error)
        self.created.append(sink)
        return sink

    @property
    def last(self) -> FakeSink:
        return self.created[-1]


@pytest.fixture
def outputs() -> OutputRecorder:
    return OutputRecorder()


@pytest.fixture
def backgrounds() -> BackgroundRecorder:
    return BackgroundRecorder()


@pytest.fixture
def sinks() -> SinkRecorder:
    return SinkRecorder()


@pytest.fixture
def capture(qapp, small_config, sinks) -> CaptureController:
    """Capture controller where every format is reported supported."""
    return CaptureController(small_config, is_supported=lambda mime: True,
                             sink_factory=sinks)


@pytest.fixture
def controller(qapp, small_config, capture, outputs, backgrounds,
               fake_decode, tmp_path):
    ctrl = PlaybackController(
        config=small_config,
        capture=capture,
        output_factory=outputs,
        decode=fake_decode,
        background_factory=backgrounds,
        artifact_dir=str(tmp_path),
    )
    yield ctrl
    ctrl.reset()
