"""Tests for app.models — manifest serialization, engine state, presets."""

import json

import numpy as np
import pytest

from app.models import (
    CAPTURE_FPS,
    DEFAULT_CONFIG,
    DEFAULT_FPS,
    RECITERS,
    UNKNOWN_RECITER,
    AudioClip,
    ConditionedClip,
    EngineState,
    EngineStatus,
    ReelManifest,
    SegmentRecord,
    SurahInfo,
    reciter_display_name,
)


# ── AudioClip ───────────────────────────────────────────────────────


class TestAudioClip:
    def test_shape_properties(self) -> None:
        clip = AudioClip(samples=np.zeros((2, 22050), dtype=np.float32), sample_rate=44100)
        assert clip.channels == 2
        assert clip.num_frames == 22050
        assert clip.duration == pytest.approx(0.5)

    def test_zero_rate_duration(self) -> None:
        clip = AudioClip(samples=np.zeros((1, 10), dtype=np.float32), sample_rate=0)
        assert clip.duration == 0.0

    def test_conditioned_clip_is_frozen(self) -> None:
        clip = ConditionedClip(np.zeros((1, 10), dtype=np.float32), 10, 0)
        assert clip.duration == pytest.approx(1.0)
        with pytest.raises(Exception):
            clip.caption_index = 1  # type: ignore[misc]


# ── SegmentRecord / SurahInfo ───────────────────────────────────────


class TestSegmentRecord:
    def test_roundtrip(self) -> None:
        seg = SegmentRecord(5, "إياك نعبد", "You alone we worship", "https://x/001005.mp3")
        assert SegmentRecord.from_dict(seg.to_dict()) == seg

    def test_texts_default_empty(self) -> None:
        seg = SegmentRecord.from_dict({"ayah_number": "3", "audio_ref": "a.mp3"})
        assert seg.ayah_number == 3
        assert seg.script_text == ""
        assert seg.translation_text == ""


class TestSurahInfo:
    def test_roundtrip(self) -> None:
        s = SurahInfo(2, "البقرة", "Al-Baqarah")
        assert SurahInfo.from_dict(s.to_dict()) == s


# ── ReelManifest ────────────────────────────────────────────────────


class TestReelManifest:
    def test_json_roundtrip(self, manifest: ReelManifest) -> None:
        again = ReelManifest.from_json(manifest.to_json())
        assert again == manifest

    def test_json_keeps_arabic_readable(self, manifest: ReelManifest) -> None:
        assert "الفاتحة" in manifest.to_json()

    def test_ayah_range(self, manifest: ReelManifest) -> None:
        assert manifest.ayah_range == (1, 2)

    def test_ayah_range_empty(self) -> None:
        assert ReelManifest(surah=None, segments=[], backgrounds=[]).ayah_range is None

    def test_missing_optional_fields(self) -> None:
        m = ReelManifest.from_json(json.dumps({
            "segments": [{"ayah_number": 1, "audio_ref": "a.mp3"}],
        }))
        assert m.surah is None
        assert m.backgrounds == []
        assert m.reciter_id == ""


# ── EngineState ─────────────────────────────────────────────────────


class TestEngineState:
    def test_default_idle(self) -> None:
        state = EngineState()
        assert state.status == EngineStatus.IDLE
        assert not state.is_active

    @pytest.mark.parametrize("status, active", [
        (EngineStatus.PLAYING, True),
        (EngineStatus.RECORDING, True),
        (EngineStatus.READY, False),
        (EngineStatus.STOPPED, False),
        (EngineStatus.ERROR, False),
    ])
    def test_is_active(self, status: EngineStatus, active: bool) -> None:
        assert EngineState(status=status).is_active is active

    def test_with_status_keeps_progress(self) -> None:
        state = EngineState(EngineStatus.LOADING, "x", 45)
        nxt = state.with_status(EngineStatus.READY, "y")
        assert nxt.progress == 45
        assert nxt.message == "y"
        assert state.status == EngineStatus.LOADING

    def test_with_status_clears_error(self) -> None:
        state = EngineState(EngineStatus.ERROR, "x", 0, error="boom")
        assert state.with_status(EngineStatus.IDLE).error is None

    def test_status_values(self) -> None:
        assert EngineStatus("recording") is EngineStatus.RECORDING


# ── Presets ─────────────────────────────────────────────────────────


class TestConfig:
    def test_canvas(self) -> None:
        assert DEFAULT_CONFIG.canvas_size == (1080, 1920)

    def test_frame_interval(self) -> None:
        assert DEFAULT_CONFIG.frame_interval_ms == 16

    def test_rates(self) -> None:
        assert DEFAULT_FPS == 60
        assert CAPTURE_FPS == 30
        assert DEFAULT_CONFIG.sample_rate == 44100

    def test_caption_layout(self) -> None:
        layout = DEFAULT_CONFIG.captions
        assert layout.max_lines_per_chunk == 2
        assert DEFAULT_CONFIG.canvas_width - layout.primary_margin == 980
        assert DEFAULT_CONFIG.canvas_width - layout.translation_margin == 930


class TestReciters:
    def test_known(self) -> None:
        assert reciter_display_name("Alafasy_128kbps") == "مشاري راشد العفاسي"

    def test_unknown(self) -> None:
        assert reciter_display_name("nobody") == UNKNOWN_RECITER

    def test_ids_unique(self) -> None:
        ids = [rid for rid, _ in RECITERS]
        assert len(ids) == len(set(ids))
