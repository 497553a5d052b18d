"""Tests for app.utils — format_time, artifact names, ffmpeg capability probe."""

import subprocess
from unittest.mock import patch

import pytest

import app.utils as utils
from app.utils import (
    DEFAULT_ARTIFACT_STEM,
    _parse_listing,
    detect_ffmpeg_capabilities,
    ffmpeg_supports,
    format_time,
    safe_filename_part,
    suggested_filename,
)


# ── format_time ─────────────────────────────────────────────────────


class TestFormatTime:
    def test_zero(self) -> None:
        assert format_time(0) == "00:00"

    def test_under_one_minute(self) -> None:
        assert format_time(5.7) == "00:05"

    def test_minutes(self) -> None:
        assert format_time(125) == "02:05"

    def test_large_value(self) -> None:
        assert format_time(3600) == "60:00"

    @pytest.mark.parametrize("value", [float("nan"), float("inf"), -1.0])
    def test_invalid_input(self, value: float) -> None:
        assert format_time(value) == "00:00"


# ── artifact names ──────────────────────────────────────────────────


class TestSuggestedFilename:
    def test_full_name(self) -> None:
        name = suggested_filename("مشاري راشد العفاسي", "الفاتحة", (1, 7), "mp4")
        assert name == "مشاري راشد العفاسي - الفاتحة - الايات 1-7.mp4"

    def test_unsafe_characters_replaced(self) -> None:
        name = suggested_filename("A/B", 'Al:"Baqarah"', (255, 255), "webm")
        assert name == 'A-B - Al--Baqarah- - الايات 255-255.webm'

    def test_missing_surah(self) -> None:
        assert suggested_filename("x", None, (1, 2), "webm") == f"{DEFAULT_ARTIFACT_STEM}.webm"

    def test_missing_range(self) -> None:
        assert suggested_filename("x", "الفاتحة", None, "mp4") == "QuranReels-video.mp4"

    def test_safe_filename_part(self) -> None:
        assert safe_filename_part('a/b\\c?d%e*f:g|h"i<j>k') == "a-b-c-d-e-f-g-h-i-j-k"


# ── capability probe ────────────────────────────────────────────────

ENCODERS_OUTPUT = """Encoders:
 V..... = Video
 A..... = Audio
 ------
 V....D libx264              libx264 H.264 / AVC / MPEG-4 AVC
 V....D libvpx-vp9           libvpx VP9
 A....D aac                  AAC (Advanced Audio Coding)
 A....D libopus              libopus Opus
"""

MUXERS_OUTPUT = """File formats:
 D. = Demuxing supported
 .E = Muxing supported
 --
  E mp4             MP4 (MPEG-4 Part 14)
  E webm            WebM
"""


class TestParseListing:
    def test_encoders(self) -> None:
        names = _parse_listing(ENCODERS_OUTPUT)
        assert {"libx264", "libvpx-vp9", "aac", "libopus"} <= names
        assert "Video" not in names
        assert "=" not in names

    def test_muxers(self) -> None:
        names = _parse_listing(MUXERS_OUTPUT)
        assert {"mp4", "webm"} <= names

    def test_empty(self) -> None:
        assert _parse_listing("") == frozenset()


class TestDetectCapabilities:
    @pytest.fixture(autouse=True)
    def _fresh_cache(self, monkeypatch) -> None:
        monkeypatch.setattr(utils, "_ffmpeg_capabilities", None)
        monkeypatch.setattr(utils, "ffmpeg_exe", lambda: "ffmpeg")

    @staticmethod
    def _result(cmd, **kwargs) -> subprocess.CompletedProcess:
        out = ENCODERS_OUTPUT if "-encoders" in cmd else MUXERS_OUTPUT
        return subprocess.CompletedProcess(cmd, 0, out.encode(), b"")

    def test_probe_and_cache(self) -> None:
        with patch("app.utils.subprocess.run", side_effect=self._result) as run:
            encoders, muxers = detect_ffmpeg_capabilities()
            detect_ffmpeg_capabilities()
        assert run.call_count == 2
        assert "libx264" in encoders
        assert "webm" in muxers

    def test_probe_failure_gives_empty_sets(self) -> None:
        with patch("app.utils.subprocess.run", side_effect=OSError("no ffmpeg")):
            assert detect_ffmpeg_capabilities() == (frozenset(), frozenset())

    def test_ffmpeg_supports(self) -> None:
        with patch("app.utils.subprocess.run", side_effect=self._result):
            assert ffmpeg_supports(["libx264", "aac"], "mp4")
            assert not ffmpeg_supports(["libx264", "libfdk_aac"], "mp4")
            assert not ffmpeg_supports(["libvpx-vp9"], "matroska")
