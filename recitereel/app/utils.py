"""Shared utilities used by multiple modules."""

import logging
import math
import re
import subprocess
import sys
from typing import FrozenSet, List, Optional, Tuple

logger = logging.getLogger(__name__)


def ffmpeg_exe() -> str:
    """Return path to the ffmpeg binary bundled via imageio-ffmpeg."""
    import imageio_ffmpeg
    return imageio_ffmpeg.get_ffmpeg_exe()


def subprocess_kwargs() -> dict:
    """Extra kwargs to hide the console window on Windows."""
    kw: dict = {}
    if sys.platform == "win32":
        si = subprocess.STARTUPINFO()
        si.dwFlags |= subprocess.STARTF_USESHOWWINDOW
        kw["startupinfo"] = si
        kw["creationflags"] = subprocess.CREATE_NO_WINDOW
    return kw


def format_time(seconds: float) -> str:
    """Format seconds as mm:ss.  Non-finite or negative input gives 00:00."""
    if not math.isfinite(seconds) or seconds < 0:
        return "00:00"
    m = int(seconds // 60)
    s = int(seconds % 60)
    return f"{m:02d}:{s:02d}"


# ── Artifact file naming ────────────────────────────────────────────

_UNSAFE_FILENAME_CHARS = re.compile(r'[/\\?%*:|"<>]')

DEFAULT_ARTIFACT_STEM = "QuranReels-video"


def safe_filename_part(text: str) -> str:
    """Replace characters that are not filesystem-safe with ``-``."""
    return _UNSAFE_FILENAME_CHARS.sub("-", text)


def suggested_filename(
    reciter_name: str,
    surah_name: Optional[str],
    ayah_range: Optional[Tuple[int, int]],
    extension: str,
) -> str:
    """Build the download name ``"<reciter> - <surah> - الايات <a>-<b>.<ext>"``.

    Falls back to ``QuranReels-video.<ext>`` when the surah or the ayah
    range is unknown.
    """
    if not surah_name or ayah_range is None:
        return f"{DEFAULT_ARTIFACT_STEM}.{extension}"
    start, end = ayah_range
    return (
        f"{safe_filename_part(reciter_name)} - {safe_filename_part(surah_name)}"
        f" - الايات {start}-{end}.{extension}"
    )


# ── ffmpeg capability probe ─────────────────────────────────────────

# Cached result so we only probe once per process
_ffmpeg_capabilities: Optional[Tuple[FrozenSet[str], FrozenSet[str]]] = None


def _parse_listing(output: str) -> FrozenSet[str]:
    """Collect the name column of ``ffmpeg -encoders`` / ``-muxers`` output."""
    names = set()
    for line in output.splitlines():
        parts = line.split()
        if len(parts) >= 2 and parts[1] != "=":
            # flags column first ("V....D" / " E"), then the name; legend lines use "="
            names.add(parts[1])
    return frozenset(names)


def detect_ffmpeg_capabilities() -> Tuple[FrozenSet[str], FrozenSet[str]]:
    """Probe ffmpeg for available encoders and muxers.

    Returns ``(encoders, muxers)``.  Both sets are empty when the probe
    fails; results are cached after the first call.
    """
    global _ffmpeg_capabilities
    if _ffmpeg_capabilities is not None:
        return _ffmpeg_capabilities

    encoders: FrozenSet[str] = frozenset()
    muxers: FrozenSet[str] = frozenset()
    try:
        ffmpeg = ffmpeg_exe()
        enc = subprocess.run(
            [ffmpeg, "-hide_banner", "-encoders"],
            capture_output=True, timeout=10,
            **subprocess_kwargs(),
        )
        mux = subprocess.run(
            [ffmpeg, "-hide_banner", "-muxers"],
            capture_output=True, timeout=10,
            **subprocess_kwargs(),
        )
        encoders = _parse_listing(enc.stdout.decode(errors="replace"))
        muxers = _parse_listing(mux.stdout.decode(errors="replace"))
    except Exception as exc:
        logger.warning("ffmpeg capability probe failed: %s", exc)

    _ffmpeg_capabilities = (encoders, muxers)
    return _ffmpeg_capabilities


def ffmpeg_supports(encoders: List[str], muxer: str) -> bool:
    """True when the bundled ffmpeg has every encoder and the muxer."""
    available_enc, available_mux = detect_ffmpeg_capabilities()
    return muxer in available_mux and all(e in available_enc for e in encoders)
