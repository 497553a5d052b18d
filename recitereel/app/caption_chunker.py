"""Caption wrapping and chunking.

Each segment carries two texts (Arabic script and its translation).
Both are greedily word-wrapped to the canvas width and grouped into
chunks of at most two lines; during playback one chunk per track is
shown, picked by how far the segment's audio has progressed.
"""

import logging
import math
from dataclasses import dataclass
from typing import Callable, List, Sequence

from PySide6.QtGui import QFont, QFontMetricsF

from .models import CaptionLayout, EngineConfig, DEFAULT_CONFIG, SegmentRecord

logger = logging.getLogger(__name__)

Measure = Callable[[str], float]
Chunk = List[str]


def wrap_lines(text: str, max_width: float, measure: Measure) -> List[str]:
    """Greedy word wrap on single spaces.

    A word that overflows on its own still gets a line; the first word
    never forces a break.
    """
    words = text.split(" ")
    lines: List[str] = []
    current = ""
    for n, word in enumerate(words):
        test_line = current + word + " "
        if measure(test_line) > max_width and n > 0:
            lines.append(current.strip())
            current = word + " "
        else:
            current = test_line
    if current.strip():
        lines.append(current.strip())
    return lines


def group_into_chunks(lines: Sequence[str], max_lines: int = 2) -> List[Chunk]:
    """Split ``lines`` into consecutive groups of ``max_lines``.

    Always returns at least one chunk so index lookups are safe.
    """
    if max_lines < 1:
        raise ValueError("max_lines must be >= 1")
    chunks = [list(lines[i:i + max_lines]) for i in range(0, len(lines), max_lines)]
    return chunks or [[]]


def chunk_index(progress: float, count: int) -> int:
    """``floor(progress * count)`` clamped to ``[0, count - 1]``."""
    if count <= 0:
        return 0
    if not math.isfinite(progress):
        progress = 0.0
    return min(max(int(math.floor(progress * count)), 0), count - 1)


@dataclass(frozen=True)
class CaptionTrack:
    """Pre-chunked captions for one segment."""
    primary: List[Chunk]
    translation: List[Chunk]

    def select(self, progress: float) -> tuple:
        """Chunks to show at ``progress``.

        Both tracks use the same progress value even when their chunk
        counts differ.
        """
        return (
            self.primary[chunk_index(progress, len(self.primary))],
            self.translation[chunk_index(progress, len(self.translation))],
        )


# ── Qt measurement ──────────────────────────────────────────────────

def make_font(family: str, pixel_size: int, weight: int) -> QFont:
    font = QFont(family)
    font.setPixelSize(pixel_size)
    font.setWeight(QFont.Weight(weight))
    return font


def primary_font(layout: CaptionLayout) -> QFont:
    return make_font(layout.primary_family, layout.primary_pixel_size,
                     layout.primary_weight)


def translation_font(layout: CaptionLayout) -> QFont:
    return make_font(layout.translation_family, layout.translation_pixel_size,
                     layout.translation_weight)


def qt_measure(font: QFont) -> Measure:
    """Width measurer backed by ``QFontMetricsF.horizontalAdvance``."""
    metrics = QFontMetricsF(font)
    return metrics.horizontalAdvance


def build_caption_tracks(
    segments: Sequence[SegmentRecord],
    primary_measure: Measure,
    translation_measure: Measure,
    config: EngineConfig = DEFAULT_CONFIG,
) -> List[CaptionTrack]:
    """Wrap and chunk both texts of every segment.

    Runs once while loading; the render loop only indexes the result.
    """
    layout = config.captions
    primary_width = config.canvas_width - layout.primary_margin
    translation_width = config.canvas_width - layout.translation_margin

    tracks: List[CaptionTrack] = []
    for seg in segments:
        primary = group_into_chunks(
            wrap_lines(seg.script_text, primary_width, primary_measure),
            layout.max_lines_per_chunk,
        )
        translation = group_into_chunks(
            wrap_lines(seg.translation_text, translation_width, translation_measure),
            layout.max_lines_per_chunk,
        )
        tracks.append(CaptionTrack(primary=primary, translation=translation))
    logger.debug(
        "Caption tracks: %s",
        [(len(t.primary), len(t.translation)) for t in tracks],
    )
    return tracks
