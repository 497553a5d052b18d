"""Looping, muted background footage read with OpenCV.

Frames are picked by wall-clock time since ``play()`` so the footage
runs at its native speed regardless of the render tick rate.  With
several sources the active one follows the segment index (modulo the
source count) while playing; a single source just loops.
"""

import logging
import time
from typing import Callable, List, Optional

import cv2
import numpy as np

from PySide6.QtGui import QImage

from .errors import AssetFetchError

logger = logging.getLogger(__name__)

# Catch-up limit when the render loop falls behind the footage
_MAX_SKIP = 8


def numpy_to_qimage(frame: np.ndarray) -> QImage:
    """BGR uint8 frame -> RGB888 QImage (deep copy)."""
    rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
    h, w, c = rgb.shape
    return QImage(rgb.data, w, h, rgb.strides[0], QImage.Format.Format_RGB888).copy()


class _Source:
    """One opened footage source."""

    __slots__ = ("ref", "cap", "fps", "first_frame")

    def __init__(self, ref: str, cap: cv2.VideoCapture, fps: float,
                 first_frame: QImage) -> None:
        self.ref = ref
        self.cap = cap
        self.fps = fps
        self.first_frame = first_frame


class BackgroundVideo:
    def __init__(self, sources: List[str],
                 clock: Callable[[], float] = time.perf_counter) -> None:
        if not sources:
            raise ValueError("at least one background source is required")
        self._sources = list(sources)
        self._clock = clock
        self._index = 0
        self._opened: List[_Source] = []
        self._playing = False
        self._play_start_wall = 0.0
        self._last_frame_idx = -1
        self._frame: Optional[QImage] = None

    # ── public API ──────────────────────────────────────────────────

    @property
    def sources(self) -> List[str]:
        return list(self._sources)

    @property
    def current_source(self) -> str:
        return self._sources[self._index]

    @property
    def is_playing(self) -> bool:
        return self._playing

    @property
    def is_primed(self) -> bool:
        return bool(self._opened)

    def prime(self) -> None:
        """Open every source and show the first frame of the first one.

        Runs during loading; switching segments later never touches
        the network.
        """
        self.release()
        opened: List[_Source] = []
        try:
            for ref in self._sources:
                opened.append(_open_source(ref))
        except AssetFetchError:
            for src in opened:
                src.cap.release()
            raise
        self._opened = opened
        self._show(0)
        logger.info("Primed %d background source(s)", len(opened))

    def select_for_segment(self, segment_index: int) -> None:
        """Switch footage for a new segment.

        Only while playing and only with more than one source.
        """
        if not self._playing or len(self._opened) <= 1:
            return
        idx = segment_index % len(self._opened)
        if idx == self._index:
            return
        logger.info("Background -> source %d (%s)", idx, self._sources[idx])
        self._show(idx)
        self._play_start_wall = self._clock()

    def play(self) -> None:
        if not self._opened:
            self.prime()
        self._show(self._index)
        self._playing = True
        self._play_start_wall = self._clock()

    def pause(self) -> None:
        self._playing = False

    def current_frame(self) -> Optional[QImage]:
        """Latest frame, advanced to the wall-clock position when playing."""
        if self._playing and self._opened:
            self._advance()
        return self._frame

    def release(self) -> None:
        self._playing = False
        for src in self._opened:
            src.cap.release()
        self._opened = []
        self._frame = None

    # ── internal ────────────────────────────────────────────────────

    def _show(self, index: int) -> None:
        """Rewind source ``index`` and display its first frame."""
        src = self._opened[index]
        # the first frame is already on screen; continue after it
        src.cap.set(cv2.CAP_PROP_POS_FRAMES, 1)
        self._index = index
        self._frame = src.first_frame
        self._last_frame_idx = 0

    def _advance(self) -> None:
        src = self._opened[self._index]
        elapsed = self._clock() - self._play_start_wall
        target = int(elapsed * src.fps)
        if target <= self._last_frame_idx:
            return

        behind = target - self._last_frame_idx
        for _ in range(min(behind - 1, _MAX_SKIP)):
            if not src.cap.grab():
                break

        ret, frame = src.cap.read()
        if not ret:
            # end of footage: loop
            self._show(self._index)
            self._play_start_wall = self._clock()
            return
        self._last_frame_idx = target
        self._frame = numpy_to_qimage(frame)


def _open_source(ref: str) -> _Source:
    cap = cv2.VideoCapture(ref)
    if not cap.isOpened():
        raise AssetFetchError(ref, "cannot open video")
    fps = cap.get(cv2.CAP_PROP_FPS)
    ret, frame = cap.read()
    if not ret:
        cap.release()
        raise AssetFetchError(ref, "no decodable frame")
    return _Source(ref, cap, fps if 0 < fps <= 120 else 30.0, numpy_to_qimage(frame))
