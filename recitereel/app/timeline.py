"""Gapless segment timeline.

Turns a sequence of conditioned clip durations into absolute start
offsets and maps an elapsed playback time back to the active segment
and the fraction of it already played.
"""

import bisect
import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Sequence, Tuple

from .models import ConditionedClip

logger = logging.getLogger(__name__)

# Audio is scheduled this far ahead of "now" so the first sample is not missed
SCHEDULE_LEAD_IN = 0.1


@dataclass(frozen=True)
class Timeline:
    durations: Tuple[float, ...] = ()
    cumulative_starts: Tuple[float, ...] = field(default=(), init=False)
    total_duration: float = field(default=0.0, init=False)

    def __post_init__(self) -> None:
        starts: List[float] = []
        acc = 0.0
        for d in self.durations:
            if d < 0:
                raise ValueError(f"negative segment duration: {d}")
            starts.append(acc)
            acc += d
        object.__setattr__(self, "cumulative_starts", tuple(starts))
        total = starts[-1] + self.durations[-1] if starts else 0.0
        object.__setattr__(self, "total_duration", total)

    @staticmethod
    def from_durations(durations: Iterable[float]) -> "Timeline":
        return Timeline(durations=tuple(float(d) for d in durations))

    @staticmethod
    def build(clips: Sequence[ConditionedClip]) -> "Timeline":
        timeline = Timeline.from_durations(c.duration for c in clips)
        logger.info(
            "Timeline: %d segments, total %.3fs",
            len(timeline), timeline.total_duration,
        )
        return timeline

    def __len__(self) -> int:
        return len(self.durations)

    def segment_start(self, index: int) -> float:
        """Offset of segment ``index`` from the session start, in seconds."""
        return self.cumulative_starts[index]

    def locate(self, elapsed: float) -> Tuple[int, float]:
        """Map elapsed seconds to ``(segment_index, local_progress)``.

        Segments own the half-open interval ``[start, start + duration)``,
        so zero-length segments are never reported mid-timeline.
        """
        n = len(self.durations)
        if n == 0 or elapsed <= 0:
            return 0, 0.0
        if elapsed >= self.total_duration:
            return n - 1, 1.0

        # Rightmost start <= elapsed; zero-length segments share their
        # start with the next one and are passed over here
        i = bisect.bisect_right(self.cumulative_starts, elapsed) - 1
        d = self.durations[i]
        progress = (elapsed - self.cumulative_starts[i]) / d if d > 0 else 0.0
        return i, min(max(progress, 0.0), 1.0)
