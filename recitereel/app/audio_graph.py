"""Audio engine: sample clock, scheduled sources, analyser and taps.

The graph is pulled by an output backend (a sounddevice stream by
default) one block at a time.  Every pull mixes the clips scheduled
for that block, advances the sample clock, feeds the frequency
analyser and hands the mixed block to any attached taps (the capture
sink).  When nothing is scheduled the block is silence, so taps see a
continuous stream.

The sample position is the single source of truth for elapsed time;
everything visual derives its progress from ``current_time``.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

import numpy as np

from .models import ConditionedClip

logger = logging.getLogger(__name__)

AudioTap = Callable[[np.ndarray], None]


# ── Frequency analyser ──────────────────────────────────────────────

FFT_SIZE = 64
SMOOTHING = 0.85
MIN_DB = -100.0
MAX_DB = -30.0


class FrequencyAnalyser:
    """Byte-scaled magnitude spectrum of the most recent output.

    Keeps the last ``fft_size`` mono samples; each read runs a
    Blackman-windowed FFT, smooths magnitudes over time and maps
    ``[min_db, max_db]`` onto ``0..255``.
    """

    def __init__(self, fft_size: int = FFT_SIZE, smoothing: float = SMOOTHING,
                 min_db: float = MIN_DB, max_db: float = MAX_DB) -> None:
        self.fft_size = fft_size
        self.smoothing = smoothing
        self.min_db = min_db
        self.max_db = max_db
        self._window = np.blackman(fft_size).astype(np.float32)
        self._buffer = np.zeros(fft_size, dtype=np.float32)
        self._smoothed = np.zeros(self.bin_count, dtype=np.float64)
        self._lock = threading.Lock()

    @property
    def bin_count(self) -> int:
        return self.fft_size // 2

    def process(self, block: np.ndarray) -> None:
        """Push a ``(frames, channels)`` block of output."""
        mono = block.mean(axis=1) if block.ndim == 2 else block
        n = self.fft_size
        with self._lock:
            if len(mono) >= n:
                self._buffer[:] = mono[-n:]
            else:
                self._buffer = np.roll(self._buffer, -len(mono))
                self._buffer[n - len(mono):] = mono

    def byte_frequency_data(self) -> np.ndarray:
        with self._lock:
            frame = self._buffer * self._window
        magnitude = np.abs(np.fft.rfft(frame))[: self.bin_count] / self.fft_size
        self._smoothed = self.smoothing * self._smoothed + (1.0 - self.smoothing) * magnitude
        with np.errstate(divide="ignore"):
            db = 20.0 * np.log10(self._smoothed)
        scaled = (db - self.min_db) * (255.0 / (self.max_db - self.min_db))
        return np.clip(np.nan_to_num(scaled, neginf=0.0), 0, 255).astype(np.uint8)

    def reset(self) -> None:
        with self._lock:
            self._buffer.fill(0.0)
        self._smoothed.fill(0.0)


# ── Graph ───────────────────────────────────────────────────────────

@dataclass
class ScheduledSource:
    frames: np.ndarray   # (n, channels) float32
    start_sample: int

    @property
    def end_sample(self) -> int:
        return self.start_sample + len(self.frames)


def _to_interleaved(samples: np.ndarray, channels: int) -> np.ndarray:
    """``(ch, n)`` planar -> ``(n, channels)``; mono is duplicated."""
    src = np.asarray(samples, dtype=np.float32)
    if src.shape[0] >= channels:
        return np.ascontiguousarray(src[:channels].T)
    out = np.empty((src.shape[1], channels), dtype=np.float32)
    for c in range(channels):
        out[:, c] = src[min(c, src.shape[0] - 1)]
    return out


class AudioGraph:
    def __init__(self, sample_rate: int = 44100, channels: int = 2) -> None:
        self.sample_rate = sample_rate
        self.channels = channels
        self._position = 0  # samples rendered so far
        self._sources: List[ScheduledSource] = []
        self._taps: List[AudioTap] = []
        self._analyser: Optional[FrequencyAnalyser] = None
        self._lock = threading.Lock()

    # ── clock ───────────────────────────────────────────────────────

    @property
    def current_time(self) -> float:
        with self._lock:
            return self._position / self.sample_rate

    @property
    def sample_position(self) -> int:
        with self._lock:
            return self._position

    # ── sources ─────────────────────────────────────────────────────

    def schedule(self, clip: ConditionedClip, when: float) -> ScheduledSource:
        """Start ``clip`` at absolute graph time ``when`` (seconds)."""
        if clip.sample_rate != self.sample_rate:
            logger.warning(
                "Clip rate %d differs from graph rate %d; it will play off-pitch",
                clip.sample_rate, self.sample_rate,
            )
        source = ScheduledSource(
            frames=_to_interleaved(clip.samples, self.channels),
            start_sample=int(round(when * self.sample_rate)),
        )
        with self._lock:
            self._sources.append(source)
        return source

    @property
    def active_source_count(self) -> int:
        with self._lock:
            return len(self._sources)

    def stop_all(self) -> int:
        """Silence every scheduled source.  Returns how many were dropped."""
        with self._lock:
            count = len(self._sources)
            self._sources.clear()
        return count

    # ── analyser / taps ─────────────────────────────────────────────

    def attach_analyser(self, analyser: FrequencyAnalyser) -> None:
        with self._lock:
            self._analyser = analyser

    @property
    def analyser(self) -> Optional[FrequencyAnalyser]:
        return self._analyser

    def add_tap(self, tap: AudioTap) -> None:
        with self._lock:
            self._taps.append(tap)

    @property
    def tap_count(self) -> int:
        with self._lock:
            return len(self._taps)

    def detach_all(self) -> None:
        """Drop sources, taps and the analyser."""
        with self._lock:
            self._sources.clear()
            self._taps.clear()
            self._analyser = None

    # ── pull ────────────────────────────────────────────────────────

    def render(self, frames: int) -> np.ndarray:
        """Mix the next ``frames`` samples and advance the clock."""
        out = np.zeros((frames, self.channels), dtype=np.float32)
        with self._lock:
            pos = self._position
            block_end = pos + frames
            for src in self._sources:
                a = max(pos, src.start_sample)
                b = min(block_end, src.end_sample)
                if a >= b:
                    continue
                out[a - pos:b - pos] += src.frames[a - src.start_sample:b - src.start_sample]
            self._position = block_end
            analyser = self._analyser
            taps = list(self._taps)

        np.clip(out, -1.0, 1.0, out=out)
        if analyser is not None:
            analyser.process(out)
        for tap in taps:
            tap(out)
        return out


# ── Output backends ─────────────────────────────────────────────────

class SoundDeviceOutput:
    """Pulls the graph from a PortAudio callback stream."""

    def __init__(self, graph: AudioGraph, block_size: int = 1024,
                 device: Optional[int] = None) -> None:
        import sounddevice as sd
        self._graph = graph
        self._stream = sd.OutputStream(
            samplerate=graph.sample_rate,
            channels=graph.channels,
            dtype="float32",
            device=device,
            callback=self._callback,
            blocksize=block_size,
        )

    def _callback(self, outdata, frames, time_info, status) -> None:
        if status:
            logger.debug("Audio output status: %s", status)
        outdata[:] = self._graph.render(frames)

    def start(self) -> None:
        self._stream.start()

    def close(self) -> None:
        try:
            self._stream.stop()
            self._stream.close()
        except Exception as exc:
            logger.warning("Closing audio stream failed: %s", exc)


class PacedOutput:
    """Pulls the graph in real time from a thread, without a device.

    Used when no audio device can be opened so the clock (and a
    capture) still run.
    """

    def __init__(self, graph: AudioGraph, block_size: int = 1024) -> None:
        self._graph = graph
        self._block = block_size
        self._running = False
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        self._running = True
        self._thread = threading.Thread(target=self._loop, daemon=True)
        self._thread.start()

    def _loop(self) -> None:
        period = self._block / self._graph.sample_rate
        next_t = time.perf_counter()
        while self._running:
            self._graph.render(self._block)
            next_t += period
            delay = next_t - time.perf_counter()
            if delay > 0:
                time.sleep(delay)

    def close(self) -> None:
        self._running = False
        if self._thread is not None:
            self._thread.join(timeout=2)
            self._thread = None


def open_output(graph: AudioGraph, block_size: int = 1024):
    """Start the default device stream, falling back to paced output."""
    try:
        output = SoundDeviceOutput(graph, block_size)
        output.start()
        return output
    except Exception as exc:
        # PortAudioError, or OSError when libportaudio is missing
        logger.warning("No audio output device (%s), using paced clock", exc)
    output = PacedOutput(graph, block_size)
    output.start()
    return output
