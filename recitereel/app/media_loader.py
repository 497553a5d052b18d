"""Asset loading: decode recitation audio, condition it, prime footage.

Everything here runs before the engine reports ``ready`` so the render
loop never waits on the network or a decoder.  ``ReelLoader`` runs the
work on a background thread and reports back through Qt signals.
"""

import logging
import subprocess
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional

import numpy as np

from PySide6.QtCore import QObject, Signal

from .audio_conditioner import condition_clip
from .background_video import BackgroundVideo
from .errors import AssetFetchError, EngineError
from .models import AudioClip, ConditionedClip, EngineConfig, DEFAULT_CONFIG, ReelManifest
from .timeline import Timeline
from .utils import ffmpeg_exe as _ffmpeg_exe, subprocess_kwargs as _subprocess_kwargs

logger = logging.getLogger(__name__)

Decoder = Callable[[str, int, int], AudioClip]
ProgressCallback = Callable[[int, int], None]


def decode_audio(ref: str, sample_rate: int = 44100, channels: int = 2) -> AudioClip:
    """Decode ``ref`` (URL or path) to float32 PCM via the bundled ffmpeg."""
    cmd = [
        _ffmpeg_exe(),
        "-hide_banner", "-loglevel", "error",
        "-i", ref,
        "-vn",
        "-f", "f32le",
        "-acodec", "pcm_f32le",
        "-ac", str(channels),
        "-ar", str(sample_rate),
        "pipe:1",
    ]
    try:
        proc = subprocess.run(
            cmd, capture_output=True, timeout=120,
            **_subprocess_kwargs(),
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        raise AssetFetchError(ref, str(exc)) from exc

    if proc.returncode != 0:
        tail = proc.stderr.decode(errors="replace").strip()[-300:]
        raise AssetFetchError(ref, tail or f"ffmpeg exit code {proc.returncode}")

    pcm = np.frombuffer(proc.stdout, dtype="<f4")
    usable = len(pcm) - len(pcm) % channels
    if usable == 0:
        raise AssetFetchError(ref, "no audio samples")
    samples = pcm[:usable].reshape(-1, channels).T.astype(np.float32)
    return AudioClip(samples=samples, sample_rate=sample_rate)


@dataclass
class LoadedReel:
    manifest: ReelManifest
    clips: List[ConditionedClip]
    timeline: Timeline
    background: BackgroundVideo


def load_reel(
    manifest: ReelManifest,
    config: EngineConfig = DEFAULT_CONFIG,
    decode: Decoder = decode_audio,
    background_factory: Callable[[List[str]], BackgroundVideo] = BackgroundVideo,
    on_progress: Optional[ProgressCallback] = None,
) -> LoadedReel:
    """Decode + condition every segment's audio and prime the footage.

    Raises ``AssetFetchError`` on the first asset that fails; nothing
    partially loaded is returned.
    """
    if not manifest.segments:
        raise AssetFetchError("<manifest>", "no segments")
    if not manifest.backgrounds:
        raise AssetFetchError("<manifest>", "no background videos")

    clips: List[ConditionedClip] = []
    total = len(manifest.segments)
    for i, seg in enumerate(manifest.segments):
        raw = decode(seg.audio_ref, config.sample_rate, config.channels)
        clips.append(condition_clip(raw, caption_index=i, config=config))
        logger.info(
            "Segment %d (ayah %d): %.2fs -> %.2fs",
            i, seg.ayah_number, raw.duration, clips[-1].duration,
        )
        if on_progress is not None:
            on_progress(i + 1, total)

    background = background_factory(manifest.backgrounds)
    background.prime()

    return LoadedReel(
        manifest=manifest,
        clips=clips,
        timeline=Timeline.build(clips),
        background=background,
    )


class ReelLoader(QObject):
    """Runs ``load_reel`` on a worker thread."""

    progress = Signal(int, int)    # done, total
    loaded = Signal(object)        # LoadedReel
    failed = Signal(str)

    def __init__(self, config: EngineConfig = DEFAULT_CONFIG,
                 decode: Decoder = decode_audio,
                 background_factory: Callable[[List[str]], BackgroundVideo] = BackgroundVideo,
                 parent: QObject | None = None) -> None:
        super().__init__(parent)
        self._config = config
        self._decode = decode
        self._background_factory = background_factory
        self._thread: Optional[threading.Thread] = None
        self._generation = 0

    def start(self, manifest: ReelManifest) -> None:
        self._generation += 1
        self._thread = threading.Thread(
            target=self._run, args=(manifest, self._generation), daemon=True,
        )
        self._thread.start()

    def cancel(self) -> None:
        """Results of an in-flight load are dropped."""
        self._generation += 1

    def _run(self, manifest: ReelManifest, generation: int) -> None:
        try:
            reel = load_reel(
                manifest, self._config, self._decode,
                background_factory=self._background_factory,
                on_progress=lambda done, total: self._report(generation, done, total),
            )
        except EngineError as exc:
            logger.error("Loading failed: %s", exc)
            if generation == self._generation:
                self.failed.emit(str(exc))
            return
        if generation == self._generation:
            self.loaded.emit(reel)
        else:
            reel.background.release()

    def _report(self, generation: int, done: int, total: int) -> None:
        if generation == self._generation:
            self.progress.emit(done, total)
