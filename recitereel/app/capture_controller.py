"""Capture of the composed canvas + mixed audio into one encoded file.

A capture format is negotiated from an ordered preference table (first
one the platform supports wins, ``video/webm`` as the guaranteed
fallback).  Capturing pipes raw BGRA frames and float32 PCM into an
ffmpeg subprocess which writes the container to stdout; emitted bytes
are accumulated as chunks and concatenated on stop.

Frames and audio blocks are queued and written by worker threads so
neither the render loop nor the audio callback ever blocks on ffmpeg.
"""

import collections
import logging
import os
import queue
import shutil
import subprocess
import tempfile
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np

from PySide6.QtCore import QObject, Signal
from PySide6.QtGui import QImage

from .errors import RecorderRuntimeError, UnsupportedCaptureFormat
from .models import EngineConfig, DEFAULT_CONFIG
from .utils import (
    ffmpeg_exe as _ffmpeg_exe,
    ffmpeg_supports,
    subprocess_kwargs as _subprocess_kwargs,
)

logger = logging.getLogger(__name__)


# ── Format table ────────────────────────────────────────────────────

@dataclass(frozen=True)
class CaptureFormat:
    mime_type: str
    container: str       # ffmpeg muxer
    video_codec: str     # ffmpeg encoder
    audio_codec: str
    video_args: Tuple[str, ...] = ()

    @property
    def extension(self) -> str:
        return extension_for(self.mime_type)


def extension_for(mime_type: str) -> str:
    return "mp4" if "mp4" in mime_type else "webm"


CAPTURE_FORMATS: Tuple[CaptureFormat, ...] = (
    # strict single-codec MP4: H.264 baseline + AAC-LC
    CaptureFormat("video/mp4;codecs=avc1.42E01E,mp4a.40.2", "mp4",
                  "libx264", "aac", ("-profile:v", "baseline")),
    CaptureFormat("video/mp4", "mp4", "libx264", "aac"),
    # hybrid: H.264 in a Matroska/WebM-style container
    CaptureFormat("video/webm;codecs=h264,opus", "matroska", "libx264", "libopus"),
    CaptureFormat("video/webm;codecs=vp9,opus", "webm", "libvpx-vp9", "libopus",
                  ("-deadline", "realtime", "-cpu-used", "8")),
    CaptureFormat("video/webm", "webm", "libvpx", "libopus",
                  ("-deadline", "realtime", "-cpu-used", "8")),
)

FALLBACK_FORMAT = CAPTURE_FORMATS[-1]

_FORMATS_BY_MIME = {f.mime_type: f for f in CAPTURE_FORMATS}

CapabilityCheck = Callable[[str], bool]


def ffmpeg_capability_check(mime_type: str) -> bool:
    """True when the bundled ffmpeg has the muxer and both encoders."""
    fmt = _FORMATS_BY_MIME.get(mime_type)
    if fmt is None:
        return False
    return ffmpeg_supports([fmt.video_codec, fmt.audio_codec], fmt.container)


def _supported(is_supported: CapabilityCheck, mime_type: str) -> bool:
    try:
        return bool(is_supported(mime_type))
    except Exception as exc:
        logger.warning("Capability check for %s failed: %s", mime_type, exc)
        return False


def negotiate_format(
    is_supported: CapabilityCheck,
    candidates: Sequence[CaptureFormat] = CAPTURE_FORMATS,
) -> CaptureFormat:
    """First candidate reported as supported, else the guaranteed fallback."""
    for fmt in candidates:
        if _supported(is_supported, fmt.mime_type):
            logger.info("Negotiated capture format %s (.%s)", fmt.mime_type, fmt.extension)
            return fmt
    logger.warning("No capture format reported as supported, using %s",
                   FALLBACK_FORMAT.mime_type)
    return FALLBACK_FORMAT


# ── Artifacts ───────────────────────────────────────────────────────

@dataclass(frozen=True)
class CaptureArtifact:
    data: bytes
    mime_type: str
    extension: str

    @property
    def size(self) -> int:
        return len(self.data)


class ArtifactHandle:
    """A finished capture on disk plus the name to offer when saving."""

    def __init__(self, path: str, suggested_name: str, mime_type: str) -> None:
        self.path = path
        self.suggested_name = suggested_name
        self.mime_type = mime_type
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def save_as(self, dest: str) -> str:
        if self._released:
            raise RuntimeError("artifact already released")
        shutil.copyfile(self.path, dest)
        return dest

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Could not delete %s: %s", self.path, exc)


def write_artifact(artifact: CaptureArtifact, suggested_name: str,
                   directory: Optional[str] = None) -> ArtifactHandle:
    fd, path = tempfile.mkstemp(
        prefix="recitereel-", suffix=f".{artifact.extension}", dir=directory,
    )
    with os.fdopen(fd, "wb") as fh:
        fh.write(artifact.data)
    logger.info("Artifact written: %s (%d bytes)", path, artifact.size)
    return ArtifactHandle(path, suggested_name, artifact.mime_type)


# ── ffmpeg sink ─────────────────────────────────────────────────────

_CHUNK_SIZE = 64 * 1024
_VIDEO_QUEUE = 90      # ~3s of frames at 30 fps
_AUDIO_QUEUE = 512     # ~12s of 1024-sample blocks at 44.1 kHz


@dataclass
class SinkParams:
    width: int
    height: int
    fps: int
    sample_rate: int
    channels: int
    video_bitrate: int
    audio_bitrate: int


class FfmpegCaptureSink:
    """ffmpeg reading BGRA on stdin + f32le on an extra pipe.

    The audio pipe is passed as an inherited descriptor (POSIX).
    """

    def __init__(
        self,
        fmt: CaptureFormat,
        params: SinkParams,
        on_chunk: Callable[[bytes], None],
        on_error: Callable[[str], None],
    ) -> None:
        self.fmt = fmt
        self.params = params
        self._on_chunk = on_chunk
        self._on_error = on_error
        self._proc: Optional[subprocess.Popen] = None
        self._audio_pipe = None
        self._video_q: "queue.Queue[Optional[bytes]]" = queue.Queue(_VIDEO_QUEUE)
        self._audio_q: "queue.Queue[Optional[bytes]]" = queue.Queue(_AUDIO_QUEUE)
        self._threads: List[threading.Thread] = []
        self._stderr_tail: collections.deque = collections.deque(maxlen=40)
        self._aborting = False
        self.error: Optional[str] = None
        self.dropped_frames = 0
        self.dropped_audio = 0

    def build_command(self, audio_fd: int) -> List[str]:
        p = self.params
        cmd = [
            _ffmpeg_exe(),
            "-hide_banner", "-loglevel", "error",
            "-f", "rawvideo",
            "-pix_fmt", "bgra",
            "-s", f"{p.width}x{p.height}",
            "-r", str(p.fps),
            "-i", "pipe:0",
            "-f", "f32le",
            "-ar", str(p.sample_rate),
            "-ac", str(p.channels),
            "-i", f"pipe:{audio_fd}",
            "-map", "0:v", "-map", "1:a",
            "-c:v", self.fmt.video_codec,
            *self.fmt.video_args,
            "-b:v", str(p.video_bitrate),
            "-pix_fmt", "yuv420p",
            "-c:a", self.fmt.audio_codec,
            "-b:a", str(p.audio_bitrate),
        ]
        if self.fmt.container == "mp4":
            # stdout is not seekable
            cmd += ["-movflags", "frag_keyframe+empty_moov"]
        cmd += ["-f", self.fmt.container, "pipe:1"]
        return cmd

    def start(self) -> None:
        """Launch ffmpeg; raises ``UnsupportedCaptureFormat`` if it dies at once."""
        audio_r, audio_w = os.pipe()
        try:
            cmd = self.build_command(audio_r)
            logger.info("Launching capture ffmpeg: %s", " ".join(cmd))
            self._proc = subprocess.Popen(
                cmd,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                pass_fds=(audio_r,),
                **_subprocess_kwargs(),
            )
        except Exception as exc:
            os.close(audio_w)
            raise UnsupportedCaptureFormat(self.fmt.mime_type, str(exc)) from exc
        finally:
            os.close(audio_r)

        # Give ffmpeg a moment to fail on bad args
        time.sleep(0.05)
        if self._proc.poll() is not None:
            stderr = self._proc.stderr.read().decode(errors="replace") if self._proc.stderr else ""
            os.close(audio_w)
            logger.error("Capture ffmpeg exited immediately: %s", stderr[:300])
            raise UnsupportedCaptureFormat(self.fmt.mime_type, stderr.strip()[:300])

        self._audio_pipe = os.fdopen(audio_w, "wb")
        self._threads = [
            threading.Thread(target=self._pump, args=(self._video_q, self._proc.stdin, "video"), daemon=True),
            threading.Thread(target=self._pump, args=(self._audio_q, self._audio_pipe, "audio"), daemon=True),
            threading.Thread(target=self._read_output, daemon=True),
            threading.Thread(target=self._drain_stderr, daemon=True),
        ]
        for t in self._threads:
            t.start()

    # ── feeding ─────────────────────────────────────────────────────

    def write_video(self, data: bytes) -> bool:
        """Queue one frame; False when the writer is backed up."""
        try:
            self._video_q.put_nowait(data)
        except queue.Full:
            self.dropped_frames += 1
            return False
        return True

    def write_audio(self, data: bytes) -> None:
        try:
            self._audio_q.put_nowait(data)
        except queue.Full:
            self.dropped_audio += 1

    # ── shutdown ────────────────────────────────────────────────────

    def finish(self, timeout: float = 30.0) -> None:
        """Flush and wait for ffmpeg; raises ``RecorderRuntimeError`` on failure."""
        for q in (self._video_q, self._audio_q):
            try:
                q.put(None, timeout=timeout)
            except queue.Full:
                # writer is stuck or gone
                self._clear(q)
                q.put_nowait(None)
        self._join(timeout)
        proc = self._proc
        if proc is None:
            return
        try:
            proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.wait()
            self._fail("ffmpeg did not finish in time")
        self._join(timeout)
        if self.dropped_frames or self.dropped_audio:
            logger.warning("Capture dropped %d frames, %d audio blocks",
                           self.dropped_frames, self.dropped_audio)
        if proc.returncode != 0 and self.error is None:
            self.error = f"ffmpeg exit code {proc.returncode}: {self.stderr_tail[-300:]}"
        if self.error is not None:
            raise RecorderRuntimeError(self.error)

    def abort(self) -> None:
        """Kill ffmpeg and drop whatever it produced."""
        self._aborting = True
        proc = self._proc
        if proc is not None and proc.poll() is None:
            try:
                proc.kill()
            except OSError as exc:
                logger.debug("kill failed: %s", exc)
        for q in (self._video_q, self._audio_q):
            self._clear(q)
            q.put(None)
        self._join(5.0)
        if proc is not None:
            try:
                proc.wait(timeout=5)
            except subprocess.TimeoutExpired:
                logger.warning("Capture ffmpeg did not exit after kill")

    @property
    def stderr_tail(self) -> str:
        return "\n".join(self._stderr_tail)

    # ── threads ─────────────────────────────────────────────────────

    def _pump(self, q: queue.Queue, stream, name: str) -> None:
        try:
            while True:
                item = q.get()
                if item is None:
                    break
                stream.write(item)
        except (BrokenPipeError, OSError, ValueError) as exc:
            if not self._aborting:
                self._fail(f"{name} pipe closed: {exc}")
        finally:
            try:
                stream.close()
            except OSError as exc:
                logger.debug("closing %s pipe: %s", name, exc)

    def _read_output(self) -> None:
        out = self._proc.stdout
        while True:
            chunk = out.read(_CHUNK_SIZE)
            if not chunk:
                break
            if not self._aborting:
                self._on_chunk(chunk)

    def _drain_stderr(self) -> None:
        for line in self._proc.stderr:
            self._stderr_tail.append(line.decode(errors="replace").rstrip())

    def _fail(self, message: str) -> None:
        if self.error is not None:
            return
        self.error = message
        logger.error("Capture sink failed: %s | %s", message, self.stderr_tail[-300:])
        self._on_error(message)

    def _join(self, timeout: float) -> None:
        for t in self._threads:
            if t.is_alive() and t is not threading.current_thread():
                t.join(timeout)

    @staticmethod
    def _clear(q: queue.Queue) -> None:
        while True:
            try:
                q.get_nowait()
            except queue.Empty:
                return


SinkFactory = Callable[
    [CaptureFormat, SinkParams, Callable[[bytes], None], Callable[[str], None]],
    FfmpegCaptureSink,
]


# ── Controller ──────────────────────────────────────────────────────

class CaptureState(str, Enum):
    IDLE = "idle"
    NEGOTIATING = "negotiating"
    CAPTURING = "capturing"
    FINALIZING = "finalizing"


@dataclass
class CaptureSession:
    format: CaptureFormat
    chunks: List[bytes] = field(default_factory=list)
    frames_written: int = 0


# Upper bound on duplicated frames per push after a stall
_MAX_FRAME_REPEAT = 30


class CaptureController(QObject):
    """Negotiates a format and drives one capture session at a time."""

    failed = Signal(str)   # mid-capture sink failure
    status = Signal(str)   # fallback notices

    def __init__(
        self,
        config: EngineConfig = DEFAULT_CONFIG,
        is_supported: CapabilityCheck = ffmpeg_capability_check,
        sink_factory: SinkFactory = FfmpegCaptureSink,
        parent: QObject | None = None,
    ) -> None:
        super().__init__(parent)
        self._config = config
        self._is_supported = is_supported
        self._sink_factory = sink_factory
        self._state = CaptureState.IDLE
        self._session: Optional[CaptureSession] = None
        self._sink = None
        self._lock = threading.Lock()

    # ── properties ──────────────────────────────────────────────────

    @property
    def state(self) -> CaptureState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state == CaptureState.CAPTURING

    @property
    def session(self) -> Optional[CaptureSession]:
        return self._session

    # ── lifecycle ───────────────────────────────────────────────────

    def start(self, frame_size: Tuple[int, int], sample_rate: int,
              channels: int) -> CaptureFormat:
        """Negotiate and open a sink.  Returns the format in use.

        Falls through the table when a sink rejects its format; raises
        ``UnsupportedCaptureFormat`` only if the fallback is rejected.
        """
        if self._state != CaptureState.IDLE:
            raise RuntimeError(f"capture already {self._state.value}")

        self._state = CaptureState.NEGOTIATING
        chosen = negotiate_format(self._is_supported)
        params = SinkParams(
            width=frame_size[0], height=frame_size[1],
            fps=self._config.capture_fps,
            sample_rate=sample_rate, channels=channels,
            video_bitrate=self._config.video_bitrate,
            audio_bitrate=self._config.audio_bitrate,
        )

        chain = self._fallback_chain(chosen)
        for i, fmt in enumerate(chain):
            session = CaptureSession(format=fmt)
            sink = self._sink_factory(fmt, params, session.chunks.append, self._on_sink_error)
            try:
                sink.start()
            except UnsupportedCaptureFormat as exc:
                if i + 1 >= len(chain):
                    self._state = CaptureState.IDLE
                    raise
                nxt = chain[i + 1]
                logger.warning("Capture format %s rejected (%s)", fmt.mime_type, exc.reason)
                self.status.emit(f"{fmt.mime_type} failed, trying {nxt.mime_type}…")
                continue
            with self._lock:
                self._session = session
                self._sink = sink
                self._state = CaptureState.CAPTURING
            logger.info("Capturing %dx%d @ %d fps as %s",
                        params.width, params.height, params.fps, fmt.mime_type)
            return fmt

        self._state = CaptureState.IDLE
        raise UnsupportedCaptureFormat(FALLBACK_FORMAT.mime_type, "no format could be started")

    def push_frame(self, image: QImage, elapsed: float) -> None:
        """Offer the composed frame at capture time ``elapsed`` seconds.

        The output is constant frame rate: frames are repeated or
        skipped so frame ``k`` covers ``[k/fps, (k+1)/fps)``.
        """
        with self._lock:
            session, sink = self._session, self._sink
            if self._state != CaptureState.CAPTURING or sink is None:
                return
        due = int(max(elapsed, 0.0) * self._config.capture_fps) + 1 - session.frames_written
        if due <= 0:
            return
        data = frame_bytes(image)
        # unwritten frames stay due and are caught up on later pushes
        for _ in range(min(due, _MAX_FRAME_REPEAT)):
            if not sink.write_video(data):
                break
            session.frames_written += 1

    def push_audio(self, block: np.ndarray) -> None:
        """Audio tap; called from the audio thread."""
        sink = self._sink
        if self._state != CaptureState.CAPTURING or sink is None:
            return
        sink.write_audio(np.ascontiguousarray(block, dtype="<f4").tobytes())

    def stop(self) -> Optional[CaptureArtifact]:
        """Finalize with whatever has accumulated.

        Raises ``RecorderRuntimeError`` (chunks discarded) if the sink
        failed.  Returns None when nothing was capturing.
        """
        with self._lock:
            if self._state != CaptureState.CAPTURING:
                return None
            self._state = CaptureState.FINALIZING
            session, sink = self._session, self._sink
        try:
            sink.finish()
        except RecorderRuntimeError:
            session.chunks.clear()
            self._clear_session()
            raise
        data = b"".join(session.chunks)
        session.chunks.clear()
        self._clear_session()
        logger.info("Capture finalized: %d bytes, %s", len(data), session.format.mime_type)
        return CaptureArtifact(
            data=data,
            mime_type=session.format.mime_type,
            extension=session.format.extension,
        )

    def discard(self) -> None:
        """Abort the session without producing an artifact."""
        with self._lock:
            sink, session = self._sink, self._session
            if sink is None:
                self._state = CaptureState.IDLE
                return
            self._state = CaptureState.FINALIZING
        sink.abort()
        if session is not None:
            session.chunks.clear()
        self._clear_session()
        logger.info("Capture discarded")

    # ── internal ────────────────────────────────────────────────────

    def _fallback_chain(self, chosen: CaptureFormat) -> List[CaptureFormat]:
        idx = CAPTURE_FORMATS.index(chosen)
        chain = [chosen] + [
            f for f in CAPTURE_FORMATS[idx + 1:-1]
            if _supported(self._is_supported, f.mime_type)
        ]
        if FALLBACK_FORMAT not in chain:
            chain.append(FALLBACK_FORMAT)
        return chain

    def _clear_session(self) -> None:
        with self._lock:
            self._session = None
            self._sink = None
            self._state = CaptureState.IDLE

    def _on_sink_error(self, message: str) -> None:
        # may run on a sink thread; the signal is queued to receivers
        self.failed.emit(message)


def frame_bytes(image: QImage) -> bytes:
    """Tightly packed BGRA bytes of ``image``."""
    img = image.convertToFormat(QImage.Format.Format_ARGB32)
    w, h = img.width(), img.height()
    arr = np.frombuffer(img.constBits(), dtype=np.uint8, count=img.sizeInBytes())
    arr = arr.reshape(h, img.bytesPerLine())[:, : w * 4]
    return arr.tobytes()
