"""Top-level engine state machine.

``PlaybackController`` owns every live handle of a reel: the audio
graph and its output stream, the analyser, the segment timers, the
render loop, the capture session and the last artifact.  All exit
paths (stop, natural completion, capture failure, reset) tear down
through ``release_all()`` so the order is always the same::

    capture -> audio sources / taps / analyser -> timers -> render loop
    -> (reset only) artifact handle

States: idle -> loading -> ready -> playing | recording -> ready,
any --reset--> idle, loading --failure--> error.
"""

import logging
from typing import Callable, List, Optional

from PySide6.QtCore import QObject, QTimer, Signal
from PySide6.QtGui import QImage

from . import messages
from .audio_graph import AudioGraph, FrequencyAnalyser, open_output
from .background_video import BackgroundVideo
from .caption_chunker import (
    CaptionTrack,
    build_caption_tracks,
    primary_font,
    qt_measure,
    translation_font,
)
from .capture_controller import (
    ArtifactHandle,
    CaptureArtifact,
    CaptureController,
    write_artifact,
)
from .compositor import Compositor, FrameState
from .errors import EngineError, RecorderRuntimeError, UnsupportedCaptureFormat
from .media_loader import Decoder, LoadedReel, ReelLoader, decode_audio, load_reel
from .messages import StatusMessage
from .models import (
    EngineConfig,
    DEFAULT_CONFIG,
    EngineState,
    EngineStatus,
    ReelManifest,
    reciter_display_name,
)
from .timeline import Timeline
from .timers import TimerRegistry
from .utils import suggested_filename

logger = logging.getLogger(__name__)

OutputFactory = Callable[[AudioGraph, int], object]


class PlaybackController(QObject):
    state_changed = Signal(object)     # EngineState
    status_message = Signal(object)    # StatusMessage
    frame_ready = Signal(QImage)
    segment_changed = Signal(int)
    artifact_ready = Signal(object)    # ArtifactHandle

    def __init__(
        self,
        config: EngineConfig = DEFAULT_CONFIG,
        capture: Optional[CaptureController] = None,
        compositor: Optional[Compositor] = None,
        output_factory: OutputFactory = open_output,
        decode: Decoder = decode_audio,
        background_factory: Callable[[List[str]], BackgroundVideo] = BackgroundVideo,
        artifact_dir: Optional[str] = None,
        parent: QObject | None = None,
    ) -> None:
        super().__init__(parent)
        self._config = config
        self._decode = decode
        self._background_factory = background_factory
        self._output_factory = output_factory
        self._artifact_dir = artifact_dir

        self._graph = AudioGraph(config.sample_rate, config.channels)
        self._output = None
        self._analyser: Optional[FrequencyAnalyser] = None

        self._capture = capture or CaptureController(config, parent=self)
        self._capture.failed.connect(self._on_capture_failed)
        self._capture.status.connect(self._on_capture_status)

        self._compositor = compositor or Compositor(config)
        self._timers = TimerRegistry(self)

        self._render_timer = QTimer(self)
        self._render_timer.setInterval(config.frame_interval_ms)
        self._render_timer.timeout.connect(self.tick)

        self._loader = ReelLoader(config, decode, background_factory, parent=self)
        self._loader.progress.connect(self._on_load_progress)
        self._loader.loaded.connect(self._on_loaded)
        self._loader.failed.connect(self._on_load_failed)

        self._reel: Optional[LoadedReel] = None
        self._captions: List[CaptionTrack] = []
        self._artifact: Optional[ArtifactHandle] = None
        self._session_start = 0.0
        self._capture_start = 0.0
        self._segment_index = 0
        self._reciter_name = ""

        self._state = EngineState(status=EngineStatus.IDLE, message=messages.IDLE_TEXT)

    # ── properties ──────────────────────────────────────────────────

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def status(self) -> EngineStatus:
        return self._state.status

    @property
    def graph(self) -> AudioGraph:
        return self._graph

    @property
    def capture(self) -> CaptureController:
        return self._capture

    @property
    def timeline(self) -> Timeline:
        return self._reel.timeline if self._reel else Timeline()

    @property
    def captions(self) -> List[CaptionTrack]:
        return list(self._captions)

    @property
    def segment_index(self) -> int:
        return self._segment_index

    @property
    def artifact(self) -> Optional[ArtifactHandle]:
        return self._artifact

    @property
    def active_source_count(self) -> int:
        return self._graph.active_source_count

    @property
    def pending_timer_count(self) -> int:
        return self._timers.pending_count

    @property
    def is_rendering(self) -> bool:
        return self._render_timer.isActive()

    # ── loading ─────────────────────────────────────────────────────

    def load(self, manifest: ReelManifest, background: bool = True) -> None:
        """Start a new generation; tears down whatever was loaded before."""
        if self.status != EngineStatus.IDLE:
            self.reset()
        self._reciter_name = reciter_display_name(manifest.reciter_id)
        text, pct = messages.FETCHING_MEDIA
        self._set_state(EngineStatus.LOADING, text, pct)

        if background:
            self._loader.start(manifest)
            return
        try:
            reel = load_reel(
                manifest, self._config, self._decode,
                background_factory=self._background_factory,
                on_progress=self._on_load_progress,
            )
        except EngineError as exc:
            logger.error("Loading failed: %s", exc)
            self._on_load_failed(str(exc))
            return
        self._on_loaded(reel)

    def _on_load_progress(self, done: int, total: int) -> None:
        if self.status != EngineStatus.LOADING or total <= 0:
            return
        text, start = messages.FETCHING_MEDIA
        _, end = messages.PREPARING_ENGINE
        self._set_state(EngineStatus.LOADING, text, start + (end - start) * done // total)

    def _on_loaded(self, reel: LoadedReel) -> None:
        if self.status != EngineStatus.LOADING:
            reel.background.release()
            return
        text, pct = messages.PREPARING_ENGINE
        self._set_state(EngineStatus.LOADING, text, pct)

        layout = self._config.captions
        self._captions = build_caption_tracks(
            reel.manifest.segments,
            qt_measure(primary_font(layout)),
            qt_measure(translation_font(layout)),
            self._config,
        )
        self._reel = reel
        self._segment_index = 0
        if self._output is None:
            self._output = self._output_factory(self._graph, self._config.block_size)

        text, pct = messages.GENERATION_DONE
        self._set_state(EngineStatus.READY, text, pct)
        self._render_timer.start()

    def _on_load_failed(self, reason: str) -> None:
        if self.status != EngineStatus.LOADING:
            return
        self._set_state(EngineStatus.ERROR, messages.GENERATION_FAILED_TEXT, 0, error=reason)
        self.status_message.emit(messages.LOAD_FAILED)

    # ── transport ───────────────────────────────────────────────────

    def play(self) -> bool:
        return self._start_session(record=False)

    def record(self) -> bool:
        return self._start_session(record=True)

    def _start_session(self, record: bool) -> bool:
        if self._reel is None or self.status not in (
            EngineStatus.READY, EngineStatus.PLAYING, EngineStatus.RECORDING,
        ):
            logger.warning("Cannot start %s in state %s",
                           "recording" if record else "playback", self.status.value)
            return False

        if self._state.is_active:
            # a new session never overlaps the previous one
            self.release_all(finalize_capture=False)
        self._compositor.reset()
        self._segment_index = 0

        self._analyser = FrequencyAnalyser()
        self._graph.attach_analyser(self._analyser)

        if record:
            try:
                fmt = self._capture.start(
                    self._config.canvas_size,
                    self._config.sample_rate,
                    self._config.channels,
                )
            except UnsupportedCaptureFormat as exc:
                logger.error("Capture unavailable: %s", exc)
                self.release_all(finalize_capture=False)
                self.status_message.emit(messages.FORMAT_UNSUPPORTED)
                self._enter_ready()
                return False
            self._graph.add_tap(self._capture.push_audio)
            self._capture_start = self._graph.current_time
            logger.info("Recording as %s", fmt.mime_type)

        timeline = self._reel.timeline
        self._session_start = self._graph.current_time + self._config.schedule_lead_in
        for i, clip in enumerate(self._reel.clips):
            offset = timeline.segment_start(i)
            self._graph.schedule(clip, self._session_start + offset)
            self._timers.schedule(offset * 1000.0, lambda i=i: self._on_segment_cue(i))
        self._timers.schedule(
            (timeline.total_duration + self._config.tail_margin) * 1000.0,
            self._on_session_complete,
        )

        self._reel.background.play()
        if not self._render_timer.isActive():
            self._render_timer.start()

        status = EngineStatus.RECORDING if record else EngineStatus.PLAYING
        self._set_state(status, messages.READY_TEXT, 100)
        logger.info("%s started: %d segments, %.2fs",
                    status.value, len(timeline), timeline.total_duration)
        return True

    def stop(self) -> None:
        """Stop playback, or finalize a recording with what it has so far."""
        if self.status == EngineStatus.RECORDING:
            try:
                artifact = self.release_all(finalize_capture=True)
            except RecorderRuntimeError as exc:
                logger.error("Recorder failed while finalizing: %s", exc)
                self.status_message.emit(messages.RECORDER_ERROR)
                self._enter_ready()
                return
            if artifact is not None:
                self._publish_artifact(artifact)
        elif self.status == EngineStatus.PLAYING:
            self.release_all(finalize_capture=False)
        else:
            return
        self._set_state(EngineStatus.STOPPED, messages.READY_TEXT, 100)
        self._enter_ready()

    def reset(self) -> None:
        """Tear everything down and return to ``idle``."""
        self._loader.cancel()
        self.release_all(finalize_capture=False, release_artifacts=True)
        if self._output is not None:
            self._output.close()
            self._output = None
        if self._reel is not None:
            self._reel.background.release()
            self._reel = None
        self._captions = []
        self._segment_index = 0
        self._compositor.reset()
        self._set_state(EngineStatus.IDLE, messages.IDLE_TEXT, 0)
        logger.info("Engine reset")

    def discard_artifact(self) -> None:
        """Drop the current download; the engine stays where it is."""
        if self._artifact is not None:
            self._artifact.release()
            self._artifact = None

    def notify(self, message: StatusMessage) -> None:
        """Forward a collaborator's warning/info to the UI."""
        self.status_message.emit(message)

    # ── teardown ────────────────────────────────────────────────────

    def release_all(self, finalize_capture: bool = False,
                    release_artifacts: bool = False) -> Optional[CaptureArtifact]:
        """Single teardown path for every exit.

        Returns the finalized capture when *finalize_capture* is set.
        A ``RecorderRuntimeError`` from finalizing propagates after the
        remaining steps have run.
        """
        artifact: Optional[CaptureArtifact] = None
        try:
            if self._capture.is_active:
                if finalize_capture:
                    artifact = self._capture.stop()
                else:
                    self._capture.discard()
        finally:
            sources = self._graph.stop_all()
            self._graph.detach_all()
            self._analyser = None
            timers = self._timers.cancel_all()
            self._render_timer.stop()
            if self._reel is not None:
                self._reel.background.pause()
            if release_artifacts:
                self.discard_artifact()
            logger.debug("Released %d sources, %d timers", sources, timers)
        return artifact

    # ── render loop ─────────────────────────────────────────────────

    def elapsed(self) -> Optional[float]:
        """Seconds since the session start on the audio clock."""
        if not self._state.is_active:
            return None
        return self._graph.current_time - self._session_start

    def frame_state(self) -> FrameState:
        reel = self._reel
        return FrameState(
            timeline=reel.timeline if reel else Timeline(),
            captions=self._captions,
            ayah_numbers=[s.ayah_number for s in reel.manifest.segments] if reel else [],
            surah=reel.manifest.surah if reel else None,
            segment_index=self._segment_index,
            playing=self._state.is_active,
            recording=self.status == EngineStatus.RECORDING,
            background=reel.background.current_frame() if reel else None,
            spectrum=self._analyser.byte_frequency_data() if self._analyser else None,
        )

    def tick(self) -> Optional[QImage]:
        """Render one frame from the authoritative clock."""
        if self._reel is None:
            return None
        image = self._compositor.render(self.frame_state(), self.elapsed())
        self.frame_ready.emit(image)
        if self.status == EngineStatus.RECORDING:
            self._capture.push_frame(image, self._graph.current_time - self._capture_start)
        return image

    # ── callbacks ───────────────────────────────────────────────────

    def _on_segment_cue(self, index: int) -> None:
        # the cue is visual only; ignore it once the sources are gone
        if self._graph.active_source_count == 0:
            return
        self._segment_index = index
        if self._reel is not None:
            try:
                self._reel.background.select_for_segment(index)
            except EngineError as exc:
                logger.warning("Background switch failed: %s", exc)
        self.segment_changed.emit(index)

    def _on_session_complete(self) -> None:
        logger.info("Session complete")
        self.stop()

    def _on_capture_failed(self, reason: str) -> None:
        if self.status != EngineStatus.RECORDING:
            return
        logger.error("Recording aborted: %s", reason)
        self.release_all(finalize_capture=False)
        self.status_message.emit(messages.RECORDER_ERROR)
        self._enter_ready()

    def _on_capture_status(self, text: str) -> None:
        self.status_message.emit(StatusMessage(messages.MessageLevel.WARNING, text))

    # ── helpers ─────────────────────────────────────────────────────

    def _publish_artifact(self, artifact: CaptureArtifact) -> None:
        self.discard_artifact()
        manifest = self._reel.manifest
        name = suggested_filename(
            self._reciter_name,
            manifest.surah.name if manifest.surah else None,
            manifest.ayah_range,
            artifact.extension,
        )
        self._artifact = write_artifact(artifact, name, self._artifact_dir)
        self.artifact_ready.emit(self._artifact)
        self.status_message.emit(messages.RECORDING_SAVED)

    def _enter_ready(self) -> None:
        self._segment_index = 0
        self._compositor.reset()
        self._set_state(EngineStatus.READY, messages.READY_TEXT, 100)
        if self._reel is not None and not self._render_timer.isActive():
            self._render_timer.start()

    def _set_state(self, status: EngineStatus, message: str, progress: int,
                   error: Optional[str] = None) -> None:
        self._state = self._state.with_status(status, message, progress, error)
        self.state_changed.emit(self._state)
