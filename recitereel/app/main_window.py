"""Main application window — preview, transport buttons and status line."""

import logging
import os
from typing import Optional

from PySide6.QtCore import Qt, QSettings
from PySide6.QtWidgets import (
    QFileDialog,
    QHBoxLayout,
    QLabel,
    QMainWindow,
    QPushButton,
    QVBoxLayout,
    QWidget,
)

from .capture_controller import ArtifactHandle
from .messages import StatusMessage
from .models import EngineState, EngineStatus, ReelManifest
from .playback_controller import PlaybackController
from .theme import DARK_THEME
from .widgets.preview_widget import PreviewWidget

logger = logging.getLogger(__name__)


class MainWindow(QMainWindow):
    """Thin shell around ``PlaybackController``.

    Loads one manifest, mirrors the engine state onto the buttons and
    offers the finished recording for saving.  The last save directory
    persists via ``QSettings``.
    """

    def __init__(self, controller: PlaybackController,
                 manifest: Optional[ReelManifest] = None,
                 output_dir: str = "",
                 auto_record: bool = False) -> None:
        super().__init__()
        self.setWindowTitle("ReciteReel")
        self.setMinimumSize(420, 720)
        self.resize(540, 1000)
        self.setStyleSheet(DARK_THEME)

        self._settings = QSettings("ReciteReel", "ReciteReel")
        self._last_save_dir: str = output_dir or self._settings.value("lastSaveDir", "")
        self._output_dir = output_dir
        self._manifest = manifest
        self._auto_record = auto_record

        self._controller = controller
        controller.setParent(self)
        controller.state_changed.connect(self._on_state_changed)
        controller.status_message.connect(self._on_status_message)
        controller.frame_ready.connect(self._on_frame)
        controller.artifact_ready.connect(self._on_artifact_ready)

        # ── build UI ────────────────────────────────────────────────
        central = QWidget()
        self.setCentralWidget(central)
        root = QVBoxLayout(central)
        root.setContentsMargins(0, 0, 0, 0)
        root.setSpacing(0)

        self._preview = PreviewWidget()
        root.addWidget(self._preview, 1)
        root.addWidget(self._build_control_bar())
        root.addWidget(self._build_status_bar())

        self._on_state_changed(controller.state)

    # ════════════════════════════════════════════════════════════════
    #  Layout
    # ════════════════════════════════════════════════════════════════

    def _build_control_bar(self) -> QWidget:
        bar = QWidget()
        bar.setObjectName("ControlBar")
        layout = QHBoxLayout(bar)
        layout.setContentsMargins(16, 6, 16, 6)
        layout.setSpacing(10)
        layout.setAlignment(Qt.AlignmentFlag.AlignCenter)

        self._btn_play = QPushButton("▶  تشغيل")
        self._btn_play.setObjectName("PlayBtn")
        self._btn_play.clicked.connect(self._controller.play)

        self._btn_record = QPushButton("⏺  تسجيل")
        self._btn_record.setObjectName("RecordBtn")
        self._btn_record.clicked.connect(self._controller.record)

        self._btn_stop = QPushButton("◼  إيقاف")
        self._btn_stop.setObjectName("CtrlBtn")
        self._btn_stop.clicked.connect(self._controller.stop)

        self._btn_save = QPushButton("⬇  حفظ")
        self._btn_save.setObjectName("CtrlBtn")
        self._btn_save.clicked.connect(self._save_artifact)

        self._btn_reset = QPushButton("↺")
        self._btn_reset.setObjectName("CtrlBtn")
        self._btn_reset.setToolTip("Reset")
        self._btn_reset.clicked.connect(self._reset)

        for btn in (self._btn_play, self._btn_record, self._btn_stop,
                    self._btn_save, self._btn_reset):
            layout.addWidget(btn)
        return bar

    def _build_status_bar(self) -> QWidget:
        bar = QWidget()
        bar.setObjectName("StatusBar")
        layout = QHBoxLayout(bar)
        layout.setContentsMargins(12, 0, 12, 0)

        self._status_text = QLabel("")
        self._status_text.setObjectName("StatusLabel")
        layout.addWidget(self._status_text)
        layout.addStretch()
        self._progress_text = QLabel("")
        self._progress_text.setObjectName("ProgressLabel")
        layout.addWidget(self._progress_text)
        return bar

    # ════════════════════════════════════════════════════════════════
    #  Actions
    # ════════════════════════════════════════════════════════════════

    def load_manifest(self, manifest: ReelManifest) -> None:
        self._manifest = manifest
        self._controller.load(manifest)

    def _reset(self) -> None:
        self._controller.reset()
        self._preview.clear()
        if self._manifest is not None:
            self._controller.load(self._manifest)

    def _save_artifact(self) -> None:
        handle = self._controller.artifact
        if handle is None:
            return
        start_dir = self._last_save_dir or os.path.expanduser("~")
        path, _ = QFileDialog.getSaveFileName(
            self, "Save Reel",
            os.path.join(start_dir, handle.suggested_name),
            f"Video (*.{handle.suggested_name.rsplit('.', 1)[-1]})",
        )
        if not path:
            return
        self._write_artifact(handle, path)

    def _write_artifact(self, handle: ArtifactHandle, path: str) -> None:
        try:
            handle.save_as(path)
        except OSError as exc:
            logger.error("Saving %s failed: %s", path, exc)
            self._status_text.setText(str(exc))
            return
        self._last_save_dir = os.path.dirname(path)
        self._settings.setValue("lastSaveDir", self._last_save_dir)
        logger.info("Saved reel to %s", path)

    # ════════════════════════════════════════════════════════════════
    #  Controller signals
    # ════════════════════════════════════════════════════════════════

    def _on_state_changed(self, state: EngineState) -> None:
        status = state.status
        idle_like = status in (EngineStatus.READY, EngineStatus.STOPPED)
        self._btn_play.setEnabled(idle_like or state.is_active)
        self._btn_record.setEnabled(idle_like)
        self._btn_stop.setEnabled(state.is_active)
        self._btn_save.setEnabled(self._controller.artifact is not None)
        self._btn_reset.setEnabled(status != EngineStatus.IDLE or self._manifest is not None)

        self._status_text.setText(state.message)
        self._progress_text.setText(
            f"{state.progress}%" if status == EngineStatus.LOADING else ""
        )
        if status == EngineStatus.READY and self._auto_record:
            self._auto_record = False
            self._controller.record()

    def _on_status_message(self, message: StatusMessage) -> None:
        self._status_text.setProperty("level", message.level.value)
        self._status_text.style().unpolish(self._status_text)
        self._status_text.style().polish(self._status_text)
        self._status_text.setText(message.text)

    def _on_frame(self, frame) -> None:
        self._preview.set_frame(frame)

    def _on_artifact_ready(self, handle: ArtifactHandle) -> None:
        self._btn_save.setEnabled(True)
        if self._output_dir:
            self._write_artifact(handle, os.path.join(self._output_dir, handle.suggested_name))

    def closeEvent(self, event) -> None:  # type: ignore[override]
        self._controller.reset()
        super().closeEvent(event)
