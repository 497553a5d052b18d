"""ReciteReel — recitation reels with synced captions and audio-reactive visuals."""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from PySide6.QtWidgets import QApplication
from PySide6.QtGui import QPalette, QColor

from app import messages
from app.main_window import MainWindow
from app.models import ReelManifest
from app.playback_controller import PlaybackController
from app.version import __version__

logging.basicConfig(
    level=logging.INFO,
    format="%(name)s | %(levelname)s | %(message)s",
)

_logger = logging.getLogger(__name__)

# Used when the manifest names no background footage
DEFAULT_BACKGROUND_URL = (
    "https://player.vimeo.com/external/174002621.sd.mp4"
    "?s=6319c5b651030310842095811797828588046808&profile_id=165"
    "&oauth2_token_id=57447761"
)


def _global_exception_handler(exc_type, exc_value, exc_tb):
    """Log unhandled exceptions instead of crashing silently."""
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc_value, exc_tb)
        return
    _logger.critical("Unhandled exception", exc_info=(exc_type, exc_value, exc_tb))


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="recitereel", description=__doc__)
    parser.add_argument("manifest", type=Path,
                        help="JSON manifest: surah, segments, backgrounds, reciter_id")
    parser.add_argument("--reciter", default="",
                        help="reciter id, overrides the manifest")
    parser.add_argument("--output-dir", default="",
                        help="save finished recordings here without asking")
    parser.add_argument("--record", action="store_true",
                        help="start recording as soon as the reel is ready")
    parser.add_argument("--version", action="version", version=__version__)
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    """Application entry point: reads the manifest and shows MainWindow."""
    sys.excepthook = _global_exception_handler
    args = _parse_args(argv)

    manifest = ReelManifest.from_json(args.manifest.read_text(encoding="utf-8"))
    if args.reciter:
        manifest.reciter_id = args.reciter
    missing_background = not manifest.backgrounds
    if missing_background:
        manifest.backgrounds = [DEFAULT_BACKGROUND_URL]

    app = QApplication(sys.argv[:1])
    app.setApplicationName("ReciteReel")
    app.setApplicationVersion(__version__)

    # dark palette base (QSS handles the rest)
    palette = QPalette()
    palette.setColor(QPalette.ColorRole.Window, QColor("#0c0c0f"))
    palette.setColor(QPalette.ColorRole.WindowText, QColor("#e7e5e4"))
    palette.setColor(QPalette.ColorRole.Button, QColor("#1c1c21"))
    palette.setColor(QPalette.ColorRole.ButtonText, QColor("#e7e5e4"))
    palette.setColor(QPalette.ColorRole.Highlight, QColor("#eab308"))
    app.setPalette(palette)

    controller = PlaybackController()
    window = MainWindow(controller, manifest, output_dir=args.output_dir,
                        auto_record=args.record)
    window.show()
    if missing_background:
        _logger.warning("Manifest has no backgrounds, using the default footage")
        controller.notify(messages.BACKGROUND_FALLBACK)
    window.load_manifest(manifest)

    sys.exit(app.exec())


if __name__ == "__main__":
    main()
