"""Core data models for ReciteReel.

Defines the dataclasses shared by the engine: decoded and conditioned
audio clips, the input records for a reel (segments, surah info,
manifest), the engine state exposed to the UI, and the frozen
configuration presets.  Input records support JSON serialization via
``to_dict()`` / ``from_dict()`` (``to_json()`` / ``from_json()`` for
the top-level manifest).
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import List, Optional, Tuple
import json

import numpy as np


# ── Audio ───────────────────────────────────────────────────────────

@dataclass
class AudioClip:
    """Raw decoded PCM.

    ``samples`` is float32 shaped ``(channels, n)``, full-scale ±1.0.
    """
    samples: np.ndarray
    sample_rate: int

    @property
    def channels(self) -> int:
        return int(self.samples.shape[0])

    @property
    def num_frames(self) -> int:
        return int(self.samples.shape[1])

    @property
    def duration(self) -> float:
        """Length in seconds."""
        if self.sample_rate <= 0:
            return 0.0
        return self.num_frames / self.sample_rate


@dataclass(frozen=True)
class ConditionedClip:
    """A trimmed and faded clip, owned by the timeline once built."""
    samples: np.ndarray
    sample_rate: int
    caption_index: int

    @property
    def channels(self) -> int:
        return int(self.samples.shape[0])

    @property
    def num_frames(self) -> int:
        return int(self.samples.shape[1])

    @property
    def duration(self) -> float:
        if self.sample_rate <= 0:
            return 0.0
        return self.num_frames / self.sample_rate


# ── Input records ───────────────────────────────────────────────────

@dataclass
class SegmentRecord:
    """One ayah: its number in the surah, both texts and the audio ref."""
    ayah_number: int
    script_text: str
    translation_text: str
    audio_ref: str  # URL or local path, anything ffmpeg can open

    def to_dict(self) -> dict:
        return {
            "ayah_number": self.ayah_number,
            "script_text": self.script_text,
            "translation_text": self.translation_text,
            "audio_ref": self.audio_ref,
        }

    @staticmethod
    def from_dict(d: dict) -> "SegmentRecord":
        return SegmentRecord(
            ayah_number=int(d["ayah_number"]),
            script_text=d.get("script_text", ""),
            translation_text=d.get("translation_text", ""),
            audio_ref=d["audio_ref"],
        )


@dataclass
class SurahInfo:
    number: int
    name: str            # Arabic name, shown in the header
    english_name: str

    def to_dict(self) -> dict:
        return {"number": self.number, "name": self.name,
                "english_name": self.english_name}

    @staticmethod
    def from_dict(d: dict) -> "SurahInfo":
        return SurahInfo(
            number=int(d["number"]),
            name=d["name"],
            english_name=d.get("english_name", ""),
        )


@dataclass
class ReelManifest:
    """Everything the engine needs to load one reel.

    Produced by the (external) scripture and footage providers; the
    desktop shell reads it from a JSON file.
    """
    surah: Optional[SurahInfo]
    segments: List[SegmentRecord]
    backgrounds: List[str]
    reciter_id: str = ""

    @property
    def ayah_range(self) -> Optional[Tuple[int, int]]:
        if not self.segments:
            return None
        return self.segments[0].ayah_number, self.segments[-1].ayah_number

    def to_dict(self) -> dict:
        return {
            "surah": self.surah.to_dict() if self.surah else None,
            "segments": [s.to_dict() for s in self.segments],
            "backgrounds": list(self.backgrounds),
            "reciter_id": self.reciter_id,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, indent=2)

    @staticmethod
    def from_dict(d: dict) -> "ReelManifest":
        surah = d.get("surah")
        return ReelManifest(
            surah=SurahInfo.from_dict(surah) if surah else None,
            segments=[SegmentRecord.from_dict(s) for s in d.get("segments", [])],
            backgrounds=list(d.get("backgrounds", [])),
            reciter_id=d.get("reciter_id", ""),
        )

    @staticmethod
    def from_json(s: str) -> "ReelManifest":
        return ReelManifest.from_dict(json.loads(s))


# ── Engine state ────────────────────────────────────────────────────

class EngineStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    PLAYING = "playing"
    RECORDING = "recording"
    STOPPED = "stopped"
    ERROR = "error"


@dataclass(frozen=True)
class EngineState:
    """Snapshot of the playback controller, emitted on every transition."""
    status: EngineStatus = EngineStatus.IDLE
    message: str = ""
    progress: int = 0  # 0-100, generation progress
    error: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status in (EngineStatus.PLAYING, EngineStatus.RECORDING)

    def with_status(self, status: EngineStatus, message: str = "",
                    progress: Optional[int] = None,
                    error: Optional[str] = None) -> "EngineState":
        return replace(
            self,
            status=status,
            message=message,
            progress=self.progress if progress is None else progress,
            error=error,
        )


# ── Configuration presets ───────────────────────────────────────────

DEFAULT_FPS = 60
CAPTURE_FPS = 30


@dataclass(frozen=True)
class CaptionLayout:
    """Fonts and geometry of the two caption tracks and the header."""
    primary_family: str = "Amiri"
    primary_pixel_size: int = 80
    primary_weight: int = 700
    primary_margin: int = 100       # max width = canvas width - margin
    primary_line_height: int = 130

    translation_family: str = "Inter"
    translation_pixel_size: int = 36
    translation_weight: int = 400
    translation_margin: int = 150
    translation_line_height: int = 55

    header_family: str = "Amiri"
    header_pixel_size: int = 36
    subtitle_family: str = "Inter"
    subtitle_pixel_size: int = 24

    max_lines_per_chunk: int = 2


@dataclass(frozen=True)
class EngineConfig:
    canvas_width: int = 1080
    canvas_height: int = 1920
    frame_rate: int = DEFAULT_FPS
    capture_fps: int = CAPTURE_FPS

    sample_rate: int = 44100
    channels: int = 2
    block_size: int = 1024

    trim_threshold: float = 0.015
    trim_pre_pad: float = 0.05     # seconds
    trim_post_pad: float = 0.30
    trim_fade: float = 0.03

    schedule_lead_in: float = 0.1  # seconds before the first sample
    tail_margin: float = 0.5       # extra capture time after the last clip

    particle_count: int = 50

    video_bitrate: int = 8_000_000
    audio_bitrate: int = 320_000

    captions: CaptionLayout = field(default_factory=CaptionLayout)

    @property
    def canvas_size(self) -> Tuple[int, int]:
        return self.canvas_width, self.canvas_height

    @property
    def frame_interval_ms(self) -> int:
        return max(1, int(1000 / self.frame_rate))


DEFAULT_CONFIG = EngineConfig()


# ── Reciters ────────────────────────────────────────────────────────

RECITERS: List[Tuple[str, str]] = [
    ("Alafasy_128kbps", "مشاري راشد العفاسي"),
    ("Ahmed_ibn_Ali_al-Ajamy_128kbps", "أحمد بن علي العجمي"),
    ("Abdurrahmaan_As-Sudais_192kbps", "عبد الرحمن السديس"),
    ("Saood_ash-Shuraym_128kbps", "سعود الشريم"),
    ("MaherAlMuaiqly_128kbps", "ماهر المعيقلي"),
    ("Ghamadi_40kbps", "سعد الغامدي"),
    ("Husary_128kbps", "محمود خليل الحصري"),
    ("Husary_Mujawwad_128kbps", "محمود خليل الحصري (مجود)"),
    ("Minshawy_Murattal_128kbps", "محمد صديق المنشاوي (مرتل)"),
    ("Minshawy_Mujawwad_192kbps", "محمد صديق المنشاوي (مجود)"),
    ("Abdul_Basit_Murattal_192kbps", "عبد الباسط عبد الصمد (مرتل)"),
    ("Abdul_Basit_Mujawwad_128kbps", "عبد الباسط عبد الصمد (مجود)"),
    ("Abu_Bakr_Ash-Shatri_128kbps", "أبو بكر الشاطري"),
    ("Hani_Rifai_192kbps", "هاني الرفاعي"),
    ("Abdullah_Basfar_192kbps", "عبد الله بصفر"),
    ("Muhammad_Ayyoub_128kbps", "محمد أيوب"),
    ("Nasser_Alqatami_128kbps", "ناصر القطامي"),
    ("Yasser_Ad-Dussary_128kbps", "ياسر الدوسري"),
    ("Mohammad_al_Tablaway_128kbps", "محمد الطبلاوي"),
    ("Hudhaify_128kbps", "علي الحذيفي"),
    ("Ibrahim_Akhdar_32kbps", "إبراهيم الأخضر"),
    ("Karim_Mansoori_40kbps", "كريم منصوري"),
    ("Parhizgar_48kbps", "شهريار برهيزقار"),
]

_RECITER_NAMES = dict(RECITERS)

UNKNOWN_RECITER = "Unknown Reciter"


def reciter_display_name(reciter_id: str) -> str:
    """Arabic display name for a reciter id, or ``Unknown Reciter``."""
    return _RECITER_NAMES.get(reciter_id, UNKNOWN_RECITER)
