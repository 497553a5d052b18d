"""User-facing status messages.

Texts are shown verbatim in the status bar, so they stay in Arabic.
Warnings never abort the pipeline; errors put the engine in ``error``
or return it to ``ready`` depending on where they happen.
"""

from dataclasses import dataclass
from enum import Enum


class MessageLevel(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class StatusMessage:
    level: MessageLevel
    text: str

    @property
    def is_error(self) -> bool:
        return self.level == MessageLevel.ERROR


# ── Generation progress (text, percent) ─────────────────────────────

FETCHING_MEDIA = ("جاري جلب الآيات والتلاوة...", 10)
PREPARING_ENGINE = ("تجهيز محرك الفيديو...", 80)
GENERATION_DONE = ("تم الإنشاء بنجاح", 100)

IDLE_TEXT = "جاهز للإنشاء"
READY_TEXT = "جاهز"
GENERATION_FAILED_TEXT = "فشل الإنشاء"


# ── Toasts ──────────────────────────────────────────────────────────

LOAD_FAILED = StatusMessage(
    MessageLevel.ERROR, "فشل في تحميل الموارد. يرجى المحاولة مرة أخرى.",
)
RECORDER_ERROR = StatusMessage(MessageLevel.ERROR, "خطأ في التسجيل")
RECORDING_SAVED = StatusMessage(MessageLevel.SUCCESS, "تم التسجيل بنجاح!")
FORMAT_UNSUPPORTED = StatusMessage(
    MessageLevel.ERROR, "المتصفح لا يدعم تنسيق التسجيل المطلوب",
)
BACKGROUND_FALLBACK = StatusMessage(
    MessageLevel.WARNING,
    "تنبيه: تعذر تحليل النص بدقة، سيتم استخدام خلفية افتراضية",
)
