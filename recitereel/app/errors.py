"""Exception taxonomy for the reel engine.

Library modules raise these; ``PlaybackController`` is the only place
that turns them into engine state and user-facing status messages.
A collapsed silence trim is *not* an error: the conditioner keeps the
original clip and logs it.
"""


class EngineError(Exception):
    """Base class for all reel engine failures."""


class AssetFetchError(EngineError):
    """An audio or video asset could not be fetched or decoded."""

    def __init__(self, ref: str, reason: str = "") -> None:
        self.ref = ref
        self.reason = reason
        msg = f"Could not load asset {ref!r}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class UnsupportedCaptureFormat(EngineError):
    """Even the guaranteed fallback capture format was rejected."""

    def __init__(self, mime_type: str, reason: str = "") -> None:
        self.mime_type = mime_type
        self.reason = reason
        super().__init__(f"Capture format {mime_type} rejected: {reason}".rstrip(": "))


class RecorderRuntimeError(EngineError):
    """The capture sink failed while a session was running."""
