"""Per-clip audio cleanup: threshold silence trimming and declick fades.

Recitation clips arrive with dead air at both ends.  ``trim_silence``
cuts it down to the audible region plus a short pre-roll (keeps the
breath/attack) and a long post-roll (keeps the reverb tail), then
fades the new edges so the cut does not click.  A clip whose trim
bounds collapse is returned untouched.
"""

import logging
import math

import numpy as np

from .models import AudioClip, ConditionedClip, EngineConfig, DEFAULT_CONFIG

logger = logging.getLogger(__name__)

SILENCE_THRESHOLD = 0.015
PRE_ROLL = 0.05
POST_ROLL = 0.30
TRIM_FADE = 0.03
RAW_FADE = 0.05


def apply_fades(clip: AudioClip, fade_duration: float = RAW_FADE) -> AudioClip:
    """Linear fade-in and fade-out over ``fade_duration`` seconds.

    The sample at offset ``i`` from either edge is scaled by
    ``i / fade_samples``, so the first and last samples become exactly
    zero.  Every channel gets the same ramp; the input is not modified.
    """
    data = np.array(clip.samples, dtype=np.float32, copy=True)
    n = data.shape[1]
    fade_samples = int(math.floor(fade_duration * clip.sample_rate))
    count = min(fade_samples, n)
    if count > 0:
        ramp = (np.arange(count, dtype=np.float32) / fade_samples)
        data[:, :count] *= ramp
        # offset i from the end gets ramp[i]
        data[:, n - count:] *= ramp[::-1]
    return AudioClip(samples=data, sample_rate=clip.sample_rate)


def trim_silence(
    clip: AudioClip,
    threshold: float = SILENCE_THRESHOLD,
    pre_pad: float = PRE_ROLL,
    post_pad: float = POST_ROLL,
    fade_duration: float = TRIM_FADE,
) -> AudioClip:
    """Cut leading/trailing silence, measured on channel 0.

    Returns the original clip object unchanged when no sample exceeds
    ``threshold`` or when the padded bounds collapse.
    """
    if clip.num_frames == 0 or clip.channels == 0:
        return clip

    loud = np.flatnonzero(np.abs(clip.samples[0]) > threshold)
    if loud.size == 0:
        logger.debug("No sample above %.3f, keeping clip as-is", threshold)
        return clip

    sr = clip.sample_rate
    n = clip.num_frames
    start = max(0, int(loud[0]) - int(math.floor(pre_pad * sr)))
    end = min(n, int(loud[-1]) + int(math.floor(post_pad * sr)))
    if end <= start:
        logger.debug("Degenerate trim bounds (%d, %d), keeping clip", start, end)
        return clip

    trimmed = AudioClip(
        samples=np.array(clip.samples[:, start:end], dtype=np.float32, copy=True),
        sample_rate=sr,
    )
    logger.debug(
        "Trimmed %.3fs -> %.3fs (start=%d end=%d)",
        clip.duration, trimmed.duration, start, end,
    )
    return apply_fades(trimmed, fade_duration)


def condition_clip(
    clip: AudioClip,
    caption_index: int,
    config: EngineConfig = DEFAULT_CONFIG,
) -> ConditionedClip:
    """Trim + fade one decoded clip and freeze it for the timeline."""
    cleaned = trim_silence(
        clip,
        threshold=config.trim_threshold,
        pre_pad=config.trim_pre_pad,
        post_pad=config.trim_post_pad,
        fade_duration=config.trim_fade,
    )
    samples = np.array(cleaned.samples, dtype=np.float32, copy=True)
    samples.setflags(write=False)
    return ConditionedClip(
        samples=samples,
        sample_rate=cleaned.sample_rate,
        caption_index=caption_index,
    )
