"""Size estimation: compression profile, chunk count and resampling."""

import math

import numpy as np

from autoshorts.config import (
    DEFAULT_PROFILE,
    LIGHT_MAX_RATE,
    LONG_AUDIO_MINUTES,
    PROFILE_TIERS,
    VERY_LONG_AUDIO_MINUTES,
)
from autoshorts.models import CompressionProfile
from autoshorts.utils import logger

DEFAULT_COMPRESSION = CompressionProfile(*DEFAULT_PROFILE)


def _positive(value) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value) and value > 0


def estimate_profile(
    file_size_mb: float,
    duration_minutes: float,
    original_sample_rate: int,
) -> CompressionProfile:
    """Pick a target sample rate for an upload.

    Larger files map to lower sample rates; recordings longer than
    LONG_AUDIO_MINUTES / VERY_LONG_AUDIO_MINUTES are pushed to the tighter
    tiers. Missing or invalid input yields the default profile. Never raises.
    """
    if not (
        _positive(file_size_mb)
        and _positive(duration_minutes)
        and _positive(original_sample_rate)
    ):
        return DEFAULT_COMPRESSION

    tier = next(
        i for i, (max_mb, *_rest) in enumerate(PROFILE_TIERS) if file_size_mb <= max_mb
    )
    if duration_minutes > VERY_LONG_AUDIO_MINUTES:
        tier = max(tier, 3)
    elif duration_minutes > LONG_AUDIO_MINUTES:
        tier = max(tier, 2)

    _, rate, label, quality = PROFILE_TIERS[tier]
    if rate is None:
        rate = LIGHT_MAX_RATE
    return CompressionProfile(
        target_sample_rate=int(min(rate, original_sample_rate)),
        label=label,
        quality=quality,
    )


def compute_chunk_count(total_bytes: int, ceiling_bytes: int) -> int:
    """Number of chunks needed so each stays under `ceiling_bytes`.

    Only meaningful for encoded sizes: raw PCM size says nothing about
    what the provider will actually receive.
    """
    if ceiling_bytes <= 0:
        raise ValueError(f"ceiling_bytes must be positive, got {ceiling_bytes}")
    if total_bytes <= 0:
        return 1
    return max(1, math.ceil(total_bytes / ceiling_bytes))


def resample(samples: np.ndarray, source_rate: int, target_rate: int) -> np.ndarray:
    """Linearly interpolate `samples` from `source_rate` to `target_rate`."""
    if source_rate == target_rate or len(samples) == 0:
        return samples

    ratio = source_rate / target_rate
    new_length = int(round(len(samples) / ratio))
    positions = np.arange(new_length, dtype=np.float64) * ratio
    result = np.interp(positions, np.arange(len(samples)), samples)

    logger.debug(
        "Resampled %dHz -> %dHz (%d -> %d samples)",
        source_rate, target_rate, len(samples), new_length,
    )
    return result.astype(np.float32)
