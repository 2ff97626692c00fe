"""Utility functions: logging, file naming, size formatting, errors."""

import logging
import math
import random
import string
from datetime import datetime

logger = logging.getLogger("autoshorts")


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for the application."""
    level = logging.DEBUG if verbose else logging.INFO
    formatter = logging.Formatter("%(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root = logging.getLogger("autoshorts")
    root.setLevel(level)
    root.addHandler(handler)


def generate_filename(prefix: str = "transcript") -> str:
    """Generate a unique filename using timestamp + random suffix.

    Returns a stem like 'transcript_20260221_143022_a3f1' (no extension).
    """
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=4))
    return f"{prefix}_{timestamp}_{suffix}"


def format_size_mb(num_bytes: int) -> str:
    """Format a byte count as megabytes, e.g. '9.50MB'."""
    return f"{num_bytes / (1024 * 1024):.2f}MB"


def compression_ratio(original_size: int, compressed_size: int) -> str:
    """Percentage by which `compressed_size` is smaller than `original_size`."""
    if original_size <= 0:
        return "0.0%"
    ratio = (original_size - compressed_size) / original_size * 100
    return f"{ratio:.1f}%"


def round_half_up(value: float) -> float:
    """Round to the nearest whole number, halves going up."""
    return float(math.floor(value + 0.5))


def format_timestamp(seconds: float) -> str:
    """Format seconds as MM:SS.cc (centiseconds)."""
    if not math.isfinite(seconds):
        return "--:--.--"
    centis = int(math.floor(max(seconds, 0.0) * 100 + 0.5))
    minutes, centis = divmod(centis, 60 * 100)
    secs, centis = divmod(centis, 100)
    return f"{minutes:02d}:{secs:02d}.{centis:02d}"


class AutoShortsError(Exception):
    """Base class for pipeline errors."""


class PreconditionError(AutoShortsError):
    """Raised before any processing when required input or config is missing."""


class DecodeError(AutoShortsError):
    """Raised when an audio/video container cannot be decoded."""


class EncodeError(AutoShortsError):
    """Raised when no encoder could serialize a chunk."""


class TranscriptionError(AutoShortsError):
    """Raised when a provider fails to transcribe a chunk."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ChunkTimeoutError(TranscriptionError):
    """Raised when a chunk transcription does not finish in time."""
