"""Chunk encoders: serialize raw samples into a transport container.

WavEncoder writes PCM WAV directly and never needs an external tool.
PydubEncoder hands the samples to ffmpeg through pydub for compressed
formats. FallbackEncoder tries a list of encoders in order.
"""

import io
import struct
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from typing import TypeVar

import numpy as np
from pydub import AudioSegment

from autoshorts.config import COMPRESSED_BITRATE, DEFAULT_ENCODER
from autoshorts.models import EncodedAudio
from autoshorts.utils import EncodeError, format_size_mb, logger

T = TypeVar("T")

WAV_HEADER_SIZE = 44

# pydub export format -> (MIME type, Google RecognitionConfig encoding)
PYDUB_FORMATS = {
    "mp3": ("audio/mpeg", "MP3"),
    "flac": ("audio/flac", "FLAC"),
    "ogg": ("audio/ogg", "OGG_OPUS"),
    "webm": ("audio/webm", "WEBM_OPUS"),
    "wav": ("audio/wav", "LINEAR16"),
}

# codec passed to ffmpeg where the container default is not what we want
PYDUB_CODECS = {
    "ogg": "libopus",
    "webm": "libopus",
}

# encoder name -> bits per sample for the built-in WAV writer
WAV_ENCODERS = {
    "wav": 16,
    "wav8": 8,
}


def to_pcm16(samples: np.ndarray) -> np.ndarray:
    """Convert float samples in [-1, 1] to little-endian int16."""
    clipped = np.clip(samples.astype(np.float64), -1.0, 1.0)
    scaled = np.where(clipped < 0, clipped * 0x8000, clipped * 0x7FFF)
    return scaled.astype("<i2")


def to_pcm8(samples: np.ndarray) -> np.ndarray:
    """Convert float samples in [-1, 1] to unsigned 8-bit PCM."""
    clipped = np.clip(samples.astype(np.float64), -1.0, 1.0)
    # round half up, matching the 0..255 mapping (s + 1) * 127.5
    return np.floor((clipped + 1.0) * 127.5 + 0.5).astype(np.uint8)


def wav_header(num_samples: int, sample_rate: int, bits_per_sample: int) -> bytes:
    """Canonical 44-byte mono PCM WAV header."""
    block_align = bits_per_sample // 8
    data_size = num_samples * block_align
    return struct.pack(
        "<4sI4s4sIHHIIHH4sI",
        b"RIFF",
        36 + data_size,             # ChunkSize
        b"WAVE",
        b"fmt ",
        16,                         # Subchunk1Size
        1,                          # AudioFormat: PCM
        1,                          # NumChannels
        sample_rate,
        sample_rate * block_align,  # ByteRate
        block_align,
        bits_per_sample,
        b"data",
        data_size,                  # Subchunk2Size
    )


class ChunkEncoder(ABC):
    """Strategy that turns a slice of samples into container bytes."""

    name = "encoder"

    @abstractmethod
    def encode(self, samples: np.ndarray, sample_rate: int) -> EncodedAudio:
        """Encode mono float32 samples. Raises EncodeError on failure."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"


class WavEncoder(ChunkEncoder):
    def __init__(self, bits_per_sample: int = 16):
        if bits_per_sample not in (8, 16):
            raise ValueError(
                f"bits_per_sample must be 8 or 16, got {bits_per_sample}"
            )
        self.bits_per_sample = bits_per_sample
        self.name = "wav" if bits_per_sample == 16 else "wav8"

    def encode(self, samples: np.ndarray, sample_rate: int) -> EncodedAudio:
        if self.bits_per_sample == 16:
            payload = to_pcm16(samples).tobytes()
        else:
            payload = to_pcm8(samples).tobytes()

        data = wav_header(len(samples), sample_rate, self.bits_per_sample) + payload
        return EncodedAudio(
            data=data,
            mime_type="audio/wav",
            encoding="LINEAR16" if self.bits_per_sample == 16 else "ENCODING_UNSPECIFIED",
            sample_rate=sample_rate,
        )


class PydubEncoder(ChunkEncoder):
    """Compressed encoding through pydub and ffmpeg."""

    def __init__(self, fmt: str = "mp3", bitrate: str = COMPRESSED_BITRATE):
        if fmt not in PYDUB_FORMATS:
            raise ValueError(
                f"Unsupported format '{fmt}', expected one of {sorted(PYDUB_FORMATS)}"
            )
        self.fmt = fmt
        self.bitrate = bitrate
        self.name = fmt

    def encode(self, samples: np.ndarray, sample_rate: int) -> EncodedAudio:
        segment = AudioSegment(
            data=to_pcm16(samples).tobytes(),
            sample_width=2,
            frame_rate=sample_rate,
            channels=1,
        )
        buffer = io.BytesIO()
        try:
            if self.fmt == "wav":
                segment.export(buffer, format="wav")
            else:
                segment.export(
                    buffer,
                    format=self.fmt,
                    codec=PYDUB_CODECS.get(self.fmt),
                    bitrate=self.bitrate,
                )
        except Exception as e:
            raise EncodeError(f"{self.fmt} encoding failed: {e}") from e

        mime_type, encoding = PYDUB_FORMATS[self.fmt]
        return EncodedAudio(
            data=buffer.getvalue(),
            mime_type=mime_type,
            encoding=encoding,
            sample_rate=sample_rate,
        )


def first_success(
    strategies: Sequence[T],
    attempt: Callable[[T], object],
) -> tuple[T, object, list[tuple[T, Exception]]]:
    """Run `attempt` on each strategy in order until one returns.

    Returns (winning strategy, its result, failures before it). Raises
    the last error with all failures attached when every strategy fails.
    """
    failures: list[tuple[T, Exception]] = []
    for strategy in strategies:
        try:
            return strategy, attempt(strategy), failures
        except Exception as e:
            failures.append((strategy, e))
    if not failures:
        raise ValueError("no strategies to try")
    summary = "; ".join(f"{s!r}: {e}" for s, e in failures)
    raise EncodeError(f"All strategies failed: {summary}") from failures[-1][1]


class FallbackEncoder(ChunkEncoder):
    """Try each encoder in order, logging the ones that fail."""

    def __init__(self, encoders: Sequence[ChunkEncoder]):
        if not encoders:
            raise ValueError("encoders cannot be empty")
        self.encoders = list(encoders)
        self.name = "+".join(e.name for e in self.encoders)

    def encode(self, samples: np.ndarray, sample_rate: int) -> EncodedAudio:
        winner, result, failures = first_success(
            self.encoders, lambda enc: enc.encode(samples, sample_rate)
        )
        for encoder, error in failures:
            logger.warning("  %s encoder failed (%s), falling back", encoder.name, error)
        if failures:
            logger.info("  Encoded with %s: %s", winner.name, format_size_mb(result.size))
        return result


def build_encoder(name: str = DEFAULT_ENCODER) -> ChunkEncoder:
    """Build the named encoder.

    Compressed formats get a single fallback hop to 16-bit WAV, which needs
    no external tool.
    """
    if name in WAV_ENCODERS:
        return WavEncoder(WAV_ENCODERS[name])
    return FallbackEncoder([PydubEncoder(name), WavEncoder(16)])
