"""Data structures shared across the transcription pipeline.

Covers the decoded audio buffer, the compression profile picked for it,
the chunks cut from it, provider results and the aggregated transcript.
"""

import math
from dataclasses import dataclass, field, replace
from typing import Literal, Union

import numpy as np

from autoshorts.config import FAILED_CHUNK_MARKER
from autoshorts.utils import format_timestamp, round_half_up


@dataclass(frozen=True)
class DecodedAudio:
    """Mono PCM samples as float32 in [-1, 1]."""

    samples: np.ndarray
    sample_rate: int

    @property
    def num_samples(self) -> int:
        return len(self.samples)

    @property
    def duration(self) -> float:
        return len(self.samples) / self.sample_rate


@dataclass(frozen=True)
class CompressionProfile:
    target_sample_rate: int
    label: str
    quality: str


@dataclass(frozen=True)
class EncodedAudio:
    """Serialized audio ready to send to a provider.

    Attributes:
        data: Container bytes (WAV, MP3, ...)
        mime_type: MIME type of `data`
        encoding: Google RecognitionConfig encoding name, e.g. "LINEAR16"
        sample_rate: Sample rate of the encoded audio in Hz
    """

    data: bytes
    mime_type: str
    encoding: str
    sample_rate: int

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def extension(self) -> str:
        return self.mime_type.split("/")[-1].split(";")[0]


@dataclass
class AudioChunk:
    """One contiguous piece of the source audio.

    Attributes:
        index: Position in the sequence of chunks (0-based)
        total_chunks: Number of chunks the audio was split into
        start_time: Start in seconds on the original timeline (inclusive)
        end_time: End in seconds on the original timeline (exclusive)
        samples: Sample data owned by this chunk, None for passthrough chunks
        encoded: Serialized audio, filled in after encoding
    """

    index: int
    total_chunks: int
    start_time: float
    end_time: float
    samples: np.ndarray | None = None
    encoded: EncodedAudio | None = None

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time

    @property
    def byte_size(self) -> int:
        return self.encoded.size if self.encoded is not None else 0


@dataclass(frozen=True)
class TranscriptSegment:
    start: float
    end: float
    text: str

    def shifted(self, offset: float) -> "TranscriptSegment":
        """Return a copy moved `offset` seconds along the timeline."""
        return replace(self, start=self.start + offset, end=self.end + offset)

    def rounded(self) -> "TranscriptSegment":
        """Return a copy with start and end rounded half-up to whole seconds."""
        return replace(self, start=round_half_up(self.start), end=round_half_up(self.end))


@dataclass(frozen=True)
class SegmentedTranscription:
    """Provider result with chunk-relative segment times.

    `whole_seconds` marks timings only accurate to the second; they are
    rounded once placed on the global timeline.
    """

    segments: tuple[TranscriptSegment, ...]
    full_text: str
    whole_seconds: bool = False
    kind: Literal["segmented"] = "segmented"


@dataclass(frozen=True)
class PlainTranscription:
    full_text: str
    kind: Literal["plain"] = "plain"


TranscriptionResult = Union[SegmentedTranscription, PlainTranscription]


@dataclass(frozen=True)
class ChunkFailure:
    index: int
    reason: str


@dataclass
class TranscriptionBatch:
    """Aggregate of one transcription run over all chunks.

    `chunk_texts` has one entry per attempted chunk, in index order;
    failed chunks hold FAILED_CHUNK_MARKER.
    """

    segments: list[TranscriptSegment] = field(default_factory=list)
    full_text: str = ""
    chunk_texts: list[str] = field(default_factory=list)
    failures: list[ChunkFailure] = field(default_factory=list)
    cancelled: bool = False

    @property
    def all_failed(self) -> bool:
        return bool(self.chunk_texts) and len(self.failures) == len(self.chunk_texts)

    @property
    def no_speech(self) -> bool:
        return not self.full_text.strip()


@dataclass(frozen=True)
class SubtitleTrack:
    """Ordered subtitle segments on the global timeline."""

    segments: tuple[TranscriptSegment, ...] = ()
    source: str = ""

    def __len__(self) -> int:
        return len(self.segments)

    def __iter__(self):
        return iter(self.segments)

    def __getitem__(self, index):
        return self.segments[index]

    @property
    def full_text(self) -> str:
        return " ".join(seg.text for seg in self.segments)

    @property
    def end_time(self) -> float:
        ends = [seg.end for seg in self.segments if math.isfinite(seg.end)]
        return max(ends, default=0.0)

    def to_text(self) -> str:
        """Render as '[MM:SS.cc - MM:SS.cc] text' lines."""
        return "\n".join(
            f"[{format_timestamp(seg.start)} - {format_timestamp(seg.end)}] {seg.text}"
            for seg in self.segments
        )

    def to_dict(self) -> dict:
        return {
            "source": self.source,
            "segments": [
                {"start": seg.start, "end": seg.end, "text": seg.text}
                for seg in self.segments
            ],
        }


def is_failed_text(text: str) -> bool:
    return text == FAILED_CHUNK_MARKER
