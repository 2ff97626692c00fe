"""Transcription of chunked audio with timestamp reconciliation.

Chunks are sent to the provider one at a time, in index order. Each
provider result comes back with chunk-relative times; the chunk's start
time is added to every segment before it joins the aggregate, so all
segments end up on the timeline of the original file.
"""

import math
import threading
import time

from autoshorts.chunking import prepare_audio_chunks
from autoshorts.config import CHUNK_TIMEOUT_SECONDS, FAILED_CHUNK_MARKER
from autoshorts.encoders import ChunkEncoder
from autoshorts.jobs import JobRegistry
from autoshorts.models import (
    AudioChunk,
    ChunkFailure,
    PlainTranscription,
    SegmentedTranscription,
    SubtitleTrack,
    TranscriptionBatch,
    TranscriptionResult,
    TranscriptSegment,
    is_failed_text,
)
from autoshorts.providers import TranscriptionProvider
from autoshorts.subtitles import DEFAULT_NOISE_FILTER, NoisePredicate, assemble, drop_noise
from autoshorts.utils import PreconditionError, format_size_mb, format_timestamp, logger


def _chunk_segments(
    result: TranscriptionResult,
    chunk: AudioChunk,
) -> list[TranscriptSegment]:
    """Place a provider result on the global timeline of `chunk`."""
    if isinstance(result, SegmentedTranscription):
        shifted = [seg.shifted(chunk.start_time) for seg in result.segments]
        if result.whole_seconds:
            return [seg.rounded() for seg in shifted]
        return shifted

    if isinstance(result, PlainTranscription):
        if not result.full_text:
            return []
        end = chunk.end_time if math.isfinite(chunk.end_time) else chunk.start_time
        return [TranscriptSegment(chunk.start_time, end, result.full_text)]

    raise TypeError(f"Unexpected transcription result: {type(result).__name__}")


def transcribe_all(
    chunks: list[AudioChunk],
    provider: TranscriptionProvider,
    *,
    timeout: float | None = CHUNK_TIMEOUT_SECONDS,
    cancel_event: threading.Event | None = None,
    registry: JobRegistry | None = None,
    noise_filter: NoisePredicate = DEFAULT_NOISE_FILTER,
) -> TranscriptionBatch:
    """Transcribe every chunk in order and aggregate the results.

    A chunk that raises or times out is recorded as a failure and the run
    continues with the next chunk. The provider gets the chunk deadline so
    it stops retrying once it passes, and a call that overran is waited
    out before the next one starts: at most one provider call is ever in
    flight. If `cancel_event` gets set, the loop stops before the next
    chunk and the partial aggregate is returned.
    """
    registry = registry or JobRegistry()
    batch = TranscriptionBatch()
    ordered = sorted(chunks, key=lambda c: c.index)
    total = len(ordered)

    for position, chunk in enumerate(ordered):
        if cancel_event is not None and cancel_event.is_set():
            logger.warning("Cancelled after %d/%d chunks", position, total)
            batch.cancelled = True
            break

        if chunk.encoded is None:
            raise PreconditionError(f"Chunk {chunk.index} has not been encoded")

        registry.drain()

        logger.info(
            "Transcribing chunk %d/%d [%s] (%s)...",
            position + 1, total, format_timestamp(chunk.start_time),
            format_size_mb(chunk.byte_size),
        )

        try:
            deadline = time.monotonic() + timeout if timeout is not None else None
            result = registry.run(
                provider.transcribe,
                chunk.encoded,
                chunk.start_time,
                deadline=deadline,
                timeout=timeout,
            )
            segments = _chunk_segments(result, chunk)
        except Exception as e:
            reason = str(e).split("\n")[0]
            logger.warning("  Chunk %d failed: %s", chunk.index + 1, reason)
            batch.chunk_texts.append(FAILED_CHUNK_MARKER)
            batch.failures.append(ChunkFailure(index=chunk.index, reason=reason))
            continue

        kept = drop_noise(segments, noise_filter)
        batch.chunk_texts.append(result.full_text)
        batch.segments.extend(kept)
        logger.info(
            "  Chunk %d done: %d segments, %d chars",
            chunk.index + 1, len(kept), len(result.full_text),
        )

    registry.drain()

    batch.full_text = " ".join(
        text for text in batch.chunk_texts if text.strip() and not is_failed_text(text)
    )

    if batch.all_failed:
        logger.error("All %d chunks failed", len(batch.chunk_texts))
    elif batch.failures:
        logger.warning(
            "%d of %d chunks failed", len(batch.failures), len(batch.chunk_texts)
        )
    return batch


class Transcriber:
    """Prepares chunks and transcribes them with one provider.

    Args:
        provider: Speech-to-text adapter
        encoder: Encoder used to serialize chunks
        ceiling_bytes: Per-request byte limit, defaults to the provider's own
        chunk_timeout: Seconds allowed per chunk call
        noise_filter: Predicate flagging segments to drop
    """

    def __init__(
        self,
        provider: TranscriptionProvider,
        encoder: ChunkEncoder,
        *,
        ceiling_bytes: int | None = None,
        chunk_timeout: float | None = CHUNK_TIMEOUT_SECONDS,
        noise_filter: NoisePredicate = DEFAULT_NOISE_FILTER,
    ):
        if provider is None:
            raise PreconditionError("A transcription provider is required")
        if encoder is None:
            raise PreconditionError("A chunk encoder is required")

        self.provider = provider
        self.encoder = encoder
        self.ceiling_bytes = ceiling_bytes or provider.max_request_bytes
        self.chunk_timeout = chunk_timeout
        self.noise_filter = noise_filter
        self.registry = JobRegistry()

    def prepare(self, path: str) -> list[AudioChunk]:
        return prepare_audio_chunks(path, self.ceiling_bytes, self.encoder)

    def transcribe_all(
        self,
        chunks: list[AudioChunk],
        cancel_event: threading.Event | None = None,
    ) -> TranscriptionBatch:
        return transcribe_all(
            chunks,
            self.provider,
            timeout=self.chunk_timeout,
            cancel_event=cancel_event,
            registry=self.registry,
            noise_filter=self.noise_filter,
        )

    def transcribe(
        self,
        chunks: list[AudioChunk],
        cancel_event: threading.Event | None = None,
    ) -> SubtitleTrack:
        batch = self.transcribe_all(chunks, cancel_event)
        return self.assemble(batch)

    def assemble(self, batch: TranscriptionBatch) -> SubtitleTrack:
        return assemble(
            batch.segments, noise_filter=self.noise_filter, source=self.provider.label
        )

    def run(
        self,
        path: str,
        cancel_event: threading.Event | None = None,
    ) -> tuple[SubtitleTrack, TranscriptionBatch]:
        """Transcribe the file at `path` end to end."""
        chunks = self.prepare(path)
        logger.info(
            "Sending %d chunk(s) to %s", len(chunks), self.provider.label
        )
        batch = self.transcribe_all(chunks, cancel_event)
        return self.assemble(batch), batch
