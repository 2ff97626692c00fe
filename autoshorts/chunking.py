"""Chunk preparation: decode, compress, split under a provider's byte ceiling."""

import math
import mimetypes
import os
from pathlib import Path

from pydub.utils import mediainfo

from autoshorts.audio import decode_audio, slice_audio
from autoshorts.config import MB
from autoshorts.encoders import ChunkEncoder
from autoshorts.estimator import compute_chunk_count, estimate_profile, resample
from autoshorts.models import AudioChunk, DecodedAudio, EncodedAudio
from autoshorts.utils import (
    DecodeError,
    EncodeError,
    PreconditionError,
    compression_ratio,
    format_size_mb,
    logger,
)

# file extension -> Google RecognitionConfig encoding, for passthrough uploads
PASSTHROUGH_ENCODINGS = {
    ".wav": "LINEAR16",
    ".mp3": "MP3",
    ".flac": "FLAC",
    ".ogg": "OGG_OPUS",
    ".opus": "OGG_OPUS",
    ".webm": "WEBM_OPUS",
}
PASSTHROUGH_SAMPLE_RATE = 16000


def _passthrough_chunk(path: str) -> AudioChunk:
    """Wrap the raw file as one chunk when it cannot be decoded."""
    data = Path(path).read_bytes()
    ext = Path(path).suffix.lower()
    mime_type = mimetypes.guess_type(path)[0] or "application/octet-stream"

    duration = math.inf
    sample_rate = PASSTHROUGH_SAMPLE_RATE
    try:
        info = mediainfo(path)
        if info.get("duration"):
            duration = float(info["duration"])
        if info.get("sample_rate"):
            sample_rate = int(info["sample_rate"])
    except (OSError, ValueError) as e:
        logger.debug("  Could not probe %s: %s", path, e)

    encoded = EncodedAudio(
        data=data,
        mime_type=mime_type,
        encoding=PASSTHROUGH_ENCODINGS.get(ext, "ENCODING_UNSPECIFIED"),
        sample_rate=sample_rate,
    )
    return AudioChunk(
        index=0,
        total_chunks=1,
        start_time=0.0,
        end_time=duration,
        encoded=encoded,
    )


def _encode_chunks(
    audio: DecodedAudio,
    chunk_count: int,
    encoder: ChunkEncoder,
) -> list[AudioChunk]:
    chunks = slice_audio(audio, chunk_count)
    for chunk in chunks:
        chunk.encoded = encoder.encode(chunk.samples, audio.sample_rate)
        logger.info(
            "  Chunk %d/%d: %s, %.1fs - %.1fs",
            chunk.index + 1, chunk.total_chunks, format_size_mb(chunk.byte_size),
            chunk.start_time, chunk.end_time,
        )
    return chunks


def split_encoded(
    audio: DecodedAudio,
    whole: EncodedAudio,
    ceiling_bytes: int,
    encoder: ChunkEncoder,
) -> list[AudioChunk]:
    """Split `audio` so every encoded chunk fits under `ceiling_bytes`.

    The chunk count comes from the encoded size of the whole buffer. If an
    encoded chunk still exceeds the ceiling, the audio is re-sliced once
    with one more chunk. Splitting is best-effort: if it fails, the whole
    encoding is returned as a single chunk.
    """
    whole_chunk = AudioChunk(
        index=0,
        total_chunks=1,
        start_time=0.0,
        end_time=audio.duration,
        samples=audio.samples,
        encoded=whole,
    )

    chunk_count = compute_chunk_count(whole.size, ceiling_bytes)
    if chunk_count == 1:
        logger.info(
            "No split needed: %s <= %s", format_size_mb(whole.size), format_size_mb(ceiling_bytes)
        )
        return [whole_chunk]

    logger.info(
        "Splitting %s into %d chunks (ceiling %s)",
        format_size_mb(whole.size), chunk_count, format_size_mb(ceiling_bytes),
    )

    try:
        chunks = _encode_chunks(audio, chunk_count, encoder)
        largest = max(chunk.byte_size for chunk in chunks)
        if largest > ceiling_bytes:
            logger.warning(
                "Largest chunk is %s, over the %s ceiling; re-splitting into %d chunks",
                format_size_mb(largest), format_size_mb(ceiling_bytes), chunk_count + 1,
            )
            chunks = _encode_chunks(audio, chunk_count + 1, encoder)
            largest = max(chunk.byte_size for chunk in chunks)
            if largest > ceiling_bytes:
                logger.warning(
                    "Largest chunk is still %s after re-splitting; the provider may reject it",
                    format_size_mb(largest),
                )
    except (EncodeError, ValueError) as e:
        logger.warning("Splitting failed (%s), sending the audio as a single chunk", e)
        return [whole_chunk]

    logger.info("Created %d chunks", len(chunks))
    return chunks


def prepare_audio_chunks(
    path: str,
    ceiling_bytes: int,
    encoder: ChunkEncoder,
) -> list[AudioChunk]:
    """Decode `path` and cut it into encoded chunks that fit a provider.

    Raises:
        PreconditionError: If the file does not exist
        EncodeError: If the audio cannot be encoded at all
    """
    if not os.path.isfile(path):
        raise PreconditionError(f"File not found: {path}")

    file_size = os.path.getsize(path)

    try:
        decoded = decode_audio(path)
    except DecodeError as e:
        logger.warning("%s; sending the file unsplit", e)
        chunk = _passthrough_chunk(path)
        if chunk.byte_size > ceiling_bytes:
            logger.warning(
                "Unsplit file is %s, over the %s ceiling",
                format_size_mb(chunk.byte_size), format_size_mb(ceiling_bytes),
            )
        return [chunk]

    profile = estimate_profile(
        file_size / MB, decoded.duration / 60, decoded.sample_rate
    )
    logger.info(
        "Compression: %s (%s), %dHz -> %dHz",
        profile.label, profile.quality, decoded.sample_rate, profile.target_sample_rate,
    )

    audio = DecodedAudio(
        samples=resample(decoded.samples, decoded.sample_rate, profile.target_sample_rate),
        sample_rate=profile.target_sample_rate,
    )

    whole = encoder.encode(audio.samples, audio.sample_rate)
    pcm_size = audio.num_samples * 2
    logger.info(
        "Encoded with %s: %s -> %s (%s smaller)",
        encoder.name, format_size_mb(pcm_size), format_size_mb(whole.size),
        compression_ratio(pcm_size, whole.size),
    )

    return split_encoded(audio, whole, ceiling_bytes, encoder)
