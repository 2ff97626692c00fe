"""Audio processing: decoding to PCM and sample-accurate slicing."""

import numpy as np
from pydub import AudioSegment

from autoshorts.models import AudioChunk, DecodedAudio
from autoshorts.utils import DecodeError, logger


def decode_audio(path: str) -> DecodedAudio:
    """Decode an audio or video file into mono float32 samples.

    Anything ffmpeg can read is accepted; only the first audio stream is
    used and multi-channel audio is downmixed.
    """
    try:
        segment = AudioSegment.from_file(path)
    except Exception as e:
        raise DecodeError(f"Failed to decode audio: {e}") from e

    if segment.channels > 1:
        segment = segment.set_channels(1)

    full_scale = float(1 << (8 * segment.sample_width - 1))
    # pydub keeps 8-bit PCM signed internally, like the wider widths
    samples = np.array(segment.get_array_of_samples(), dtype=np.float32)
    samples /= full_scale

    if len(samples) == 0:
        raise DecodeError("Decoded audio contains no samples")

    decoded = DecodedAudio(samples=samples, sample_rate=segment.frame_rate)
    logger.info(
        "Decoded audio: %.1fs, %dHz", decoded.duration, decoded.sample_rate
    )
    return decoded


def slice_audio(audio: DecodedAudio, chunk_count: int) -> list[AudioChunk]:
    """Split `audio` into `chunk_count` contiguous chunks on sample boundaries.

    Every chunk holds floor(total / chunk_count) samples except the last,
    which absorbs the remainder, so the chunks cover [0, total) with no gap
    and no overlap. Chunk times are derived from sample indices.

    Raises:
        ValueError: If the audio is empty or chunk_count < 1
    """
    if isinstance(chunk_count, bool) or not isinstance(chunk_count, int):
        raise TypeError(
            f"chunk_count must be int, got {type(chunk_count).__name__}"
        )
    if chunk_count < 1:
        raise ValueError(f"chunk_count must be positive, got {chunk_count}")

    total_samples = audio.num_samples
    if total_samples == 0:
        raise ValueError("audio cannot be empty")

    sample_rate = audio.sample_rate

    if chunk_count == 1:
        return [
            AudioChunk(
                index=0,
                total_chunks=1,
                start_time=0.0,
                end_time=total_samples / sample_rate,
                samples=audio.samples,
            )
        ]

    if chunk_count > total_samples:
        logger.warning(
            "Requested %d chunks for %d samples, using %d",
            chunk_count, total_samples, total_samples,
        )
        chunk_count = total_samples

    samples_per_chunk = total_samples // chunk_count
    chunks: list[AudioChunk] = []

    for i in range(chunk_count):
        start_sample = i * samples_per_chunk
        end_sample = total_samples if i == chunk_count - 1 else (i + 1) * samples_per_chunk

        chunks.append(
            AudioChunk(
                index=i,
                total_chunks=chunk_count,
                start_time=start_sample / sample_rate,
                end_time=end_sample / sample_rate,
                samples=audio.samples[start_sample:end_sample].copy(),
            )
        )
        logger.debug(
            "  Chunk %d: samples %d-%d (%.1fs - %.1fs)",
            i + 1, start_sample, end_sample,
            start_sample / sample_rate, end_sample / sample_rate,
        )

    logger.info("Sliced audio into %d chunks of ~%d samples", chunk_count, samples_per_chunk)
    return chunks
