"""Command-line interface for the subtitle transcription tool."""

import argparse
import json
import sys
import threading
import time
from pathlib import Path

from dotenv import load_dotenv

from autoshorts.config import (
    CHUNK_TIMEOUT_SECONDS,
    DEFAULT_ENCODER,
    DEFAULT_LANGUAGE,
    DEFAULT_PROVIDER,
    TRANSCRIPTS_DIR,
)
from autoshorts.encoders import PYDUB_FORMATS, WAV_ENCODERS, build_encoder
from autoshorts.models import SubtitleTrack, TranscriptionBatch
from autoshorts.providers import PROVIDERS, build_provider
from autoshorts.transcriber import Transcriber
from autoshorts.utils import (
    AutoShortsError,
    generate_filename,
    logger,
    setup_logging,
)


def _save_transcript(
    track: SubtitleTrack,
    batch: TranscriptionBatch,
    source: str,
    output_dir: Path,
) -> str:
    """Save subtitle lines and metadata. Returns the text file path."""
    output_dir.mkdir(parents=True, exist_ok=True)
    stem = generate_filename()

    text_path = output_dir / f"{stem}.txt"
    meta_path = output_dir / f"{stem}.json"

    text_path.write_text(track.to_text(), encoding="utf-8")
    meta_path.write_text(
        json.dumps(
            {
                "source": source,
                "provider": track.source,
                "segment_count": len(track),
                "chunk_count": len(batch.chunk_texts),
                "failed_chunks": [failure.index for failure in batch.failures],
                "cancelled": batch.cancelled,
                "full_text": batch.full_text,
                "timestamp": stem.split("_", 1)[1],  # everything after prefix
                "segments": track.to_dict()["segments"],
            },
            indent=2,
            ensure_ascii=False,
        ),
        encoding="utf-8",
    )

    logger.info("Saved: %s", text_path)
    return str(text_path)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="autoshorts",
        description="Transcribe an audio or video file into timestamped subtitles.",
    )
    parser.add_argument("file", help="Local audio or video file")
    parser.add_argument(
        "-p", "--provider",
        choices=sorted(PROVIDERS),
        default=DEFAULT_PROVIDER,
        help=f"Speech-to-text service (default: {DEFAULT_PROVIDER})",
    )
    parser.add_argument(
        "-l", "--language",
        default=DEFAULT_LANGUAGE,
        help=f"BCP-47 language code (default: {DEFAULT_LANGUAGE})",
    )
    parser.add_argument(
        "-e", "--encoder",
        choices=sorted(set(WAV_ENCODERS) | set(PYDUB_FORMATS)),
        default=DEFAULT_ENCODER,
        help=f"Chunk encoding (default: {DEFAULT_ENCODER})",
    )
    parser.add_argument(
        "-o", "--output-dir",
        type=Path,
        default=TRANSCRIPTS_DIR,
        help=f"Directory for transcript output (default: {TRANSCRIPTS_DIR})",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=CHUNK_TIMEOUT_SECONDS,
        help=f"Seconds allowed per chunk (default: {CHUNK_TIMEOUT_SECONDS})",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    setup_logging(verbose=args.verbose)
    load_dotenv()

    cancel_event = threading.Event()

    try:
        provider = build_provider(args.provider, language=args.language)
        transcriber = Transcriber(
            provider,
            build_encoder(args.encoder),
            chunk_timeout=args.timeout,
        )

        start = time.time()
        track, batch = transcriber.run(args.file, cancel_event)
        elapsed = time.time() - start
        logger.info("Completed in %.1fs", elapsed)

        if batch.all_failed:
            logger.warning(
                "All %d chunk(s) failed to transcribe", len(batch.failures)
            )

        if batch.all_failed or batch.no_speech or not track:
            logger.info("No speech recognized")
            return

        _save_transcript(track, batch, args.file, args.output_dir)

    except AutoShortsError as e:
        logger.error("Error: %s", e)
        sys.exit(1)
    except KeyboardInterrupt:
        cancel_event.set()
        logger.info("\nInterrupted")
        sys.exit(130)


if __name__ == "__main__":
    main()
