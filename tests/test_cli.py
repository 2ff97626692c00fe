"""Tests for autoshorts.cli."""

import json
from unittest.mock import patch

import pytest

from autoshorts.cli import main
from autoshorts.models import (
    ChunkFailure,
    SubtitleTrack,
    TranscriptionBatch,
    TranscriptSegment,
)
from autoshorts.utils import PreconditionError


def _track():
    return SubtitleTrack(
        segments=(TranscriptSegment(0.0, 1.5, "안녕하세요"),), source="OpenAI Whisper"
    )


@pytest.fixture(autouse=True)
def no_dotenv():
    with patch("autoshorts.cli.load_dotenv"):
        yield


class TestMain:
    @patch("autoshorts.cli.build_provider")
    @patch("autoshorts.cli.Transcriber")
    def test_saves_text_and_metadata(self, mock_transcriber, mock_build, tmp_path):
        batch = TranscriptionBatch(
            segments=list(_track().segments),
            full_text="안녕하세요",
            chunk_texts=["안녕하세요"],
        )
        mock_transcriber.return_value.run.return_value = (_track(), batch)

        main(["clip.mp4", "-p", "google", "-l", "en-US", "-o", str(tmp_path)])

        mock_build.assert_called_once_with("google", language="en-US")
        [text_file] = tmp_path.glob("*.txt")
        [meta_file] = tmp_path.glob("*.json")
        assert text_file.read_text(encoding="utf-8") == "[00:00.00 - 00:01.50] 안녕하세요"

        meta = json.loads(meta_file.read_text(encoding="utf-8"))
        assert meta["source"] == "clip.mp4"
        assert meta["provider"] == "OpenAI Whisper"
        assert meta["segment_count"] == 1
        assert meta["segments"][0]["text"] == "안녕하세요"

    @patch("autoshorts.cli.build_provider")
    @patch("autoshorts.cli.Transcriber")
    def test_no_speech_saves_nothing(self, mock_transcriber, mock_build, tmp_path, caplog):
        mock_transcriber.return_value.run.return_value = (
            SubtitleTrack(),
            TranscriptionBatch(chunk_texts=[""]),
        )

        with caplog.at_level("INFO"):
            main(["clip.mp4", "-o", str(tmp_path)])

        assert "No speech recognized" in caplog.text
        assert list(tmp_path.iterdir()) == []

    @patch("autoshorts.cli.build_provider")
    @patch("autoshorts.cli.Transcriber")
    def test_all_failed_reports_no_speech(self, mock_transcriber, mock_build, tmp_path, caplog):
        mock_transcriber.return_value.run.return_value = (
            SubtitleTrack(),
            TranscriptionBatch(
                chunk_texts=["(processing failed)"],
                failures=[ChunkFailure(index=0, reason="down")],
            ),
        )

        with caplog.at_level("INFO"):
            main(["clip.mp4", "-o", str(tmp_path)])

        assert "All 1 chunk(s) failed" in caplog.text
        assert "No speech recognized" in caplog.text
        assert list(tmp_path.iterdir()) == []

    @patch("autoshorts.cli.build_provider", side_effect=PreconditionError("key not set"))
    def test_precondition_exits(self, mock_build):
        with pytest.raises(SystemExit) as exc:
            main(["clip.mp4"])
        assert exc.value.code == 1

    def test_rejects_unknown_provider(self):
        with pytest.raises(SystemExit):
            main(["clip.mp4", "-p", "azure"])
