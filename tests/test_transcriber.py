"""Tests for autoshorts.transcriber and autoshorts.jobs."""

import math
import threading
import time
from unittest.mock import MagicMock, patch

import pytest

from autoshorts.config import FAILED_CHUNK_MARKER
from autoshorts.encoders import WavEncoder
from autoshorts.jobs import JobRegistry
from autoshorts.models import (
    AudioChunk,
    EncodedAudio,
    PlainTranscription,
    SegmentedTranscription,
    TranscriptSegment,
)
from autoshorts.providers import TranscriptionProvider
from autoshorts.transcriber import Transcriber, transcribe_all
from autoshorts.utils import ChunkTimeoutError, PreconditionError, TranscriptionError


def _chunk(index: int, start: float, end: float, total: int = 3) -> AudioChunk:
    return AudioChunk(
        index=index,
        total_chunks=total,
        start_time=start,
        end_time=end,
        encoded=EncodedAudio(
            data=bytes([index]) * 10,
            mime_type="audio/wav",
            encoding="LINEAR16",
            sample_rate=16000,
        ),
    )


def _chunks():
    return [_chunk(0, 0.0, 10.0), _chunk(1, 10.0, 20.0), _chunk(2, 20.0, 30.0)]


def _segmented(text: str) -> SegmentedTranscription:
    return SegmentedTranscription(
        segments=(TranscriptSegment(1.0, 2.0, text),), full_text=text
    )


class FakeProvider(TranscriptionProvider):
    """Answers each chunk from a list of results or exceptions, by call order."""

    name = "fake"
    label = "Fake STT"
    max_request_bytes = 1000

    def __init__(self, responses):
        self.responses = list(responses)
        self.starts = []
        self.deadlines = []

    def transcribe(self, audio, chunk_start=0.0, deadline=None):
        self.starts.append(chunk_start)
        self.deadlines.append(deadline)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class TestTranscribeAll:
    def test_offsets_segments_by_chunk_start(self):
        provider = FakeProvider([_segmented("하나"), _segmented("둘"), _segmented("셋")])

        batch = transcribe_all(_chunks(), provider)

        assert [(s.start, s.end, s.text) for s in batch.segments] == [
            (1.0, 2.0, "하나"),
            (11.0, 12.0, "둘"),
            (21.0, 22.0, "셋"),
        ]
        assert batch.full_text == "하나 둘 셋"
        assert provider.starts == [0.0, 10.0, 20.0]
        assert not batch.failures

    def test_failed_chunk_is_isolated(self):
        provider = FakeProvider(
            [_segmented("하나"), TranscriptionError("API error (500)", 500), _segmented("셋")]
        )

        batch = transcribe_all(_chunks(), provider)

        assert batch.chunk_texts == ["하나", FAILED_CHUNK_MARKER, "셋"]
        assert batch.full_text == "하나 셋"
        assert [f.index for f in batch.failures] == [1]
        assert [s.start for s in batch.segments] == [1.0, 21.0]
        assert not batch.all_failed

    def test_all_chunks_failed(self):
        provider = FakeProvider([RuntimeError("down")] * 3)

        batch = transcribe_all(_chunks(), provider)

        assert batch.all_failed
        assert batch.full_text == ""
        assert batch.segments == []

    def test_plain_result_spans_chunk(self):
        provider = FakeProvider([PlainTranscription("하나"), PlainTranscription("")])

        batch = transcribe_all([_chunk(0, 0.0, 10.0, 2), _chunk(1, 10.0, 20.0, 2)], provider)

        assert [(s.start, s.end, s.text) for s in batch.segments] == [(0.0, 10.0, "하나")]
        assert batch.chunk_texts == ["하나", ""]
        assert batch.full_text == "하나"
        assert batch.no_speech is False

    def test_plain_result_with_unknown_end(self):
        provider = FakeProvider([PlainTranscription("통째로")])

        batch = transcribe_all([_chunk(0, 0.0, math.inf, 1)], provider)

        assert (batch.segments[0].start, batch.segments[0].end) == (0.0, 0.0)

    def test_noise_dropped_but_text_kept(self):
        provider = FakeProvider([_segmented("어")])

        batch = transcribe_all([_chunk(0, 0.0, 10.0, 1)], provider)

        assert batch.segments == []
        assert batch.chunk_texts == ["어"]

    def test_processes_in_index_order(self):
        provider = FakeProvider([_segmented("a"), _segmented("b"), _segmented("c")])

        transcribe_all(list(reversed(_chunks())), provider)

        assert provider.starts == [0.0, 10.0, 20.0]

    def test_timeout_counts_as_failure(self):
        provider = MagicMock(spec=TranscriptionProvider)
        provider.transcribe.side_effect = lambda audio, start, deadline: time.sleep(0.5)

        batch = transcribe_all([_chunk(0, 0.0, 10.0, 1)], provider, timeout=0.05)

        assert batch.all_failed
        assert "did not finish" in batch.failures[0].reason

    def test_overrunning_calls_never_overlap(self):
        """A call that outlives its timeout must finish before the next one starts."""
        lock = threading.Lock()
        active = 0
        max_active = 0

        def slow_transcribe(audio, start, deadline):
            nonlocal active, max_active
            with lock:
                active += 1
                max_active = max(max_active, active)
            time.sleep(0.3)
            with lock:
                active -= 1
            return _segmented("늦음")

        provider = MagicMock(spec=TranscriptionProvider)
        provider.transcribe.side_effect = slow_transcribe

        batch = transcribe_all(_chunks(), provider, timeout=0.1)

        assert max_active == 1
        assert active == 0
        assert len(batch.failures) == 3
        assert provider.transcribe.call_count == 3

    def test_passes_deadline_to_provider(self):
        provider = FakeProvider([_segmented("하나")])

        before = time.monotonic()
        transcribe_all([_chunk(0, 0.0, 10.0, 1)], provider, timeout=30)

        [deadline] = provider.deadlines
        assert before + 30 <= deadline <= time.monotonic() + 30

    def test_no_deadline_without_timeout(self):
        provider = FakeProvider([_segmented("하나")])

        transcribe_all([_chunk(0, 0.0, 10.0, 1)], provider, timeout=None)

        assert provider.deadlines == [None]

    def test_whole_second_results_rounded_after_offset(self):
        result = SegmentedTranscription(
            segments=(TranscriptSegment(0.4, 2.5, "안녕하세요"),),
            full_text="안녕하세요",
            whole_seconds=True,
        )
        provider = FakeProvider([result])

        batch = transcribe_all([_chunk(0, 10.3, 20.0, 1)], provider)

        # 10.7 -> 11, 12.8 -> 13; rounding before the offset would give 10.3 / 13.3
        assert [(s.start, s.end) for s in batch.segments] == [(11.0, 13.0)]

    def test_fractional_results_not_rounded(self):
        provider = FakeProvider([_segmented("하나")])

        batch = transcribe_all([_chunk(0, 10.3, 20.0, 1)], provider)

        assert batch.segments[0].start == pytest.approx(11.3)

    def test_cancel_between_chunks(self):
        cancel = threading.Event()
        provider = FakeProvider([_segmented("하나"), _segmented("둘"), _segmented("셋")])
        original = provider.transcribe

        def transcribe_then_cancel(audio, chunk_start=0.0, deadline=None):
            cancel.set()
            return original(audio, chunk_start, deadline)

        provider.transcribe = transcribe_then_cancel

        batch = transcribe_all(_chunks(), provider, cancel_event=cancel)

        assert batch.cancelled
        assert batch.full_text == "하나"
        assert len(batch.chunk_texts) == 1

    def test_unencoded_chunk(self):
        chunk = AudioChunk(index=0, total_chunks=1, start_time=0.0, end_time=1.0)
        with pytest.raises(PreconditionError):
            transcribe_all([chunk], FakeProvider([]))

    def test_empty_chunk_list(self):
        batch = transcribe_all([], FakeProvider([]))
        assert batch.no_speech
        assert not batch.all_failed


class TestTranscriber:
    def test_requires_provider(self):
        with pytest.raises(PreconditionError):
            Transcriber(None, WavEncoder())

    def test_requires_encoder(self):
        with pytest.raises(PreconditionError):
            Transcriber(FakeProvider([]), None)

    def test_uses_provider_ceiling(self):
        assert Transcriber(FakeProvider([]), WavEncoder()).ceiling_bytes == 1000

    def test_transcribe_builds_track(self):
        provider = FakeProvider([_segmented("하나"), _segmented("어"), _segmented("셋")])

        track = Transcriber(provider, WavEncoder()).transcribe(_chunks())

        assert [s.text for s in track] == ["하나", "셋"]
        assert track.source == "Fake STT"

    @patch("autoshorts.transcriber.prepare_audio_chunks")
    def test_run(self, mock_prepare):
        mock_prepare.return_value = _chunks()
        provider = FakeProvider([_segmented("하나"), _segmented("둘"), _segmented("셋")])
        encoder = WavEncoder()

        track, batch = Transcriber(provider, encoder, ceiling_bytes=500).run("clip.mp4")

        mock_prepare.assert_called_once_with("clip.mp4", 500, encoder)
        assert [s.start for s in track] == [1.0, 11.0, 21.0]
        assert batch.full_text == "하나 둘 셋"


class TestJobRegistry:
    def test_run_returns_result(self):
        registry = JobRegistry()
        assert registry.run(lambda x, y: x + y, 2, 3, timeout=1) == 5
        assert len(registry) == 0

    def test_ids_are_unique(self):
        registry = JobRegistry()
        release = threading.Event()
        ids = [registry.submit(release.wait) for _ in range(3)]
        assert len(set(ids)) == 3
        assert len(registry) == 3
        release.set()
        for job_id in ids:
            registry.wait(job_id, timeout=1)
        assert len(registry) == 0

    def test_propagates_exception(self):
        def fail():
            raise ValueError("boom")

        with pytest.raises(ValueError, match="boom"):
            JobRegistry().run(fail, timeout=1)

    def test_timeout(self):
        registry = JobRegistry()
        release = threading.Event()
        with pytest.raises(ChunkTimeoutError):
            registry.run(release.wait, timeout=0.05)
        # still running, so still tracked
        assert len(registry) == 1
        release.set()
        assert registry.drain(timeout=1)
        assert len(registry) == 0

    def test_drain_gives_up_after_timeout(self):
        registry = JobRegistry()
        release = threading.Event()
        with pytest.raises(ChunkTimeoutError):
            registry.run(release.wait, timeout=0.01)
        assert not registry.drain(timeout=0.05)
        assert len(registry) == 1
        release.set()
        assert registry.drain(timeout=1)

    def test_drain_with_nothing_pending(self):
        assert JobRegistry().drain()

    def test_unknown_job(self):
        with pytest.raises(KeyError):
            JobRegistry().wait(42)
