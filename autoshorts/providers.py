"""Speech-to-text provider adapters.

Each adapter sends one encoded chunk to a remote service and normalizes
the response into a TranscriptionResult whose segment times are relative
to the start of that chunk. Offsetting onto the global timeline is the
dispatcher's job.
"""

import base64
import io
import os
import time
from abc import ABC, abstractmethod
from collections.abc import Callable

import replicate
import requests
from replicate.exceptions import ReplicateException

from autoshorts.config import (
    API_KEY_ENV,
    DEFAULT_LANGUAGE,
    GOOGLE_CHUNK_LIMIT_BYTES,
    GOOGLE_MODEL,
    GOOGLE_RECOGNIZE_URL,
    HTTP_TIMEOUT_SECONDS,
    MAX_RETRIES,
    OPENAI_CHUNK_LIMIT_BYTES,
    OPENAI_MODEL,
    OPENAI_TRANSCRIBE_URL,
    REPLICATE_CHUNK_LIMIT_BYTES,
    REPLICATE_MODEL,
    RETRY_BASE_DELAY,
    TRANSCRIPTION_TEMPERATURE,
)
from autoshorts.models import (
    EncodedAudio,
    PlainTranscription,
    SegmentedTranscription,
    TranscriptionResult,
    TranscriptSegment,
)
from autoshorts.utils import (
    ChunkTimeoutError,
    PreconditionError,
    TranscriptionError,
    format_size_mb,
    logger,
)


def _time_left(deadline: float | None, label: str) -> float | None:
    if deadline is None:
        return None
    remaining = deadline - time.monotonic()
    if remaining <= 0:
        raise ChunkTimeoutError(f"{label} deadline passed before the request was sent")
    return remaining


def _with_retries(
    call: Callable[[float | None], TranscriptionResult],
    label: str,
    deadline: float | None = None,
) -> TranscriptionResult:
    """Run `call`, retrying transient failures with exponential backoff.

    Connection problems and 5xx responses are retried up to MAX_RETRIES
    times. Client errors (bad key, quota, payload too large) are raised
    immediately. `call` receives the seconds left before `deadline` (None
    when unbounded); no attempt or backoff sleep runs past the deadline.
    """
    last_err: Exception | None = None

    for attempt in range(1, MAX_RETRIES + 1):
        try:
            return call(_time_left(deadline, label))
        except TranscriptionError as e:
            if e.status_code is None or e.status_code < 500:
                raise  # don't retry on clearly bad requests
            last_err = e
        except requests.RequestException as e:
            last_err = e

        if attempt < MAX_RETRIES:
            delay = RETRY_BASE_DELAY * (2 ** (attempt - 1))
            if deadline is not None and time.monotonic() + delay >= deadline:
                raise ChunkTimeoutError(
                    f"{label} out of time after {attempt} attempt(s): {last_err}"
                ) from last_err
            logger.warning(
                "  %s attempt %d/%d failed (%s), retrying in %ds...",
                label, attempt, MAX_RETRIES, last_err, delay,
            )
            time.sleep(delay)
        else:
            logger.error("  All %d %s attempts failed", MAX_RETRIES, label)

    raise TranscriptionError(
        f"{label} failed after {MAX_RETRIES} attempts: {last_err}",
        status_code=getattr(last_err, "status_code", None),
    )


def _error_message(resp: requests.Response) -> str:
    try:
        payload = resp.json()
    except ValueError:
        return resp.text or resp.reason or ""
    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, dict):
        return error.get("message", "")
    return str(error or resp.reason or "")


def _raise_for_status(resp: requests.Response, label: str) -> None:
    """Map a non-2xx provider response to a TranscriptionError."""
    if resp.ok:
        return

    status = resp.status_code
    message = _error_message(resp)

    if status == 401:
        raise TranscriptionError(f"{label} rejected the API key (401)", status)
    if status == 429:
        raise TranscriptionError(f"{label} quota exceeded (429): {message}", status)
    if status == 413 or "payload size exceeds" in message:
        raise TranscriptionError(f"{label} payload too large ({status}): {message}", status)
    raise TranscriptionError(f"{label} API error ({status}): {message}", status)


def _offset_seconds(value) -> float:
    """Parse a Google duration: {"seconds": "1", "nanos": 5e8}, "1.500s" or a number."""
    if value is None:
        return 0.0
    if isinstance(value, dict):
        return float(value.get("seconds", 0) or 0) + float(value.get("nanos", 0) or 0) / 1e9
    if isinstance(value, str):
        return float(value.rstrip("s") or 0)
    return float(value)


def _http_timeout(default: float, time_left: float | None) -> float:
    return default if time_left is None else min(default, time_left)


class TranscriptionProvider(ABC):
    """A remote speech-to-text service."""

    name = "provider"
    label = "Provider"
    max_request_bytes = OPENAI_CHUNK_LIMIT_BYTES

    @abstractmethod
    def transcribe(
        self,
        audio: EncodedAudio,
        chunk_start: float = 0.0,
        deadline: float | None = None,
    ) -> TranscriptionResult:
        """Transcribe one chunk.

        Args:
            audio: Encoded chunk audio
            chunk_start: Where the chunk starts on the global timeline, for logging
            deadline: time.monotonic() value after which no request or retry
                may be started; None means unbounded

        Returns:
            Result with chunk-relative segment times
        """


class OpenAIWhisperProvider(TranscriptionProvider):
    """OpenAI Whisper, verbose JSON with segment timestamps."""

    name = "openai"
    label = "OpenAI Whisper"
    max_request_bytes = OPENAI_CHUNK_LIMIT_BYTES

    def __init__(
        self,
        api_key: str,
        language: str = DEFAULT_LANGUAGE,
        model: str = OPENAI_MODEL,
        prompt: str | None = None,
        url: str = OPENAI_TRANSCRIBE_URL,
        timeout: float = HTTP_TIMEOUT_SECONDS,
    ):
        if not api_key:
            raise PreconditionError("OpenAI API key is not set (OPENAI_API_KEY)")
        self.api_key = api_key
        # Whisper wants the bare language subtag: 'ko-KR' -> 'ko'
        self.language = language.split("-")[0]
        self.model = model
        self.prompt = prompt
        self.url = url
        self.timeout = timeout

    def transcribe(
        self,
        audio: EncodedAudio,
        chunk_start: float = 0.0,
        deadline: float | None = None,
    ) -> TranscriptionResult:
        logger.debug(
            "  Whisper request: %s %s at %.1fs",
            format_size_mb(audio.size), audio.mime_type, chunk_start,
        )
        return _with_retries(
            lambda time_left: self._request(audio, time_left), self.label, deadline
        )

    def _request(self, audio: EncodedAudio, time_left: float | None = None) -> TranscriptionResult:
        fields = [
            ("model", self.model),
            ("language", self.language),
            ("response_format", "verbose_json"),
            ("timestamp_granularities[]", "segment"),
        ]
        if self.prompt:
            fields.append(("prompt", self.prompt))

        resp = requests.post(
            self.url,
            headers={"Authorization": f"Bearer {self.api_key}"},
            files={"file": (f"audio.{audio.extension}", audio.data, audio.mime_type)},
            data=fields,
            timeout=_http_timeout(self.timeout, time_left),
        )
        _raise_for_status(resp, self.label)
        return self.parse_response(resp.json())

    @staticmethod
    def parse_response(data: dict) -> TranscriptionResult:
        full_text = (data.get("text") or "").strip()
        segments = []
        for seg in data.get("segments") or []:
            if not isinstance(seg, dict):
                logger.debug("  Skipping malformed segment: %r", seg)
                continue
            text = (seg.get("text") or "").strip()
            if not text:
                continue
            segments.append(
                TranscriptSegment(
                    start=float(seg.get("start") or 0.0),
                    end=float(seg.get("end") or 0.0),
                    text=text,
                )
            )

        if not segments:
            return PlainTranscription(full_text=full_text)
        return SegmentedTranscription(segments=tuple(segments), full_text=full_text)


class GoogleSpeechProvider(TranscriptionProvider):
    """Google Cloud Speech-to-Text, synchronous recognize with word offsets.

    Word offsets are returned as-is but flagged `whole_seconds`: Google's
    timings are only trusted to the second, so they are rounded once they
    sit on the global timeline.
    """

    name = "google"
    label = "Google STT"
    max_request_bytes = GOOGLE_CHUNK_LIMIT_BYTES

    def __init__(
        self,
        api_key: str,
        language: str = DEFAULT_LANGUAGE,
        model: str = GOOGLE_MODEL,
        url: str = GOOGLE_RECOGNIZE_URL,
        timeout: float = HTTP_TIMEOUT_SECONDS,
        payload_limit: int = GOOGLE_CHUNK_LIMIT_BYTES,
    ):
        if not api_key:
            raise PreconditionError("Google API key is not set (GOOGLE_API_KEY)")
        self.api_key = api_key
        self.language = language
        self.model = model
        self.url = url
        self.timeout = timeout
        self.payload_limit = payload_limit

    def build_request(self, audio: EncodedAudio) -> dict:
        """Build the recognize body.

        The size guard applies to the raw audio, the same measure the
        splitter holds under `max_request_bytes`, so no chunk the splitter
        produced is refused here.
        """
        if audio.size > self.payload_limit:
            raise TranscriptionError(
                f"{self.label} payload too large "
                f"({format_size_mb(audio.size)} > {format_size_mb(self.payload_limit)})",
                status_code=413,
            )
        return {
            "config": {
                "encoding": audio.encoding,
                "sampleRateHertz": audio.sample_rate,
                "languageCode": self.language,
                "enableAutomaticPunctuation": True,
                "enableWordTimeOffsets": True,
                "audioChannelCount": 1,
                "maxAlternatives": 1,
                "model": self.model,
            },
            "audio": {"content": base64.b64encode(audio.data).decode("ascii")},
        }

    def transcribe(
        self,
        audio: EncodedAudio,
        chunk_start: float = 0.0,
        deadline: float | None = None,
    ) -> TranscriptionResult:
        body = self.build_request(audio)
        logger.debug(
            "  Google request: %s %s %dHz at %.1fs",
            format_size_mb(audio.size), audio.encoding, audio.sample_rate, chunk_start,
        )
        return _with_retries(
            lambda time_left: self._request(body, time_left), self.label, deadline
        )

    def _request(self, body: dict, time_left: float | None = None) -> TranscriptionResult:
        resp = requests.post(
            self.url,
            params={"key": self.api_key},
            json=body,
            headers={"Accept": "application/json"},
            timeout=_http_timeout(self.timeout, time_left),
        )
        _raise_for_status(resp, self.label)
        return self.parse_response(resp.json())

    @staticmethod
    def parse_response(data: dict) -> TranscriptionResult:
        texts = []
        segments = []
        for result in data.get("results") or []:
            alternatives = result.get("alternatives") or []
            if not alternatives:
                continue
            alternative = alternatives[0]
            transcript = (alternative.get("transcript") or "").strip()
            if not transcript:
                continue
            texts.append(transcript)

            words = alternative.get("words") or []
            if words:
                segments.append(
                    TranscriptSegment(
                        start=_offset_seconds(words[0].get("startTime")),
                        end=_offset_seconds(words[-1].get("endTime")),
                        text=transcript,
                    )
                )

        full_text = " ".join(texts)
        if not segments:
            return PlainTranscription(full_text=full_text)
        return SegmentedTranscription(
            segments=tuple(segments), full_text=full_text, whole_seconds=True
        )


class ReplicateProvider(TranscriptionProvider):
    """Transcription model hosted on Replicate. Returns plain text only.

    The client has no per-call timeout, so the deadline only bounds retries.
    """

    name = "replicate"
    label = "Replicate"
    max_request_bytes = REPLICATE_CHUNK_LIMIT_BYTES

    def __init__(self, api_token: str, model: str = REPLICATE_MODEL):
        if not api_token:
            raise PreconditionError("Replicate API token is not set (REPLICATE_API_TOKEN)")
        self.model = model
        self._client = replicate.Client(api_token=api_token)

    def transcribe(
        self,
        audio: EncodedAudio,
        chunk_start: float = 0.0,
        deadline: float | None = None,
    ) -> TranscriptionResult:
        return _with_retries(lambda _time_left: self._request(audio), self.label, deadline)

    def _request(self, audio: EncodedAudio) -> TranscriptionResult:
        audio_file = io.BytesIO(audio.data)
        audio_file.name = f"audio.{audio.extension}"
        try:
            output = self._client.run(
                self.model,
                input={"audio_file": audio_file, "temperature": TRANSCRIPTION_TEMPERATURE},
            )
        except ReplicateException as e:
            raise TranscriptionError(
                f"{self.label} error: {e}", status_code=getattr(e, "status", None)
            ) from e

        if output is None:
            raise TranscriptionError(f"{self.label} returned no response")

        text = output if isinstance(output, str) else "".join(str(token) for token in output)
        return PlainTranscription(full_text=text.strip())


PROVIDERS = {
    "openai": OpenAIWhisperProvider,
    "google": GoogleSpeechProvider,
    "replicate": ReplicateProvider,
}


def build_provider(
    name: str,
    language: str = DEFAULT_LANGUAGE,
    api_key: str | None = None,
) -> TranscriptionProvider:
    """Instantiate the named provider, reading its key from the environment."""
    if name not in PROVIDERS:
        raise PreconditionError(
            f"Unknown provider '{name}', expected one of {sorted(PROVIDERS)}"
        )
    key = api_key or os.environ.get(API_KEY_ENV[name], "")
    if name == "replicate":
        return ReplicateProvider(key)
    return PROVIDERS[name](key, language=language)
