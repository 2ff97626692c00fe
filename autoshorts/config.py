"""Constants and configuration for the transcription pipeline."""

from pathlib import Path

MB = 1024 * 1024

# Directories
TRANSCRIPTS_DIR = Path("transcripts")

# Per-request byte ceilings for the encoded audio of one chunk, before
# any base64 wrapping.
GOOGLE_CHUNK_LIMIT_BYTES = int(9.5 * MB)
OPENAI_CHUNK_LIMIT_BYTES = 25 * MB
REPLICATE_CHUNK_LIMIT_BYTES = 25 * MB

# Compression profile tiers: (max file size in MB, target rate, label, quality).
# A target rate of None means "keep the original rate, capped at LIGHT_MAX_RATE".
LIGHT_MAX_RATE = 22050
PROFILE_TIERS = (
    (5, None, "light", "high-quality"),
    (15, 16000, "standard", "balanced"),
    (30, 16000, "strong", "size-first"),
    (float("inf"), 8000, "maximum", "size-critical"),
)
DEFAULT_PROFILE = (16000, "standard", "balanced")
# Long recordings are pushed to a tighter tier regardless of file size.
LONG_AUDIO_MINUTES = 60
VERY_LONG_AUDIO_MINUTES = 120

# Encoding
DEFAULT_ENCODER = "wav"
COMPRESSED_BITRATE = "32k"

# Language
DEFAULT_LANGUAGE = "ko-KR"

# Providers
DEFAULT_PROVIDER = "openai"
OPENAI_TRANSCRIBE_URL = "https://api.openai.com/v1/audio/transcriptions"
OPENAI_MODEL = "whisper-1"
GOOGLE_RECOGNIZE_URL = "https://speech.googleapis.com/v1/speech:recognize"
GOOGLE_MODEL = "latest_short"
REPLICATE_MODEL = "openai/gpt-4o-transcribe"
TRANSCRIPTION_TEMPERATURE = 0

# Environment variables holding API credentials.
API_KEY_ENV = {
    "openai": "OPENAI_API_KEY",
    "google": "GOOGLE_API_KEY",
    "replicate": "REPLICATE_API_TOKEN",
}

# Timeouts (seconds)
HTTP_TIMEOUT_SECONDS = 50
CHUNK_TIMEOUT_SECONDS = 60

# Retry settings for API calls
MAX_RETRIES = 3
RETRY_BASE_DELAY = 2  # seconds; doubles each attempt (2s, 4s, 8s)

# Noise filtering
# Vowel-only filler syllables that show up when silence or a chunk boundary
# gets recognized as speech.
FILLER_TOKENS = frozenset("으어음ㅇ")
FILLER_MAX_LENGTH = 2

# Marker stored in place of the text of a chunk whose transcription failed.
FAILED_CHUNK_MARKER = "(processing failed)"
