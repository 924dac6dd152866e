"""Default configuration values for voicebridge."""

# API Keys (must be overridden in config.py)
ELEVENLABS_API_KEY = ""
ELEVENLABS_AGENT_ID = ""
ELEVENLABS_VOICE_ID = "pNInz6obpgDQGcFmaJgB"
ELEVENLABS_STT_MODEL = "scribe_v1"

# Fallback chat provider (any OpenAI-compatible /chat/completions endpoint)
FALLBACK_API_KEY = ""
FALLBACK_BASE_URL = "https://openai.inference.de-txl.ionos.com/v1"
FALLBACK_MODEL = "meta-llama/Meta-Llama-3.1-8B-Instruct"
FALLBACK_MAX_TOKENS: int = 150
FALLBACK_TEMPERATURE: float = 0.7

SYSTEM_PROMPT = (
    "You are a helpful voice assistant. Keep responses concise and conversational."
)

# Response resolution
PRIMARY_TIMEOUT_MS: int = 10000
PRIMARY_CONTEXT_TURNS: int = 2  # Exchanges prefixed to primary messages on continuation
GENERIC_RESPONSE_PHRASES: list[str] = [
    "I'm ready — what's on your mind today",
    "Want to capture a note, draft a message",
]
APOLOGY_TEXT = "I'm having trouble connecting right now. Please try again."

# Conversation continuity
MAX_TURNS: int = 10
CONTEXT_WINDOW_TURNS: int = 10

# Voice activity detection (0-255 byte spectrum scale)
VAD_SILENCE_THRESHOLD: float = 30.0
VAD_SILENCE_DURATION_MS: int = 2000
VAD_CONVERSATIONAL_SILENCE_MS: int = 500
VAD_MIN_SPEECH_MS: int = 500

# Audio capture
AUDIO_SAMPLE_RATE: int = 16000
AUDIO_BLOCK_SIZE: int = 1024
CAPTURE_RETRY_ATTEMPTS: int = 3
CAPTURE_RETRY_DELAY_MS: int = 500

# Voice socket server
SERVER_HOST: str = "localhost"
SERVER_PORT: int = 5000

# Coaching evaluation (uses the fallback endpoint)
COACHING_MODEL = "meta-llama/Meta-Llama-3.1-405B-Instruct-FP8"
COACHING_MAX_TOKENS: int = 800

# Paths
DATA_DIR: str = "data"
TRANSCRIPTS_ENABLED: bool = True

# All configurable keys (for validation)
CONFIG_KEYS = {
    "ELEVENLABS_API_KEY",
    "ELEVENLABS_AGENT_ID",
    "ELEVENLABS_VOICE_ID",
    "ELEVENLABS_STT_MODEL",
    "FALLBACK_API_KEY",
    "FALLBACK_BASE_URL",
    "FALLBACK_MODEL",
    "FALLBACK_MAX_TOKENS",
    "FALLBACK_TEMPERATURE",
    "SYSTEM_PROMPT",
    "PRIMARY_TIMEOUT_MS",
    "PRIMARY_CONTEXT_TURNS",
    "GENERIC_RESPONSE_PHRASES",
    "APOLOGY_TEXT",
    "MAX_TURNS",
    "CONTEXT_WINDOW_TURNS",
    "VAD_SILENCE_THRESHOLD",
    "VAD_SILENCE_DURATION_MS",
    "VAD_CONVERSATIONAL_SILENCE_MS",
    "VAD_MIN_SPEECH_MS",
    "AUDIO_SAMPLE_RATE",
    "AUDIO_BLOCK_SIZE",
    "CAPTURE_RETRY_ATTEMPTS",
    "CAPTURE_RETRY_DELAY_MS",
    "SERVER_HOST",
    "SERVER_PORT",
    "COACHING_MODEL",
    "COACHING_MAX_TOKENS",
    "DATA_DIR",
    "TRANSCRIPTS_ENABLED",
}
