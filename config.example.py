"""
voicebridge Configuration

Copy this file to config.py and fill in your values.
config.py is gitignored to keep secrets safe.

Environment variables override this file: VOICEBRIDGE_<KEY> for any scalar
key, plus ELEVEN_LABS_API_KEY, ELEVEN_LABS_AGENT_ID, ELEVEN_LABS_VOICE_ID,
IONOS_API_TOKEN and SILENCE_DURATION (in seconds).
"""

# =============================================================================
# API Keys
# =============================================================================

ELEVENLABS_API_KEY = ""  # Get from https://elevenlabs.io/app/settings/api-keys
ELEVENLABS_AGENT_ID = ""  # Conversational AI agent id
FALLBACK_API_KEY = ""  # Token for the OpenAI-compatible fallback endpoint

# =============================================================================
# ElevenLabs
# =============================================================================

ELEVENLABS_VOICE_ID = "pNInz6obpgDQGcFmaJgB"  # TTS voice for fallback replies
ELEVENLABS_STT_MODEL = "scribe_v1"            # Batch speech-to-text model

# =============================================================================
# Fallback Provider (any /chat/completions endpoint)
# =============================================================================

FALLBACK_BASE_URL = "https://openai.inference.de-txl.ionos.com/v1"
FALLBACK_MODEL = "meta-llama/Meta-Llama-3.1-8B-Instruct"
FALLBACK_MAX_TOKENS = 150
FALLBACK_TEMPERATURE = 0.7
SYSTEM_PROMPT = "You are a helpful voice assistant. Keep responses concise and conversational."

# Coaching evaluation of role-play sessions (voicebridge evaluate)
COACHING_MODEL = "meta-llama/Meta-Llama-3.1-405B-Instruct-FP8"
COACHING_MAX_TOKENS = 800

# =============================================================================
# Response Resolution
# =============================================================================

PRIMARY_TIMEOUT_MS = 10000            # Deadline for the agent before falling back
PRIMARY_CONTEXT_TURNS = 2             # Exchanges prefixed to agent messages on continuation
GENERIC_RESPONSE_PHRASES = [          # Agent greetings that mean it lost the thread
    "I'm ready — what's on your mind today",
    "Want to capture a note, draft a message",
]
APOLOGY_TEXT = "I'm having trouble connecting right now. Please try again."

# =============================================================================
# Conversation History
# =============================================================================

MAX_TURNS = 10                        # Turns kept per session (oldest evicted first)
CONTEXT_WINDOW_TURNS = 10             # Turns sent to the fallback provider

# =============================================================================
# Voice Activity Detection
# =============================================================================

VAD_SILENCE_THRESHOLD = 30            # Mean byte-spectrum level (0-255)
VAD_SILENCE_DURATION_MS = 2000        # Silence that ends speech (passive listening)
VAD_CONVERSATIONAL_SILENCE_MS = 500   # Silence that ends speech (turn-taking)
VAD_MIN_SPEECH_MS = 500               # Shorter bursts are treated as noise

# =============================================================================
# Audio Capture
# =============================================================================

AUDIO_SAMPLE_RATE = 16000             # Sample rate for audio capture (Hz)
AUDIO_BLOCK_SIZE = 1024               # Frames per capture block
CAPTURE_RETRY_ATTEMPTS = 3            # Attempts to open the microphone
CAPTURE_RETRY_DELAY_MS = 500          # Initial retry delay (exponential backoff)

# =============================================================================
# Voice Server
# =============================================================================

SERVER_HOST = "localhost"
SERVER_PORT = 5000

# =============================================================================
# Paths
# =============================================================================

DATA_DIR = "data"                     # Runtime data directory
TRANSCRIPTS_ENABLED = True            # Persist turns to DATA_DIR/transcripts.db
