"""ElevenLabs Scribe speech-to-text client.

Transcribes one sealed utterance at a time through the batch endpoint.
See: https://elevenlabs.io/docs/api-reference/speech-to-text/convert
"""

import logging

import httpx

from voicebridge.audio.pcm import pcm16_to_wav
from voicebridge.config import get_config
from voicebridge.errors import TranscriptionError

logger = logging.getLogger(__name__)


class ElevenLabsTranscriber:
    """Client for the ElevenLabs speech-to-text API."""

    BASE_URL = "https://api.elevenlabs.io/v1"

    def __init__(
        self,
        api_key: str | None = None,
        model_id: str | None = None,
        language: str | None = None,
        timeout: float = 30.0,
    ):
        """Initialize the transcriber.

        Args:
            api_key: ElevenLabs API key (defaults to config)
            model_id: Scribe model id (defaults to config)
            language: ISO language code, None for auto-detect
            timeout: HTTP timeout in seconds
        """
        config = get_config()
        self._api_key = api_key or config.ELEVENLABS_API_KEY
        self._model_id = model_id or config.ELEVENLABS_STT_MODEL
        self._language = language
        self._timeout = timeout
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.BASE_URL,
                headers={"xi-api-key": self._api_key},
                timeout=self._timeout,
            )
        return self._client

    async def transcribe(self, audio: bytes, sample_rate: int = 16000) -> str:
        """Transcribe raw PCM16 mono audio. Returns the text, possibly empty."""
        if not self._api_key:
            raise TranscriptionError("ElevenLabs API key not configured")
        if not audio:
            return ""

        data = {"model_id": self._model_id}
        if self._language:
            data["language_code"] = self._language

        client = await self._get_client()
        try:
            response = await client.post(
                "/speech-to-text",
                data=data,
                files={"file": ("utterance.wav", pcm16_to_wav(audio, sample_rate), "audio/wav")},
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as e:
            raise TranscriptionError(f"Transcription failed: {e}") from e
        except ValueError as e:
            raise TranscriptionError(f"Transcription returned invalid JSON: {e}") from e

        text = (payload.get("text") or "").strip()
        logger.debug(f"Transcribed {len(audio) / 2 / sample_rate:.1f}s of audio: {text[:60]!r}")
        return text

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None
