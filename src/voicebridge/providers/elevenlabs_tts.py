"""ElevenLabs text-to-speech client."""

import logging

import httpx

from voicebridge.config import get_config
from voicebridge.contracts import AudioRef
from voicebridge.errors import ProviderError, ProviderTimeout

logger = logging.getLogger(__name__)

DEFAULT_VOICE_SETTINGS = {
    "stability": 0.5,
    "similarity_boost": 0.8,
}


class ElevenLabsSpeechSynthesizer:
    """Synthesizes reply text to raw PCM for local playback or streaming."""

    BASE_URL = "https://api.elevenlabs.io/v1"

    def __init__(
        self,
        api_key: str | None = None,
        voice_id: str | None = None,
        output_format: str = "pcm_16000",
        timeout: float = 15.0,
    ):
        config = get_config()
        self._api_key = api_key or config.ELEVENLABS_API_KEY
        self.voice_id = voice_id or config.ELEVENLABS_VOICE_ID
        self.output_format = output_format
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

    async def synthesize(self, text: str) -> AudioRef:
        if not self._api_key:
            raise ProviderError("ElevenLabs API key not configured")

        client = await self._get_client()
        try:
            response = await client.post(
                f"/text-to-speech/{self.voice_id}",
                params={"output_format": self.output_format},
                json={"text": text, "voice_settings": DEFAULT_VOICE_SETTINGS},
            )
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise ProviderTimeout(f"Speech synthesis timed out: {e}") from e
        except httpx.HTTPError as e:
            raise ProviderError(f"Speech synthesis failed: {e}") from e

        if not response.content:
            raise ProviderError("Speech synthesis returned no audio")

        logger.debug(f"Synthesized {len(response.content)} bytes for {len(text)} chars")
        return AudioRef(data=response.content, format=self.output_format)

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None
