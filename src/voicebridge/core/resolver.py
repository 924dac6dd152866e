"""
Response Resolver

Decides which reply is authoritative for a user utterance:

1. The primary provider (stateful conversational agent), under a deadline.
2. The secondary provider (stateless chat completions) when the primary
   times out, fails, returns nothing, or answers a continuation with a
   generic greeting instead of engaging.
3. A fixed apology when both fail.

Whatever wins is recorded in the ConversationStore, so the next turn sees it
in its context window regardless of which provider produced it.
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Iterable, Protocol

from voicebridge.contracts import AudioRef, ConversationSession, Message, ProviderName, TurnRecord
from voicebridge.core.continuity import ConversationStore
from voicebridge.core.scenarios import get_scenario, scenario_message

if TYPE_CHECKING:
    from voicebridge.config import Config

logger = logging.getLogger(__name__)

DEFAULT_APOLOGY = "I'm having trouble connecting right now. Please try again."
DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful voice assistant. Keep responses concise and conversational."
)


@dataclass
class PrimaryReply:
    """A completed primary-provider turn."""

    text: str
    conversation_id: str | None = None
    audio_ref: AudioRef | None = None


class PrimaryProvider(Protocol):
    async def converse(self, text: str, conversation_id: str | None = None) -> PrimaryReply: ...


class SecondaryProvider(Protocol):
    async def complete(self, messages: list[Message]) -> str: ...


class SpeechSynthesizer(Protocol):
    async def synthesize(self, text: str) -> AudioRef: ...


_PUNCTUATION = str.maketrans({
    "‘": "'",
    "’": "'",
    "“": '"',
    "”": '"',
    "–": "-",
    "—": "-",
})
_WHITESPACE = re.compile(r"\s+")


def _normalize(text: str) -> str:
    return _WHITESPACE.sub(" ", text.translate(_PUNCTUATION)).strip().casefold()


class GenericResponseDetector:
    """Flags canned greetings the primary agent gives instead of answering.

    Matching is substring-based after folding case, quote and dash styles,
    and whitespace runs.
    """

    def __init__(self, phrases: Iterable[str]):
        self.phrases = [p for p in (_normalize(p) for p in phrases) if p]

    def is_generic(self, text: str) -> bool:
        normalized = _normalize(text)
        return any(phrase in normalized for phrase in self.phrases)


@dataclass
class Resolution:
    """Outcome of resolving one utterance."""

    text: str
    provider: ProviderName
    audio_ref: AudioRef | None
    provider_conversation_id: str | None
    turn: TurnRecord | None


class ResponseResolver:
    """Resolves utterances to replies with primary/secondary fallback."""

    def __init__(
        self,
        store: ConversationStore,
        primary: PrimaryProvider | None = None,
        secondary: SecondaryProvider | None = None,
        synthesizer: SpeechSynthesizer | None = None,
        timeout_ms: int = 10000,
        generic_phrases: Iterable[str] = (),
        apology_text: str = DEFAULT_APOLOGY,
        context_window_turns: int = 10,
        primary_context_turns: int = 2,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
    ):
        self.store = store
        self.primary = primary
        self.secondary = secondary
        self.synthesizer = synthesizer
        self.timeout_ms = timeout_ms
        self.detector = GenericResponseDetector(generic_phrases)
        self.apology_text = apology_text
        self.context_window_turns = context_window_turns
        self.primary_context_turns = primary_context_turns
        self.system_prompt = system_prompt

    @classmethod
    def from_config(
        cls,
        store: ConversationStore,
        config: "Config",
        primary: PrimaryProvider | None = None,
        secondary: SecondaryProvider | None = None,
        synthesizer: SpeechSynthesizer | None = None,
    ) -> "ResponseResolver":
        return cls(
            store,
            primary=primary,
            secondary=secondary,
            synthesizer=synthesizer,
            timeout_ms=config.PRIMARY_TIMEOUT_MS,
            generic_phrases=config.GENERIC_RESPONSE_PHRASES,
            apology_text=config.APOLOGY_TEXT,
            context_window_turns=config.CONTEXT_WINDOW_TURNS,
            primary_context_turns=config.PRIMARY_CONTEXT_TURNS,
            system_prompt=config.SYSTEM_PROMPT,
        )

    async def resolve(
        self,
        session_id: str,
        utterance_text: str,
        is_current: Callable[[], bool] | None = None,
    ) -> Resolution:
        """Produce and record the reply for one utterance.

        Never raises for provider failures; the apology is the last resort.

        Args:
            session_id: Session the utterance belongs to
            utterance_text: Transcribed or typed user text
            is_current: Checked once the reply is ready; when it returns
                False nothing is written to the store and ``turn`` is None
        """
        if not utterance_text.strip():
            raise ValueError("Cannot resolve an empty utterance")

        session = self.store.get_or_create(session_id)
        conversation_id = session.provider_conversation_id

        text: str | None = None
        audio_ref: AudioRef | None = None
        provider: ProviderName = "apology"
        new_conversation_id: str | None = None

        reply = await self._try_primary(session, utterance_text)
        if reply is not None:
            text = reply.text
            audio_ref = reply.audio_ref
            provider = "primary"
            new_conversation_id = reply.conversation_id

        if text is None:
            text = await self._try_secondary(session, utterance_text)
            if text is not None:
                provider = "secondary"

        if text is None:
            logger.error(f"All providers failed for session {session_id}, sending apology")
            text = self.apology_text

        if audio_ref is None or audio_ref.is_empty:
            audio_ref = await self._synthesize(text)

        if is_current is not None and not is_current():
            logger.debug(f"Session {session_id} moved on, reply not recorded")
            return Resolution(
                text=text,
                provider=provider,
                audio_ref=audio_ref,
                provider_conversation_id=conversation_id,
                turn=None,
            )

        if provider == "primary" and new_conversation_id:
            self.store.set_provider_conversation_id(session_id, new_conversation_id)

        turn = self.store.append_turn(
            session_id,
            user_text=utterance_text,
            assistant_text=text,
            audio_ref=audio_ref,
            provider=provider,
        )

        return Resolution(
            text=text,
            provider=provider,
            audio_ref=audio_ref,
            provider_conversation_id=self.store.get_provider_conversation_id(session_id),
            turn=turn,
        )

    def build_primary_message(self, session: ConversationSession, utterance_text: str) -> str:
        """Scenario framing plus, on continuations, a recent-context prefix."""
        message = scenario_message(session.scenario, utterance_text)

        if session.is_continuation and self.primary_context_turns > 0:
            recent = self.store.get_context_window(session.session_id, self.primary_context_turns)
            if recent:
                history = "\n".join(f"{m.role}: {m.content}" for m in recent)
                message = f"Context from our conversation:\n{history}\n\nCurrent message: {message}"

        return message

    def build_secondary_messages(
        self, session: ConversationSession, utterance_text: str
    ) -> list[Message]:
        """System prompt, then the context window, then the new utterance."""
        scenario = get_scenario(session.scenario)
        system = scenario.prompt if scenario else self.system_prompt

        messages = [Message(role="system", content=system)]
        messages.extend(
            self.store.get_context_window(session.session_id, self.context_window_turns)
        )
        messages.append(Message(role="user", content=utterance_text))
        return messages

    async def _try_primary(
        self, session: ConversationSession, utterance_text: str
    ) -> PrimaryReply | None:
        if self.primary is None:
            return None

        conversation_id = session.provider_conversation_id
        message = self.build_primary_message(session, utterance_text)

        try:
            reply = await asyncio.wait_for(
                self.primary.converse(message, conversation_id),
                timeout=self.timeout_ms / 1000,
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"Primary provider timed out after {self.timeout_ms}ms, falling back"
            )
            return None
        except Exception as e:
            logger.warning(f"Primary provider failed ({type(e).__name__}: {e}), falling back")
            return None

        if not reply.text or not reply.text.strip():
            logger.warning("Primary provider returned an empty reply, falling back")
            return None

        if conversation_id is not None and self.detector.is_generic(reply.text):
            logger.warning(
                "Primary provider gave a generic reply to a continuation, falling back"
            )
            return None

        return reply

    async def _try_secondary(
        self, session: ConversationSession, utterance_text: str
    ) -> str | None:
        if self.secondary is None:
            return None

        messages = self.build_secondary_messages(session, utterance_text)
        try:
            text = await self.secondary.complete(messages)
        except Exception as e:
            logger.warning(f"Secondary provider failed ({type(e).__name__}: {e})")
            return None

        if not text or not text.strip():
            logger.warning("Secondary provider returned an empty reply")
            return None
        return text.strip()

    async def _synthesize(self, text: str) -> AudioRef | None:
        if self.synthesizer is None:
            return None
        try:
            return await self.synthesizer.synthesize(text)
        except Exception as e:
            logger.warning(f"Speech synthesis failed, reply has no audio: {e}")
            return None
