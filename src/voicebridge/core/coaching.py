"""
Coaching Evaluation

Scores the user's side of a logged role-play session with the chat
completions provider. The model is asked for JSON; anything it returns
that cannot be parsed yields the default evaluation rather than an error.
Each result is saved to the transcript log and can be read back later.
"""

import logging
import sqlite3
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from voicebridge.contracts import CoachingEvaluation, Message
from voicebridge.contracts.coaching import extract_json
from voicebridge.core.scenarios import get_scenario
from voicebridge.errors import EvaluationError
from voicebridge.store import TranscriptLog
from voicebridge.store.transcript_log import TranscriptEntry

if TYPE_CHECKING:
    from voicebridge.config import Config
    from voicebridge.providers.chat import ChatCompletion

logger = logging.getLogger(__name__)

GENERAL_CONTEXT = "General conversation"
COACH_SYSTEM_PROMPT = "You are a professional conversation coach. Return only valid JSON."

EVALUATION_PROMPT = """You are an expert conversation coach. Analyze this role-play conversation for the scenario: "{scenario}"

Conversation:
{conversation}

Evaluate the USER's performance (not the assistant's) in the following areas:
1. Communication Skills (1-10): Clarity, articulation, tone
2. Problem Solving (1-10): Addressing issues, finding solutions
3. Professionalism (1-10): Courtesy, appropriate responses
4. Engagement (1-10): Active listening, asking questions, maintaining flow

Provide your response in this exact JSON format:
{{
  "overall_score": [number 1-10],
  "communication_score": [number 1-10],
  "problem_solving_score": [number 1-10],
  "professionalism_score": [number 1-10],
  "engagement_score": [number 1-10],
  "feedback": "[Overall feedback paragraph]",
  "strengths": "[What they did well]",
  "improvements": "[Areas for improvement with specific suggestions]"
}}"""


class CompletionProvider(Protocol):
    async def create(
        self,
        messages: list[Message],
        model: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> "ChatCompletion": ...


@dataclass
class CoachingReport:
    """An evaluation together with what it was based on."""

    session_id: str
    scenario: str
    entries: int
    evaluation: CoachingEvaluation


def scenario_title(key: str | None) -> str:
    scenario = get_scenario(key)
    return scenario.title if scenario else GENERAL_CONTEXT


def format_conversation(entries: list[TranscriptEntry]) -> str:
    return "\n".join(f"{entry.speaker.capitalize()}: {entry.message}" for entry in entries)


class CoachingEvaluator:
    """Evaluates logged sessions and stores the results."""

    def __init__(
        self,
        transcript_log: TranscriptLog,
        provider: CompletionProvider,
        model: str | None = None,
        max_tokens: int = 800,
        min_entries: int = 2,
    ):
        self.transcript_log = transcript_log
        self.provider = provider
        self.model = model
        self.max_tokens = max_tokens
        self.min_entries = min_entries

    @classmethod
    def from_config(
        cls, transcript_log: TranscriptLog, provider: CompletionProvider, config: "Config"
    ) -> "CoachingEvaluator":
        return cls(
            transcript_log,
            provider,
            model=config.COACHING_MODEL,
            max_tokens=config.COACHING_MAX_TOKENS,
        )

    def build_messages(self, scenario: str, entries: list[TranscriptEntry]) -> list[Message]:
        prompt = EVALUATION_PROMPT.format(
            scenario=scenario, conversation=format_conversation(entries)
        )
        return [
            Message(role="system", content=COACH_SYSTEM_PROMPT),
            Message(role="user", content=prompt),
        ]

    async def evaluate(self, session_id: str) -> CoachingReport:
        """Score a session and save the result.

        Raises:
            EvaluationError: The session is unknown or has too few entries
            ProviderError: The chat provider failed
        """
        session = self.transcript_log.get_session(session_id)
        if session is None:
            raise EvaluationError(f"Session not found: {session_id}")

        entries = self.transcript_log.get_turns(session_id)
        if len(entries) < self.min_entries:
            raise EvaluationError("Not enough conversation data for evaluation")

        scenario = scenario_title(session["scenario"])
        completion = await self.provider.create(
            self.build_messages(scenario, entries),
            model=self.model,
            max_tokens=self.max_tokens,
        )

        data = extract_json(completion.content)
        if data is None:
            logger.warning(f"Coaching reply for {session_id} was not JSON, using defaults")
            evaluation = CoachingEvaluation()
        else:
            evaluation = CoachingEvaluation.from_data(data)

        try:
            self.transcript_log.save_evaluation(session_id, evaluation)
        except sqlite3.Error as e:
            logger.warning(f"Failed to save evaluation for {session_id}: {e}")

        logger.info(f"Evaluated session {session_id}: overall {evaluation.overall_score}/10")
        return CoachingReport(
            session_id=session_id,
            scenario=scenario,
            entries=len(entries),
            evaluation=evaluation,
        )

    def get_report(self, session_id: str) -> CoachingReport | None:
        """The most recent stored evaluation, if any."""
        evaluation = self.transcript_log.get_evaluation(session_id)
        if evaluation is None:
            return None
        session = self.transcript_log.get_session(session_id)
        return CoachingReport(
            session_id=session_id,
            scenario=scenario_title(session["scenario"] if session else None),
            entries=len(self.transcript_log.get_turns(session_id)),
            evaluation=evaluation,
        )
