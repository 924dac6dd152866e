"""Turn-taking core: sessions, continuity and response resolution."""

from voicebridge.core.coaching import CoachingEvaluator, CoachingReport
from voicebridge.core.continuity import ConversationStore
from voicebridge.core.events import EventChannel, EventHandler
from voicebridge.core.registry import SessionRegistry
from voicebridge.core.resolver import (
    GenericResponseDetector,
    PrimaryProvider,
    PrimaryReply,
    Resolution,
    ResponseResolver,
    SecondaryProvider,
    SpeechSynthesizer,
)
from voicebridge.core.scenarios import SCENARIOS, Scenario, get_scenario, scenario_message
from voicebridge.core.turn_session import RetryPolicy, Transcriber, TurnSession

__all__ = [
    "CoachingEvaluator",
    "CoachingReport",
    "ConversationStore",
    "EventChannel",
    "EventHandler",
    "GenericResponseDetector",
    "PrimaryProvider",
    "PrimaryReply",
    "Resolution",
    "ResponseResolver",
    "RetryPolicy",
    "SCENARIOS",
    "Scenario",
    "SecondaryProvider",
    "SessionRegistry",
    "SpeechSynthesizer",
    "Transcriber",
    "TurnSession",
    "get_scenario",
    "scenario_message",
]
