"""Tests for the turn session registry and scenarios."""

import pytest

from voicebridge.audio.capture import StreamedFrameSource
from voicebridge.audio.vad import AmplitudeVAD
from voicebridge.contracts import TurnState
from voicebridge.core.continuity import ConversationStore
from voicebridge.core.registry import SessionRegistry
from voicebridge.core.resolver import ResponseResolver
from voicebridge.core.scenarios import SCENARIOS, get_scenario, scenario_message
from voicebridge.core.turn_session import TurnSession


@pytest.fixture
def registry():
    resolver = ResponseResolver(ConversationStore())

    def factory(connection_id, session_id=None):
        return TurnSession(session_id or connection_id, StreamedFrameSource(), AmplitudeVAD(), resolver)

    return SessionRegistry(factory)


class TestSessionRegistry:
    def test_open_creates_once(self, registry):
        first = registry.open("c1", session_id="s1")
        second = registry.open("c1", session_id="other")

        assert first is second
        assert first.session_id == "s1"
        assert "c1" in registry
        assert len(registry) == 1

    @pytest.mark.asyncio
    async def test_start_and_stop(self, registry):
        session = await registry.start_turn_session("c1")
        assert session.state is TurnState.CAPTURING

        assert await registry.stop_turn_session("c1")
        assert session.state is TurnState.IDLE
        assert registry.get("c1") is session

    @pytest.mark.asyncio
    async def test_close_removes(self, registry):
        await registry.start_turn_session("c1")

        assert await registry.close("c1")
        assert not await registry.close("c1")
        assert not await registry.stop_turn_session("c1")
        assert registry.get("c1") is None

    @pytest.mark.asyncio
    async def test_close_all(self, registry):
        await registry.start_turn_session("c1")
        registry.open("c2")

        await registry.close_all()

        assert len(registry) == 0


class TestScenarios:
    def test_known_scenarios(self):
        assert set(SCENARIOS) == {
            "tough_customer",
            "job_interview",
            "sales_objection",
            "performance_review",
        }

    def test_unknown_scenario(self):
        assert get_scenario("karaoke") is None
        assert get_scenario(None) is None
        assert scenario_message("karaoke", "hi") == "hi"

    def test_framed_message(self):
        prompt = SCENARIOS["sales_objection"].prompt
        assert scenario_message("sales_objection", "hi") == f"{prompt}\n\nUser message: hi"
