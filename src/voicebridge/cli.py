"""Command-line interface for voicebridge."""

import argparse
import asyncio
import base64
import logging
import sys
import uuid
from pathlib import Path

from rich.console import Console
from rich.table import Table
from rich.text import Text

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)

console = Console()


def build_store(config):
    """Conversation store, persisting to the transcript log when enabled."""
    from voicebridge.core.continuity import ConversationStore
    from voicebridge.store import TranscriptLog

    transcript_log = None
    if config.TRANSCRIPTS_ENABLED:
        transcript_log = TranscriptLog(Path(config.DATA_DIR) / "transcripts.db")
    return ConversationStore(max_turns=config.MAX_TURNS, transcript_log=transcript_log)


def open_session(store, session_id: str | None, scenario: str | None) -> str:
    """Continue a logged session when an id is given, else start a new one."""
    if session_id and store.restore(session_id) is None:
        logger.info(f"No logged history for {session_id}, starting fresh")
    return store.get_or_create(session_id, scenario).session_id


def build_resolver(config, store, with_audio: bool = True):
    from voicebridge.core.resolver import ResponseResolver
    from voicebridge.providers import (
        ChatCompletionsClient,
        ElevenLabsAgentClient,
        ElevenLabsSpeechSynthesizer,
    )

    primary = ElevenLabsAgentClient()
    if not primary.configured:
        logger.warning("ElevenLabs agent not configured, using fallback provider only")
        primary = None

    secondary = ChatCompletionsClient()
    if not secondary.configured:
        logger.warning("Fallback chat provider not configured")
        secondary = None

    synthesizer = None
    if with_audio and config.ELEVENLABS_API_KEY:
        synthesizer = ElevenLabsSpeechSynthesizer()

    return ResponseResolver.from_config(
        store,
        config,
        primary=primary,
        secondary=secondary,
        synthesizer=synthesizer,
    )


def render_event(event) -> None:
    """Print a session event to the console."""
    from voicebridge.contracts import (
        ModeChanged,
        ProcessingStarted,
        SessionError,
        SpeechDetected,
        Transcript,
        TurnCompleted,
    )

    if isinstance(event, SpeechDetected):
        console.print(Text("… speech detected", style="dim"))
    elif isinstance(event, ProcessingStarted):
        console.print(Text("… thinking", style="dim"))
    elif isinstance(event, Transcript):
        console.print(Text.assemble(("You: ", "bold cyan"), event.text))
    elif isinstance(event, TurnCompleted):
        label = "Agent" if event.provider == "primary" else f"Agent ({event.provider})"
        console.print(Text.assemble((f"{label}: ", "bold green"), event.assistant_text))
        console.print()
    elif isinstance(event, ModeChanged):
        console.print(Text(f"[{event.mode}]", style="dim"))
    elif isinstance(event, SessionError):
        console.print(Text(f"Error ({event.error_type}): {event.reason}", style="bold red"))


def cmd_serve(args: argparse.Namespace) -> int:
    """Run the voice socket server."""
    from voicebridge.audio.vad import VADConfig
    from voicebridge.config import get_config
    from voicebridge.core.turn_session import RetryPolicy
    from voicebridge.providers import ElevenLabsTranscriber
    from voicebridge.server import VoiceServer

    config = get_config()
    store = build_store(config)
    resolver = build_resolver(config, store)

    server = VoiceServer(
        store,
        resolver,
        transcriber=ElevenLabsTranscriber(),
        host=args.host or config.SERVER_HOST,
        port=args.port or config.SERVER_PORT,
        vad_config=VADConfig.conversational(config),
        sample_rate=config.AUDIO_SAMPLE_RATE,
        retry_policy=RetryPolicy(
            attempts=config.CAPTURE_RETRY_ATTEMPTS,
            base_delay_ms=config.CAPTURE_RETRY_DELAY_MS,
        ),
    )

    try:
        asyncio.run(server.serve_forever())
    except KeyboardInterrupt:
        print("\nServer stopped")
    return 0


def cmd_talk(args: argparse.Namespace) -> int:
    """Talk to the agent through the local microphone."""
    if args.server:
        return _talk_remote(args)

    from voicebridge.audio import (
        AmplitudeVAD,
        AudioCaptureConfig,
        MicCapture,
        SoundDevicePlayer,
        VADConfig,
    )
    from voicebridge.config import get_config
    from voicebridge.contracts import TurnState
    from voicebridge.core import RetryPolicy, TurnSession
    from voicebridge.errors import CaptureError
    from voicebridge.providers import ElevenLabsTranscriber

    config = get_config()
    store = build_store(config)
    resolver = build_resolver(config, store)
    session_id = open_session(store, args.session, args.scenario)

    mic = MicCapture(
        AudioCaptureConfig(
            sample_rate=config.AUDIO_SAMPLE_RATE,
            block_size=config.AUDIO_BLOCK_SIZE,
            device_index=args.device,
        )
    )
    session = TurnSession(
        session_id=session_id,
        source=mic,
        vad=AmplitudeVAD(VADConfig.conversational(config)),
        resolver=resolver,
        transcriber=ElevenLabsTranscriber(),
        player=SoundDevicePlayer(),
        continuous=not args.once,
        retry_policy=RetryPolicy(
            attempts=config.CAPTURE_RETRY_ATTEMPTS,
            base_delay_ms=config.CAPTURE_RETRY_DELAY_MS,
        ),
        sample_rate=config.AUDIO_SAMPLE_RATE,
    )

    async def on_event(event) -> None:
        render_event(event)

    session.events.subscribe(on_event)

    async def run() -> None:
        console.print(f"Session {session_id}. Speak when ready, Ctrl+C to quit.\n")
        await session.start()
        try:
            while True:
                await asyncio.sleep(0.5)
                if args.once and session.state is TurnState.IDLE:
                    break
        finally:
            await session.stop()
            store.close()

    try:
        asyncio.run(run())
    except CaptureError as e:
        print(f"Error: {e}")
        return 1
    except KeyboardInterrupt:
        print("\nBye")
    return 0


def _talk_remote(args: argparse.Namespace) -> int:
    """Stream microphone audio to a running voice server."""
    from voicebridge.audio import (
        AudioCaptureConfig,
        AudioChunkTransport,
        MicCapture,
        NotificationKind,
        SoundDevicePlayer,
        WebSocketChannel,
    )
    from voicebridge.config import get_config
    from voicebridge.contracts import AudioRef
    from voicebridge.errors import VoiceBridgeError

    config = get_config()
    mic = MicCapture(
        AudioCaptureConfig(
            sample_rate=config.AUDIO_SAMPLE_RATE,
            block_size=config.AUDIO_BLOCK_SIZE,
            device_index=args.device,
        )
    )
    player = SoundDevicePlayer()
    channel = WebSocketChannel(args.server)

    async def on_notification(notification) -> None:
        payload = notification.payload
        if notification.kind is NotificationKind.SESSION_STARTED:
            console.print(f"Session {payload.get('sessionId')} started. Speak when ready.\n")
        elif notification.kind is NotificationKind.TRANSCRIPT:
            console.print(Text.assemble(("You: ", "bold cyan"), payload.get("text", "")))
        elif notification.kind is NotificationKind.AGENT_RESPONSE:
            console.print(Text.assemble(("Agent: ", "bold green"), payload.get("response", "")))
            console.print()
            if payload.get("audio"):
                audio = AudioRef(
                    data=base64.b64decode(payload["audio"]),
                    format=payload.get("audioFormat") or "pcm_16000",
                )
                await player.play(audio)
        elif notification.kind is NotificationKind.ERROR:
            console.print(Text(f"Error: {payload.get('message')}", style="bold red"))
        else:
            console.print(Text(f"… {notification.kind.value}", style="dim"))

    transport = AudioChunkTransport(channel, on_notification=on_notification)

    async def run() -> None:
        await channel.connect()
        await transport.start()
        await transport.send_control(
            "start-voice-session",
            {"sessionId": args.session, "scenario": args.scenario},
        )
        await mic.start()
        transport.attach(mic)
        try:
            await asyncio.Future()
        finally:
            await mic.stop()
            if channel.connected:
                await transport.send_control("end-voice-session")
            await transport.stop(close_channel=True)

    try:
        asyncio.run(run())
    except VoiceBridgeError as e:
        print(f"Error: {e}")
        return 1
    except KeyboardInterrupt:
        print("\nBye")
    return 0


def cmd_ask(args: argparse.Namespace) -> int:
    """Resolve one text message through the provider chain."""
    from voicebridge.audio import SoundDevicePlayer
    from voicebridge.config import get_config

    config = get_config()
    store = build_store(config)
    resolver = build_resolver(config, store, with_audio=args.speak)
    session_id = open_session(store, args.session, args.scenario)

    async def run() -> None:
        resolution = await resolver.resolve(session_id, args.message)
        console.print(Text.assemble(("Agent: ", "bold green"), resolution.text))
        console.print(
            Text(
                f"provider={resolution.provider} session={session_id} "
                f"conversation={resolution.provider_conversation_id}",
                style="dim",
            )
        )
        if args.speak and resolution.audio_ref is not None:
            await SoundDevicePlayer().play(resolution.audio_ref)

    asyncio.run(run())
    return 0


def cmd_scenarios(args: argparse.Namespace) -> int:
    """List role-play scenarios."""
    from voicebridge.core.scenarios import SCENARIOS

    table = Table(title="Scenarios")
    table.add_column("Key", style="cyan")
    table.add_column("Title")
    table.add_column("Prompt", overflow="fold")
    for scenario in SCENARIOS.values():
        table.add_row(scenario.key, scenario.title, scenario.prompt)
    console.print(table)
    return 0


def cmd_signed_url(args: argparse.Namespace) -> int:
    """Print a signed agent conversation URL."""
    from voicebridge.errors import ProviderError
    from voicebridge.providers import ElevenLabsAgentClient

    async def run() -> str:
        client = ElevenLabsAgentClient()
        try:
            return await client.get_signed_url()
        finally:
            await client.close()

    try:
        print(asyncio.run(run()))
    except ProviderError as e:
        print(f"Error: {e}")
        return 1
    return 0


def cmd_history(args: argparse.Namespace) -> int:
    """Show stored transcripts."""
    from voicebridge.config import get_config
    from voicebridge.store import TranscriptLog

    config = get_config()
    db_path = Path(config.DATA_DIR) / "transcripts.db"
    if not db_path.exists():
        print("No transcripts recorded yet")
        return 0

    log = TranscriptLog(db_path)

    if args.session is None:
        table = Table(title="Sessions")
        table.add_column("Session", style="cyan")
        table.add_column("Scenario")
        table.add_column("Entries", justify="right")
        table.add_column("Updated")
        for row in log.list_sessions(limit=args.limit):
            table.add_row(row["id"], row["scenario"] or "-", str(row["entries"]), row["updated_at"])
        console.print(table)
        return 0

    if log.get_session(args.session) is None:
        print(f"Unknown session: {args.session}")
        return 1

    for entry in log.get_turns(args.session, limit=args.limit):
        style = "bold cyan" if entry.speaker == "user" else "bold green"
        label = "You" if entry.speaker == "user" else "Agent"
        console.print(Text.assemble((f"{label}: ", style), entry.message))
    return 0


def render_report(report) -> None:
    """Print a coaching report as a score table plus feedback."""
    evaluation = report.evaluation
    table = Table(title=f"Coaching: {report.scenario}")
    table.add_column("Area", style="cyan")
    table.add_column("Score", justify="right")
    for name, score in evaluation.scores.items():
        area = name.removesuffix("_score").replace("_", " ").capitalize()
        table.add_row(area, f"{score}/10")
    console.print(table)
    console.print(Text.assemble(("Feedback: ", "bold"), evaluation.feedback))
    console.print(Text.assemble(("Strengths: ", "bold green"), evaluation.strengths))
    console.print(Text.assemble(("Improvements: ", "bold yellow"), evaluation.improvements))
    console.print(
        Text(
            f"session={report.session_id} entries={report.entries} "
            f"evaluated={evaluation.created_at.isoformat(timespec='seconds')}",
            style="dim",
        )
    )


def cmd_evaluate(args: argparse.Namespace) -> int:
    """Score a logged role-play session."""
    from voicebridge.config import get_config
    from voicebridge.core.coaching import CoachingEvaluator
    from voicebridge.errors import EvaluationError, ProviderError
    from voicebridge.providers import ChatCompletionsClient
    from voicebridge.store import TranscriptLog

    config = get_config()
    db_path = Path(config.DATA_DIR) / "transcripts.db"
    if not db_path.exists():
        print("No transcripts recorded yet")
        return 1

    client = ChatCompletionsClient()
    evaluator = CoachingEvaluator.from_config(TranscriptLog(db_path), client, config)

    if args.show:
        report = evaluator.get_report(args.session)
        if report is None:
            print(f"No evaluation found for {args.session}")
            return 1
        render_report(report)
        return 0

    async def run():
        try:
            return await evaluator.evaluate(args.session)
        finally:
            await client.close()

    try:
        report = asyncio.run(run())
    except (EvaluationError, ProviderError) as e:
        print(f"Error: {e}")
        return 1

    render_report(report)
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    """Show configuration status."""
    from voicebridge.config import get_config

    config = get_config()

    print("voicebridge status")
    print("=" * 50)
    print(f"\nConfig file: {config.source or '(defaults)'}")
    if config.env_overrides:
        print(f"Environment overrides: {', '.join(config.env_overrides)}")

    errors = config.validate()
    if errors:
        print("\nConfiguration errors:")
        for error in errors:
            print(f"  - {error}")
    else:
        print("\nConfiguration: OK")

    print("\nProviders:")
    print(f"  Primary agent: {config.ELEVENLABS_AGENT_ID or '(not set)'}")
    print(f"  Fallback: {config.FALLBACK_MODEL} @ {config.FALLBACK_BASE_URL}")
    print(f"  Primary timeout: {config.PRIMARY_TIMEOUT_MS}ms")

    print("\nVoice activity detection:")
    print(f"  Threshold: {config.VAD_SILENCE_THRESHOLD}")
    print(f"  Silence: {config.VAD_SILENCE_DURATION_MS}ms "
          f"(conversational {config.VAD_CONVERSATIONAL_SILENCE_MS}ms)")
    print(f"  Min speech: {config.VAD_MIN_SPEECH_MS}ms")

    if args.models:
        from voicebridge.errors import ProviderError
        from voicebridge.providers import ChatCompletionsClient

        async def list_models() -> list[str]:
            client = ChatCompletionsClient()
            try:
                return await client.list_models()
            finally:
                await client.close()

        try:
            models = asyncio.run(list_models())
        except ProviderError as e:
            print(f"\nCould not list models: {e}")
            return 1
        print("\nFallback models:")
        for model in models:
            print(f"  {model}")

    return 1 if errors else 0


def main() -> int:
    """Main entry point."""
    from voicebridge import __version__

    parser = argparse.ArgumentParser(
        prog="voicebridge",
        description="voicebridge - voice conversations with primary/fallback agents",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command")

    # voicebridge serve
    serve_parser = subparsers.add_parser("serve", help="Run the voice socket server")
    serve_parser.add_argument("--host", help="Bind address (default: config SERVER_HOST)")
    serve_parser.add_argument("--port", type=int, help="Port (default: config SERVER_PORT)")
    serve_parser.set_defaults(func=cmd_serve)

    # voicebridge talk
    talk_parser = subparsers.add_parser("talk", help="Talk through the microphone")
    talk_parser.add_argument(
        "--server",
        help="Stream to a voice server (ws://host:port) instead of processing locally",
    )
    talk_parser.add_argument("--session", help="Session id to continue")
    talk_parser.add_argument("--scenario", help="Role-play scenario key")
    talk_parser.add_argument("--device", type=int, help="Input device index")
    talk_parser.add_argument("--once", action="store_true", help="Stop after one turn")
    talk_parser.set_defaults(func=cmd_talk)

    # voicebridge ask "<message>"
    ask_parser = subparsers.add_parser("ask", help="Send one text message")
    ask_parser.add_argument("message", help="Message text")
    ask_parser.add_argument("--session", help="Session id")
    ask_parser.add_argument("--scenario", help="Role-play scenario key")
    ask_parser.add_argument("--speak", action="store_true", help="Synthesize and play the reply")
    ask_parser.set_defaults(func=cmd_ask)

    scenarios_parser = subparsers.add_parser("scenarios", help="List role-play scenarios")
    scenarios_parser.set_defaults(func=cmd_scenarios)

    signed_url_parser = subparsers.add_parser("signed-url", help="Get a signed agent URL")
    signed_url_parser.set_defaults(func=cmd_signed_url)

    history_parser = subparsers.add_parser("history", help="Show stored transcripts")
    history_parser.add_argument("session", nargs="?", help="Session id (omit to list sessions)")
    history_parser.add_argument("--limit", type=int, default=20, help="Maximum rows")
    history_parser.set_defaults(func=cmd_history)

    evaluate_parser = subparsers.add_parser("evaluate", help="Coaching scores for a session")
    evaluate_parser.add_argument("session", help="Session id")
    evaluate_parser.add_argument(
        "--show", action="store_true", help="Show the last stored evaluation instead"
    )
    evaluate_parser.set_defaults(func=cmd_evaluate)

    status_parser = subparsers.add_parser("status", help="Show configuration status")
    status_parser.add_argument("--models", action="store_true", help="List fallback models")
    status_parser.set_defaults(func=cmd_status)

    args = parser.parse_args()

    # Show help if no command
    if args.command is None:
        parser.print_help()
        return 0

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
