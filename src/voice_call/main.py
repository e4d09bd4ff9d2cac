"""CLI entrypoint for the voice call client."""

from __future__ import annotations

import asyncio
import sys
import threading
from typing import Callable

import typer
from rich import print
from websockets.exceptions import InvalidURI, WebSocketException
from websockets.uri import parse_uri

from voice_call.config import settings
from voice_call.models import SCRIPT_TYPES, TranscriptEntry
from voice_call.notices import ConsoleNoticeSink, NoticeSink
from voice_call.orchestrator import TurnOrchestrator, TurnTimings
from voice_call.scheduler import AsyncioScheduler
from voice_call.telemetry import configure_logging
from voice_call.transport import Connector, TransportAdapter
from voice_call.voice.interfaces import PlaybackSink, SpeechRecognizer

app = typer.Typer(help="Voice call client for the conversational agent backend")


@app.command("show-config")
def show_config() -> None:
    """Show effective runtime configuration."""
    print(settings.model_dump())


@app.command("scripts")
def scripts() -> None:
    """List the agent scripts a call can use."""
    print(
        [
            {
                "id": script.id,
                "name": script.name,
                "description": script.description,
                "default": script.id == settings.default_script_type,
            }
            for script in SCRIPT_TYPES
        ]
    )


def _start_command_reader(loop: asyncio.AbstractEventLoop, commands: asyncio.Queue[str]) -> None:
    """Forward stdin lines to the loop from a daemon thread."""

    def _read() -> None:
        for line in sys.stdin:
            loop.call_soon_threadsafe(commands.put_nowait, line.strip().lower())
        loop.call_soon_threadsafe(commands.put_nowait, "q")

    threading.Thread(target=_read, name="call-command-reader", daemon=True).start()


async def _handle_commands(orchestrator: TurnOrchestrator, commands: asyncio.Queue[str], stop: asyncio.Event) -> None:
    while not stop.is_set():
        command = await commands.get()
        if command in {"q", "quit", "hangup"}:
            stop.set()
        elif command in {"m", "mute"}:
            session = orchestrator.session
            if session is not None:
                orchestrator.set_muted(not session.muted)


async def _wait_for_either(*awaitables) -> None:
    tasks = [asyncio.ensure_future(awaitable) for awaitable in awaitables]
    _, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
    for task in pending:
        task.cancel()


def build_call(
    url: str,
    recognizer_factory: Callable[[], SpeechRecognizer],
    sink: PlaybackSink,
    notices: NoticeSink,
    stop: asyncio.Event,
    *,
    connector: Connector | None = None,
) -> tuple[TransportAdapter, TurnOrchestrator]:
    """Wire the transport and the orchestrator for one call."""
    opened = 0

    def on_open() -> None:
        nonlocal opened
        opened += 1
        notices.info("Connected to server", "Voice call system is ready to use.")
        # The first connection gets the selection from the backlog; later ones start without it.
        if opened > 1:
            orchestrator.announce_script()

    def on_close() -> None:
        if stop.is_set():
            return
        notices.error("Disconnected from server", "Connection to voice call server lost.")

    transport = TransportAdapter(url, connector=connector, on_open=on_open, on_close=on_close)
    orchestrator = TurnOrchestrator(
        transport,
        recognizer_factory,
        sink,
        AsyncioScheduler(),
        notices=notices,
        timings=TurnTimings.from_settings(settings),
        output_gain=settings.output_gain,
        on_state_change=lambda state: print({"state": state.value}),
        on_transcript=lambda entry: print({entry.role: entry.text}),
    )
    return transport, orchestrator


async def _run_call(
    url: str,
    script_type: str,
    recognizer_factory: Callable[[], SpeechRecognizer],
    sink: PlaybackSink,
    *,
    start_muted: bool,
) -> tuple[list[TranscriptEntry], float]:
    notices = ConsoleNoticeSink()
    stop = asyncio.Event()
    transport, orchestrator = build_call(url, recognizer_factory, sink, notices, stop)

    commands: asyncio.Queue[str] = asyncio.Queue()
    _start_command_reader(asyncio.get_running_loop(), commands)
    command_task = asyncio.create_task(_handle_commands(orchestrator, commands, stop), name="call-commands")

    orchestrator.start_call(script_type)
    if start_muted:
        orchestrator.set_muted(True)

    try:
        while not stop.is_set():
            try:
                await transport.open()
            except (OSError, WebSocketException, asyncio.TimeoutError) as exc:
                notices.error("Connection Error", f"Failed to connect to voice call server: {exc}")
            else:
                await _wait_for_either(transport.wait_closed(), stop.wait())
            if stop.is_set():
                break
            try:
                await asyncio.wait_for(stop.wait(), timeout=settings.reconnect_delay_seconds)
            except asyncio.TimeoutError:
                continue
    finally:
        command_task.cancel()
        duration = orchestrator.call_duration
        transcript = orchestrator.end_call()
        await transport.close()
    return transcript, duration


@app.command("call")
def call(
    url: str = typer.Option(None, help="Backend WebSocket URL (defaults to VOICE_CALL_SERVER_URL)"),
    script_type: str = typer.Option(None, help="Agent script id, see the 'scripts' command"),
    muted: bool = typer.Option(False, help="Join the call with the microphone muted"),
) -> None:
    """Run a live voice call; type 'm' + Enter to toggle mute, 'q' + Enter to hang up."""
    target_url = url or settings.server_url
    try:
        parse_uri(target_url)
    except InvalidURI as exc:
        print({"error": str(exc)})
        raise typer.Exit(code=1)

    try:
        from voice_call.voice.playback_sounddevice import SoundDevicePlaybackSink
        from voice_call.voice.stt_speechrecognition import SpeechRecognitionRecognizer
    except RuntimeError as exc:
        print({"error": str(exc)})
        raise typer.Exit(code=1)
    except ImportError:
        print({"error": "Voice extras are missing. Install with: pip install 'voice-call-client[voice]'"})
        raise typer.Exit(code=1)

    def recognizer_factory() -> SpeechRecognizer:
        return SpeechRecognitionRecognizer(language=settings.language, phrase_time_limit=settings.phrase_time_limit)

    try:
        recognizer_factory()
        sink = SoundDevicePlaybackSink(pcm_sample_rate=settings.pcm_sample_rate)
    except RuntimeError as exc:
        print({"error": str(exc)})
        raise typer.Exit(code=1)

    configure_logging(settings.log_level)
    script = script_type or settings.default_script_type
    print({"call": "starting", "url": target_url, "script_type": script, "hint": "Type 'm' to toggle mute, 'q' to hang up."})

    try:
        transcript, duration = asyncio.run(_run_call(target_url, script, recognizer_factory, sink, start_muted=muted))
    except KeyboardInterrupt:
        print({"call": "interrupted"})
        raise typer.Exit(code=130)

    print(
        {
            "call": "ended",
            "duration_seconds": round(duration),
            "transcript": [{entry.role: entry.text} for entry in transcript],
        }
    )


if __name__ == "__main__":
    app()
