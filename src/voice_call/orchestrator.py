"""Turn-taking coordination between the microphone, the agent and the speaker.

Three event sources drive a call: the local recognizer, pushes from the
remote agent, and local playback. None of them is trusted to arrive in order
or at all, so every handler finishes by recomputing whether capture should be
running and correcting it (``_reconcile``). The periodic liveness check runs
the same correction as a backstop.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Protocol

from voice_call.config import Settings
from voice_call.models import (
    CallSession,
    LocalTurnState,
    RemoteState,
    TranscriptEntry,
    derive_turn_state,
    script_display_name,
)
from voice_call.notices import ConsoleNoticeSink, NoticeSink
from voice_call.protocol import (
    PLACEHOLDER_AUDIO,
    AudioChunkMessage,
    AudioEndMessage,
    InboundMessage,
    NoticeMessage,
    OutboundType,
    ResponseMessage,
    StateMessage,
    TranscriptionMessage,
    parse_inbound,
)
from voice_call.scheduler import RepeatingTask, ScheduledTask, Scheduler
from voice_call.voice.capture import CaptureInterruption, SpeechCaptureLifecycle
from voice_call.voice.interfaces import PlaybackSink, SpeechRecognizer
from voice_call.voice.playback import AudioChunkQueue


class MessageChannel(Protocol):
    """Outbound send plus inbound subscription, as offered by ``TransportAdapter``."""

    def send(self, message_type: OutboundType | str, data: Any) -> bool:
        """Send or queue one message."""

    def subscribe(self, callback: Callable[[dict[str, Any]], None]) -> Callable[[], None]:
        """Register an inbound callback and return its unsubscribe function."""


@dataclass(frozen=True, slots=True)
class TurnTimings:
    """Delays (seconds) that pace the turn-taking state machine."""

    silence_timeout: float = 1.5
    restart_cooldown: float = 1.0
    settle_delay: float = 1.0
    call_start_delay: float = 0.5
    unmute_delay: float = 0.5
    capture_retry_delay: float = 1.0
    error_restart_delay: float = 2.0
    turn_close_grace: float = 0.5
    liveness_interval: float = 10.0
    response_stall: float = 30.0

    @classmethod
    def from_settings(cls, settings: Settings) -> TurnTimings:
        return cls(
            silence_timeout=settings.silence_timeout_seconds,
            restart_cooldown=settings.restart_cooldown_seconds,
            settle_delay=settings.settle_delay_seconds,
            call_start_delay=settings.call_start_delay_seconds,
            unmute_delay=settings.unmute_delay_seconds,
            capture_retry_delay=settings.capture_retry_delay_seconds,
            error_restart_delay=settings.error_restart_delay_seconds,
            turn_close_grace=settings.turn_close_grace_seconds,
            liveness_interval=settings.liveness_interval_seconds,
            response_stall=settings.response_stall_seconds,
        )


class TurnOrchestrator:
    """Owns the call session and decides which of capture, playback or idle may run."""

    def __init__(
        self,
        transport: MessageChannel,
        recognizer_factory: Callable[[], SpeechRecognizer],
        sink: PlaybackSink,
        scheduler: Scheduler,
        *,
        notices: NoticeSink | None = None,
        timings: TurnTimings | None = None,
        output_gain: float = 1.0,
        on_state_change: Callable[[LocalTurnState], None] | None = None,
        on_transcript: Callable[[TranscriptEntry], None] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._transport = transport
        self._scheduler = scheduler
        self._notices = notices or ConsoleNoticeSink()
        self._timings = timings or TurnTimings()
        self._on_state_change = on_state_change
        self._on_transcript = on_transcript
        self._logger = logger or logging.getLogger("voice_call.orchestrator")

        self._capture = SpeechCaptureLifecycle(
            recognizer_factory,
            scheduler,
            is_blocked=self._speech_blocked,
            on_utterance=self._submit_utterance,
            on_interrupted=self._on_capture_interrupted,
            on_started=self._on_capture_started,
            on_interim=self._on_interim,
            silence_timeout=self._timings.silence_timeout,
        )
        self._playback = AudioChunkQueue(sink, gain=output_gain, on_drained=self._on_playback_drained)

        self._restart_task = ScheduledTask(
            "capture_restart",
            scheduler,
            self._attempt_capture_start,
            precondition=self._capture_permitted,
            logger=self._logger,
        )
        self._turn_close_task = ScheduledTask(
            "turn_close",
            scheduler,
            self._on_turn_close_due,
            precondition=self._call_active,
            logger=self._logger,
        )
        self._liveness = RepeatingTask(
            "liveness",
            scheduler,
            self._timings.liveness_interval,
            self._liveness_check,
        )

        self._session: CallSession | None = None
        self._remote_state = RemoteState.IDLE
        self._processing = False
        self._speaking = False
        self._audio_latch = False
        self._close_when_drained = False
        self._last_start_attempt: float | None = None
        self._last_turn_activity = 0.0
        self._transcript: list[TranscriptEntry] = []
        self._live_transcription = ""
        self._published_state = LocalTurnState.IDLE

        self._unsubscribe = transport.subscribe(self.handle_payload)

    @property
    def session(self) -> CallSession | None:
        return self._session

    @property
    def state(self) -> LocalTurnState:
        return derive_turn_state(
            active=self._call_active(),
            muted=self._session is not None and self._session.muted,
            capturing=self._capture.is_active,
            speaking=self._speaking,
            processing=self._processing,
            audio_latch=self._audio_latch,
        )

    @property
    def remote_state(self) -> RemoteState:
        return self._remote_state

    @property
    def transcript(self) -> tuple[TranscriptEntry, ...]:
        return tuple(self._transcript)

    @property
    def live_transcription(self) -> str:
        return self._live_transcription

    @property
    def capture(self) -> SpeechCaptureLifecycle:
        return self._capture

    @property
    def playback(self) -> AudioChunkQueue:
        return self._playback

    @property
    def speaking(self) -> bool:
        return self._speaking

    @property
    def audio_latch(self) -> bool:
        return self._audio_latch

    @property
    def call_duration(self) -> float:
        if self._session is None:
            return 0.0
        return self._scheduler.now() - self._session.started_at

    # -- call control -------------------------------------------------

    def start_call(self, script_type: str) -> None:
        """Begin a call with the given agent script."""
        if not script_type or not script_type.strip():
            raise ValueError("script_type must be a non-empty string")
        if self._call_active():
            self._logger.info("call_already_active")
            return

        script_type = script_type.strip()
        self._session = CallSession(script_type=script_type, started_at=self._scheduler.now())
        self._reset_turn_flags()
        self._transcript.clear()
        self._live_transcription = ""
        self._last_turn_activity = self._scheduler.now()

        self._playback.open()
        self._transport.send(OutboundType.SCRIPT_TYPE, script_type)
        self._restart_task.schedule(self._timings.call_start_delay)
        self._liveness.start()
        self._logger.info("call_started", extra={"script_type": script_type})
        self._notices.info("Call started", f"Using {script_display_name(script_type)} script.")
        self._reconcile()

    def end_call(self) -> list[TranscriptEntry]:
        """Tear the call down and return its transcript."""
        if self._session is None:
            return []

        duration = self.call_duration
        self._session.active = False
        self._restart_task.cancel()
        self._turn_close_task.cancel()
        self._liveness.stop()
        self._capture.stop()
        self._playback.close()

        transcript = list(self._transcript)
        self._transcript.clear()
        self._live_transcription = ""
        self._reset_turn_flags()
        self._session = None

        self._logger.info("call_ended", extra={"duration_seconds": round(duration, 1), "entries": len(transcript)})
        self._notices.info("Call ended", "Voice call has been terminated.")
        self._publish_state()
        return transcript

    def set_muted(self, muted: bool) -> None:
        session = self._session
        if session is None or not session.active or session.muted == muted:
            return

        session.muted = muted
        self._logger.info("mute_changed", extra={"muted": muted})
        if muted:
            self._restart_task.cancel()
            self._capture.stop()
            self._playback.clear()
            self._speaking = False
            self._notices.info("Microphone muted", "The system will not listen to your voice until unmuted.")
        else:
            self._notices.info("Microphone unmuted", "The system will now listen to your voice.")
            if not self._speaking and not self._audio_latch:
                self._restart_task.schedule(self._timings.unmute_delay)
        self._reconcile()

    def announce_script(self) -> None:
        """Send the call's script selection again, e.g. to a reconnected backend."""
        session = self._session
        if session is None or not session.active:
            return
        self._transport.send(OutboundType.SCRIPT_TYPE, session.script_type)

    def request_capture(self) -> None:
        """Ask for capture now, subject to the usual gating and cooldown."""
        self._attempt_capture_start()
        self._reconcile()

    def dispose(self) -> None:
        self.end_call()
        self._unsubscribe()

    # -- inbound messages ---------------------------------------------

    def handle_payload(self, payload: dict[str, Any]) -> None:
        """Transport subscriber: validate a decoded frame and handle it."""
        message = parse_inbound(payload)
        if message is not None:
            self.handle_message(message)

    def handle_message(self, message: InboundMessage) -> None:
        if isinstance(message, StateMessage):
            self._on_remote_state(message.state)
        elif isinstance(message, NoticeMessage):
            self._on_notice(message)
        elif not self._call_active():
            self._logger.debug("message_ignored_no_call", extra={"message_type": message.type})
            return
        elif isinstance(message, TranscriptionMessage):
            self._live_transcription = message.text
        elif isinstance(message, ResponseMessage):
            self._on_response(message)
        elif isinstance(message, AudioChunkMessage):
            self._on_audio_chunk(message)
        elif isinstance(message, AudioEndMessage):
            self._on_audio_end()
        self._reconcile()

    def _on_remote_state(self, state: RemoteState) -> None:
        previous = self._remote_state
        self._remote_state = state
        self._last_turn_activity = self._scheduler.now()
        self._logger.info("remote_state_changed", extra={"previous": previous.value, "state": state.value})

        if state is RemoteState.PROCESSING:
            self._processing = True
            # Local and remote can briefly disagree about who is talking.
            self._speaking = False
        elif state is RemoteState.SPEAKING:
            self._processing = False
        elif state is RemoteState.IDLE:
            self._processing = False
            if self._capture_permitted():
                self._restart_task.schedule(self._timings.settle_delay)

    def _on_response(self, message: ResponseMessage) -> None:
        session = self._session
        if session is None:
            return
        self._append_transcript(TranscriptEntry(role="assistant", text=message.text))
        if message.conversation_id:
            session.conversation_id = message.conversation_id

        if self._turn_close_task.pending or self._close_when_drained:
            self._acknowledge_superseded_turn(session)

        session.turn_counter += 1
        self._audio_latch = True
        self._playback.begin_turn(session.turn_counter)
        self._last_turn_activity = self._scheduler.now()
        self._logger.info("response_received", extra={"turn": session.turn_counter})

    def _on_audio_chunk(self, message: AudioChunkMessage) -> None:
        session = self._session
        if session is None:
            return
        data = message.decode()
        if data is None:
            self._logger.warning("audio_chunk_malformed", extra={"turn": session.turn_counter})
            return
        if not data:
            self._logger.warning("audio_chunk_empty", extra={"turn": session.turn_counter})
            return
        if session.muted:
            self._logger.debug("audio_chunk_dropped_muted", extra={"turn": session.turn_counter})
            return

        self._last_turn_activity = self._scheduler.now()
        self._audio_latch = True
        if not self._speaking:
            self._speaking = True
            self._logger.info("speaking_started", extra={"turn": session.turn_counter})
        # The microphone has to be closed before the first sample leaves the speaker.
        self._reconcile()
        self._playback.push(data, turn_id=session.turn_counter)

    def _on_audio_end(self) -> None:
        self._last_turn_activity = self._scheduler.now()
        self._logger.info("audio_stream_ended", extra={"queued": self._playback.pending_count})
        self._turn_close_task.schedule(self._timings.turn_close_grace)

    def _on_notice(self, message: NoticeMessage) -> None:
        if message.type == "info":
            self._notices.info("Info", message.message)
            return

        self._logger.warning("remote_error", extra={"error": message.message})
        self._notices.error("Error", message.message)
        self._audio_latch = False
        session = self._session
        if (
            self._call_active()
            and session is not None
            and not session.muted
            and not self._capture.is_active
            and not self._speaking
        ):
            self._restart_task.schedule(self._timings.error_restart_delay)

    # -- turn completion ----------------------------------------------

    def _on_turn_close_due(self) -> None:
        if self._playback.is_busy:
            self._close_when_drained = True
            self._logger.info("turn_close_waiting_for_playback", extra={"queued": self._playback.pending_count})
            return
        self._close_turn()

    def _on_playback_drained(self) -> None:
        if self._close_when_drained:
            self._close_turn()
            return
        self._reconcile()

    def _acknowledge_superseded_turn(self, session: CallSession) -> None:
        """Close a turn that already got audio_end without cutting off its audio."""
        self._turn_close_task.cancel()
        self._close_when_drained = False
        self._speaking = self._playback.is_playing
        self._transport.send(OutboundType.PLAYBACK_FINISHED, {})
        self._logger.info("turn_closed", extra={"turn": session.turn_counter, "acknowledged": True, "superseded": True})

    def _close_turn(self, *, acknowledge: bool = True) -> None:
        self._close_when_drained = False
        self._turn_close_task.cancel()
        self._speaking = False
        self._playback.clear()
        self._audio_latch = False
        if acknowledge:
            self._transport.send(OutboundType.PLAYBACK_FINISHED, {})
        turn = self._session.turn_counter if self._session is not None else 0
        self._logger.info("turn_closed", extra={"turn": turn, "acknowledged": acknowledge})
        if self._capture_permitted():
            # Let the speaker tail die out before the microphone opens again.
            self._restart_task.schedule(self._timings.settle_delay)
        self._reconcile()

    # -- capture ------------------------------------------------------

    def _on_capture_started(self) -> None:
        self._reconcile()

    def _on_interim(self, text: str) -> None:
        self._live_transcription = text

    def _on_capture_interrupted(self, interruption: CaptureInterruption) -> None:
        if interruption.surfaced:
            self._notices.error("Speech Recognition Error", f"An error occurred: {interruption.reason}")
        if self._capture_permitted():
            self._restart_task.schedule(self._timings.capture_retry_delay)
        self._reconcile()

    def _submit_utterance(self, text: str) -> None:
        session = self._session
        text = text.strip()
        if not text or session is None or not session.active:
            return
        if self._processing:
            self._logger.debug("utterance_refused_processing")
            return

        self._append_transcript(TranscriptEntry(role="user", text=text))
        self._live_transcription = ""
        self._playback.clear()
        self._audio_latch = True
        self._last_turn_activity = self._scheduler.now()

        self._transport.send(OutboundType.CONTEXT, text)
        self._transport.send(OutboundType.AUDIO, PLACEHOLDER_AUDIO)
        self._logger.info("utterance_submitted", extra={"chars": len(text), "turn": session.turn_counter})
        self._reconcile()

    def _attempt_capture_start(self) -> None:
        if not self._capture_permitted():
            self._logger.debug("capture_start_refused", extra={"state": self.state.value})
            return
        if self._capture.is_active:
            return

        now = self._scheduler.now()
        if self._last_start_attempt is not None:
            elapsed = now - self._last_start_attempt
            if elapsed < self._timings.restart_cooldown:
                self._logger.debug("capture_start_deferred", extra={"elapsed": round(elapsed, 3)})
                self._restart_task.schedule(self._timings.restart_cooldown - elapsed)
                return

        self._last_start_attempt = now
        self._capture.start()
        self._publish_state()

    def _liveness_check(self) -> None:
        if not self._call_active():
            return
        if self._capture_permitted() and not self._capture.is_active:
            self._logger.info("liveness_restart")
            self._attempt_capture_start()
        elif self._turn_stalled():
            self._logger.warning(
                "turn_stalled",
                extra={"idle_seconds": round(self._scheduler.now() - self._last_turn_activity, 1)},
            )
            self._notices.error("Response timed out", "No reply from the agent; listening again.")
            self._close_turn(acknowledge=False)
            return
        self._reconcile()

    def _turn_stalled(self) -> bool:
        if not (self._audio_latch or self._speaking) or self._processing or self._playback.is_busy:
            return False
        return self._scheduler.now() - self._last_turn_activity >= self._timings.response_stall

    # -- state --------------------------------------------------------

    def _call_active(self) -> bool:
        return self._session is not None and self._session.active

    def _speech_blocked(self) -> bool:
        session = self._session
        return session is None or not session.active or session.muted or self._speaking or self._audio_latch

    def _capture_permitted(self) -> bool:
        return not self._speech_blocked() and not self._processing and not self._playback.is_busy

    def _reconcile(self) -> None:
        """Bring capture in line with the current flags."""
        if not self._capture_permitted():
            if self._capture.is_active:
                self._logger.info("capture_halted", extra={"state": self.state.value})
                self._capture.stop()
            self._restart_task.cancel()
        elif not self._capture.is_active and not self._restart_task.pending:
            self._restart_task.schedule(self._timings.settle_delay)
        self._publish_state()

    def _publish_state(self) -> None:
        state = self.state
        if state is self._published_state:
            return
        previous = self._published_state
        self._published_state = state
        self._logger.debug("turn_state_changed", extra={"previous": previous.value, "state": state.value})
        if self._on_state_change is not None:
            self._on_state_change(state)

    def _append_transcript(self, entry: TranscriptEntry) -> None:
        self._transcript.append(entry)
        if self._on_transcript is not None:
            self._on_transcript(entry)

    def _reset_turn_flags(self) -> None:
        self._processing = False
        self._speaking = False
        self._audio_latch = False
        self._close_when_drained = False
