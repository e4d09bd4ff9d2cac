"""Managed speech-capture sessions with silence-based end of utterance."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from voice_call.scheduler import ScheduledTask, Scheduler

from .interfaces import (
    RecognitionEnded,
    RecognitionError,
    RecognitionEvent,
    RecognitionResult,
    RecognitionStarted,
    SpeechRecognizer,
    TranscriptPart,
)

NO_SPEECH_ERROR = "no-speech"


class CaptureState(str, Enum):
    """Lifecycle states of the capture component."""

    STOPPED = "stopped"
    STARTING = "starting"
    LISTENING = "listening"


@dataclass(slots=True)
class CaptureSession:
    """Bookkeeping for one recognizer handle."""

    started_at: float
    last_speech_at: float
    silence_deadline: ScheduledTask | None = None
    finals: dict[int, str] = field(default_factory=dict)
    interim: str = ""

    @property
    def transcript(self) -> str:
        parts = [self.finals[index] for index in sorted(self.finals)]
        parts.append(self.interim)
        return " ".join(part.strip() for part in parts if part.strip())


@dataclass(frozen=True, slots=True)
class CaptureInterruption:
    """Why a session stopped without being asked to."""

    reason: str
    surfaced: bool
    message: str = ""


class SpeechCaptureLifecycle:
    """Wraps a recognizer factory in a start/stop state machine.

    A fresh recognizer handle is created for every ``start`` and discarded on
    ``stop``. Results only count while ``is_blocked`` is false; a trailing
    silence of ``silence_timeout`` seconds ends the utterance.
    """

    def __init__(
        self,
        recognizer_factory: Callable[[], SpeechRecognizer],
        scheduler: Scheduler,
        *,
        is_blocked: Callable[[], bool],
        on_utterance: Callable[[str], None],
        on_interrupted: Callable[[CaptureInterruption], None],
        on_started: Callable[[], None] | None = None,
        on_interim: Callable[[str], None] | None = None,
        silence_timeout: float = 1.5,
        logger: logging.Logger | None = None,
    ) -> None:
        self._factory = recognizer_factory
        self._scheduler = scheduler
        self._is_blocked = is_blocked
        self._on_utterance = on_utterance
        self._on_interrupted = on_interrupted
        self._on_started = on_started
        self._on_interim = on_interim
        self._silence_timeout = silence_timeout
        self._logger = logger or logging.getLogger("voice_call.capture")

        self._state = CaptureState.STOPPED
        self._handle: SpeechRecognizer | None = None
        self._session: CaptureSession | None = None

    @property
    def state(self) -> CaptureState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state is not CaptureState.STOPPED

    @property
    def session(self) -> CaptureSession | None:
        return self._session

    def start(self) -> bool:
        """Create a recognizer and begin a session; no-op while one is live."""
        if self.is_active:
            self._logger.debug("capture_already_active", extra={"state": self._state.value})
            return False

        try:
            handle = self._factory()
        except Exception as exc:  # noqa: BLE001 - backend construction can fail in many ways.
            self._logger.exception("capture_create_failed")
            self._on_interrupted(CaptureInterruption(reason="create-failed", surfaced=True, message=str(exc)))
            return False

        self._handle = handle
        self._state = CaptureState.STARTING
        self._logger.info("capture_starting")
        try:
            handle.start(lambda event: self._dispatch(handle, event))
        except Exception as exc:  # noqa: BLE001
            self._logger.exception("capture_start_failed")
            self._teardown()
            self._on_interrupted(CaptureInterruption(reason="start-failed", surfaced=True, message=str(exc)))
            return False
        return True

    def stop(self) -> None:
        """Stop the live session, if any. Safe to call repeatedly."""
        if self._state is CaptureState.STOPPED and self._handle is None:
            return
        self._teardown()
        self._logger.info("capture_stopped")

    def _teardown(self) -> None:
        handle = self._handle
        # Detach first so nothing the old handle reports can reach us.
        self._handle = None
        self._state = CaptureState.STOPPED
        if self._session is not None and self._session.silence_deadline is not None:
            self._session.silence_deadline.cancel()
        self._session = None
        if handle is None:
            return
        try:
            handle.stop()
        except Exception:  # noqa: BLE001 - a dying recognizer must not break the caller.
            self._logger.warning("capture_handle_stop_failed", exc_info=True)

    def _dispatch(self, handle: SpeechRecognizer, event: RecognitionEvent) -> None:
        if handle is not self._handle:
            self._logger.debug("capture_stale_event", extra={"event": type(event).__name__})
            return

        if isinstance(event, RecognitionStarted):
            self._handle_started()
        elif isinstance(event, RecognitionResult):
            self._handle_result(event)
        elif isinstance(event, RecognitionError):
            self._handle_error(event)
        elif isinstance(event, RecognitionEnded):
            self._logger.info("capture_ended_unexpectedly")
            self._teardown()
            self._on_interrupted(CaptureInterruption(reason="ended", surfaced=False))

    def _handle_started(self) -> None:
        self._state = CaptureState.LISTENING
        self._ensure_session()
        self._logger.info("capture_listening")
        if self._on_started is not None:
            self._on_started()

    def _ensure_session(self) -> CaptureSession:
        if self._session is None:
            now = self._scheduler.now()
            self._session = CaptureSession(started_at=now, last_speech_at=now)
            self._session.silence_deadline = ScheduledTask(
                "silence_deadline",
                self._scheduler,
                self._on_silence,
                logger=self._logger,
            )
        return self._session

    def _handle_result(self, event: RecognitionResult) -> None:
        if self._is_blocked():
            self._logger.debug("capture_result_ignored")
            return

        session = self._ensure_session()
        session.last_speech_at = self._scheduler.now()
        session.interim = ""
        for index, part in enumerate(event.results):
            if index < event.result_index:
                continue
            self._apply_part(session, index, part)

        transcript = session.transcript
        if self._on_interim is not None:
            self._on_interim(transcript)
        if session.silence_deadline is not None:
            session.silence_deadline.reschedule(self._silence_timeout)

    @staticmethod
    def _apply_part(session: CaptureSession, index: int, part: TranscriptPart) -> None:
        if part.is_final:
            session.finals[index] = part.text
        else:
            session.finals.pop(index, None)
            session.interim = f"{session.interim} {part.text}".strip()

    def _on_silence(self) -> None:
        session = self._session
        if session is None or session.silence_deadline is None:
            return

        elapsed = self._scheduler.now() - session.last_speech_at
        if elapsed < self._silence_timeout:
            session.silence_deadline.schedule(self._silence_timeout - elapsed)
            return

        transcript = session.transcript
        if not transcript or self._is_blocked():
            return

        self._logger.info("utterance_complete", extra={"chars": len(transcript)})
        self.stop()
        self._on_utterance(transcript)

    def _handle_error(self, event: RecognitionError) -> None:
        surfaced = event.code != NO_SPEECH_ERROR
        log = self._logger.warning if surfaced else self._logger.info
        log("capture_error", extra={"code": event.code})
        self._teardown()
        self._on_interrupted(CaptureInterruption(reason=event.code, surfaced=surfaced, message=event.message))
