"""Speech-to-text backend powered by ``speech_recognition``."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

from .interfaces import (
    RecognitionError,
    RecognitionEvent,
    RecognitionListener,
    RecognitionResult,
    RecognitionStarted,
    SpeechRecognizer,
    TranscriptPart,
)


class SpeechRecognitionRecognizer(SpeechRecognizer):
    """One background-listening session on the default microphone.

    ``speech_recognition`` hands over whole phrases, so every phrase arrives
    as a final result appended to the session's result list. Callbacks run on
    the library's listener thread and are marshalled onto the event loop.
    """

    def __init__(
        self,
        *,
        language: str = "en-US",
        phrase_time_limit: float | None = 10.0,
        sample_rate: int = 16_000,
        chunk_size: int = 1024,
        loop: asyncio.AbstractEventLoop | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        try:
            import speech_recognition as sr
        except ImportError as exc:  # pragma: no cover - import guard
            raise RuntimeError(
                "Voice STT backend unavailable. Install extras with: pip install 'voice-call-client[voice]'"
            ) from exc
        self._sr = sr
        self._language = language
        self._phrase_time_limit = phrase_time_limit
        self._recognizer = sr.Recognizer()
        try:
            self._microphone = sr.Microphone(sample_rate=sample_rate, chunk_size=chunk_size)
        except (AttributeError, OSError) as exc:  # pragma: no cover - depends on host audio stack
            raise RuntimeError(
                "Microphone backend unavailable. Install extras with: pip install 'voice-call-client[voice]'"
            ) from exc
        self._loop = loop
        self._logger = logger or logging.getLogger("voice_call.stt")
        self._listener: RecognitionListener | None = None
        self._stopper: Callable[..., None] | None = None
        self._results: list[TranscriptPart] = []

    def start(self, listener: RecognitionListener) -> None:
        if self._stopper is not None:
            raise RuntimeError("recognition already started")
        self._loop = self._loop or asyncio.get_running_loop()
        self._listener = listener
        self._stopper = self._recognizer.listen_in_background(
            self._microphone,
            self._on_phrase,
            phrase_time_limit=self._phrase_time_limit,
        )
        self._emit(RecognitionStarted())

    def stop(self) -> None:
        stopper = self._stopper
        self._stopper = None
        self._listener = None
        if stopper is not None:
            stopper(wait_for_stop=False)

    def _on_phrase(self, recognizer, audio) -> None:
        """Runs on the listener thread for every captured phrase."""
        try:
            text = recognizer.recognize_google(audio, language=self._language)
        except self._sr.UnknownValueError:
            self._logger.debug("stt_phrase_unintelligible")
            return
        except self._sr.RequestError as exc:
            self._emit(RecognitionError(code="network", message=str(exc)))
            return

        text = text.strip()
        if not text:
            return
        self._results.append(TranscriptPart(text=text, is_final=True))
        self._emit(RecognitionResult(results=tuple(self._results), result_index=len(self._results) - 1))

    def _emit(self, event: RecognitionEvent) -> None:
        listener = self._listener
        if listener is None or self._loop is None:
            return
        if self._loop.is_closed():
            self._logger.debug("stt_event_after_loop_closed", extra={"event": type(event).__name__})
            return
        self._loop.call_soon_threadsafe(listener, event)
