"""Contracts for speech capture and audio playback backends.

Backends report what happens to them as typed events delivered to a single
listener on the event loop thread. Components hold one live handle of each
kind at a time.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Protocol, Union


@dataclass(frozen=True, slots=True)
class TranscriptPart:
    text: str
    is_final: bool


@dataclass(frozen=True, slots=True)
class RecognitionStarted:
    pass


@dataclass(frozen=True, slots=True)
class RecognitionResult:
    """All results of the recognition session so far.

    ``result_index`` is the first entry that changed since the previous event.
    """

    results: tuple[TranscriptPart, ...]
    result_index: int = 0


@dataclass(frozen=True, slots=True)
class RecognitionError:
    code: str
    message: str = ""


@dataclass(frozen=True, slots=True)
class RecognitionEnded:
    pass


RecognitionEvent = Union[RecognitionStarted, RecognitionResult, RecognitionError, RecognitionEnded]
RecognitionListener = Callable[[RecognitionEvent], None]


class SpeechRecognizer(Protocol):
    """One continuous, interim-result recognition session."""

    def start(self, listener: RecognitionListener) -> None:
        """Begin capturing and report lifecycle events to ``listener``."""

    def stop(self) -> None:
        """Stop capturing; the handle is not reused afterwards."""


@dataclass(frozen=True, slots=True)
class PlaybackEnded:
    token: int


@dataclass(frozen=True, slots=True)
class PlaybackFailed:
    token: int
    error: str


PlaybackEvent = Union[PlaybackEnded, PlaybackFailed]
PlaybackListener = Callable[[PlaybackEvent], None]


class PlaybackSink(Protocol):
    """Single speaker output that plays one audio item at a time."""

    def open(self, listener: PlaybackListener, *, gain: float = 1.0) -> None:
        """Prepare the output path and register the event listener."""

    def play(self, audio: bytes, token: int) -> None:
        """Start playing ``audio``; completion is reported with ``token``."""

    def stop(self) -> None:
        """Interrupt the current item, if any."""

    def close(self) -> None:
        """Release the output path."""
