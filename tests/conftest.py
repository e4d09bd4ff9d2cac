from __future__ import annotations

import heapq
import itertools
from dataclasses import dataclass, field
from typing import Any, Callable

import pytest

from voice_call.orchestrator import TurnOrchestrator
from voice_call.voice.interfaces import (
    PlaybackEnded,
    PlaybackFailed,
    PlaybackListener,
    RecognitionEnded,
    RecognitionError,
    RecognitionListener,
    RecognitionResult,
    RecognitionStarted,
    TranscriptPart,
)


class ManualTimer:
    def __init__(self) -> None:
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Deterministic clock; time only moves through ``advance``."""

    def __init__(self) -> None:
        self._now = 0.0
        self._counter = itertools.count()
        self._timers: list[tuple[float, int, ManualTimer, Callable[[], None]]] = []

    def now(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer()
        heapq.heappush(self._timers, (self._now + max(0.0, delay), next(self._counter), timer, callback))
        return timer

    def advance(self, seconds: float) -> None:
        target = self._now + seconds
        while self._timers and self._timers[0][0] <= target + 1e-9:
            due, _, timer, callback = heapq.heappop(self._timers)
            self._now = max(self._now, due)
            if not timer.cancelled:
                callback()
        self._now = target


class FakeRecognizer:
    def __init__(self) -> None:
        self.listener: RecognitionListener | None = None
        self.started = False
        self.stopped = False

    def start(self, listener: RecognitionListener) -> None:
        self.listener = listener
        self.started = True

    def stop(self) -> None:
        self.stopped = True

    def emit_started(self) -> None:
        assert self.listener is not None
        self.listener(RecognitionStarted())

    def emit_interim(self, text: str) -> None:
        assert self.listener is not None
        self.listener(RecognitionResult(results=(TranscriptPart(text=text, is_final=False),)))

    def emit_results(self, *parts: TranscriptPart, result_index: int = 0) -> None:
        assert self.listener is not None
        self.listener(RecognitionResult(results=tuple(parts), result_index=result_index))

    def emit_error(self, code: str) -> None:
        assert self.listener is not None
        self.listener(RecognitionError(code=code))

    def emit_ended(self) -> None:
        assert self.listener is not None
        self.listener(RecognitionEnded())


class RecognizerFactory:
    def __init__(self) -> None:
        self.created: list[FakeRecognizer] = []

    def __call__(self) -> FakeRecognizer:
        recognizer = FakeRecognizer()
        self.created.append(recognizer)
        return recognizer

    @property
    def latest(self) -> FakeRecognizer:
        return self.created[-1]

    @property
    def live(self) -> list[FakeRecognizer]:
        return [recognizer for recognizer in self.created if recognizer.started and not recognizer.stopped]


class FakeSink:
    def __init__(self) -> None:
        self.listener: PlaybackListener | None = None
        self.gain: float | None = None
        self.played: list[tuple[bytes, int]] = []
        self.stop_calls = 0
        self.closed = False
        self.current: tuple[bytes, int] | None = None

    def open(self, listener: PlaybackListener, *, gain: float = 1.0) -> None:
        self.listener = listener
        self.gain = gain
        self.closed = False

    def play(self, audio: bytes, token: int) -> None:
        self.current = (audio, token)
        self.played.append((audio, token))

    def stop(self) -> None:
        self.stop_calls += 1
        self.current = None

    def close(self) -> None:
        self.closed = True

    def finish(self) -> None:
        assert self.listener is not None and self.current is not None
        _, token = self.current
        self.current = None
        self.listener(PlaybackEnded(token=token))

    def fail(self, error: str = "device busy") -> None:
        assert self.listener is not None and self.current is not None
        _, token = self.current
        self.current = None
        self.listener(PlaybackFailed(token=token, error=error))

    @property
    def played_audio(self) -> list[bytes]:
        return [audio for audio, _ in self.played]


class FakeChannel:
    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.subscribers: list[Callable[[dict[str, Any]], None]] = []

    def send(self, message_type, data) -> bool:
        self.sent.append({"type": str(getattr(message_type, "value", message_type)), "data": data})
        return True

    def subscribe(self, callback: Callable[[dict[str, Any]], None]) -> Callable[[], None]:
        self.subscribers.append(callback)
        return lambda: self.subscribers.remove(callback)

    def deliver(self, payload: dict[str, Any]) -> None:
        for callback in list(self.subscribers):
            callback(payload)

    def sent_types(self) -> list[str]:
        return [message["type"] for message in self.sent]


@dataclass
class RecordingNotices:
    infos: list[tuple[str, str]] = field(default_factory=list)
    errors: list[tuple[str, str]] = field(default_factory=list)

    def info(self, title: str, message: str) -> None:
        self.infos.append((title, message))

    def error(self, title: str, message: str) -> None:
        self.errors.append((title, message))


@dataclass
class CallHarness:
    orchestrator: TurnOrchestrator
    scheduler: ManualScheduler
    recognizers: RecognizerFactory
    sink: FakeSink
    channel: FakeChannel
    notices: RecordingNotices

    def start_listening(self, script_type: str = "reliant_bpo") -> FakeRecognizer:
        """Start a call and run it until the recognizer reports it is listening."""
        self.orchestrator.start_call(script_type)
        self.scheduler.advance(0.5)
        recognizer = self.recognizers.latest
        recognizer.emit_started()
        return recognizer


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def recognizers() -> RecognizerFactory:
    return RecognizerFactory()


@pytest.fixture
def sink() -> FakeSink:
    return FakeSink()


@pytest.fixture
def notices() -> RecordingNotices:
    return RecordingNotices()


@pytest.fixture
def channel() -> FakeChannel:
    return FakeChannel()


@pytest.fixture
def harness(scheduler, recognizers, sink, notices, channel) -> CallHarness:
    orchestrator = TurnOrchestrator(channel, recognizers, sink, scheduler, notices=notices)
    return CallHarness(
        orchestrator=orchestrator,
        scheduler=scheduler,
        recognizers=recognizers,
        sink=sink,
        channel=channel,
        notices=notices,
    )
