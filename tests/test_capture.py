from __future__ import annotations

from dataclasses import dataclass, field

import pytest

from voice_call.voice.capture import CaptureInterruption, CaptureState, SpeechCaptureLifecycle
from voice_call.voice.interfaces import TranscriptPart


@dataclass
class CaptureRecorder:
    blocked: bool = False
    started: int = 0
    utterances: list[str] = field(default_factory=list)
    interims: list[str] = field(default_factory=list)
    interruptions: list[CaptureInterruption] = field(default_factory=list)

    def on_started(self) -> None:
        self.started += 1


@pytest.fixture
def recorder() -> CaptureRecorder:
    return CaptureRecorder()


def _lifecycle(factory, scheduler, recorder: CaptureRecorder) -> SpeechCaptureLifecycle:
    return SpeechCaptureLifecycle(
        factory,
        scheduler,
        is_blocked=lambda: recorder.blocked,
        on_utterance=recorder.utterances.append,
        on_interrupted=recorder.interruptions.append,
        on_started=recorder.on_started,
        on_interim=recorder.interims.append,
        silence_timeout=1.5,
    )


@pytest.fixture
def lifecycle(recognizers, scheduler, recorder) -> SpeechCaptureLifecycle:
    return _lifecycle(recognizers, scheduler, recorder)


def test_start_while_active_is_a_noop(lifecycle, recognizers, recorder) -> None:
    assert lifecycle.start() is True
    assert lifecycle.start() is False
    assert lifecycle.state is CaptureState.STARTING

    recognizers.latest.emit_started()

    assert lifecycle.state is CaptureState.LISTENING
    assert lifecycle.start() is False
    assert len(recognizers.created) == 1
    assert recorder.started == 1


def test_stop_is_idempotent(lifecycle, recognizers) -> None:
    lifecycle.stop()
    lifecycle.start()
    recognizer = recognizers.latest

    lifecycle.stop()
    lifecycle.stop()

    assert recognizer.stopped is True
    assert lifecycle.state is CaptureState.STOPPED
    assert lifecycle.session is None


def test_events_from_a_discarded_handle_are_ignored(lifecycle, recognizers, recorder) -> None:
    lifecycle.start()
    old = recognizers.latest
    old.emit_started()
    lifecycle.stop()
    lifecycle.start()

    old.emit_interim("ghost words")
    old.emit_error("network")
    old.emit_ended()

    assert recorder.interims == []
    assert recorder.interruptions == []
    assert lifecycle.state is CaptureState.STARTING


def test_results_are_ignored_while_blocked(lifecycle, recognizers, scheduler, recorder) -> None:
    lifecycle.start()
    recognizers.latest.emit_started()
    recorder.blocked = True

    recognizers.latest.emit_interim("the speaker talking")
    scheduler.advance(5.0)

    assert recorder.interims == []
    assert recorder.utterances == []
    assert lifecycle.is_active is True


def test_finals_and_interim_combine_into_one_utterance(lifecycle, recognizers, scheduler, recorder) -> None:
    lifecycle.start()
    recognizer = recognizers.latest
    recognizer.emit_started()

    recognizer.emit_results(TranscriptPart("book a", is_final=True), TranscriptPart("demo", is_final=False))
    assert recorder.interims[-1] == "book a demo"

    recognizer.emit_results(
        TranscriptPart("book a", is_final=True),
        TranscriptPart("demo call", is_final=True),
        TranscriptPart("tomorrow", is_final=False),
        result_index=1,
    )
    assert recorder.interims[-1] == "book a demo call tomorrow"

    scheduler.advance(1.4)
    assert recorder.utterances == []
    scheduler.advance(0.1)

    assert recorder.utterances == ["book a demo call tomorrow"]
    assert recognizer.stopped is True
    assert lifecycle.state is CaptureState.STOPPED


def test_silence_with_blank_transcript_keeps_listening(lifecycle, recognizers, scheduler, recorder) -> None:
    lifecycle.start()
    recognizers.latest.emit_started()

    recognizers.latest.emit_interim("   ")
    scheduler.advance(3.0)

    assert recorder.utterances == []
    assert lifecycle.state is CaptureState.LISTENING


def test_silence_while_blocked_does_not_submit(lifecycle, recognizers, scheduler, recorder) -> None:
    lifecycle.start()
    recognizers.latest.emit_started()
    recognizers.latest.emit_interim("half a sentence")

    recorder.blocked = True
    scheduler.advance(1.5)

    assert recorder.utterances == []


def test_factory_failure_is_reported(scheduler, recorder) -> None:
    def broken_factory():
        raise RuntimeError("no microphone")

    lifecycle = _lifecycle(broken_factory, scheduler, recorder)

    assert lifecycle.start() is False
    assert lifecycle.is_active is False
    assert recorder.interruptions == [
        CaptureInterruption(reason="create-failed", surfaced=True, message="no microphone")
    ]


def test_start_failure_releases_the_handle(scheduler, recorder) -> None:
    class RefusingRecognizer:
        stopped = False

        def start(self, listener) -> None:
            raise OSError("device busy")

        def stop(self) -> None:
            self.stopped = True

    handle = RefusingRecognizer()
    lifecycle = _lifecycle(lambda: handle, scheduler, recorder)

    assert lifecycle.start() is False
    assert handle.stopped is True
    assert lifecycle.state is CaptureState.STOPPED
    assert recorder.interruptions[0].reason == "start-failed"
    assert recorder.interruptions[0].surfaced is True


@pytest.mark.parametrize(
    ("code", "surfaced"),
    [("no-speech", False), ("not-allowed", True), ("network", True)],
)
def test_recognizer_errors_tear_down_the_session(lifecycle, recognizers, recorder, code, surfaced) -> None:
    lifecycle.start()
    recognizer = recognizers.latest
    recognizer.emit_started()

    recognizer.emit_error(code)

    assert lifecycle.is_active is False
    assert recognizer.stopped is True
    assert recorder.interruptions == [CaptureInterruption(reason=code, surfaced=surfaced)]


def test_unexpected_end_is_reported_quietly(lifecycle, recognizers, recorder) -> None:
    lifecycle.start()
    recognizers.latest.emit_started()

    recognizers.latest.emit_ended()

    assert lifecycle.is_active is False
    assert recorder.interruptions == [CaptureInterruption(reason="ended", surfaced=False)]
