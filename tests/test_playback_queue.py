from __future__ import annotations

import pytest

from voice_call.voice.interfaces import PlaybackEnded
from voice_call.voice.playback import AudioChunkQueue


@pytest.fixture
def drained() -> list[int]:
    return []


@pytest.fixture
def queue(sink, drained) -> AudioChunkQueue:
    queue = AudioChunkQueue(sink, gain=0.8, on_drained=lambda: drained.append(1))
    queue.open()
    return queue


def test_open_passes_gain_once(sink, queue) -> None:
    queue.open()

    assert sink.gain == 0.8
    assert sink.listener is not None


def test_chunks_play_one_at_a_time_in_arrival_order(sink, queue, drained) -> None:
    for data in (b"a", b"b", b"c"):
        assert queue.push(data) is True

    assert sink.played_audio == [b"a"]
    assert queue.pending_count == 2
    assert queue.is_playing is True

    sink.finish()
    sink.finish()
    assert sink.played_audio == [b"a", b"b", b"c"]
    assert drained == []

    sink.finish()
    assert drained == [1]
    assert queue.is_busy is False


def test_empty_and_stale_chunks_are_dropped(sink, queue) -> None:
    queue.begin_turn(2)

    assert queue.push(b"") is False
    assert queue.push(b"old", turn_id=1) is False
    assert queue.push(b"new", turn_id=2) is True

    assert sink.played_audio == [b"new"]


def test_clear_stops_playback_and_ignores_late_events(sink, queue, drained) -> None:
    queue.push(b"a")
    queue.push(b"b")
    _, stale_token = sink.played[0]
    listener = sink.listener

    queue.clear()
    listener(PlaybackEnded(token=stale_token))

    assert sink.stop_calls == 1
    assert queue.is_busy is False
    assert sink.played_audio == [b"a"]
    assert drained == []


def test_clear_when_idle_does_not_touch_the_sink(sink, queue) -> None:
    queue.clear()

    assert sink.stop_calls == 0


def test_failed_chunk_is_skipped(sink, queue) -> None:
    queue.push(b"broken")
    queue.push(b"fine")

    sink.fail()

    assert sink.played_audio == [b"broken", b"fine"]
    assert queue.is_playing is True


def test_sink_raising_on_play_does_not_stall_the_queue(sink, queue, drained, monkeypatch) -> None:
    original_play = sink.play

    def play(audio: bytes, token: int) -> None:
        if audio == b"corrupt":
            raise ValueError("not a wav file")
        original_play(audio, token)

    monkeypatch.setattr(sink, "play", play)

    queue.push(b"corrupt")
    assert drained == [1]
    assert queue.is_busy is False

    queue.push(b"good")
    assert sink.played_audio == [b"good"]


def test_begin_turn_drops_queued_audio_but_finishes_current_chunk(sink, queue) -> None:
    queue.begin_turn(1)
    queue.push(b"one", turn_id=1)
    queue.push(b"two", turn_id=1)

    queue.begin_turn(2)

    assert queue.turn_id == 2
    assert queue.pending_count == 0
    assert queue.is_playing is True
    assert sink.stop_calls == 0

    assert queue.push(b"three", turn_id=2) is True
    sink.finish()
    assert sink.played_audio == [b"one", b"three"]


def test_close_releases_the_sink(sink, queue) -> None:
    queue.push(b"a")

    queue.close()
    queue.close()

    assert sink.closed is True
    assert queue.is_busy is False
