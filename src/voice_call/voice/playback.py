"""Ordered playback of streamed response audio."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Callable

from .interfaces import PlaybackEvent, PlaybackFailed, PlaybackSink


@dataclass(frozen=True, slots=True)
class AudioChunk:
    turn_id: int
    sequence: int
    data: bytes


class AudioChunkQueue:
    """FIFO of audio chunks for the in-flight response, drained through one sink.

    At most one chunk plays at a time. Running out of chunks only makes the
    queue idle; the turn itself ends when the orchestrator says so.
    """

    def __init__(
        self,
        sink: PlaybackSink,
        *,
        gain: float = 1.0,
        on_drained: Callable[[], None] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._sink = sink
        self._gain = gain
        self._on_drained = on_drained
        self._logger = logger or logging.getLogger("voice_call.playback")

        self._pending: deque[AudioChunk] = deque()
        self._current: AudioChunk | None = None
        self._token = 0
        self._turn_id = 0
        self._next_sequence = 0
        self._opened = False

    @property
    def is_playing(self) -> bool:
        return self._current is not None

    @property
    def is_busy(self) -> bool:
        return self._current is not None or bool(self._pending)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def turn_id(self) -> int:
        return self._turn_id

    def open(self) -> None:
        if self._opened:
            return
        self._sink.open(self._handle_event, gain=self._gain)
        self._opened = True
        self._logger.info("playback_opened", extra={"gain": self._gain})

    def close(self) -> None:
        self.clear()
        if not self._opened:
            return
        self._sink.close()
        self._opened = False
        self._logger.info("playback_closed")

    def begin_turn(self, turn_id: int) -> None:
        """Drop chunks still queued for the previous response and retag.

        The chunk already playing is left to finish.
        """
        if self._pending:
            self._logger.info("audio_chunks_discarded", extra={"count": len(self._pending), "turn_id": self._turn_id})
        self._pending.clear()
        self._turn_id = turn_id
        self._next_sequence = 0

    def push(self, data: bytes, *, turn_id: int | None = None) -> bool:
        """Queue a chunk for the current turn; returns ``False`` if it was dropped."""
        if not data:
            self._logger.warning("audio_chunk_empty", extra={"turn_id": self._turn_id})
            return False
        if turn_id is not None and turn_id != self._turn_id:
            self._logger.warning(
                "audio_chunk_stale",
                extra={"chunk_turn_id": turn_id, "turn_id": self._turn_id},
            )
            return False

        chunk = AudioChunk(turn_id=self._turn_id, sequence=self._next_sequence, data=data)
        self._next_sequence += 1
        if self._current is None:
            self._play(chunk)
        else:
            self._pending.append(chunk)
            self._logger.debug("audio_chunk_queued", extra={"sequence": chunk.sequence, "queued": len(self._pending)})
        return True

    def clear(self) -> None:
        """Stop the current item and drop everything queued."""
        was_playing = self._current is not None
        self._pending.clear()
        self._current = None
        # Outstanding sink events refer to an old token from here on.
        self._token += 1
        if was_playing:
            self._sink.stop()

    def _play(self, chunk: AudioChunk) -> None:
        self._token += 1
        self._current = chunk
        self._logger.debug("audio_chunk_playing", extra={"sequence": chunk.sequence, "turn_id": chunk.turn_id})
        try:
            self._sink.play(chunk.data, self._token)
        except Exception as exc:  # noqa: BLE001 - a bad chunk must not stall the queue.
            self._logger.warning("audio_chunk_play_failed", extra={"sequence": chunk.sequence, "error": str(exc)})
            self._advance()

    def _handle_event(self, event: PlaybackEvent) -> None:
        if event.token != self._token or self._current is None:
            self._logger.debug("playback_stale_event", extra={"token": event.token})
            return
        if isinstance(event, PlaybackFailed):
            self._logger.warning(
                "audio_chunk_play_failed",
                extra={"sequence": self._current.sequence, "error": event.error},
            )
        self._advance()

    def _advance(self) -> None:
        self._current = None
        if self._pending:
            self._play(self._pending.popleft())
            return
        self._logger.debug("playback_idle", extra={"turn_id": self._turn_id})
        if self._on_drained is not None:
            self._on_drained()
