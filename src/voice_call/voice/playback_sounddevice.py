"""Speaker playback backend powered by ``sounddevice`` and ``soundfile``."""

from __future__ import annotations

import asyncio
import io
import logging

from .interfaces import PlaybackEnded, PlaybackFailed, PlaybackListener, PlaybackSink
from .wav import DEFAULT_SAMPLE_RATE, ensure_wav


class SoundDevicePlaybackSink(PlaybackSink):
    """Plays WAV (or headerless 16-bit PCM) chunks on the default output device."""

    def __init__(
        self,
        *,
        pcm_sample_rate: int = DEFAULT_SAMPLE_RATE,
        loop: asyncio.AbstractEventLoop | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        try:
            import sounddevice as sd
            import soundfile as sf
        except (ImportError, OSError) as exc:  # pragma: no cover - import guard
            raise RuntimeError(
                "Audio output backend unavailable. Install extras with: pip install 'voice-call-client[voice]'"
            ) from exc
        self._sd = sd
        self._sf = sf
        self._pcm_sample_rate = pcm_sample_rate
        self._loop = loop
        self._logger = logger or logging.getLogger("voice_call.speaker")
        self._listener: PlaybackListener | None = None
        self._gain = 1.0
        self._future: asyncio.Future[None] | None = None

    def open(self, listener: PlaybackListener, *, gain: float = 1.0) -> None:
        self._loop = self._loop or asyncio.get_running_loop()
        self._listener = listener
        self._gain = max(0.0, gain)

    def play(self, audio: bytes, token: int) -> None:
        if self._loop is None or self._listener is None:
            raise RuntimeError("playback sink is not open")
        data, sample_rate = self._sf.read(
            io.BytesIO(ensure_wav(audio, sample_rate=self._pcm_sample_rate)),
            dtype="float32",
        )
        if self._gain != 1.0:
            data = (data * self._gain).clip(-1.0, 1.0)

        future = self._loop.run_in_executor(None, self._play_blocking, data, sample_rate)
        future.add_done_callback(lambda done: self._on_done(done, token))
        self._future = future

    def stop(self) -> None:
        if self._future is not None and not self._future.done():
            self._sd.stop()
        self._future = None

    def close(self) -> None:
        self.stop()
        self._listener = None

    def _play_blocking(self, data, sample_rate: int) -> None:
        self._sd.play(data, sample_rate)
        self._sd.wait()

    def _on_done(self, future: asyncio.Future[None], token: int) -> None:
        listener = self._listener
        if listener is None:
            return
        exc = future.exception() if not future.cancelled() else None
        if exc is not None:
            self._logger.warning("speaker_play_failed", extra={"token": token, "error": str(exc)})
            listener(PlaybackFailed(token=token, error=str(exc)))
            return
        listener(PlaybackEnded(token=token))
