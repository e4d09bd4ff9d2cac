"""Minimal RIFF/WAVE container helpers for PCM audio chunks."""

from __future__ import annotations

import struct

RIFF_HEADER_SIZE = 44
DEFAULT_SAMPLE_RATE = 24_000
DEFAULT_CHANNELS = 1
DEFAULT_BITS_PER_SAMPLE = 16


def wav_header(
    data_length: int,
    *,
    sample_rate: int = DEFAULT_SAMPLE_RATE,
    channels: int = DEFAULT_CHANNELS,
    bits_per_sample: int = DEFAULT_BITS_PER_SAMPLE,
) -> bytes:
    """Return the 44-byte header for ``data_length`` bytes of PCM samples."""
    block_align = channels * bits_per_sample // 8
    byte_rate = sample_rate * block_align
    return struct.pack(
        "<4sI4s4sIHHIIHH4sI",
        b"RIFF",
        36 + data_length,
        b"WAVE",
        b"fmt ",
        16,
        1,
        channels,
        sample_rate,
        byte_rate,
        block_align,
        bits_per_sample,
        b"data",
        data_length,
    )


def build_wav(pcm: bytes, **format_kwargs: int) -> bytes:
    return wav_header(len(pcm), **format_kwargs) + pcm


def is_wav(audio: bytes) -> bool:
    return len(audio) >= 12 and audio[:4] == b"RIFF" and audio[8:12] == b"WAVE"


def ensure_wav(audio: bytes, *, sample_rate: int = DEFAULT_SAMPLE_RATE) -> bytes:
    """Wrap headerless PCM in a WAV container; pass real WAV data through."""
    if is_wav(audio):
        return audio
    return build_wav(audio, sample_rate=sample_rate)
