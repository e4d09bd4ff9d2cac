"""Speech capture and audio playback module boundaries."""

from .capture import CaptureInterruption, CaptureSession, CaptureState, SpeechCaptureLifecycle
from .interfaces import (
    PlaybackEnded,
    PlaybackFailed,
    PlaybackSink,
    RecognitionEnded,
    RecognitionError,
    RecognitionResult,
    RecognitionStarted,
    SpeechRecognizer,
    TranscriptPart,
)
from .playback import AudioChunk, AudioChunkQueue

__all__ = [
    "AudioChunk",
    "AudioChunkQueue",
    "CaptureInterruption",
    "CaptureSession",
    "CaptureState",
    "PlaybackEnded",
    "PlaybackFailed",
    "PlaybackSink",
    "RecognitionEnded",
    "RecognitionError",
    "RecognitionResult",
    "RecognitionStarted",
    "SpeechCaptureLifecycle",
    "SpeechRecognizer",
    "TranscriptPart",
]
