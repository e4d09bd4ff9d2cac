from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Literal


class RemoteState(str, Enum):
    """Turn state last pushed by the remote agent."""

    IDLE = "Idle"
    PROCESSING = "Processing"
    SPEAKING = "Speaking"


class LocalTurnState(str, Enum):
    """Single derived view of what the client is doing right now."""

    IDLE = "idle"
    LISTENING = "listening"
    PROCESSING = "processing"
    SPEAKING = "speaking"
    AUDIO_PREPARING = "audio_preparing"
    MUTED = "muted"


def derive_turn_state(
    *,
    active: bool,
    muted: bool,
    capturing: bool,
    speaking: bool,
    processing: bool,
    audio_latch: bool,
) -> LocalTurnState:
    """Collapse the orchestrator flags into exactly one turn state."""
    if not active:
        return LocalTurnState.IDLE
    if muted:
        return LocalTurnState.MUTED
    if speaking:
        return LocalTurnState.SPEAKING
    if processing:
        return LocalTurnState.PROCESSING
    if audio_latch:
        return LocalTurnState.AUDIO_PREPARING
    if capturing:
        return LocalTurnState.LISTENING
    return LocalTurnState.IDLE


@dataclass(slots=True)
class CallSession:
    script_type: str
    started_at: float
    active: bool = True
    muted: bool = False
    conversation_id: str | None = None
    turn_counter: int = 0


@dataclass(frozen=True, slots=True)
class TranscriptEntry:
    role: Literal["user", "assistant"]
    text: str


@dataclass(frozen=True, slots=True)
class ScriptType:
    id: str
    name: str
    description: str


SCRIPT_TYPES: tuple[ScriptType, ...] = (
    ScriptType(
        id="reliant_bpo",
        name="Reliant BPO",
        description="Fronting Only - Qualify leads and transfer to closers",
    ),
    ScriptType(
        id="21st_bpo",
        name="21st BPO",
        description="Fronting, Verification, and Closing - Qualify and close deals",
    ),
    ScriptType(
        id="sirus_solutions",
        name="Sirus Solutions",
        description="Fronting Demo Calls - Pitch to doctors and book appointments",
    ),
)


def script_display_name(script_id: str) -> str:
    """Human-readable script name, falling back to the raw id."""
    for script in SCRIPT_TYPES:
        if script.id == script_id:
            return script.name
    return script_id
