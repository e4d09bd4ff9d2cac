"""JSON wire protocol spoken with the conversational agent backend."""

from __future__ import annotations

import base64
import binascii
import logging
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from voice_call.models import RemoteState

logger = logging.getLogger("voice_call.protocol")

# Empty 44.1 kHz mono WAV. The backend only starts a turn once it has an
# audio frame, so one of these rides along with every text utterance.
PLACEHOLDER_AUDIO = "UklGRiQAAABXQVZFZm10IBAAAAABAAEARKwAAIhYAQACABAAZGF0YQAAAAA="


class OutboundType(str, Enum):
    """Message types the client sends upstream."""

    SCRIPT_TYPE = "script_type"
    CONTEXT = "context"
    AUDIO = "audio"
    PLAYBACK_FINISHED = "playback_finished"


class _Inbound(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class StateMessage(_Inbound):
    type: Literal["state"]
    state: RemoteState


class TranscriptionMessage(_Inbound):
    type: Literal["transcription"]
    text: str = ""


class ResponseMessage(_Inbound):
    type: Literal["response"]
    text: str = ""
    conversation_id: str | None = Field(default=None, alias="conversationId")


class AudioChunkMessage(_Inbound):
    type: Literal["audio_chunk"]
    audio: str = ""

    def decode(self) -> bytes | None:
        """Return the raw audio bytes, or ``None`` for malformed base64."""
        # Whitespace from line-wrapped base64 is ignored.
        try:
            return base64.b64decode("".join(self.audio.split()), validate=True)
        except (binascii.Error, ValueError):
            return None


class AudioEndMessage(_Inbound):
    type: Literal["audio_end"]


class NoticeMessage(_Inbound):
    type: Literal["info", "error"]
    message: str = ""


InboundMessage = Annotated[
    Union[
        StateMessage,
        TranscriptionMessage,
        ResponseMessage,
        AudioChunkMessage,
        AudioEndMessage,
        NoticeMessage,
    ],
    Field(discriminator="type"),
]

_inbound_adapter: TypeAdapter[Any] = TypeAdapter(InboundMessage)


def parse_inbound(payload: Any) -> InboundMessage | None:
    """Validate one decoded inbound frame; unknown or invalid frames yield ``None``."""
    try:
        return _inbound_adapter.validate_python(payload)
    except ValidationError as exc:
        message_type = payload.get("type") if isinstance(payload, dict) else None
        logger.warning(
            "inbound_message_rejected",
            extra={"message_type": message_type, "errors": exc.error_count()},
        )
        return None


def outbound_message(message_type: OutboundType | str, data: Any) -> dict[str, Any]:
    return {"type": OutboundType(message_type).value, "data": data}
