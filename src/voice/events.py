"""Voice-call events and call states."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class VoiceEventType(StrEnum):
    CALL_STARTED = "call-started"
    CALL_ENDED = "call-ended"
    TRANSCRIPT_FINAL = "speech-transcript-finalized"
    ERROR = "error"


class VoiceCallState(StrEnum):
    IDLE = "idle"
    CONNECTING = "connecting"
    ACTIVE = "active"
    ERROR = "error"


# Status text shown next to the agent name
STATUS_TEXT: dict[VoiceCallState, str] = {
    VoiceCallState.IDLE: "Ready",
    VoiceCallState.CONNECTING: "Connecting...",
    VoiceCallState.ACTIVE: "Connected",
    VoiceCallState.ERROR: "Engine Error",
}

VOICE_DISABLED_TEXT = "Voice Disabled"


@dataclass(frozen=True)
class VoiceEvent:
    """One event from the voice collaborator.

    ``transcript`` is set for ``TRANSCRIPT_FINAL``; ``error`` for ``ERROR``.
    """

    type: VoiceEventType
    call_id: str = ""
    transcript: str = ""
    error: str = ""


@dataclass(frozen=True)
class VoiceCallHandle:
    """What a voice adapter returns for a requested call."""

    call_id: str = ""
    join_url: str | None = None
