"""Shared state model for the voice assistant."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Literal

from ..config.settings import AppSettings


ServerStatus = Literal["online", "reconnecting", "offline"]


class VoiceState(str, Enum):
    IDLE = "idle"
    LISTENING = "listening"
    PROCESSING = "processing"
    SPEAKING = "speaking"


class WakeWordState(str, Enum):
    IDLE = "idle"
    LISTENING = "listening"
    COOLDOWN = "cooldown"


class ChatMode(str, Enum):
    VOICE = "voice"
    CHAT = "chat"


# Forward edges of the voice pipeline; user stop may always return to idle.
VOICE_TRANSITIONS: dict[VoiceState, frozenset[VoiceState]] = {
    VoiceState.IDLE: frozenset({VoiceState.LISTENING, VoiceState.SPEAKING}),
    VoiceState.LISTENING: frozenset({VoiceState.PROCESSING, VoiceState.IDLE}),
    VoiceState.PROCESSING: frozenset({VoiceState.SPEAKING, VoiceState.IDLE}),
    VoiceState.SPEAKING: frozenset({VoiceState.IDLE}),
}


@dataclass(slots=True)
class AppState:
    """Global state for the assistant, written only by the orchestrator."""

    settings: AppSettings = field(default_factory=AppSettings)
    voice_state: VoiceState = VoiceState.IDLE
    wake_state: WakeWordState = WakeWordState.IDLE
    chat_mode: ChatMode = ChatMode.VOICE
    voice_enabled: bool = True
    awaiting_pomodoro_confirmation: bool = False
    available_voices: list[str] = field(default_factory=list)
    server_status: ServerStatus = "offline"
    transcript: str = ""
