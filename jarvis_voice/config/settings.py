"""User settings for the voice assistant."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


DEFAULT_WAKE_WORDS = ("hey jarvis", "jarvis")
MIN_SPEECH_RATE = 120
MAX_SPEECH_RATE = 300


class TTSMode(str, Enum):
    """Speech backend selection."""

    LOCAL = "local"
    REMOTE = "remote"

    @property
    def wire(self) -> str:
        """Name used by the assistant server."""
        return "system" if self is TTSMode.LOCAL else "edge"

    @classmethod
    def parse(cls, value: str | "TTSMode") -> "TTSMode":
        if isinstance(value, TTSMode):
            return value
        normalized = str(value).strip().lower()
        if normalized in ("local", "system"):
            return cls.LOCAL
        if normalized in ("remote", "edge"):
            return cls.REMOTE
        raise ValueError(f"Unknown TTS mode: {value!r}")


@dataclass(slots=True)
class VoiceSettings:
    """Speech output settings."""

    tts_mode: TTSMode = TTSMode.REMOTE
    voice: str = "en-US-AriaNeural"
    speech_rate: int = 180  # words per minute

    def rate_multiplier(self) -> float:
        """Playback rate for local synthesis, clamped to 0.5..1.5."""
        return max(0.5, min(1.5, self.speech_rate / 200))


@dataclass(slots=True)
class ListeningSettings:
    """Microphone and wake word settings."""

    wake_word_enabled: bool = True
    continuous_listening: bool = True
    auto_voice_detection: bool = True
    microphone_gain: float = 2.0
    wake_words: list[str] = field(default_factory=lambda: list(DEFAULT_WAKE_WORDS))


@dataclass(slots=True)
class AppSettings:
    """Full set of persisted user settings."""

    voice: VoiceSettings = field(default_factory=VoiceSettings)
    listening: ListeningSettings = field(default_factory=ListeningSettings)
