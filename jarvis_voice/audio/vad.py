"""Voice activity detection and utterance endpointing."""

from __future__ import annotations

from dataclasses import dataclass, field

import webrtcvad


_VALID_SAMPLE_RATES = (8000, 16_000, 32_000, 48_000)
_VALID_FRAME_DURATIONS_MS = (10, 20, 30)


@dataclass(slots=True)
class VADConfig:
    """WebRTC VAD configuration."""

    aggressiveness: int = 2  # 0 (sensitive) to 3 (strict)


class VoiceActivityDetector:
    """Wrapper around the WebRTC VAD implementation."""

    def __init__(self, config: VADConfig | None = None) -> None:
        self.config = config or VADConfig()
        self.config.aggressiveness = max(0, min(3, self.config.aggressiveness))
        self._vad = webrtcvad.Vad(self.config.aggressiveness)

    def is_speech(self, frame: bytes, sample_rate: int) -> bool:
        """Return True when the frame contains speech."""
        if sample_rate not in _VALID_SAMPLE_RATES or not frame:
            return False
        return self._vad.is_speech(self._fit_frame(frame, sample_rate), sample_rate)

    def update_aggressiveness(self, value: int) -> None:
        self.config.aggressiveness = max(0, min(3, value))
        self._vad.set_mode(self.config.aggressiveness)

    @staticmethod
    def _fit_frame(frame: bytes, sample_rate: int) -> bytes:
        """Pad or trim to the closest frame length WebRTC accepts (mono s16le)."""
        samples = len(frame) // 2
        target = min(
            (sample_rate * duration // 1000 for duration in _VALID_FRAME_DURATIONS_MS),
            key=lambda expected: abs(expected - samples),
        )
        target_bytes = max(target, 1) * 2
        if len(frame) >= target_bytes:
            return frame[:target_bytes]
        return frame + bytes(target_bytes - len(frame))


@dataclass(slots=True)
class Endpointer:
    """Group speech frames into utterances separated by trailing silence."""

    frame_ms: int = 20
    endpoint_ms: int = 700
    min_speech_ms: int = 200
    _frames: list[bytes] = field(default_factory=list)
    _speech_ms: int = 0
    _silence_ms: int = 0

    @property
    def in_speech(self) -> bool:
        return self._speech_ms > 0

    @property
    def speech_ms(self) -> int:
        return self._speech_ms

    def push(self, frame: bytes, is_speech: bool) -> bytes | None:
        """Feed one frame; returns the utterance PCM when it is complete."""
        if is_speech:
            self._frames.append(frame)
            self._speech_ms += self.frame_ms
            self._silence_ms = 0
            return None
        if not self.in_speech:
            return None
        self._frames.append(frame)
        self._silence_ms += self.frame_ms
        if self._silence_ms >= self.endpoint_ms:
            return self.flush()
        return None

    def snapshot(self) -> bytes:
        """PCM collected so far for the current utterance."""
        return b"".join(self._frames)

    def flush(self) -> bytes | None:
        """Close the current utterance; None when it is too short to matter."""
        pcm = b"".join(self._frames)
        enough = self._speech_ms >= self.min_speech_ms
        self.reset()
        return pcm if enough else None

    def reset(self) -> None:
        self._frames.clear()
        self._speech_ms = 0
        self._silence_ms = 0
