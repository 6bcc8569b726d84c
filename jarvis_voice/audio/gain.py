"""Software microphone gain stage."""

from __future__ import annotations

import threading

import numpy as np


MIN_GAIN = 0.1
MAX_GAIN = 5.0


class MicrophoneGain:
    """Scale 16-bit PCM frames by a user controlled factor."""

    def __init__(self, level: float = 1.0) -> None:
        self._lock = threading.Lock()
        self._level = 1.0
        self._active = True
        self.update(level)

    @property
    def level(self) -> float:
        return self._level

    def update(self, level: float) -> None:
        with self._lock:
            self._level = max(MIN_GAIN, min(MAX_GAIN, float(level)))

    def apply(self, frame: bytes) -> bytes:
        """Return ``frame`` amplified, clipped to the int16 range."""
        with self._lock:
            level = self._level
            active = self._active
        if not active or level == 1.0 or not frame:
            return frame
        samples = np.frombuffer(frame, dtype=np.int16).astype(np.float32)
        samples *= level
        np.clip(samples, -32768, 32767, out=samples)
        return samples.astype(np.int16).tobytes()

    def cleanup(self) -> None:
        """Disable the stage; subsequent frames pass through untouched."""
        with self._lock:
            self._active = False
