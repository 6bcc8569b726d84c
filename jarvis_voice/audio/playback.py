"""Speaker output for synthesized speech."""

from __future__ import annotations

import asyncio
import threading
from collections import deque
from dataclasses import dataclass

import sounddevice as sd

from ..core.logger import get_logger


logger = get_logger("audio")

BYTES_PER_SAMPLE = 2  # pcm_s16le
DRAIN_GUARD_SEC = 0.15


@dataclass(slots=True)
class PlaybackConfig:
    """Playback configuration."""

    sample_rate: int = 22_050
    channels: int = 1
    device_name: str | None = None


class SpeechPlayback:
    """Buffered PCM output; the PortAudio callback pulls from the queue."""

    def __init__(self, config: PlaybackConfig | None = None) -> None:
        self.config = config or PlaybackConfig()
        self._buffer = deque[bytes]()
        self._lock = threading.RLock()
        self._stream: sd.RawOutputStream | None = None

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    def play(self, pcm_data: bytes) -> None:
        """Queue a PCM buffer for playback."""
        if not pcm_data:
            return
        with self._lock:
            self._ensure_stream()
            self._buffer.append(pcm_data)

    def reconfigure(self, sample_rate: int, channels: int) -> None:
        """Switch format; drops anything still queued in the old format."""
        with self._lock:
            if sample_rate == self.config.sample_rate and channels == self.config.channels:
                return
            self.stop()
            self.config.sample_rate = sample_rate
            self.config.channels = channels

    @property
    def pending(self) -> bool:
        with self._lock:
            return bool(self._buffer)

    def duration_of(self, length_bytes: int) -> float:
        channels = max(1, self.config.channels)
        return length_bytes / (self.config.sample_rate * channels * BYTES_PER_SAMPLE)

    async def wait_drained(self, poll: float = 0.05) -> None:
        """Return once the queue is empty and the device had time to flush."""
        while self.pending:
            await asyncio.sleep(poll)
        await asyncio.sleep(DRAIN_GUARD_SEC)

    def stop(self) -> None:
        """Stop playback and clear the buffer."""
        with self._lock:
            self._buffer.clear()
            stream, self._stream = self._stream, None
            if stream is not None:
                try:
                    stream.stop()
                    stream.close()
                except sd.PortAudioError as exc:
                    logger.warning("output stream close failed: %s", exc)

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    def _ensure_stream(self) -> None:
        if self._stream is not None:
            if not self._stream.active:
                self._stream.start()
            return
        self._stream = sd.RawOutputStream(
            samplerate=self.config.sample_rate,
            channels=self.config.channels,
            dtype="int16",
            callback=self._on_write,
            device=self.config.device_name,
        )
        self._stream.start()

    def _on_write(self, outdata: bytearray, frames: int, time, status) -> None:  # type: ignore[override]  # noqa: ANN401
        if status:  # pragma: no cover
            logger.warning("audio output status: %s", status)
        with self._lock:
            filled = 0
            size = len(outdata)
            while filled < size and self._buffer:
                chunk = self._buffer.popleft()
                take = min(len(chunk), size - filled)
                outdata[filled : filled + take] = chunk[:take]
                if take < len(chunk):
                    self._buffer.appendleft(chunk[take:])
                filled += take
            if filled < size:
                outdata[filled:] = b"\x00" * (size - filled)
