"""Microphone capture with a software gain stage."""

from __future__ import annotations

from dataclasses import dataclass
from threading import Lock
from typing import Callable, Iterable, Protocol

import sounddevice as sd

from ..core.errors import CapabilityUnavailableError
from ..core.logger import get_logger
from .gain import MicrophoneGain


logger = get_logger("audio")


class FrameConsumer(Protocol):
    """Protocol for streaming audio frames."""

    def __call__(self, frame: bytes) -> None: ...


@dataclass(slots=True)
class CaptureConfig:
    """Microphone capture configuration."""

    sample_rate: int = 16_000
    channels: int = 1
    frame_duration_ms: int = 20
    device_name: str | None = None


class MicrophoneCapture:
    """Owns the input stream; frames are delivered on the PortAudio thread."""

    def __init__(self, config: CaptureConfig | None = None, gain: MicrophoneGain | None = None) -> None:
        self.config = config or CaptureConfig()
        self.gain = gain or MicrophoneGain()
        self._consumer: Callable[[bytes], None] | None = None
        self._stream: sd.RawInputStream | None = None
        self._lock = Lock()

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    def bind(self, consumer: FrameConsumer) -> None:
        self._consumer = consumer

    @property
    def running(self) -> bool:
        return self._stream is not None

    @staticmethod
    def available_devices() -> Iterable[str]:
        return [
            device["name"]
            for device in sd.query_devices()
            if int(device.get("max_input_channels", 0)) > 0
        ]

    def start(self) -> None:
        """Open the microphone; raises CapabilityUnavailableError when it cannot."""
        if self._consumer is None:
            raise RuntimeError("No audio consumer registered.")
        with self._lock:
            if self._stream is not None:
                return
            blocksize = int(self.config.sample_rate * self.config.frame_duration_ms / 1000)
            try:
                stream = sd.RawInputStream(
                    samplerate=self.config.sample_rate,
                    channels=self.config.channels,
                    dtype="int16",
                    blocksize=blocksize,
                    callback=self._on_frame,
                    device=self.config.device_name,
                )
                stream.start()
            except (sd.PortAudioError, ValueError) as exc:
                raise CapabilityUnavailableError(f"Microphone unavailable: {exc}") from exc
            self._stream = stream
            logger.debug("microphone capture started")

    def stop(self) -> None:
        with self._lock:
            stream, self._stream = self._stream, None
            if stream is None:
                return
            try:
                stream.stop()
                stream.close()
            except sd.PortAudioError as exc:
                logger.warning("microphone close failed: %s", exc)
            logger.debug("microphone capture stopped")

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    def _on_frame(self, indata: bytes, frames: int, time, status) -> None:  # type: ignore[override]  # noqa: ANN401
        if status:  # pragma: no cover
            logger.warning("microphone status: %s", status)
        consumer = self._consumer
        if consumer is not None:
            consumer(self.gain.apply(bytes(indata)))
