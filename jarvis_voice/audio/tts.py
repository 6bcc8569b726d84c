"""Local text-to-speech using Piper."""

from __future__ import annotations

import asyncio
import re
import threading
import unicodedata
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional, Sequence

from piper import PiperVoice, SynthesisConfig

from ..core.errors import CapabilityUnavailableError
from ..core.logger import get_logger
from .base import SynthesisCallbacks
from .playback import SpeechPlayback


logger = get_logger("speech")


@dataclass(slots=True)
class PiperConfig:
    """Piper model configuration."""

    model_path: Path
    config_path: Path
    speaker_id: int | None = None
    length_scale: float = 1.0
    noise_scale: float = 0.667


class PiperTTS:
    """Thin wrapper around PiperVoice."""

    def __init__(self, config: PiperConfig) -> None:
        self.config = config
        if not config.model_path.exists():
            raise FileNotFoundError(f"Piper model not found: {config.model_path}")
        if not config.config_path.exists():
            raise FileNotFoundError(f"Piper config not found: {config.config_path}")
        self._voice = PiperVoice.load(str(config.model_path), str(config.config_path))

    def synthesize_stream(self, text: str, length_scale: float | None = None) -> Iterator[tuple[bytes, int, int]]:
        """Yield audio chunks (bytes, sample_rate, channels)."""
        text = self._sanitize_text(text)
        if not text:
            return
        syn_config = SynthesisConfig(
            speaker_id=self.config.speaker_id,
            length_scale=length_scale or self.config.length_scale,
            noise_scale=self.config.noise_scale,
        )
        for chunk in self._voice.synthesize(text, syn_config=syn_config):
            yield chunk.audio_int16_bytes, chunk.sample_rate, chunk.sample_channels or 1

    @staticmethod
    def _sanitize_text(text: str) -> str:
        """Drop markdown markers and characters the phonemizer cannot map."""
        cleaned = re.sub(r"[*_`#<>]", " ", text)
        cleaned = unicodedata.normalize("NFC", cleaned)
        return re.sub(r"\s+", " ", cleaned).strip()


class PiperSynthesizer:
    """Implements the ``Synthesizer`` protocol with Piper voices on disk.

    Voices are ``<name>.onnx`` files (with ``<name>.onnx.json``) found under
    ``voice_dir``. Synthesis runs in an executor; PCM chunks are streamed to
    the speaker as they are produced.
    """

    def __init__(self, voice_dir: Path, playback: SpeechPlayback, loop: asyncio.AbstractEventLoop) -> None:
        self.voice_dir = voice_dir
        self.playback = playback
        self.loop = loop
        self._voices: dict[str, PiperTTS] = {}
        self._voices_lock = threading.Lock()
        self._task: Optional[asyncio.Task[None]] = None
        self._cancelled = threading.Event()
        if not self.voices():
            raise CapabilityUnavailableError(f"No Piper voice under {voice_dir}")

    # ------------------------------------------------------------------ #
    # Synthesizer protocol
    # ------------------------------------------------------------------ #
    def voices(self) -> Sequence[str]:
        if not self.voice_dir.is_dir():
            return []
        return sorted(path.name[: -len(".onnx")] for path in self.voice_dir.rglob("*.onnx"))

    def speak(self, text: str, *, voice: str, rate: float, callbacks: SynthesisCallbacks) -> None:
        self.cancel()
        self._cancelled = threading.Event()
        self._task = self.loop.create_task(self._run(text, voice, rate, callbacks, self._cancelled))

    def cancel(self) -> None:
        self._cancelled.set()
        self.playback.stop()
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    async def _run(
        self,
        text: str,
        voice: str,
        rate: float,
        callbacks: SynthesisCallbacks,
        cancelled: threading.Event,
    ) -> None:
        started = False
        queue: asyncio.Queue[object] = asyncio.Queue()
        loop = self.loop

        def producer(tts: PiperTTS) -> None:
            try:
                for chunk in tts.synthesize_stream(text, length_scale=1.0 / rate):
                    if cancelled.is_set():
                        break
                    loop.call_soon_threadsafe(queue.put_nowait, chunk)
            except Exception as exc:  # pragma: no cover - backend failure
                loop.call_soon_threadsafe(queue.put_nowait, exc)
            finally:
                loop.call_soon_threadsafe(queue.put_nowait, None)

        try:
            tts = await loop.run_in_executor(None, self._load, voice)
            producer_future = loop.run_in_executor(None, producer, tts)
            while True:
                item = await queue.get()
                if item is None:
                    break
                if isinstance(item, Exception):
                    raise item
                pcm_bytes, sample_rate, channels = item  # type: ignore[misc]
                if not pcm_bytes:
                    continue
                self.playback.reconfigure(sample_rate, channels)
                self.playback.play(pcm_bytes)
                if not started:
                    started = True
                    if callbacks.on_start is not None:
                        callbacks.on_start()
            await producer_future
            await self.playback.wait_drained()
        except asyncio.CancelledError:
            cancelled.set()
            raise
        except Exception as exc:
            logger.exception("local synthesis failed")
            self.playback.stop()
            if callbacks.on_error is not None:
                callbacks.on_error(str(exc))
            return
        finally:
            if callbacks.on_end is not None:
                callbacks.on_end()

    def _load(self, voice: str) -> PiperTTS:
        with self._voices_lock:
            cached = self._voices.get(voice)
            if cached is not None:
                return cached
            matches = [path for path in self.voice_dir.rglob(f"{voice}.onnx")]
            if not matches:
                available = self.voices()
                if not available:
                    raise FileNotFoundError(f"No Piper voice under {self.voice_dir}")
                logger.warning("voice %s not installed, using %s", voice, available[0])
                matches = list(self.voice_dir.rglob(f"{available[0]}.onnx"))
            model_path = matches[0]
            tts = PiperTTS(PiperConfig(model_path=model_path, config_path=Path(f"{model_path}.json")))
            self._voices[voice] = tts
            return tts
