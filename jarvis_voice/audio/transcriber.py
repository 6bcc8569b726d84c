"""ASR utilities powered by faster-whisper."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from faster_whisper import WhisperModel


@dataclass(slots=True)
class WhisperConfig:
    """Configuration for the faster-whisper engine."""

    model: str = "small.en"
    device: str = "cpu"
    compute_type: str = "int8"
    language: str = "en"


class FasterWhisperEngine:
    """Thin wrapper around WhisperModel."""

    def __init__(self, config: WhisperConfig) -> None:
        self.config = config
        self.model = WhisperModel(
            config.model,
            device=config.device,
            compute_type=config.compute_type,
        )

    def transcribe_pcm(self, pcm: bytes) -> str:
        """Transcribe 16 kHz mono s16le audio. Blocking; run it in an executor."""
        if not pcm:
            return ""
        audio = np.frombuffer(pcm, dtype=np.int16).astype(np.float32) / 32768.0
        segments, _ = self.model.transcribe(audio, language=self.config.language, vad_filter=False)
        return " ".join(segment.text.strip() for segment in segments).strip()
