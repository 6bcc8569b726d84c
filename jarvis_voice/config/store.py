"""Persistence helpers for the user settings."""

from __future__ import annotations

import json
from dataclasses import asdict, fields
from pathlib import Path
from typing import Any

from ..core.logger import get_logger
from .paths import settings_path
from .settings import (
    MAX_SPEECH_RATE,
    MIN_SPEECH_RATE,
    AppSettings,
    ListeningSettings,
    TTSMode,
    VoiceSettings,
)


logger = get_logger("settings")

# Flat camelCase keys written by older clients.
_LEGACY_KEYS = {
    "ttsMode": ("voice", "tts_mode"),
    "voice": ("voice", "voice"),
    "speechRate": ("voice", "speech_rate"),
    "wakeWordEnabled": ("listening", "wake_word_enabled"),
    "continuousListening": ("listening", "continuous_listening"),
    "autoVoiceDetection": ("listening", "auto_voice_detection"),
    "microphoneGain": ("listening", "microphone_gain"),
    "wakeWords": ("listening", "wake_words"),
}


def load_settings(path: Path | None = None) -> AppSettings:
    """Load settings from disk, stored values merged over the defaults."""
    path = path or settings_path()
    if not path.exists():
        return AppSettings()

    try:
        data = json.loads(path.read_text(encoding="utf-8").lstrip("\ufeff"))
    except (OSError, ValueError) as exc:
        logger.error("settings file unreadable, using defaults: %s", exc)
        return AppSettings()
    if not isinstance(data, dict):
        logger.error("settings file has unexpected shape, using defaults")
        return AppSettings()

    if not isinstance(data.get("voice"), dict) and not isinstance(data.get("listening"), dict):
        data = _from_legacy(data)

    voice_payload = _known(VoiceSettings, data.get("voice", {}))
    listening_payload = _known(ListeningSettings, data.get("listening", {}))
    try:
        if "tts_mode" in voice_payload:
            voice_payload["tts_mode"] = TTSMode.parse(voice_payload["tts_mode"])
        voice = VoiceSettings(**voice_payload)
        voice.speech_rate = max(MIN_SPEECH_RATE, min(MAX_SPEECH_RATE, int(voice.speech_rate)))
        listening = ListeningSettings(**listening_payload)
        listening.microphone_gain = float(listening.microphone_gain)
    except (TypeError, ValueError) as exc:
        logger.error("settings values invalid, using defaults: %s", exc)
        return AppSettings()
    return AppSettings(voice=voice, listening=listening)


def save_settings(settings: AppSettings, path: Path | None = None) -> None:
    """Persist settings to disk."""
    payload = asdict(settings)
    payload["voice"]["tts_mode"] = settings.voice.tts_mode.value
    path = path or settings_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")


# ---------------------------------------------------------------------- #
# Internals
# ---------------------------------------------------------------------- #
def _known(cls: type, payload: Any) -> dict[str, Any]:
    if not isinstance(payload, dict):
        return {}
    names = {item.name for item in fields(cls)}
    return {key: value for key, value in payload.items() if key in names}


def _from_legacy(data: dict[str, Any]) -> dict[str, dict[str, Any]]:
    converted: dict[str, dict[str, Any]] = {"voice": {}, "listening": {}}
    for key, value in data.items():
        target = _LEGACY_KEYS.get(key)
        if target is None:
            continue
        section, name = target
        converted[section][name] = value
    return converted
