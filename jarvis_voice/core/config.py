"""Environment level configuration for the voice assistant."""

from __future__ import annotations

import json
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


CONFIG_FILE = Path("jarvis.json")


@dataclass(slots=True, frozen=True)
class Timings:
    """Delays and windows (seconds) used by the voice runtime."""

    wake_cooldown: float = 1.0
    wake_restart_delay: float = 0.5
    wake_force_restart_delay: float = 0.1
    capture_auto_stop_delay: float = 0.3
    no_speech_resume_delay: float = 0.5
    resume_settle: float = 1.0
    conversation_settle: float = 1.5
    conversation_window: float = 15.0
    pomodoro_tick: float = 1.0


class Config(BaseSettings):
    """Process wide settings, read from the environment, `.env` and `jarvis.json`."""

    model_config = SettingsConfigDict(
        env_prefix="JARVIS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Assistant server
    server_url: str = "http://localhost:7777"
    realtime_url: str = "ws://localhost:7777/ws"
    verify_ssl: bool = True
    http_connect_timeout: float = 10.0
    command_timeout: float = 30.0
    realtime_reconnect_sec: float = 2.0
    realtime_ack_timeout_sec: float = 10.0

    # Local data
    data_dir: str | None = None

    # Logs
    log_dir: str | None = None
    log_level: str = "INFO"
    log_rotate_mb: int = 5
    log_retention_days: int = 7

    # Voice runtime timings
    wake_cooldown_sec: float = 1.0
    wake_restart_delay_sec: float = 0.5
    wake_force_restart_delay_sec: float = 0.1
    capture_auto_stop_delay_sec: float = 0.3
    no_speech_resume_delay_sec: float = 0.5
    resume_settle_sec: float = 1.0
    conversation_settle_sec: float = 1.5
    conversation_window_sec: float = 15.0

    # Pomodoro
    pomodoro_tick_sec: float = 1.0
    pomodoro_work_minutes: int = 25
    pomodoro_break_minutes: int = 5

    # Local audio stack
    input_device: str | None = None
    output_device: str | None = None
    vad_aggressiveness: int = 2
    whisper_model: str = "small.en"
    whisper_device: str = "cpu"
    whisper_compute_type: str = "int8"
    recognizer_language: str = "en"
    recognizer_endpoint_ms: int = 700
    recognizer_max_idle_sec: float = 8.0
    piper_voice_dir: str | None = None

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            cls.json_config_settings_source,
            file_secret_settings,
        )

    @staticmethod
    def json_config_settings_source() -> dict[str, object]:
        """Load `jarvis.json` from the working directory when present."""
        if CONFIG_FILE.is_file():
            try:
                return json.loads(CONFIG_FILE.read_text(encoding="utf-8"))
            except ValueError:
                return {}
        return {}

    def timings(self) -> Timings:
        return Timings(
            wake_cooldown=self.wake_cooldown_sec,
            wake_restart_delay=self.wake_restart_delay_sec,
            wake_force_restart_delay=self.wake_force_restart_delay_sec,
            capture_auto_stop_delay=self.capture_auto_stop_delay_sec,
            no_speech_resume_delay=self.no_speech_resume_delay_sec,
            resume_settle=self.resume_settle_sec,
            conversation_settle=self.conversation_settle_sec,
            conversation_window=self.conversation_window_sec,
            pomodoro_tick=self.pomodoro_tick_sec,
        )


@lru_cache()
def get_config() -> Config:
    """Return the cached configuration."""
    return Config()
