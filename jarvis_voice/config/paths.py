"""Filesystem helpers for the voice assistant."""

from __future__ import annotations

from pathlib import Path

from ..core.config import get_config


def data_dir() -> Path:
    """Directory holding settings, conversations and pomodoro state."""
    configured = get_config().data_dir
    root = Path(configured).expanduser() if configured else Path.home() / ".jarvis-voice"
    root.mkdir(parents=True, exist_ok=True)
    return root


def log_dir() -> Path:
    """Directory storing rotated JSON logs."""
    configured = get_config().log_dir
    root = Path(configured).expanduser() if configured else data_dir() / "logs"
    root.mkdir(parents=True, exist_ok=True)
    return root


def models_dir() -> Path:
    """Directory storing local speech models."""
    root = data_dir() / "models"
    root.mkdir(parents=True, exist_ok=True)
    return root


def settings_path() -> Path:
    return data_dir() / "settings.json"


def conversations_path() -> Path:
    return data_dir() / "conversations.json"


def pomodoro_path() -> Path:
    return data_dir() / "pomodoro.json"
