"""Jarvis voice assistant front end."""

from __future__ import annotations

from typing import Any

__all__ = ["run"]


def run(*args: Any, **kwargs: Any) -> Any:
    """Start the voice assistant (lazy import of the audio stack)."""
    from .app import run as _run

    return _run(*args, **kwargs)
