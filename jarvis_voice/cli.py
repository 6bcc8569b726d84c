from __future__ import annotations

import asyncio
import json
from dataclasses import asdict
from typing import Any, Awaitable, Callable, Optional, TypeVar

import typer

from .config.paths import pomodoro_path, settings_path
from .config.settings import MAX_SPEECH_RATE, MIN_SPEECH_RATE, TTSMode
from .config.store import load_settings, save_settings
from .core.config import get_config
from .core.errors import JarvisError
from .runtime.pomodoro import PomodoroStore
from .services.api import JarvisAPI


T = TypeVar("T")

cli = typer.Typer(name="jarvis", help="Jarvis voice assistant")
config_cli = typer.Typer(help="Configuration")
settings_cli = typer.Typer(help="User settings")
pomodoro_cli = typer.Typer(help="Pomodoro timer")

cli.add_typer(config_cli, name="config")
cli.add_typer(settings_cli, name="settings")
cli.add_typer(pomodoro_cli, name="pomodoro")

_BOOL_KEYS = {
    "wake_word_enabled": "listening",
    "continuous_listening": "listening",
    "auto_voice_detection": "listening",
}


def _with_api(action: Callable[[JarvisAPI], Awaitable[T]]) -> T:
    async def _run() -> T:
        api = JarvisAPI(get_config())
        try:
            return await action(api)
        finally:
            await api.close()

    return asyncio.run(_run())


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise typer.BadParameter(f"expected a boolean, got {value!r}")


@cli.command()
def run(
    chat: bool = typer.Option(False, "--chat", help="Type messages instead of speaking"),
    audio: bool = typer.Option(True, "--audio/--no-audio", help="Enable microphone and local speech"),
) -> None:
    """Start the assistant loop."""
    from .app import run as run_app

    run_app(chat=chat, with_audio=audio)


@cli.command()
def voices() -> None:
    """List the voices offered by the server."""
    names = _with_api(lambda api: api.list_voices())
    if not names:
        typer.echo("no voices available")
        raise typer.Exit(code=1)
    for name in names:
        typer.echo(name)


@cli.command()
def say(text: str) -> None:
    """Have the server speak TEXT."""
    try:
        result = _with_api(lambda api: api.speak(text))
    except JarvisError as exc:
        typer.echo(f"error: {exc}")
        raise typer.Exit(code=1)
    typer.echo(json.dumps({"success": result.success, "duration": result.duration}))


@cli.command()
def ask(text: str) -> None:
    """Send TEXT to the assistant and print the reply."""
    try:
        result = _with_api(lambda api: api.send_command(text))
    except JarvisError as exc:
        typer.echo(f"error: {exc}")
        raise typer.Exit(code=1)
    typer.echo(result.content)


@config_cli.command("show")
def config_show() -> None:
    typer.echo(json.dumps(get_config().model_dump(), ensure_ascii=False, default=str))


@settings_cli.command("show")
def settings_show() -> None:
    settings = load_settings()
    payload: dict[str, Any] = asdict(settings)
    payload["voice"]["tts_mode"] = settings.voice.tts_mode.value
    typer.echo(json.dumps(payload, ensure_ascii=False))


@settings_cli.command("set")
def settings_set(key: str, value: str) -> None:
    """Change one user setting, e.g. ``speech_rate 200``."""
    settings = load_settings()
    if key == "tts_mode":
        try:
            settings.voice.tts_mode = TTSMode.parse(value)
        except ValueError as exc:
            raise typer.BadParameter(str(exc)) from exc
    elif key == "voice":
        settings.voice.voice = value
    elif key == "speech_rate":
        settings.voice.speech_rate = max(MIN_SPEECH_RATE, min(MAX_SPEECH_RATE, int(value)))
    elif key == "microphone_gain":
        settings.listening.microphone_gain = float(value)
    elif key == "wake_words":
        settings.listening.wake_words = [item.strip() for item in value.split(",") if item.strip()]
    elif key in _BOOL_KEYS:
        setattr(settings.listening, key, _parse_bool(value))
    else:
        typer.echo(f"unknown setting: {key}")
        raise typer.Exit(code=1)
    save_settings(settings)
    typer.echo(f"{key} updated ({settings_path()})")


@pomodoro_cli.command("status")
def pomodoro_status() -> None:
    data: Optional[dict] = PomodoroStore(pomodoro_path()).load()
    if not data:
        typer.echo(json.dumps({"phase": "idle"}))
        return
    typer.echo(json.dumps(data, ensure_ascii=False))


@pomodoro_cli.command("reset")
def pomodoro_reset() -> None:
    PomodoroStore(pomodoro_path()).clear()
    typer.echo("pomodoro reset")


if __name__ == "__main__":
    cli()
