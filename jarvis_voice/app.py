"""Application wiring: builds the orchestrator and runs it until interrupted."""

from __future__ import annotations

import asyncio
import contextlib
import signal
from pathlib import Path
from typing import Callable, Optional

from .config.paths import conversations_path, models_dir, pomodoro_path
from .config.settings import AppSettings
from .config.store import load_settings, save_settings
from .core.config import Config, get_config
from .core.errors import CapabilityUnavailableError, DispatchError
from .core.logger import get_logger
from .runtime.controller import VoiceOrchestrator
from .runtime.pomodoro import PomodoroSession, PomodoroSnapshot, PomodoroStore
from .services.api import JarvisAPI
from .services.realtime import RealtimeChannel
from .services.schemas import Message
from .state.app_state import AppState, ChatMode, VoiceState
from .state.conversations import ConversationBook


logger = get_logger("voice")


def build_orchestrator(
    config: Config | None = None,
    settings: AppSettings | None = None,
    *,
    with_audio: bool = True,
    loop: asyncio.AbstractEventLoop | None = None,
) -> VoiceOrchestrator:
    """Assemble the runtime; missing audio capabilities disable their feature."""
    config = config or get_config()
    settings = settings or load_settings()
    state = AppState(settings=settings)
    api = JarvisAPI(config)
    channel = RealtimeChannel(
        config.realtime_url,
        reconnect_delay=config.realtime_reconnect_sec,
        ack_timeout=config.realtime_ack_timeout_sec,
    )
    wake = capture = synthesizer = gain = None
    if with_audio:
        loop = loop or asyncio.get_running_loop()
        wake, capture, gain = _build_recognizers(config, settings, loop)
        synthesizer = _build_synthesizer(config, loop)
    return VoiceOrchestrator(
        state,
        api,
        wake_recognizer=wake,
        capture_recognizer=capture,
        synthesizer=synthesizer,
        channel=channel,
        conversations=ConversationBook(conversations_path()),
        pomodoro=PomodoroSession(
            PomodoroStore(pomodoro_path()),
            work_minutes=config.pomodoro_work_minutes,
            break_minutes=config.pomodoro_break_minutes,
            tick_interval=config.pomodoro_tick_sec,
        ),
        timings=config.timings(),
        save_settings=save_settings,
        gain=gain,
    )


def _build_recognizers(config: Config, settings: AppSettings, loop: asyncio.AbstractEventLoop):  # noqa: ANN202
    try:
        from .audio.capture import CaptureConfig, MicrophoneCapture
        from .audio.gain import MicrophoneGain
        from .audio.recognizer import WhisperRecognizer
        from .audio.transcriber import FasterWhisperEngine, WhisperConfig
        from .audio.vad import VADConfig, VoiceActivityDetector
    except ImportError as exc:
        logger.warning("speech recognition disabled, audio extra not installed: %s", exc)
        return None, None, None

    gain = MicrophoneGain(settings.listening.microphone_gain)
    try:
        engine = FasterWhisperEngine(
            WhisperConfig(
                model=config.whisper_model,
                device=config.whisper_device,
                compute_type=config.whisper_compute_type,
                language=config.recognizer_language,
            )
        )
    except (OSError, RuntimeError, ValueError) as exc:
        logger.warning("speech recognition disabled, model unavailable: %s", exc)
        return None, None, None

    def recognizer() -> WhisperRecognizer:
        return WhisperRecognizer(
            engine,
            MicrophoneCapture(CaptureConfig(device_name=config.input_device), gain=gain),
            VoiceActivityDetector(VADConfig(aggressiveness=config.vad_aggressiveness)),
            loop,
            endpoint_ms=config.recognizer_endpoint_ms,
            max_idle_sec=config.recognizer_max_idle_sec,
        )

    return recognizer(), recognizer(), gain


def _build_synthesizer(config: Config, loop: asyncio.AbstractEventLoop):  # noqa: ANN202
    try:
        from .audio.playback import PlaybackConfig, SpeechPlayback
        from .audio.tts import PiperSynthesizer
    except ImportError as exc:
        logger.warning("local speech disabled, audio extra not installed: %s", exc)
        return None
    voice_dir = Path(config.piper_voice_dir).expanduser() if config.piper_voice_dir else models_dir() / "piper"
    try:
        return PiperSynthesizer(voice_dir, SpeechPlayback(PlaybackConfig(device_name=config.output_device)), loop)
    except CapabilityUnavailableError as exc:
        logger.warning("local speech disabled: %s", exc)
        return None


async def serve(
    orchestrator: VoiceOrchestrator,
    *,
    chat: bool = False,
    echo: Callable[[str], None] = print,
    stop_event: Optional[asyncio.Event] = None,
) -> None:
    """Run until ``stop_event`` is set (SIGINT/SIGTERM by default)."""
    loop = asyncio.get_running_loop()
    stop_event = stop_event or asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, stop_event.set)

    def on_state(state: VoiceState) -> None:
        echo(f"[{state.value}]")

    def on_message(message: Message) -> None:
        echo(f"{message.role}: {message.content}")

    def on_error(exc: Exception) -> None:
        echo(f"error: {exc}")

    def on_pomodoro(snapshot: PomodoroSnapshot) -> None:
        echo(f"[pomodoro {snapshot.phase.value} {snapshot.time_left // 60:02d}:{snapshot.time_left % 60:02d}]")

    orchestrator.attach(on_state=on_state, on_message=on_message, on_error=on_error, on_pomodoro=on_pomodoro)
    if chat:
        orchestrator.set_chat_mode(ChatMode.CHAT)
    orchestrator.start()
    reader = loop.create_task(_read_chat(orchestrator, stop_event)) if chat else None
    try:
        await stop_event.wait()
    finally:
        if reader is not None:
            reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reader
        await orchestrator.shutdown()


async def _read_chat(orchestrator: VoiceOrchestrator, stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    while not stop_event.is_set():
        try:
            line = await loop.run_in_executor(None, input, "> ")
        except EOFError:
            stop_event.set()
            return
        if line.strip() in ("/quit", "/exit"):
            stop_event.set()
            return
        try:
            await orchestrator.submit_chat(line)
        except DispatchError:
            continue  # already reported through on_error


def run(*, chat: bool = False, with_audio: bool = True) -> None:
    """Start the assistant loop."""

    async def _main() -> None:
        orchestrator = build_orchestrator(with_audio=with_audio)
        await serve(orchestrator, chat=chat)

    asyncio.run(_main())
