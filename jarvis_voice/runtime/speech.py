"""Speech output through the local synthesizer or the assistant server."""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional

from ..audio.base import SynthesisCallbacks, Synthesizer
from ..config.settings import TTSMode, VoiceSettings
from ..core.errors import RemoteServiceError, SpeechCancelledError, SpeechError, SpeechPlaybackError
from ..core.logger import get_logger
from ..services.api import JarvisAPI
from ..services.realtime import RealtimeChannel


logger = get_logger("speech")

# Extra wait for channel events after the server reported the utterance length.
REMOTE_EVENT_GRACE_SEC = 5.0
INTERRUPT_ERRORS = frozenset({"interrupted", "canceled", "cancelled"})


class SpeechOutputController:
    """Speak one utterance at a time and report its lifecycle.

    Each utterance produces ``on_starting`` followed by exactly one terminal
    event: ``on_finished`` or ``on_stopped(by_user)``. Late or duplicate
    backend callbacks are ignored.
    """

    def __init__(
        self,
        settings: Callable[[], VoiceSettings],
        api: JarvisAPI,
        *,
        synthesizer: Synthesizer | None = None,
        channel: RealtimeChannel | None = None,
    ) -> None:
        self._settings = settings
        self.api = api
        self.synthesizer = synthesizer
        self.channel = channel
        self._lock = asyncio.Lock()
        self._generation = 0
        self._backend: Optional[TTSMode] = None
        self._future: Optional[asyncio.Future[None]] = None
        self._started = False
        self._terminal_sent = True
        self._cancel_requested = False
        self._grace_handle: Optional[asyncio.TimerHandle] = None
        self._on_starting: Callable[[], None] = lambda: None
        self._on_finished: Callable[[], None] = lambda: None
        self._on_stopped: Callable[[bool], None] = lambda by_user: None
        if channel is not None:
            channel.on("audio_starting", self._on_audio_starting)
            channel.on("audio_finished", self._on_audio_finished)
            channel.on("audio_stopped", self._on_audio_stopped)

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    def bind(
        self,
        *,
        on_starting: Callable[[], None],
        on_finished: Callable[[], None],
        on_stopped: Callable[[bool], None],
    ) -> None:
        self._on_starting = on_starting
        self._on_finished = on_finished
        self._on_stopped = on_stopped

    @property
    def speaking(self) -> bool:
        return self._backend is not None and not self._terminal_sent

    @property
    def backend(self) -> Optional[TTSMode]:
        return self._backend

    async def speak(self, text: str) -> None:
        """Speak ``text`` and return when playback ends.

        Raises :class:`SpeechCancelledError` when stopped by the user and
        :class:`SpeechPlaybackError` when the backend fails.
        """
        text = text.strip()
        if not text:
            return
        async with self._lock:
            settings = self._settings()
            mode = settings.tts_mode
            if mode is TTSMode.LOCAL and self.synthesizer is None:
                logger.warning("local speech unavailable, using the server voice")
                mode = TTSMode.REMOTE
            self._generation += 1
            generation = self._generation
            future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
            self._future = future
            self._backend = mode
            self._started = False
            self._terminal_sent = False
            self._cancel_requested = False
            logger.info("speaking %d chars via %s", len(text), mode.value)
            try:
                if mode is TTSMode.LOCAL:
                    self._speak_local(generation, text, settings)
                else:
                    await self._speak_remote(generation, text)
                await future
            finally:
                if generation == self._generation:
                    self._backend = None
                    self._future = None
                    self._cancel_grace()

    async def stop(self) -> None:
        """Interrupt the current utterance; safe to call at any time."""
        backend = self._backend
        generation = self._generation
        self._cancel_requested = True
        self._finish(generation, stopped=True, by_user=True)
        if self._future is None:
            self._backend = None
        if backend is TTSMode.LOCAL and self.synthesizer is not None:
            self.synthesizer.cancel()
        elif backend is TTSMode.REMOTE or self._settings().tts_mode is TTSMode.REMOTE:
            await self.api.stop_speech()

    # ------------------------------------------------------------------ #
    # Local backend
    # ------------------------------------------------------------------ #
    def _speak_local(self, generation: int, text: str, settings: VoiceSettings) -> None:
        assert self.synthesizer is not None
        callbacks = SynthesisCallbacks(
            on_start=lambda: self._started_playing(generation),
            on_end=lambda: self._finish(generation),
            on_error=lambda error: self._local_error(generation, error),
        )
        self.synthesizer.speak(
            text,
            voice=settings.voice,
            rate=settings.rate_multiplier(),
            callbacks=callbacks,
        )

    def _local_error(self, generation: int, error: str) -> None:
        if self._cancel_requested or error in INTERRUPT_ERRORS:
            self._finish(generation, stopped=True, by_user=True)
            return
        logger.error("local speech failed: %s", error)
        self._finish(generation, error=SpeechPlaybackError(error))

    # ------------------------------------------------------------------ #
    # Remote backend
    # ------------------------------------------------------------------ #
    async def _speak_remote(self, generation: int, text: str) -> None:
        channel_live = self.channel is not None and self.channel.connected
        if not channel_live:
            self._started_playing(generation)
        try:
            result = await self.api.speak(text)
        except RemoteServiceError as exc:
            logger.error("remote speech failed: %s", exc)
            self._finish(generation, error=SpeechPlaybackError(str(exc)))
            return
        if not result.success:
            self._finish(generation, error=SpeechPlaybackError("server could not speak"))
            return
        if not channel_live or self.channel is None or not self.channel.connected:
            self._finish(generation)
            return
        if generation == self._generation and not self._terminal_sent:
            loop = asyncio.get_running_loop()
            self._grace_handle = loop.call_later(
                (result.duration or 0.0) + REMOTE_EVENT_GRACE_SEC,
                self._grace_expired,
                generation,
            )

    def _grace_expired(self, generation: int) -> None:
        self._grace_handle = None
        if generation == self._generation and not self._terminal_sent:
            logger.warning("no end-of-audio event from the server, assuming finished")
            self._finish(generation)

    def _cancel_grace(self) -> None:
        if self._grace_handle is not None:
            self._grace_handle.cancel()
            self._grace_handle = None

    def _on_audio_starting(self, data: dict[str, Any]) -> None:
        if self._backend is TTSMode.LOCAL:
            return
        if self._backend is None:
            # server initiated speech
            self._generation += 1
            self._backend = TTSMode.REMOTE
            self._future = None
            self._started = False
            self._terminal_sent = False
            self._cancel_requested = False
        self._started_playing(self._generation)

    def _on_audio_finished(self, data: dict[str, Any]) -> None:
        if self._backend is not TTSMode.REMOTE:
            return
        generation = self._generation
        self._finish(generation)
        if self._future is None:
            self._backend = None

    def _on_audio_stopped(self, data: dict[str, Any]) -> None:
        if self._backend is not TTSMode.REMOTE:
            return
        generation = self._generation
        by_user = self._cancel_requested or data.get("reason") == "user_stop"
        self._finish(generation, stopped=True, by_user=by_user)
        if self._future is None:
            self._backend = None

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #
    def _started_playing(self, generation: int) -> None:
        if generation != self._generation or self._terminal_sent or self._started:
            return
        self._started = True
        self._on_starting()

    def _finish(
        self,
        generation: int,
        *,
        stopped: bool = False,
        by_user: bool = False,
        error: SpeechError | None = None,
    ) -> None:
        if generation != self._generation or self._terminal_sent:
            return
        self._terminal_sent = True
        self._cancel_grace()
        future = self._future
        if stopped or error is not None:
            self._on_stopped(by_user)
        else:
            self._on_finished()
        if future is None or future.done():
            return
        if stopped:
            future.set_exception(SpeechCancelledError())
        elif error is not None:
            future.set_exception(error)
        else:
            future.set_result(None)
