"""Continuous recognizer built on the microphone, WebRTC VAD and faster-whisper."""

from __future__ import annotations

import asyncio
from typing import Optional

from ..core.errors import CapabilityUnavailableError, RecognizerBusyError
from ..core.logger import get_logger
from .base import RecognitionResult, RecognizerCallbacks
from .capture import MicrophoneCapture
from .transcriber import FasterWhisperEngine
from .vad import Endpointer, VoiceActivityDetector


logger = get_logger("audio")


class WhisperRecognizer:
    """Implements the ``Recognizer`` protocol.

    Frames arrive on the PortAudio thread and are marshalled to the loop.
    Each start opens a session; results and ends of a superseded session
    are dropped. Interim transcripts are produced only while the worker is
    idle so that finals are never delayed behind them.
    """

    def __init__(
        self,
        engine: FasterWhisperEngine,
        capture: MicrophoneCapture,
        vad: VoiceActivityDetector,
        loop: asyncio.AbstractEventLoop,
        *,
        endpoint_ms: int = 700,
        interim_every_ms: int = 600,
        max_idle_sec: float = 8.0,
    ) -> None:
        self.engine = engine
        self.capture = capture
        self.vad = vad
        self.loop = loop
        self.max_idle_sec = max_idle_sec
        self.interim_every_ms = interim_every_ms
        self._endpointer = Endpointer(
            frame_ms=capture.config.frame_duration_ms,
            endpoint_ms=endpoint_ms,
        )
        self._callbacks = RecognizerCallbacks()
        self._session = 0
        self._active = False
        self._heard_speech = False
        self._last_interim_ms = 0
        self._worker_lock = asyncio.Lock()
        self._idle_handle: Optional[asyncio.TimerHandle] = None
        self._tasks: set[asyncio.Task[None]] = set()
        self.capture.bind(self._on_frame)

    # ------------------------------------------------------------------ #
    # Recognizer protocol
    # ------------------------------------------------------------------ #
    def bind(self, callbacks: RecognizerCallbacks) -> None:
        self._callbacks = callbacks

    def start(self) -> None:
        if self._active:
            raise RecognizerBusyError("recognition has already started")
        self._session += 1
        self._active = True
        self._heard_speech = False
        self._last_interim_ms = 0
        self._endpointer.reset()
        try:
            self.capture.start()
        except CapabilityUnavailableError as exc:
            self._active = False
            logger.error("recognizer could not open the microphone: %s", exc)
            session = self._session
            self.loop.call_soon(self._emit_error, session, "audio-capture")
            self.loop.call_soon(self._emit_end, session)
            return
        self._idle_handle = self.loop.call_later(self.max_idle_sec, self._on_idle_timeout, self._session)
        self.loop.call_soon(self._emit_start, self._session)

    def stop(self) -> None:
        """End the session after transcribing what was already heard."""
        if not self._active:
            return
        self._close_input()
        session = self._session
        pcm = self._endpointer.flush()
        self._spawn(self._finish(session, pcm))

    def abort(self) -> None:
        if not self._active:
            return
        self._close_input()
        self._endpointer.reset()
        session = self._session
        self.loop.call_soon(self._emit_end, session)

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    def _close_input(self) -> None:
        self._active = False
        if self._idle_handle is not None:
            self._idle_handle.cancel()
            self._idle_handle = None
        self.capture.stop()

    def _on_frame(self, frame: bytes) -> None:
        # PortAudio thread
        try:
            self.loop.call_soon_threadsafe(self._handle_frame, self._session, frame)
        except RuntimeError:  # pragma: no cover - loop closed
            pass

    def _handle_frame(self, session: int, frame: bytes) -> None:
        if not self._active or session != self._session:
            return
        speech = self.vad.is_speech(frame, self.capture.config.sample_rate)
        if speech and not self._heard_speech:
            self._heard_speech = True
            if self._idle_handle is not None:
                self._idle_handle.cancel()
                self._idle_handle = None
        utterance = self._endpointer.push(frame, speech)
        if utterance is not None:
            self._last_interim_ms = 0
            self._spawn(self._transcribe(session, utterance, final=True))
            return
        spoken = self._endpointer.speech_ms
        if spoken - self._last_interim_ms >= self.interim_every_ms and not self._worker_lock.locked():
            self._last_interim_ms = spoken
            self._spawn(self._transcribe(session, self._endpointer.snapshot(), final=False))

    async def _transcribe(self, session: int, pcm: bytes, *, final: bool) -> None:
        if not final and self._worker_lock.locked():
            return
        async with self._worker_lock:
            if session != self._session:
                return
            try:
                text = await self.loop.run_in_executor(None, self.engine.transcribe_pcm, pcm)
            except Exception as exc:
                logger.exception("transcription failed")
                self._emit_error(session, f"transcription: {exc}")
                return
        if text and session == self._session:
            on_result = self._callbacks.on_result
            if on_result is not None:
                on_result(RecognitionResult(text=text, final=final))

    async def _finish(self, session: int, pcm: bytes | None) -> None:
        if pcm:
            await self._transcribe(session, pcm, final=True)
        else:
            async with self._worker_lock:
                pass
        self._emit_end(session)

    def _on_idle_timeout(self, session: int) -> None:
        if not self._active or session != self._session:
            return
        self._idle_handle = None
        self._close_input()
        self._endpointer.reset()
        self._emit_error(session, "no-speech")
        self._emit_end(session)

    def _emit_start(self, session: int) -> None:
        if session == self._session and self._callbacks.on_start is not None:
            self._callbacks.on_start()

    def _emit_error(self, session: int, error: str) -> None:
        if session == self._session and self._callbacks.on_error is not None:
            self._callbacks.on_error(error)

    def _emit_end(self, session: int) -> None:
        if session == self._session and not self._active and self._callbacks.on_end is not None:
            self._callbacks.on_end()

    def _spawn(self, coro) -> None:  # noqa: ANN001
        task = self.loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
