"""One-shot speech capture after a wake phrase (or push-to-talk)."""

from __future__ import annotations

import asyncio
from typing import Callable, Optional

from ..audio.base import BENIGN_RECOGNIZER_ERRORS, RecognitionResult, Recognizer, RecognizerCallbacks
from ..core.config import Timings
from ..core.errors import RecognizerBusyError
from ..core.logger import get_logger


logger = get_logger("voice")


class SpeechCaptureSession:
    """Collect one utterance and hand the final transcript over.

    Final fragments accumulate in a buffer; interim fragments are shown
    but replaced by the next one. When the recognizer session ends the
    buffered text is delivered, or ``on_no_speech`` fires when nothing was
    heard.
    """

    def __init__(
        self,
        recognizer: Recognizer,
        *,
        on_transcript: Callable[[str], None],
        on_no_speech: Callable[[], None],
        on_listening: Optional[Callable[[bool], None]] = None,
        on_activity: Optional[Callable[[str], None]] = None,
        timings: Timings | None = None,
    ) -> None:
        self.recognizer = recognizer
        self.timings = timings or Timings()
        self._on_transcript = on_transcript
        self._on_no_speech = on_no_speech
        self._on_listening = on_listening
        self._on_activity = on_activity
        self._active = False
        self._auto_stop = False
        self._stopping = False
        self._buffer = ""
        self._interim = ""
        self._stop_handle: Optional[asyncio.TimerHandle] = None
        recognizer.bind(
            RecognizerCallbacks(
                on_start=self._on_start,
                on_result=self._on_result,
                on_error=self._on_error,
                on_end=self._on_end,
            )
        )

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    @property
    def active(self) -> bool:
        return self._active

    @property
    def transcript(self) -> str:
        """Display transcript: committed text plus the current interim."""
        return f"{self._buffer}{self._interim}"

    def start(self, *, auto_stop: bool = True) -> bool:
        """Open the microphone for one utterance. Returns False if it could not."""
        if self._active:
            return True
        self._reset()
        self._active = True
        self._auto_stop = auto_stop
        try:
            self.recognizer.start()
        except RecognizerBusyError:
            logger.debug("capture recognizer already running")
        except Exception:
            logger.exception("speech capture failed to start")
            self._active = False
            return False
        return True

    def stop(self) -> None:
        """Finish the utterance; the transcript is delivered on end."""
        if not self._active or self._stopping:
            return
        self._stopping = True
        self._cancel_auto_stop()
        self.recognizer.stop()

    def abort(self) -> None:
        """Drop the utterance without delivering anything."""
        if not self._active:
            return
        self._active = False
        self._cancel_auto_stop()
        self._reset()
        self.recognizer.abort()
        self._emit_listening(False)

    # ------------------------------------------------------------------ #
    # Recognizer callbacks
    # ------------------------------------------------------------------ #
    def _on_start(self) -> None:
        if self._active:
            self._emit_listening(True)

    def _on_result(self, result: RecognitionResult) -> None:
        if not self._active:
            return
        if result.final:
            self._buffer += result.text.strip() + " "
            self._interim = ""
            if self._auto_stop:
                self._schedule_auto_stop()
        else:
            self._interim = result.text
        if self._on_activity is not None:
            self._on_activity(self.transcript)

    def _on_error(self, error: str) -> None:
        if error in BENIGN_RECOGNIZER_ERRORS:
            logger.debug("capture recognizer reported %s", error)
        else:
            logger.warning("capture recognizer error: %s", error)

    def _on_end(self) -> None:
        if not self._active:
            return
        self._active = False
        self._cancel_auto_stop()
        text = self._buffer.strip()
        self._reset()
        self._emit_listening(False)
        if text:
            self._on_transcript(text)
        else:
            self._on_no_speech()

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    def _schedule_auto_stop(self) -> None:
        self._cancel_auto_stop()
        loop = asyncio.get_running_loop()
        self._stop_handle = loop.call_later(self.timings.capture_auto_stop_delay, self._auto_stop_fire)

    def _auto_stop_fire(self) -> None:
        self._stop_handle = None
        self.stop()

    def _cancel_auto_stop(self) -> None:
        if self._stop_handle is not None:
            self._stop_handle.cancel()
            self._stop_handle = None

    def _reset(self) -> None:
        self._buffer = ""
        self._interim = ""
        self._stopping = False

    def _emit_listening(self, listening: bool) -> None:
        if self._on_listening is not None:
            self._on_listening(listening)
