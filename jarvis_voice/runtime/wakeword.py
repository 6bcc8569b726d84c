"""Always-on wake phrase spotter."""

from __future__ import annotations

import asyncio
from typing import Callable, Optional, Sequence

from ..audio.base import BENIGN_RECOGNIZER_ERRORS, RecognitionResult, Recognizer, RecognizerCallbacks
from ..core.config import Timings
from ..core.errors import RecognizerBusyError
from ..core.logger import get_logger
from ..state.app_state import WakeWordState


logger = get_logger("wakeword")


class WakeWordDetector:
    """Listen continuously and raise one detection per spoken wake phrase.

    The detector owns its recognizer session. After a detection it enters a
    cooldown and stops the recognizer; when a session ends on its own it is
    restarted unless the detector was stopped, disabled, is cooling down, or
    ``can_listen`` says the orchestrator is busy.
    """

    def __init__(
        self,
        recognizer: Recognizer,
        phrases: Sequence[str],
        *,
        on_detected: Callable[[], None],
        can_listen: Callable[[], bool] = lambda: True,
        on_state: Optional[Callable[[WakeWordState], None]] = None,
        timings: Timings | None = None,
    ) -> None:
        self.recognizer = recognizer
        self.phrases = [phrase.lower() for phrase in phrases if phrase.strip()]
        self.timings = timings or Timings()
        self._on_detected = on_detected
        self._can_listen = can_listen
        self._on_state = on_state
        self._state = WakeWordState.IDLE
        self._enabled = True
        self._suspended = True
        self._starting = False
        self._active = False
        self._cooldown_handle: Optional[asyncio.TimerHandle] = None
        self._restart_handle: Optional[asyncio.TimerHandle] = None
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
    def state(self) -> WakeWordState:
        return self._state

    @property
    def listening(self) -> bool:
        return self._state is WakeWordState.LISTENING

    @property
    def enabled(self) -> bool:
        return self._enabled

    def set_enabled(self, enabled: bool) -> None:
        self._enabled = enabled
        if not enabled:
            self.stop()

    def set_phrases(self, phrases: Sequence[str]) -> None:
        self.phrases = [phrase.lower() for phrase in phrases if phrase.strip()]

    def start(self) -> None:
        """Begin listening; a no-op when already listening or starting."""
        self._suspended = False
        self._cancel_restart()
        if self._state is WakeWordState.COOLDOWN:
            return  # cooldown expiry restarts
        self._start_recognizer()

    def stop(self) -> None:
        """Stop listening and suspend auto-restart until the next start."""
        self._suspended = True
        self._cancel_restart()
        if self._state is WakeWordState.LISTENING:
            self._set_state(WakeWordState.IDLE)
        if self._active or self._starting:
            self._active = False
            self._starting = False
            self.recognizer.abort()

    def force_restart(self) -> None:
        """Abort whatever runs and start again shortly after."""
        self._suspended = False
        self._cancel_restart()
        if self._active or self._starting:
            self._active = False
            self._starting = False
            self.recognizer.abort()
        if self._state is WakeWordState.COOLDOWN:
            return
        if self._state is WakeWordState.LISTENING:
            self._set_state(WakeWordState.IDLE)
        self._schedule_restart(self.timings.wake_force_restart_delay)

    def close(self) -> None:
        self.stop()
        if self._cooldown_handle is not None:
            self._cooldown_handle.cancel()
            self._cooldown_handle = None
        self._set_state(WakeWordState.IDLE)

    # ------------------------------------------------------------------ #
    # Recognizer callbacks
    # ------------------------------------------------------------------ #
    def _on_start(self) -> None:
        self._starting = False
        if self._suspended or not self._enabled or not self._can_listen():
            logger.debug("recognizer started while not allowed to listen, aborting")
            self._active = False
            self.recognizer.abort()
            return
        self._active = True
        if self._state is not WakeWordState.COOLDOWN:
            self._set_state(WakeWordState.LISTENING)

    def _on_result(self, result: RecognitionResult) -> None:
        if self._state is not WakeWordState.LISTENING:
            return
        transcript = result.text.lower()
        if not any(phrase in transcript for phrase in self.phrases):
            return
        logger.info("wake phrase detected in %r", result.text)
        self._set_state(WakeWordState.COOLDOWN)
        loop = asyncio.get_running_loop()
        self._cooldown_handle = loop.call_later(self.timings.wake_cooldown, self._end_cooldown)
        self._active = False
        self.recognizer.stop()
        self._on_detected()

    def _on_error(self, error: str) -> None:
        if error in BENIGN_RECOGNIZER_ERRORS:
            logger.debug("recognizer reported %s", error)
            return
        logger.warning("recognizer error: %s", error)
        if error == "network":
            self._schedule_restart(self.timings.wake_restart_delay)

    def _on_end(self) -> None:
        self._active = False
        self._starting = False
        if self._state is WakeWordState.LISTENING:
            self._set_state(WakeWordState.IDLE)
        if self._may_restart():
            self._schedule_restart(self.timings.wake_restart_delay)

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    def _may_restart(self) -> bool:
        return (
            self._enabled
            and not self._suspended
            and self._state is not WakeWordState.COOLDOWN
            and self._can_listen()
        )

    def _start_recognizer(self) -> None:
        if self._active or self._starting:
            return
        if not self._may_restart():
            return
        self._starting = True
        try:
            self.recognizer.start()
        except RecognizerBusyError:
            logger.debug("recognizer already started, treating as listening")
            self._starting = False
            self._active = True
            self._set_state(WakeWordState.LISTENING)
        except Exception:
            self._starting = False
            logger.exception("wake word recognizer failed to start, retrying on next end")

    def _schedule_restart(self, delay: float) -> None:
        self._cancel_restart()
        loop = asyncio.get_running_loop()
        self._restart_handle = loop.call_later(delay, self._restart)

    def _restart(self) -> None:
        self._restart_handle = None
        self._start_recognizer()

    def _cancel_restart(self) -> None:
        if self._restart_handle is not None:
            self._restart_handle.cancel()
            self._restart_handle = None

    def _end_cooldown(self) -> None:
        self._cooldown_handle = None
        if self._state is WakeWordState.COOLDOWN:
            self._set_state(WakeWordState.IDLE)
        if self._may_restart():
            self._start_recognizer()

    def _set_state(self, state: WakeWordState) -> None:
        if state is self._state:
            return
        self._state = state
        if self._on_state is not None:
            self._on_state(state)
