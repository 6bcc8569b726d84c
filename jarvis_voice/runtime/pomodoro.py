"""Pomodoro work/break timer kept in sync with the assistant server."""

from __future__ import annotations

import asyncio
import json
import time
from dataclasses import asdict, dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from ..core.logger import get_logger
from ..services.schemas import PomodoroSync


logger = get_logger("pomodoro")

WORK_MINUTES = 25
BREAK_MINUTES = 5


class PomodoroPhase(str, Enum):
    IDLE = "idle"
    WORK = "work"
    BREAK = "break"
    PAUSED = "paused"


@dataclass(slots=True)
class PomodoroSnapshot:
    phase: PomodoroPhase
    time_left: int
    total_time: int
    is_running: bool
    show_continue_prompt: bool


class PomodoroStore:
    """JSON file holding an in-flight phase so it survives restarts."""

    def __init__(self, path: Path | None) -> None:
        self.path = path

    def load(self) -> Optional[dict]:
        if self.path is None or not self.path.exists():
            return None
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.error("failed to load pomodoro state: %s", exc)
            return None
        return data if isinstance(data, dict) else None

    def save(self, phase: PomodoroPhase, time_left: int, total_time: int, resume_phase: PomodoroPhase | None = None) -> None:
        if self.path is None:
            return
        payload = {
            "phase": phase.value,
            "timeLeft": time_left,
            "totalTime": total_time,
            "resumePhase": resume_phase.value if resume_phase else None,
            "timestamp": time.time(),
        }
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(payload), encoding="utf-8")
        except OSError as exc:
            logger.error("failed to save pomodoro state: %s", exc)

    def clear(self) -> None:
        if self.path is not None:
            self.path.unlink(missing_ok=True)


class PomodoroSession:
    """Work/break countdown with a continue prompt after each cycle.

    The countdown is advanced by :meth:`tick`; when an event loop is
    running a background task calls it every ``tick_interval`` seconds.
    """

    def __init__(
        self,
        store: PomodoroStore | None = None,
        *,
        work_minutes: int = WORK_MINUTES,
        break_minutes: int = BREAK_MINUTES,
        tick_interval: float = 1.0,
    ) -> None:
        self.store = store or PomodoroStore(None)
        self.work_seconds = work_minutes * 60
        self.break_seconds = break_minutes * 60
        self.tick_interval = tick_interval
        self.phase = PomodoroPhase.IDLE
        self.time_left = self.work_seconds
        self.total_time = self.work_seconds
        self.is_running = False
        self.show_continue_prompt = False
        self._resume_phase: PomodoroPhase | None = None
        self._ticker: Optional[asyncio.Task[None]] = None
        self.on_phase_complete: Callable[[PomodoroPhase], None] | None = None
        self.on_change: Callable[[PomodoroSnapshot], None] | None = None

    # ------------------------------------------------------------------ #
    # Views
    # ------------------------------------------------------------------ #
    @property
    def progress(self) -> float:
        """Elapsed share of the current phase, in percent."""
        if self.total_time <= 0:
            return 0.0
        return (self.total_time - self.time_left) / self.total_time * 100

    @property
    def formatted_time(self) -> str:
        minutes, seconds = divmod(max(0, self.time_left), 60)
        return f"{minutes:02d}:{seconds:02d}"

    def snapshot(self) -> PomodoroSnapshot:
        return PomodoroSnapshot(
            phase=self.phase,
            time_left=self.time_left,
            total_time=self.total_time,
            is_running=self.is_running,
            show_continue_prompt=self.show_continue_prompt,
        )

    # ------------------------------------------------------------------ #
    # Commands
    # ------------------------------------------------------------------ #
    def restore(self) -> bool:
        """Bring back a saved in-flight phase, stopped. Returns True if restored."""
        data = self.store.load()
        if not data:
            return False
        try:
            phase = PomodoroPhase(data.get("phase"))
            time_left = int(data.get("timeLeft", 0))
            total_time = int(data.get("totalTime", 0))
        except (TypeError, ValueError):
            logger.warning("ignoring malformed pomodoro state")
            return False
        if phase is PomodoroPhase.IDLE or time_left <= 0 or total_time <= 0:
            return False
        self.phase = phase
        self.total_time = total_time
        self.time_left = min(time_left, total_time)
        self.is_running = False
        if phase is PomodoroPhase.PAUSED:
            resume = data.get("resumePhase")
            self._resume_phase = PomodoroPhase(resume) if resume in ("work", "break") else PomodoroPhase.WORK
        logger.info("restored pomodoro %s with %s left", phase.value, self.formatted_time)
        self._changed()
        return True

    def start_timer(self, minutes: int | None = None) -> None:
        """Start a fresh work phase, whatever the current phase."""
        self._begin(PomodoroPhase.WORK, (minutes * 60) if minutes else self.work_seconds)
        logger.info("work phase started for %d seconds", self.total_time)

    def start_break_timer(self, minutes: int | None = None) -> None:
        self._begin(PomodoroPhase.BREAK, (minutes * 60) if minutes else self.break_seconds)
        logger.info("break phase started for %d seconds", self.total_time)

    def reset_to_work_mode(self) -> None:
        """Idle with a full work phase ready."""
        self._set_idle(show_prompt=False)

    def pause(self) -> None:
        if self.phase not in (PomodoroPhase.WORK, PomodoroPhase.BREAK):
            self.is_running = False
            self._changed()
            return
        self._resume_phase = self.phase
        self.phase = PomodoroPhase.PAUSED
        self.is_running = False
        self._changed()

    def resume(self) -> None:
        if self.phase is not PomodoroPhase.PAUSED:
            if self.phase is not PomodoroPhase.IDLE and not self.is_running:
                self.is_running = True
                self._ensure_ticker()
                self._changed()
            return
        self.phase = self._resume_phase or PomodoroPhase.WORK
        self._resume_phase = None
        self.is_running = True
        self._ensure_ticker()
        self._changed()

    def reset(self) -> None:
        """Back to idle and forget the saved state."""
        self._set_idle(show_prompt=False)
        self.store.clear()

    def continue_session(self) -> None:
        self.show_continue_prompt = False
        self._begin(PomodoroPhase.WORK, self.work_seconds)

    def dismiss_prompt(self) -> None:
        self.show_continue_prompt = False
        self.reset()

    def apply_sync(self, sync: PomodoroSync) -> None:
        """Apply a server sync command; it overrides local state."""
        logger.info("sync %s duration=%s", sync.action, sync.duration)
        if sync.action == "start_work":
            self.start_timer(sync.duration)
        elif sync.action == "start_break":
            self.start_break_timer(sync.duration)
        elif sync.action == "reset_to_work":
            self.reset_to_work_mode()
        elif sync.action == "stop":
            self.reset()

    def apply_command(self, action: str) -> None:
        """Legacy ``pomodoro_command`` actions."""
        if action == "start":
            self.start_timer()
        elif action in ("stop", "pause"):
            self.pause()
        elif action == "reset":
            self.reset()
        else:
            logger.warning("unknown pomodoro command %r", action)

    def tick(self) -> None:
        """Advance the countdown by one second."""
        if not self.is_running or self.phase not in (PomodoroPhase.WORK, PomodoroPhase.BREAK):
            return
        self.time_left = max(0, self.time_left - 1)
        if self.time_left > 0:
            self._changed()
            return
        finished = self.phase
        logger.info("%s phase complete", finished.value)
        if self.on_phase_complete is not None:
            self.on_phase_complete(finished)
        if finished is PomodoroPhase.WORK:
            self._begin(PomodoroPhase.BREAK, self.break_seconds)
        else:
            self._set_idle(show_prompt=True)

    def close(self) -> None:
        if self._ticker is not None:
            self._ticker.cancel()
            self._ticker = None

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    def _begin(self, phase: PomodoroPhase, seconds: int) -> None:
        self.phase = phase
        self.time_left = seconds
        self.total_time = seconds
        self.is_running = True
        self.show_continue_prompt = False
        self._resume_phase = None
        self._ensure_ticker()
        self._changed()

    def _set_idle(self, *, show_prompt: bool) -> None:
        self.phase = PomodoroPhase.IDLE
        self.time_left = self.work_seconds
        self.total_time = self.work_seconds
        self.is_running = False
        self.show_continue_prompt = show_prompt
        self._resume_phase = None
        self._changed()

    def _changed(self) -> None:
        if self.phase is PomodoroPhase.IDLE:
            self.store.clear()
        else:
            self.store.save(self.phase, self.time_left, self.total_time, self._resume_phase)
        if self.on_change is not None:
            self.on_change(self.snapshot())

    def _ensure_ticker(self) -> None:
        if self._ticker is not None and not self._ticker.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return  # driven manually through tick()
        self._ticker = loop.create_task(self._run_ticker())

    async def _run_ticker(self) -> None:
        while self.is_running:
            await asyncio.sleep(self.tick_interval)
            self.tick()


def snapshot_dict(snapshot: PomodoroSnapshot) -> dict:
    payload = asdict(snapshot)
    payload["phase"] = snapshot.phase.value
    return payload
