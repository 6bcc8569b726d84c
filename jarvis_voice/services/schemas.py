"""Data schemas exchanged with the assistant server."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from typing import Any, Literal, Optional


Role = Literal["user", "assistant"]


@dataclass(slots=True, frozen=True)
class Message:
    """Conversation message."""

    role: Role
    content: str
    timestamp: float = field(default_factory=time.time)
    model: Optional[str] = None
    task_type: Optional[str] = None

    def to_payload(self) -> dict[str, Any]:
        """Serialize the message the way the server expects history entries."""
        payload: dict[str, Any] = {
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp,
        }
        if self.model:
            payload["model"] = self.model
        if self.task_type:
            payload["taskType"] = self.task_type
        return payload

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "Message":
        role = payload.get("role")
        if role not in ("user", "assistant"):
            role = "assistant"
        try:
            timestamp = float(payload.get("timestamp") or time.time())
        except (TypeError, ValueError):
            timestamp = time.time()
        return cls(
            role=role,
            content=str(payload.get("content") or ""),
            timestamp=timestamp,
            model=payload.get("model"),
            task_type=payload.get("taskType") or payload.get("task_type"),
        )


@dataclass(slots=True)
class CommandResult:
    """Reply of the ``/command`` endpoint."""

    content: str
    model: Optional[str] = None
    task_type: Optional[str] = None
    tts_mode: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "CommandResult":
        raw = payload.get("content", "")
        return cls(
            content=raw if isinstance(raw, str) else str(raw),
            model=payload.get("model"),
            task_type=payload.get("taskType"),
            tts_mode=payload.get("ttsMode"),
        )


@dataclass(slots=True)
class SpeakResult:
    """Reply of ``/api/tts/speak``."""

    success: bool
    duration: Optional[float] = None


@dataclass(slots=True)
class PushEvent:
    """Envelope carried by the realtime channel."""

    event: str
    data: dict[str, Any] = field(default_factory=dict)
    id: Optional[str] = None

    @classmethod
    def from_raw(cls, raw: str | bytes) -> Optional["PushEvent"]:
        """Parse a frame; returns None for anything that is not an event envelope."""
        try:
            payload = json.loads(raw)
        except (TypeError, ValueError):
            return None
        if not isinstance(payload, dict) or not isinstance(payload.get("event"), str):
            return None
        data = payload.get("data")
        if not isinstance(data, dict):
            data = {"value": data} if data is not None else {}
        ident = payload.get("id")
        return cls(event=payload["event"], data=data, id=str(ident) if ident is not None else None)

    def to_json(self) -> str:
        payload: dict[str, Any] = {"event": self.event, "data": self.data}
        if self.id is not None:
            payload["id"] = self.id
        return json.dumps(payload)


@dataclass(slots=True)
class PomodoroSync:
    """``pomodoro_sync`` payload."""

    action: Literal["start_work", "start_break", "reset_to_work", "stop"]
    duration: Optional[int] = None  # minutes
    phase: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> Optional["PomodoroSync"]:
        action = payload.get("action")
        if action not in ("start_work", "start_break", "reset_to_work", "stop"):
            return None
        duration = payload.get("duration")
        try:
            duration = int(duration) if duration is not None else None
        except (TypeError, ValueError):
            duration = None
        return cls(action=action, duration=duration, phase=payload.get("phase"))


@dataclass(slots=True)
class PhaseComplete:
    """``pomodoro_phase_complete`` payload."""

    message: str
    phase: Optional[str] = None
    next_phase: Optional[Literal["break", "prompt"]] = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "PhaseComplete":
        next_phase = payload.get("nextPhase")
        if next_phase not in ("break", "prompt"):
            next_phase = None
        return cls(
            message=str(payload.get("message") or ""),
            phase=payload.get("phase"),
            next_phase=next_phase,
        )
