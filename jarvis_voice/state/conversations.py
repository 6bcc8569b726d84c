"""Conversation history kept on disk between runs."""

from __future__ import annotations

import json
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..core.logger import get_logger
from ..services.schemas import Message


logger = get_logger("voice")

DEFAULT_TITLE = "New Chat"
TITLE_LENGTH = 30


@dataclass(slots=True)
class Conversation:
    """Single conversation; messages are append-only."""

    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    title: str = DEFAULT_TITLE
    messages: list[Message] = field(default_factory=list)
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    def append(self, message: Message) -> None:
        if not self.messages and self.title == DEFAULT_TITLE:
            self.title = message.content[:TITLE_LENGTH] + "..."
        self.messages.append(message)
        self.updated_at = time.time()

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "messages": [message.to_payload() for message in self.messages],
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "Conversation":
        return cls(
            id=str(payload.get("id") or uuid.uuid4().hex),
            title=str(payload.get("title") or DEFAULT_TITLE),
            messages=[Message.from_payload(item) for item in payload.get("messages", []) if isinstance(item, dict)],
            created_at=float(payload.get("createdAt") or time.time()),
            updated_at=float(payload.get("updatedAt") or time.time()),
        )


class ConversationBook:
    """All conversations plus the active one, persisted as JSON."""

    def __init__(self, path: Path | None = None) -> None:
        self.path = path
        self.conversations: list[Conversation] = []
        self.active_id: str | None = None

    # ------------------------------------------------------------------ #
    # Persistence
    # ------------------------------------------------------------------ #
    def load(self) -> None:
        if self.path is None or not self.path.exists():
            return
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.error("conversations file unreadable: %s", exc)
            return
        items = data.get("conversations", []) if isinstance(data, dict) else []
        self.conversations = [Conversation.from_payload(item) for item in items if isinstance(item, dict)]
        active = data.get("activeId") if isinstance(data, dict) else None
        self.active_id = active if any(conv.id == active for conv in self.conversations) else None

    def save(self) -> None:
        if self.path is None:
            return
        payload = {
            "activeId": self.active_id,
            "conversations": [conv.to_payload() for conv in self.conversations],
        }
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        except OSError as exc:
            logger.error("could not persist conversations: %s", exc)

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    @property
    def active(self) -> Conversation | None:
        for conversation in self.conversations:
            if conversation.id == self.active_id:
                return conversation
        return None

    def create(self) -> Conversation:
        conversation = Conversation()
        self.conversations.insert(0, conversation)
        self.active_id = conversation.id
        self.save()
        return conversation

    def select(self, conversation_id: str) -> Conversation:
        for conversation in self.conversations:
            if conversation.id == conversation_id:
                self.active_id = conversation_id
                self.save()
                return conversation
        raise KeyError(conversation_id)

    def current_messages(self) -> list[Message]:
        active = self.active
        return list(active.messages) if active else []

    def add_message(self, message: Message) -> Conversation:
        """Append to the active conversation, creating one if needed."""
        conversation = self.active or self.create()
        conversation.append(message)
        self.save()
        return conversation

    def clear_active(self) -> None:
        self.active_id = None
        self.save()
