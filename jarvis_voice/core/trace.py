from __future__ import annotations

import uuid
from contextvars import ContextVar


_cycle_id: ContextVar[str | None] = ContextVar("cycle_id", default=None)


def new_cycle_id() -> str:
    cid = uuid.uuid4().hex[:12]
    _cycle_id.set(cid)
    return cid


def set_cycle_id(cid: str | None) -> None:
    _cycle_id.set(cid)


def get_cycle_id() -> str | None:
    return _cycle_id.get()
