import asyncio

import pytest

from jarvis_voice.runtime.conversation_timer import ConversationTimer


@pytest.mark.asyncio
async def test_fires_once_after_window():
    fired: list[int] = []
    timer = ConversationTimer(0.02, lambda: fired.append(1))
    timer.arm()
    assert timer.armed
    await asyncio.sleep(0.06)
    assert fired == [1]
    assert not timer.armed


@pytest.mark.asyncio
async def test_cancel_prevents_timeout():
    fired: list[int] = []
    timer = ConversationTimer(0.02, lambda: fired.append(1))
    timer.arm()
    timer.cancel()
    await asyncio.sleep(0.05)
    assert fired == []


@pytest.mark.asyncio
async def test_rearm_replaces_previous_timer():
    fired: list[int] = []
    timer = ConversationTimer(0.04, lambda: fired.append(1))
    timer.arm()
    await asyncio.sleep(0.02)
    timer.arm()
    await asyncio.sleep(0.03)
    assert fired == []
    await asyncio.sleep(0.04)
    assert fired == [1]
