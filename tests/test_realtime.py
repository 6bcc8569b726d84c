import asyncio
import json

import pytest
from websockets.asyncio.server import serve

from conftest import wait_until
from jarvis_voice.core.errors import ChannelNotConnectedError, DispatchError
from jarvis_voice.services.realtime import RealtimeChannel


async def _echo_server(ws):
    await ws.send(json.dumps({"event": "pomodoro_sync", "data": {"action": "start_work", "duration": 25}}))
    async for raw in ws:
        frame = json.loads(raw)
        if frame.get("event") != "command":
            continue
        message = frame["data"]["payload"]["message"]
        if message == "ignore me":
            continue
        await ws.send(
            json.dumps(
                {"event": "command_response", "id": frame["id"], "data": {"content": f"ok: {message}"}}
            )
        )


@pytest.mark.asyncio
async def test_channel_round_trip_and_push_events():
    async with serve(_echo_server, "127.0.0.1", 0) as server:
        port = server.sockets[0].getsockname()[1]
        channel = RealtimeChannel(f"ws://127.0.0.1:{port}", reconnect_delay=0.05, ack_timeout=0.3)
        statuses: list[str] = []
        synced: list[dict] = []
        channel.on_status(statuses.append)
        channel.on("pomodoro_sync", synced.append)

        channel.start()
        assert await channel.wait_connected(2.0)
        await wait_until(lambda: synced)
        assert synced == [{"action": "start_work", "duration": 25}]

        reply = await channel.emit_command({"type": "chat", "payload": {"message": "continue pomodoro"}})
        assert reply == {"content": "ok: continue pomodoro"}

        with pytest.raises(DispatchError) as info:
            await channel.emit_command({"type": "chat", "payload": {"message": "ignore me"}})
        assert info.value.text == "ignore me"

        await channel.close()
        assert statuses[0] == "online"
        assert statuses[-1] == "offline"
        assert not channel.connected


@pytest.mark.asyncio
async def test_emit_while_offline_raises():
    channel = RealtimeChannel("ws://127.0.0.1:9")
    with pytest.raises(ChannelNotConnectedError):
        await channel.emit_command({"type": "chat", "payload": {"message": "hi"}})


@pytest.mark.asyncio
async def test_dispatch_survives_bad_frames_and_failing_handlers():
    channel = RealtimeChannel("ws://unused")
    seen: list[dict] = []

    def broken(data):
        raise RuntimeError("handler bug")

    async def record(data):
        seen.append(data)

    channel.on("audio_finished", broken)
    channel.on("audio_finished", record)

    await channel.dispatch("not json")
    await channel.dispatch(json.dumps(["event", "audio_finished"]))
    await channel.dispatch(json.dumps({"event": "audio_finished", "data": {"id": 1}}))
    assert seen == [{"id": 1}]

    channel.off("audio_finished", record)
    await channel.dispatch(json.dumps({"event": "audio_finished"}))
    assert seen == [{"id": 1}]


@pytest.mark.asyncio
async def test_unreachable_server_keeps_retrying_until_closed():
    channel = RealtimeChannel("ws://127.0.0.1:9", reconnect_delay=0.01)
    statuses: list[str] = []
    channel.on_status(statuses.append)
    channel.start()
    assert not await channel.wait_connected(0.1)
    await channel.close()
    assert statuses and set(statuses) == {"offline"}
    await asyncio.sleep(0)
