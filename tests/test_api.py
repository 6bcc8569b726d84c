import httpx
import pytest

from conftest import calls_to
from jarvis_voice.config.settings import TTSMode
from jarvis_voice.core.config import Config
from jarvis_voice.core.errors import DispatchError
from jarvis_voice.services.api import JarvisAPI
from jarvis_voice.services.schemas import Message


@pytest.mark.asyncio
async def test_send_command_posts_message_and_history(api, server):
    history = [
        Message(role="user", content="hi", timestamp=1.0),
        Message(role="assistant", content="hello", timestamp=2.0, model="m", task_type="chat"),
    ]
    result = await api.send_command("turn on the lights", history)

    assert result.content == "Lights on"
    assert result.model == "test-model"
    assert result.tts_mode == "edge"
    (payload,) = calls_to(server, "/command")
    assert payload["type"] == "chat"
    assert payload["payload"]["message"] == "turn on the lights"
    assert payload["payload"]["conversationHistory"] == [
        {"role": "user", "content": "hi", "timestamp": 1.0},
        {"role": "assistant", "content": "hello", "timestamp": 2.0, "model": "m", "taskType": "chat"},
    ]


@pytest.mark.asyncio
async def test_send_command_http_error_keeps_text(api, server):
    server.state.command_status = 500
    with pytest.raises(DispatchError) as info:
        await api.send_command("turn on the lights")
    assert info.value.text == "turn on the lights"
    assert info.value.status_code == 500


@pytest.mark.asyncio
async def test_send_command_non_json_reply(api, server):
    server.state.command_body = "<html>oops</html>"
    with pytest.raises(DispatchError, match="Non-JSON"):
        await api.send_command("hello")


@pytest.mark.asyncio
async def test_send_command_unreachable_server():
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    api = JarvisAPI(Config(server_url="http://test"), transport=httpx.MockTransport(refuse))
    with pytest.raises(DispatchError) as info:
        await api.send_command("hello")
    assert info.value.text == "hello"
    await api.close()


@pytest.mark.asyncio
async def test_tts_mode_uses_wire_names(api, server):
    assert await api.set_tts_mode(TTSMode.LOCAL)
    assert await api.set_tts_mode(TTSMode.REMOTE)
    assert calls_to(server, "/api/tts/mode") == [{"mode": "system"}, {"mode": "edge"}]


@pytest.mark.asyncio
async def test_list_voices_accepts_names_and_objects(api, server):
    server.state.voices = ["en-US-AriaNeural", {"name": "en-GB-RyanNeural"}, {"id": 3}]
    assert await api.list_voices() == ["en-US-AriaNeural", "en-GB-RyanNeural"]


@pytest.mark.asyncio
async def test_quiet_posts_report_failure():
    def broken(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503)

    api = JarvisAPI(Config(server_url="http://test"), transport=httpx.MockTransport(broken))
    assert await api.stop_speech() is False
    assert await api.set_voice("x") is False
    assert await api.list_voices() == []
    assert await api.ping() is False
    await api.close()


@pytest.mark.asyncio
async def test_ping(api):
    assert await api.ping()
