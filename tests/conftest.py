import asyncio
import os
import tempfile
from typing import Any, Callable, Optional

# Route logs and state away from the home directory before the package loads.
os.environ.setdefault("JARVIS_DATA_DIR", tempfile.mkdtemp(prefix="jarvis-test-"))

import httpx  # noqa: E402
import pytest  # noqa: E402
from fastapi import FastAPI, Request  # noqa: E402
from fastapi.responses import JSONResponse, PlainTextResponse  # noqa: E402

from jarvis_voice.audio.base import (  # noqa: E402
    RecognitionResult,
    RecognizerCallbacks,
    SynthesisCallbacks,
)
from jarvis_voice.core.config import Config, Timings  # noqa: E402
from jarvis_voice.core.errors import RecognizerBusyError  # noqa: E402
from jarvis_voice.services.api import JarvisAPI  # noqa: E402


FAST_TIMINGS = Timings(
    wake_cooldown=0.1,
    wake_restart_delay=0.02,
    wake_force_restart_delay=0.01,
    capture_auto_stop_delay=0.01,
    no_speech_resume_delay=0.01,
    resume_settle=0.03,
    conversation_settle=0.03,
    conversation_window=0.15,
    pomodoro_tick=0.01,
)


class FakeRecognizer:
    """Recognizer whose callbacks fire synchronously, like a fast engine."""

    def __init__(self) -> None:
        self.callbacks = RecognizerCallbacks()
        self.started = False
        self.start_calls = 0
        self.stop_calls = 0
        self.abort_calls = 0
        self.on_before_start: Optional[Callable[[], None]] = None

    def bind(self, callbacks: RecognizerCallbacks) -> None:
        self.callbacks = callbacks

    def start(self) -> None:
        if self.started:
            raise RecognizerBusyError("recognition has already started")
        if self.on_before_start is not None:
            self.on_before_start()
        self.start_calls += 1
        self.started = True
        if self.callbacks.on_start:
            self.callbacks.on_start()

    def stop(self) -> None:
        if not self.started:
            return
        self.stop_calls += 1
        self.end()

    def abort(self) -> None:
        if not self.started:
            return
        self.abort_calls += 1
        self.end()

    # test helpers
    def emit(self, text: str, final: bool = True) -> None:
        if self.callbacks.on_result:
            self.callbacks.on_result(RecognitionResult(text=text, final=final))

    def error(self, name: str) -> None:
        if self.callbacks.on_error:
            self.callbacks.on_error(name)

    def end(self) -> None:
        self.started = False
        if self.callbacks.on_end:
            self.callbacks.on_end()


class FakeSynthesizer:
    """Synthesizer that "plays" for ``duration`` seconds on the loop."""

    def __init__(self, duration: float = 0.05, fail_with: str | None = None) -> None:
        self.duration = duration
        self.fail_with = fail_with
        self.spoken: list[dict[str, Any]] = []
        self.cancel_calls = 0
        self._callbacks: SynthesisCallbacks | None = None
        self._handles: list[asyncio.Handle] = []

    def speak(self, text: str, *, voice: str, rate: float, callbacks: SynthesisCallbacks) -> None:
        loop = asyncio.get_running_loop()
        self.spoken.append({"text": text, "voice": voice, "rate": rate})
        self._callbacks = callbacks
        if self.fail_with is not None:
            self._handles = [
                loop.call_soon(callbacks.on_error, self.fail_with),
                loop.call_soon(self._end),
            ]
            return
        self._handles = [
            loop.call_soon(callbacks.on_start),
            loop.call_later(self.duration, self._end),
        ]

    def cancel(self) -> None:
        self.cancel_calls += 1
        for handle in self._handles:
            handle.cancel()
        self._handles = []
        self._end()

    def voices(self) -> list[str]:
        return ["local-amy", "local-ryan"]

    def _end(self) -> None:
        callbacks, self._callbacks = self._callbacks, None
        if callbacks is not None and callbacks.on_end is not None:
            callbacks.on_end()


def make_server(reply: str = "Lights on") -> FastAPI:
    """Fake assistant server recording every request in ``app.state.calls``."""
    app = FastAPI()
    app.state.calls = []
    app.state.command_status = 200
    app.state.command_body = None
    app.state.command_delay = 0.0
    app.state.speak_status = 200
    app.state.voices = ["en-US-AriaNeural", "en-GB-RyanNeural"]

    @app.post("/command")
    async def command(request: Request):
        payload = await request.json()
        app.state.calls.append(("/command", payload))
        if app.state.command_delay:
            await asyncio.sleep(app.state.command_delay)
        if app.state.command_body is not None:
            return PlainTextResponse(app.state.command_body)
        if app.state.command_status != 200:
            return JSONResponse({"error": "boom"}, status_code=app.state.command_status)
        return {"content": reply, "model": "test-model", "taskType": "chat", "ttsMode": "edge"}

    @app.post("/api/tts/speak")
    async def speak(request: Request):
        payload = await request.json()
        app.state.calls.append(("/api/tts/speak", payload))
        if app.state.speak_status != 200:
            return JSONResponse({"success": False}, status_code=app.state.speak_status)
        return {"success": True, "ttsDuration": 0.0}

    @app.post("/api/tts/stop")
    async def stop():
        app.state.calls.append(("/api/tts/stop", {}))
        return {"success": True}

    @app.post("/api/tts/mode")
    async def mode(request: Request):
        app.state.calls.append(("/api/tts/mode", await request.json()))
        return {"success": True}

    @app.post("/api/tts/voice")
    async def voice(request: Request):
        app.state.calls.append(("/api/tts/voice", await request.json()))
        return {"success": True}

    @app.get("/api/tts/voices")
    async def voices():
        return {"voices": app.state.voices}

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app


def calls_to(server: FastAPI, path: str) -> list[dict[str, Any]]:
    return [payload for called, payload in server.state.calls if called == path]


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


@pytest.fixture()
def server() -> FastAPI:
    return make_server()


@pytest.fixture()
def api(server: FastAPI) -> JarvisAPI:
    return JarvisAPI(Config(server_url="http://test"), transport=httpx.ASGITransport(app=server))


@pytest.fixture()
def timings() -> Timings:
    return FAST_TIMINGS
