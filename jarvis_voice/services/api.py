"""HTTP client used to talk to the assistant server."""

from __future__ import annotations

from typing import Any, Sequence

import httpx

from ..config.settings import TTSMode
from ..core.config import Config
from ..core.errors import DispatchError, RemoteServiceError
from ..core.logger import get_logger
from .schemas import CommandResult, Message, SpeakResult


logger = get_logger("api")


class JarvisAPI:
    """Async client for the command and speech endpoints."""

    def __init__(self, config: Config, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.config = config
        timeout = httpx.Timeout(
            connect=config.http_connect_timeout,
            read=config.command_timeout,
            write=config.http_connect_timeout,
            pool=None,
        )
        self._client = httpx.AsyncClient(
            base_url=config.server_url,
            verify=config.verify_ssl,
            timeout=timeout,
            transport=transport,
        )

    # ------------------------------------------------------------------ #
    # Commands
    # ------------------------------------------------------------------ #
    async def send_command(self, message: str, history: Sequence[Message] = ()) -> CommandResult:
        """Send a chat command with the conversation history.

        Any failure (timeout, transport error, non-2xx status, unreadable
        body) raises :class:`DispatchError` carrying ``message``.
        """
        payload = {
            "type": "chat",
            "payload": {
                "message": message,
                "conversationHistory": [item.to_payload() for item in history],
            },
        }
        try:
            response = await self._client.post("/command", json=payload)
        except httpx.TimeoutException as exc:
            raise DispatchError("Timed out waiting for the assistant.", text=message) from exc
        except httpx.HTTPError as exc:
            raise DispatchError(f"Assistant unreachable: {exc}", text=message) from exc
        if not response.is_success:
            raise DispatchError(
                f"Assistant replied with HTTP {response.status_code}.",
                text=message,
                status_code=response.status_code,
            )
        try:
            data = response.json()
        except ValueError as exc:
            snippet = response.text[:200]
            raise DispatchError(f"Non-JSON reply from the assistant: {snippet}", text=message) from exc
        if not isinstance(data, dict):
            raise DispatchError("Unexpected reply shape from the assistant.", text=message)
        return CommandResult.from_payload(data)

    # ------------------------------------------------------------------ #
    # Speech
    # ------------------------------------------------------------------ #
    async def speak(self, text: str) -> SpeakResult:
        """Ask the server to speak ``text`` with its own voice."""
        try:
            response = await self._client.post("/api/tts/speak", json={"text": text})
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as exc:
            raise RemoteServiceError(
                f"Speech request failed with HTTP {exc.response.status_code}.",
                status_code=exc.response.status_code,
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise RemoteServiceError(f"Speech request failed: {exc}") from exc
        if not isinstance(data, dict):
            data = {}
        duration = data.get("ttsDuration")
        return SpeakResult(
            success=bool(data.get("success", True)),
            duration=float(duration) if isinstance(duration, (int, float)) else None,
        )

    async def stop_speech(self) -> bool:
        return await self._post_quietly("/api/tts/stop", {})

    async def set_tts_mode(self, mode: TTSMode) -> bool:
        return await self._post_quietly("/api/tts/mode", {"mode": mode.wire})

    async def set_voice(self, voice: str) -> bool:
        return await self._post_quietly("/api/tts/voice", {"voice": voice})

    async def list_voices(self) -> list[str]:
        """Return the voices offered by the server (empty on failure)."""
        try:
            response = await self._client.get("/api/tts/voices")
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("voice list unavailable: %s", exc)
            return []
        voices = data.get("voices", []) if isinstance(data, dict) else []
        names: list[str] = []
        for voice in voices:
            if isinstance(voice, str):
                names.append(voice)
            elif isinstance(voice, dict) and voice.get("name"):
                names.append(str(voice["name"]))
        return names

    # ------------------------------------------------------------------ #
    # Misc
    # ------------------------------------------------------------------ #
    async def ping(self) -> bool:
        """Return True when ``/health`` answers 200."""
        try:
            response = await self._client.get("/health")
        except httpx.HTTPError:
            return False
        return response.status_code == 200

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def _post_quietly(self, path: str, payload: dict[str, Any]) -> bool:
        try:
            response = await self._client.post(path, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("POST %s failed: %s", path, exc)
            return False
        return True
