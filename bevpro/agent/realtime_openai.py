from __future__ import annotations

import base64
import json
import os
from urllib.parse import parse_qs, urlparse
from typing import Any, AsyncIterator, Dict, List, NamedTuple, Optional

import structlog
from openai import AsyncAzureOpenAI, AsyncOpenAI

from ..backend.errors import ExternalServiceError
from ..config import Settings
from ..realtime.channel import (
    AssistantText,
    AudioDelta,
    ConnectionLost,
    ProviderError,
    ProviderEvent,
    ResponseDone,
    SpeechStarted,
    SpeechStopped,
    ToolCall,
    ToolResult,
    Transcript,
)

logger = structlog.get_logger(__name__)

AZURE_REALTIME_API_VERSION = "2024-10-01-preview"


class AzureEndpoint(NamedTuple):
    """The parts of an ``AZURE_OPENAI_ENDPOINT`` value.

    Accepts the resource root or a full realtime URL such as
    ``https://r.openai.azure.com/openai/deployments/rt/realtime?api-version=...``;
    a deployment or api version found in the URL is lifted out.
    """

    base: Optional[str] = None
    deployment: Optional[str] = None
    api_version: Optional[str] = None

    @classmethod
    def parse(cls, url: str) -> "AzureEndpoint":
        parsed = urlparse(url or "")
        if not (parsed.scheme and parsed.netloc):
            return cls()
        query = parse_qs(parsed.query)
        deployment = query.get("deployment", [None])[0]
        path = [seg for seg in parsed.path.split("/") if seg]
        if "deployments" in path:
            cut = path.index("deployments")
            # a path deployment beats the query parameter
            deployment = next(iter(path[cut + 1 : cut + 2]), deployment)
            path = path[:cut]
        elif path[-1:] == ["realtime"]:
            path = path[:-1]
        base = "/".join([f"{parsed.scheme}://{parsed.netloc}", *path]) + "/"
        return cls(base, deployment, query.get("api-version", [None])[0])


class RealtimeClientConfig:
    """Which OpenAI endpoint the realtime channel talks to.

    Uses environment variables (Azure wins when fully configured):
      - AZURE_OPENAI_API_KEY
      - AZURE_OPENAI_ENDPOINT
      - AZURE_OPENAI_DEPLOYMENT (realtime deployment name)
      - AZURE_OPENAI_API_VERSION (default: 2024-10-01-preview)
    and otherwise ``Settings.openai_api_key`` / ``Settings.realtime_model``.
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.azure_key = (os.getenv("AZURE_OPENAI_API_KEY") or "").strip()
        raw_endpoint = (os.getenv("AZURE_OPENAI_ENDPOINT") or "").strip()
        self.deployment = (os.getenv("AZURE_OPENAI_DEPLOYMENT") or "").strip()
        self.api_version = (os.getenv("AZURE_OPENAI_API_VERSION") or AZURE_REALTIME_API_VERSION).strip()

        parts = AzureEndpoint.parse(raw_endpoint)
        self.endpoint = parts.base or raw_endpoint or None
        self.deployment = self.deployment or parts.deployment or ""
        self.api_version = parts.api_version or self.api_version

    @property
    def use_azure(self) -> bool:
        return bool(self.azure_key and self.endpoint and self.deployment)

    @property
    def available(self) -> bool:
        return self.use_azure or bool(self.settings.openai_api_key)

    @property
    def model(self) -> str:
        return self.deployment if self.use_azure else self.settings.realtime_model

    def client(self):
        if self.use_azure:
            return AsyncAzureOpenAI(
                api_key=self.azure_key,
                api_version=self.api_version,
                azure_endpoint=self.endpoint,
            )
        if self.settings.openai_api_key:
            return AsyncOpenAI(api_key=self.settings.openai_api_key)
        raise ExternalServiceError("OpenAI realtime is not configured")


def session_config(settings: Settings, instructions: str, tools: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {
        "modalities": ["audio", "text"],
        "instructions": instructions,
        "voice": settings.realtime_voice,
        "input_audio_format": "pcm16",
        "output_audio_format": "pcm16",
        "input_audio_transcription": {"model": "whisper-1"},
        "turn_detection": {"type": "server_vad"},
        "tools": tools,
        "tool_choice": "auto",
    }


class OpenAIRealtimeChannel:
    """:class:`ProviderChannel` over the OpenAI realtime websocket."""

    def __init__(self, config: RealtimeClientConfig, instructions: str, tools: List[Dict[str, Any]]) -> None:
        self.config = config
        self.instructions = instructions
        self.tools = tools
        self._manager = None
        self._connection = None

    async def connect(self) -> None:
        try:
            self._manager = self.config.client().beta.realtime.connect(model=self.config.model)
            self._connection = await self._manager.enter()
            await self._connection.session.update(
                session=session_config(self.config.settings, self.instructions, self.tools)
            )
        except ExternalServiceError:
            raise
        except Exception as exc:
            self._connection = None
            raise ExternalServiceError(f"Realtime connect failed: {exc}") from exc
        logger.info("Realtime provider connected", model=self.config.model, azure=self.config.use_azure)

    def _require(self):
        if self._connection is None:
            raise ExternalServiceError("Realtime channel is not connected")
        return self._connection

    async def send_audio(self, pcm16: bytes) -> None:
        await self._require().input_audio_buffer.append(audio=base64.b64encode(pcm16).decode("ascii"))

    async def send_tool_result(self, result: ToolResult) -> None:
        connection = self._require()
        body = result.output if result.ok else {"error": result.error}
        await connection.conversation.item.create(
            item={
                "type": "function_call_output",
                "call_id": result.correlation_id,
                "output": json.dumps(body, ensure_ascii=False, default=str),
            }
        )
        await connection.response.create()

    async def cancel_response(self) -> None:
        await self._require().response.cancel()

    async def events(self) -> AsyncIterator[ProviderEvent]:
        connection = self._require()
        try:
            async for event in connection:
                mapped = map_event(event)
                if mapped is not None:
                    yield mapped
        except Exception as exc:
            yield ConnectionLost(reason=str(exc) or type(exc).__name__)
            return
        yield ConnectionLost(reason="closed by provider")

    async def close(self) -> None:
        connection, self._connection = self._connection, None
        if connection is not None:
            await connection.close()


def map_event(event: Any) -> Optional[ProviderEvent]:
    """Translate one realtime server event into a provider event (or ``None``)."""
    kind = getattr(event, "type", "")
    if kind == "response.audio.delta":
        return AudioDelta(data=base64.b64decode(event.delta))
    if kind == "response.done":
        return ResponseDone()
    if kind == "input_audio_buffer.speech_started":
        return SpeechStarted()
    if kind == "input_audio_buffer.speech_stopped":
        return SpeechStopped()
    if kind == "response.function_call_arguments.done":
        try:
            arguments = json.loads(event.arguments or "{}")
        except ValueError:
            logger.warning("Unparseable tool arguments", command=event.name, raw=event.arguments)
            arguments = {}
        if not isinstance(arguments, dict):
            arguments = {}
        return ToolCall(name=event.name, arguments=arguments, correlation_id=event.call_id)
    if kind == "conversation.item.input_audio_transcription.completed":
        return Transcript(text=event.transcript or "")
    if kind == "response.audio_transcript.done":
        return AssistantText(text=event.transcript or "")
    if kind == "error":
        error = getattr(event, "error", None)
        return ProviderError(
            message=getattr(error, "message", None) or "provider error",
            code=getattr(error, "code", None) or "provider_error",
        )
    return None


async def create_ephemeral_session(settings: Settings, instructions: str, tools: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Mint a short-lived client secret for a browser-side realtime session."""
    config = RealtimeClientConfig(settings)
    if not config.available:
        raise ExternalServiceError("OpenAI realtime is not configured")
    body = session_config(settings, instructions, tools)
    try:
        session = await config.client().beta.realtime.sessions.create(model=config.model, **body)
    except Exception as exc:
        logger.warning("Ephemeral session request failed", error=str(exc))
        raise ExternalServiceError(f"Failed to create realtime session: {exc}") from exc
    return session.model_dump()


__all__ = [
    "AzureEndpoint",
    "OpenAIRealtimeChannel",
    "RealtimeClientConfig",
    "create_ephemeral_session",
    "map_event",
    "session_config",
]
