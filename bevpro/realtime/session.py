"""One duplex voice conversation between a client socket and the provider.

The session is a small state machine driven by two inputs: control and audio
frames from the client, and typed events from the :class:`ProviderChannel`.
Provider I/O, outbound audio pacing and tool execution run as separate tasks;
tool calls are executed one at a time by a single worker.
"""
from __future__ import annotations

import asyncio
import json
import time
import uuid
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

import structlog

from ..agent.registry import CommandRegistry, ToolContext
from ..backend.errors import error_payload
from ..backend.venue import Venue
from ..config import Settings
from .audio import (
    TAG_ASSISTANT_AUDIO,
    TAG_CLIENT_AUDIO,
    CaptureEncoder,
    PlaybackScheduler,
    frame,
    pcm16_duration,
    unframe,
)
from .channel import (
    AssistantText,
    AudioDelta,
    ConnectionLost,
    ProviderChannel,
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


class SessionState(str, Enum):
    CONNECTING = "connecting"
    IDLE = "idle"
    USER_SPEAKING = "user_speaking"
    ASSISTANT_SPEAKING = "assistant_speaking"
    TOOL_EXECUTING = "tool_executing"
    DISCONNECTED = "disconnected"


_ALLOWED = {
    SessionState.CONNECTING: {SessionState.IDLE},
    SessionState.IDLE: {SessionState.USER_SPEAKING, SessionState.ASSISTANT_SPEAKING},
    SessionState.USER_SPEAKING: {SessionState.IDLE, SessionState.ASSISTANT_SPEAKING},
    SessionState.ASSISTANT_SPEAKING: {SessionState.IDLE},
    SessionState.TOOL_EXECUTING: {SessionState.IDLE},
}
# reachable from every live state
_FROM_ANY = {SessionState.TOOL_EXECUTING, SessionState.CONNECTING, SessionState.DISCONNECTED}


def can_transition(current: SessionState, target: SessionState) -> bool:
    if current == SessionState.DISCONNECTED:
        return False
    if target in _FROM_ANY:
        return True
    return target in _ALLOWED.get(current, set())


class ClientTransport(Protocol):
    """The subset of a Starlette ``WebSocket`` the session writes to."""

    async def send_json(self, data: Any) -> None: ...

    async def send_bytes(self, data: bytes) -> None: ...

    async def close(self, code: int = 1000) -> None: ...


ChannelFactory = Callable[[], ProviderChannel]
Sleeper = Callable[[float], Awaitable[Any]]

_RESPONSE_DONE = object()


class VoiceSession:
    def __init__(
        self,
        client: ClientTransport,
        channel_factory: ChannelFactory,
        registry: CommandRegistry,
        venue: Venue,
        settings: Settings,
        *,
        session_id: Optional[str] = None,
        sample_rate: Optional[int] = None,
        channels: int = 1,
        clock: Callable[[], float] = time.monotonic,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self.session_id = session_id or uuid.uuid4().hex
        self.state = SessionState.CONNECTING
        self.settings = settings
        self.registry = registry
        self.context = ToolContext(
            session_id=self.session_id,
            venue=venue,
            venue_id=settings.venue_id,
            emit=self._send,
        )
        self._client = client
        self._channel_factory = channel_factory
        self._channel: Optional[ProviderChannel] = None
        self._clock = clock
        self._sleep = sleep

        self._encoder = CaptureEncoder(
            sample_rate=sample_rate or settings.target_sample_rate,
            channels=max(1, channels),
            target_rate=settings.target_sample_rate,
            block_samples=settings.capture_block_samples,
        )
        self._scheduler = PlaybackScheduler()
        self._outbound: "asyncio.Queue[tuple]" = asyncio.Queue()
        self._tool_calls: "asyncio.Queue[ToolCall]" = asyncio.Queue()
        self._generation = 0
        self._response_active = False
        self._drop_response_audio = False

        self._tasks: List[asyncio.Task] = []
        self._closing = False
        self._closed = asyncio.Event()
        self.close_reason: Optional[str] = None
        self.reconnects = 0
        self.log = logger.bind(session_id=self.session_id)

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------
    async def start(self) -> None:
        await self._send({"type": "session_created", "sessionId": self.session_id})
        self._tasks = [
            asyncio.create_task(self._provider_loop(), name=f"provider:{self.session_id}"),
            asyncio.create_task(self._pace_playback(), name=f"playback:{self.session_id}"),
            asyncio.create_task(self._run_tools(), name=f"tools:{self.session_id}"),
        ]

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    @property
    def pending_audio(self) -> int:
        return self._outbound.qsize()

    async def wait_closed(self) -> None:
        await self._closed.wait()
        current = asyncio.current_task()
        others = [t for t in self._tasks if t is not current]
        await asyncio.gather(*others, return_exceptions=True)

    async def close(self, reason: str = "closed") -> None:
        if self._closing:
            return
        self._closing = True
        self.close_reason = reason
        self._generation += 1
        self._clear_outbound()

        channel, self._channel = self._channel, None
        if channel is not None:
            try:
                await channel.close()
            except Exception as exc:
                self.log.warning("Provider close failed", error=str(exc))

        self._transition(SessionState.DISCONNECTED)
        current = asyncio.current_task()
        for task in self._tasks:
            if task is not current and not task.done():
                task.cancel()
        try:
            await self._client.close()
        except Exception as exc:
            self.log.debug("Client already closed", error=str(exc))
        self.log.info("Session closed", reason=reason)
        self._closed.set()

    # ------------------------------------------------------------------
    # state
    # ------------------------------------------------------------------
    def _transition(self, target: SessionState) -> bool:
        current = self.state
        if current == target:
            return True
        if not can_transition(current, target):
            self.log.warning("Rejected state transition", state=current.value, target=target.value)
            return False
        self.state = target
        self.log.debug("State transition", previous=current.value, state=target.value)
        return True

    async def _send(self, message: Dict[str, Any]) -> None:
        try:
            await self._client.send_json(message)
        except Exception as exc:
            self.log.warning("Client send failed", message_type=message.get("type"), error=str(exc))

    # ------------------------------------------------------------------
    # client input
    # ------------------------------------------------------------------
    async def receive_text(self, raw: str) -> None:
        try:
            message = json.loads(raw)
        except ValueError:
            self.log.warning("Malformed control message", raw=raw[:200])
            return
        if not isinstance(message, dict):
            self.log.warning("Malformed control message", raw=raw[:200])
            return

        kind = message.get("type")
        if kind == "interrupt":
            await self.interrupt(source="client")
        elif kind == "start_listening":
            if self.state == SessionState.IDLE:
                self._transition(SessionState.USER_SPEAKING)
        elif kind == "stop_listening":
            if self.state == SessionState.USER_SPEAKING:
                self._transition(SessionState.IDLE)
        elif kind == "ping":
            await self._send({"type": "pong"})
        else:
            self.log.info("Ignoring control message", message_type=kind)

    async def receive_bytes(self, data: bytes) -> None:
        tag, payload = unframe(data)
        if tag != TAG_CLIENT_AUDIO:
            self.log.debug("Ignoring binary frame", tag=tag)
            return
        if self.state == SessionState.ASSISTANT_SPEAKING:
            return
        channel = self._channel
        if channel is None:
            return
        for block in self._encoder.feed(payload):
            try:
                await channel.send_audio(block)
            except Exception as exc:
                self.log.warning("Audio forward failed", error=str(exc))
                return

    async def interrupt(self, source: str = "client") -> None:
        """Drop queued assistant audio and cancel the provider response.

        A tool call that is already executing keeps running.
        """
        self._generation += 1
        dropped = self._clear_outbound()
        self._scheduler.reset()
        if self._response_active:
            self._drop_response_audio = True

        channel = self._channel
        if channel is not None:
            try:
                await channel.cancel_response()
            except Exception as exc:
                self.log.warning("Cancel response failed", error=str(exc))

        if self.state == SessionState.ASSISTANT_SPEAKING:
            self._transition(SessionState.IDLE)
            await self._send({"type": "speaking_ended"})
        self.log.info("Interrupted", source=source, dropped_chunks=dropped)

    def _clear_outbound(self) -> int:
        dropped = 0
        while True:
            try:
                self._outbound.get_nowait()
            except asyncio.QueueEmpty:
                return dropped
            dropped += 1

    # ------------------------------------------------------------------
    # provider
    # ------------------------------------------------------------------
    async def _provider_loop(self) -> None:
        failures = 0
        limit = self.settings.max_reconnect_attempts
        delay = self.settings.reconnect_delay_seconds
        first = True

        while not self._closing:
            self._transition(SessionState.CONNECTING)
            if not first:
                self.reconnects += 1
                self.log.info("Reconnecting to provider", attempt=failures + 1, delay=delay)
            first = False

            channel = self._channel_factory()
            try:
                await channel.connect()
            except Exception as exc:
                failures += 1
                self.log.warning("Provider connect failed", attempt=failures, error=str(exc))
                if limit and failures >= limit:
                    await self._send(
                        {
                            "type": "error",
                            "message": "Voice provider unavailable",
                            "code": "external_service_error",
                        }
                    )
                    await self.close("provider_unavailable")
                    return
                await self._sleep(delay)
                continue

            failures = 0
            self._channel = channel
            self._transition(SessionState.IDLE)
            await self._send({"type": "provider_connected"})

            reason = await self._pump(channel)
            if self._closing:
                return

            self.log.warning("Provider connection lost", reason=reason)
            self._channel = None
            self._transition(SessionState.CONNECTING)
            self._generation += 1
            self._clear_outbound()
            self._response_active = False
            self._drop_response_audio = False
            try:
                await channel.close()
            except Exception as exc:
                self.log.debug("Provider close after loss failed", error=str(exc))
            await self._sleep(delay)

    async def _pump(self, channel: ProviderChannel) -> str:
        try:
            async for event in channel.events():
                if self._closing:
                    return "closing"
                if isinstance(event, ConnectionLost):
                    return event.reason or "connection_lost"
                await self._dispatch(event)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.log.warning("Provider stream failed", error=str(exc))
            return str(exc) or type(exc).__name__
        return "stream_ended"

    async def _dispatch(self, event: ProviderEvent) -> None:
        if isinstance(event, AudioDelta):
            if self._drop_response_audio:
                return
            self._response_active = True
            if self.state in (SessionState.IDLE, SessionState.USER_SPEAKING):
                if self._transition(SessionState.ASSISTANT_SPEAKING):
                    await self._send({"type": "speaking_started"})
            self._outbound.put_nowait((self._generation, event.data))
        elif isinstance(event, ResponseDone):
            self._response_active = False
            if self._drop_response_audio:
                self._drop_response_audio = False
                return
            self._outbound.put_nowait((self._generation, _RESPONSE_DONE))
        elif isinstance(event, ToolCall):
            self._tool_calls.put_nowait(event)
        elif isinstance(event, SpeechStarted):
            if self.state == SessionState.ASSISTANT_SPEAKING:
                await self.interrupt(source="provider")
            if self.state == SessionState.IDLE:
                self._transition(SessionState.USER_SPEAKING)
        elif isinstance(event, SpeechStopped):
            if self.state == SessionState.USER_SPEAKING:
                self._transition(SessionState.IDLE)
        elif isinstance(event, Transcript):
            await self._send({"type": "transcript", "text": event.text})
        elif isinstance(event, AssistantText):
            await self._send({"type": "ai_response", "text": event.text})
        elif isinstance(event, ProviderError):
            self.log.warning("Provider error", code=event.code, error=event.message)
            await self._send({"type": "error", "message": event.message, "code": event.code})

    # ------------------------------------------------------------------
    # outbound audio
    # ------------------------------------------------------------------
    async def _pace_playback(self) -> None:
        lead = self.settings.playback_lead_seconds
        rate = self.settings.target_sample_rate
        while True:
            generation, item = await self._outbound.get()
            if generation != self._generation:
                continue
            if item is _RESPONSE_DONE:
                if self.state == SessionState.ASSISTANT_SPEAKING:
                    self._transition(SessionState.IDLE)
                    await self._send({"type": "speaking_ended"})
                continue

            start, _ = self._scheduler.schedule(self._clock(), pcm16_duration(item, rate))
            wait = start - lead - self._clock()
            if wait > 0:
                await self._sleep(wait)
            if generation != self._generation:
                continue
            try:
                await self._client.send_bytes(frame(TAG_ASSISTANT_AUDIO, item))
            except Exception as exc:
                self.log.warning("Client audio send failed", error=str(exc))

    # ------------------------------------------------------------------
    # tools
    # ------------------------------------------------------------------
    async def _run_tools(self) -> None:
        while True:
            call = await self._tool_calls.get()
            await self._execute_tool(call)
            if self.context.termination_requested:
                await self._terminate(self.context.termination_reason or "user_request")
                return

    async def _execute_tool(self, call: ToolCall) -> ToolResult:
        self._transition(SessionState.TOOL_EXECUTING)
        try:
            output = await self.registry.execute(call.name, call.arguments, self.context)
            result = ToolResult(call.correlation_id, output=output)
        except Exception as exc:
            result = ToolResult(call.correlation_id, error=error_payload(exc))

        channel = self._channel
        if channel is None:
            self.log.warning("Tool result not delivered, provider offline", command=call.name)
        else:
            try:
                await channel.send_tool_result(result)
            except Exception as exc:
                self.log.warning("Tool result delivery failed", command=call.name, error=str(exc))

        await self._send(
            {
                "type": "tool_executed",
                "name": call.name,
                "result": result.output if result.ok else result.error,
            }
        )
        if self.state == SessionState.TOOL_EXECUTING:
            self._transition(SessionState.IDLE if self._channel is not None else SessionState.CONNECTING)
        return result

    async def _terminate(self, reason: str) -> None:
        self.log.info("Session termination requested", reason=reason)
        await self._send({"type": "session_terminated", "reason": reason})
        await self.close(reason)


__all__ = ["VoiceSession", "SessionState", "ClientTransport", "can_transition"]
