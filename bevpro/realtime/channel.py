"""Provider channel interface and the typed events it yields.

A :class:`ProviderChannel` is one connection to the hosted speech model. The
session only ever talks to this interface, so the OpenAI implementation and
the in-memory :class:`QueueChannel` used by tests are interchangeable.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, Union

from ..backend.errors import ExternalServiceError


@dataclass(frozen=True)
class AudioDelta:
    data: bytes


@dataclass(frozen=True)
class ResponseDone:
    pass


@dataclass(frozen=True)
class SpeechStarted:
    pass


@dataclass(frozen=True)
class SpeechStopped:
    pass


@dataclass(frozen=True)
class ToolCall:
    name: str
    arguments: Dict[str, Any]
    correlation_id: str


@dataclass(frozen=True)
class Transcript:
    text: str


@dataclass(frozen=True)
class AssistantText:
    text: str


@dataclass(frozen=True)
class ProviderError:
    message: str
    code: str = "provider_error"


@dataclass(frozen=True)
class ConnectionLost:
    reason: str = ""


ProviderEvent = Union[
    AudioDelta,
    ResponseDone,
    SpeechStarted,
    SpeechStopped,
    ToolCall,
    Transcript,
    AssistantText,
    ProviderError,
    ConnectionLost,
]


@dataclass
class ToolResult:
    correlation_id: str
    output: Optional[Dict[str, Any]] = None
    error: Optional[Dict[str, Any]] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def payload(self) -> Dict[str, Any]:
        if self.error is not None:
            return {"correlation_id": self.correlation_id, "error": self.error}
        return {"correlation_id": self.correlation_id, "output": self.output or {}}


class ProviderChannel(Protocol):
    async def connect(self) -> None: ...

    async def send_audio(self, pcm16: bytes) -> None: ...

    async def send_tool_result(self, result: ToolResult) -> None: ...

    async def cancel_response(self) -> None: ...

    def events(self) -> AsyncIterator[ProviderEvent]: ...

    async def close(self) -> None: ...


_END = object()


class QueueChannel:
    """In-memory provider channel.

    Tests push provider events with :meth:`emit` and read back what the
    session sent through the recording attributes. :meth:`drop` ends the
    current event stream the way a lost socket would.
    """

    def __init__(self, fail_connects: int = 0) -> None:
        self.fail_connects = fail_connects
        self.connect_count = 0
        self.cancel_count = 0
        self.connected = False
        self.closed = False
        self.sent_audio: List[bytes] = []
        self.tool_results: List[ToolResult] = []
        self._queue: "asyncio.Queue[Any]" = asyncio.Queue()

    async def connect(self) -> None:
        self.connect_count += 1
        if self.fail_connects > 0:
            self.fail_connects -= 1
            raise ExternalServiceError("provider unavailable")
        self.connected = True
        self.closed = False

    async def send_audio(self, pcm16: bytes) -> None:
        self.sent_audio.append(pcm16)

    async def send_tool_result(self, result: ToolResult) -> None:
        self.tool_results.append(result)

    async def cancel_response(self) -> None:
        self.cancel_count += 1

    async def events(self) -> AsyncIterator[ProviderEvent]:
        while True:
            item = await self._queue.get()
            if item is _END:
                self.connected = False
                return
            yield item

    async def close(self) -> None:
        if self.connected:
            self._queue.put_nowait(_END)
        self.connected = False
        self.closed = True

    # test helpers ------------------------------------------------------
    def emit(self, event: ProviderEvent) -> None:
        self._queue.put_nowait(event)

    def drop(self) -> None:
        self._queue.put_nowait(_END)


__all__ = [
    "AudioDelta",
    "AssistantText",
    "ConnectionLost",
    "ProviderChannel",
    "ProviderError",
    "ProviderEvent",
    "QueueChannel",
    "ResponseDone",
    "SpeechStarted",
    "SpeechStopped",
    "ToolCall",
    "ToolResult",
    "Transcript",
]
