from __future__ import annotations

from .audio import CaptureEncoder, PlaybackScheduler
from .channel import ProviderChannel, QueueChannel, ToolCall, ToolResult
from .session import SessionState, VoiceSession

__all__ = [
    "CaptureEncoder",
    "PlaybackScheduler",
    "ProviderChannel",
    "QueueChannel",
    "SessionState",
    "ToolCall",
    "ToolResult",
    "VoiceSession",
]
