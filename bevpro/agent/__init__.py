from __future__ import annotations

from typing import Optional

import structlog

from ..backend.venue import Venue, build_venue
from ..config import Settings, get_settings
from .commands import COMMAND_MODULES
from .core import BevAgent
from .realtime_openai import OpenAIRealtimeChannel, RealtimeClientConfig
from .registry import CommandRegistry, ToolContext, command

logger = structlog.get_logger(__name__)


def build_registry() -> CommandRegistry:
    registry = CommandRegistry()
    for module in COMMAND_MODULES:
        registry.register_module(module)
    return registry


def build_agent(settings: Optional[Settings] = None, venue: Optional[Venue] = None) -> BevAgent:
    settings = settings or get_settings()
    venue = venue or build_venue(settings)
    registry = build_registry()

    config = RealtimeClientConfig(settings)
    # Lightweight diagnostics to help spot misconfiguration in dev
    logger.info(
        "Realtime provider configured",
        available=config.available,
        azure=config.use_azure,
        endpoint=config.endpoint if config.use_azure else None,
        model=config.model,
        commands=len(registry),
    )
    return BevAgent(registry=registry, venue=venue, settings=settings)


__all__ = [
    "BevAgent",
    "CommandRegistry",
    "OpenAIRealtimeChannel",
    "RealtimeClientConfig",
    "ToolContext",
    "build_agent",
    "build_registry",
    "command",
]
