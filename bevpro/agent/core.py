from __future__ import annotations

from typing import Any, Dict, List, Optional

import structlog

from ..backend.venue import Venue
from ..config import Settings
from .prompt import default_prompt
from .registry import CommandRegistry, ToolContext

logger = structlog.get_logger(__name__)

# products listed in the instructions; the model resolves near-misses against it
CATALOG_PROMPT_LIMIT = 80


class BevAgent:
    """
    default_prompt + the registry's tool list + a catalog summary.

    The realtime model does the conversation; this object only prepares what
    the provider session is configured with and executes tool calls.
    """

    def __init__(self, registry: CommandRegistry, venue: Venue, settings: Optional[Settings] = None) -> None:
        self.registry = registry
        self.venue = venue
        self.settings = settings or venue.settings

    # ------------------------------------------------------------------
    def tools(self) -> List[Dict[str, Any]]:
        return self.registry.to_openai_tools()

    def instructions(self) -> str:
        menu_items: List[str] = []
        for product in self.venue.catalog.list()[:CATALOG_PROMPT_LIMIT]:
            menu_items.append(f"- {product.name} | ${product.price / 100:.2f} | {product.category}")
        menu_block = "\n".join(menu_items)

        tools_text = self.registry.to_prompt_lines()
        return (
            default_prompt.format(venue_name=self.settings.venue_name).strip()
            + "\n\n[Available tools]\n"
            + (tools_text or "(no tools available)")
            + ("\n\n[Drink menu]\n" + menu_block if menu_block else "")
        )

    def context(self, session_id: str, emit=None) -> ToolContext:
        return ToolContext(
            session_id=session_id,
            venue=self.venue,
            venue_id=self.settings.venue_id,
            emit=emit,
        )

    async def execute(self, name: str, arguments: Optional[Dict[str, Any]], session_id: str) -> Dict[str, Any]:
        """Run one command outside a voice session (REST tool endpoint)."""
        return await self.registry.execute(name, arguments, self.context(session_id))


__all__ = ["BevAgent", "CATALOG_PROMPT_LIMIT"]
