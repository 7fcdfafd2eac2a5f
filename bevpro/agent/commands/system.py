from __future__ import annotations

from typing import Any, Dict, Literal

from pydantic import BaseModel, Field

from ..registry import ToolContext, command

Screen = Literal["menu", "tabs", "transactions", "items", "inventory"]


class NavigateArgs(BaseModel):
    screen: Screen = Field(..., description="Screen to navigate to")


class TerminateArgs(BaseModel):
    reason: str = Field(..., description="Reason for termination")


@command("navigate_to_screen", "Navigate to a different screen in the POS", NavigateArgs)
async def navigate_to_screen(args: NavigateArgs, ctx: ToolContext) -> Dict[str, Any]:
    await ctx.send({"type": "navigate", "screen": args.screen})
    return {"success": True, "message": f"Navigating to {args.screen} screen", "screen": args.screen}


@command(
    "terminate_session",
    "Ends the current voice session and returns to wake word listening mode. "
    "Call this when the user says \"Goodbye\", \"That's all\", or indicates they are done.",
    TerminateArgs,
)
async def terminate_session(args: TerminateArgs, ctx: ToolContext) -> Dict[str, Any]:
    ctx.request_termination(args.reason)
    return {"success": True, "message": "Session terminated"}
