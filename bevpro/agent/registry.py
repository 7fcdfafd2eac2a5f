"""Named, schema-validated commands the voice model can call.

Handlers are plain ``async def handler(args, ctx) -> dict`` functions marked
with :func:`command`; :func:`discover_tools` collects them from a module the
same way tool functions are picked up by inspection. Arguments are validated
against the command's pydantic model before the handler runs.
"""
from __future__ import annotations

import inspect
import time
from dataclasses import dataclass, field
from types import ModuleType
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Type

import structlog
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from ..backend.errors import BevError, CommandFailed, NotFound, ValidationFailed
from ..backend.venue import Venue

logger = structlog.get_logger(__name__)

Emitter = Callable[[Dict[str, Any]], Awaitable[None]]


class NoArgs(BaseModel):
    pass


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    description: str
    args_model: Type[BaseModel] = NoArgs

    def parameters(self) -> Dict[str, Any]:
        return flatten_schema(self.args_model.model_json_schema())


@dataclass
class ToolContext:
    """Per-session handle passed to every handler.

    Carries the venue services plus the two ways a handler can reach back into
    its session: ``emit`` (a control message to the client) and
    :meth:`request_termination`.
    """

    session_id: str
    venue: Venue
    venue_id: int = 1
    emit: Optional[Emitter] = None
    termination_reason: Optional[str] = field(default=None, init=False)

    @property
    def settings(self):
        return self.venue.settings

    async def send(self, message: Dict[str, Any]) -> None:
        if self.emit is not None:
            await self.emit(message)

    def request_termination(self, reason: str = "user_request") -> None:
        self.termination_reason = reason or "user_request"

    @property
    def termination_requested(self) -> bool:
        return self.termination_reason is not None


Handler = Callable[[Any, ToolContext], Awaitable[Dict[str, Any]]]


def command(name: str, description: str, args: Optional[Type[BaseModel]] = None):
    """Mark an async handler as a registry command."""

    def decorate(fn: Handler) -> Handler:
        fn.__command__ = ToolDefinition(name=name, description=description, args_model=args or NoArgs)  # type: ignore[attr-defined]
        return fn

    return decorate


def discover_tools(module: ModuleType) -> List[Tuple[ToolDefinition, Handler]]:
    """Return ``(definition, handler)`` for every :func:`command` in ``module``, in source order."""
    found: List[Tuple[int, ToolDefinition, Handler]] = []
    for _, obj in inspect.getmembers(module, inspect.iscoroutinefunction):
        definition = getattr(obj, "__command__", None)
        if not isinstance(definition, ToolDefinition):
            continue
        if obj.__module__ != module.__name__:
            continue
        found.append((obj.__code__.co_firstlineno, definition, obj))
    found.sort(key=lambda item: item[0])
    return [(definition, handler) for _, definition, handler in found]


# ─────────────────────────────────────────────────────────────
# JSON schema flattening
# ─────────────────────────────────────────────────────────────
def flatten_schema(schema: Dict[str, Any]) -> Dict[str, Any]:
    """Inline ``$ref``s and drop pydantic's ``title`` noise.

    ``Optional[X]`` (``anyOf: [X, null]``) collapses to ``X``; realtime
    function calling only needs the plain JSON-schema subset.
    """
    defs = schema.get("$defs", {})

    def resolve(node: Any) -> Any:
        if isinstance(node, list):
            return [resolve(n) for n in node]
        if not isinstance(node, dict):
            return node
        if "$ref" in node:
            target = dict(defs.get(node["$ref"].rsplit("/", 1)[-1], {}))
            target.update({k: v for k, v in node.items() if k != "$ref"})
            return resolve(target)

        out: Dict[str, Any] = {}
        for key, value in node.items():
            if key in ("title", "$defs"):
                continue
            if key == "properties" and isinstance(value, dict):
                out[key] = {prop: resolve(sub) for prop, sub in value.items()}
            else:
                out[key] = resolve(value)

        any_of = out.get("anyOf")
        if isinstance(any_of, list):
            concrete = [s for s in any_of if s.get("type") != "null"]
            if len(concrete) == 1 and len(concrete) < len(any_of):
                del out["anyOf"]
                merged = dict(concrete[0])
                merged.update(out)
                out = merged
        if "default" in out and out["default"] is None:
            del out["default"]
        return out

    flat = resolve(schema)
    flat["type"] = "object"
    flat.setdefault("properties", {})
    return flat


def _field_errors(exc: PydanticValidationError) -> List[Dict[str, Any]]:
    return [
        {
            "field": ".".join(str(part) for part in err.get("loc", ())) or "(root)",
            "message": err.get("msg", ""),
            "type": err.get("type", ""),
        }
        for err in exc.errors()
    ]


class CommandRegistry:
    def __init__(self) -> None:
        self._entries: Dict[str, Tuple[ToolDefinition, Handler]] = {}

    def register(self, definition: ToolDefinition, handler: Handler) -> None:
        if definition.name in self._entries:
            raise ValueError(f"command already registered: {definition.name}")
        self._entries[definition.name] = (definition, handler)

    def register_module(self, module: ModuleType) -> int:
        tools = discover_tools(module)
        for definition, handler in tools:
            self.register(definition, handler)
        return len(tools)

    def names(self) -> List[str]:
        return list(self._entries.keys())

    def get(self, name: str) -> Optional[ToolDefinition]:
        entry = self._entries.get(name)
        return entry[0] if entry else None

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    # ------------------------------------------------------------------
    async def execute(self, name: str, arguments: Optional[Dict[str, Any]], context: ToolContext) -> Dict[str, Any]:
        arguments = dict(arguments or {})
        log = logger.bind(command=name, session_id=context.session_id)
        entry = self._entries.get(name)
        if entry is None:
            log.warning("Unknown command", arguments=arguments)
            raise NotFound(f"Unknown command: {name}", details={"command": name})
        definition, handler = entry

        started = time.perf_counter()
        try:
            try:
                args = definition.args_model.model_validate(arguments)
            except PydanticValidationError as exc:
                raise ValidationFailed(
                    f"Invalid arguments for {name}",
                    details={"errors": _field_errors(exc)},
                ) from exc
            result = await handler(args, context)
        except BevError as exc:
            log.warning(
                "Command rejected",
                arguments=arguments,
                outcome=exc.code,
                error=exc.message,
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
            )
            raise
        except Exception as exc:
            log.exception(
                "Command crashed",
                arguments=arguments,
                outcome="command_failed",
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
            )
            raise CommandFailed(name, arguments, exc) from exc

        log.info(
            "Command executed",
            arguments=arguments,
            outcome="ok",
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        return result

    # ------------------------------------------------------------------
    def describe(self) -> List[Dict[str, Any]]:
        return [
            {"name": d.name, "description": d.description, "parameters": d.parameters()}
            for d, _ in self._entries.values()
        ]

    def to_openai_tools(self) -> List[Dict[str, Any]]:
        """Realtime ``session.update`` tool entries."""
        return [{"type": "function", **entry} for entry in self.describe()]

    def to_prompt_lines(self) -> str:
        lines: List[str] = []
        for entry in self.describe():
            params = ", ".join(entry["parameters"].get("properties", {}).keys())
            lines.append(f"- {entry['name']}({params}): {entry['description']}")
        return "\n".join(lines)


__all__ = [
    "CommandRegistry",
    "Handler",
    "NoArgs",
    "ToolContext",
    "ToolDefinition",
    "command",
    "discover_tools",
    "flatten_schema",
]
