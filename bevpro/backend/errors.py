"""Error taxonomy shared by the backend services, the command registry and the
realtime session.

Handlers raise these; the registry lets them through unchanged and wraps
anything else in :class:`CommandFailed`. The session turns whatever reaches it
into a tool-result error payload via :meth:`BevError.to_payload`.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


class BevError(Exception):
    code = "error"

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = dict(details or {})

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationFailed(BevError):
    code = "validation_failed"


class NotFound(BevError):
    code = "not_found"


class Conflict(BevError):
    code = "conflict"


class InsufficientStock(Conflict):
    code = "insufficient_stock"


class ExternalServiceError(BevError):
    code = "external_service_error"


class CommandFailed(BevError):
    """Unexpected handler failure, tagged with the command and its arguments."""

    code = "command_failed"

    def __init__(self, command: str, arguments: Dict[str, Any], cause: BaseException) -> None:
        super().__init__(
            f"Command '{command}' failed: {cause}",
            details={"command": command, "arguments": arguments, "cause": type(cause).__name__},
        )
        self.command = command
        self.arguments = arguments
        self.__cause__ = cause


@dataclass
class PartialBatchFailure:
    """Outcome of a batch command where each item is attempted on its own.

    Not an exception: callers report it back as a regular result.
    """

    succeeded: List[Dict[str, Any]] = field(default_factory=list)
    failed: List[Dict[str, Any]] = field(default_factory=list)

    def add_success(self, entry: Dict[str, Any]) -> None:
        self.succeeded.append(entry)

    def add_failure(self, item: Any, reason: str) -> None:
        self.failed.append({"item": item, "reason": reason})

    @property
    def success_count(self) -> int:
        return len(self.succeeded)

    @property
    def failure_count(self) -> int:
        return len(self.failed)

    @property
    def is_partial(self) -> bool:
        return bool(self.succeeded) and bool(self.failed)

    def reasons(self) -> List[str]:
        return [f["reason"] for f in self.failed]


def error_payload(exc: BaseException) -> Dict[str, Any]:
    if isinstance(exc, BevError):
        return exc.to_payload()
    return {"code": "internal_error", "message": str(exc) or type(exc).__name__}


__all__ = [
    "BevError",
    "ValidationFailed",
    "NotFound",
    "Conflict",
    "InsufficientStock",
    "ExternalServiceError",
    "CommandFailed",
    "PartialBatchFailure",
    "error_payload",
]
