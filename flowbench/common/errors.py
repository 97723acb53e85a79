"""Error taxonomy for the request boundary.

`ValidationError` detail and the fixed public message of a `RequestRejected`
may be returned to the caller; the other kinds are logged and collapsed to a
generic message by the handler.
"""

from dataclasses import dataclass
from typing import Any


class FlowbenchError(Exception):
    """Base class for failures raised while serving one request."""


class DecodeError(FlowbenchError):
    """Request body could not be parsed as JSON."""


@dataclass(frozen=True)
class Violation:
    """One field-level schema violation."""

    path: tuple[str | int, ...]
    message: str
    constraint: str
    value: Any = None

    def to_detail(self) -> dict[str, Any]:
        # `value` stays server-side, it may echo untrusted input.
        return {"path": list(self.path), "message": self.message}

    def to_log(self) -> dict[str, Any]:
        return {"path": list(self.path), "constraint": self.constraint, "value": repr(self.value)[:120]}


class ValidationError(FlowbenchError):
    """Decoded payload violates the endpoint schema."""

    def __init__(self, violations: list[Violation]) -> None:
        self.violations = list(violations)
        summary = "; ".join(
            f"{'.'.join(str(part) for part in v.path) or '<body>'}: {v.message} ({v.constraint})"
            for v in self.violations
        )
        super().__init__(summary or "validation failed")

    def to_response(self) -> dict[str, Any]:
        return {
            "error": "Validation failed",
            "details": [violation.to_detail() for violation in self.violations],
        }


class RequestRejected(FlowbenchError):
    """Request refused with a fixed status and a message safe to show the caller."""

    status_code = 400
    public_message = "Request rejected"

    def to_response(self) -> dict[str, Any]:
        return {"error": self.public_message}


class UnauthenticatedError(RequestRejected):
    status_code = 401
    public_message = "User not authenticated"


class NotFoundError(RequestRejected):
    status_code = 404

    def __init__(self, public_message: str) -> None:
        self.public_message = public_message
        super().__init__(public_message)


class CollaboratorError(FlowbenchError):
    """External collaborator (Stripe, user store, order store) failed or rejected the call."""

    def __init__(self, collaborator: str, message: str) -> None:
        self.collaborator = collaborator
        super().__init__(f"{collaborator}: {message}")


class UnexpectedError(FlowbenchError):
    """Anything the handler did not anticipate."""
