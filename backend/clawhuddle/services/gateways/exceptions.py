"""Gateway lifecycle error taxonomy.

Precondition errors are reported to the caller verbatim and never retried. Runtime errors wrap
container-engine failures and surface after the orchestrator's own rollback.
"""

from __future__ import annotations

from fastapi import status

__all__ = [
    "ContainerExecError",
    "ContainerExecTimeoutError",
    "ContainerNotFoundError",
    "GatewayError",
    "GatewayPreconditionError",
    "GatewayRuntimeError",
    "MemberNotFoundError",
]


class GatewayError(Exception):
    """Base class for errors raised by gateway lifecycle operations."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "gateway_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class GatewayPreconditionError(GatewayError):
    """The member's gateway is not in a state that permits the requested operation."""

    status_code = status.HTTP_409_CONFLICT
    code = "gateway_precondition_failed"

    @classmethod
    def already_running(cls) -> GatewayPreconditionError:
        return cls("Gateway already running")

    @classmethod
    def not_deployed(cls) -> GatewayPreconditionError:
        return cls("No gateway deployed")

    @classmethod
    def not_running(cls) -> GatewayPreconditionError:
        return cls("Gateway is not running")

    @classmethod
    def no_credentials(cls) -> GatewayPreconditionError:
        error = cls("No API keys configured: add at least one provider key")
        error.status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
        error.code = "gateway_credentials_missing"
        return error


class MemberNotFoundError(GatewayPreconditionError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "member_not_found"

    def __init__(self, message: str = "Member not found") -> None:
        super().__init__(message)


class GatewayRuntimeError(GatewayError):
    """The container engine rejected or failed an operation."""

    status_code = status.HTTP_502_BAD_GATEWAY
    code = "gateway_runtime_error"


class ContainerNotFoundError(GatewayRuntimeError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "gateway_container_missing"


class ContainerExecError(GatewayRuntimeError):
    """A command run inside a gateway container exited non-zero."""

    code = "gateway_exec_failed"

    def __init__(self, message: str, *, exit_code: int | None = None, output: str = "") -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.output = output


class ContainerExecTimeoutError(ContainerExecError):
    status_code = status.HTTP_504_GATEWAY_TIMEOUT
    code = "gateway_exec_timeout"
