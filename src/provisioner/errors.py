"""Error taxonomy for the provisioning engine.

Transient conditions (connection hiccups, provider conflicts) are absorbed by
the transport layer. Everything that reaches a workflow is one of the classes
below, and workflows propagate them unchanged after compensating cleanup.

NotFound is deliberately absent: every existence check treats absence as a
normal outcome that turns create/delete into a no-op.
"""

from __future__ import annotations

from typing import Any


class ManagementError(Exception):
    """Base class for all errors raised by the provisioning engine."""

    pass


class ProviderError(ManagementError):
    """The provider rejected a request with a non-retryable error document."""

    def __init__(self, code: str | None, message: str | None, status_code: int | None = None) -> None:
        self.code = code
        self.message = message
        self.status_code = status_code
        detail = f"{code}: {message}" if code else (message or "unknown provider error")
        if status_code is not None:
            detail = f"[HTTP {status_code}] {detail}"
        super().__init__(detail)


class OperationFailedError(ProviderError):
    """An asynchronous operation reached the Failed terminal state."""

    def __init__(self, operation_id: str, code: str | None, message: str | None) -> None:
        self.operation_id = operation_id
        super().__init__(code, message)


class TransientConnectionError(ManagementError):
    """The request could not reach the provider (connection reset, DNS, TLS)."""

    pass


class OperationTimeoutError(ManagementError):
    """A deadline passed while polling, retrying, or waiting on a resource.

    Carries the last observed state so callers can tell a slow provider from a
    stuck resource.
    """

    def __init__(self, message: str, last_state: Any = None) -> None:
        self.last_state = last_state
        super().__init__(message)


class LockTimeoutError(ManagementError):
    """A serialization lock could not be acquired before the deadline.

    Distinct from OperationTimeoutError: nothing was submitted to the provider.
    """

    def __init__(self, domain: str, waited_seconds: float, message: str | None = None) -> None:
        self.domain = domain
        self.waited_seconds = waited_seconds
        super().__init__(
            message
            or f"Failed to acquire {domain} lock after {waited_seconds:.1f} seconds"
        )


class InvalidStateError(ManagementError):
    """A resource was observed in a state the workflow cannot proceed from."""

    def __init__(self, message: str, state: Any = None) -> None:
        self.state = state
        super().__init__(message)


class ProvisioningError(ManagementError):
    """A workflow precondition failed (no free static address, missing subnet)."""

    pass
