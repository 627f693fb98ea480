"""Exception hierarchy for the orchestration engine."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from complaint_agent.agent.failures import FailureKind


class ComplaintAgentError(Exception):
    """Base class for errors raised by this package."""


class ProviderError(ComplaintAgentError):
    """A provider-level failure that did not come from the upstream SDK itself.

    `status_code` follows HTTP semantics so the failure classifier can treat it
    like any SDK error.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class SessionStateError(ComplaintAgentError):
    """A chat session was driven out of order or concurrently."""


class AllProvidersExhaustedError(ComplaintAgentError):
    """The fallback controller used up every tier and attempt."""

    def __init__(
        self,
        last_error: BaseException,
        *,
        tier: int,
        kind: "FailureKind",
        calls: int,
    ) -> None:
        super().__init__(
            f"All providers exhausted after {calls} call(s); "
            f"last tier={tier} kind={kind.value}: {last_error}"
        )
        self.last_error = last_error
        self.tier = tier
        self.kind = kind
        self.calls = calls
