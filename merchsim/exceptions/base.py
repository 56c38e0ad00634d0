"""Exception hierarchy for merchsim.

Every error carries a machine-readable ``code``, a human ``message`` and an
optional ``details`` mapping, so the CLI can log them as structured events.
"""

from __future__ import annotations

from typing import Any


class MerchSimError(Exception):
    """Base exception for all merchsim errors."""

    def __init__(self, code: str, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = dict(details) if details else {}

    def __str__(self) -> str:
        if not self.details:
            return f"{self.code}: {self.message}"
        rendered = ", ".join(f"{k}={v!r}" for k, v in self.details.items())
        return f"{self.code}: {self.message} ({rendered})"


class ConfigError(MerchSimError):
    """Bad or missing configuration. Fatal, raised before any traffic."""

    pass


class DataError(MerchSimError):
    """Malformed or inconsistent dataset. Fatal."""

    pass


class InvariantError(MerchSimError):
    """A programming or configuration mismatch detected at runtime. Fatal."""

    pass


class TransportError(MerchSimError):
    """Network-level failure to complete a request.

    Non-fatal: virtual users record it as a failed sample and keep going.
    """

    def __init__(self, error_type: str, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__("TRANSPORT_ERROR", message, details)
        self.error_type = error_type


class RequestOutcomeFailure(MerchSimError):
    """A response that did not satisfy the pass criteria for its action.

    Non-fatal: virtual users record it as a failed sample and keep going.
    """

    def __init__(self, error_type: str, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__("REQUEST_OUTCOME_FAILURE", message, details)
        self.error_type = error_type
