"""Error types for the waterfall client.

Only transport failures and server-declared failures reach user-visible
state. Rejected transitions are logged by the state machine
(``transition_rejected``) and malformed frames are skipped by the decoder,
so neither escapes its layer; user cancellation is a normal
``RunCancelled`` outcome rather than an error.
"""

from __future__ import annotations


class WaterfallError(Exception):
    """Base exception for waterfall client errors."""


class WaterfallTransportError(WaterfallError):
    """Raised when a request to the waterfall server fails.

    Attributes:
        status_code: HTTP status when the server answered, None for
            network-level failures.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)

    @property
    def is_client_error(self) -> bool:
        """True for 4xx responses, which are never retried."""
        return self.status_code is not None and 400 <= self.status_code < 500


class ServerSignalledError(WaterfallError):
    """Raised when the stream carries an ``error`` frame."""


class FrameParseError(WaterfallError):
    """Raised when a ``data:`` line does not hold a valid event object."""

    def __init__(self, line: str, reason: str) -> None:
        self.line = line
        self.reason = reason
        super().__init__(f"Malformed event frame ({reason}): {line[:80]!r}")
