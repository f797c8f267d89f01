"""
Error types shared by the clients and the settlement engine.
"""

from typing import Optional


class ConfigError(RuntimeError):
    """Missing or invalid configuration. Fatal at startup."""


class TransportError(RuntimeError):
    """A remote service was unreachable or answered with something unusable."""


class FacilitatorError(TransportError):
    """The x402 facilitator rejected a request or returned a malformed body."""

    def __init__(self, message: str, status: Optional[int] = None, body=None) -> None:
        super().__init__(message)
        self.status = status
        self.body = body
