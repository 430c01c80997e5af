"""Failure taxonomy for upstream calls."""

from typing import Optional


class UpstreamError(Exception):
    """Base class for every failure surfaced by the upstream client."""


class TransportError(UpstreamError):
    """The upstream could not be reached or did not answer with a usable envelope."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class UpstreamRejected(UpstreamError):
    """The call went through but the upstream refused the operation."""

    def __init__(self, message: str, status: int = 0) -> None:
        super().__init__(f"error: {message}")
        self.message = message
        self.status = status
