"""Error kinds shared by the encoder, decoder and API client."""
from __future__ import annotations


class BridgeError(Exception):
    """Base class for every error raised by the bridge."""

    pass


class ResolverFailure(BridgeError):
    """A media, mention or quote lookup failed or timed out.

    Always recovered locally: the encoder renders a marker, the decoder keeps
    the literal text or synthesizes a stub.
    """

    def __init__(self, message: str, *, resolver: str = "unknown"):
        super().__init__(message)
        self.resolver = resolver


class SizeLimitExceeded(ResolverFailure):
    """Resource is larger than the platform accepts for its kind."""

    def __init__(self, kind: str, size: int, limit: int):
        super().__init__(
            f"{kind} is {size / (1024 * 1024):.2f}MB, limit is {limit // (1024 * 1024)}MB",
            resolver="media",
        )
        self.kind = kind
        self.size = size
        self.limit = limit


class TransportFailure(BridgeError):
    """The send itself failed; surfaced to whoever started the encode."""

    pass


class MalformedInput(BridgeError):
    """Inbound event carries no message to decode."""

    pass


class RetryableError(BridgeError):
    """Base exception for errors that should trigger retries."""

    pass


class TransientError(RetryableError):
    """Transient error that may succeed on retry."""

    pass


class RateLimitError(RetryableError):
    """Rate limit exceeded, should retry with backoff."""

    pass
