"""Error taxonomy for the acquisition and synthesis core.

None of these are fatal to the process:
- SourceUnavailable: network/HTTP/parse failure inside a provider. Caught at the
  provider boundary, counted against the breaker, triggers fallback.
- RateLimitExceeded: source skipped for the remainder of its window.
- PersistenceFailure: repository or key-value store failure. Logged and
  swallowed; in-memory state stays authoritative.

A gated prediction is not an error (the synthesizer returns None), and a
learning regression is handled by rollback inside the learning loop.
"""


class MatchSignalError(Exception):
    """Base class for all errors raised by this package."""


class SourceUnavailable(MatchSignalError):
    """A provider could not deliver data (network, HTTP status, payload shape)."""

    def __init__(self, source: str, reason: str):
        self.source = source
        self.reason = reason
        super().__init__(f"{source} unavailable: {reason}")


class RateLimitExceeded(MatchSignalError):
    """A source has no request budget left in the current window."""

    def __init__(self, source: str, used: int, limit: int):
        self.source = source
        self.used = used
        self.limit = limit
        super().__init__(f"{source} rate limit exceeded: used={used}, limit={limit}")


class PersistenceFailure(MatchSignalError):
    """A durable store rejected a read or write."""

    def __init__(self, store: str, operation: str, cause: Exception = None):
        self.store = store
        self.operation = operation
        self.cause = cause
        detail = f": {cause}" if cause else ""
        super().__init__(f"{store} {operation} failed{detail}")
