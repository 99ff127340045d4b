"""Error taxonomy shared across the cache, upstream client and scheduler."""


class LendingCacheError(Exception):
    """Base class for all lending-cache errors."""


class UpstreamError(LendingCacheError):
    """A call to the ledger/contract interface did not produce a value."""

    def __init__(self, message: str, *, method: str | None = None) -> None:
        super().__init__(message)
        self.method = method


class UpstreamUnavailable(UpstreamError):
    """Transient failure: network error, timeout, or a server-side fault."""


class UpstreamRejected(UpstreamError):
    """The remote endpoint understood the call and declined it."""

    def __init__(self, message: str, *, method: str | None = None, code: int | None = None) -> None:
        super().__init__(message, method=method)
        self.code = code


class CacheBackendUnavailable(LendingCacheError):
    """The cache backend could not be reached."""


class SerializationFailure(LendingCacheError):
    """A value could not be encoded for storage."""


class SchedulerError(LendingCacheError):
    """The scheduler could not register its refresh timers."""
