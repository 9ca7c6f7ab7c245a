"""Custom exceptions for the rate limiter."""


class RatelimitError(Exception):
    """Base class for rate limiter exceptions.

    Transport errors raised by the Redis client are not wrapped; they
    propagate to the caller unchanged.
    """

    def __init__(self, message: str = "Rate limiter error"):
        self.message = message
        super().__init__(message)


class InvalidArgumentError(RatelimitError, ValueError):
    """Raised when a caller passes an argument that can never be valid.

    Examples are a non-positive ``block_until_ready`` timeout or a window
    duration that cannot be parsed.
    """


class InternalInvariantError(RatelimitError, RuntimeError):
    """Raised when an algorithm returns a response that breaks an invariant.

    A rejection must always carry a reset timestamp; a reset of zero is only
    valid on success or timeout responses.
    """


class AllRegionsFailedError(RatelimitError):
    """Raised when no region could produce a decision.

    Multi-region mode never manufactures a success when every region errored.
    """

    def __init__(self, errors: list[BaseException], detail: str | None = None):
        self.errors = errors
        message = detail or (
            f"All {len(errors)} regions failed. "
            f"First error: {errors[0]!r}" if errors else "No regions configured"
        )
        super().__init__(message)
