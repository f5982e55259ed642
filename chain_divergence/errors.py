from __future__ import annotations

from typing import Optional


class DivergenceToolError(Exception):
    """Base class for every error raised by the divergence tooling."""


class InvalidRange(DivergenceToolError, ValueError):
    def __init__(self, start: int, end: int) -> None:
        self.start = start
        self.end = end
        if start < 0 or end < 0:
            reason = "bounds must be non-negative"
        else:
            reason = "start must not exceed end"
        super().__init__(f"Invalid block range [{start}, {end}]: {reason}")


class OracleUnavailable(DivergenceToolError):
    """
    An oracle could not produce a usable fingerprint for ``index``.

    ``side`` identifies which of the two compared sources failed ("A" or "B").
    The locator records this failure and aborts the search; it never guesses.
    """

    def __init__(self, index: int, side: Optional[str] = None, reason: str = "") -> None:
        self.index = index
        self.side = side
        self.reason = reason
        label = f"oracle {side}" if side else "oracle"
        message = f"{label} unavailable at block {index}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class RPCError(DivergenceToolError):
    def __init__(self, url: str, method: str, message: str) -> None:
        self.url = url
        self.method = method
        super().__init__(f"RPC {method} on {url} failed: {message}")


class ConfigError(DivergenceToolError):
    pass


class SearchCancelled(DivergenceToolError):
    def __init__(self, index: int, reason: str) -> None:
        self.index = index
        self.reason = reason
        super().__init__(f"Search cancelled before probing block {index}: {reason}")
