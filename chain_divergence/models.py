from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple, Union

SIDE_A = "A"
SIDE_B = "B"

PHASE_BOUNDARY = "boundary"
PHASE_BISECT = "bisect"


@dataclass(slots=True)
class RPCResponse:
    """Representation of a JSON-RPC response."""

    jsonrpc: str
    result: Any
    id: Any
    error: Optional[Dict[str, Any]] = None

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "RPCResponse":
        return RPCResponse(
            jsonrpc=data.get("jsonrpc"),
            result=data.get("result"),
            id=data.get("id"),
            error=data.get("error"),
        )

    def get_error_message(self) -> Optional[str]:
        error = self.error
        if error is None:
            return None
        if isinstance(error, dict):
            code = error.get("code")
            message = error.get("message", "unknown error")
            return f"{message} (code {code})" if code is not None else str(message)
        return str(error)


@dataclass(slots=True, frozen=True)
class Failure:
    """One side that failed to answer at a probed block."""

    side: str
    reason: str


@dataclass(slots=True, frozen=True)
class Probe:
    """
    Outcome of querying both oracles at a single block.

    ``left``/``right`` hold the bisection window after this probe was applied;
    boundary probes leave them at the requested range.
    """

    index: int
    phase: str
    fingerprint_a: Optional[str] = None
    fingerprint_b: Optional[str] = None
    failures: Tuple[Failure, ...] = ()
    left: Optional[int] = None
    right: Optional[int] = None

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def matched(self) -> bool:
        return self.ok and self.fingerprint_a == self.fingerprint_b


@dataclass(slots=True, frozen=True)
class NoDivergence:
    start: int
    end: int


@dataclass(slots=True, frozen=True)
class DivergesAt:
    index: int


@dataclass(slots=True, frozen=True)
class OracleError:
    index: int
    failures: Tuple[Failure, ...] = field(default_factory=tuple)

    @property
    def sides(self) -> Tuple[str, ...]:
        return tuple(failure.side for failure in self.failures)


SearchResult = Union[NoDivergence, DivergesAt, OracleError]
