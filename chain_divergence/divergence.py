"""
Binary search for the first block at which two chain sources disagree.

Both sources are injected as oracles: callables taking a block height and
returning a fingerprint (normally the block hash).  An oracle signals that it
cannot answer by raising :class:`OracleUnavailable` or by returning ``None``.

The search assumes monotonic divergence: once the sources disagree at some
height they disagree at every later height.  This is not verified; when it
does not hold the result is simply the boundary that bisection lands on.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import replace
from typing import Callable, List, Optional

from .errors import InvalidRange, OracleUnavailable, SearchCancelled
from .models import (
    PHASE_BISECT,
    PHASE_BOUNDARY,
    SIDE_A,
    SIDE_B,
    DivergesAt,
    Failure,
    NoDivergence,
    OracleError,
    Probe,
    SearchResult,
)

logger = logging.getLogger(__name__)

Oracle = Callable[[int], Optional[str]]
ProbeCallback = Callable[[Probe], None]


def validate_range(start: int, end: int) -> None:
    if start < 0 or end < 0 or start > end:
        raise InvalidRange(start, end)


def query_pair(oracle_a: Oracle, oracle_b: Oracle, index: int, phase: str = PHASE_BOUNDARY) -> Probe:
    """
    Query both oracles at ``index``.

    Both sides are always asked so that an operator learns about every failing
    source, not only the first one.
    """
    fingerprints = {}
    failures: List[Failure] = []
    for side, oracle in ((SIDE_A, oracle_a), (SIDE_B, oracle_b)):
        try:
            fingerprint = oracle(index)
        except OracleUnavailable as exc:
            failures.append(Failure(side=side, reason=exc.reason or str(exc)))
            fingerprints[side] = None
            continue
        if fingerprint is None:
            failures.append(Failure(side=side, reason="no fingerprint returned"))
        fingerprints[side] = fingerprint
    return Probe(
        index=index,
        phase=phase,
        fingerprint_a=fingerprints[SIDE_A],
        fingerprint_b=fingerprints[SIDE_B],
        failures=tuple(failures),
    )


class DivergenceLocator:
    """
    Locate the first diverging block between two oracles.

    The locator is stateless between calls apart from ``probes``, the record
    of the most recent search.  Independent ``locate`` calls on separate
    instances share nothing.
    """

    def __init__(
        self,
        on_probe: Optional[ProbeCallback] = None,
        cancel_event: Optional[threading.Event] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.on_probe = on_probe
        self.cancel_event = cancel_event
        self.timeout = timeout
        self.probes: List[Probe] = []
        self._deadline: Optional[float] = None

    def locate(self, oracle_a: Oracle, oracle_b: Oracle, start: int, end: int) -> SearchResult:
        validate_range(start, end)
        self.probes = []
        self._deadline = time.monotonic() + self.timeout if self.timeout is not None else None

        logger.debug("Checking boundary blocks %d and %d", start, end)
        probe = self._record(query_pair(oracle_a, oracle_b, self._checked(start)), start, end)
        if not probe.ok:
            return OracleError(start, probe.failures)
        if not probe.matched:
            return DivergesAt(start)

        probe = self._record(query_pair(oracle_a, oracle_b, self._checked(end)), start, end)
        if not probe.ok:
            return OracleError(end, probe.failures)
        if probe.matched:
            return NoDivergence(start, end)

        left, right = start, end
        logger.debug("Boundaries differ, bisecting [%d, %d]", left, right)
        while left < right:
            mid = left + (right - left) // 2
            probe = query_pair(oracle_a, oracle_b, self._checked(mid), PHASE_BISECT)
            if not probe.ok:
                self._record(probe, left, right)
                return OracleError(mid, probe.failures)
            if probe.matched:
                left = mid + 1
            else:
                right = mid
            self._record(probe, left, right)

        return DivergesAt(left)

    def _record(self, probe: Probe, left: int, right: int) -> Probe:
        probe = replace(probe, left=left, right=right)
        self.probes.append(probe)
        if self.on_probe is not None:
            self.on_probe(probe)
        return probe

    def _checked(self, index: int) -> int:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise SearchCancelled(index, "cancellation requested")
        if self._deadline is not None and time.monotonic() >= self._deadline:
            raise SearchCancelled(index, f"search exceeded {self.timeout:g}s")
        return index


def locate(oracle_a: Oracle, oracle_b: Oracle, start: int, end: int) -> SearchResult:
    """Run a one-off search with a fresh :class:`DivergenceLocator`."""
    return DivergenceLocator().locate(oracle_a, oracle_b, start, end)


def verify_divergence(oracle_a: Oracle, oracle_b: Oracle, index: int, start: int) -> List[Probe]:
    """
    Re-query the last agreeing block (when ``index > start``) and the first
    diverging block so both fingerprints can be shown to an operator.
    """
    indices = [index - 1, index] if index > start else [index]
    return [query_pair(oracle_a, oracle_b, i) for i in indices]
