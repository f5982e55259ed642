from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Sequence

from .models import (
    PHASE_BISECT,
    SIDE_A,
    SIDE_B,
    DivergesAt,
    NoDivergence,
    OracleError,
    Probe,
    SearchResult,
)

SEPARATOR = "=" * 47


def short_hash(value: Optional[str], width: int = 18) -> str:
    if value is None:
        return "<unavailable>"
    if len(value) <= width:
        return value
    return f"{value[:width]}..."


def format_header(endpoints: Mapping[str, str], start: int, end: int) -> List[str]:
    return [
        SEPARATOR,
        "Blockchain Fork Detection",
        SEPARATOR,
        f"RPC Endpoint A: {endpoints.get(SIDE_A, '')}",
        f"RPC Endpoint B: {endpoints.get(SIDE_B, '')}",
        f"Search Range: Block {start} to {end}",
        SEPARATOR,
    ]


def format_probe(probe: Probe) -> str:
    """
    Render one probe as a single line, e.g.
    ``Checking block 42... Match (0xabc...)``.
    """
    prefix = f"Checking block {probe.index}..."
    if not probe.ok:
        sides = ", ".join(f.side for f in probe.failures)
        line = f"{prefix} Error fetching block data from {sides}"
    elif probe.matched:
        line = f"{prefix} Match ({short_hash(probe.fingerprint_a)})"
    else:
        line = (
            f"{prefix} Mismatch (A {short_hash(probe.fingerprint_a)}"
            f" / B {short_hash(probe.fingerprint_b)})"
        )
    if probe.phase == PHASE_BISECT and probe.ok:
        line += f"  search range: [{probe.left}, {probe.right}]"
    return line


def _fingerprint_lines(probe: Probe, endpoints: Mapping[str, str]) -> List[str]:
    lines = []
    for side, fingerprint in ((SIDE_A, probe.fingerprint_a), (SIDE_B, probe.fingerprint_b)):
        lines.append(f"  {side} ({endpoints.get(side, '')}): {fingerprint or '<unavailable>'}")
    for failure in probe.failures:
        lines.append(f"  {failure.side} error: {failure.reason}")
    return lines


def format_result(
    result: SearchResult,
    endpoints: Mapping[str, str],
    verification: Sequence[Probe] = (),
) -> List[str]:
    """
    Build the summary printed once the search has finished.

    ``verification`` holds fresh probes of the last agreeing and first
    diverging blocks when a divergence was found.
    """
    lines = [SEPARATOR]
    if isinstance(result, NoDivergence):
        lines.append(f"No divergence found in range [{result.start}, {result.end}]")
        lines.append(
            f"Both chains are identical from block {result.start} to {result.end}"
        )
    elif isinstance(result, DivergesAt):
        lines.append(f"First divergence at block {result.index}")
        for probe in verification:
            label = "First diverging block" if probe.index == result.index else "Last matching block"
            lines.append("")
            lines.append(f"{label}: {probe.index}")
            lines.extend(_fingerprint_lines(probe, endpoints))
    elif isinstance(result, OracleError):
        sides = ", ".join(result.sides) or "unknown"
        lines.append(
            f"Unable to finish the search: oracle error at block {result.index} (side {sides})"
        )
        for failure in result.failures:
            lines.append(f"  {failure.side} ({endpoints.get(failure.side, '')}): {failure.reason}")
    else:
        raise TypeError(f"Unknown search result: {result!r}")
    lines.append(SEPARATOR)
    return lines


def _probe_to_dict(probe: Probe) -> Dict[str, Any]:
    return {
        "block": probe.index,
        "phase": probe.phase,
        "hash_a": probe.fingerprint_a,
        "hash_b": probe.fingerprint_b,
        "match": probe.matched,
        "failures": [{"side": f.side, "reason": f.reason} for f in probe.failures],
        "window": [probe.left, probe.right],
    }


def build_json_report(
    result: SearchResult,
    endpoints: Mapping[str, str],
    start: int,
    end: int,
    probes: Sequence[Probe],
    verification: Sequence[Probe] = (),
) -> Dict[str, Any]:
    report: Dict[str, Any] = {
        "endpoints": {SIDE_A: endpoints.get(SIDE_A), SIDE_B: endpoints.get(SIDE_B)},
        "range": {"start": start, "end": end},
        "result": None,
        "first_divergence": None,
        "error": None,
        "total_probes": len(probes),
        "probes": [_probe_to_dict(p) for p in probes],
        "verification": [_probe_to_dict(p) for p in verification],
    }
    if isinstance(result, NoDivergence):
        report["result"] = "NO_DIVERGENCE"
    elif isinstance(result, DivergesAt):
        report["result"] = "DIVERGENCE"
        report["first_divergence"] = result.index
    elif isinstance(result, OracleError):
        report["result"] = "ORACLE_ERROR"
        report["error"] = {
            "block": result.index,
            "failures": [{"side": f.side, "reason": f.reason} for f in result.failures],
        }
    return report
