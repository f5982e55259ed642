"""
Tools for comparing two Ethereum-compatible chain nodes.

The core is :mod:`chain_divergence.divergence`, a binary search for the first
block at which two sources disagree.  :mod:`chain_divergence.rpc` supplies
JSON-RPC backed oracles, :mod:`chain_divergence.reporting` renders results for
operators and :mod:`chain_divergence.config` loads checker settings.
"""

from . import config, divergence, reporting, rpc
from .divergence import DivergenceLocator, locate
from .errors import (
    ConfigError,
    DivergenceToolError,
    InvalidRange,
    OracleUnavailable,
    RPCError,
    SearchCancelled,
)
from .models import DivergesAt, Failure, NoDivergence, OracleError, Probe, RPCResponse

__all__ = [
    "config",
    "divergence",
    "reporting",
    "rpc",
    "DivergenceLocator",
    "locate",
    "ConfigError",
    "DivergenceToolError",
    "InvalidRange",
    "OracleUnavailable",
    "RPCError",
    "SearchCancelled",
    "DivergesAt",
    "Failure",
    "NoDivergence",
    "OracleError",
    "Probe",
    "RPCResponse",
]
