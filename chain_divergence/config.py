from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from .errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("divergence.yaml")
LATEST = "latest"

DEFAULT_TIMEOUT = 10.0
DEFAULT_RETRIES = 3
DEFAULT_BACKOFF = 0.5


@dataclass(slots=True)
class RPCSettings:
    timeout: float = DEFAULT_TIMEOUT
    retries: int = DEFAULT_RETRIES
    backoff: float = DEFAULT_BACKOFF


@dataclass(slots=True)
class CheckerConfig:
    """Settings for a divergence check, merged from the YAML file and the CLI."""

    endpoint_a: Optional[str] = None
    endpoint_b: Optional[str] = None
    start: int = 0
    end: Union[int, str] = LATEST
    rpc: RPCSettings = field(default_factory=RPCSettings)

    @property
    def missing_endpoints(self) -> list[str]:
        missing = []
        if not self.endpoint_a:
            missing.append("A")
        if not self.endpoint_b:
            missing.append("B")
        return missing

    def apply_overrides(
        self,
        start: Optional[int] = None,
        end: Optional[Union[int, str]] = None,
        endpoint_a: Optional[str] = None,
        endpoint_b: Optional[str] = None,
        timeout: Optional[float] = None,
        retries: Optional[int] = None,
        backoff: Optional[float] = None,
    ) -> "CheckerConfig":
        if start is not None:
            self.start = start
        if end is not None:
            self.end = end
        if endpoint_a:
            self.endpoint_a = endpoint_a
        if endpoint_b:
            self.endpoint_b = endpoint_b
        if timeout is not None:
            self.rpc.timeout = timeout
        if retries is not None:
            self.rpc.retries = retries
        if backoff is not None:
            self.rpc.backoff = backoff
        return self


def parse_block(value: Any, key: str) -> Union[int, str]:
    """
    Parse a block bound given as an int, a decimal or 0x-hex string, or ``latest``.
    """
    if isinstance(value, bool):
        raise ConfigError(f"{key}: expected a block number, got {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip().lower()
        if text == LATEST:
            return LATEST
        try:
            return int(text, 16) if text.startswith("0x") else int(text)
        except ValueError:
            pass
    raise ConfigError(f"{key}: expected a block number or '{LATEST}', got {value!r}")


def _section(data: Dict[str, Any], key: str) -> Dict[str, Any]:
    section = data.get(key) or {}
    if not isinstance(section, dict):
        raise ConfigError(f"'{key}' must be a mapping, got {type(section).__name__}")
    return section


def config_from_dict(data: Dict[str, Any]) -> CheckerConfig:
    if not isinstance(data, dict):
        raise ConfigError(f"configuration root must be a mapping, got {type(data).__name__}")

    endpoints = _section(data, "endpoints")
    block_range = _section(data, "range")
    rpc = _section(data, "rpc")

    for side in ("a", "b"):
        url = endpoints.get(side)
        if url is not None and (not isinstance(url, str) or not url.strip()):
            raise ConfigError(f"endpoints.{side}: expected a URL string, got {url!r}")

    config = CheckerConfig(endpoint_a=endpoints.get("a"), endpoint_b=endpoints.get("b"))
    if "start" in block_range:
        start = parse_block(block_range["start"], "range.start")
        if start == LATEST:
            raise ConfigError(f"range.start cannot be '{LATEST}'")
        config.start = start
    if "end" in block_range:
        config.end = parse_block(block_range["end"], "range.end")

    try:
        config.rpc = RPCSettings(
            timeout=float(rpc.get("timeout", DEFAULT_TIMEOUT)),
            retries=int(rpc.get("retries", DEFAULT_RETRIES)),
            backoff=float(rpc.get("backoff", DEFAULT_BACKOFF)),
        )
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"invalid rpc settings: {exc}") from exc
    return config


def load_config(path: Optional[Path] = None) -> CheckerConfig:
    """
    Load the checker configuration from ``path``.

    When no path is given the default ``divergence.yaml`` is used if present;
    an explicitly requested file must exist.
    """
    explicit = path is not None
    path = Path(path) if explicit else DEFAULT_CONFIG_PATH
    if not path.exists():
        if explicit:
            raise ConfigError(f"Config file not found: {path}")
        logger.debug("No config file at %s, using defaults", path)
        return CheckerConfig()

    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Could not parse {path}: {exc}") from exc

    logger.debug("Loaded config from %s", path)
    return config_from_dict(data or {})
