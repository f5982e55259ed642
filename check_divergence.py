#!/usr/bin/env python3
"""
Find the first block where two RPC endpoints diverge.

Both endpoints are asked for the block hash at the range boundaries and then
at the midpoints chosen by a binary search, so only a logarithmic number of
blocks is fetched.  The search assumes that once the chains fork they never
report the same hash again at a higher block.

Usage:
    python3 check_divergence.py
    python3 check_divergence.py 0 236048
    python3 check_divergence.py 0 latest http://localhost:8545 https://rpc.example.org
    python3 check_divergence.py --config divergence.yaml -j report.json

Settings not given on the command line are read from ``divergence.yaml``
(see ``--config``).

Exit codes:
    0 - Search finished: no divergence, or the first diverging block was found
    1 - An endpoint failed to answer, or the configuration/range is invalid
    130 - Interrupted
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Tuple, Union

from chain_divergence.config import LATEST, CheckerConfig, load_config, parse_block
from chain_divergence.divergence import DivergenceLocator, validate_range, verify_divergence
from chain_divergence.errors import ConfigError, DivergenceToolError, InvalidRange, RPCError, SearchCancelled
from chain_divergence.models import SIDE_A, SIDE_B, DivergesAt, OracleError
from chain_divergence.reporting import build_json_report, format_header, format_probe, format_result
from chain_divergence.rpc import BlockHashOracle, RPCClient

logger = logging.getLogger("check_divergence")


def block_arg(value: str) -> Union[int, str]:
    try:
        return parse_block(value, "block")
    except ConfigError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def build_oracles(config: CheckerConfig) -> Tuple[BlockHashOracle, BlockHashOracle]:
    oracles = []
    for side, url in ((SIDE_A, config.endpoint_a), (SIDE_B, config.endpoint_b)):
        client = RPCClient(
            url,
            timeout=config.rpc.timeout,
            retries=config.rpc.retries,
            backoff=config.rpc.backoff,
        )
        oracles.append(BlockHashOracle(client, side))
    return oracles[0], oracles[1]


def resolve_latest(oracle_a: BlockHashOracle, oracle_b: BlockHashOracle) -> int:
    """Use the lower of the two chain heads, the highest block both nodes can answer for."""
    heads = {}
    for oracle in (oracle_a, oracle_b):
        heads[oracle.side] = oracle.client.block_number()
    logger.info("Chain heads: A=%d B=%d", heads[SIDE_A], heads[SIDE_B])
    return min(heads.values())


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Find the first block where two RPC endpoints diverge using binary search",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("start", nargs="?", type=block_arg, help="First block of the search range")
    parser.add_argument("end", nargs="?", type=block_arg, help=f"Last block of the search range, or '{LATEST}'")
    parser.add_argument("rpc_a", nargs="?", help="RPC endpoint A")
    parser.add_argument("rpc_b", nargs="?", help="RPC endpoint B")
    parser.add_argument(
        "-c", "--config",
        type=Path,
        help="YAML config file (defaults to ./divergence.yaml when present)",
    )
    parser.add_argument("--timeout", type=float, help="Per-request RPC timeout in seconds")
    parser.add_argument("--retries", type=int, help="Retries per RPC request on transport errors")
    parser.add_argument("--backoff", type=float, help="Initial retry backoff in seconds")
    parser.add_argument(
        "--search-timeout",
        type=float,
        help="Abort the whole search after this many seconds",
    )
    parser.add_argument(
        "-j", "--json",
        type=Path,
        dest="json_output",
        help="Write JSON report with full hashes to file",
    )
    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Only print the summary, not every probed block",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging verbosity.",
    )

    args = parser.parse_args(argv)
    if args.start is not None and args.end is None:
        parser.error("an end block is required when a start block is given")
    if args.start == LATEST:
        parser.error(f"start block cannot be '{LATEST}'")
    if args.rpc_a is not None and args.rpc_b is None:
        parser.error("both RPC endpoints are required when one is given")
    return args


def run(args: argparse.Namespace) -> int:
    try:
        config = load_config(args.config)
    except ConfigError as exc:
        logger.error("Invalid configuration: %s", exc)
        return 1

    config.apply_overrides(
        start=args.start,
        end=args.end,
        endpoint_a=args.rpc_a,
        endpoint_b=args.rpc_b,
        timeout=args.timeout,
        retries=args.retries,
        backoff=args.backoff,
    )
    if config.missing_endpoints:
        logger.error(
            "Missing RPC endpoint(s) %s: pass them as arguments or set endpoints in the config file",
            ", ".join(config.missing_endpoints),
        )
        return 1

    oracle_a, oracle_b = build_oracles(config)
    try:
        return search(args, config, oracle_a, oracle_b)
    finally:
        oracle_a.client.close()
        oracle_b.client.close()


def search(
    args: argparse.Namespace,
    config: CheckerConfig,
    oracle_a: BlockHashOracle,
    oracle_b: BlockHashOracle,
) -> int:
    endpoints = {SIDE_A: config.endpoint_a, SIDE_B: config.endpoint_b}

    start = config.start
    end = config.end
    if end == LATEST:
        try:
            end = resolve_latest(oracle_a, oracle_b)
        except RPCError as exc:
            logger.error("Could not resolve the latest block: %s", exc)
            return 1

    try:
        validate_range(start, end)
    except InvalidRange as exc:
        logger.error("%s", exc)
        return 1

    print("\n".join(format_header(endpoints, start, end)))
    print("")

    on_probe = None if args.quiet else (lambda probe: print(format_probe(probe)))
    locator = DivergenceLocator(on_probe=on_probe, timeout=args.search_timeout)
    try:
        result = locator.locate(oracle_a, oracle_b, start, end)
    except SearchCancelled as exc:
        logger.error("%s", exc)
        return 1

    verification = []
    if isinstance(result, DivergesAt):
        verification = verify_divergence(oracle_a, oracle_b, result.index, start)

    print("")
    print("\n".join(format_result(result, endpoints, verification)))

    if args.json_output:
        report = build_json_report(result, endpoints, start, end, locator.probes, verification)
        args.json_output.parent.mkdir(parents=True, exist_ok=True)
        with args.json_output.open("w", encoding="utf-8") as f:
            json.dump(report, f, indent=2)
        print(f"JSON report written to {args.json_output}")

    return 1 if isinstance(result, OracleError) else 0


def main(argv=None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    args = parse_args(argv)
    logging.getLogger().setLevel(args.log_level.upper())

    try:
        return run(args)
    except KeyboardInterrupt:
        logger.error("Interrupted")
        return 130
    except DivergenceToolError as exc:
        logger.error("%s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
