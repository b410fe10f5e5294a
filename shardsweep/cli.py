#!/usr/bin/env python3
"""
Command line entry point.

Usage Examples:
    shardsweep sweep                          # sliding window sweep against the default hosts
    shardsweep counters --rounds 50           # counter increments, stop after 50 rounds
    shardsweep sweep --hosts http://a:6333,http://b:6333 --no-transfers
    shardsweep consistency --count 200000     # one-shot cross-node comparison
    shardsweep missing --start 0 --count 1000
    shardsweep payloads --key timestamp --timeout 60
    shardsweep absent-key --key timestamp

Exit codes:
    0    run finished (round limit reached, or audit found nothing)
    1    confirmed inconsistency
    2    fatal error (retry budget exhausted, stuck transfer, bad data)
    3    invalid configuration
    130  interrupted
"""

import argparse
import asyncio
import sys
from typing import List, Optional, Sequence

from shardsweep import __version__
from shardsweep.audit import (
    check_consistency,
    list_absent_payload_key,
    list_missing_points,
    wait_payload_consistency,
)
from shardsweep.config import HarnessConfig, load_config
from shardsweep.errors import ConfigError, HarnessError, InconsistencyError
from shardsweep.http_node import build_nodes
from shardsweep.logging import console, get_logger, setup_logging
from shardsweep.nodes import Node
from shardsweep.report import print_fatal, print_inconsistencies, print_reports, print_summary
from shardsweep.rounds import build_controller

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_INCONSISTENT = 1
EXIT_FATAL = 2
EXIT_CONFIG = 3
EXIT_INTERRUPTED = 130

SCENARIOS = ("sweep", "counters")
AUDITS = ("consistency", "missing", "payloads", "absent-key")


def _hosts(value: str) -> List[str]:
    hosts = [host.strip() for host in value.split(",") if host.strip()]
    if not hosts:
        raise argparse.ArgumentTypeError("expected a comma separated list of URLs")
    return hosts


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", help="TOML config file")
    common.add_argument("--hosts", type=_hosts, help="Comma separated node URLs")
    common.add_argument("--api-key", help="API key sent with every request")
    common.add_argument("--collection", help="Collection name")
    common.add_argument("--batch-size", type=int, help="Points per request")
    common.add_argument("--point-count", type=int, help="Points per window")
    common.add_argument("--seed", type=int, help="Random seed for node selection and data")
    common.add_argument("--log-level", help="DEBUG, INFO, WARNING or ERROR")

    rounds = argparse.ArgumentParser(add_help=False)
    rounds.add_argument("--rounds", dest="max_rounds", type=int,
                        help="Stop after this many rounds (default: run until failure)")
    rounds.add_argument("--start-round", type=int, default=0,
                        help="Resume from this round number")
    rounds.add_argument("--no-setup", action="store_true",
                        help="Reuse the existing collection instead of recreating it")
    rounds.add_argument("--no-transfers", dest="transfers", action="store_false", default=None,
                        help="Do not inject shard transfers")
    rounds.add_argument("--cancel-optimizers", action="store_true", default=None,
                        help="Periodically restart optimizers on a random node")
    rounds.add_argument("--shuffle", dest="shuffle_points", action="store_true", default=None,
                        help="Shuffle point order within each round")
    rounds.add_argument("--check-retries", type=int, help="Check attempts before failing")

    parser = argparse.ArgumentParser(
        prog="shardsweep",
        description="Consistency stress harness for replicated, sharded vector stores",
        epilog=__doc__,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    commands = parser.add_subparsers(dest="command", required=True)

    sweep = commands.add_parser("sweep", parents=[common, rounds],
                                help="Slide a window of live points forward every round")
    sweep.add_argument("--cross-check", action="store_true", default=None,
                       help="Also compare payloads and vectors between nodes")

    counters = commands.add_parser("counters", parents=[common, rounds],
                                   help="Increment a payload counter on every point every round")
    counters.add_argument("--sparse-checks", dest="always_check", action="store_false",
                          default=None, help="Only check the first rounds and every 10th")
    counters.add_argument("--scroll-reads", action="store_true", default=None,
                          help="Read counters with scroll instead of get")
    counters.add_argument("--wait-green", action="store_true", default=None,
                          help="Wait for green collection status before checking")

    consistency = commands.add_parser("consistency", parents=[common],
                                      help="Compare points between adjacent nodes once")
    consistency.add_argument("--start", type=int, default=0)
    consistency.add_argument("--count", type=int)
    consistency.add_argument("--no-vectors", action="store_true", help="Compare payloads only")

    missing = commands.add_parser("missing", parents=[common],
                                  help="List points of a range each node does not return")
    missing.add_argument("--start", type=int, default=0)
    missing.add_argument("--count", type=int)
    missing.add_argument("--recheck", type=int, default=3,
                         help="Re-fetch missing points this many times")

    payloads = commands.add_parser("payloads", parents=[common],
                                   help="Wait until a payload key agrees on all nodes")
    payloads.add_argument("--key", help="Payload key to compare")
    payloads.add_argument("--start", type=int, default=0)
    payloads.add_argument("--count", type=int)
    payloads.add_argument("--window", type=int, help="IDs compared per pass")
    payloads.add_argument("--timeout", type=float, help="Seconds before giving up")

    absent = commands.add_parser("absent-key", parents=[common],
                                 help="List points whose payload lacks a key")
    absent.add_argument("--key", help="Payload key to look for")

    return parser


def config_from_args(args: argparse.Namespace, environ=None) -> HarnessConfig:
    """Resolve defaults, TOML file, environment and flags into one config."""
    config = load_config(args.config, environ)
    overrides = {}
    for name in ("hosts", "api_key", "collection", "batch_size", "point_count", "seed",
                 "log_level", "max_rounds", "transfers", "cancel_optimizers",
                 "shuffle_points", "check_retries", "cross_check", "always_check",
                 "scroll_reads", "wait_green"):
        overrides[name] = getattr(args, name, None)
    try:
        return config.replace(**overrides)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"invalid config: {e}") from e


async def run_scenario(scenario: str, nodes: Sequence[Node], config: HarnessConfig,
                       start_round: int = 0, setup: bool = True) -> int:
    """Run a round scenario to completion and map its outcome to an exit code."""
    controller = build_controller(scenario, nodes, config)

    try:
        await controller.run(start_round=start_round, max_rounds=config.max_rounds, setup=setup)
    except InconsistencyError as e:
        print_inconsistencies(e)
        return EXIT_INCONSISTENT
    except HarnessError as e:
        logger.error(f"Run aborted: {e}")
        print_fatal(e)
        return EXIT_FATAL
    finally:
        print_summary(controller.summary)

    console.print(f"[green]Completed {controller.summary.rounds_completed} rounds[/green]")
    return EXIT_OK


async def run_audit(command: str, nodes: Sequence[Node], config: HarnessConfig,
                    args: argparse.Namespace) -> int:
    """Run a one-shot audit and map its findings to an exit code."""
    try:
        if command == "consistency":
            reports = await check_consistency(nodes, config, start=args.start, count=args.count,
                                              with_vectors=not args.no_vectors)
            print_reports(reports)
            return EXIT_INCONSISTENT if reports else EXIT_OK

        if command == "missing":
            results = await asyncio.gather(*(
                list_missing_points(node, config, start=args.start, count=args.count,
                                    recheck_attempts=args.recheck)
                for node in nodes
            ))
            for result in results:
                console.print(result.describe())
            return EXIT_INCONSISTENT if any(result.missing for result in results) else EXIT_OK

        if command == "payloads":
            retries = await wait_payload_consistency(nodes, config, key=args.key,
                                                     start=args.start, count=args.count,
                                                     window=args.window, timeout=args.timeout)
            console.print(f"[green]ALL CONSISTENT AFTER {retries} RETRIES[/green]")
            return EXIT_OK

        if command == "absent-key":
            found = False
            for node in nodes:
                ids = await list_absent_payload_key(node, config, key=args.key)
                found = found or bool(ids)
                for point_id in ids:
                    console.print(f"{node.name}: {point_id}")
            return EXIT_INCONSISTENT if found else EXIT_OK
    except HarnessError as e:
        logger.error(f"Audit aborted: {e}")
        print_fatal(e)
        return EXIT_FATAL

    raise ValueError(f"unknown command: {command}")


async def _run(args: argparse.Namespace, config: HarnessConfig) -> int:
    nodes = build_nodes(config)
    try:
        if args.command in SCENARIOS:
            return await run_scenario(args.command, nodes, config,
                                      start_round=args.start_round, setup=not args.no_setup)
        return await run_audit(args.command, nodes, config, args)
    finally:
        await asyncio.gather(*(node.handle.close() for node in nodes))


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = config_from_args(args)
    except ConfigError as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        return EXIT_CONFIG

    setup_logging(config.log_level)
    logger.info(f"shardsweep {__version__}: {args.command} on {', '.join(config.hosts)}")

    try:
        return asyncio.run(_run(args, config))
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")
        return EXIT_INTERRUPTED


if __name__ == "__main__":
    sys.exit(main())
