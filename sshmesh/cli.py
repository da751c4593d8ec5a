"""Command-line entry points: ``provision <N>``, ``verify <N>``, ``teardown``.

Exit status: 0 when every requested guarantee was met, 1 when some node or
step failed (the report itemizes which), 2 on usage or configuration errors,
130 when interrupted. An interrupted provision leaves its nodes running.
"""

from __future__ import annotations

import argparse
import asyncio
from pathlib import Path

from loguru import logger
from rich.console import Console

from sshmesh.allocator import parse_fleet_spec
from sshmesh.config import Settings, load_config, resolve_logging, resolve_settings
from sshmesh.core.exceptions import (
    ConfigurationError,
    ImageBuildFailed,
    InvalidSpec,
    NetworkSetupFailed,
    RuntimeCommandError,
)
from sshmesh.logging import setup_logging, teardown_logging
from sshmesh.orchestrator import FleetOrchestrator
from sshmesh.report import print_provision_report, print_teardown_report, print_verify_report
from sshmesh.runtime.container import ContainerRuntime
from sshmesh.teardown import TeardownEngine
from sshmesh.types import FleetSpec
from sshmesh.verify import FleetVerifier

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2
EXIT_INTERRUPTED = 130


def _fleet_spec(raw: str) -> FleetSpec:
    try:
        return parse_fleet_spec(raw)
    except InvalidSpec as e:
        raise argparse.ArgumentTypeError(str(e)) from e


async def _provision(args: argparse.Namespace, settings: Settings, console: Console) -> int:
    orchestrator = FleetOrchestrator(ContainerRuntime.from_settings(settings), settings)
    report = await orchestrator.provision(args.spec)
    print_provision_report(report, settings, console)
    return EXIT_OK if report.ok else EXIT_FAILED


async def _verify(args: argparse.Namespace, settings: Settings, console: Console) -> int:
    report = await FleetVerifier(settings).verify(args.spec)
    print_verify_report(report, console)
    return EXIT_OK if report.ok else EXIT_FAILED


async def _teardown(args: argparse.Namespace, settings: Settings, console: Console) -> int:
    engine = TeardownEngine(ContainerRuntime.from_settings(settings), settings)
    report = await engine.teardown()
    print_teardown_report(report, console)
    return EXIT_OK if report.ok else EXIT_FAILED


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sshmesh",
        description="Provision a disposable container fleet with mutual SSH trust.",
    )
    parser.add_argument("--config", type=Path, default=None, help="TOML config file (default: ./sshmesh.toml)")
    parser.add_argument("--binary", default=None, help="Container runtime CLI (docker, podman, nerdctl)")
    parser.add_argument("--workdir", type=Path, default=None, help="Where keys and the Dockerfile are kept")
    parser.add_argument(
        "--log-level", default=None, choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    parser.add_argument("--log-file", default=None, help="Also write DEBUG logs to this file")

    commands = parser.add_subparsers(dest="command", required=True)
    provision = commands.add_parser("provision", help="Create N nodes and bootstrap SSH trust")
    provision.add_argument("spec", metavar="N", type=_fleet_spec, help="Number of nodes (positive integer)")
    provision.set_defaults(handler=_provision)
    verify = commands.add_parser("verify", help="Check host->node and node->node SSH connectivity")
    verify.add_argument("spec", metavar="N", type=_fleet_spec, help="Number of nodes the fleet was provisioned with")
    verify.set_defaults(handler=_verify)
    teardown = commands.add_parser("teardown", help="Remove every node, network, image, key and trust entry")
    teardown.set_defaults(handler=_teardown)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    console = Console()

    try:
        raw = load_config(config_path=args.config)
        settings = resolve_settings(raw, binary=args.binary, workdir=args.workdir)
        log_config = resolve_logging(raw, level=args.log_level, file=args.log_file)
    except ConfigurationError as e:
        console.print(f"[bold red]Configuration error:[/bold red] {e}")
        return EXIT_USAGE

    logger.remove()
    handler_ids = setup_logging(log_config)
    try:
        return asyncio.run(args.handler(args, settings, console))
    except KeyboardInterrupt:
        console.print(
            "[yellow]Interrupted. Nodes created so far were left running; "
            "run 'sshmesh teardown' to remove them.[/yellow]"
        )
        return EXIT_INTERRUPTED
    except (ImageBuildFailed, NetworkSetupFailed, RuntimeCommandError) as e:
        console.print(f"[bold red]{type(e).__name__}:[/bold red] {e}")
        return EXIT_FAILED
    finally:
        teardown_logging(handler_ids)
