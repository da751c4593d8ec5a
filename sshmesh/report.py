"""Operator-facing rendering of provisioning, verification and teardown results."""

from __future__ import annotations

from rich.console import Console
from rich.table import Table
from rich.text import Text

from sshmesh.config import Settings
from sshmesh.types import ProvisionReport, TeardownReport
from sshmesh.verify import VerifyReport


def connection_commands(report: ProvisionReport, settings: Settings) -> list[str]:
    """``ssh`` commands reaching every ready node from the operator's host."""
    key = report.credentials.private_path if report.credentials else settings.private_key_path
    return [
        f"ssh -i {key} {settings.ssh_user}@localhost -p {node.port}"
        for node in report.ready
    ]


def _topology_table(report: ProvisionReport) -> Table:
    table = Table(
        title="Fleet Topology\n",
        title_style="bold",
        title_justify="center",
        show_edge=False,
        box=None,
        padding=(0, 2),
        header_style="bold bright_black",
    )
    table.add_column("Node")
    table.add_column("IP")
    table.add_column("Host Port", justify="right")
    table.add_column("Status")

    live = {n.identity.index for n in report.live}
    ready = {n.index for n in report.ready}
    failed = {f.index for f in report.failures}
    for node in report.topology:
        if node.index in ready and node.index not in failed:
            status = Text("ready", style="green")
        elif node.index in ready:
            status = Text("degraded", style="yellow")
        elif node.index in live:
            status = Text("not ready", style="yellow")
        else:
            status = Text("absent", style="red")
        table.add_row(node.name, node.address, str(node.port), status)
    return table


def print_provision_report(report: ProvisionReport, settings: Settings, console: Console) -> None:
    console.print()
    console.print(_topology_table(report))
    console.print()

    commands = connection_commands(report, settings)
    if commands:
        console.print("[bold]SSH connection commands[/bold]")
        console.print("[bright_black]# Connect from host to nodes:[/bright_black]")
        for command in commands:
            console.print(command, markup=False, highlight=False)
        if len(report.ready) > 1:
            peer = report.ready[1]
            console.print("[bright_black]# Connect between nodes:[/bright_black]")
            console.print(
                f"# From {report.ready[0].name}: ssh {settings.ssh_user}@{peer.name}",
                markup=False, highlight=False,
            )
            console.print(
                f"# Or using IPs: ssh {settings.ssh_user}@{peer.address}",
                markup=False, highlight=False,
            )
        console.print()
        console.print(f"To test connectivity, run: sshmesh verify {report.spec.size}")

    if report.failures:
        console.print()
        console.print(f"[bold red]{len(report.failures)} failure(s):[/bold red]")
        for failure in report.failures:
            console.print(f"  - {failure}", markup=False, highlight=False)


def print_verify_report(report: VerifyReport, console: Console) -> None:
    table = Table(
        title="Connectivity\n",
        title_style="bold",
        title_justify="center",
        show_edge=False,
        box=None,
        padding=(0, 2),
        header_style="bold bright_black",
    )
    table.add_column("From")
    table.add_column("To")
    table.add_column("Result")
    table.add_column("Detail", overflow="fold")
    for check in report.checks:
        result = Text("OK", style="green") if check.ok else Text("FAILED", style="red")
        table.add_row(check.source, check.target, result, check.detail)
    console.print()
    console.print(table)


def print_teardown_report(report: TeardownReport, console: Console) -> None:
    console.print()
    if report.removed_nodes:
        console.print(f"Removed nodes: {', '.join(report.removed_nodes)}")
    for step in report.steps:
        style = "red" if step.error else ("green" if step.removed else "bright_black")
        console.print(Text(f"  {step}", style=style))
    if report.ok:
        console.print("[bold]Cleanup complete.[/bold]")
    else:
        console.print(f"[bold red]{len(report.failures)} teardown step(s) failed.[/bold red]")
