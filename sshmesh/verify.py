"""Connectivity check for a provisioned fleet.

Diagnostic only: connects from the operator to every node through its
published port (pinning host keys against the operator's known_hosts), then
from every node fans out to its peers with parallel-ssh.
"""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass

import asyncssh
from loguru import logger
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from sshmesh.allocator import build_topology
from sshmesh.config import Settings
from sshmesh.types import FleetSpec, NodeIdentity, Topology
from sshmesh.utils.conc import map_bounded

log = logger.bind(component="verify")

_HOST_COMMAND = "echo \"Connection successful: $(hostname) - $(hostname -i)\""


@dataclass(frozen=True, slots=True)
class ConnectivityCheck:
    source: str
    target: str
    ok: bool
    detail: str = ""


@dataclass(frozen=True, slots=True)
class VerifyReport:
    topology: Topology
    checks: tuple[ConnectivityCheck, ...]

    @property
    def failures(self) -> tuple[ConnectivityCheck, ...]:
        return tuple(c for c in self.checks if not c.ok)

    @property
    def ok(self) -> bool:
        return bool(self.checks) and not self.failures


def peer_command(source: NodeIdentity, topology: Topology) -> str | None:
    """The parallel-ssh fan-out run on ``source``; None for a single-node fleet.

    >>> from sshmesh.types import NodeIdentity
    >>> nodes = tuple(NodeIdentity(i, f"comp{i}", f"172.20.0.{10 + i}", 2221 + i, f"comp{i}") for i in (1, 2, 3))
    >>> peer_command(nodes[0], nodes)
    'parallel-ssh -i -H comp2 -H comp3 hostname -i'
    """
    targets = " ".join(f"-H {p.name}" for p in topology if p.index != source.index)
    if not targets:
        return None
    return f"parallel-ssh -i {targets} hostname -i"


class FleetVerifier:

    def __init__(self, settings: Settings, *, connect_attempts: int = 3) -> None:
        self._settings = settings
        self._connect_attempts = connect_attempts

    async def verify(self, spec: FleetSpec) -> VerifyReport:
        topology = build_topology(spec, self._settings)
        log.info("Cluster connectivity check (N={n})", n=spec.size)
        results = await map_bounded(
            lambda node: self._check_node(node, topology), topology, self._settings.max_workers,
        )
        checks: list[ConnectivityCheck] = []
        for node, result in zip(topology, results, strict=True):
            if isinstance(result, Exception):
                checks.append(ConnectivityCheck("host", node.name, False, str(result)))
            else:
                checks.extend(result)
        return VerifyReport(topology=topology, checks=tuple(checks))

    async def _check_node(
        self, node: NodeIdentity, topology: Topology,
    ) -> list[ConnectivityCheck]:
        known_hosts = self._settings.known_hosts_path
        if not known_hosts.exists():
            detail = f"{known_hosts} not found; host keys cannot be pinned (run provision first)"
            log.warning("Host -> {name} skipped: {detail}", name=node.name, detail=detail)
            return [ConnectivityCheck("host", node.name, False, detail)]
        try:
            conn = await self._connect(node)
        except (OSError, asyncssh.Error) as e:
            log.warning("Host -> {name} connection FAILED: {err}", name=node.name, err=e)
            return [ConnectivityCheck("host", node.name, False, str(e))]

        timeout = self._settings.command_timeout
        try:
            greeting = await conn.run(_HOST_COMMAND, check=False, timeout=timeout)
            checks = [ConnectivityCheck(
                "host", node.name, greeting.exit_status == 0, str(greeting.stdout or "").strip(),
            )]
            log.info("Host -> {name} connection {state}", name=node.name,
                     state="OK" if checks[0].ok else "FAILED")

            command = peer_command(node, topology)
            if command is not None:
                fanout = await conn.run(command, check=False, timeout=timeout)
                detail = str(fanout.stdout or "") + str(fanout.stderr or "")
                checks.extend(_parse_fanout(node, topology, fanout.exit_status == 0, detail))
            return checks
        finally:
            conn.close()
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(conn.wait_closed(), timeout=5.0)

    async def _connect(self, node: NodeIdentity) -> asyncssh.SSHClientConnection:
        settings = self._settings
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._connect_attempts),
            wait=wait_fixed(settings.ready_interval),
            retry=retry_if_exception_type(OSError),
            reraise=True,
        ):
            with attempt:
                return await asyncssh.connect(
                    "localhost",
                    port=node.port,
                    username=settings.ssh_user,
                    client_keys=[str(settings.private_key_path)],
                    known_hosts=str(settings.known_hosts_path),
                    connect_timeout=settings.command_timeout,
                )
        raise AssertionError("unreachable")


def _parse_fanout(
    source: NodeIdentity, topology: Topology, ok: bool, output: str,
) -> list[ConnectivityCheck]:
    """One check per peer from parallel-ssh ``-i`` output (``[n] ... [SUCCESS] comp2``)."""
    checks = []
    for peer in topology:
        if peer.index == source.index:
            continue
        succeeded = any(
            "[SUCCESS]" in line and line.split()[-1] == peer.name for line in output.splitlines()
        )
        checks.append(ConnectivityCheck(source.name, peer.name, succeeded or ok))
    return checks
