"""Node lifecycle: idempotent create/replace and SSH readiness polling."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable

from loguru import logger
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_delay,
    wait_fixed,
)

from sshmesh.config import Settings
from sshmesh.core.exceptions import NodeCreateFailed, NodeNotReady, RuntimeCommandError
from sshmesh.runtime.protocol import Runtime
from sshmesh.types import LiveNode, NodeFailure, NodeIdentity, Topology
from sshmesh.utils.conc import map_bounded

log = logger.bind(component="lifecycle")

type ReadinessProbe = Callable[[NodeIdentity], Awaitable[None]]


class ProbeNotReady(Exception):
    """SSH service did not answer yet - retry."""


def ssh_banner_probe(host: str, timeout: float = 2.0) -> ReadinessProbe:
    """Build a probe that connects to ``host:port`` and expects an ``SSH-`` banner."""

    async def probe(node: NodeIdentity) -> None:
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(host, node.port), timeout=timeout,
            )
        except (TimeoutError, OSError) as e:
            raise ProbeNotReady(f"{host}:{node.port}: {e}") from None
        try:
            banner = await asyncio.wait_for(reader.readline(), timeout=timeout)
        except (TimeoutError, OSError) as e:
            raise ProbeNotReady(f"{host}:{node.port}: {e}") from None
        finally:
            writer.close()
        if not banner.startswith(b"SSH-"):
            raise ProbeNotReady(f"{host}:{node.port}: unexpected banner {banner[:32]!r}")

    return probe


class NodeLifecycleDriver:
    """Creates nodes and waits for their SSH services.

    Replacing a node is destructive by choice: a name left over from a prior
    run is stopped and removed before the node is recreated, so re-running a
    provision never needs manual cleanup. A failed create never rolls back
    nodes that were already created.
    """

    def __init__(
        self,
        runtime: Runtime,
        settings: Settings,
        *,
        probe: ReadinessProbe | None = None,
    ) -> None:
        self._runtime = runtime
        self._settings = settings
        self._probe = probe or ssh_banner_probe(settings.ready_host)

    async def ensure_node(self, identity: NodeIdentity, image: str) -> LiveNode:
        """Create node ``identity``, replacing any node with the same name.

        Raises:
            NodeCreateFailed: If the old node cannot be removed or the new one
                cannot be started.
        """
        name = identity.name
        try:
            if await self._runtime.stop_node(name):
                log.info("Stopped stale node {name}", name=name)
            await self._runtime.remove_node(name)
        except RuntimeCommandError as e:
            raise NodeCreateFailed(identity.index, f"cannot replace existing node: {e.stderr}") from e

        log.info(
            "Creating {name} with IP {ip} on host port {port}",
            name=name, ip=identity.address, port=identity.port,
        )
        try:
            await self._runtime.run_node(
                name, image, self._settings.network_name, identity.address, identity.port,
            )
        except RuntimeCommandError as e:
            # a run that fails at start still leaves a Created container behind
            try:
                await self._runtime.remove_node(name)
            except RuntimeCommandError as cleanup:
                log.warning("Could not remove failed node {name}: {err}", name=name, err=cleanup.stderr)
            raise NodeCreateFailed(identity.index, e.stderr or str(e)) from e
        return LiveNode(identity=identity, image=image)

    async def ensure_nodes(
        self, topology: Topology, image: str,
    ) -> tuple[tuple[LiveNode, ...], tuple[NodeFailure, ...]]:
        """Create every node of ``topology`` concurrently.

        Returns:
            Live nodes in index order and one failure per node that could not
            be created.
        """
        results = await map_bounded(
            lambda node: self.ensure_node(node, image), topology, self._settings.max_workers,
        )
        live: list[LiveNode] = []
        failures: list[NodeFailure] = []
        for node, result in zip(topology, results, strict=True):
            if isinstance(result, Exception):
                failure = NodeFailure.from_error(node, result, NodeCreateFailed.kind)
                log.error("{failure}", failure=failure)
                failures.append(failure)
            else:
                live.append(result)
        return tuple(live), tuple(failures)

    async def wait_ready(
        self, nodes: Iterable[LiveNode],
    ) -> tuple[Topology, tuple[NodeFailure, ...]]:
        """Poll every node until its SSH service answers or ``ready_timeout`` passes."""
        identities = [n.identity for n in nodes]
        results = await map_bounded(self._wait_one, identities, len(identities) or 1)
        ready: list[NodeIdentity] = []
        failures: list[NodeFailure] = []
        for node, result in zip(identities, results, strict=True):
            if isinstance(result, Exception):
                failure = NodeFailure.from_error(node, result, NodeNotReady.kind)
                log.error("{failure}", failure=failure)
                failures.append(failure)
            else:
                ready.append(node)

        if ready and self._settings.settle_delay > 0:
            await asyncio.sleep(self._settings.settle_delay)
        return tuple(ready), tuple(failures)

    async def _wait_one(self, node: NodeIdentity) -> NodeIdentity:
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_delay(self._settings.ready_timeout),
                wait=wait_fixed(self._settings.ready_interval),
                retry=retry_if_exception_type(ProbeNotReady),
            ):
                with attempt:
                    await self._probe(node)
        except RetryError as e:
            cause = e.last_attempt.exception()
            raise NodeNotReady(
                node.index,
                f"SSH not reachable after {self._settings.ready_timeout:.0f}s: {cause}",
            ) from cause
        log.debug("{name} is accepting SSH connections", name=node.name)
        return node
