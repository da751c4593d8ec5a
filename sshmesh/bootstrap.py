"""Trust bootstrap: shared credentials, peer name resolution, host-key pinning.

The bootstrap runs in two phases with a join between them:

1. Per node, concurrently: install the fleet public key as the only
   authorized key, install the fleet private key so the node can reach its
   peers, and add ``address name`` records for every peer to /etc/hosts.
2. Harvest every node's host key, and only once all harvests are done,
   push one trust map (name, address and alias bindings per host) to
   every node and pin ``[localhost]:port`` in the operator's known_hosts.

Every node shares one identity. That is a deliberate simplification, not an
isolation boundary.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from pathlib import Path

from loguru import logger

from sshmesh.config import Settings
from sshmesh.core.exceptions import RuntimeCommandError, TrustBootstrapFailed
from sshmesh.credentials import parse_public_key
from sshmesh.known_hosts import KnownHostsStore, cluster_principal_matcher
from sshmesh.runtime.protocol import Runtime
from sshmesh.types import (
    BootstrapResult,
    CredentialPair,
    HostIdentity,
    NodeFailure,
    NodeIdentity,
    Topology,
    TrustBinding,
    TrustMap,
)
from sshmesh.utils.conc import map_bounded

log = logger.bind(component="bootstrap")

# Appends each stdin line to /etc/hosts unless already present.
_APPEND_HOSTS = (
    'while IFS= read -r line; do '
    '[ -n "$line" ] || continue; '
    'grep -qxF "$line" /etc/hosts || printf \'%s\\n\' "$line" >> /etc/hosts; '
    'done'
)


def hosts_records(node: NodeIdentity, topology: Topology) -> str:
    """``/etc/hosts`` lines for every peer of ``node``.

    >>> from sshmesh.types import NodeIdentity
    >>> a = NodeIdentity(1, "comp1", "172.20.0.11", 2222, "comp1")
    >>> b = NodeIdentity(2, "comp2", "172.20.0.12", 2223, "comp2")
    >>> hosts_records(a, (a, b))
    '172.20.0.12 comp2\\n'
    """
    return "".join(f"{p.address} {p.name}\n" for p in topology if p.index != node.index)


class TrustBootstrapper:

    def __init__(self, runtime: Runtime, settings: Settings, store: KnownHostsStore) -> None:
        self._runtime = runtime
        self._settings = settings
        self._store = store

    async def bootstrap(self, topology: Topology, credentials: CredentialPair) -> BootstrapResult:
        """Establish the trust mesh over ``topology`` (the reachable nodes).

        Per-node failures are reported as TrustBootstrapFailed and never stop
        the other nodes; a failed node is simply left unpinned.
        """
        configured, failures = await self._for_each(
            topology, lambda node: self._configure(node, topology, credentials),
        )

        harvested, harvest_failures = await self._for_each(configured, self._harvest)
        hosts = tuple(harvested)
        trust_map = TrustMap.from_hosts(hosts)
        log.info(
            "Harvested {n}/{total} host keys, {b} trust bindings",
            n=len(hosts), total=len(topology), b=len(trust_map),
        )

        _, push_failures = await self._push(configured, trust_map)
        await self._pin_operator(hosts)

        return BootstrapResult(
            trust_map=trust_map,
            hosts=hosts,
            failures=(*failures, *harvest_failures, *push_failures),
        )

    async def _for_each[T](
        self, nodes: Sequence[NodeIdentity], fn: Callable[[NodeIdentity], Awaitable[T]],
    ) -> tuple[list[T], tuple[NodeFailure, ...]]:
        results = await map_bounded(fn, nodes, self._settings.max_workers)
        done: list[T] = []
        failures: list[NodeFailure] = []
        for node, result in zip(nodes, results, strict=True):
            if isinstance(result, Exception):
                failure = NodeFailure.from_error(node, result, TrustBootstrapFailed.kind)
                log.warning("{failure}", failure=failure)
                failures.append(failure)
            else:
                done.append(result)
        return done, tuple(failures)

    async def _configure(
        self, node: NodeIdentity, topology: Topology, credentials: CredentialPair,
    ) -> NodeIdentity:
        log.info("Setting up {name}...", name=node.name)
        home = self._settings.ssh_home
        try:
            await self._install(node, credentials.public_path, f"{home}/authorized_keys", "600")
            await self._install(node, credentials.private_path, f"{home}/id_rsa", "600")
            records = hosts_records(node, topology)
            if records:
                await self._runtime.exec_in_node(node.name, "sh", "-c", _APPEND_HOSTS, input=records)
        except RuntimeCommandError as e:
            raise TrustBootstrapFailed(node.index, f"setup failed: {e}") from e
        return node

    async def _install(self, node: NodeIdentity, local: Path, remote: str, mode: str) -> None:
        user = self._settings.ssh_user
        await self._runtime.copy_into_node(node.name, local, remote)
        await self._runtime.exec_in_node(node.name, "chown", f"{user}:{user}", remote)
        await self._runtime.exec_in_node(node.name, "chmod", mode, remote)

    async def _harvest(self, node: NodeIdentity) -> HostIdentity:
        log.debug("Scanning SSH host key of {name}", name=node.name)
        try:
            output = await self._runtime.exec_in_node(
                node.name, "ssh-keygen", "-y", "-f", self._settings.host_key_path,
            )
        except RuntimeCommandError as e:
            raise TrustBootstrapFailed(node.index, f"cannot read host key: {e.stderr}") from e
        if not output.strip():
            raise TrustBootstrapFailed(node.index, "node produced no host key")
        try:
            key = parse_public_key(output)
        except ValueError as e:
            raise TrustBootstrapFailed(node.index, str(e)) from e
        return HostIdentity(node=node, host_key=key)

    async def _push(
        self, nodes: Sequence[NodeIdentity], trust_map: TrustMap,
    ) -> tuple[list[NodeIdentity], tuple[NodeFailure, ...]]:
        if not nodes:
            return [], ()
        artifact = self._settings.harvest_path
        await asyncio.to_thread(artifact.write_text, trust_map.render())
        try:
            return await self._for_each(
                nodes,
                lambda node: self._install_known_hosts(node, artifact),
            )
        finally:
            artifact.unlink(missing_ok=True)

    async def _install_known_hosts(self, node: NodeIdentity, artifact: Path) -> NodeIdentity:
        log.info("Installing known_hosts in {name}", name=node.name)
        try:
            await self._install(node, artifact, f"{self._settings.ssh_home}/known_hosts", "644")
        except RuntimeCommandError as e:
            raise TrustBootstrapFailed(node.index, f"known_hosts push failed: {e}") from e
        return node

    async def _pin_operator(self, hosts: Sequence[HostIdentity]) -> None:
        if not hosts:
            return
        bindings = [TrustBinding(h.node.operator_principal, h.host_key) for h in hosts]
        try:
            await self._store.backup(cluster_principal_matcher(self._settings))
            await self._store.replace(bindings)
        except (OSError, ValueError) as e:
            log.warning(
                "Could not update operator known_hosts {path}: {err}",
                path=self._store.path, err=e,
            )
            return
        log.info("Pinned {n} host keys in {path}", n=len(bindings), path=self._store.path)
