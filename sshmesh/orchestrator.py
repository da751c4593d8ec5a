"""Fleet orchestrator: image -> network -> nodes -> trust -> report.

There are no rollback transitions. A failed or interrupted run leaves
whatever nodes exist running for inspection; recovery is running the
orchestrator again (every step is idempotent) or running teardown.
"""

from __future__ import annotations

from loguru import logger

from sshmesh.allocator import build_topology, gateway_address, is_fleet_node, network_cidr
from sshmesh.bootstrap import TrustBootstrapper
from sshmesh.config import Settings
from sshmesh.core.exceptions import ImageBuildFailed, NetworkSetupFailed, RuntimeCommandError
from sshmesh.credentials import ensure_credential_pair
from sshmesh.image import write_descriptor
from sshmesh.known_hosts import KnownHostsStore
from sshmesh.lifecycle import NodeLifecycleDriver, ReadinessProbe
from sshmesh.runtime.protocol import Runtime
from sshmesh.types import FleetSpec, FleetState, ProvisionReport

log = logger.bind(component="orchestrator")


class FleetOrchestrator:
    """Sequences a full provisioning run for one FleetSpec.

    Example:
        >>> orchestrator = FleetOrchestrator(ContainerRuntime(), Settings())
        >>> report = await orchestrator.provision(parse_fleet_spec("3"))
        >>> report.ok
        True
    """

    def __init__(
        self,
        runtime: Runtime,
        settings: Settings,
        *,
        store: KnownHostsStore | None = None,
        probe: ReadinessProbe | None = None,
    ) -> None:
        self._runtime = runtime
        self._settings = settings
        self._store = store or KnownHostsStore.from_settings(settings)
        self._lifecycle = NodeLifecycleDriver(runtime, settings, probe=probe)
        self._bootstrapper = TrustBootstrapper(runtime, settings, self._store)
        self.state = FleetState.IDLE

    def _advance(self, state: FleetState) -> None:
        log.debug("{old} -> {new}", old=self.state.value, new=state.value)
        self.state = state

    async def provision(self, spec: FleetSpec) -> ProvisionReport:
        """Provision ``spec.size`` nodes and bootstrap their trust mesh.

        Raises:
            ImageBuildFailed: The node image could not be built.
            NetworkSetupFailed: The isolated network could not be recreated.
        """
        settings = self._settings
        topology = build_topology(spec, settings)
        log.info("Setting up {n} SSH nodes", n=spec.size)

        image = await self._prepare_image()
        self._advance(FleetState.IMAGE_PREPARED)

        await self._prepare_network()
        self._advance(FleetState.NETWORK_READY)

        credentials = await ensure_credential_pair(settings)
        live, create_failures = await self._lifecycle.ensure_nodes(topology, image)
        self._advance(FleetState.NODES_LIVE)

        ready, ready_failures = await self._lifecycle.wait_ready(live)
        result = await self._bootstrapper.bootstrap(ready, credentials)
        self._advance(FleetState.TRUST_BOOTSTRAPPED)

        report = ProvisionReport(
            spec=spec,
            topology=topology,
            credentials=credentials,
            live=live,
            ready=ready,
            trust_map=result.trust_map,
            failures=(*create_failures, *ready_failures, *result.failures),
        )
        self._advance(FleetState.REPORTED)
        if report.ok:
            log.info("Fleet of {n} nodes is ready", n=spec.size)
        else:
            log.warning(
                "Fleet provisioned with {f} failure(s); {live}/{n} nodes live",
                f=len(report.failures), live=len(live), n=spec.size,
            )
        return report

    async def _prepare_image(self) -> str:
        settings = self._settings
        descriptor = write_descriptor(settings)
        try:
            return await self._runtime.build_image(descriptor, settings.image_name)
        except RuntimeCommandError as e:
            raise ImageBuildFailed(f"Building {settings.image_name} failed: {e.stderr}") from e

    async def _prepare_network(self) -> None:
        """Recreate the network from scratch.

        Nodes from an earlier run are still attached to it, so they are
        removed first; a network with endpoints cannot be deleted.
        """
        settings = self._settings
        try:
            stale = [
                n for n in await self._runtime.list_nodes(settings.node_prefix)
                if is_fleet_node(n, settings.node_prefix)
            ]
            for name in stale:
                await self._runtime.stop_node(name)
                await self._runtime.remove_node(name)
            if stale:
                log.info("Removed {n} node(s) from a previous run", n=len(stale))
            if await self._runtime.remove_network(settings.network_name):
                log.info("Removed stale network {net}", net=settings.network_name)
            await self._runtime.create_network(
                settings.network_name,
                network_cidr(settings.subnet_prefix),
                gateway_address(settings.subnet_prefix),
            )
        except RuntimeCommandError as e:
            raise NetworkSetupFailed(
                f"Creating network {settings.network_name} failed: {e.stderr}"
            ) from e
