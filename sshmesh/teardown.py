"""Teardown: remove every node, network, image, file and trust entry a
provisioning run may have left behind.

Nodes are discovered by naming convention, so teardown needs no fleet size.
Each step is best-effort: a failing step is recorded and the remaining steps
still run.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

from loguru import logger

from sshmesh.allocator import is_fleet_node
from sshmesh.config import Settings
from sshmesh.core.exceptions import TeardownStepFailed
from sshmesh.credentials import remove_credential_pair
from sshmesh.image import remove_descriptor
from sshmesh.known_hosts import KnownHostsStore, cluster_principal_matcher
from sshmesh.runtime.protocol import Runtime
from sshmesh.types import TeardownReport, TeardownStep
from sshmesh.utils.conc import map_bounded

log = logger.bind(component="teardown")


class TeardownEngine:

    def __init__(
        self,
        runtime: Runtime,
        settings: Settings,
        *,
        store: KnownHostsStore | None = None,
    ) -> None:
        self._runtime = runtime
        self._settings = settings
        self._store = store or KnownHostsStore.from_settings(settings)

    async def teardown(self) -> TeardownReport:
        settings = self._settings
        log.info("Cleaning up fleet {prefix}*", prefix=settings.node_prefix)

        discovered: list[str] = []

        async def discover() -> bool:
            names = await self._runtime.list_nodes(settings.node_prefix)
            discovered.extend(n for n in names if is_fleet_node(n, settings.node_prefix))
            return bool(discovered)

        steps = [await self._step("nodes", discover)]
        node_steps = await map_bounded(
            lambda name: self._step(f"node:{name}", lambda: self._remove_node(name)),
            discovered,
            settings.max_workers,
        )
        steps.extend(node_steps)
        steps.append(await self._step(
            f"network:{settings.network_name}",
            lambda: self._runtime.remove_network(settings.network_name),
        ))
        steps.append(await self._step(
            f"image:{settings.image_name}",
            lambda: self._runtime.remove_image(settings.image_name),
        ))
        steps.append(await self._step("credentials", self._remove_credentials))
        steps.append(await self._step("descriptor", self._remove_descriptor))
        steps.append(await self._step("harvest-artifact", self._remove_harvest_artifact))
        steps.append(await self._step("known_hosts", self._restore_known_hosts))

        removed = tuple(
            name for name, step in zip(discovered, node_steps, strict=True) if step.removed
        )
        report = TeardownReport(removed_nodes=removed, steps=tuple(steps))
        if report.ok:
            log.info("Cleanup complete, {n} node(s) removed", n=len(removed))
        else:
            log.warning("Cleanup finished with {f} failed step(s)", f=len(report.failures))
        return report

    async def _step(self, resource: str, action: Callable[[], Awaitable[bool]]) -> TeardownStep:
        try:
            removed = await action()
        except Exception as e:
            failure = TeardownStepFailed(resource, str(e) or type(e).__name__)
            log.warning("{failure}", failure=failure)
            return TeardownStep(resource, removed=False, error=failure.reason)
        log.debug("{resource}: {state}", resource=resource, state="removed" if removed else "absent")
        return TeardownStep(resource, removed=removed)

    async def _remove_node(self, name: str) -> bool:
        await self._runtime.stop_node(name)
        removed = await self._runtime.remove_node(name)
        if removed:
            log.info("Container {name} removed", name=name)
        return removed

    async def _remove_credentials(self) -> bool:
        return bool(await asyncio.to_thread(remove_credential_pair, self._settings))

    async def _remove_descriptor(self) -> bool:
        return await asyncio.to_thread(remove_descriptor, self._settings)

    async def _remove_harvest_artifact(self) -> bool:
        path = self._settings.harvest_path
        if not path.exists():
            return False
        await asyncio.to_thread(path.unlink)
        return True

    async def _restore_known_hosts(self) -> bool:
        """Restore the pre-run backup, or strip cluster entries if there is none."""
        matches = cluster_principal_matcher(self._settings)
        if await self._store.restore_backup(matches):
            return True
        stripped = await self._store.strip(matches)
        if stripped:
            log.info("Removed {n} fleet entries from {path}", n=stripped, path=self._store.path)
        return stripped > 0
