from __future__ import annotations

import asyncio
import shutil
import tempfile
from pathlib import Path

from loguru import logger

from sshmesh.config import Settings
from sshmesh.core.exceptions import RuntimeCommandError
from sshmesh.runtime.cli import run

log = logger.bind(component="runtime")


class ContainerRuntime:
    """Runtime backed by a docker-compatible CLI (docker, podman, nerdctl)."""

    def __init__(
        self,
        binary: str = "docker",
        *,
        timeout: float = 120.0,
        build_timeout: float = 1800.0,
    ) -> None:
        self._bin = binary
        self._timeout = timeout
        self._build_timeout = build_timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> ContainerRuntime:
        return cls(
            settings.binary,
            timeout=settings.command_timeout,
            build_timeout=settings.build_timeout,
        )

    async def _run(self, *args: str, input: str | None = None, timeout: float | None = None) -> str:
        return await run(self._bin, *args, input=input, timeout=timeout or self._timeout)

    async def build_image(self, descriptor: Path, tag: str) -> str:
        log.info("Building image {tag} from {path}", tag=tag, path=descriptor)
        # isolated context: the work directory also holds the fleet private key
        with tempfile.TemporaryDirectory() as tmpdir:
            await asyncio.to_thread(shutil.copyfile, descriptor, Path(tmpdir, "Dockerfile"))
            await self._run("build", "-t", tag, tmpdir, timeout=self._build_timeout)
        log.info("Image {tag} built", tag=tag)
        return tag

    async def remove_image(self, tag: str) -> bool:
        return await self._tolerate_absence("rmi", tag)

    async def create_network(self, name: str, subnet: str, gateway: str) -> None:
        await self._run("network", "create", f"--subnet={subnet}", f"--gateway={gateway}", name)
        log.info("Network {net} created ({subnet})", net=name, subnet=subnet)

    async def remove_network(self, name: str) -> bool:
        return await self._tolerate_absence("network", "rm", name)

    async def run_node(
        self, name: str, image: str, network: str, address: str, host_port: int,
    ) -> None:
        await self._run(
            "run", "-d",
            "--name", name,
            "--hostname", name,
            "--network", network,
            "--ip", address,
            "-p", f"{host_port}:22",
            image,
        )
        log.info("Container {name} launched at {ip}, port {port}", name=name, ip=address, port=host_port)

    async def stop_node(self, name: str) -> bool:
        return await self._tolerate_absence("stop", name)

    async def remove_node(self, name: str) -> bool:
        return await self._tolerate_absence("rm", name)

    async def exec_in_node(
        self, name: str, *command: str, input: str | None = None, user: str | None = None,
    ) -> str:
        args = ["exec"]
        if input is not None:
            args.append("-i")
        if user is not None:
            args.extend(["-u", user])
        return await self._run(*args, name, *command, input=input)

    async def copy_into_node(self, name: str, local: Path, remote: str) -> None:
        await self._run("cp", str(local), f"{name}:{remote}")

    async def list_nodes(self, prefix: str) -> list[str]:
        raw = await self._run(
            "ps", "-a",
            "--filter", f"name=^{prefix}",
            "--format", "{{.Names}}",
        )
        names = (line.strip().lstrip("/") for line in raw.splitlines())
        return sorted(n for n in names if n.startswith(prefix))

    async def _tolerate_absence(self, *args: str) -> bool:
        try:
            await self._run(*args)
        except RuntimeCommandError as e:
            if e.is_absent:
                log.debug("{cmd}: already absent", cmd=e.command)
                return False
            raise
        return True
