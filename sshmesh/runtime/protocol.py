from pathlib import Path
from typing import Protocol, runtime_checkable


@runtime_checkable
class Runtime(Protocol):
    """Imperative container-engine operations the orchestrator drives.

    Implementations hold only immutable configuration. Removal operations
    are absence tolerant: they return False when the target did not exist
    and raise only for real failures.
    """

    async def build_image(self, descriptor: Path, tag: str) -> str:
        """Build an image from the Dockerfile at ``descriptor``.

        Returns
        -------
        str
            The image reference to launch nodes from.
        """
        ...

    async def remove_image(self, tag: str) -> bool:
        ...

    async def create_network(self, name: str, subnet: str, gateway: str) -> None:
        ...

    async def remove_network(self, name: str) -> bool:
        ...

    async def run_node(
        self, name: str, image: str, network: str, address: str, host_port: int,
    ) -> None:
        """Start a detached node with hostname ``name`` at ``address`` and
        publish its port 22 on ``host_port``."""
        ...

    async def stop_node(self, name: str) -> bool:
        ...

    async def remove_node(self, name: str) -> bool:
        ...

    async def exec_in_node(
        self, name: str, *command: str, input: str | None = None, user: str | None = None,
    ) -> str:
        """Run ``command`` inside the node and return its stdout."""
        ...

    async def copy_into_node(self, name: str, local: Path, remote: str) -> None:
        ...

    async def list_nodes(self, prefix: str) -> list[str]:
        """Names of all nodes (running or not) whose name starts with ``prefix``."""
        ...
