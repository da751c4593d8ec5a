"""Exception hierarchy for sshmesh.

Every sshmesh-specific exception inherits from SshMeshError, so callers can
catch them all with a single except clause. Per-node errors carry the node
index so the orchestrator can aggregate them without aborting siblings.
"""

from __future__ import annotations


class SshMeshError(Exception):
    """Base exception for all sshmesh errors."""


class ConfigurationError(SshMeshError):
    """Raised for invalid configuration files or settings."""


class InvalidSpec(SshMeshError):
    """Raised when the requested fleet size is not a positive integer."""

    def __init__(self, value: object, reason: str = "N must be a positive integer") -> None:
        self.value = value
        self.reason = reason
        super().__init__(f"{reason}, got {value!r}")


class ImageBuildFailed(SshMeshError):
    """Raised when the node image cannot be built. Fatal to the run."""


class NetworkSetupFailed(SshMeshError):
    """Raised when the isolated network cannot be (re)created. Fatal to the run."""


class NodeError(SshMeshError):
    """A failure isolated to a single node."""

    kind = "node"

    def __init__(self, index: int, reason: str = "unknown") -> None:
        self.index = index
        self.reason = reason
        super().__init__(f"{self.kind}{{{index}}}: {reason}")


class NodeCreateFailed(NodeError):
    kind = "NodeCreateFailed"


class NodeNotReady(NodeError):
    kind = "NodeNotReady"


class TrustBootstrapFailed(NodeError):
    kind = "TrustBootstrapFailed"


class TeardownStepFailed(SshMeshError):
    """A teardown step that failed. Collected, never raised mid-teardown."""

    def __init__(self, resource: str, reason: str) -> None:
        self.resource = resource
        self.reason = reason
        super().__init__(f"TeardownStepFailed{{{resource}}}: {reason}")


class RuntimeCommandError(SshMeshError):
    """Raised when a container runtime command exits non-zero."""

    def __init__(self, command: str, returncode: int | None, stderr: str) -> None:
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(f"{command} failed (exit {returncode}): {stderr}")

    @property
    def is_absent(self) -> bool:
        """Whether the command failed because its target does not exist."""
        text = self.stderr.lower()
        return any(marker in text for marker in _ABSENT_MARKERS)


class RuntimeCommandTimeout(RuntimeCommandError):
    """Raised when a runtime command does not finish within its timeout."""

    def __init__(self, command: str, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(command, None, f"timed out after {timeout:.1f}s")


_ABSENT_MARKERS = (
    "no such container",
    "no such network",
    "no such image",
    "no such object",
    "not found",
    "does not exist",
)
