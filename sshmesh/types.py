"""Fleet data model.

Everything here is an immutable record. Identities are produced by the
allocator before any node exists; reports are produced once per run.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from sshmesh.core.exceptions import NodeError


@dataclass(frozen=True, slots=True)
class FleetSpec:
    """Requested fleet size. Only built through ``parse_fleet_spec``."""

    size: int


@dataclass(frozen=True, slots=True)
class NodeIdentity:
    """Deterministic network identity of node ``index``."""

    index: int
    name: str
    address: str
    port: int
    alias: str

    @property
    def principals(self) -> tuple[str, str, str]:
        """Names a peer may use for this node: hostname, IP, ordinal alias."""
        return (self.name, self.address, self.alias)

    @property
    def operator_principal(self) -> str:
        return f"[localhost]:{self.port}"


type Topology = tuple[NodeIdentity, ...]


@dataclass(frozen=True, slots=True)
class CredentialPair:
    """The fleet-wide SSH keypair shared by every node and the operator."""

    private_path: Path
    public_path: Path
    public_key: str


@dataclass(frozen=True, slots=True)
class HostIdentity:
    """A node's harvested SSH host public key (``"<type> <base64>"``)."""

    node: NodeIdentity
    host_key: str


@dataclass(frozen=True, slots=True)
class TrustBinding:
    principal: str
    host_key: str

    def render(self) -> str:
        return f"{self.principal} {self.host_key}"


@dataclass(frozen=True, slots=True)
class TrustMap:
    """Principal to host-key bindings installed on every node.

    A principal never maps to two different keys: ``add`` replaces any
    binding for the same principal whose key differs.
    """

    bindings: tuple[TrustBinding, ...] = ()

    @classmethod
    def from_hosts(cls, hosts: Iterable[HostIdentity]) -> TrustMap:
        trust = cls()
        for host in hosts:
            for principal in host.node.principals:
                trust = trust.add(TrustBinding(principal, host.host_key))
        return trust

    def add(self, binding: TrustBinding) -> TrustMap:
        kept = tuple(
            b for b in self.bindings
            if b.principal != binding.principal or b.host_key == binding.host_key
        )
        return TrustMap((*kept, binding))

    def keys_for(self, principal: str) -> set[str]:
        return {b.host_key for b in self.bindings if b.principal == principal}

    def render(self) -> str:
        return "".join(f"{b.render()}\n" for b in self.bindings)

    def __len__(self) -> int:
        return len(self.bindings)


@dataclass(frozen=True, slots=True)
class LiveNode:
    identity: NodeIdentity
    image: str


@dataclass(frozen=True, slots=True)
class NodeFailure:
    """A per-node failure, flattened from a ``NodeError`` for reporting."""

    kind: str
    index: int
    name: str
    reason: str

    @classmethod
    def from_error(cls, node: NodeIdentity, error: Exception, kind: str) -> NodeFailure:
        """Flatten ``error``; a NodeError keeps its own kind and reason."""
        if isinstance(error, NodeError):
            return cls(error.kind, node.index, node.name, error.reason)
        return cls(kind, node.index, node.name, str(error) or type(error).__name__)

    def __str__(self) -> str:
        return f"{self.kind}{{{self.index}}} ({self.name}): {self.reason}"


class FleetState(Enum):
    IDLE = "idle"
    IMAGE_PREPARED = "image_prepared"
    NETWORK_READY = "network_ready"
    NODES_LIVE = "nodes_live"
    TRUST_BOOTSTRAPPED = "trust_bootstrapped"
    REPORTED = "reported"


@dataclass(frozen=True, slots=True)
class BootstrapResult:
    trust_map: TrustMap
    hosts: tuple[HostIdentity, ...]
    failures: tuple[NodeFailure, ...] = ()


@dataclass(frozen=True, slots=True)
class ProvisionReport:
    """Outcome of one provisioning run.

    ``topology`` is the full requested topology; ``live`` and ``ready`` are the
    subsets that were created and became reachable.
    """

    spec: FleetSpec
    topology: Topology
    credentials: CredentialPair | None
    live: tuple[LiveNode, ...] = ()
    ready: Topology = ()
    trust_map: TrustMap = field(default_factory=TrustMap)
    failures: tuple[NodeFailure, ...] = ()
    state: FleetState = FleetState.REPORTED

    @property
    def ok(self) -> bool:
        return not self.failures


@dataclass(frozen=True, slots=True)
class TeardownStep:
    """One best-effort teardown step. ``error`` is set when the step failed."""

    resource: str
    removed: bool
    error: str | None = None

    def __str__(self) -> str:
        if self.error is not None:
            return f"TeardownStepFailed{{{self.resource}}}: {self.error}"
        return f"{self.resource}: {'removed' if self.removed else 'absent'}"


@dataclass(frozen=True, slots=True)
class TeardownReport:
    removed_nodes: tuple[str, ...] = ()
    steps: tuple[TeardownStep, ...] = ()

    @property
    def failures(self) -> tuple[TeardownStep, ...]:
        return tuple(s for s in self.steps if s.error is not None)

    @property
    def ok(self) -> bool:
        return not self.failures
