"""sshmesh - disposable container fleets with a shared SSH trust mesh.

Example:
    >>> import asyncio
    >>> from sshmesh import ContainerRuntime, FleetOrchestrator, Settings, parse_fleet_spec
    >>> settings = Settings()
    >>> report = asyncio.run(
    ...     FleetOrchestrator(ContainerRuntime.from_settings(settings), settings)
    ...     .provision(parse_fleet_spec(3))
    ... )
"""

from sshmesh.allocator import allocate, build_topology, parse_fleet_spec
from sshmesh.bootstrap import TrustBootstrapper
from sshmesh.config import Settings, load_config, resolve_settings
from sshmesh.core.exceptions import (
    ConfigurationError,
    ImageBuildFailed,
    InvalidSpec,
    NetworkSetupFailed,
    NodeCreateFailed,
    NodeError,
    NodeNotReady,
    RuntimeCommandError,
    SshMeshError,
    TeardownStepFailed,
    TrustBootstrapFailed,
)
from sshmesh.known_hosts import KnownHostsStore
from sshmesh.lifecycle import NodeLifecycleDriver
from sshmesh.logging import LogConfig
from sshmesh.orchestrator import FleetOrchestrator
from sshmesh.runtime import ContainerRuntime, Runtime
from sshmesh.teardown import TeardownEngine
from sshmesh.types import (
    CredentialPair,
    FleetSpec,
    FleetState,
    HostIdentity,
    NodeIdentity,
    ProvisionReport,
    TeardownReport,
    Topology,
    TrustMap,
)
from sshmesh.verify import FleetVerifier

__all__ = [
    "ConfigurationError",
    "ContainerRuntime",
    "CredentialPair",
    "FleetOrchestrator",
    "FleetSpec",
    "FleetState",
    "FleetVerifier",
    "HostIdentity",
    "ImageBuildFailed",
    "InvalidSpec",
    "KnownHostsStore",
    "LogConfig",
    "NetworkSetupFailed",
    "NodeCreateFailed",
    "NodeError",
    "NodeIdentity",
    "NodeLifecycleDriver",
    "NodeNotReady",
    "ProvisionReport",
    "Runtime",
    "RuntimeCommandError",
    "Settings",
    "SshMeshError",
    "TeardownEngine",
    "TeardownReport",
    "TeardownStepFailed",
    "Topology",
    "TrustBootstrapper",
    "TrustMap",
    "TrustBootstrapFailed",
    "allocate",
    "build_topology",
    "load_config",
    "parse_fleet_spec",
    "resolve_settings",
]
