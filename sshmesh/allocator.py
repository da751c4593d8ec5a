"""Deterministic network identities for fleet nodes.

Node ``i`` always lands on ``{prefix}.0.{10 + i}`` and is published on host
port ``2221 + i``. Offsets start past the gateway (``.0.1``) so no node ever
collides with it, and both mappings are injective in ``i``.
"""

from __future__ import annotations

import re

from sshmesh import constants
from sshmesh.config import Settings
from sshmesh.core.exceptions import InvalidSpec
from sshmesh.types import FleetSpec, NodeIdentity, Topology

_POSITIVE_INT = re.compile(r"[1-9][0-9]*")


def parse_fleet_spec(raw: object) -> FleetSpec:
    """Validate operator input for N.

    >>> parse_fleet_spec("3")
    FleetSpec(size=3)
    >>> parse_fleet_spec("abc")
    Traceback (most recent call last):
    ...
    sshmesh.core.exceptions.InvalidSpec: N must be a positive integer, got 'abc'
    """
    if isinstance(raw, bool):
        raise InvalidSpec(raw)
    if isinstance(raw, int):
        size = raw
    elif isinstance(raw, str) and _POSITIVE_INT.fullmatch(raw.strip()):
        size = int(raw.strip())
    else:
        raise InvalidSpec(raw)

    if size < 1:
        raise InvalidSpec(raw)
    if size > constants.MAX_NODES:
        raise InvalidSpec(raw, f"N must be at most {constants.MAX_NODES}")
    return FleetSpec(size=size)


def allocate(
    index: int,
    *,
    prefix: str = constants.SUBNET_PREFIX,
    base_port: int = constants.BASE_PORT,
) -> tuple[str, int]:
    """Map node ``index`` (1-based) to ``(address, host_port)``."""
    if isinstance(index, bool) or not isinstance(index, int):
        raise InvalidSpec(index, "node index must be an integer")
    if not 1 <= index <= constants.MAX_NODES:
        raise InvalidSpec(index, f"node index must be in [1, {constants.MAX_NODES}]")
    return f"{prefix}.0.{constants.HOST_OCTET_OFFSET + index}", base_port + index


def node_identity(index: int, settings: Settings) -> NodeIdentity:
    address, port = allocate(index, prefix=settings.subnet_prefix, base_port=settings.base_port)
    return NodeIdentity(
        index=index,
        name=f"{settings.node_prefix}{index}",
        address=address,
        port=port,
        alias=f"{constants.ALIAS_PREFIX}{index}",
    )


def build_topology(spec: FleetSpec, settings: Settings) -> Topology:
    return tuple(node_identity(i, settings) for i in range(1, spec.size + 1))


def network_cidr(prefix: str = constants.SUBNET_PREFIX) -> str:
    return f"{prefix}.0.0/16"


def gateway_address(prefix: str = constants.SUBNET_PREFIX) -> str:
    return f"{prefix}.0.1"


def is_fleet_node(name: str, prefix: str = constants.NODE_PREFIX) -> bool:
    """Whether ``name`` follows the node naming convention (``comp7``, not ``compose``).

    >>> is_fleet_node("comp12"), is_fleet_node("compose-db")
    (True, False)
    """
    return re.fullmatch(rf"{re.escape(prefix)}[1-9][0-9]*", name) is not None
