"""End-to-end run against a real container runtime.

Opt in with ``SSHMESH_INTEGRATION=1``; needs docker, ssh-keygen and free
host ports 2222-2223.
"""

import os
import shutil

import pytest

from sshmesh.allocator import parse_fleet_spec
from sshmesh.config import Settings
from sshmesh.orchestrator import FleetOrchestrator
from sshmesh.runtime import ContainerRuntime
from sshmesh.teardown import TeardownEngine
from sshmesh.verify import FleetVerifier

pytestmark = [
    pytest.mark.integration,
    pytest.mark.timeout(1800),
    pytest.mark.skipif(
        not os.environ.get("SSHMESH_INTEGRATION") or shutil.which("docker") is None,
        reason="set SSHMESH_INTEGRATION=1 with docker available",
    ),
]


@pytest.mark.asyncio
async def test_provision_verify_teardown(tmp_path):
    settings = Settings(workdir=tmp_path / "work", known_hosts_path=tmp_path / "ssh" / "known_hosts")
    runtime = ContainerRuntime.from_settings(settings)

    try:
        report = await FleetOrchestrator(runtime, settings).provision(parse_fleet_spec(2))
        assert report.ok, [str(f) for f in report.failures]

        verified = await FleetVerifier(settings).verify(parse_fleet_spec(2))
        assert verified.ok, list(verified.failures)
    finally:
        cleaned = await TeardownEngine(runtime, settings).teardown()

    assert cleaned.ok
    assert await runtime.list_nodes(settings.node_prefix) == []
