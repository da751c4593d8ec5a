import pytest

from sshmesh.allocator import parse_fleet_spec
from sshmesh.orchestrator import FleetOrchestrator
from sshmesh.teardown import TeardownEngine

OPERATOR_ENTRIES = "# mine\ngithub.com ssh-ed25519 AAAAgithub\n"


async def _provision(runtime, settings, probe, size=3):
    report = await FleetOrchestrator(runtime, settings, probe=probe).provision(parse_fleet_spec(size))
    assert report.ok
    return report


class TestTeardown:
    @pytest.mark.asyncio
    async def test_removes_everything(self, runtime, settings, keygen, probe):
        settings.known_hosts_path.parent.mkdir(parents=True)
        settings.known_hosts_path.write_text(OPERATOR_ENTRIES)
        await _provision(runtime, settings, probe)

        report = await TeardownEngine(runtime, settings).teardown()

        assert report.ok
        assert report.removed_nodes == ("comp1", "comp2", "comp3")
        assert runtime.nodes == {}
        assert runtime.networks == {}
        assert runtime.images == {}
        assert not settings.private_key_path.exists()
        assert not settings.public_key_path.exists()
        assert not settings.descriptor_path.exists()
        assert not settings.harvest_path.exists()
        assert settings.known_hosts_path.read_text() == OPERATOR_ENTRIES
        assert not settings.backup_path.exists()

    @pytest.mark.asyncio
    async def test_keeps_entries_added_while_fleet_was_up(self, runtime, settings, keygen, probe):
        await _provision(runtime, settings, probe, size=2)
        with settings.known_hosts_path.open("a") as f:
            f.write(OPERATOR_ENTRIES)

        report = await TeardownEngine(runtime, settings).teardown()

        assert report.ok
        assert settings.known_hosts_path.read_text() == OPERATOR_ENTRIES

    @pytest.mark.asyncio
    async def test_repeated_provision_without_known_hosts_leaves_no_pins(
        self, runtime, settings, keygen, probe,
    ):
        await _provision(runtime, settings, probe, size=2)
        await _provision(runtime, settings, probe, size=2)

        report = await TeardownEngine(runtime, settings).teardown()

        assert report.ok
        assert not settings.known_hosts_path.exists()
        assert not settings.backup_path.exists()

    @pytest.mark.asyncio
    async def test_repeated_provision_keeps_original_entries_only(self, runtime, settings, keygen, probe):
        settings.known_hosts_path.parent.mkdir(parents=True)
        settings.known_hosts_path.write_text(OPERATOR_ENTRIES + "[localhost]:2222 ssh-rsa AAAAstale\n")
        await _provision(runtime, settings, probe, size=2)
        await _provision(runtime, settings, probe, size=2)

        await TeardownEngine(runtime, settings).teardown()

        assert settings.known_hosts_path.read_text() == OPERATOR_ENTRIES

    @pytest.mark.asyncio
    async def test_empty_host(self, runtime, settings):
        report = await TeardownEngine(runtime, settings).teardown()

        assert report.ok
        assert report.removed_nodes == ()
        assert not any(step.removed for step in report.steps)
        assert [s.resource for s in report.steps] == [
            "nodes",
            "network:cluster-network",
            "image:linux-ssh-server",
            "credentials",
            "descriptor",
            "harvest-artifact",
            "known_hosts",
        ]

    @pytest.mark.asyncio
    async def test_is_idempotent(self, runtime, settings, keygen, probe):
        await _provision(runtime, settings, probe, size=1)
        engine = TeardownEngine(runtime, settings)

        first = await engine.teardown()
        second = await engine.teardown()

        assert first.ok and second.ok
        assert second.removed_nodes == ()

    @pytest.mark.asyncio
    async def test_ignores_lookalike_containers(self, runtime, settings, keygen, probe):
        await _provision(runtime, settings, probe, size=2)
        runtime.adopt("compose-db")

        report = await TeardownEngine(runtime, settings).teardown()

        assert report.removed_nodes == ("comp1", "comp2")
        assert list(runtime.nodes) == ["compose-db"]

    @pytest.mark.asyncio
    async def test_failed_step_does_not_stop_the_rest(self, runtime, settings, keygen, probe):
        await _provision(runtime, settings, probe, size=2)
        runtime.fail_remove_image = "conflict: image is being used by stopped container"

        report = await TeardownEngine(runtime, settings).teardown()

        assert not report.ok
        assert [s.resource for s in report.failures] == ["image:linux-ssh-server"]
        assert "conflict" in report.failures[0].error
        assert runtime.nodes == {}
        assert runtime.networks == {}
        assert not settings.private_key_path.exists()
        assert str(report.failures[0]).startswith("TeardownStepFailed{image:linux-ssh-server}")
