from pathlib import Path

import pytest

from sshmesh import cli
from sshmesh.cli import EXIT_FAILED, EXIT_OK, EXIT_USAGE, build_parser, main
from sshmesh.types import FleetSpec


@pytest.fixture
def project(tmp_path: Path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr("sshmesh.config.GLOBAL_CONFIG_PATH", tmp_path / "no-global.toml")
    (tmp_path / "sshmesh.toml").write_text(
        "[fleet]\n"
        f'workdir = "{tmp_path / "work"}"\n'
        f'known_hosts_path = "{tmp_path / "home" / ".ssh" / "known_hosts"}"\n'
        "ready_timeout = 0.2\n"
        "ready_interval = 0.01\n"
        "\n"
        "[logging]\n"
        "console = false\n"
    )
    return tmp_path


@pytest.fixture
def fake_runtime(runtime, monkeypatch):
    created = []

    class Factory:
        @staticmethod
        def from_settings(settings):
            created.append(settings)
            return runtime

    monkeypatch.setattr(cli, "ContainerRuntime", Factory)
    return created


class TestParser:
    def test_provision(self):
        args = build_parser().parse_args(["--binary", "podman", "provision", "3"])
        assert (args.command, args.spec, args.binary) == ("provision", FleetSpec(3), "podman")

    def test_teardown_takes_no_size(self):
        args = build_parser().parse_args(["teardown"])
        assert not hasattr(args, "spec")

    def test_command_required(self):
        with pytest.raises(SystemExit) as exc:
            build_parser().parse_args([])
        assert exc.value.code == EXIT_USAGE


class TestMain:
    @pytest.mark.parametrize("n", ["0", "-1", "abc", "2.5"])
    def test_invalid_n_touches_nothing(self, n, project, fake_runtime):
        with pytest.raises(SystemExit) as exc:
            main(["provision", n])
        assert exc.value.code == EXIT_USAGE
        assert fake_runtime == []

    def test_bad_config(self, project, fake_runtime):
        (project / "sshmesh.toml").write_text("[fleet]\nnodes = 3\n")
        assert main(["teardown"]) == EXIT_USAGE
        assert fake_runtime == []

    def test_provision_then_teardown(self, project, runtime, fake_runtime, keygen, probe, monkeypatch):
        monkeypatch.setattr("sshmesh.lifecycle.ssh_banner_probe", lambda host: probe)

        assert main(["provision", "2"]) == EXIT_OK
        assert sorted(runtime.nodes) == ["comp1", "comp2"]
        assert fake_runtime[0].workdir == project / "work"

        assert main(["teardown"]) == EXIT_OK
        assert runtime.nodes == {}
        assert not (project / "work" / "id_rsa_cluster").exists()

    def test_provision_with_failed_node(self, project, runtime, fake_runtime, keygen, probe, monkeypatch):
        monkeypatch.setattr("sshmesh.lifecycle.ssh_banner_probe", lambda host: probe)
        runtime.fail_run["comp1"] = "port is already allocated"

        assert main(["provision", "2"]) == EXIT_FAILED

    def test_image_failure(self, project, runtime, fake_runtime, keygen):
        runtime.fail_build = "network unreachable"
        assert main(["provision", "1"]) == EXIT_FAILED
        assert runtime.nodes == {}

    def test_missing_runtime_binary(self, project, keygen):
        assert main(["--binary", "sshmesh-no-such-engine", "provision", "1"]) == EXIT_FAILED
