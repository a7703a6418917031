"""Tests for the runtime-secrets command line."""

import json

import pytest

from runtime_secrets import cli


class TestMain:
    """Test command dispatch."""

    def test_load_returns_loader_exit_code(self, monkeypatch):
        monkeypatch.setattr(cli, "load_all_secrets", lambda: 2)
        assert cli.main(["load"]) == 2

    def test_health_always_succeeds(self, monkeypatch):
        monkeypatch.setattr(cli, "check_all_providers_health", lambda: 0)
        assert cli.main(["health"]) == 0

    def test_health_json(self, monkeypatch, capsys):
        from runtime_secrets.providers.base import HealthStatus
        from runtime_secrets.registry import ProviderId

        monkeypatch.setattr(
            cli,
            "collect_provider_health",
            lambda: {ProviderId.DOCKER: HealthStatus.HEALTHY, ProviderId.AWS: HealthStatus.DISABLED},
        )

        assert cli.main(["health", "--json"]) == 0
        assert json.loads(capsys.readouterr().out) == {"docker": "healthy", "aws": "disabled"}

    def test_no_command_prints_help(self, capsys):
        assert cli.main([]) == 2
        assert "usage" in capsys.readouterr().out

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            cli.main(["--version"])
        assert exc_info.value.code == 0


class TestExec:
    """Test exec hand-off."""

    def test_execs_command_after_loading(self, monkeypatch):
        calls = []
        monkeypatch.setattr(cli, "load_all_secrets", lambda: 0)
        monkeypatch.setattr(cli.os, "execvpe", lambda file, args, env: calls.append((file, args)))

        cli.main(["exec", "--", "python", "-m", "app", "--flag"])

        assert calls == [("python", ["python", "-m", "app", "--flag"])]

    def test_does_not_exec_when_loading_aborts(self, monkeypatch):
        calls = []
        monkeypatch.setattr(cli, "load_all_secrets", lambda: 2)
        monkeypatch.setattr(cli.os, "execvpe", lambda *args: calls.append(args))

        assert cli.main(["exec", "--", "app"]) == 2
        assert calls == []

    def test_requires_a_command(self, monkeypatch):
        monkeypatch.setattr(cli, "load_all_secrets", lambda: 0)
        assert cli.main(["exec"]) == 2

    def test_missing_program_exits_127(self, monkeypatch, caplog):
        monkeypatch.setattr(cli, "load_all_secrets", lambda: 0)

        def missing(file, args, env):
            raise FileNotFoundError(2, "No such file or directory", file)

        monkeypatch.setattr(cli.os, "execvpe", missing)

        assert cli.main(["exec", "--", "no-such-program"]) == cli.EXIT_EXEC_FAILED
        assert any(getattr(r, "event_type", "") == "exec_failed" for r in caplog.records)

    def test_unexecutable_program_exits_127(self, monkeypatch):
        monkeypatch.setattr(cli, "load_all_secrets", lambda: 0)

        def denied(file, args, env):
            raise PermissionError(13, "Permission denied", file)

        monkeypatch.setattr(cli.os, "execvpe", denied)

        assert cli.main(["exec", "--", "./script.sh"]) == 127


class TestAzureCertificate:
    """Test the certificate subcommand."""

    def test_disabled_loader_short_circuits(self, monkeypatch, tmp_path):
        monkeypatch.setenv("SECRET_LOADER_ENABLED", "false")

        def fail(*args, **kwargs):
            raise AssertionError("provider must not be built")

        monkeypatch.setattr(cli.AzureKeyVaultProvider, "from_env", fail)

        assert cli.main(["azure-certificate", "web", str(tmp_path / "cert.pem")]) == 0
        assert not (tmp_path / "cert.pem").exists()

    def test_returns_certificate_status(self, monkeypatch, tmp_path):
        from runtime_secrets.providers.base import LoadStatus

        monkeypatch.setenv("SECRET_LOADER_ENABLED", "true")
        calls = []

        class FakeProvider:
            def load_certificate(self, name, output):
                calls.append((name, output))
                return LoadStatus.NOT_CONFIGURED

        monkeypatch.setattr(cli.AzureKeyVaultProvider, "from_env", lambda: FakeProvider())

        assert cli.main(["azure-certificate", "web", str(tmp_path / "cert.pem")]) == 1
        assert calls == [("web", tmp_path / "cert.pem")]
