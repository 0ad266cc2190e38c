"""Tests for base environment steps."""

import hashlib
import os
from pathlib import Path

import pytest

from hostforge.backends import SystemBackend
from hostforge.orchestrator.executor import RunStatus, StepExecutor
from hostforge.orchestrator.verification import VerificationPass
from hostforge.orchestrator.workflows import BASE_ENVIRONMENT, provision_server
from hostforge.provisioners import server
from hostforge.provisioners.server import (
    ComposerStep,
    KnownHostsStep,
    NodeStep,
    PackagesStep,
    RemoveFileStep,
    base_environment_checks,
    server_steps,
)
from hostforge.utils.errors import ApplyFailedError

from fakes import FakeDatabase, FakeRunner

INSTALLER = b"<?php // composer installer\n"


class TestPackagesStep:
    """apt packages plus their service."""

    def test_satisfied_when_installed_and_running(self):
        runner = FakeRunner()
        runner.on("dpkg-query", stdout="install ok installed")
        step = PackagesStep("nginx", SystemBackend(runner), ["nginx"], service="nginx")

        assert step.probe().satisfied

    def test_missing_package(self):
        runner = FakeRunner()
        runner.on("dpkg-query", exit_code=1)
        step = PackagesStep("redis", SystemBackend(runner), ["redis-server"])

        probe = step.probe()
        assert not probe.satisfied
        assert probe.detail == "missing: redis-server"

    def test_stopped_service(self):
        runner = FakeRunner()
        runner.on("dpkg-query", stdout="install ok installed")
        runner.on("systemctl", "is-active", exit_code=3)
        step = PackagesStep("nginx", SystemBackend(runner), ["nginx"], service="nginx")

        assert step.probe().detail == "nginx not running"

    def test_apply_order(self):
        runner = FakeRunner()
        step = PackagesStep(
            "php", SystemBackend(runner), ["php8.3-fpm", "php8.3-cli"],
            repository="ppa:ondrej/php", service="php8.3-fpm",
        )

        step.apply()

        assert runner.commands() == [
            "add-apt-repository -y ppa:ondrej/php",
            "apt-get update -qq",
            "apt-get install -y -qq php8.3-fpm php8.3-cli",
            "systemctl enable php8.3-fpm",
            "systemctl start php8.3-fpm",
        ]


class TestComposerStep:
    """Checksum-verified installer."""

    def test_checksum_mismatch_aborts_before_install(self, monkeypatch):
        runner = FakeRunner()
        monkeypatch.setattr(server, "fetch", lambda url, timeout=30: INSTALLER)
        monkeypatch.setattr(server, "fetch_text", lambda url, timeout=30: "0" * 96)
        assert hashlib.sha384(INSTALLER).hexdigest() != "0" * 96

        with pytest.raises(ApplyFailedError) as exc_info:
            ComposerStep(runner, SystemBackend(runner)).apply()

        assert "checksum mismatch" in exc_info.value.message
        assert runner.calls == []

    def test_installs_with_verified_installer(self, monkeypatch):
        runner = FakeRunner()
        monkeypatch.setattr(server, "fetch", lambda url, timeout=30: INSTALLER)
        monkeypatch.setattr(server, "fetch_text", lambda url, timeout=30: hashlib.sha384(INSTALLER).hexdigest())

        ComposerStep(runner, SystemBackend(runner)).apply()

        argv = runner.calls[0]
        assert argv[0] == "php"
        assert argv[2:] == ["--quiet", "--install-dir=/usr/local/bin", "--filename=composer"]
        assert not os.path.exists(argv[1])


class TestNodeStep:
    def test_probe_matches_major(self):
        runner = FakeRunner()
        runner.on("node", "-v", stdout="v22.11.0\n")
        assert NodeStep(runner, SystemBackend(runner), 22).probe().satisfied

    def test_probe_other_major(self):
        runner = FakeRunner()
        runner.on("node", "-v", stdout="v18.20.4\n")
        probe = NodeStep(runner, SystemBackend(runner), 22).probe()
        assert not probe.satisfied
        assert probe.detail == "v18.20.4"

    def test_apply_runs_setup_script(self, monkeypatch):
        runner = FakeRunner()
        urls = []

        def fake_fetch_text(url, timeout=30):
            urls.append(url)
            return "#!/bin/bash\necho setup"
        monkeypatch.setattr(server, "fetch_text", fake_fetch_text)

        NodeStep(runner, SystemBackend(runner), 22).apply()

        assert urls == ["https://deb.nodesource.com/setup_22.x"]
        assert runner.calls[0] == ["bash", "-"]
        assert runner.inputs[0] == "#!/bin/bash\necho setup"
        assert runner.calls[1] == ["apt-get", "install", "-y", "-qq", "nodejs"]


class TestFileSteps:
    def test_remove_default_site(self, tmp_path):
        default = tmp_path / "default"
        default.symlink_to(tmp_path / "missing-target")
        reloads = []
        step = RemoveFileStep("nginx-default-site", str(default), activator=lambda: reloads.append(1))

        run = StepExecutor().execute(BASE_ENVIRONMENT, [step])

        assert run.actions() == {"nginx-default-site": "APPLY"}
        assert not os.path.lexists(default)
        assert reloads == [1]
        assert step.probe().satisfied

    def test_known_hosts_failure_is_a_warning(self, host_config, tmp_path, monkeypatch):
        runner = FakeRunner()
        runner.on("ssh-keyscan", exit_code=1)
        step = KnownHostsStep(runner, SystemBackend(runner), host_config)
        step.path = str(tmp_path / "known_hosts")

        run = StepExecutor().execute(BASE_ENVIRONMENT, [step])

        assert run.status is RunStatus.PARTIAL
        assert run.exit_code == 0
        assert run.get_outcome("known-hosts").action.value == "WARN"


class TestServerSteps:
    """Step list and verification of the base environment."""

    def test_step_order(self, host_config):
        runner = FakeRunner()
        steps = server_steps(host_config, runner, SystemBackend(runner), FakeDatabase(), "/usr/local/bin/hostforge")

        assert [s.name for s in steps] == [
            "base-packages", "php", "php-ini", "composer", "nodejs", "database-server",
            "redis", "redis-config", "nginx", "nginx-default-site", "app-user", "ssh-key",
            "known-hosts", "php-fpm-pool", "supervisor", "deploy-entrypoint", "sudoers",
        ]

    def test_php_extensions(self, host_config):
        runner = FakeRunner()
        steps = server_steps(host_config, runner, SystemBackend(runner), FakeDatabase(), "/usr/bin/hostforge")
        php = next(s for s in steps if s.name == "php")

        assert "php8.3-fpm" in php.packages
        assert "php8.3-redis" in php.packages

    def test_entrypoint_and_sudoers(self, host_config):
        runner = FakeRunner()
        steps = server_steps(host_config, runner, SystemBackend(runner), FakeDatabase(), "/opt/venv/bin/hostforge")
        entrypoint = next(s for s in steps if s.name == "deploy-entrypoint")
        sudoers = next(s for s in steps if s.name == "sudoers")

        StepExecutor().execute(BASE_ENVIRONMENT, [entrypoint, sudoers])

        script = Path(host_config.host.deploy_entrypoint)
        assert 'exec /opt/venv/bin/hostforge deploy "$@"' in script.read_text()
        assert os.access(script, os.X_OK)
        rules = Path(host_config.host.sudoers_file).read_text()
        assert "laravel ALL=(ALL) NOPASSWD: /bin/systemctl reload php8.3-fpm" in rules
        assert runner.count("visudo", "-c", "-f", host_config.host.sudoers_file) == 1

    def test_rejected_sudoers_is_removed(self, host_config):
        runner = FakeRunner()
        runner.on("visudo", exit_code=1)
        steps = server_steps(host_config, runner, SystemBackend(runner), FakeDatabase(), "/usr/bin/hostforge")
        sudoers = next(s for s in steps if s.name == "sudoers")

        run = StepExecutor().execute(BASE_ENVIRONMENT, [sudoers])

        assert run.is_aborted()
        assert not Path(host_config.host.sudoers_file).exists()

    def test_checks_run_without_short_circuit(self, host_config):
        runner = FakeRunner()
        runner.on("systemctl", "is-active", exit_code=3)
        checks = base_environment_checks(host_config, SystemBackend(runner), FakeDatabase())

        report = VerificationPass().verify(checks)

        assert len(report.results) == 12
        assert not report.passed
        assert "PHP-FPM 8.3 running" in [r.name for r in report.failures()]

    def test_provision_always_verifies(self, host_config, backends, runner):
        """An aborted provisioning run still reports every check."""
        runner.on("apt-get", "update", exit_code=100)
        runner.on("dpkg-query", exit_code=1)

        result = provision_server(host_config, backends, entrypoint_executable="/usr/bin/hostforge")

        assert result.run.is_aborted()
        assert result.exit_code == 100
        assert result.run.outcomes[-1].step_name == "base-packages"
        assert len(result.report.results) == 12
        assert not result.report.passed
