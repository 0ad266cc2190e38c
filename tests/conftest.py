"""Shared fixtures: a host configuration rooted in tmp_path and fake backends."""

from pathlib import Path

import pytest

from hostforge.backends import CertbotBackend, NginxBackend, SupervisorBackend
from hostforge.config.models import HostConfig
from hostforge.orchestrator.workflows import Backends, credential_store

from fakes import FakeDatabase, FakeRunner, FakeSystem


@pytest.fixture
def host_config(tmp_path: Path) -> HostConfig:
    """Default configuration with every path under tmp_path."""
    return HostConfig(**{
        "host": {
            "sites_root": str(tmp_path / "opt"),
            "credentials_dir": str(tmp_path / "root"),
            "log_dir": str(tmp_path / "log"),
            "deploy_entrypoint": str(tmp_path / "bin" / "laravel-site-deploy"),
            "sudoers_file": str(tmp_path / "sudoers.d" / "laravel-deploy"),
        },
        "webserver": {
            "sites_available": str(tmp_path / "nginx" / "sites-available"),
            "sites_enabled": str(tmp_path / "nginx" / "sites-enabled"),
            "log_dir": str(tmp_path / "nginx-log"),
        },
        "supervisor": {"conf_dir": str(tmp_path / "supervisor")},
        "deploy": {"lock_path": str(tmp_path / "fpmlock"), "lock_timeout": 0.5},
    })


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner(available=["nginx", "supervisorctl", "mysql", "certbot"])


@pytest.fixture
def database() -> FakeDatabase:
    return FakeDatabase()


@pytest.fixture
def system(runner) -> FakeSystem:
    return FakeSystem(runner)


@pytest.fixture
def backends(runner, system, database) -> Backends:
    return Backends(
        runner=runner,
        system=system,
        database=database,
        nginx=NginxBackend(runner, system),
        supervisor=SupervisorBackend(runner),
        certbot=CertbotBackend(runner, system),
    )


@pytest.fixture
def store(host_config):
    return credential_store(host_config)
