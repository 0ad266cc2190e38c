"""Base environment steps: runtime, database, cache, web server, supervisor."""

import hashlib
import os
import socket
import tempfile
from pathlib import Path
from typing import Any, List, Optional

from hostforge.backends.database import DatabaseBackend
from hostforge.backends.system import SystemBackend
from hostforge.config.models import HostConfig
from hostforge.orchestrator.verification import Check
from hostforge.provisioners.base import ProbeResult, Resource, ResourceKind, Step
from hostforge.provisioners.files import ManagedFileStep, read_file, remove_file, set_directives, write_file
from hostforge.provisioners.templates import (
    FPM_POOL_SETTINGS,
    PHP_INI_SETTINGS,
    REDIS_SETTINGS,
    render_deploy_entrypoint,
    render_sudoers,
)
from hostforge.utils.commands import CommandRunner
from hostforge.utils.errors import ApplyFailedError, ErrorContext
from hostforge.utils.http import fetch, fetch_text
from hostforge.utils.logging import get_logger

logger = get_logger(__name__)

PHP_REPOSITORY = "ppa:ondrej/php"
COMPOSER_INSTALLER_URL = "https://getcomposer.org/installer"
COMPOSER_SIGNATURE_URL = "https://composer.github.io/installer.sig"
NODESOURCE_SETUP_URL = "https://deb.nodesource.com/setup_{major}.x"
REDIS_CONF = "/etc/redis/redis.conf"


class PackagesStep(Step):
    """apt packages, optionally from an extra repository, plus their service."""

    def __init__(
        self,
        name: str,
        system: SystemBackend,
        packages: List[str],
        repository: Optional[str] = None,
        service: Optional[str] = None,
        upgrade: bool = False,
    ):
        super().__init__(name, Resource(key=name, kind=ResourceKind.PACKAGE))
        self.system = system
        self.packages = packages
        self.repository = repository
        self.service = service
        self.upgrade = upgrade

    def probe(self) -> ProbeResult:
        missing = [p for p in self.packages if not self.system.package_installed(p)]
        if missing:
            return ProbeResult(satisfied=False, detail=f"missing: {' '.join(missing)}")
        if self.service and not self.system.service_active(self.service):
            return ProbeResult(satisfied=False, detail=f"{self.service} not running")
        return ProbeResult(satisfied=True, detail="installed")

    def apply(self, snapshot: Optional[Any] = None) -> Optional[str]:
        if self.repository:
            self.system.add_repository(self.repository)
        self.system.update_index()
        if self.upgrade:
            self.system.upgrade()
        self.system.install_packages(self.packages)
        if self.service:
            self.system.enable_service(self.service)
            self.system.start_service(self.service)
        return f"installed {' '.join(self.packages)}"


class ComposerStep(Step):
    """Composer from the official installer, checked against its published sha384."""

    def __init__(self, runner: CommandRunner, system: SystemBackend, install_dir: str = "/usr/local/bin"):
        super().__init__("composer", Resource(key="composer", kind=ResourceKind.PACKAGE))
        self.runner = runner
        self.system = system
        self.install_dir = install_dir

    def probe(self) -> ProbeResult:
        installed = self.system.command_exists("composer")
        return ProbeResult(satisfied=installed, detail="installed" if installed else "")

    def apply(self, snapshot: Optional[Any] = None) -> Optional[str]:
        expected = fetch_text(COMPOSER_SIGNATURE_URL)
        installer = fetch(COMPOSER_INSTALLER_URL)
        actual = hashlib.sha384(installer).hexdigest()
        if actual != expected:
            raise ApplyFailedError(
                "Composer installer corrupt: checksum mismatch",
                context=ErrorContext(
                    resource_id="composer",
                    additional_info={'expected': expected, 'actual': actual},
                ),
            )

        fd, path = tempfile.mkstemp(prefix="composer-setup-", suffix=".php")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(installer)
            self.runner.check([
                "php", path, "--quiet",
                f"--install-dir={self.install_dir}",
                "--filename=composer",
            ])
        finally:
            remove_file(path)
        return f"installed {self.install_dir}/composer"


class NodeStep(Step):
    """Node.js of a major version from NodeSource."""

    def __init__(self, runner: CommandRunner, system: SystemBackend, major: int):
        super().__init__("nodejs", Resource(key=f"node{major}", kind=ResourceKind.PACKAGE))
        self.runner = runner
        self.system = system
        self.major = major

    def probe(self) -> ProbeResult:
        version = self.system.command_output(["node", "-v"])
        if version and version.startswith(f"v{self.major}."):
            return ProbeResult(satisfied=True, detail=version)
        return ProbeResult(satisfied=False, detail=version or "not installed")

    def apply(self, snapshot: Optional[Any] = None) -> Optional[str]:
        script = fetch_text(NODESOURCE_SETUP_URL.format(major=self.major))
        self.runner.check(["bash", "-"], input=script, env=self.system.apt_env())
        self.system.install_packages(["nodejs"])
        return f"installed Node.js {self.major}.x"


class DatabaseServerStep(Step):
    """Database server package, service and first-install hardening."""

    def __init__(self, system: SystemBackend, backend: DatabaseBackend):
        super().__init__(
            "database-server", Resource(key=backend.service, kind=ResourceKind.SERVICE)
        )
        self.system = system
        self.backend = backend

    def probe(self) -> ProbeResult:
        if not self.backend.is_installed():
            return ProbeResult(satisfied=False, detail=f"{self.backend.engine} not installed")
        if not self.system.service_active(self.backend.service):
            return ProbeResult(satisfied=False, detail=f"{self.backend.service} not running")
        return ProbeResult(satisfied=True, detail=f"{self.backend.engine} running")

    def apply(self, snapshot: Optional[Any] = None) -> Optional[str]:
        if not self.system.package_installed(self.backend.package):
            self.system.update_index()
            self.system.install_packages([self.backend.package])
        self.system.start_service(self.backend.service)
        self.system.enable_service(self.backend.service)
        self.backend.secure_installation()
        return f"{self.backend.engine} installed and secured"


class RemoveFileStep(Step):
    """Ensures a file is absent."""

    def __init__(self, name: str, path: str, activator=None):
        super().__init__(name, Resource(key=path, kind=ResourceKind.FILE))
        self.path = path
        self.activator = activator

    def probe(self) -> ProbeResult:
        present = os.path.lexists(self.path)
        return ProbeResult(satisfied=not present, detail="" if present else f"{self.path} absent")

    def apply(self, snapshot: Optional[Any] = None) -> Optional[str]:
        remove_file(self.path)
        return f"removed {self.path}"

    def activate(self) -> None:
        if self.activator:
            self.activator()


class AppUserStep(Step):
    """System user owning the sites; the web server user joins its group."""

    def __init__(self, system: SystemBackend, config: HostConfig):
        super().__init__("app-user", Resource(key=config.host.app_user, kind=ResourceKind.USER))
        self.system = system
        self.config = config

    def _web_user_in_group(self) -> bool:
        groups = self.system.command_output(["id", "-nG", self.config.host.web_user]) or ""
        return self.config.host.app_group in groups.split()

    def probe(self) -> ProbeResult:
        host = self.config.host
        if not self.system.user_exists(host.app_user):
            return ProbeResult(satisfied=False, detail=f"user {host.app_user} missing")
        if not self._web_user_in_group():
            return ProbeResult(satisfied=False, detail=f"{host.web_user} not in group {host.app_group}")
        if not Path(host.sites_root).is_dir():
            return ProbeResult(satisfied=False, detail=f"{host.sites_root} missing")
        return ProbeResult(satisfied=True, detail=f"user {host.app_user}")

    def apply(self, snapshot: Optional[Any] = None) -> Optional[str]:
        host = self.config.host
        if not self.system.user_exists(host.app_user):
            self.system.create_system_user(host.app_user, f"/home/{host.app_user}")
        self.system.add_user_to_group(host.web_user, host.app_group)
        Path(host.sites_root).mkdir(parents=True, exist_ok=True)
        os.chmod(host.sites_root, 0o755)
        return f"user {host.app_user} ready"


class SshKeyStep(Step):
    """ed25519 deploy key for the app user (add it to the git host by hand)."""

    def __init__(self, runner: CommandRunner, config: HostConfig):
        self.key_path = f"{config.ssh_dir}/id_ed25519"
        super().__init__("ssh-key", Resource(key=self.key_path, kind=ResourceKind.FILE))
        self.runner = runner
        self.config = config

    def probe(self) -> ProbeResult:
        exists = Path(self.key_path).is_file()
        return ProbeResult(satisfied=exists, detail=self.key_path if exists else "")

    def apply(self, snapshot: Optional[Any] = None) -> Optional[str]:
        user = self.config.host.app_user
        self.runner.check(["mkdir", "-p", "-m", "700", self.config.ssh_dir], user=user)
        self.runner.check(
            ["ssh-keygen", "-t", "ed25519", "-C", f"{user}@{socket.gethostname()}",
             "-f", self.key_path, "-N", ""],
            user=user,
        )
        return f"generated {self.key_path}"


class KnownHostsStep(Step):
    """Pins the git host's key in the app user's known_hosts."""

    required = False

    def __init__(self, runner: CommandRunner, system: SystemBackend, config: HostConfig, host: str = "github.com"):
        self.path = f"{config.ssh_dir}/known_hosts"
        super().__init__("known-hosts", Resource(key=self.path, kind=ResourceKind.FILE))
        self.runner = runner
        self.system = system
        self.config = config
        self.host = host

    def probe(self) -> ProbeResult:
        content = read_file(self.path) or ""
        present = any(line.startswith(self.host) for line in content.splitlines())
        return ProbeResult(satisfied=present, detail=f"{self.host} known" if present else "")

    def apply(self, snapshot: Optional[Any] = None) -> Optional[str]:
        result = self.runner.check(["ssh-keyscan", "-t", "ed25519", self.host])
        current = read_file(self.path) or ""
        if current and not current.endswith("\n"):
            current += "\n"
        write_file(self.path, current + result.stdout, 0o600)
        self.system.chown(self.path, self.config.host.app_user, self.config.host.app_group, recursive=False)
        return f"added {self.host} to {self.path}"


def server_steps(
    config: HostConfig,
    runner: CommandRunner,
    system: SystemBackend,
    database: DatabaseBackend,
    entrypoint_executable: str,
) -> List[Step]:
    """Ordered base environment steps."""
    host = config.host
    php = f"php{host.php_version}"

    def check_fpm_config() -> None:
        runner.check([f"php-fpm{host.php_version}", "-t"])

    def restart_fpm() -> None:
        system.restart_service(config.fpm_service)

    def check_sudoers() -> None:
        runner.check(["visudo", "-c", "-f", host.sudoers_file])

    pool_settings = [("user", host.app_user), ("group", host.app_group)] + FPM_POOL_SETTINGS

    return [
        PackagesStep("base-packages", system, host.base_packages, upgrade=True),
        PackagesStep(
            "php",
            system,
            [f"{php}-{ext}" for ext in host.php_extensions],
            repository=PHP_REPOSITORY,
            service=config.fpm_service,
        ),
        ManagedFileStep(
            "php-ini",
            config.php_ini,
            render=lambda current: set_directives(current or "", PHP_INI_SETTINGS),
            activator=restart_fpm,
            require_existing=True,
        ),
        ComposerStep(runner, system),
        NodeStep(runner, system, host.node_major),
        DatabaseServerStep(system, database),
        PackagesStep("redis", system, ["redis-server"], service="redis-server"),
        ManagedFileStep(
            "redis-config",
            REDIS_CONF,
            render=lambda current: set_directives(current or "", REDIS_SETTINGS, assign=" ", comment="#"),
            activator=lambda: system.restart_service("redis-server"),
            require_existing=True,
        ),
        PackagesStep("nginx", system, ["nginx"], service="nginx"),
        RemoveFileStep(
            "nginx-default-site",
            f"{config.webserver.sites_enabled}/default",
            activator=lambda: system.reload_service("nginx"),
        ),
        AppUserStep(system, config),
        SshKeyStep(runner, config),
        KnownHostsStep(runner, system, config),
        ManagedFileStep(
            "php-fpm-pool",
            config.fpm_pool_conf,
            render=lambda current: set_directives(current or "", pool_settings),
            validator=check_fpm_config,
            activator=restart_fpm,
            require_existing=True,
        ),
        PackagesStep("supervisor", system, ["supervisor"], service="supervisor"),
        ManagedFileStep(
            "deploy-entrypoint",
            host.deploy_entrypoint,
            render=lambda current: render_deploy_entrypoint(entrypoint_executable),
            mode=0o755,
        ),
        ManagedFileStep(
            "sudoers",
            host.sudoers_file,
            render=lambda current: render_sudoers(config),
            mode=0o440,
            validator=check_sudoers,
        ),
    ]


def base_environment_checks(
    config: HostConfig,
    system: SystemBackend,
    database: DatabaseBackend,
) -> List[Check]:
    """The twelve read-only checks run after provisioning."""
    host = config.host

    def php_version():
        output = system.command_output(["php", "-v"]) or ""
        return f"PHP {host.php_version}" in output, output.splitlines()[0] if output else "php not found"

    def node_version():
        version = system.command_output(["node", "-v"]) or ""
        return version.startswith(f"v{host.node_major}."), version or "node not found"

    def installed_and_running(program: str, service: str):
        return lambda: system.command_exists(program) and system.service_active(service)

    def entrypoint_executable():
        path = host.deploy_entrypoint
        return os.path.isfile(path) and os.access(path, os.X_OK)

    return [
        Check(f"PHP {host.php_version} installed", php_version),
        Check("Composer installed", lambda: system.command_exists("composer")),
        Check(f"Node.js {host.node_major}.x installed", node_version),
        Check(
            f"{database.engine} installed and running",
            installed_and_running(database.client, database.service),
        ),
        Check("Redis installed and running", installed_and_running("redis-server", "redis-server")),
        Check("Nginx installed and running", installed_and_running("nginx", "nginx")),
        Check("Supervisor installed and running", installed_and_running("supervisorctl", "supervisor")),
        Check(f"User {host.app_user} exists", lambda: system.user_exists(host.app_user)),
        Check(
            f"SSH key for {host.app_user}",
            lambda: Path(f"{config.ssh_dir}/id_ed25519").is_file(),
        ),
        Check("Deploy entrypoint installed", entrypoint_executable, detail=host.deploy_entrypoint),
        Check(f"PHP-FPM {host.php_version} running", lambda: system.service_active(config.fpm_service)),
        Check("Sudo permissions configured", lambda: Path(host.sudoers_file).is_file(), detail=host.sudoers_file),
    ]
