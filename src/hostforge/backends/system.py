"""Package manager, service manager, users and crontab."""

import os
from typing import List, Optional

from hostforge.utils.commands import CommandRunner
from hostforge.utils.logging import get_logger

logger = get_logger(__name__)


class SystemBackend:
    """apt, systemd and account management on the target host."""

    def __init__(self, runner: CommandRunner, sudo: bool = False):
        """
        Initialize SystemBackend.

        Args:
            runner: Command runner
            sudo: Prefix service commands with sudo (deploys run unprivileged)
        """
        self.runner = runner
        self.sudo = sudo

    def _privileged(self, args: List[str]) -> List[str]:
        return (["sudo"] + args) if self.sudo else args

    # Commands

    def command_exists(self, program: str) -> bool:
        return self.runner.which(program) is not None

    def command_output(self, args: List[str]) -> Optional[str]:
        """Stdout of a command, or None when it fails or is missing."""
        result = self.runner.run(args)
        return result.stdout.strip() if result.ok else None

    # Packages

    def package_installed(self, package: str) -> bool:
        result = self.runner.run(["dpkg-query", "-W", "-f=${Status}", package])
        return result.ok and "install ok installed" in result.stdout

    def update_index(self) -> None:
        self.runner.check(["apt-get", "update", "-qq"], env=self.apt_env())

    def upgrade(self) -> None:
        self.runner.check(["apt-get", "upgrade", "-y", "-qq"], env=self.apt_env())

    def install_packages(self, packages: List[str]) -> None:
        self.runner.check(["apt-get", "install", "-y", "-qq"] + list(packages), env=self.apt_env())

    def add_repository(self, repository: str) -> None:
        self.runner.check(["add-apt-repository", "-y", repository], env=self.apt_env())

    @staticmethod
    def apt_env() -> dict:
        env = dict(os.environ)
        env["DEBIAN_FRONTEND"] = "noninteractive"
        return env

    # Services

    def service_active(self, service: str) -> bool:
        return self.runner.run(["systemctl", "is-active", "--quiet", service]).ok

    def start_service(self, service: str) -> None:
        self.runner.check(self._privileged(["systemctl", "start", service]))

    def enable_service(self, service: str) -> None:
        self.runner.check(self._privileged(["systemctl", "enable", service]))

    def reload_service(self, service: str) -> None:
        self.runner.check(self._privileged(["systemctl", "reload", service]))

    def restart_service(self, service: str) -> None:
        self.runner.check(self._privileged(["systemctl", "restart", service]))

    # Accounts

    def user_exists(self, user: str) -> bool:
        return self.runner.run(["id", "-u", user]).ok

    def create_system_user(self, user: str, home: str) -> None:
        self.runner.check(["useradd", "-r", "-m", "-d", home, "-s", "/bin/bash", user])

    def add_user_to_group(self, user: str, group: str) -> None:
        self.runner.check(["usermod", "-a", "-G", group, user])

    def chown(self, path: str, owner: str, group: str, recursive: bool = True) -> None:
        args = ["chown"] + (["-R"] if recursive else []) + [f"{owner}:{group}", path]
        self.runner.check(args)

    # Crontab

    def read_crontab(self, user: str) -> str:
        result = self.runner.run(["crontab", "-u", user, "-l"])
        return result.stdout if result.ok else ""

    def write_crontab(self, user: str, content: str) -> None:
        self.runner.check(["crontab", "-u", user, "-"], input=content)
