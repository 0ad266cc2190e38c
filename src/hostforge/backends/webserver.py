"""Nginx backend."""

from dataclasses import dataclass
from pathlib import Path

from hostforge.backends.system import SystemBackend
from hostforge.utils.commands import CommandRunner
from hostforge.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class ConfigTestResult:
    """Outcome of `nginx -t`."""
    valid: bool
    output: str = ""


class NginxBackend:
    """Validates, enables and reloads nginx server blocks."""

    service = "nginx"

    def __init__(self, runner: CommandRunner, system: SystemBackend):
        self.runner = runner
        self.system = system

    def is_installed(self) -> bool:
        return self.runner.which("nginx") is not None

    def test_config(self) -> ConfigTestResult:
        result = self.runner.run(["nginx", "-t"])
        # nginx reports on stderr
        return ConfigTestResult(valid=result.ok, output=(result.stderr + result.stdout).strip())

    def reload(self) -> None:
        self.system.reload_service(self.service)

    def enable_site(self, available: str, enabled: str) -> None:
        """Point sites-enabled at the sites-available file."""
        link = Path(enabled)
        target = Path(available)
        link.parent.mkdir(parents=True, exist_ok=True)
        if link.is_symlink() or link.exists():
            if link.is_symlink() and Path(link.readlink()) == target:
                return
            link.unlink()
        link.symlink_to(target)

    def site_enabled(self, available: str, enabled: str) -> bool:
        link = Path(enabled)
        return link.is_symlink() and Path(link.readlink()) == Path(available)

    def disable_site(self, enabled: str) -> None:
        link = Path(enabled)
        if link.is_symlink() or link.exists():
            link.unlink()
