"""Deployment steps: pull, build, migrate, reload and worker restart."""

from typing import Any, List, Optional

from hostforge.backends.supervisor import ProgramStatus, SupervisorBackend
from hostforge.backends.system import SystemBackend
from hostforge.config.models import HostConfig, SiteConfig
from hostforge.provisioners.base import CommandStep, ProbeResult, Resource, ResourceKind, Step
from hostforge.utils.commands import CommandRunner
from hostforge.utils.locking import FileLock
from hostforge.utils.logging import get_logger

logger = get_logger(__name__)

WORKER_START = "start"
WORKER_RESTART = "restart"


class RuntimeReloadStep(Step):
    """Reloads php-fpm while holding the host-wide runtime lock.

    Concurrent deployments of different sites share one php-fpm; the lock
    serializes their reloads and gives up after the configured timeout.
    """

    def __init__(self, system: SystemBackend, config: HostConfig):
        super().__init__("reload-runtime", Resource(key=config.fpm_service, kind=ResourceKind.SERVICE))
        self.system = system
        self.config = config

    def probe(self) -> ProbeResult:
        return ProbeResult(satisfied=False)

    def apply(self, snapshot: Optional[Any] = None) -> Optional[str]:
        with FileLock(self.config.deploy.lock_path, timeout=self.config.deploy.lock_timeout):
            self.system.reload_service(self.config.fpm_service)
        return f"reloaded {self.config.fpm_service}"


class WorkerStep(Step):
    """Starts the queue worker on first deploy, restarts it afterwards.

    The supervisor re-reads its configuration every time so a new or
    changed program file is picked up. The chosen action is kept on
    `action` for the deployment summary.
    """

    def __init__(self, site: SiteConfig, supervisor: SupervisorBackend):
        super().__init__("worker", Resource(key=site.worker_program, kind=ResourceKind.WORKER))
        self.site = site
        self.supervisor = supervisor
        self.action: Optional[str] = None

    def probe(self) -> ProbeResult:
        return ProbeResult(satisfied=False)

    def apply(self, snapshot: Optional[Any] = None) -> Optional[str]:
        program = self.site.worker_program
        before = self.supervisor.status(program)

        self.supervisor.reread()
        self.supervisor.update()

        if before is ProgramStatus.NOT_REGISTERED or before.needs_start:
            self.action = WORKER_START
            # `update` already starts a newly registered autostart program
            if self.supervisor.status(program) not in (ProgramStatus.RUNNING, ProgramStatus.STARTING):
                self.supervisor.start(program)
        else:
            self.action = WORKER_RESTART
            self.supervisor.restart(program)

        return f"{self.action} {program} (was {before.value})"


def deployment_steps(
    site: SiteConfig,
    config: HostConfig,
    branch: str,
    runner: CommandRunner,
    system: SystemBackend,
    supervisor: SupervisorBackend,
) -> List[Step]:
    """Ordered deployment steps; none of them is rolled back."""
    cwd = site.site_dir

    def artisan(*args: str) -> CommandStep:
        return CommandStep(f"artisan {args[0]}", runner, ["php", "artisan"] + list(args), cwd=cwd)

    steps = [
        CommandStep("git-pull", runner, ["git", "pull", "origin", branch], cwd=cwd),
        CommandStep(
            "composer-install",
            runner,
            ["composer", "install", "--no-interaction", "--prefer-dist", "--optimize-autoloader", "--no-dev"],
            cwd=cwd,
        ),
        RuntimeReloadStep(system, config),
        CommandStep("npm-ci", runner, ["npm", "ci"], cwd=cwd),
        CommandStep("npm-build", runner, ["npm", "run", "build"], cwd=cwd),
        artisan("migrate", "--force"),
        artisan("queue:restart"),
    ]
    steps += [artisan(command) for command in config.deploy.cache_commands]
    steps += [artisan(command) for command in config.deploy.extra_artisan_commands]
    steps.append(WorkerStep(site, supervisor))
    return steps
