"""Application deployment workflow and its remote trigger."""

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from hostforge.backends.supervisor import SupervisorBackend
from hostforge.backends.system import SystemBackend
from hostforge.config.models import HostConfig, SiteConfig
from hostforge.orchestrator.executor import StepExecutor, WorkflowRun
from hostforge.orchestrator.workflows import validate_branch, validate_domain
from hostforge.provisioners.deployment import WorkerStep, deployment_steps
from hostforge.utils.commands import CommandRunner
from hostforge.utils.errors import ErrorContext, PrereqMissingError
from hostforge.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class DeploymentResult:
    """Outcome of one deployment."""
    run: WorkflowRun
    site: SiteConfig
    branch: str
    worker_action: Optional[str] = None

    @property
    def exit_code(self) -> int:
        """0 on success, otherwise the failing command's exit code."""
        return self.run.exit_code


class DeploymentWorkflow:
    """Deploys the checked-out application of one site.

    Steps run in a fixed order and stop at the first failure; nothing is
    rolled back.
    """

    def __init__(
        self,
        config: HostConfig,
        runner: Optional[CommandRunner] = None,
        system: Optional[SystemBackend] = None,
        supervisor: Optional[SupervisorBackend] = None,
        executor: Optional[StepExecutor] = None,
    ):
        """Initialize deployment workflow.

        Args:
            config: Host configuration
            runner: Command runner shared by all steps
            system: Service manager backend (sudo per configuration when None)
            supervisor: Supervisor backend (sudo per configuration when None)
            executor: Step executor
        """
        self.config = config
        self.runner = runner or CommandRunner()
        sudo = config.deploy.use_sudo
        self.system = system or SystemBackend(self.runner, sudo=sudo)
        self.supervisor = supervisor or SupervisorBackend(self.runner, sudo=sudo)
        self.executor = executor or StepExecutor()

    def run(self, domain: str, branch: Optional[str] = None) -> DeploymentResult:
        """
        Deploy a site.

        Raises:
            ValidationError: If the domain or branch is malformed
            PrereqMissingError: If the site directory does not exist
        """
        validate_domain(domain)
        branch = validate_branch(branch or self.config.deploy.default_branch)
        site = SiteConfig.from_domain(domain, self.config)

        if not Path(site.site_dir).is_dir():
            raise PrereqMissingError(
                f"Site directory does not exist: {site.site_dir}",
                context=ErrorContext(resource_id=domain, operation="prereq"),
                suggestions=[f"Run `hostforge site-setup {domain}` and clone the repository first"],
            )

        logger.info(f"Deploying {domain} ({branch}) from {site.site_dir}")
        steps = deployment_steps(site, self.config, branch, self.runner, self.system, self.supervisor)
        run = self.executor.execute(domain, steps)

        worker = next(s for s in steps if isinstance(s, WorkerStep))
        return DeploymentResult(run=run, site=site, branch=branch, worker_action=worker.action)


def remote_deploy_command(
    domain: str,
    branch: str,
    config: HostConfig,
    host: Optional[str] = None,
    user: Optional[str] = None,
) -> List[str]:
    """ssh command running the deploy entrypoint on the target host."""
    validate_domain(domain)
    validate_branch(branch)
    target = f"{user or config.deploy.ssh_user}@{host or domain}"
    return ["ssh", "-t", target, config.host.deploy_entrypoint, domain, branch]


def remote_deploy(
    domain: str,
    branch: str,
    config: HostConfig,
    runner: Optional[CommandRunner] = None,
    host: Optional[str] = None,
    user: Optional[str] = None,
) -> int:
    """Run a deployment on the target host over ssh and return its exit code."""
    runner = runner or CommandRunner()
    args = remote_deploy_command(domain, branch, config, host=host, user=user)
    logger.info(f"Triggering remote deployment: {' '.join(args)}")
    result = runner.run(args, capture=False)
    if not result.ok:
        logger.error(f"Remote deployment of {domain} failed with exit code {result.exit_code}")
    return result.exit_code
