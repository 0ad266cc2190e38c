"""Tests for the deployment workflow and remote trigger."""

import threading
from pathlib import Path

import pytest

from hostforge.config.models import SiteConfig
from hostforge.orchestrator.deployment import DeploymentWorkflow, remote_deploy, remote_deploy_command
from hostforge.orchestrator.executor import RunStatus
from hostforge.provisioners.deployment import WORKER_RESTART, WORKER_START
from hostforge.utils.errors import LockTimeoutError, PrereqMissingError, ValidationError
from hostforge.utils.locking import FileLock

from fakes import FakeRunner

DOMAIN = "example.com"
PROGRAM = "example_com-horizon"


@pytest.fixture
def site(host_config):
    site = SiteConfig.from_domain(DOMAIN, host_config)
    Path(site.site_dir).mkdir(parents=True)
    return site


@pytest.fixture
def deploy_runner():
    return FakeRunner()


@pytest.fixture
def workflow(host_config, deploy_runner):
    return DeploymentWorkflow(host_config, runner=deploy_runner)


def supervisor_status(state):
    return f"{PROGRAM}:{PROGRAM}_00   {state}   pid 4242, uptime 1:02:03\n"


class TestDeploymentWorkflow:
    """Ordered deploy steps, worker start/restart and exit codes."""

    def test_runs_steps_in_order(self, workflow, deploy_runner, site):
        result = workflow.run(DOMAIN, "main")

        assert result.run.status is RunStatus.SUCCEEDED
        assert result.exit_code == 0
        assert result.branch == "main"

        commands = [c for c in deploy_runner.commands() if "supervisorctl" not in c]
        assert commands == [
            "git pull origin main",
            "composer install --no-interaction --prefer-dist --optimize-autoloader --no-dev",
            "sudo systemctl reload php8.3-fpm",
            "npm ci",
            "npm run build",
            "php artisan migrate --force",
            "php artisan queue:restart",
            "php artisan cache:clear",
            "php artisan config:clear",
            "php artisan optimize",
            "php artisan filament:cache-components",
            "php artisan filament:optimize",
        ]

    def test_default_branch_from_config(self, workflow, deploy_runner, site):
        result = workflow.run(DOMAIN)

        assert result.branch == "main"
        assert deploy_runner.calls[0] == ["git", "pull", "origin", "main"]

    def test_first_deploy_starts_worker(self, workflow, deploy_runner, site):
        """An unregistered worker is started, never restarted."""
        result = workflow.run(DOMAIN, "main")

        assert result.worker_action == WORKER_START
        assert deploy_runner.count("sudo", "supervisorctl", "reread") == 1
        assert deploy_runner.count("sudo", "supervisorctl", "update") == 1
        assert deploy_runner.count("sudo", "supervisorctl", "start", f"{PROGRAM}:*") == 1
        assert deploy_runner.count("sudo", "supervisorctl", "restart") == 0

    def test_running_worker_is_restarted(self, workflow, deploy_runner, site):
        deploy_runner.on("sudo", "supervisorctl", "status", stdout=supervisor_status("RUNNING"))

        result = workflow.run(DOMAIN, "main")

        assert result.worker_action == WORKER_RESTART
        assert deploy_runner.count("sudo", "supervisorctl", "restart", f"{PROGRAM}:*") == 1
        assert deploy_runner.count("sudo", "supervisorctl", "start") == 0

    def test_stopped_worker_is_started(self, workflow, deploy_runner, site):
        deploy_runner.on("sudo", "supervisorctl", "status", stdout=supervisor_status("STOPPED"))

        result = workflow.run(DOMAIN, "main")

        assert result.worker_action == WORKER_START
        assert deploy_runner.count("sudo", "supervisorctl", "start", f"{PROGRAM}:*") == 1

    def test_failing_command_exit_code_propagates(self, workflow, deploy_runner, site):
        """The run stops at the failing step and reports its exit code."""
        deploy_runner.on("php", "artisan", "migrate", exit_code=5, stderr="SQLSTATE[HY000]")

        result = workflow.run(DOMAIN, "main")

        assert result.run.status is RunStatus.ABORTED
        assert result.exit_code == 5
        assert result.run.outcomes[-1].step_name == "artisan migrate"
        assert "php artisan queue:restart" not in deploy_runner.commands()
        assert result.worker_action is None

    def test_completed_steps_are_not_reverted(self, workflow, deploy_runner, site):
        deploy_runner.on("npm", "run", "build", exit_code=1)

        result = workflow.run(DOMAIN, "main")

        assert result.run.get_outcome("git-pull").is_success()
        assert result.run.get_outcome("reload-runtime").is_success()
        assert not any("reset" in c or "checkout" in c for c in deploy_runner.commands())

    def test_lock_contention_times_out(self, workflow, deploy_runner, host_config, site):
        """Another holder of the runtime lock stops the reload after the timeout."""
        with FileLock(host_config.deploy.lock_path):
            result = workflow.run(DOMAIN, "main")

        assert result.run.is_aborted()
        assert isinstance(result.run.error, LockTimeoutError)
        assert result.run.outcomes[-1].step_name == "reload-runtime"
        assert deploy_runner.count("sudo", "systemctl", "reload") == 0
        assert not Path(host_config.deploy.lock_path).exists()

    def test_reload_waits_for_the_lock_holder(self, workflow, deploy_runner, host_config, site):
        """A reload started while another deploy holds the lock runs after it is released."""
        holder = FileLock(host_config.deploy.lock_path)
        holder.acquire()
        timer = threading.Timer(0.1, holder.release)
        timer.start()
        try:
            result = workflow.run(DOMAIN, "main")
        finally:
            timer.join()
            holder.release()

        assert result.run.status is RunStatus.SUCCEEDED
        assert deploy_runner.count("sudo", "systemctl", "reload", "php8.3-fpm") == 1
        assert not Path(host_config.deploy.lock_path).exists()

    def test_failed_reload_releases_the_lock(self, workflow, deploy_runner, host_config, site):
        deploy_runner.on("sudo", "systemctl", "reload", exit_code=7, stderr="Job for php8.3-fpm.service failed")

        result = workflow.run(DOMAIN, "main")

        assert result.exit_code == 7
        assert result.run.outcomes[-1].step_name == "reload-runtime"
        assert not Path(host_config.deploy.lock_path).exists()
        with FileLock(host_config.deploy.lock_path, timeout=0.1) as lock:
            assert lock.held

    def test_lock_released_after_reload(self, workflow, host_config, site):
        workflow.run(DOMAIN, "main")
        assert not Path(host_config.deploy.lock_path).exists()

    def test_missing_site_directory(self, workflow, deploy_runner):
        with pytest.raises(PrereqMissingError):
            workflow.run(DOMAIN, "main")
        assert deploy_runner.calls == []

    @pytest.mark.parametrize("branch", ["../etc", "-rf", "main branch", "feature..x"])
    def test_invalid_branch(self, workflow, deploy_runner, site, branch):
        with pytest.raises(ValidationError):
            workflow.run(DOMAIN, branch)
        assert deploy_runner.calls == []

    def test_without_sudo(self, host_config, site):
        runner = FakeRunner()
        config = host_config.model_copy(
            update={"deploy": host_config.deploy.model_copy(update={"use_sudo": False})}
        )

        DeploymentWorkflow(config, runner=runner).run(DOMAIN, "main")

        assert runner.count("systemctl", "reload", "php8.3-fpm") == 1
        assert runner.count("sudo") == 0


class TestRemoteDeploy:
    """ssh trigger for the deploy entrypoint."""

    def test_command(self, host_config):
        args = remote_deploy_command(DOMAIN, "release/1.2", host_config)

        assert args == [
            "ssh", "-t", f"laravel@{DOMAIN}",
            host_config.host.deploy_entrypoint, DOMAIN, "release/1.2",
        ]

    def test_command_with_host_and_user(self, host_config):
        args = remote_deploy_command(DOMAIN, "main", host_config, host="10.0.0.5", user="deploy")
        assert args[2] == "deploy@10.0.0.5"

    def test_exit_code_propagates(self, host_config):
        runner = FakeRunner()
        runner.on("ssh", exit_code=3)

        assert remote_deploy(DOMAIN, "main", host_config, runner=runner) == 3
        assert runner.calls[0][0] == "ssh"

    def test_success(self, host_config):
        assert remote_deploy(DOMAIN, "main", host_config, runner=FakeRunner()) == 0

    def test_invalid_domain_runs_nothing(self, host_config):
        runner = FakeRunner()
        with pytest.raises(ValidationError):
            remote_deploy("bad_domain", "main", host_config, runner=runner)
        assert runner.calls == []
