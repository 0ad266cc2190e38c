"""Workflow entry points: validate input, build steps, execute, verify."""

import shutil
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from hostforge.backends import (
    CertbotBackend,
    DatabaseBackend,
    NginxBackend,
    SupervisorBackend,
    SystemBackend,
    create_database_backend,
)
from hostforge.config.models import (
    BRANCH_PATTERN,
    DOMAIN_PATTERN,
    EMAIL_PATTERN,
    HostConfig,
    SiteConfig,
)
from hostforge.credentials.store import CredentialStore
from hostforge.orchestrator.executor import StepExecutor, WorkflowRun
from hostforge.orchestrator.verification import Check, VerificationPass, VerificationReport
from hostforge.provisioners.certificate import certificate_checks, certificate_steps
from hostforge.provisioners.server import base_environment_checks, server_steps
from hostforge.provisioners.site import site_steps
from hostforge.utils.commands import CommandRunner
from hostforge.utils.errors import ErrorContext, PrereqMissingError, ValidationError
from hostforge.utils.logging import get_logger

logger = get_logger(__name__)

BASE_ENVIRONMENT = "base-environment"


def validate_domain(domain: str) -> str:
    """
    Validate a site domain.

    Raises:
        ValidationError: If the domain is malformed
    """
    if not domain or not DOMAIN_PATTERN.match(domain):
        raise ValidationError(
            f"Invalid domain format: {domain!r}",
            context=ErrorContext(resource_id=domain, operation="validate"),
            suggestions=["Use a fully qualified name such as app.example.com"],
        )
    return domain


def validate_email(email: str) -> str:
    if not email or not EMAIL_PATTERN.match(email):
        raise ValidationError(
            f"Invalid email format: {email!r}",
            context=ErrorContext(operation="validate"),
        )
    return email


def validate_branch(branch: str) -> str:
    if not branch or not BRANCH_PATTERN.match(branch) or ".." in branch:
        raise ValidationError(
            f"Invalid branch name: {branch!r}",
            context=ErrorContext(operation="validate"),
        )
    return branch


@dataclass
class Backends:
    """Backends bound to one CommandRunner."""
    runner: CommandRunner
    system: SystemBackend
    database: DatabaseBackend
    nginx: NginxBackend
    supervisor: SupervisorBackend
    certbot: CertbotBackend


def build_backends(config: HostConfig, runner: Optional[CommandRunner] = None, sudo: bool = False) -> Backends:
    """
    Build every backend from configuration.

    Args:
        config: Host configuration
        runner: Command runner (a fresh one when None)
        sudo: Prefix service and supervisor commands with sudo
    """
    runner = runner or CommandRunner()
    system = SystemBackend(runner, sudo=sudo)
    return Backends(
        runner=runner,
        system=system,
        database=create_database_backend(config.database.engine, runner),
        nginx=NginxBackend(runner, system),
        supervisor=SupervisorBackend(runner, sudo=sudo),
        certbot=CertbotBackend(runner, system),
    )


def credential_store(config: HostConfig) -> CredentialStore:
    return CredentialStore(
        config.host.credentials_dir,
        engine=config.database.engine,
        user_prefix=config.database.user_prefix,
        password_length=config.database.password_length,
        host=config.database.host,
    )


@dataclass
class WorkflowResult:
    """A workflow run plus its verification report, if one ran."""
    run: WorkflowRun
    report: Optional[VerificationReport] = None
    site: Optional[SiteConfig] = None

    @property
    def exit_code(self) -> int:
        return self.run.exit_code


def _require(condition: bool, message: str, suggestion: str) -> None:
    if not condition:
        raise PrereqMissingError(
            message,
            context=ErrorContext(operation="prereq"),
            suggestions=[suggestion],
        )


def provision_server(
    config: HostConfig,
    backends: Backends,
    executor: Optional[StepExecutor] = None,
    entrypoint_executable: Optional[str] = None,
) -> WorkflowResult:
    """Install the base environment, then verify it regardless of step outcomes."""
    executable = entrypoint_executable or shutil.which("hostforge") or f"{sys.prefix}/bin/hostforge"
    steps = server_steps(config, backends.runner, backends.system, backends.database, executable)

    executor = executor or StepExecutor()
    run = executor.execute(BASE_ENVIRONMENT, steps)
    report = verify_environment(config, backends)
    return WorkflowResult(run=run, report=report)


def verify_environment(config: HostConfig, backends: Backends) -> VerificationReport:
    checks = base_environment_checks(config, backends.system, backends.database)
    return VerificationPass().verify(checks)


def site_checks(site: SiteConfig, backends: Backends, store: CredentialStore, config: HostConfig) -> List[Check]:
    """Read-only checks of one registered site."""

    def database_exists():
        probe = backends.database.probe_database(site.db_name, config.database.user_prefix)
        return probe.exists, site.db_name

    return [
        Check("Site directory", lambda: Path(site.site_dir).is_dir(), detail=site.site_dir),
        Check("Database", database_exists),
        Check(
            "Credential record",
            lambda: store.exists(site.site_name),
            detail=str(store.path_for(site.site_name)),
        ),
        Check(
            "Nginx site enabled",
            lambda: backends.nginx.site_enabled(site.nginx_available, site.nginx_enabled),
            detail=site.nginx_enabled,
        ),
        Check("Worker unit", lambda: Path(site.supervisor_conf).is_file(), detail=site.supervisor_conf),
    ]


def setup_site(
    domain: str,
    config: HostConfig,
    backends: Backends,
    store: Optional[CredentialStore] = None,
    executor: Optional[StepExecutor] = None,
) -> WorkflowResult:
    """
    Register a site on the host.

    Raises:
        ValidationError: If the domain is malformed
        PrereqMissingError: If the base environment is not provisioned
    """
    validate_domain(domain)
    site = SiteConfig.from_domain(domain, config)

    backends.database.require_installed()
    _require(backends.nginx.is_installed(), "Nginx is not installed", "Run `hostforge provision` first")
    _require(
        backends.supervisor.is_installed(),
        "Supervisor is not installed",
        "Run `hostforge provision` first",
    )

    store = store or credential_store(config)
    steps = site_steps(site, config, backends.system, backends.database, store, backends.nginx)

    executor = executor or StepExecutor()
    run = executor.execute(domain, steps)

    report = None
    if not run.is_aborted():
        report = VerificationPass().verify(site_checks(site, backends, store, config))
    return WorkflowResult(run=run, report=report, site=site)


def setup_certificate(
    domain: str,
    email: str,
    config: HostConfig,
    backends: Backends,
    renew: bool = False,
    executor: Optional[StepExecutor] = None,
) -> WorkflowResult:
    """
    Obtain or renew the site certificate, then verify TLS and renewal.

    Raises:
        ValidationError: If the domain or email is malformed
        PrereqMissingError: If the site is not registered
    """
    validate_domain(domain)
    validate_email(email)
    site = SiteConfig.from_domain(domain, config)

    _require(
        Path(site.site_dir).is_dir(),
        f"Site directory does not exist: {site.site_dir}",
        f"Run `hostforge site-setup {domain}` first",
    )
    _require(
        Path(site.nginx_available).is_file(),
        f"Nginx configuration does not exist: {site.nginx_available}",
        f"Run `hostforge site-setup {domain}` first",
    )
    _require(backends.nginx.is_installed(), "Nginx is not installed", "Run `hostforge provision` first")

    steps = certificate_steps(site, backends.certbot, backends.nginx, email, renew)
    executor = executor or StepExecutor()
    run = executor.execute(domain, steps)

    report = VerificationPass().verify(certificate_checks(site, backends.certbot, backends.nginx))
    return WorkflowResult(run=run, report=report, site=site)
