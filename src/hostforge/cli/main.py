"""Main CLI entry point."""

import os
import sys
from typing import Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from hostforge.config.models import HostConfig, SiteConfig
from hostforge.config.parser import Config, ConfigValidationError
from hostforge.orchestrator.deployment import DeploymentWorkflow, remote_deploy
from hostforge.orchestrator.executor import RunStatus, StepExecutor, StepStatus, WorkflowRun
from hostforge.orchestrator.verification import VerificationReport
from hostforge.orchestrator.workflows import (
    build_backends,
    credential_store,
    provision_server,
    setup_certificate,
    setup_site,
    validate_branch,
    validate_domain,
    validate_email,
    verify_environment,
)
from hostforge.provisioners.certificate import dns_mismatch
from hostforge.utils.errors import DeploymentError, ErrorContext, PrereqMissingError, error_handler
from hostforge.utils.logging import setup_logging, get_logger

console = Console()
logger = get_logger(__name__)

ACTION_STYLES = {
    'CREATE': 'green',
    'APPLY': 'green',
    'SKIP': 'dim',
    'WARN': 'yellow',
    'FAIL': 'red',
    'ROLLBACK': 'red',
}


@click.group()
@click.option('--config', 'config_path', envvar='HOSTFORGE_CONFIG', help='Path to hostforge.yaml')
@click.option('--log-level', default='info', type=click.Choice(['debug', 'info', 'warning', 'error']))
@click.pass_context
def cli(ctx, config_path, log_level):
    """Provision and deploy Laravel sites on a shared host."""
    ctx.ensure_object(dict)
    ctx.obj['config_path'] = config_path
    ctx.obj['log_level'] = log_level

    # Console only until the configured log directory is known
    setup_logging(log_level)


def load_config(ctx) -> HostConfig:
    """Load and validate configuration, then enable file logging."""
    try:
        host_config = Config(ctx.obj.get('config_path')).load()
    except FileNotFoundError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    except ConfigValidationError as e:
        console.print("[red]Configuration validation failed:[/red]\n")
        console.print(str(e))
        sys.exit(1)

    setup_logging(ctx.obj.get('log_level', 'info'), host_config.host.log_dir)
    return host_config


def require_root() -> None:
    if os.geteuid() != 0:
        raise PrereqMissingError(
            "This command must be run as root",
            context=ErrorContext(operation="prereq"),
            suggestions=["Re-run with sudo"],
        )


def fail(error: Exception) -> None:
    """Print an error and exit with its exit code."""
    error = error_handler.handle_exception(error)
    logger.debug(f"Error details: {error.to_dict()}")
    console.print(Panel(error.to_user_message(), title="Error", border_style="red"))
    sys.exit(error.exit_code)


def progress_printer(name: str, status: StepStatus, message: Optional[str]) -> None:
    if status == StepStatus.APPLYING:
        console.print(f"[cyan]→[/cyan] {name}")
    elif status == StepStatus.ROLLING_BACK:
        console.print(f"[yellow]↺[/yellow] {name}: restoring previous state")


def print_run(run: WorkflowRun, title: str) -> None:
    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("Step", style="cyan")
    table.add_column("Action")
    table.add_column("Detail")
    table.add_column("Time", justify="right")

    for outcome in run.outcomes:
        action = outcome.action.value if outcome.action else outcome.status.value
        style = ACTION_STYLES.get(action, "white")
        detail = outcome.detail
        if outcome.error and not detail:
            detail = outcome.error.message
        table.add_row(outcome.step_name, f"[{style}]{action}[/{style}]", detail, f"{outcome.duration:.1f}s")

    console.print(table)


def print_report(report: VerificationReport, title: str) -> None:
    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("Check", style="cyan")
    table.add_column("Result")
    table.add_column("Detail")
    for result in report.results:
        mark = "[green]✓ pass[/green]" if result.passed else "[red]✗ fail[/red]"
        table.add_row(result.name, mark, result.detail)
    console.print(table)

    if report.passed:
        console.print("[green]✓ All checks passed[/green]")
    else:
        console.print(f"[red]✗ {len(report.failures())} check(s) failed[/red]")


def print_failure(run: WorkflowRun) -> None:
    if run.error:
        console.print(Panel(run.error.to_user_message(), title="Run aborted", border_style="red"))


def finish(run: WorkflowRun, report: Optional[VerificationReport] = None) -> None:
    """Exit with the run's exit code; a failed verification alone exits 1."""
    if run.is_aborted():
        print_failure(run)
        sys.exit(run.exit_code)
    if report is not None and not report.passed:
        sys.exit(1)


@cli.command()
@click.pass_context
def provision(ctx):
    """Install the base environment on this host."""
    try:
        require_root()
        config = load_config(ctx)
        backends = build_backends(config)

        console.print(Panel.fit(
            f"[bold]Provisioning base environment[/bold]\n"
            f"PHP: {config.host.php_version}\n"
            f"Node.js: {config.host.node_major}.x\n"
            f"Database: {config.database.engine}\n"
            f"App user: {config.host.app_user}",
            title="Server Provisioning",
            border_style="cyan"
        ))

        result = provision_server(config, backends, executor=StepExecutor(progress_callback=progress_printer))

        console.print()
        print_run(result.run, "Provisioning Steps")
        print_report(result.report, "Verification")

        if not result.run.is_aborted():
            public_key = f"{config.ssh_dir}/id_ed25519.pub"
            try:
                with open(public_key) as f:
                    key_text = f.read().strip()
            except OSError:
                key_text = "SSH key not found"
            console.print(Panel(
                f"{key_text}\n\n"
                f"Add this key to your git host (e.g. https://github.com/settings/keys)\n"
                f"Next: [cyan]hostforge site-setup app.example.com[/cyan]",
                title="Deploy Key",
                border_style="yellow"
            ))

        finish(result.run, result.report)

    except DeploymentError as e:
        fail(e)


@cli.command('site-setup')
@click.argument('domain')
@click.pass_context
def site_setup(ctx, domain):
    """Register a site: directory, database, vhost, worker and scheduler."""
    try:
        validate_domain(domain)
        require_root()
        config = load_config(ctx)
        backends = build_backends(config)
        store = credential_store(config)

        site = SiteConfig.from_domain(domain, config)
        console.print(Panel.fit(
            f"[bold]Setting up {domain}[/bold]\n"
            f"Site directory: {site.site_dir}\n"
            f"Database: {site.db_name}",
            title="Site Setup",
            border_style="cyan"
        ))

        result = setup_site(
            domain, config, backends, store=store,
            executor=StepExecutor(progress_callback=progress_printer),
        )

        console.print()
        print_run(result.run, f"Site Steps: {domain}")
        if result.run.is_aborted():
            finish(result.run)

        if result.report:
            print_report(result.report, "Site Verification")

        credential = store.load(site.site_name)
        console.print(Panel(
            f"Database: {credential.resource}\n"
            f"User: {credential.username}\n"
            f"Password: {credential.password}\n"
            f"Host: {credential.host}\n\n"
            f"[yellow]Credentials saved to {store.path_for(site.site_name)}[/yellow]\n"
            f"[yellow]Delete this file after copying the values to .env[/yellow]\n\n"
            f"[bold]Next steps:[/bold]\n"
            f"  1. sudo -u {config.host.app_user} git clone <repo-url> {site.site_dir}\n"
            f"  2. sudo -u {config.host.app_user} cp {site.site_dir}/.env.example {site.site_dir}/.env\n"
            f"  3. Set APP_URL=https://{domain} and the DB_* values above in .env\n"
            f"  4. sudo -u {config.host.app_user} php {site.site_dir}/artisan key:generate\n"
            f"  5. hostforge remote-deploy {domain}",
            title="Site Ready",
            border_style="green"
        ))

        finish(result.run, result.report)

    except DeploymentError as e:
        fail(e)


@cli.command()
@click.argument('domain')
@click.argument('email')
@click.option('--renew', is_flag=True, help='Force renewal of an existing certificate')
@click.option('--yes', '-y', is_flag=True, help='Skip confirmation prompts')
@click.pass_context
def certificate(ctx, domain, email, renew, yes):
    """Obtain or renew a Let's Encrypt certificate for a site."""
    try:
        validate_domain(domain)
        validate_email(email)
        require_root()
        config = load_config(ctx)
        backends = build_backends(config)

        problem = dns_mismatch(domain)
        if problem:
            console.print(f"[yellow]⚠ {problem}[/yellow]")
            console.print("[yellow]Certificate issuance may fail until DNS points at this server.[/yellow]")
            if not yes and not click.confirm("Continue anyway?", default=False):
                console.print("[yellow]Cancelled[/yellow]")
                return

        if not renew and backends.certbot.is_installed() and backends.certbot.certificate(domain):
            console.print(f"[yellow]A certificate for {domain} already exists[/yellow]")
            if not yes and click.confirm("Force renewal?", default=False):
                renew = True

        result = setup_certificate(
            domain, email, config, backends, renew=renew,
            executor=StepExecutor(progress_callback=progress_printer),
        )

        console.print()
        print_run(result.run, f"Certificate Steps: {domain}")
        print_report(result.report, "Certificate Verification")

        if not result.run.is_aborted():
            console.print(Panel.fit(
                f"[green]✓ HTTPS enabled for {domain}[/green]\n\n"
                f"URL: https://{domain}\n"
                f"Renewal: automatic via certbot timer\n"
                f"Force renewal: [cyan]hostforge certificate {domain} {email} --renew[/cyan]",
                title="Certificate Ready",
                border_style="green"
            ))

        # Renewal checks are advisory once the certificate is in place
        finish(result.run)

    except DeploymentError as e:
        fail(e)


@cli.command()
@click.argument('domain')
@click.argument('branch', required=False)
@click.pass_context
def deploy(ctx, domain, branch):
    """Deploy a site on this host (pull, build, migrate, restart)."""
    try:
        config = load_config(ctx)
        workflow = DeploymentWorkflow(config, executor=StepExecutor(progress_callback=progress_printer))
        branch = branch or config.deploy.default_branch

        console.print(Panel.fit(
            f"[bold]Deploying {domain}[/bold]\n"
            f"Branch: {branch}",
            title="Deployment",
            border_style="cyan"
        ))

        result = workflow.run(domain, branch)

        console.print()
        print_run(result.run, f"Deployment Steps: {domain}")

        if result.run.status == RunStatus.SUCCEEDED:
            console.print(Panel.fit(
                f"[green]✓ Deployment completed[/green]\n\n"
                f"Site: {result.site.site_dir}\n"
                f"Branch: {result.branch}\n"
                f"Worker: {result.worker_action}\n"
                f"Duration: {result.run.duration:.1f}s",
                title="Deployment Complete",
                border_style="green"
            ))

        finish(result.run)

    except DeploymentError as e:
        fail(e)


@cli.command('remote-deploy')
@click.argument('domain')
@click.argument('branch', required=False)
@click.option('--host', help='SSH host (defaults to the domain)')
@click.option('--user', help='SSH user (defaults to deploy.ssh_user)')
@click.option('--yes', '-y', is_flag=True, help='Skip confirmation prompt')
@click.pass_context
def remote_deploy_cmd(ctx, domain, branch, host, user, yes):
    """Trigger a deployment on the target host over ssh."""
    try:
        config = load_config(ctx)
        branch = validate_branch(branch or config.deploy.default_branch)
        validate_domain(domain)
        site = SiteConfig.from_domain(domain, config)

        console.print(Panel.fit(
            f"[bold]Remote deployment[/bold]\n"
            f"Domain: {domain}\n"
            f"Site path: {site.site_dir}\n"
            f"Branch: {branch}\n"
            f"Host: {user or config.deploy.ssh_user}@{host or domain}",
            title="Remote Deployment",
            border_style="cyan"
        ))

        if not yes and not click.confirm("Continue with deployment?", default=False):
            console.print("[yellow]Deployment cancelled[/yellow]")
            return

        exit_code = remote_deploy(domain, branch, config, host=host, user=user)

        console.print()
        if exit_code == 0:
            console.print(Panel.fit(
                f"[green]✓ Deployment completed successfully[/green]\n\n"
                f"URL: https://{domain}",
                title="Deployment Complete",
                border_style="green"
            ))
        else:
            console.print(Panel.fit(
                f"[red]✗ Deployment failed (exit code {exit_code})[/red]\n\n"
                f"Check the output above for the failing step.",
                title="Deployment Failed",
                border_style="red"
            ))
        sys.exit(exit_code)

    except DeploymentError as e:
        fail(e)


@cli.command()
@click.pass_context
def verify(ctx):
    """Verify the base environment without changing anything."""
    try:
        config = load_config(ctx)
        report = verify_environment(config, build_backends(config))
        print_report(report, "Verification")
        sys.exit(0 if report.passed else 1)

    except DeploymentError as e:
        fail(e)


@cli.command()
@click.argument('domain')
@click.pass_context
def credentials(ctx, domain):
    """Show the stored database credentials of a site."""
    try:
        validate_domain(domain)
        config = load_config(ctx)
        store = credential_store(config)
        site = SiteConfig.from_domain(domain, config)
        credential = store.load(site.site_name)

        table = Table(title=f"Credentials: {domain}", show_header=False)
        table.add_column("Field", style="cyan")
        table.add_column("Value", style="green")
        table.add_row("Database", credential.resource)
        table.add_row("User", credential.username)
        table.add_row("Password", credential.password)
        table.add_row("Host", credential.host)
        table.add_row("Created", str(credential.created_at))
        table.add_row("Record", str(store.path_for(site.site_name)))
        console.print(table)

    except DeploymentError as e:
        fail(e)


if __name__ == '__main__':
    cli()
