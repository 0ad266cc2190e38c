"""Site registration steps: directory, database, vhost, worker unit, scheduler."""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional

from hostforge.backends.database import DatabaseBackend, DatabaseProbe
from hostforge.backends.system import SystemBackend
from hostforge.backends.webserver import NginxBackend
from hostforge.config.models import HostConfig, SiteConfig
from hostforge.credentials.models import Credential
from hostforge.credentials.store import CredentialStore
from hostforge.provisioners.base import (
    GuardSpec,
    ProbeResult,
    Resource,
    ResourceKind,
    Step,
)
from hostforge.provisioners.files import FileSnapshot, ManagedFileStep, read_file
from hostforge.provisioners.templates import (
    SCHEDULER_MARKER,
    render_scheduler_cron,
    render_supervisor_program,
    render_vhost,
)
from hostforge.utils.errors import ApplyFailedError, ErrorContext
from hostforge.utils.logging import get_logger

logger = get_logger(__name__)

CERTBOT_MARKER = "managed by Certbot"
USERNAME_ATTEMPTS = 20


class SiteDirectoryStep(Step):
    """Empty site directory owned by the app user, ready for git clone."""

    def __init__(self, site: SiteConfig, system: SystemBackend, config: HostConfig):
        super().__init__("site-directory", Resource(key=site.site_dir, kind=ResourceKind.DIRECTORY))
        self.site = site
        self.system = system
        self.config = config

    def probe(self) -> ProbeResult:
        exists = Path(self.site.site_dir).is_dir()
        return ProbeResult(satisfied=exists, detail=self.site.site_dir if exists else "")

    def apply(self, snapshot: Optional[Any] = None) -> Optional[str]:
        Path(self.site.site_dir).mkdir(parents=True, exist_ok=True)
        self.system.chown(self.site.site_dir, self.config.host.app_user, self.config.host.app_group)
        return f"created {self.site.site_dir}"


@dataclass
class DatabaseSnapshot:
    """Backend state before the database step ran."""
    existed: bool
    had_record: bool


class DatabaseStep(Step):
    """Creates the site database and its user, then persists the credential.

    Guarded: an existing database is skipped only when a credential record
    exists for the site; without one the password is unrecoverable and the
    run stops with the drop/restore commands for the operator.
    """

    guarded = True

    def __init__(self, site: SiteConfig, backend: DatabaseBackend, store: CredentialStore, user_prefix: str):
        super().__init__("database", Resource(key=site.site_name, kind=ResourceKind.DATABASE))
        self.site = site
        self.backend = backend
        self.store = store
        self.user_prefix = user_prefix
        self._probe: Optional[DatabaseProbe] = None
        self._created_database = False
        self._created_user: Optional[str] = None

    def probe(self) -> ProbeResult:
        self._probe = self.backend.probe_database(self.site.db_name, self.user_prefix)
        return ProbeResult(
            satisfied=self._probe.exists,
            detail=f"database {self.site.db_name} exists" if self._probe.exists else "",
            data=self._probe,
        )

    def guard_spec(self) -> GuardSpec:
        users = self._probe.users if self._probe else []
        path = self.store.path_for(self.site.site_name)
        return GuardSpec(
            has_record=self.store.exists(self.site.site_name),
            remediation=[
                f"Restore the credential record to {path}",
                "Drop the database and its users, then re-run site-setup: "
                + " ".join(self.backend.remediation_commands(self.site.db_name, users, self.store.host)),
            ],
        )

    def snapshot(self) -> DatabaseSnapshot:
        return DatabaseSnapshot(
            existed=bool(self._probe and self._probe.exists),
            had_record=self.store.exists(self.site.site_name),
        )

    def apply(self, snapshot: Optional[Any] = None) -> Optional[str]:
        key = self.site.site_name
        credential = self._unused_credential()

        self.backend.create_database(self.site.db_name)
        self._created_database = True
        self.backend.create_user(credential.username, credential.password, credential.host)
        self._created_user = credential.username
        self.backend.grant_privileges(credential.username, self.site.db_name, credential.host)

        if snapshot is not None and snapshot.had_record:
            path = self.store.replace(key, credential)
        else:
            path = self.store.persist(key, credential)
        return f"database {self.site.db_name}, user {credential.username}, credentials in {path}"

    def _unused_credential(self) -> Credential:
        """Fresh credential whose username no other site holds."""
        for _ in range(USERNAME_ATTEMPTS):
            credential = self.store.generate(site=self.site.domain, resource=self.site.db_name)
            if not self.backend.user_exists(credential.username, credential.host):
                return credential
            logger.debug(f"Database user {credential.username} is taken, generating another")
        raise ApplyFailedError(
            f"No unused database username after {USERNAME_ATTEMPTS} attempts",
            context=ErrorContext(resource_id=self.site.db_name, operation="generate"),
            suggestions=["Drop unused database users or change database.user_prefix"],
        )

    def rollback(self, snapshot: Any) -> None:
        """Drop what this step created; a pre-existing database is never touched."""
        if snapshot.existed:
            return
        if self._created_user:
            self.backend.drop_user(self._created_user, self.store.host)
        if self._created_database:
            self.backend.drop_database(self.site.db_name)


class GrantPrivilegesStep(Step):
    """Grants the recorded user all privileges on the site database."""

    def __init__(self, site: SiteConfig, backend: DatabaseBackend, store: CredentialStore):
        super().__init__("grant-privileges", Resource(key=site.db_name, kind=ResourceKind.DATABASE))
        self.site = site
        self.backend = backend
        self.store = store

    def probe(self) -> ProbeResult:
        credential = self.store.load(self.site.site_name)
        granted = self.backend.has_privileges(credential.username, self.site.db_name, credential.host)
        return ProbeResult(satisfied=granted, detail=f"{credential.username} on {self.site.db_name}")

    def apply(self, snapshot: Optional[Any] = None) -> Optional[str]:
        credential = self.store.load(self.site.site_name)
        self.backend.grant_privileges(credential.username, self.site.db_name, credential.host)
        return f"granted {credential.username} on {self.site.db_name}"


class VhostStep(ManagedFileStep):
    """Nginx server block, rewritten on every run.

    The file is enabled and checked with `nginx -t` before nginx is
    reloaded; a rejected file is replaced by the previous one (or removed
    together with its link). A server block already extended by certbot is
    left alone so TLS settings survive a re-run.
    """

    def __init__(self, site: SiteConfig, config: HostConfig, nginx: NginxBackend):
        super().__init__(
            "nginx-vhost",
            site.nginx_available,
            render=lambda current: render_vhost(site, config),
            kind=ResourceKind.VHOST,
        )
        self.site = site
        self.nginx = nginx

    def probe(self) -> ProbeResult:
        current = read_file(self.path)
        if current is not None and CERTBOT_MARKER in current:
            return ProbeResult(satisfied=True, detail="TLS server block managed by certbot")
        return ProbeResult(satisfied=False, detail="rewritten every run")

    def validate(self) -> None:
        self.nginx.enable_site(self.site.nginx_available, self.site.nginx_enabled)
        result = self.nginx.test_config()
        if not result.valid:
            raise ApplyFailedError(
                "Nginx configuration test failed",
                context=ErrorContext(
                    resource_id=self.site.nginx_available,
                    command="nginx -t",
                    additional_info={'output': result.output.splitlines()[-20:]},
                ),
                suggestions=[f"Inspect {self.site.nginx_available} and run `nginx -t`"],
            )

    def rollback(self, snapshot: FileSnapshot) -> None:
        snapshot.restore()
        if snapshot.content is None:
            self.nginx.disable_site(self.site.nginx_enabled)

    def activate(self) -> None:
        self.nginx.reload()


class WorkerUnitStep(ManagedFileStep):
    """Supervisor program for the queue worker; inert until the first deploy."""

    def __init__(self, site: SiteConfig, config: HostConfig):
        super().__init__(
            "supervisor-unit",
            site.supervisor_conf,
            render=lambda current: render_supervisor_program(site, config),
            kind=ResourceKind.WORKER,
        )


class SchedulerCronStep(Step):
    """One scheduler crontab entry for the app user, shared by all sites."""

    def __init__(self, system: SystemBackend, config: HostConfig):
        super().__init__("scheduler-cron", Resource(key=config.host.app_user, kind=ResourceKind.SCHEDULE))
        self.system = system
        self.config = config

    def probe(self) -> ProbeResult:
        present = SCHEDULER_MARKER in self.system.read_crontab(self.config.host.app_user)
        return ProbeResult(satisfied=present, detail="scheduler entry present" if present else "")

    def apply(self, snapshot: Optional[Any] = None) -> Optional[str]:
        current = self.system.read_crontab(self.config.host.app_user)
        if current and not current.endswith("\n"):
            current += "\n"
        self.system.write_crontab(self.config.host.app_user, current + render_scheduler_cron(self.config))
        return f"added scheduler entry for {self.config.host.app_user}"


def site_steps(
    site: SiteConfig,
    config: HostConfig,
    system: SystemBackend,
    database: DatabaseBackend,
    store: CredentialStore,
    nginx: NginxBackend,
) -> List[Step]:
    """Ordered site registration steps."""
    return [
        SiteDirectoryStep(site, system, config),
        DatabaseStep(site, database, store, config.database.user_prefix),
        GrantPrivilegesStep(site, database, store),
        VhostStep(site, config, nginx),
        WorkerUnitStep(site, config),
        SchedulerCronStep(system, config),
    ]
