"""Pydantic models for configuration schema."""

import re
from pathlib import PurePosixPath
from typing import List
from pydantic import BaseModel, ConfigDict, Field, field_validator

DOMAIN_PATTERN = re.compile(r"^[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
BRANCH_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._/-]*$")


class FrozenModel(BaseModel):
    """Immutable configuration section."""

    model_config = ConfigDict(frozen=True, extra="forbid")


class HostSettings(FrozenModel):
    """Host-wide settings shared by every site."""

    app_user: str = Field("laravel", pattern="^[a-z_][a-z0-9_-]*$")
    app_group: str = Field("laravel", pattern="^[a-z_][a-z0-9_-]*$")
    web_user: str = Field("www-data", min_length=1)
    sites_root: str = Field("/opt", description="Parent directory of every site")
    credentials_dir: str = Field("/root", description="Where credential records are written")
    php_version: str = Field("8.3", pattern=r"^\d+\.\d+$")
    node_major: int = Field(22, ge=16, le=30)
    log_dir: str = Field("/var/log/hostforge")
    deploy_entrypoint: str = Field("/usr/local/bin/laravel-site-deploy")
    sudoers_file: str = Field("/etc/sudoers.d/laravel-deploy")
    base_packages: List[str] = Field(
        default_factory=lambda: ["software-properties-common", "curl", "git", "unzip", "zip"]
    )
    php_extensions: List[str] = Field(
        default_factory=lambda: [
            "fpm", "cli", "mysql", "pgsql", "curl", "mbstring", "xml", "zip",
            "bcmath", "soap", "intl", "gd", "redis", "opcache",
        ]
    )

    @field_validator("sites_root", "credentials_dir", "log_dir", "deploy_entrypoint", "sudoers_file")
    @classmethod
    def validate_absolute(cls, v: str) -> str:
        """Paths must be absolute."""
        if not v.startswith("/"):
            raise ValueError(f"Path must be absolute: {v}")
        return v.rstrip("/") or "/"


class DatabaseSettings(FrozenModel):
    """Database engine settings."""

    engine: str = Field("mysql", pattern="^(mysql|postgresql)$")
    host: str = Field("localhost", min_length=1)
    user_prefix: str = Field("laravel_", pattern="^[a-z][a-z0-9_]*$")
    password_length: int = Field(24, ge=16, le=128)


class WebServerSettings(FrozenModel):
    """Nginx settings."""

    sites_available: str = "/etc/nginx/sites-available"
    sites_enabled: str = "/etc/nginx/sites-enabled"
    log_dir: str = "/var/log/nginx"
    fastcgi_read_timeout: int = Field(300, ge=1)


class SupervisorSettings(FrozenModel):
    """Process supervisor settings."""

    conf_dir: str = "/etc/supervisor/conf.d"
    worker_suffix: str = Field("horizon", pattern="^[a-z0-9-]+$")
    worker_command: str = Field("artisan horizon", min_length=1)
    stop_wait_seconds: int = Field(5, ge=1)
    log_max_bytes: str = "5MB"
    log_backups: int = Field(3, ge=0)


class DeploySettings(FrozenModel):
    """Deployment workflow settings."""

    default_branch: str = "main"
    lock_path: str = "/tmp/fpmlock"
    lock_timeout: float = Field(10.0, gt=0)
    use_sudo: bool = True
    ssh_user: str = "laravel"
    cache_commands: List[str] = Field(
        default_factory=lambda: ["cache:clear", "config:clear", "optimize"]
    )
    extra_artisan_commands: List[str] = Field(
        default_factory=lambda: ["filament:cache-components", "filament:optimize"]
    )

    @field_validator("default_branch")
    @classmethod
    def validate_branch(cls, v: str) -> str:
        """Validate the branch name."""
        if not BRANCH_PATTERN.match(v):
            raise ValueError(f"Invalid branch name: {v}")
        return v


class HostConfig(FrozenModel):
    """Complete hostforge configuration."""

    host: HostSettings = Field(default_factory=HostSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    webserver: WebServerSettings = Field(default_factory=WebServerSettings)
    supervisor: SupervisorSettings = Field(default_factory=SupervisorSettings)
    deploy: DeploySettings = Field(default_factory=DeploySettings)

    @property
    def fpm_service(self) -> str:
        return f"php{self.host.php_version}-fpm"

    @property
    def fpm_socket(self) -> str:
        return f"/run/php/php{self.host.php_version}-fpm.sock"

    @property
    def fpm_pool_conf(self) -> str:
        return f"/etc/php/{self.host.php_version}/fpm/pool.d/www.conf"

    @property
    def php_ini(self) -> str:
        return f"/etc/php/{self.host.php_version}/fpm/php.ini"

    @property
    def ssh_dir(self) -> str:
        return f"/home/{self.host.app_user}/.ssh"


class SiteConfig(FrozenModel):
    """Per-site names and paths, all derived from the domain."""

    domain: str
    site_name: str
    site_dir: str
    db_name: str
    nginx_available: str
    nginx_enabled: str
    access_log: str
    error_log: str
    supervisor_conf: str
    worker_program: str

    @classmethod
    def from_domain(cls, domain: str, config: HostConfig) -> "SiteConfig":
        """Derive site configuration for a validated domain."""
        site_name = domain.replace(".", "_")
        site_dir = str(PurePosixPath(config.host.sites_root) / site_name)
        worker_program = f"{site_name}-{config.supervisor.worker_suffix}"
        return cls(
            domain=domain,
            site_name=site_name,
            site_dir=site_dir,
            db_name=site_name.replace("-", "_"),
            nginx_available=str(PurePosixPath(config.webserver.sites_available) / domain),
            nginx_enabled=str(PurePosixPath(config.webserver.sites_enabled) / domain),
            access_log=str(PurePosixPath(config.webserver.log_dir) / f"{domain}-access.log"),
            error_log=str(PurePosixPath(config.webserver.log_dir) / f"{domain}-error.log"),
            supervisor_conf=str(PurePosixPath(config.supervisor.conf_dir) / f"{worker_program}.conf"),
            worker_program=worker_program,
        )
