"""Rendered configuration files written by provisioning steps."""

from typing import List

from hostforge.config.models import HostConfig, SiteConfig

SCHEDULER_MARKER = "artisan schedule:run"


def render_vhost(site: SiteConfig, config: HostConfig) -> str:
    """Nginx server block for one site (plain HTTP; certbot adds TLS)."""
    return f"""server {{
    listen 80;
    listen [::]:80;

    server_name {site.domain};
    root {site.site_dir}/public;

    index index.php index.html;

    charset utf-8;

    add_header X-Frame-Options "SAMEORIGIN" always;
    add_header X-Content-Type-Options "nosniff" always;
    add_header X-XSS-Protection "1; mode=block" always;

    access_log {site.access_log};
    error_log {site.error_log};

    location / {{
        try_files $uri $uri/ /index.php?$query_string;
    }}

    location ~ \\.php$ {{
        include snippets/fastcgi-php.conf;
        fastcgi_pass unix:{config.fpm_socket};
        fastcgi_param SCRIPT_FILENAME $realpath_root$fastcgi_script_name;
        include fastcgi_params;
        fastcgi_read_timeout {config.webserver.fastcgi_read_timeout};
    }}

    location ~ /\\.(?!well-known).* {{
        deny all;
    }}
}}
"""


def render_supervisor_program(site: SiteConfig, config: HostConfig) -> str:
    """Supervisor program for the site's queue worker."""
    supervisor = config.supervisor
    return f"""[program:{site.worker_program}]
process_name=%(program_name)s_%(process_num)02d
command=php {site.site_dir}/{supervisor.worker_command}
directory={site.site_dir}
user={config.host.app_user}
numprocs=1
autostart=true
autorestart=true
startsecs=1
redirect_stderr=true
stdout_logfile={site.site_dir}/storage/logs/{supervisor.worker_suffix}.log
stdout_logfile_maxbytes={supervisor.log_max_bytes}
stdout_logfile_backups={supervisor.log_backups}
stopwaitsecs={supervisor.stop_wait_seconds}
stopsignal=SIGTERM
stopasgroup=true
killasgroup=true
"""


def render_scheduler_cron(config: HostConfig) -> str:
    """One crontab line running the scheduler of every site under sites_root."""
    root = config.host.sites_root
    return (
        f'* * * * * cd {root} && for dir in */; do [ -f "$dir/artisan" ] && cd "$dir" '
        f'&& php artisan schedule:run >> /dev/null 2>&1; cd {root}; done\n'
    )


def render_deploy_entrypoint(executable: str) -> str:
    """Wrapper installed on the host so the remote trigger has a stable path."""
    return f"""#!/bin/sh
# Usage: laravel-site-deploy <domain> [branch]
exec {executable} deploy "$@"
"""


def sudoers_commands(config: HostConfig) -> List[str]:
    """Privileged commands the app user may run during a deployment."""
    fpm = config.fpm_service
    return [
        f"/bin/systemctl reload {fpm}",
        f"/bin/systemctl restart {fpm}",
        "/usr/bin/supervisorctl reread",
        "/usr/bin/supervisorctl update",
        "/usr/bin/supervisorctl start *",
        "/usr/bin/supervisorctl restart *",
        "/usr/bin/supervisorctl stop *",
        "/usr/bin/supervisorctl status *",
    ]


def render_sudoers(config: HostConfig) -> str:
    user = config.host.app_user
    lines = [f"{user} ALL=(ALL) NOPASSWD: {command}" for command in sudoers_commands(config)]
    return "# Managed by hostforge\n" + "\n".join(lines) + "\n"


# Production php.ini settings: (directive, value, also match commented-out line)
PHP_INI_SETTINGS = [
    ("memory_limit", "512M", False),
    ("max_execution_time", "300", False),
    ("upload_max_filesize", "100M", False),
    ("post_max_size", "100M", False),
    ("opcache.enable", "1", True),
    ("opcache.memory_consumption", "256", True),
    ("opcache.interned_strings_buffer", "16", True),
    ("opcache.max_accelerated_files", "10000", True),
    ("opcache.validate_timestamps", "0", True),
]

FPM_POOL_SETTINGS = [
    ("pm.max_children", "50"),
    ("pm.start_servers", "10"),
    ("pm.min_spare_servers", "5"),
    ("pm.max_spare_servers", "20"),
]

REDIS_SETTINGS = [
    ("bind", "127.0.0.1", False),
    ("maxmemory-policy", "allkeys-lru", True),
]
