"""Let's Encrypt certificate authority client (certbot)."""

import re
from dataclasses import dataclass, field
from typing import List, Optional

from hostforge.backends.system import SystemBackend
from hostforge.utils.commands import CommandRunner
from hostforge.utils.logging import get_logger

logger = get_logger(__name__)

RENEW_TIMER = "snap.certbot.renew.timer"


@dataclass
class CertificateInfo:
    """Parsed `certbot certificates` entry."""
    name: str
    domains: List[str] = field(default_factory=list)
    expiry: str = ""
    valid: bool = False


class CertbotBackend:
    """Obtains, renews and inspects certificates with the nginx plugin."""

    def __init__(self, runner: CommandRunner, system: SystemBackend):
        self.runner = runner
        self.system = system

    def is_installed(self) -> bool:
        return self.runner.which("certbot") is not None

    def install(self) -> None:
        """Install certbot from the snap store."""
        if not self.system.command_exists("snap"):
            self.system.update_index()
            self.system.install_packages(["snapd"])
            self.runner.check(["systemctl", "enable", "--now", "snapd.socket"])
        self.runner.check(["snap", "install", "core"])
        self.runner.check(["snap", "refresh", "core"])
        self.runner.check(["snap", "install", "--classic", "certbot"])
        self.runner.check(["ln", "-sf", "/snap/bin/certbot", "/usr/bin/certbot"])

    def certificate(self, domain: str) -> Optional[CertificateInfo]:
        """Certificate named after the domain, or None."""
        result = self.runner.run(["certbot", "certificates", "-d", domain])
        if not result.ok:
            return None
        for info in self.parse_certificates(result.stdout):
            if info.name == domain:
                return info
        return None

    @staticmethod
    def parse_certificates(output: str) -> List[CertificateInfo]:
        certificates = []
        current = None
        for raw in output.splitlines():
            line = raw.strip()
            if line.startswith("Certificate Name:"):
                current = CertificateInfo(name=line.split(":", 1)[1].strip())
                certificates.append(current)
            elif current is None:
                continue
            elif line.startswith("Domains:"):
                current.domains = line.split(":", 1)[1].split()
            elif line.startswith("Expiry Date:"):
                current.expiry = line.split(":", 1)[1].strip()
                current.valid = bool(re.search(r"\(VALID", current.expiry))
        return certificates

    def obtain(self, domain: str, email: str, force_renewal: bool = False) -> None:
        args = [
            "certbot", "--nginx",
            "--non-interactive",
            "--agree-tos",
            "--redirect",
            "--hsts",
            "--staple-ocsp",
            "--email", email,
        ]
        if force_renewal:
            args.append("--force-renewal")
        args += ["-d", domain]
        self.runner.check(args, capture=False)

    def renew_dry_run(self) -> bool:
        return self.runner.run(["certbot", "renew", "--dry-run", "--quiet"]).ok

    def renewal_timer_active(self) -> bool:
        return self.system.service_active(RENEW_TIMER)
