"""TLS certificate steps and checks."""

import socket
from typing import Any, List, Optional

from hostforge.backends.certbot import CertbotBackend, CertificateInfo
from hostforge.backends.webserver import NginxBackend
from hostforge.config.models import SiteConfig
from hostforge.orchestrator.verification import Check
from hostforge.provisioners.base import ProbeResult, Resource, ResourceKind, Step
from hostforge.provisioners.files import FileSnapshot
from hostforge.utils.errors import ApplyFailedError, DeploymentError, ErrorContext
from hostforge.utils.http import fetch_text
from hostforge.utils.logging import get_logger

logger = get_logger(__name__)

PUBLIC_IP_URL = "https://ifconfig.me/ip"


def dns_mismatch(domain: str) -> Optional[str]:
    """Describe a DNS problem for the domain, or None when it points here.

    Lookup failures are reported as a mismatch; issuance would fail the
    HTTP challenge in that case anyway.
    """
    try:
        resolved = socket.gethostbyname(domain)
    except OSError:
        return f"{domain} does not resolve"

    try:
        public_ip = fetch_text(PUBLIC_IP_URL, timeout=10)
    except DeploymentError as e:
        logger.warning(f"Could not determine public IP: {e.message}")
        return None

    if resolved != public_ip:
        return f"{domain} resolves to {resolved}, but this server's public IP is {public_ip}"
    logger.info(f"DNS OK: {domain} -> {resolved}")
    return None


class InstallCertbotStep(Step):
    """Certificate authority client."""

    def __init__(self, certbot: CertbotBackend):
        super().__init__("install-certbot", Resource(key="certbot", kind=ResourceKind.PACKAGE))
        self.certbot = certbot

    def probe(self) -> ProbeResult:
        installed = self.certbot.is_installed()
        return ProbeResult(satisfied=installed, detail="installed" if installed else "")

    def apply(self, snapshot: Optional[Any] = None) -> Optional[str]:
        self.certbot.install()
        return "installed certbot"


class CertificateStep(Step):
    """Obtains the site certificate through the nginx plugin.

    An existing certificate is kept unless renewal was requested, in which
    case issuance is forced. Certbot rewrites the server block, so the
    previous one is snapshotted and restored if `nginx -t` rejects it.
    """

    def __init__(self, site: SiteConfig, certbot: CertbotBackend, nginx: NginxBackend, email: str, renew: bool = False):
        super().__init__("certificate", Resource(key=site.domain, kind=ResourceKind.CERTIFICATE))
        self.site = site
        self.certbot = certbot
        self.nginx = nginx
        self.email = email
        self.renew = renew
        self._existing: Optional[CertificateInfo] = None

    def probe(self) -> ProbeResult:
        self._existing = self.certbot.certificate(self.site.domain)
        if self._existing is None:
            return ProbeResult(satisfied=False, detail="no certificate")
        if self.renew:
            return ProbeResult(satisfied=False, detail="renewal requested", data=self._existing)
        return ProbeResult(satisfied=True, detail=f"expires {self._existing.expiry}", data=self._existing)

    def snapshot(self) -> FileSnapshot:
        return FileSnapshot.capture(self.site.nginx_available)

    def apply(self, snapshot: Optional[Any] = None) -> Optional[str]:
        renewing = self._existing is not None
        self.certbot.obtain(self.site.domain, self.email, force_renewal=renewing)
        return f"{'renewed' if renewing else 'issued'} certificate for {self.site.domain}"

    def validate(self) -> None:
        result = self.nginx.test_config()
        if not result.valid:
            raise ApplyFailedError(
                "Nginx configuration test failed after certificate installation",
                context=ErrorContext(
                    resource_id=self.site.nginx_available,
                    command="nginx -t",
                    additional_info={'output': result.output.splitlines()[-20:]},
                ),
            )

    def rollback(self, snapshot: FileSnapshot) -> None:
        snapshot.restore()

    def activate(self) -> None:
        self.nginx.reload()


def certificate_steps(site: SiteConfig, certbot: CertbotBackend, nginx: NginxBackend, email: str, renew: bool) -> List[Step]:
    return [
        InstallCertbotStep(certbot),
        CertificateStep(site, certbot, nginx, email, renew),
    ]


def certificate_checks(site: SiteConfig, certbot: CertbotBackend, nginx: NginxBackend) -> List[Check]:
    """Checks run after issuance; renewal problems are reported, not fatal."""

    def nginx_valid():
        result = nginx.test_config()
        if result.valid:
            return True, ""
        lines = result.output.splitlines()
        return False, lines[-1] if lines else "nginx -t failed"

    def certificate_valid():
        info = certbot.certificate(site.domain)
        if info is None:
            return False, "no certificate found"
        return info.valid, info.expiry

    return [
        Check("Nginx configuration valid", nginx_valid),
        Check(f"Certificate for {site.domain} valid", certificate_valid),
        Check("Automatic renewal timer active", certbot.renewal_timer_active),
        Check("Renewal dry run", certbot.renew_dry_run),
    ]
