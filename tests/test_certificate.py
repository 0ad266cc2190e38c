"""Tests for certificate issuance and its checks."""

from pathlib import Path

import pytest

from hostforge.config.models import SiteConfig
from hostforge.orchestrator.executor import StepExecutor, StepStatus
from hostforge.orchestrator.workflows import Backends, setup_certificate
from hostforge.provisioners import certificate
from hostforge.provisioners.certificate import CertificateStep, dns_mismatch
from hostforge.backends import CertbotBackend, NginxBackend, SupervisorBackend
from hostforge.utils.errors import ApplyFailedError, PrereqMissingError, ValidationError

from fakes import FakeRunner

DOMAIN = "example.com"
EXISTING = """Found the following certs:
  Certificate Name: example.com
    Domains: example.com
    Expiry Date: 2026-12-30 10:11:12+00:00 (VALID: 74 days)
"""


class CertbotRewritingRunner(FakeRunner):
    """Runner whose certbot call rewrites the server block, like the nginx plugin does."""

    def __init__(self, vhost_path, **kwargs):
        super().__init__(**kwargs)
        self.vhost_path = vhost_path

    def run(self, args, **kwargs):
        if list(args[:2]) == ["certbot", "--nginx"]:
            Path(self.vhost_path).write_text("server { listen 443 ssl; # managed by Certbot\n")
        return super().run(args, **kwargs)


@pytest.fixture
def site(host_config):
    site = SiteConfig.from_domain(DOMAIN, host_config)
    Path(site.site_dir).mkdir(parents=True)
    Path(site.nginx_available).parent.mkdir(parents=True)
    Path(site.nginx_available).write_text("server { listen 80; }\n")
    return site


def make_backends(runner, system, database):
    return Backends(
        runner=runner,
        system=system,
        database=database,
        nginx=NginxBackend(runner, system),
        supervisor=SupervisorBackend(runner),
        certbot=CertbotBackend(runner, system),
    )


class TestCertificateStep:
    """Issuance, renewal and nginx validation."""

    def test_issues_new_certificate(self, site, backends, runner):
        step = CertificateStep(site, backends.certbot, backends.nginx, "ops@example.com")

        run = StepExecutor().execute(DOMAIN, [step])

        assert run.actions() == {"certificate": "APPLY"}
        obtain = [argv for argv in runner.calls if argv[:2] == ["certbot", "--nginx"]]
        assert len(obtain) == 1
        assert "--force-renewal" not in obtain[0]
        assert runner.count("systemctl", "reload", "nginx") == 1

    def test_existing_certificate_is_kept(self, site, backends, runner):
        runner.on("certbot", "certificates", stdout=EXISTING)
        step = CertificateStep(site, backends.certbot, backends.nginx, "ops@example.com")

        run = StepExecutor().execute(DOMAIN, [step])

        assert run.actions() == {"certificate": "SKIP"}
        assert runner.count("certbot", "--nginx") == 0

    def test_renewal_forces_issuance(self, site, backends, runner):
        runner.on("certbot", "certificates", stdout=EXISTING)
        step = CertificateStep(site, backends.certbot, backends.nginx, "ops@example.com", renew=True)

        StepExecutor().execute(DOMAIN, [step])

        obtain = [argv for argv in runner.calls if argv[:2] == ["certbot", "--nginx"]]
        assert "--force-renewal" in obtain[0]

    def test_invalid_nginx_after_certbot_restores_server_block(self, site, system, database):
        runner = CertbotRewritingRunner(site.nginx_available, available=["nginx", "certbot"])
        runner.on("nginx", "-t", exit_code=1, stderr="nginx: [emerg] cannot load certificate")
        backends = make_backends(runner, system, database)
        step = CertificateStep(site, backends.certbot, backends.nginx, "ops@example.com")

        run = StepExecutor().execute(DOMAIN, [step])

        assert run.get_outcome("certificate").status is StepStatus.ROLLED_BACK
        assert Path(site.nginx_available).read_text() == "server { listen 80; }\n"
        assert runner.count("systemctl", "reload", "nginx") == 0

    def test_certbot_failure_exit_code(self, site, backends, runner):
        runner.on("certbot", "--nginx", exit_code=1)
        step = CertificateStep(site, backends.certbot, backends.nginx, "ops@example.com")

        run = StepExecutor().execute(DOMAIN, [step])

        assert run.is_aborted()
        assert isinstance(run.error, ApplyFailedError)
        assert Path(site.nginx_available).read_text() == "server { listen 80; }\n"


class TestSetupCertificate:
    """Workflow prerequisites and verification."""

    def test_verifies_after_issuance(self, host_config, site, backends, runner):
        runner.on("certbot", "certificates", stdout=EXISTING)

        result = setup_certificate(DOMAIN, "ops@example.com", host_config, backends)

        assert result.run.actions() == {"install-certbot": "SKIP", "certificate": "SKIP"}
        assert [r.name for r in result.report.results] == [
            "Nginx configuration valid",
            f"Certificate for {DOMAIN} valid",
            "Automatic renewal timer active",
            "Renewal dry run",
        ]
        assert result.report.passed

    def test_failed_renewal_check_is_reported_not_fatal(self, host_config, site, backends, runner):
        runner.on("certbot", "certificates", stdout=EXISTING)
        runner.on("certbot", "renew", "--dry-run", exit_code=1)

        result = setup_certificate(DOMAIN, "ops@example.com", host_config, backends)

        assert result.exit_code == 0
        assert [r.name for r in result.report.failures()] == ["Renewal dry run"]

    def test_installs_certbot_when_missing(self, host_config, site, backends, runner):
        runner.available.discard("certbot")

        result = setup_certificate(DOMAIN, "ops@example.com", host_config, backends)

        assert result.run.get_outcome("install-certbot").action.value == "APPLY"
        assert "snap install --classic certbot" in runner.commands()

    def test_requires_registered_site(self, host_config, backends):
        with pytest.raises(PrereqMissingError):
            setup_certificate(DOMAIN, "ops@example.com", host_config, backends)

    def test_invalid_email(self, host_config, site, backends, runner):
        with pytest.raises(ValidationError):
            setup_certificate(DOMAIN, "not-an-email", host_config, backends)
        assert runner.calls == []


class TestDnsMismatch:
    """Pre-flight DNS comparison."""

    def test_matching(self, monkeypatch):
        monkeypatch.setattr(certificate.socket, "gethostbyname", lambda domain: "203.0.113.7")
        monkeypatch.setattr(certificate, "fetch_text", lambda url, timeout=30: "203.0.113.7")

        assert dns_mismatch(DOMAIN) is None

    def test_mismatch(self, monkeypatch):
        monkeypatch.setattr(certificate.socket, "gethostbyname", lambda domain: "198.51.100.1")
        monkeypatch.setattr(certificate, "fetch_text", lambda url, timeout=30: "203.0.113.7")

        message = dns_mismatch(DOMAIN)
        assert "198.51.100.1" in message
        assert "203.0.113.7" in message

    def test_unresolvable(self, monkeypatch):
        def fail(domain):
            raise OSError("Name or service not known")
        monkeypatch.setattr(certificate.socket, "gethostbyname", fail)

        assert dns_mismatch(DOMAIN) == f"{DOMAIN} does not resolve"

    def test_public_ip_lookup_failure_is_not_a_mismatch(self, monkeypatch):
        def fail(url, timeout=30):
            raise ApplyFailedError(f"Download failed: {url}")
        monkeypatch.setattr(certificate.socket, "gethostbyname", lambda domain: "198.51.100.1")
        monkeypatch.setattr(certificate, "fetch_text", fail)

        assert dns_mismatch(DOMAIN) is None
