"""Tests for configuration loading and derived site names."""

import pytest

from hostforge.config import Config, ConfigValidationError, HostConfig, SiteConfig


@pytest.fixture(autouse=True)
def no_config_env(monkeypatch, tmp_path):
    monkeypatch.delenv("HOSTFORGE_CONFIG", raising=False)
    monkeypatch.chdir(tmp_path)


class TestConfig:
    """YAML loading and validation."""

    def test_defaults_without_file(self):
        config = Config().load()

        assert config.host.app_user == "laravel"
        assert config.database.engine == "mysql"
        assert config.deploy.default_branch == "main"
        assert config.fpm_service == "php8.3-fpm"
        assert config.fpm_socket == "/run/php/php8.3-fpm.sock"

    def test_loads_yaml(self, tmp_path):
        path = tmp_path / "custom.yaml"
        path.write_text(
            "host:\n  php_version: '8.2'\n  sites_root: /srv/\n"
            "database:\n  engine: postgresql\n"
            "deploy:\n  lock_timeout: 30\n"
        )

        config = Config(str(path)).load()

        assert config.host.php_version == "8.2"
        assert config.host.sites_root == "/srv"
        assert config.database.engine == "postgresql"
        assert config.deploy.lock_timeout == 30
        assert config.php_ini == "/etc/php/8.2/fpm/php.ini"

    def test_env_var_path(self, tmp_path, monkeypatch):
        path = tmp_path / "env.yaml"
        path.write_text("supervisor:\n  worker_suffix: worker\n")
        monkeypatch.setenv("HOSTFORGE_CONFIG", str(path))

        assert Config().load().supervisor.worker_suffix == "worker"

    def test_discovers_file_in_working_directory(self, tmp_path):
        (tmp_path / "hostforge.yaml").write_text("host:\n  app_user: deployer\n")
        assert Config().load().host.app_user == "deployer"

    def test_missing_explicit_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            Config(str(tmp_path / "missing.yaml")).load()

    def test_invalid_values_collected(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text(
            "database:\n  engine: oracle\n"
            "host:\n  sites_root: relative/path\n"
            "unknown_section: {}\n"
        )

        with pytest.raises(ConfigValidationError) as exc_info:
            Config(str(path)).load()

        locations = [tuple(e["loc"]) for e in exc_info.value.errors]
        assert ("database", "engine") in locations
        assert ("host", "sites_root") in locations
        assert ("unknown_section",) in locations
        assert "database -> engine" in str(exc_info.value)

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("host: [unclosed\n")

        with pytest.raises(ConfigValidationError):
            Config(str(path)).load()

    def test_non_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")

        with pytest.raises(ConfigValidationError):
            Config(str(path)).load()

    def test_invalid_default_branch(self, tmp_path):
        path = tmp_path / "branch.yaml"
        path.write_text("deploy:\n  default_branch: '-x'\n")

        with pytest.raises(ConfigValidationError):
            Config(str(path)).load()


class TestSiteConfig:
    """Names and paths derived from a domain."""

    def test_from_domain(self):
        site = SiteConfig.from_domain("app.example-shop.com", HostConfig())

        assert site.site_name == "app_example-shop_com"
        assert site.site_dir == "/opt/app_example-shop_com"
        assert site.db_name == "app_example_shop_com"
        assert site.nginx_available == "/etc/nginx/sites-available/app.example-shop.com"
        assert site.nginx_enabled == "/etc/nginx/sites-enabled/app.example-shop.com"
        assert site.access_log == "/var/log/nginx/app.example-shop.com-access.log"
        assert site.worker_program == "app_example-shop_com-horizon"
        assert site.supervisor_conf == "/etc/supervisor/conf.d/app_example-shop_com-horizon.conf"
