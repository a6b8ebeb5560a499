"""Tests for the Vault secrets client and the process-wide secret cache."""

from unittest.mock import MagicMock, patch

import pytest
from hvac.exceptions import Forbidden, InvalidPath

import clients.vault_client as vault_module
from clients.vault_client import (
    SecretCache,
    VaultClient,
    VaultError,
    VaultSettings,
    get_app_config,
    get_database_url,
)


@pytest.fixture
def approle_env(monkeypatch):
    monkeypatch.setenv("VAULT_ADDR", "https://vault.example.com:8200")
    monkeypatch.setenv("VAULT_ROLE_ID", "role-id")
    monkeypatch.setenv("VAULT_SECRET_ID", "secret-id")
    monkeypatch.delenv("VAULT_NAMESPACE", raising=False)


@pytest.fixture
def hvac_client():
    """Patched hvac.Client that authenticates successfully."""
    with patch("clients.vault_client.hvac.Client") as client_cls:
        client = client_cls.return_value
        client.auth.approle.login.return_value = {"auth": {"client_token": "s.token"}}
        client.is_authenticated.return_value = True
        yield client_cls


@pytest.fixture
def fake_vault(monkeypatch):
    """Module cache over a fake client whose secrets the test fills in."""
    stored = {}
    fake = MagicMock()
    fake.read_secret.side_effect = lambda name: dict(stored[name])
    monkeypatch.setattr(vault_module, "secret_cache", SecretCache(lambda: fake))
    fake.stored = stored
    return fake


class TestVaultSettings:

    def test_from_env(self, approle_env, monkeypatch):
        monkeypatch.setenv("VAULT_NAMESPACE", "ops")

        assert VaultSettings.from_env() == VaultSettings(
            "https://vault.example.com:8200", "role-id", "secret-id", "ops"
        )

    def test_missing_address(self, monkeypatch):
        monkeypatch.delenv("VAULT_ADDR", raising=False)

        with pytest.raises(VaultError, match="VAULT_ADDR"):
            VaultSettings.from_env()

    def test_missing_approle_credentials(self, approle_env, monkeypatch):
        monkeypatch.delenv("VAULT_SECRET_ID")

        with pytest.raises(VaultError, match="VAULT_SECRET_ID"):
            VaultSettings.from_env()


class TestVaultClientLogin:

    def test_token_installed(self, approle_env, hvac_client):
        client = VaultClient()

        hvac_client.assert_called_once_with(url="https://vault.example.com:8200", namespace=None)
        hvac_client.return_value.auth.approle.login.assert_called_once_with(
            role_id="role-id", secret_id="secret-id"
        )
        assert client.client.token == "s.token"

    def test_explicit_settings_skip_environment(self, hvac_client, monkeypatch):
        monkeypatch.delenv("VAULT_ADDR", raising=False)

        VaultClient(VaultSettings("https://vault.internal", "r", "s", "ops"))

        hvac_client.assert_called_once_with(url="https://vault.internal", namespace="ops")

    def test_rejected_login(self, approle_env, hvac_client):
        hvac_client.return_value.auth.approle.login.side_effect = Forbidden("denied")

        with pytest.raises(VaultError, match="AppRole login failed"):
            VaultClient()

    def test_unauthenticated_after_login(self, approle_env, hvac_client):
        hvac_client.return_value.is_authenticated.return_value = False

        with pytest.raises(VaultError, match="rejected"):
            VaultClient()


class TestReadSecret:
    """Reads are scoped to maintenance/."""

    def _stub(self, hvac_client, data):
        kv = hvac_client.return_value.secrets.kv.v2
        kv.read_secret_version.return_value = {"data": {"data": data}}
        return kv.read_secret_version

    def test_whole_secret(self, approle_env, hvac_client):
        read = self._stub(hvac_client, {"url": "postgresql://db/maintenance", "pool": "20"})

        assert VaultClient().read_secret("database") == {
            "url": "postgresql://db/maintenance", "pool": "20",
        }
        read.assert_called_once_with(path="maintenance/database", raise_on_deleted_version=True)

    def test_single_field(self, approle_env, hvac_client):
        self._stub(hvac_client, {"url": "postgresql://db/maintenance"})

        assert VaultClient().get_secret("database", "url") == "postgresql://db/maintenance"

    def test_missing_field_lists_available(self, approle_env, hvac_client):
        self._stub(hvac_client, {"host": "db"})

        with pytest.raises(VaultError, match=r"fields: host"):
            VaultClient().get_secret("database", "url")

    def test_missing_path(self, approle_env, hvac_client):
        hvac_client.return_value.secrets.kv.v2.read_secret_version.side_effect = InvalidPath()

        with pytest.raises(VaultError, match="maintenance/nowhere"):
            VaultClient().read_secret("nowhere")

    def test_access_denied(self, approle_env, hvac_client):
        hvac_client.return_value.secrets.kv.v2.read_secret_version.side_effect = Forbidden("no")

        with pytest.raises(VaultError, match="denied"):
            VaultClient().read_secret("database")


class TestSecretCache:

    def test_client_created_lazily_and_once(self):
        factory = MagicMock()
        factory.return_value.read_secret.side_effect = lambda name: {"name": name}
        cache = SecretCache(factory)

        factory.assert_not_called()
        cache.secret("app")
        cache.secret("database")
        cache.secret("app")

        factory.assert_called_once()
        assert factory.return_value.read_secret.call_count == 2

    def test_clear_forgets_client_and_secrets(self):
        factory = MagicMock()
        factory.return_value.read_secret.return_value = {}
        cache = SecretCache(factory)
        cache.secret("app")

        cache.clear()
        cache.secret("app")

        assert factory.call_count == 2


class TestConvenienceFunctions:

    def test_database_url_prefers_environment(self, monkeypatch, fake_vault):
        """DATABASE_URL wins without touching Vault."""
        monkeypatch.setenv("DATABASE_URL", "postgresql://localhost/maintenance_test")

        assert get_database_url() == "postgresql://localhost/maintenance_test"
        fake_vault.read_secret.assert_not_called()

    def test_database_url_from_vault(self, monkeypatch, fake_vault):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        fake_vault.stored["database"] = {"url": "postgresql://vault-db/maintenance"}

        assert get_database_url() == "postgresql://vault-db/maintenance"

    def test_database_secret_without_url(self, monkeypatch, fake_vault):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        fake_vault.stored["database"] = {"host": "db"}

        with pytest.raises(VaultError, match="no field 'url'"):
            get_database_url()

    def test_app_config_keeps_known_fields(self, fake_vault):
        fake_vault.stored["app"] = {
            "app_base_url": "https://maintenance.example.com",
            "availability_timezone": "Europe/Berlin",
            "unrelated": "ignored",
        }

        assert get_app_config() == {
            "app_base_url": "https://maintenance.example.com",
            "availability_timezone": "Europe/Berlin",
        }

    def test_app_config_read_once(self, fake_vault):
        fake_vault.stored["app"] = {"invoice_number_prefix": "MNT"}

        get_app_config()
        get_app_config()

        fake_vault.read_secret.assert_called_once_with("app")
