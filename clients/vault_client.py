"""
Maintenance-service secrets held in HashiCorp Vault.

Secrets live in the KV v2 engine under maintenance/<name>. Each secret is
read whole on first use and kept for the life of the process, so fields of
the same secret never cost a second round trip. A DATABASE_URL environment
variable short-circuits Vault for the connection string (local and CI runs).

Any failure to authenticate or read raises VaultError: the service does not
start on partial configuration.
"""

import logging
import os
import threading
from dataclasses import dataclass
from typing import Callable, Dict

import hvac
from hvac.exceptions import Forbidden, InvalidPath, Unauthorized
from hvac.exceptions import VaultError as HvacError

logger = logging.getLogger(__name__)

SECRET_PREFIX = "maintenance"

# MaintenanceConfig fields that may be overridden from maintenance/app
APP_CONFIG_FIELDS = (
    "app_base_url",
    "availability_timezone",
    "invoice_number_prefix",
    "default_page_size",
)


class VaultError(Exception):
    """Secrets could not be loaded. Fatal at startup."""


@dataclass(frozen=True)
class VaultSettings:
    """Where Vault is and which AppRole to log in as."""

    address: str
    role_id: str
    secret_id: str
    namespace: str | None = None

    @classmethod
    def from_env(cls) -> "VaultSettings":
        address = os.getenv("VAULT_ADDR")
        role_id = os.getenv("VAULT_ROLE_ID")
        secret_id = os.getenv("VAULT_SECRET_ID")

        if not address:
            raise VaultError("VAULT_ADDR is not set")
        if not role_id or not secret_id:
            raise VaultError("VAULT_ROLE_ID and VAULT_SECRET_ID must both be set")

        return cls(address, role_id, secret_id, os.getenv("VAULT_NAMESPACE") or None)


class VaultClient:
    """AppRole-authenticated reader for secrets under maintenance/."""

    def __init__(self, settings: VaultSettings | None = None):
        self.settings = settings or VaultSettings.from_env()
        self.client = hvac.Client(url=self.settings.address, namespace=self.settings.namespace)
        self._login()

    def _login(self) -> None:
        try:
            response = self.client.auth.approle.login(
                role_id=self.settings.role_id,
                secret_id=self.settings.secret_id,
            )
        except HvacError as e:
            logger.error(f"AppRole login to {self.settings.address} failed: {e}")
            raise VaultError(f"AppRole login failed: {e}") from e

        self.client.token = response["auth"]["client_token"]
        if not self.client.is_authenticated():
            raise VaultError(f"Vault at {self.settings.address} rejected the AppRole token")

        logger.info(f"Authenticated to Vault at {self.settings.address}")

    def read_secret(self, name: str) -> Dict[str, str]:
        """
        All fields of maintenance/<name>.

        Raises:
            VaultError: The secret is missing or the role may not read it.
        """
        path = f"{SECRET_PREFIX}/{name}"
        try:
            response = self.client.secrets.kv.v2.read_secret_version(
                path=path, raise_on_deleted_version=True
            )
        except InvalidPath as e:
            raise VaultError(f"No secret at '{path}'") from e
        except (Unauthorized, Forbidden) as e:
            logger.error(f"Vault denied read of {path}: {e}")
            raise VaultError(f"Access to '{path}' denied") from e

        return dict(response["data"]["data"])

    def get_secret(self, name: str, field: str) -> str:
        """One field of maintenance/<name>."""
        return _field(self.read_secret(name), name, field)


def _field(secret: Dict[str, str], name: str, field: str) -> str:
    if field not in secret:
        raise VaultError(
            f"Secret '{SECRET_PREFIX}/{name}' has no field '{field}' "
            f"(fields: {', '.join(sorted(secret)) or 'none'})"
        )
    return secret[field]


class SecretCache:
    """Whole secrets cached per process over one lazily created client."""

    def __init__(self, client_factory: Callable[[], VaultClient] = VaultClient):
        self._client_factory = client_factory
        self._client: VaultClient | None = None
        self._secrets: Dict[str, Dict[str, str]] = {}
        self._lock = threading.Lock()

    def secret(self, name: str) -> Dict[str, str]:
        with self._lock:
            if name not in self._secrets:
                if self._client is None:
                    self._client = self._client_factory()
                self._secrets[name] = self._client.read_secret(name)
            return self._secrets[name]

    def clear(self) -> None:
        with self._lock:
            self._client = None
            self._secrets.clear()


secret_cache = SecretCache()


def get_database_url() -> str:
    """PostgreSQL connection URL: DATABASE_URL env var, else maintenance/database."""
    env_url = os.getenv("DATABASE_URL")
    if env_url:
        return env_url

    return _field(secret_cache.secret("database"), "database", "url")


def get_app_config() -> Dict[str, str]:
    """
    MaintenanceConfig keyword arguments stored in maintenance/app.

    Only the fields present in the secret are returned, so anything a
    deployment leaves out keeps its MaintenanceConfig default.
    """
    secret = secret_cache.secret("app")
    return {field: secret[field] for field in APP_CONFIG_FIELDS if field in secret}
