"""
Secrets lookup for engine and registry credentials.

Vault (OpenBao/HashiCorp KV v2) is consulted first when ``VAULT_ADDR`` is
set; otherwise values come from environment variables.
"""

from __future__ import annotations

import logging
import os
import threading
import time

import requests

logger = logging.getLogger("docker-startup")

VAULT_TIMEOUT = 5


class SecretsProvider:
    """
    Resolves secret values such as ``docker_registry_password``.

    Priority: Vault > Environment Variables > default

    Vault authentication uses AppRole when ``VAULT_ROLE_ID`` and
    ``VAULT_SECRET_ID`` are set, otherwise a static ``VAULT_TOKEN``.
    """

    def __init__(self, environ: dict[str, str] | None = None) -> None:
        env = os.environ if environ is None else environ
        self._environ = env
        self.vault_addr = env.get("VAULT_ADDR")
        self.vault_token = env.get("VAULT_TOKEN")
        self.vault_role_id = env.get("VAULT_ROLE_ID")
        self.vault_secret_id = env.get("VAULT_SECRET_ID")
        self.vault_mount = env.get("VAULT_MOUNT", "secret")
        self.vault_path = env.get("VAULT_PATH", "guacamole/docker-startup")
        self.use_vault = False
        self._token_expires: float = 0
        self._cache: dict[str, str] = {}
        self._cache_ttl = 300
        self._cache_time: float = 0
        self._lock = threading.Lock()

        if self.vault_addr:
            self._connect()

    @property
    def _uses_approle(self) -> bool:
        return bool(self.vault_role_id and self.vault_secret_id)

    def _connect(self) -> None:
        """Authenticate against Vault and verify the token."""
        try:
            if self._uses_approle:
                self._login_approle()
            if self.vault_token:
                resp = requests.get(
                    f"{self.vault_addr}/v1/auth/token/lookup-self",
                    headers={"X-Vault-Token": self.vault_token},
                    timeout=VAULT_TIMEOUT,
                )
                resp.raise_for_status()
                self.use_vault = True
                logger.info(f"Vault connected: {self.vault_addr}")
        except requests.RequestException as e:
            logger.warning(f"Vault unavailable ({e}), using environment variables")
            self.use_vault = False

    def _login_approle(self) -> None:
        resp = requests.post(
            f"{self.vault_addr}/v1/auth/approle/login",
            json={"role_id": self.vault_role_id, "secret_id": self.vault_secret_id},
            timeout=VAULT_TIMEOUT,
        )
        resp.raise_for_status()
        auth = resp.json()["auth"]
        self.vault_token = auth["client_token"]
        # Renew a minute before the lease runs out
        self._token_expires = time.time() + auth["lease_duration"] - 60
        logger.info("Vault: AppRole authentication successful")

    def _read_vault(self, key: str) -> str | None:
        """Read *key* from the KV secret, refreshing the cache when stale."""
        with self._lock:
            if self._uses_approle and time.time() > self._token_expires:
                self._connect()
            if not self.use_vault:
                return None

            if time.time() - self._cache_time < self._cache_ttl and key in self._cache:
                return self._cache[key]

            try:
                resp = requests.get(
                    f"{self.vault_addr}/v1/{self.vault_mount}/data/{self.vault_path}",
                    headers={"X-Vault-Token": self.vault_token},
                    timeout=VAULT_TIMEOUT,
                )
                resp.raise_for_status()
                self._cache = resp.json().get("data", {}).get("data", {})
                self._cache_time = time.time()
                return self._cache.get(key)
            except requests.RequestException as e:
                logger.error(f"Error reading from Vault for key '{key}': {e}")
                return None

    def get(self, key: str, default: str | None = None) -> str | None:
        """
        Retrieve a secret: Vault > env > default.

        Args:
            key: Secret key name (``docker_registry_password``)
            default: Default value if not found

        Returns:
            Secret value
        """
        if self.use_vault:
            value = self._read_vault(key)
            if value:
                return value
        return self._environ.get(key.upper().replace("-", "_"), default)

    def get_status(self) -> dict:
        """Describe where secrets are coming from."""
        if self._uses_approle:
            auth_method = "approle"
        elif self.vault_token:
            auth_method = "token"
        else:
            auth_method = None
        return {
            "vault_configured": bool(self.vault_addr),
            "vault_connected": self.use_vault,
            "vault_addr": self.vault_addr if self.use_vault else None,
            "auth_method": auth_method,
        }


# Global instance
secrets_provider = SecretsProvider()
