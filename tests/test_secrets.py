"""
Tests for docker_startup.config.secrets (SecretsProvider).
"""

from unittest.mock import MagicMock

import pytest
import requests

from docker_startup.config.secrets import SecretsProvider


def _response(payload=None, status=200):
    resp = MagicMock()
    resp.json.return_value = payload or {}
    if status >= 400:
        resp.raise_for_status.side_effect = requests.HTTPError(f"{status} error")
    return resp


class TestEnvironmentFallback:

    def test_reads_environment(self):
        provider = SecretsProvider(environ={"DOCKER_REGISTRY_PASSWORD": "s3cret"})
        assert provider.get("docker_registry_password") == "s3cret"

    def test_dashes_normalised(self):
        provider = SecretsProvider(environ={"DOCKER_REGISTRY_PASSWORD": "s3cret"})
        assert provider.get("docker-registry-password") == "s3cret"

    def test_default(self):
        assert SecretsProvider(environ={}).get("docker_registry_password", "fallback") == "fallback"

    def test_status_without_vault(self):
        status = SecretsProvider(environ={}).get_status()
        assert status == {
            "vault_configured": False,
            "vault_connected": False,
            "vault_addr": None,
            "auth_method": None,
        }


class TestVault:

    ENV = {"VAULT_ADDR": "http://vault:8200", "VAULT_TOKEN": "root-token"}

    def test_token_auth(self, mocker):
        get = mocker.patch("docker_startup.config.secrets.requests.get", side_effect=[
            _response(),
            _response({"data": {"data": {"docker_registry_password": "from-vault"}}}),
        ])

        provider = SecretsProvider(environ=self.ENV)

        assert provider.use_vault is True
        assert provider.get("docker_registry_password") == "from-vault"
        assert get.call_args.args[0] == "http://vault:8200/v1/secret/data/guacamole/docker-startup"
        assert provider.get_status()["auth_method"] == "token"

    def test_secret_cached(self, mocker):
        get = mocker.patch("docker_startup.config.secrets.requests.get", side_effect=[
            _response(),
            _response({"data": {"data": {"docker_registry_password": "from-vault"}}}),
        ])
        provider = SecretsProvider(environ=self.ENV)

        provider.get("docker_registry_password")
        provider.get("docker_registry_password")

        assert get.call_count == 2

    def test_missing_key_falls_back_to_env(self, mocker):
        mocker.patch("docker_startup.config.secrets.requests.get", side_effect=[
            _response(),
            _response({"data": {"data": {}}}),
        ])
        provider = SecretsProvider(environ=dict(self.ENV, DOCKER_REGISTRY_PASSWORD="from-env"))

        assert provider.get("docker_registry_password") == "from-env"

    def test_unreachable_vault(self, mocker):
        mocker.patch(
            "docker_startup.config.secrets.requests.get",
            side_effect=requests.ConnectionError("connection refused"),
        )

        provider = SecretsProvider(environ=dict(self.ENV, DOCKER_REGISTRY_PASSWORD="from-env"))

        assert provider.use_vault is False
        assert provider.get("docker_registry_password") == "from-env"

    def test_rejected_token(self, mocker):
        mocker.patch("docker_startup.config.secrets.requests.get", return_value=_response(status=403))
        assert SecretsProvider(environ=self.ENV).use_vault is False

    def test_approle(self, mocker):
        post = mocker.patch(
            "docker_startup.config.secrets.requests.post",
            return_value=_response({"auth": {"client_token": "approle-token", "lease_duration": 3600}}),
        )
        get = mocker.patch("docker_startup.config.secrets.requests.get", return_value=_response())

        provider = SecretsProvider(environ={
            "VAULT_ADDR": "http://vault:8200",
            "VAULT_ROLE_ID": "role",
            "VAULT_SECRET_ID": "secret",
        })

        assert provider.use_vault is True
        assert provider.vault_token == "approle-token"
        assert post.call_args.kwargs["json"] == {"role_id": "role", "secret_id": "secret"}
        assert get.call_args.kwargs["headers"] == {"X-Vault-Token": "approle-token"}
        assert provider.get_status()["auth_method"] == "approle"

    @pytest.mark.parametrize("mount,path", [("kv", "guacamole/prod")])
    def test_custom_mount_and_path(self, mocker, mount, path):
        get = mocker.patch("docker_startup.config.secrets.requests.get", side_effect=[
            _response(),
            _response({"data": {"data": {"docker_registry_password": "x"}}}),
        ])
        provider = SecretsProvider(environ=dict(self.ENV, VAULT_MOUNT=mount, VAULT_PATH=path))

        provider.get("docker_registry_password")

        assert get.call_args.args[0] == f"http://vault:8200/v1/{mount}/data/{path}"
