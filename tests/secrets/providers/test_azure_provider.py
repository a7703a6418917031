"""Tests for AzureKeyVaultProvider."""

import base64
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

from azure.core.exceptions import ClientAuthenticationError, ResourceNotFoundError

from runtime_secrets.providers.azure import AzureKeyVaultProvider, der_to_pem
from runtime_secrets.providers.base import LoadStatus

BASE_ENV = {"AZURE_KEYVAULT_ENABLED": "true", "AZURE_KEYVAULT_NAME": "myvault"}


def _provider(environ, secret_client=None, cert_client=None, credential=None, **overrides):
    environ.update({**BASE_ENV, **overrides})
    calls = []

    def secret_factory(url, cred):
        calls.append(url)
        return secret_client

    provider = AzureKeyVaultProvider.from_env(
        environ,
        credential=credential if credential is not None else MagicMock(),
        secret_client_factory=secret_factory,
        certificate_client_factory=lambda url, cred: cert_client,
    )
    return provider, calls


def _secret(value):
    return SimpleNamespace(value=value)


class TestAzureKeyVaultProvider:
    """Test Azure Key Vault loading."""

    def test_loads_named_secrets(self, environ):
        client = MagicMock()
        client.get_secret.side_effect = lambda name: _secret({"db-password": "pw", "api-key": "k"}[name])

        provider, calls = _provider(
            environ, client, AZURE_SECRET_NAMES="db-password,api-key", AZURE_SECRET_PREFIX="APP_"
        )

        assert provider.load() is LoadStatus.SUCCESS
        assert calls == ["https://myvault.vault.azure.net"]
        assert environ["APP_DB_PASSWORD"] == "pw"
        assert environ["APP_API_KEY"] == "k"

    def test_lists_enabled_secrets_when_no_names_given(self, environ):
        client = MagicMock()
        client.list_properties_of_secrets.return_value = [
            SimpleNamespace(name="active", enabled=True),
            SimpleNamespace(name="retired", enabled=False),
        ]
        client.get_secret.return_value = _secret("v")

        provider, _ = _provider(environ, client)

        assert provider.load() is LoadStatus.SUCCESS
        client.get_secret.assert_called_once_with("active")
        assert environ["ACTIVE"] == "v"

    def test_missing_secret_is_skipped(self, environ):
        client = MagicMock()

        def get_secret(name):
            if name == "missing":
                raise ResourceNotFoundError("not found")
            return _secret("v")

        client.get_secret.side_effect = get_secret
        provider, _ = _provider(environ, client, AZURE_SECRET_NAMES="missing,present")

        assert provider.load() is LoadStatus.SUCCESS
        assert environ["PRESENT"] == "v"
        assert "MISSING" not in environ

    def test_token_failure_is_auth_failure(self, environ):
        credential = MagicMock()
        credential.get_token.side_effect = ClientAuthenticationError("no identity")
        client = MagicMock()

        provider, _ = _provider(environ, client, credential=credential)

        assert provider.load() is LoadStatus.AUTH_FAILURE
        client.get_secret.assert_not_called()

    def test_missing_vault_is_not_configured(self, environ):
        provider, _ = _provider(environ, MagicMock(), AZURE_KEYVAULT_NAME="")
        assert provider.load() is LoadStatus.NOT_CONFIGURED

    def test_service_principal_credential(self, environ):
        environ.update(
            {
                **BASE_ENV,
                "AZURE_TENANT_ID": "tenant",
                "AZURE_CLIENT_ID": "client",
                "AZURE_CLIENT_SECRET": "secret",
            }
        )
        provider = AzureKeyVaultProvider.from_env(environ)
        with patch("runtime_secrets.providers.azure.ClientSecretCredential") as sp_cls:
            provider.get_credential()
        sp_cls.assert_called_once_with(tenant_id="tenant", client_id="client", client_secret="secret")

    def test_partial_service_principal_uses_default_chain(self, environ):
        environ.update({**BASE_ENV, "AZURE_TENANT_ID": "tenant", "AZURE_CLIENT_ID": "client"})
        provider = AzureKeyVaultProvider.from_env(environ)
        with patch("runtime_secrets.providers.azure.DefaultAzureCredential") as default_cls, patch(
            "runtime_secrets.providers.azure.ClientSecretCredential"
        ) as sp_cls:
            provider.get_credential()
        default_cls.assert_called_once_with()
        sp_cls.assert_not_called()

    def test_values_are_not_logged(self, environ, leak_marker, assert_no_leak):
        client = MagicMock()
        client.get_secret.return_value = _secret(leak_marker)

        provider, _ = _provider(environ, client, AZURE_SECRET_NAMES="token")
        provider.load()

        assert environ["TOKEN"] == leak_marker
        assert_no_leak()

    def test_load_certificate_writes_public_pem(self, environ, tmp_path):
        der = b"\x30\x82\x01\x0a" * 20
        cert_client = MagicMock()
        cert_client.get_certificate.return_value = SimpleNamespace(cer=bytearray(der))
        provider, _ = _provider(environ, MagicMock(), cert_client=cert_client)
        output = tmp_path / "cert.pem"

        assert provider.load_certificate("tls", output) is LoadStatus.SUCCESS

        pem = output.read_text()
        assert pem.startswith("-----BEGIN CERTIFICATE-----\n")
        assert "PRIVATE KEY" not in pem
        body = "".join(pem.strip().splitlines()[1:-1])
        assert base64.b64decode(body) == der

    def test_load_certificate_missing_directory_is_a_status(self, environ, tmp_path):
        cert_client = MagicMock()
        cert_client.get_certificate.return_value = SimpleNamespace(cer=bytearray(b"\x30\x82"))
        provider, _ = _provider(environ, MagicMock(), cert_client=cert_client)

        status = provider.load_certificate("web", tmp_path / "missing" / "cert.pem")

        assert status is LoadStatus.AUTH_FAILURE
        assert not (tmp_path / "missing").exists()

    def test_load_certificate_bad_credential_settings_is_a_status(self, environ, tmp_path):
        environ.update(
            {
                **BASE_ENV,
                "AZURE_TENANT_ID": "not a tenant",
                "AZURE_CLIENT_ID": "client",
                "AZURE_CLIENT_SECRET": "secret",
            }
        )
        provider = AzureKeyVaultProvider.from_env(environ)
        with patch(
            "runtime_secrets.providers.azure.ClientSecretCredential",
            side_effect=ValueError("Invalid tenant id provided"),
        ):
            status = provider.load_certificate("web", tmp_path / "cert.pem")

        assert status is LoadStatus.AUTH_FAILURE
        assert not (tmp_path / "cert.pem").exists()

    def test_load_certificate_requires_name(self, environ, tmp_path):
        provider, _ = _provider(environ, MagicMock(), cert_client=MagicMock())
        assert provider.load_certificate("", tmp_path / "x.pem") is LoadStatus.NOT_CONFIGURED

    def test_health(self, environ):
        client = MagicMock()
        client.list_properties_of_secrets.return_value = iter([])
        provider, _ = _provider(environ, client)
        assert provider.health_check() is True


class TestDerToPem:
    """Test PEM encoding."""

    def test_wraps_at_64_columns(self):
        pem = der_to_pem(b"x" * 100)
        lines = pem.strip().splitlines()
        assert lines[0] == "-----BEGIN CERTIFICATE-----"
        assert lines[-1] == "-----END CERTIFICATE-----"
        assert all(len(line) <= 64 for line in lines[1:-1])
