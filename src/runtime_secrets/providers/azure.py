"""Azure Key Vault provider."""

import base64
import logging
import textwrap
from pathlib import Path
from typing import Any, Callable, List, Optional

from azure.core.exceptions import (
    AzureError,
    ClientAuthenticationError,
    ResourceNotFoundError,
)
from azure.identity import ClientSecretCredential, DefaultAzureCredential
from azure.keyvault.certificates import CertificateClient
from azure.keyvault.secrets import SecretClient

from ..config import AzureKeyVaultSettings
from ..exceptions import (
    ProviderAuthenticationError,
    ProviderNotConfiguredError,
    ProviderTransportError,
    SecretLoaderError,
)
from ..naming import normalize_env_var_name
from .base import LoadStatus, SecretProvider, SecretRecord

logger = logging.getLogger(__name__)

KEYVAULT_SCOPE = "https://vault.azure.net/.default"


class AzureKeyVaultProvider(SecretProvider):
    """Load secrets from Azure Key Vault.

    Authenticates with a service principal when tenant id, client id and
    client secret are all set; otherwise relies on the default credential
    chain (managed identity, workload identity, an existing ``az login``).
    """

    provider_id = "azure"
    display_name = "Azure Key Vault"
    settings_cls = AzureKeyVaultSettings

    settings: AzureKeyVaultSettings

    def __init__(
        self,
        settings: AzureKeyVaultSettings,
        environ=None,
        credential: Any = None,
        secret_client_factory: Optional[Callable[[str, Any], Any]] = None,
        certificate_client_factory: Optional[Callable[[str, Any], Any]] = None,
    ) -> None:
        super().__init__(settings, environ=environ)
        self._credential = credential
        self._secret_client_factory = secret_client_factory or (
            lambda url, cred: SecretClient(vault_url=url, credential=cred)
        )
        self._certificate_client_factory = certificate_client_factory or (
            lambda url, cred: CertificateClient(vault_url=url, credential=cred)
        )

    @property
    def vault_url(self) -> str:
        url = self.settings.resolved_vault_url
        if not url:
            raise ProviderNotConfiguredError(
                "Either AZURE_KEYVAULT_NAME or AZURE_KEYVAULT_URL must be set "
                "when AZURE_KEYVAULT_ENABLED=true"
            )
        return url

    def get_credential(self) -> Any:
        """Return the credential, building it on first use."""
        if self._credential is not None:
            return self._credential
        if self.settings.service_principal_configured:
            logger.info(
                "Authenticating with Azure service principal",
                extra={"provider": self.provider_id},
            )
            self._credential = ClientSecretCredential(
                tenant_id=self.settings.tenant_id,
                client_id=self.settings.client_id,
                client_secret=self.settings.client_secret.get_secret_value(),
            )
        else:
            logger.info(
                "Service principal not fully configured, using default credential chain",
                extra={"provider": self.provider_id},
            )
            self._credential = DefaultAzureCredential()
        return self._credential

    def authenticate(self) -> Any:
        """Verify the credential can obtain a Key Vault token.

        Raises:
            ProviderAuthenticationError: If no token can be acquired
        """
        credential = self.get_credential()
        try:
            credential.get_token(KEYVAULT_SCOPE)
        except AzureError as exc:
            raise ProviderAuthenticationError(
                f"Azure authentication failed ({type(exc).__name__}); "
                "configure a service principal or managed identity"
            ) from exc
        return credential

    def fetch_secrets(self) -> List[SecretRecord]:
        vault_url = self.vault_url
        credential = self.authenticate()
        client = self._secret_client_factory(vault_url, credential)
        logger.info(
            "Retrieving secrets from Azure Key Vault %s",
            vault_url,
            extra={"provider": self.provider_id},
        )

        names = self.settings.secret_names or self._list_secret_names(client)
        records: List[SecretRecord] = []
        for name in names:
            value = self._get_secret(client, name)
            if value:
                records.append(
                    SecretRecord(
                        label=name,
                        env_var=normalize_env_var_name(self.settings.prefix, name),
                        value=value,
                    )
                )
        return records

    def check_health(self) -> bool:
        vault_url = self.vault_url
        client = self._secret_client_factory(vault_url, self.get_credential())
        try:
            next(iter(client.list_properties_of_secrets()), None)
        except AzureError as exc:
            logger.warning(
                "Azure Key Vault access check failed (%s)",
                type(exc).__name__,
                extra={"provider": self.provider_id},
            )
            return False
        logger.info("Azure Key Vault is accessible", extra={"provider": self.provider_id})
        return True

    def load_certificate(self, cert_name: str, output_path: Path) -> LoadStatus:
        """Write the public certificate of ``cert_name`` to ``output_path`` as PEM.

        Only the public certificate (CER) is written; the private key stays in
        Key Vault.

        Args:
            cert_name: Certificate name in the vault
            output_path: Destination file

        Returns:
            LoadStatus of the operation
        """
        if not cert_name or not output_path:
            logger.error(
                "load_certificate requires a certificate name and an output path",
                extra={"provider": self.provider_id},
            )
            return LoadStatus.NOT_CONFIGURED
        if not self.enabled:
            logger.error("Azure Key Vault is not enabled", extra={"provider": self.provider_id})
            return LoadStatus.NOT_CONFIGURED

        try:
            client = self._certificate_client_factory(self.vault_url, self.authenticate())
            certificate = client.get_certificate(cert_name)
        except SecretLoaderError as exc:
            self._log_failure(exc)
            return LoadStatus(exc.status)
        except Exception as exc:
            # Covers AzureError and credential construction errors; log the type only.
            logger.warning(
                "Failed to retrieve certificate %s (%s)",
                cert_name,
                type(exc).__name__,
                extra={"provider": self.provider_id},
            )
            return LoadStatus.AUTH_FAILURE

        if not certificate.cer:
            logger.warning(
                "Certificate %s has no public certificate data",
                cert_name,
                extra={"provider": self.provider_id},
            )
            return LoadStatus.AUTH_FAILURE

        output_path = Path(output_path)
        try:
            output_path.write_text(der_to_pem(bytes(certificate.cer)), encoding="ascii")
        except OSError as exc:
            logger.warning(
                "Failed to write certificate %s to %s (%s)",
                cert_name,
                output_path,
                type(exc).__name__,
                extra={"provider": self.provider_id},
            )
            return LoadStatus.AUTH_FAILURE
        logger.info(
            "Certificate %s saved to %s",
            cert_name,
            output_path,
            extra={"provider": self.provider_id},
        )
        return LoadStatus.SUCCESS

    def _list_secret_names(self, client: Any) -> List[str]:
        logger.info("Listing all secrets in Key Vault", extra={"provider": self.provider_id})
        try:
            return [
                props.name
                for props in client.list_properties_of_secrets()
                if props.enabled is not False
            ]
        except ClientAuthenticationError as exc:
            raise ProviderAuthenticationError(
                f"Azure rejected credentials while listing secrets ({type(exc).__name__})"
            ) from exc
        except AzureError as exc:
            raise ProviderTransportError(
                f"Failed to list secrets from Key Vault ({type(exc).__name__})"
            ) from exc

    def _get_secret(self, client: Any, name: str) -> Optional[str]:
        logger.info("Retrieving %s", name, extra={"provider": self.provider_id})
        try:
            return client.get_secret(name).value
        except ClientAuthenticationError as exc:
            raise ProviderAuthenticationError(
                f"Azure rejected credentials while reading {name} ({type(exc).__name__})"
            ) from exc
        except ResourceNotFoundError:
            logger.warning("Secret %s not found in Key Vault", name, extra={"provider": self.provider_id})
        except AzureError as exc:
            logger.warning(
                "Failed to retrieve %s (%s)",
                name,
                type(exc).__name__,
                extra={"provider": self.provider_id},
            )
        return None


def der_to_pem(der: bytes) -> str:
    """Encode a DER certificate as PEM text."""
    body = "\n".join(textwrap.wrap(base64.b64encode(der).decode("ascii"), 64))
    return f"-----BEGIN CERTIFICATE-----\n{body}\n-----END CERTIFICATE-----\n"
