"""HashiCorp Vault secret provider."""

import json
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

import hvac
import requests
from hvac.exceptions import VaultError

from ..config import VaultSettings
from ..exceptions import (
    ProviderAuthenticationError,
    ProviderNotConfiguredError,
    ProviderTransportError,
)
from .base import SecretProvider, SecretRecord

logger = logging.getLogger(__name__)


class VaultAuthState(str, Enum):
    """Authentication states; the configured method is the only transition trigger."""

    UNAUTHENTICATED = "unauthenticated"
    TOKEN_VALIDATED = "token_validated"
    APPROLE_AUTHENTICATED = "approle_authenticated"
    KUBERNETES_AUTHENTICATED = "kubernetes_authenticated"
    FAILED = "failed"


AUTH_METHODS = ("token", "approle", "kubernetes", "k8s")


def split_secret_path(secret_path: str) -> Tuple[str, str]:
    """Split ``mount/path`` into mount point and path.

    The KV v2 API segment is accepted and dropped, so both ``secret/myapp``
    and ``secret/data/myapp`` address the same secret.

    Args:
        secret_path: Path as configured in VAULT_SECRET_PATH

    Returns:
        Tuple of (mount_point, path)

    Raises:
        ProviderNotConfiguredError: If the path has no mount segment
    """
    parts = [part for part in secret_path.strip("/").split("/") if part]
    if len(parts) < 2:
        raise ProviderNotConfiguredError(
            f"VAULT_SECRET_PATH must look like <mount>/<path>, got {secret_path!r}"
        )
    mount_point, rest = parts[0], parts[1:]
    if rest[0] == "data" and len(rest) > 1:
        rest = rest[1:]
    return mount_point, "/".join(rest)


class HashicorpVaultProvider(SecretProvider):
    """Load one KV path from Vault after token, AppRole or Kubernetes login."""

    provider_id = "vault"
    display_name = "HashiCorp Vault"
    settings_cls = VaultSettings

    settings: VaultSettings

    def __init__(
        self,
        settings: VaultSettings,
        environ=None,
        client_factory: Optional[Callable[[], Any]] = None,
    ) -> None:
        super().__init__(settings, environ=environ)
        self._client_factory = client_factory or self._build_client
        self.auth_state = VaultAuthState.UNAUTHENTICATED

    def fetch_secrets(self) -> List[SecretRecord]:
        if not self.settings.address:
            raise ProviderNotConfiguredError("VAULT_ADDR must be set when VAULT_ENABLED=true")
        if not self.settings.secret_path:
            raise ProviderNotConfiguredError(
                "VAULT_SECRET_PATH must be set when VAULT_ENABLED=true"
            )
        if self.settings.auth_method not in AUTH_METHODS:
            raise ProviderNotConfiguredError(
                f"Unknown VAULT_AUTH_METHOD {self.settings.auth_method!r} "
                "(supported: token, approle, kubernetes)"
            )
        mount_point, path = split_secret_path(self.settings.secret_path)

        client = self._client_factory()
        if self.settings.namespace:
            logger.info(
                "Using Vault namespace %s",
                self.settings.namespace,
                extra={"provider": self.provider_id},
            )
        self.authenticate(client)

        logger.info(
            "Reading Vault path %s/%s",
            mount_point,
            path,
            extra={"provider": self.provider_id},
        )
        data = self._read_path(client, path, mount_point)

        records: List[SecretRecord] = []
        for key, value in data.items():
            if value is None or value == "":
                continue
            text = value if isinstance(value, str) else json.dumps(value)
            records.append(
                SecretRecord(label=key, env_var=f"{self.settings.prefix}{key}", value=text)
            )
        return records

    def authenticate(self, client: Any) -> VaultAuthState:
        """Authenticate the client with the configured method.

        Returns:
            The new authentication state

        Raises:
            ProviderAuthenticationError: On missing credentials, rejected login
                or a malformed login response (state becomes FAILED)
        """
        method = self.settings.auth_method
        try:
            if method == "token":
                self.auth_state = self._auth_token(client)
            elif method == "approle":
                self.auth_state = self._auth_approle(client)
            else:
                self.auth_state = self._auth_kubernetes(client)
        except ProviderAuthenticationError:
            self.auth_state = VaultAuthState.FAILED
            raise
        except (VaultError, requests.exceptions.RequestException) as exc:
            self.auth_state = VaultAuthState.FAILED
            raise ProviderAuthenticationError(
                f"Vault {method} authentication failed ({type(exc).__name__})"
            ) from exc
        logger.info(
            "Authenticated to Vault (%s)",
            self.auth_state.value,
            extra={"provider": self.provider_id},
        )
        return self.auth_state

    def check_health(self) -> bool:
        if not self.settings.address:
            logger.warning(
                "Vault enabled but VAULT_ADDR not set",
                extra={"provider": self.provider_id},
            )
            return False
        client = self._client_factory()
        try:
            healthy = bool(client.sys.is_initialized()) and not client.sys.is_sealed()
        except (VaultError, requests.exceptions.RequestException) as exc:
            logger.warning(
                "Vault health check failed (%s)",
                type(exc).__name__,
                extra={"provider": self.provider_id},
            )
            return False
        if healthy:
            logger.info("Vault is reachable and unsealed", extra={"provider": self.provider_id})
        else:
            logger.warning("Vault is sealed or uninitialized", extra={"provider": self.provider_id})
        return healthy

    def _build_client(self) -> Any:
        """Build an unauthenticated Vault client."""
        return hvac.Client(
            url=self.settings.address,
            namespace=self.settings.namespace,
            verify=self.settings.verify,
        )

    def _auth_token(self, client: Any) -> VaultAuthState:
        if self.settings.token is None:
            raise ProviderAuthenticationError("VAULT_TOKEN not set for token authentication")
        client.token = self.settings.token.get_secret_value()
        # Raises Forbidden for an invalid or expired token
        client.auth.token.lookup_self()
        return VaultAuthState.TOKEN_VALIDATED

    def _auth_approle(self, client: Any) -> VaultAuthState:
        if not self.settings.role_id or self.settings.secret_id is None:
            raise ProviderAuthenticationError(
                "VAULT_ROLE_ID and VAULT_SECRET_ID must be set for approle authentication"
            )
        response = client.auth.approle.login(
            role_id=self.settings.role_id,
            secret_id=self.settings.secret_id.get_secret_value(),
        )
        client.token = self._client_token(response, "AppRole")
        return VaultAuthState.APPROLE_AUTHENTICATED

    def _auth_kubernetes(self, client: Any) -> VaultAuthState:
        if not self.settings.k8s_role:
            raise ProviderAuthenticationError(
                "VAULT_K8S_ROLE must be set for Kubernetes authentication"
            )
        jwt_path = self.settings.k8s_jwt_path
        try:
            jwt = jwt_path.read_text(encoding="utf-8").strip()
        except OSError as exc:
            raise ProviderAuthenticationError(
                f"Kubernetes service account token not readable at {jwt_path}"
            ) from exc
        response = client.auth.kubernetes.login(role=self.settings.k8s_role, jwt=jwt)
        client.token = self._client_token(response, "Kubernetes")
        return VaultAuthState.KUBERNETES_AUTHENTICATED

    @staticmethod
    def _client_token(response: Any, method: str) -> str:
        token = None
        if isinstance(response, dict):
            token = (response.get("auth") or {}).get("client_token")
        if not token:
            raise ProviderAuthenticationError(
                f"{method} login response did not contain a client token"
            )
        return token

    def _read_path(self, client: Any, path: str, mount_point: str) -> Dict[str, Any]:
        """Read a KV path and return its key/value map.

        Raises:
            ProviderTransportError: If the read fails or the response is malformed
        """
        try:
            if self.settings.kv_version == 1:
                response = client.secrets.kv.v1.read_secret(
                    path=path, mount_point=mount_point
                )
                data = response.get("data") if isinstance(response, dict) else None
            else:
                response = client.secrets.kv.v2.read_secret_version(
                    path=path, mount_point=mount_point, raise_on_deleted_version=True
                )
                data = response.get("data") if isinstance(response, dict) else None
                data = data.get("data") if isinstance(data, dict) else None
        except (VaultError, requests.exceptions.RequestException) as exc:
            raise ProviderTransportError(
                f"Failed to read Vault path {mount_point}/{path} ({type(exc).__name__})"
            ) from exc

        if not isinstance(data, dict):
            raise ProviderTransportError("Unable to parse secrets from Vault response")
        return data
