"""Configuration models for the secret loader and its providers.

Every model is built from an environment mapping with ``from_env()``. The
process environment is the only configuration source: the loader runs once at
container start, before any application config exists.
"""

import os
from pathlib import Path
from typing import List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator

DEFAULT_PRIORITY = "docker,1password,vault,aws,azure,gcp"
DEFAULT_DOCKER_SECRETS_DIR = Path("/run/secrets")
DEFAULT_K8S_JWT_PATH = Path("/var/run/secrets/kubernetes.io/serviceaccount/token")

_TRUE_VALUES = {"true", "1", "yes", "on"}


def env_flag(value: Optional[str], default: bool = False) -> bool:
    """Interpret an environment variable as a boolean flag.

    Args:
        value: Raw variable value (None when unset)
        default: Value used when the variable is unset or blank

    Returns:
        True for true/1/yes/on (case-insensitive), otherwise False
    """
    if value is None or not value.strip():
        return default
    return value.strip().lower() in _TRUE_VALUES


def env_list(value: Optional[str]) -> List[str]:
    """Split a comma separated variable into trimmed, non-empty entries."""
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _get(environ: Mapping[str, str], key: str) -> Optional[str]:
    """Return a variable value, treating empty strings as unset."""
    value = environ.get(key)
    if value is None or value == "":
        return None
    return value


def _secret(environ: Mapping[str, str], key: str) -> Optional[SecretStr]:
    value = _get(environ, key)
    return SecretStr(value) if value is not None else None


class ProviderSettings(BaseModel):
    """Fields shared by every provider."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    prefix: str = ""


class LoaderSettings(BaseModel):
    """Global secret loader settings."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    priority: str = DEFAULT_PRIORITY
    fail_on_error: bool = False
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "LoaderSettings":
        environ = os.environ if environ is None else environ
        return cls(
            enabled=env_flag(environ.get("SECRET_LOADER_ENABLED"), default=True),
            priority=environ.get("SECRET_LOADER_PRIORITY") or DEFAULT_PRIORITY,
            fail_on_error=env_flag(environ.get("SECRET_LOADER_FAIL_ON_ERROR")),
            log_level=environ.get("SECRET_LOADER_LOG_LEVEL") or "INFO",
        )


class DockerSecretsSettings(ProviderSettings):
    """Docker/Compose file-mounted secrets."""

    mode: str = "auto"
    secrets_dir: Path = DEFAULT_DOCKER_SECRETS_DIR
    names: List[str] = Field(default_factory=list)
    uppercase: bool = True

    @classmethod
    def from_env(
        cls, environ: Optional[Mapping[str, str]] = None
    ) -> "DockerSecretsSettings":
        environ = os.environ if environ is None else environ
        raw_mode = (environ.get("DOCKER_SECRETS_ENABLED") or "auto").strip().lower()
        if raw_mode == "auto":
            mode = "auto"
        else:
            mode = "true" if raw_mode in _TRUE_VALUES else "false"
        return cls(
            mode=mode,
            enabled=mode != "false",
            secrets_dir=Path(
                _get(environ, "DOCKER_SECRETS_DIR") or DEFAULT_DOCKER_SECRETS_DIR
            ),
            prefix=environ.get("DOCKER_SECRET_PREFIX", ""),
            names=env_list(environ.get("DOCKER_SECRET_NAMES")),
            uppercase=env_flag(environ.get("DOCKER_SECRETS_UPPERCASE"), default=True),
        )


class OnePasswordSettings(ProviderSettings):
    """1Password Connect server and CLI settings."""

    connect_host: Optional[str] = None
    connect_token: Optional[SecretStr] = None
    service_account_token: Optional[SecretStr] = None
    vault: Optional[str] = None
    item_names: List[str] = Field(default_factory=list)
    secret_references: List[str] = Field(default_factory=list)

    @field_validator("connect_host")
    @classmethod
    def strip_trailing_slash(cls, v: Optional[str]) -> Optional[str]:
        return v.rstrip("/") if v else v

    @property
    def connect_configured(self) -> bool:
        return bool(self.connect_host and self.connect_token)

    @classmethod
    def from_env(
        cls, environ: Optional[Mapping[str, str]] = None
    ) -> "OnePasswordSettings":
        environ = os.environ if environ is None else environ
        return cls(
            enabled=env_flag(environ.get("OP_ENABLED")),
            prefix=environ.get("OP_SECRET_PREFIX", ""),
            connect_host=_get(environ, "OP_CONNECT_HOST"),
            connect_token=_secret(environ, "OP_CONNECT_TOKEN"),
            service_account_token=_secret(environ, "OP_SERVICE_ACCOUNT_TOKEN"),
            vault=_get(environ, "OP_VAULT"),
            item_names=env_list(environ.get("OP_ITEM_NAMES")),
            secret_references=env_list(environ.get("OP_SECRET_REFERENCES")),
        )


class VaultSettings(ProviderSettings):
    """HashiCorp Vault settings."""

    address: Optional[str] = None
    namespace: Optional[str] = None
    secret_path: Optional[str] = None
    auth_method: str = "token"
    token: Optional[SecretStr] = None
    role_id: Optional[str] = None
    secret_id: Optional[SecretStr] = None
    k8s_role: Optional[str] = None
    k8s_jwt_path: Path = DEFAULT_K8S_JWT_PATH
    kv_version: int = 2
    verify: bool = True

    @field_validator("auth_method")
    @classmethod
    def lower_auth_method(cls, v: str) -> str:
        return v.strip().lower()

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "VaultSettings":
        environ = os.environ if environ is None else environ
        kv_version = _get(environ, "VAULT_KV_VERSION") or "2"
        return cls(
            enabled=env_flag(environ.get("VAULT_ENABLED")),
            prefix=environ.get("VAULT_SECRET_PREFIX", ""),
            address=_get(environ, "VAULT_ADDR"),
            namespace=_get(environ, "VAULT_NAMESPACE"),
            secret_path=_get(environ, "VAULT_SECRET_PATH"),
            auth_method=_get(environ, "VAULT_AUTH_METHOD") or "token",
            token=_secret(environ, "VAULT_TOKEN"),
            role_id=_get(environ, "VAULT_ROLE_ID"),
            secret_id=_secret(environ, "VAULT_SECRET_ID"),
            k8s_role=_get(environ, "VAULT_K8S_ROLE"),
            k8s_jwt_path=Path(
                _get(environ, "VAULT_K8S_JWT_PATH") or DEFAULT_K8S_JWT_PATH
            ),
            kv_version=1 if kv_version.strip() == "1" else 2,
            verify=not env_flag(environ.get("VAULT_SKIP_VERIFY")),
        )


class AWSSecretsSettings(ProviderSettings):
    """AWS Secrets Manager settings."""

    secret_name: Optional[str] = None
    region: Optional[str] = None
    version_id: Optional[str] = None
    version_stage: Optional[str] = None
    env_var: Optional[str] = None

    @classmethod
    def from_env(
        cls, environ: Optional[Mapping[str, str]] = None
    ) -> "AWSSecretsSettings":
        environ = os.environ if environ is None else environ
        return cls(
            enabled=env_flag(environ.get("AWS_SECRETS_ENABLED")),
            prefix=environ.get("AWS_SECRET_PREFIX", ""),
            secret_name=_get(environ, "AWS_SECRET_NAME"),
            region=_get(environ, "AWS_REGION"),
            version_id=_get(environ, "AWS_SECRET_VERSION_ID"),
            version_stage=_get(environ, "AWS_SECRET_VERSION_STAGE"),
            env_var=_get(environ, "AWS_SECRET_ENV_VAR"),
        )


class AzureKeyVaultSettings(ProviderSettings):
    """Azure Key Vault settings."""

    vault_name: Optional[str] = None
    vault_url: Optional[str] = None
    secret_names: List[str] = Field(default_factory=list)
    tenant_id: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[SecretStr] = None

    @property
    def resolved_vault_url(self) -> Optional[str]:
        """Full vault URL, derived from the vault name when not given."""
        if self.vault_url:
            return self.vault_url.rstrip("/")
        if self.vault_name:
            return f"https://{self.vault_name}.vault.azure.net"
        return None

    @property
    def service_principal_configured(self) -> bool:
        return bool(self.tenant_id and self.client_id and self.client_secret)

    @classmethod
    def from_env(
        cls, environ: Optional[Mapping[str, str]] = None
    ) -> "AzureKeyVaultSettings":
        environ = os.environ if environ is None else environ
        return cls(
            enabled=env_flag(environ.get("AZURE_KEYVAULT_ENABLED")),
            prefix=environ.get("AZURE_SECRET_PREFIX", ""),
            vault_name=_get(environ, "AZURE_KEYVAULT_NAME"),
            vault_url=_get(environ, "AZURE_KEYVAULT_URL"),
            secret_names=env_list(environ.get("AZURE_SECRET_NAMES")),
            tenant_id=_get(environ, "AZURE_TENANT_ID"),
            client_id=_get(environ, "AZURE_CLIENT_ID"),
            client_secret=_secret(environ, "AZURE_CLIENT_SECRET"),
        )


class GCPSecretsSettings(ProviderSettings):
    """GCP Secret Manager settings."""

    project_id: Optional[str] = None
    secret_names: List[str] = Field(default_factory=list)
    version: str = "latest"
    service_account_key: Optional[Path] = None

    @classmethod
    def from_env(
        cls, environ: Optional[Mapping[str, str]] = None
    ) -> "GCPSecretsSettings":
        environ = os.environ if environ is None else environ
        key_path = _get(environ, "GCP_SERVICE_ACCOUNT_KEY")
        return cls(
            enabled=env_flag(environ.get("GCP_SECRETS_ENABLED")),
            prefix=environ.get("GCP_SECRET_PREFIX", ""),
            project_id=_get(environ, "GCP_PROJECT_ID"),
            secret_names=env_list(environ.get("GCP_SECRET_NAMES")),
            version=_get(environ, "GCP_SECRET_VERSION") or "latest",
            service_account_key=Path(key_path) if key_path else None,
        )
