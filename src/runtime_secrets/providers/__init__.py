"""Secret provider implementations."""

from .aws import AWSSecretsManagerProvider
from .azure import AzureKeyVaultProvider
from .base import HealthStatus, LoadStatus, SecretProvider, SecretRecord
from .docker import DockerSecretsProvider
from .gcp import GCPSecretManagerProvider
from .onepassword import OnePasswordProvider
from .vault import HashicorpVaultProvider

__all__ = [
    "SecretProvider",
    "SecretRecord",
    "LoadStatus",
    "HealthStatus",
    "DockerSecretsProvider",
    "OnePasswordProvider",
    "HashicorpVaultProvider",
    "AWSSecretsManagerProvider",
    "AzureKeyVaultProvider",
    "GCPSecretManagerProvider",
]
