"""Load secrets from pluggable providers into the process environment at container start.

Supported providers:
- Docker/Compose file-mounted secrets
- 1Password (Connect server or ``op`` CLI)
- HashiCorp Vault
- AWS Secrets Manager
- Azure Key Vault
- Google Cloud Secret Manager

The main entry point is ``load_all_secrets()``, which runs every provider in
``SECRET_LOADER_PRIORITY`` order.
"""

__version__ = "1.0.0"

from .exceptions import SecretLoaderError
from .loader import (
    check_all_providers_health,
    collect_provider_health,
    load_all_secrets,
    load_provider,
    load_provider_secrets,
    parse_priority,
)
from .logging import ensure_logging, setup_logging
from .naming import normalize_env_var_name
from .providers import HealthStatus, LoadStatus, SecretProvider, SecretRecord
from .registry import (
    PROVIDERS,
    ProviderDescriptor,
    ProviderId,
    build_provider,
    parse_provider_id,
    source_provider,
    validate_provider_name,
)

__all__ = [
    "__version__",
    "load_all_secrets",
    "load_provider_secrets",
    "load_provider",
    "check_all_providers_health",
    "collect_provider_health",
    "parse_priority",
    "validate_provider_name",
    "parse_provider_id",
    "source_provider",
    "build_provider",
    "normalize_env_var_name",
    "ensure_logging",
    "setup_logging",
    "ProviderId",
    "ProviderDescriptor",
    "PROVIDERS",
    "SecretProvider",
    "SecretRecord",
    "LoadStatus",
    "HealthStatus",
    "SecretLoaderError",
]
