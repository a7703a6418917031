"""Provider identity, the static provider table and identifier validation.

Provider names come from configuration (``SECRET_LOADER_PRIORITY``) and are
parsed exactly once into a ``ProviderId``. Every lookup after that is keyed by
the enum, never by the raw string.
"""

import logging
import os
import re
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, MutableMapping, Optional, Tuple, Type

from pydantic import ValidationError

from .exceptions import InvalidProviderError, UnknownProviderError
from .providers import (
    AWSSecretsManagerProvider,
    AzureKeyVaultProvider,
    DockerSecretsProvider,
    GCPSecretManagerProvider,
    HashicorpVaultProvider,
    OnePasswordProvider,
    SecretProvider,
)

logger = logging.getLogger(__name__)

_PROVIDER_NAME = re.compile(r"^[a-z0-9-]+$")


class ProviderId(str, Enum):
    """Canonical provider identifiers."""

    DOCKER = "docker"
    ONEPASSWORD = "1password"
    VAULT = "vault"
    AWS = "aws"
    AZURE = "azure"
    GCP = "gcp"


@dataclass(frozen=True)
class ProviderDescriptor:
    """Static description of one provider."""

    provider_id: ProviderId
    aliases: Tuple[str, ...]
    adapter: Type[SecretProvider]
    enable_flag: str


PROVIDERS: Mapping[ProviderId, ProviderDescriptor] = MappingProxyType(
    {
        ProviderId.DOCKER: ProviderDescriptor(
            ProviderId.DOCKER, ("docker-secrets",), DockerSecretsProvider, "DOCKER_SECRETS_ENABLED"
        ),
        ProviderId.ONEPASSWORD: ProviderDescriptor(
            ProviderId.ONEPASSWORD, ("op",), OnePasswordProvider, "OP_ENABLED"
        ),
        ProviderId.VAULT: ProviderDescriptor(
            ProviderId.VAULT, ("hashicorp",), HashicorpVaultProvider, "VAULT_ENABLED"
        ),
        ProviderId.AWS: ProviderDescriptor(
            ProviderId.AWS, ("aws-secrets",), AWSSecretsManagerProvider, "AWS_SECRETS_ENABLED"
        ),
        ProviderId.AZURE: ProviderDescriptor(
            ProviderId.AZURE, ("azure-keyvault",), AzureKeyVaultProvider, "AZURE_KEYVAULT_ENABLED"
        ),
        ProviderId.GCP: ProviderDescriptor(
            ProviderId.GCP, ("gcp-secrets", "google"), GCPSecretManagerProvider, "GCP_SECRETS_ENABLED"
        ),
    }
)

# Canonical ids and aliases, all mapped to their ProviderId
PROVIDER_NAMES: Mapping[str, ProviderId] = MappingProxyType(
    {
        name: descriptor.provider_id
        for descriptor in PROVIDERS.values()
        for name in (descriptor.provider_id.value, *descriptor.aliases)
    }
)


def validate_provider_name(name: Optional[str]) -> bool:
    """Check that a provider name is safe to look up.

    Surrounding whitespace is trimmed first. The remainder must be non-empty
    and contain only lowercase letters, digits and hyphens, which rejects
    uppercase and shell metacharacters such as ``;``, ``$``, backtick and ``|``.

    Args:
        name: Provider name as configured

    Returns:
        True if the name may be looked up
    """
    if name is None:
        return False
    return bool(_PROVIDER_NAME.match(name.strip()))


def parse_provider_id(name: Optional[str]) -> ProviderId:
    """Validate a provider name and resolve aliases to the canonical id.

    Raises:
        InvalidProviderError: If the name fails validation
        UnknownProviderError: If the name is well formed but not registered
    """
    if not validate_provider_name(name):
        raise InvalidProviderError(
            f"Invalid provider name {name!r} (allowed: lowercase letters, digits, hyphens)"
        )
    key = name.strip()
    provider_id = PROVIDER_NAMES.get(key)
    if provider_id is None:
        raise UnknownProviderError(
            f"Unknown provider {key!r}. Supported providers: {sorted(PROVIDER_NAMES)}",
            details={"provider": key},
        )
    return provider_id


def build_provider(
    provider_id: ProviderId,
    environ: Optional[MutableMapping[str, str]] = None,
    registry: Optional[Mapping[ProviderId, ProviderDescriptor]] = None,
    **kwargs: Any,
) -> Optional[SecretProvider]:
    """Instantiate the provider registered for an already parsed id.

    Args:
        provider_id: Canonical provider id
        environ: Environment mapping the provider reads and exports into
        registry: Provider table (defaults to ``PROVIDERS``)
        **kwargs: Extra provider constructor arguments

    Returns:
        The configured provider, or None if the id is not in ``registry`` or
        the provider settings cannot be built
    """
    environ = os.environ if environ is None else environ
    registry = PROVIDERS if registry is None else registry

    descriptor = registry.get(provider_id)
    if descriptor is None:
        logger.warning(
            "Provider %s is not registered",
            provider_id.value,
            extra={"event_type": "unknown_provider"},
        )
        return None

    try:
        return descriptor.adapter.from_env(environ, **kwargs)
    except ValidationError as exc:
        logger.warning(
            "Invalid settings for provider %s (%d error(s))",
            provider_id.value,
            exc.error_count(),
            extra={"provider": provider_id.value},
        )
        return None


def source_provider(
    name: str,
    environ: Optional[MutableMapping[str, str]] = None,
    registry: Optional[Mapping[ProviderId, ProviderDescriptor]] = None,
    **kwargs: Any,
) -> Optional[SecretProvider]:
    """Parse ``name`` and instantiate its provider.

    Returns:
        The configured provider, or None if the name is invalid, unknown or
        the provider cannot be built
    """
    try:
        provider_id = parse_provider_id(name)
    except InvalidProviderError as exc:
        logger.error(exc.message, extra={"event_type": "invalid_provider"})
        return None
    except UnknownProviderError as exc:
        logger.warning(exc.message, extra={"event_type": "unknown_provider"})
        return None
    return build_provider(provider_id, environ=environ, registry=registry, **kwargs)
