"""Secret loading orchestrator.

Runs every provider in the configured priority order. Providers are layered:
each one in the list is visited even after earlier ones succeeded, and a later
provider may overwrite variables exported by an earlier one.
"""

import logging
import os
from typing import Dict, List, Mapping, MutableMapping, Optional

from .config import LoaderSettings
from .exceptions import InvalidProviderError, UnknownProviderError
from .logging import ensure_logging
from .providers.base import HealthStatus, LoadStatus
from .registry import (
    PROVIDERS,
    ProviderDescriptor,
    ProviderId,
    build_provider,
    parse_provider_id,
)

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FATAL = 2

# Ordered provider names, validated one by one before dispatch
LoadPlan = List[str]


def parse_priority(priority: str) -> LoadPlan:
    """Split a comma separated priority string into a load plan.

    Empty segments are dropped. Whitespace-only segments are kept so that
    validation rejects them.
    """
    return [segment for segment in priority.split(",") if segment != ""]


def load_provider(
    provider_id: ProviderId,
    environ: Optional[MutableMapping[str, str]] = None,
    registry: Optional[Mapping[ProviderId, ProviderDescriptor]] = None,
) -> LoadStatus:
    """Run the load of an already parsed provider.

    Returns:
        The provider's LoadStatus; NOT_CONFIGURED if it cannot be built
    """
    provider = build_provider(provider_id, environ=environ, registry=registry)
    if provider is None:
        return LoadStatus.NOT_CONFIGURED

    logger.info(
        "Loading secrets from %s",
        provider.display_name,
        extra={"provider": provider.provider_id, "event_type": "load_started"},
    )
    return provider.load()


def load_provider_secrets(
    name: str,
    environ: Optional[MutableMapping[str, str]] = None,
    registry: Optional[Mapping[ProviderId, ProviderDescriptor]] = None,
) -> LoadStatus:
    """Validate ``name``, resolve it and run the provider's load.

    Returns:
        The provider's LoadStatus; NOT_CONFIGURED for invalid or unknown names
    """
    provider_id = _parse_or_log(name)
    if provider_id is None:
        return LoadStatus.NOT_CONFIGURED
    return load_provider(provider_id, environ=environ, registry=registry)


def _parse_or_log(name: str) -> Optional[ProviderId]:
    try:
        return parse_provider_id(name)
    except InvalidProviderError as exc:
        logger.error(exc.message, extra={"event_type": "invalid_provider"})
    except UnknownProviderError as exc:
        logger.warning(exc.message, extra={"event_type": "unknown_provider"})
    return None


def load_all_secrets(
    environ: Optional[MutableMapping[str, str]] = None,
    registry: Optional[Mapping[ProviderId, ProviderDescriptor]] = None,
) -> int:
    """Load secrets from every provider in ``SECRET_LOADER_PRIORITY``.

    Args:
        environ: Environment mapping to read configuration from and export
            secrets into (defaults to ``os.environ``)
        registry: Provider table (defaults to ``PROVIDERS``)

    Returns:
        EXIT_OK on success or when loading is disabled, EXIT_FATAL when
        ``SECRET_LOADER_FAIL_ON_ERROR`` is set and a provider name is invalid
        or a provider fails
    """
    environ = os.environ if environ is None else environ
    settings = LoaderSettings.from_env(environ)
    ensure_logging(settings.log_level)

    if not settings.enabled:
        logger.info("Secret loading disabled (SECRET_LOADER_ENABLED=false)")
        return EXIT_OK

    plan = parse_priority(settings.priority)
    logger.info(
        "Loading secrets from providers",
        extra={"event_type": "load_all_started", "extra_data": {"priority": plan}},
    )

    total = successful = failed = 0
    for name in plan:
        total += 1
        try:
            provider_id = parse_provider_id(name)
        except InvalidProviderError:
            failed += 1
            logger.error(
                "Invalid provider name %r in SECRET_LOADER_PRIORITY, skipping",
                name,
                extra={"event_type": "invalid_provider"},
            )
            if settings.fail_on_error:
                logger.error("Aborting secret loading (SECRET_LOADER_FAIL_ON_ERROR=true)")
                return EXIT_FATAL
            continue
        except UnknownProviderError as exc:
            logger.warning(exc.message, extra={"event_type": "unknown_provider"})
            status = LoadStatus.NOT_CONFIGURED
        else:
            status = load_provider(provider_id, environ=environ, registry=registry)

        if status is LoadStatus.SUCCESS:
            successful += 1
            continue

        failed += 1
        logger.warning(
            "Provider %s failed with status %d",
            name.strip(),
            int(status),
            extra={"provider": name.strip(), "event_type": "provider_failed"},
        )
        if settings.fail_on_error:
            logger.error("Aborting secret loading (SECRET_LOADER_FAIL_ON_ERROR=true)")
            return EXIT_FATAL

    logger.info(
        "Secret loading complete: %d provider(s), %d successful, %d failed",
        total,
        successful,
        failed,
        extra={
            "event_type": "load_all_completed",
            "extra_data": {"total": total, "successful": successful, "failed": failed},
        },
    )
    return EXIT_OK


def collect_provider_health(
    environ: Optional[MutableMapping[str, str]] = None,
    registry: Optional[Mapping[ProviderId, ProviderDescriptor]] = None,
) -> Dict[ProviderId, HealthStatus]:
    """Probe every registered provider, not just those in the priority list.

    Returns:
        Mapping of provider id to its HealthStatus
    """
    environ = os.environ if environ is None else environ
    registry = PROVIDERS if registry is None else registry

    results: Dict[ProviderId, HealthStatus] = {}
    for provider_id, descriptor in registry.items():
        provider = build_provider(provider_id, environ=environ, registry=registry)
        if provider is None:
            results[provider_id] = HealthStatus.UNHEALTHY
            continue
        status = provider.health()
        if status is HealthStatus.DISABLED:
            logger.info(
                "%s disabled (%s not set)",
                provider.display_name,
                descriptor.enable_flag,
                extra={"provider": provider_id.value},
            )
        results[provider_id] = status
    return results


def check_all_providers_health(
    environ: Optional[MutableMapping[str, str]] = None,
    registry: Optional[Mapping[ProviderId, ProviderDescriptor]] = None,
) -> int:
    """Run all health checks and log a summary. Always returns EXIT_OK."""
    environ = os.environ if environ is None else environ
    ensure_logging(LoaderSettings.from_env(environ).log_level)

    results = collect_provider_health(environ=environ, registry=registry)
    counts = {status: 0 for status in HealthStatus}
    for status in results.values():
        counts[status] += 1
    logger.info(
        "Health check complete: %d healthy, %d unhealthy, %d disabled",
        counts[HealthStatus.HEALTHY],
        counts[HealthStatus.UNHEALTHY],
        counts[HealthStatus.DISABLED],
        extra={
            "event_type": "health_completed",
            "extra_data": {pid.value: status.value for pid, status in results.items()},
        },
    )
    return EXIT_OK
