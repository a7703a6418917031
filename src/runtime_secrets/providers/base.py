"""Provider contract shared by every secret backend."""

import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Iterable, MutableMapping, Optional, Type

from ..config import ProviderSettings
from ..exceptions import (
    DependencyMissingError,
    ProviderNotConfiguredError,
    SecretLoaderError,
    get_error_code,
)

logger = logging.getLogger(__name__)


class LoadStatus(IntEnum):
    """Result of ``SecretProvider.load()``."""

    SUCCESS = 0
    NOT_CONFIGURED = 1
    AUTH_FAILURE = 2


class HealthStatus(str, Enum):
    """Result of a provider health probe."""

    DISABLED = "disabled"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


@dataclass(frozen=True)
class SecretRecord:
    """A secret resolved to the environment variable it will be exported as.

    The value is excluded from ``repr`` so records can never end up in logs
    or tracebacks by accident.
    """

    label: str
    env_var: str
    value: str = field(repr=False)


class SecretProvider(ABC):
    """Abstract base class for secret providers.

    Subclasses implement ``fetch_secrets`` and ``check_health`` and signal
    failures by raising ``SecretLoaderError`` subclasses. ``load`` and
    ``health_check`` wrap those into the status codes the orchestrator uses,
    so no provider failure escapes to the caller.
    """

    provider_id: str = "base"
    display_name: str = "base"
    settings_cls: Type[ProviderSettings] = ProviderSettings

    def __init__(
        self,
        settings: ProviderSettings,
        environ: Optional[MutableMapping[str, str]] = None,
    ) -> None:
        self.settings = settings
        self.environ = os.environ if environ is None else environ

    @classmethod
    def from_env(
        cls,
        environ: Optional[MutableMapping[str, str]] = None,
        **kwargs: Any,
    ) -> "SecretProvider":
        """Build the provider from environment variables.

        Args:
            environ: Environment mapping to read settings from and export into
            **kwargs: Extra constructor arguments (client factories in tests)

        Returns:
            Configured provider instance
        """
        environ = os.environ if environ is None else environ
        return cls(cls.settings_cls.from_env(environ), environ=environ, **kwargs)

    @property
    def enabled(self) -> bool:
        return self.settings.enabled

    @abstractmethod
    def fetch_secrets(self) -> Iterable[SecretRecord]:
        """Retrieve secrets from the backend.

        Raises:
            SecretLoaderError: On configuration, authentication or transport failure
        """

    @abstractmethod
    def check_health(self) -> bool:
        """Probe connectivity and authentication without reading secret values."""

    def load(self) -> LoadStatus:
        """Fetch secrets and export them into the environment.

        Returns:
            LoadStatus.SUCCESS when secrets were exported or the provider is
            disabled, NOT_CONFIGURED for missing settings or dependencies,
            AUTH_FAILURE for authentication and transport failures
        """
        if not self.enabled:
            logger.info(
                "%s integration disabled",
                self.display_name,
                extra={"provider": self.provider_id},
            )
            return LoadStatus.SUCCESS

        try:
            records = list(self.fetch_secrets())
        except SecretLoaderError as exc:
            self._log_failure(exc)
            return LoadStatus(exc.status)
        except Exception as exc:
            # Third-party error text may embed response bodies; log the type only.
            logger.warning(
                "%s failed with unexpected %s",
                self.display_name,
                type(exc).__name__,
                extra={
                    "provider": self.provider_id,
                    "event_type": "load_failed",
                    "extra_data": {"error_code": get_error_code(exc)},
                },
            )
            return LoadStatus.AUTH_FAILURE

        count = self.export(records)
        logger.info(
            "Loaded %d variable(s) from %s",
            count,
            self.display_name,
            extra={"provider": self.provider_id, "event_type": "load_succeeded"},
        )
        return LoadStatus.SUCCESS

    def export(self, records: Iterable[SecretRecord]) -> int:
        """Write records into the environment mapping, later writes win.

        Returns:
            Number of variables exported
        """
        count = 0
        for record in records:
            if not record.value:
                logger.info(
                    "Skipping empty value for %s",
                    record.env_var,
                    extra={"provider": self.provider_id},
                )
                continue
            if not _exportable(record):
                logger.warning(
                    "Skipping %r: not a valid environment variable name or value",
                    record.env_var,
                    extra={"provider": self.provider_id, "event_type": "export_skipped"},
                )
                continue
            try:
                self.environ[record.env_var] = record.value
            except ValueError:
                logger.warning(
                    "Skipping %r: rejected by the environment",
                    record.env_var,
                    extra={"provider": self.provider_id, "event_type": "export_skipped"},
                )
                continue
            count += 1
            logger.info(
                "Exported %s",
                record.env_var,
                extra={"provider": self.provider_id},
            )
        return count

    def health(self) -> HealthStatus:
        """Run the health probe and classify the result."""
        if not self.enabled:
            return HealthStatus.DISABLED
        try:
            healthy = self.check_health()
        except SecretLoaderError as exc:
            self._log_failure(exc)
            healthy = False
        except Exception as exc:
            logger.warning(
                "%s health check failed with unexpected %s",
                self.display_name,
                type(exc).__name__,
                extra={
                    "provider": self.provider_id,
                    "extra_data": {"error_code": get_error_code(exc)},
                },
            )
            healthy = False
        return HealthStatus.HEALTHY if healthy else HealthStatus.UNHEALTHY

    def health_check(self) -> bool:
        """True when healthy or disabled, False when unreachable or misconfigured."""
        return self.health() is not HealthStatus.UNHEALTHY

    def _log_failure(self, exc: SecretLoaderError) -> None:
        extra = {
            "provider": self.provider_id,
            "event_type": "load_failed",
            "extra_data": {"error_code": get_error_code(exc)},
        }
        if isinstance(exc, DependencyMissingError) or not isinstance(
            exc, ProviderNotConfiguredError
        ):
            logger.warning("%s: %s", self.display_name, exc.message, extra=extra)
        else:
            logger.info("%s: %s", self.display_name, exc.message, extra=extra)


def _exportable(record: SecretRecord) -> bool:
    """Whether the OS environment can hold this name and value."""
    name = record.env_var
    return bool(name) and "=" not in name and "\0" not in name and "\0" not in record.value
