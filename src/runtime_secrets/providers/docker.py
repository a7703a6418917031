"""Docker Swarm / Compose file-mounted secrets."""

import logging
import os
import re
from pathlib import Path
from typing import List, Optional

from ..config import DockerSecretsSettings
from ..exceptions import ProviderNotConfiguredError
from ..naming import normalize_env_var_name
from .base import SecretProvider, SecretRecord

logger = logging.getLogger(__name__)

# Allow-list entries are joined to the secrets directory, so no separators.
_SAFE_SECRET_NAME = re.compile(r"^[a-zA-Z0-9._-]+$")
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_]")


class DockerSecretsProvider(SecretProvider):
    """Export every regular file in the secrets directory as a variable.

    The file name becomes the variable name (hyphens and dots turned into
    underscores, uppercased unless ``DOCKER_SECRETS_UPPERCASE=false``) and
    the stripped file content becomes the value.
    """

    provider_id = "docker"
    display_name = "Docker secrets"
    settings_cls = DockerSecretsSettings

    settings: DockerSecretsSettings

    @property
    def secrets_dir(self) -> Path:
        return self.settings.secrets_dir

    def secrets_available(self) -> bool:
        """True when the secrets directory exists, is readable and non-empty."""
        directory = self.secrets_dir
        if not directory.is_dir() or not os.access(directory, os.R_OK):
            return False
        return any(directory.iterdir())

    def fetch_secrets(self) -> List[SecretRecord]:
        if self.settings.mode == "auto":
            if not self.secrets_available():
                logger.info(
                    "Docker secrets not available in %s",
                    self.secrets_dir,
                    extra={"provider": self.provider_id},
                )
                return []
        elif not self.secrets_dir.is_dir():
            raise ProviderNotConfiguredError(
                f"Docker secrets directory not found: {self.secrets_dir}"
            )
        elif not os.access(self.secrets_dir, os.R_OK):
            raise ProviderNotConfiguredError(
                f"Docker secrets directory not readable: {self.secrets_dir}"
            )

        records: List[SecretRecord] = []
        for secret_file in self._candidate_files():
            record = self._read_secret(secret_file)
            if record is not None:
                records.append(record)
        return records

    def check_health(self) -> bool:
        if self.secrets_available():
            count = sum(1 for path in self.secrets_dir.iterdir() if path.is_file())
            logger.info(
                "Docker secrets available (%d found)",
                count,
                extra={"provider": self.provider_id},
            )
            return True
        logger.info("Docker secrets not available", extra={"provider": self.provider_id})
        return False

    def env_var_name(self, file_name: str) -> str:
        """Map a secret file name to its environment variable name."""
        label = file_name.replace(".", "_")
        if self.settings.uppercase:
            return normalize_env_var_name(self.settings.prefix, label)
        label = _UNSAFE_CHARS.sub("", re.sub(r"[- ]", "_", label))
        return f"{self.settings.prefix}{label}"

    def _candidate_files(self) -> List[Path]:
        if not self.settings.names:
            return sorted(self.secrets_dir.iterdir())

        files: List[Path] = []
        for name in self.settings.names:
            if not _SAFE_SECRET_NAME.match(name) or name in (".", ".."):
                logger.warning(
                    "Rejected secret name %r (must match [a-zA-Z0-9._-]+)",
                    name,
                    extra={"provider": self.provider_id},
                )
                continue
            files.append(self.secrets_dir / name)
        return files

    def _read_secret(self, secret_file: Path) -> Optional[SecretRecord]:
        name = secret_file.name
        if name.startswith("."):
            logger.debug("Skipping hidden file %s", name, extra={"provider": self.provider_id})
            return None
        if not secret_file.is_file():
            if self.settings.names:
                logger.warning(
                    "Secret file not found: %s",
                    name,
                    extra={"provider": self.provider_id},
                )
            return None

        try:
            content = secret_file.read_text(encoding="utf-8").strip()
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning(
                "Could not read secret file %s (%s)",
                name,
                type(exc).__name__,
                extra={"provider": self.provider_id},
            )
            return None

        if not content:
            logger.info("Secret file %s is empty, skipping", name, extra={"provider": self.provider_id})
            return None
        return SecretRecord(label=name, env_var=self.env_var_name(name), value=content)
