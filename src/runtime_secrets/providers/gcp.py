"""Google Cloud Secret Manager provider."""

import logging
import shutil
import subprocess
from typing import Any, Callable, Dict, List, Optional

import google.auth
import requests
from google.api_core.exceptions import (
    GoogleAPICallError,
    NotFound,
    PermissionDenied,
    Unauthenticated,
)
from google.auth.exceptions import DefaultCredentialsError, GoogleAuthError
from google.cloud import secretmanager
from google.oauth2 import service_account

from ..config import GCPSecretsSettings
from ..exceptions import (
    ProviderAuthenticationError,
    ProviderNotConfiguredError,
    ProviderTransportError,
)
from ..naming import normalize_env_var_name
from .base import SecretProvider, SecretRecord

logger = logging.getLogger(__name__)

METADATA_PROJECT_URL = (
    "http://metadata.google.internal/computeMetadata/v1/project/project-id"
)
METADATA_TIMEOUT_SECONDS = 2
CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"


class GCPSecretManagerProvider(SecretProvider):
    """Load secrets from Google Cloud Secret Manager.

    Credentials come from ``GCP_SERVICE_ACCOUNT_KEY`` when set, otherwise
    from Application Default Credentials (gcloud session, Workload Identity,
    GCE metadata).
    """

    provider_id = "gcp"
    display_name = "GCP Secret Manager"
    settings_cls = GCPSecretsSettings

    settings: GCPSecretsSettings

    def __init__(
        self,
        settings: GCPSecretsSettings,
        environ=None,
        client: Optional[Any] = None,
        credentials: Optional[Any] = None,
        http: Optional[Any] = None,
        runner: Optional[Callable[..., subprocess.CompletedProcess]] = None,
    ) -> None:
        super().__init__(settings, environ=environ)
        self._client = client
        self._credentials = credentials
        self._http = http or requests
        self._runner = runner or subprocess.run
        self._project_id: Optional[str] = None

    # -- project id resolution ---------------------------------------------

    def resolve_project_id(self) -> str:
        """Resolve the project: GCP_PROJECT_ID, then gcloud config, then metadata server.

        Raises:
            ProviderNotConfiguredError: If no source yields a project id
        """
        if self._project_id:
            return self._project_id
        project_id = (
            self.settings.project_id
            or self._project_from_gcloud()
            or self._project_from_metadata()
        )
        if not project_id:
            raise ProviderNotConfiguredError(
                "GCP project ID not found. Set GCP_PROJECT_ID or configure a gcloud default project."
            )
        self._project_id = project_id
        return project_id

    def _project_from_gcloud(self) -> Optional[str]:
        gcloud = shutil.which("gcloud")
        if not gcloud:
            return None
        try:
            result = self._runner(
                [gcloud, "config", "get-value", "project"],
                capture_output=True,
                text=True,
                check=False,
                timeout=30,
            )
        except (OSError, subprocess.SubprocessError):
            return None
        value = (result.stdout or "").strip()
        if result.returncode != 0 or not value or value == "(unset)":
            return None
        return value

    def _project_from_metadata(self) -> Optional[str]:
        try:
            response = self._http.get(
                METADATA_PROJECT_URL,
                headers={"Metadata-Flavor": "Google"},
                timeout=METADATA_TIMEOUT_SECONDS,
            )
        except requests.exceptions.RequestException:
            return None
        if response.status_code != 200:
            return None
        return response.text.strip() or None

    # -- authentication ------------------------------------------------------

    def get_credentials(self) -> Any:
        """Load credentials from the key file or Application Default Credentials.

        Raises:
            ProviderAuthenticationError: If the key file is missing or unusable,
                or no default credentials are available
        """
        if self._credentials is not None:
            return self._credentials

        key_path = self.settings.service_account_key
        if key_path is not None:
            if not key_path.is_file():
                raise ProviderAuthenticationError(
                    f"Service account key file not found: {key_path}"
                )
            logger.info(
                "Authenticating with service account key %s",
                key_path,
                extra={"provider": self.provider_id},
            )
            try:
                self._credentials = service_account.Credentials.from_service_account_file(
                    str(key_path), scopes=[CLOUD_PLATFORM_SCOPE]
                )
            except (ValueError, GoogleAuthError) as exc:
                raise ProviderAuthenticationError(
                    f"Failed to load service account key ({type(exc).__name__})"
                ) from exc
            return self._credentials

        try:
            self._credentials, _ = google.auth.default(scopes=[CLOUD_PLATFORM_SCOPE])
        except DefaultCredentialsError as exc:
            raise ProviderAuthenticationError(
                "No active GCP authentication found. Configure a service account, ADC or Workload Identity."
            ) from exc
        logger.info("Using Application Default Credentials", extra={"provider": self.provider_id})
        return self._credentials

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = secretmanager.SecretManagerServiceClient(
                credentials=self.get_credentials()
            )
        return self._client

    # -- provider contract -----------------------------------------------------

    def fetch_secrets(self) -> List[SecretRecord]:
        client = self.client
        project_id = self.resolve_project_id()
        logger.info("Using GCP project %s", project_id, extra={"provider": self.provider_id})

        names = self.settings.secret_names or self.list_secret_names()
        records: List[SecretRecord] = []
        for name in names:
            value = self._access_secret(client, project_id, name)
            if value:
                records.append(
                    SecretRecord(
                        label=name,
                        env_var=normalize_env_var_name(
                            self.settings.prefix, short_secret_name(name)
                        ),
                        value=value,
                    )
                )
        return records

    def check_health(self) -> bool:
        project_id = self.resolve_project_id()
        try:
            next(
                iter(
                    self.client.list_secrets(
                        request={"parent": f"projects/{project_id}", "page_size": 1}
                    )
                ),
                None,
            )
        except GoogleAPICallError as exc:
            logger.warning(
                "GCP Secret Manager access check failed (%s)",
                type(exc).__name__,
                extra={"provider": self.provider_id},
            )
            return False
        logger.info(
            "GCP Secret Manager is accessible (project: %s)",
            project_id,
            extra={"provider": self.provider_id},
        )
        return True

    # -- secret inspection -----------------------------------------------------

    def list_secret_names(self) -> List[str]:
        """List the short names of every secret in the project."""
        project_id = self.resolve_project_id()
        logger.info("Listing all secrets in project", extra={"provider": self.provider_id})
        try:
            return [
                short_secret_name(secret.name)
                for secret in self.client.list_secrets(
                    request={"parent": f"projects/{project_id}"}
                )
            ]
        except (PermissionDenied, Unauthenticated) as exc:
            raise ProviderAuthenticationError(
                f"GCP rejected credentials while listing secrets ({type(exc).__name__})"
            ) from exc
        except GoogleAPICallError as exc:
            raise ProviderTransportError(
                f"Failed to list secrets ({type(exc).__name__})"
            ) from exc

    def get_secret_metadata(self, secret_name: str) -> Dict[str, Any]:
        """Describe a secret without reading any of its versions.

        Returns:
            Dictionary with name, create_time, labels, replication and etag
        """
        if not secret_name:
            raise ProviderNotConfiguredError("get_secret_metadata requires a secret name")
        project_id = self.resolve_project_id()
        logger.info("Retrieving metadata for %s", secret_name, extra={"provider": self.provider_id})
        try:
            secret = self.client.get_secret(
                request={"name": f"projects/{project_id}/secrets/{secret_name}"}
            )
        except GoogleAPICallError as exc:
            raise ProviderTransportError(
                f"Failed to describe {secret_name} ({type(exc).__name__})"
            ) from exc
        return {
            "name": secret.name,
            "create_time": _timestamp(secret.create_time),
            "labels": dict(secret.labels),
            "replication": "automatic" if _has_field(secret.replication, "automatic") else "user_managed",
            "etag": secret.etag,
        }

    def list_secret_versions(self, secret_name: str) -> List[Dict[str, Any]]:
        """List versions of a secret (name, state, create_time); never payloads."""
        if not secret_name:
            raise ProviderNotConfiguredError("list_secret_versions requires a secret name")
        project_id = self.resolve_project_id()
        logger.info("Listing versions for %s", secret_name, extra={"provider": self.provider_id})
        try:
            versions = self.client.list_secret_versions(
                request={"parent": f"projects/{project_id}/secrets/{secret_name}"}
            )
            return [
                {
                    "name": version.name,
                    "state": getattr(version.state, "name", str(version.state)),
                    "create_time": _timestamp(version.create_time),
                }
                for version in versions
            ]
        except GoogleAPICallError as exc:
            raise ProviderTransportError(
                f"Failed to list versions of {secret_name} ({type(exc).__name__})"
            ) from exc

    def _access_secret(self, client: Any, project_id: str, name: str) -> Optional[str]:
        if name.startswith("projects/"):
            resource = f"{name}/versions/{self.settings.version}"
        else:
            resource = f"projects/{project_id}/secrets/{name}/versions/{self.settings.version}"
        logger.info(
            "Retrieving %s (version: %s)",
            name,
            self.settings.version,
            extra={"provider": self.provider_id},
        )
        try:
            response = client.access_secret_version(request={"name": resource})
        except (PermissionDenied, Unauthenticated) as exc:
            raise ProviderAuthenticationError(
                f"GCP rejected credentials while reading {name} ({type(exc).__name__})"
            ) from exc
        except NotFound:
            logger.warning("Secret %s not found", name, extra={"provider": self.provider_id})
            return None
        except GoogleAPICallError as exc:
            logger.warning(
                "Failed to retrieve %s (%s)",
                name,
                type(exc).__name__,
                extra={"provider": self.provider_id},
            )
            return None

        data = response.payload.data
        if isinstance(data, bytes):
            try:
                return data.decode("utf-8")
            except UnicodeDecodeError:
                logger.warning(
                    "Secret %s is not valid UTF-8 text, skipping",
                    name,
                    extra={"provider": self.provider_id},
                )
                return None
        return str(data)


def _timestamp(value: Any) -> Optional[str]:
    if value is None:
        return None
    isoformat = getattr(value, "isoformat", None)
    return isoformat() if callable(isoformat) else str(value)


def _has_field(message: Any, name: str) -> bool:
    try:
        return name in message
    except TypeError:
        return bool(getattr(message, name, None))


def short_secret_name(name: str) -> str:
    """``projects/p/secrets/db-pass`` -> ``db-pass``; short names pass through."""
    return name.rsplit("/", 1)[-1]
