"""1Password provider: Connect server REST API with ``op`` CLI fallback."""

import json
import logging
import re
import shutil
import subprocess
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import quote

import requests

from ..config import OnePasswordSettings
from ..exceptions import (
    DependencyMissingError,
    ProviderAuthenticationError,
    ProviderNotConfiguredError,
    ProviderTransportError,
    SecretLoaderError,
)
from ..naming import normalize_env_var_name
from .base import SecretProvider, SecretRecord

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT_SECONDS = 10
CLI_TIMEOUT_SECONDS = 60

# Connect vault ids are 26 alphanumerics
_VAULT_ID = re.compile(r"^[a-zA-Z0-9]{26}$")


class OnePasswordProvider(SecretProvider):
    """Load 1Password item fields and secret references.

    The Connect server is tried first when ``OP_CONNECT_HOST`` and
    ``OP_CONNECT_TOKEN`` are set. If it is not configured or fails, the
    ``op`` CLI is used with a service account token or an existing sign-in.
    Item and response JSON is parsed in memory and never logged.
    """

    provider_id = "1password"
    display_name = "1Password"
    settings_cls = OnePasswordSettings

    settings: OnePasswordSettings

    def __init__(
        self,
        settings: OnePasswordSettings,
        environ=None,
        session: Optional[Any] = None,
        runner: Optional[Callable[..., subprocess.CompletedProcess]] = None,
        which: Optional[Callable[[str], Optional[str]]] = None,
    ) -> None:
        super().__init__(settings, environ=environ)
        self._session = session
        self._runner = runner or subprocess.run
        self._which = which or shutil.which

    @property
    def session(self) -> Any:
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def fetch_secrets(self) -> List[SecretRecord]:
        connect_error: Optional[SecretLoaderError] = None
        if self.settings.connect_configured:
            try:
                return self.fetch_via_connect()
            except SecretLoaderError as exc:
                connect_error = exc
                logger.warning(
                    "1Password Connect failed (%s), falling back to CLI",
                    exc.error_code,
                    extra={"provider": self.provider_id},
                )

        op_path = self._which("op")
        if not op_path:
            if connect_error is not None:
                raise connect_error
            raise DependencyMissingError(
                "1Password CLI 'op' not found and Connect is not configured"
            )
        return self.fetch_via_cli(op_path)

    def check_health(self) -> bool:
        if self.settings.connect_configured:
            try:
                self._connect_health()
            except SecretLoaderError:
                pass
            else:
                logger.info(
                    "1Password Connect server is accessible",
                    extra={"provider": self.provider_id},
                )
                return True

        op_path = self._which("op")
        if op_path:
            try:
                result = self._run_op(op_path, ["account", "get"])
            except ProviderTransportError:
                result = None
            if result is not None and result.returncode == 0:
                logger.info("1Password CLI is authenticated", extra={"provider": self.provider_id})
                return True

        logger.warning("1Password is not accessible", extra={"provider": self.provider_id})
        return False

    # -- Connect server --------------------------------------------------------

    def fetch_via_connect(self) -> List[SecretRecord]:
        """Load the configured items through the Connect REST API.

        Raises:
            ProviderTransportError: If the server is unreachable or unhealthy
            ProviderAuthenticationError: If the token is rejected
            ProviderNotConfiguredError: If items are requested without a vault
        """
        logger.info(
            "Using 1Password Connect server at %s",
            self.settings.connect_host,
            extra={"provider": self.provider_id},
        )
        self._connect_health()

        if not self.settings.item_names:
            logger.info(
                "No items requested, set OP_ITEM_NAMES to load item fields",
                extra={"provider": self.provider_id},
            )
            return []

        vault_id = self._resolve_vault_id()
        records: List[SecretRecord] = []
        for item_name in self.settings.item_names:
            fields = self._connect_item_fields(vault_id, item_name)
            if fields is not None:
                records.extend(self._field_records(fields))
        return records

    def _connect_health(self) -> None:
        try:
            response = self.session.get(
                f"{self.settings.connect_host}/health",
                timeout=CONNECT_TIMEOUT_SECONDS,
            )
        except requests.exceptions.RequestException as exc:
            raise ProviderTransportError(
                f"Failed to connect to 1Password Connect server ({type(exc).__name__})"
            ) from exc
        if response.status_code != 200:
            raise ProviderTransportError(
                f"1Password Connect health check failed (HTTP {response.status_code})"
            )

    def _connect_get(self, path: str, params: Optional[Dict[str, str]] = None) -> Any:
        token = self.settings.connect_token.get_secret_value() if self.settings.connect_token else ""
        try:
            response = self.session.get(
                f"{self.settings.connect_host}{path}",
                headers={"Authorization": f"Bearer {token}"},
                params=params,
                timeout=CONNECT_TIMEOUT_SECONDS,
            )
        except requests.exceptions.RequestException as exc:
            raise ProviderTransportError(
                f"1Password Connect request failed ({type(exc).__name__})"
            ) from exc
        if response.status_code in (401, 403):
            raise ProviderAuthenticationError(
                f"1Password Connect rejected the token (HTTP {response.status_code})"
            )
        if not 200 <= response.status_code < 300:
            raise ProviderTransportError(
                f"1Password Connect request failed (HTTP {response.status_code})"
            )
        try:
            return response.json()
        except ValueError as exc:
            raise ProviderTransportError("1Password Connect returned invalid JSON") from exc

    def _resolve_vault_id(self) -> str:
        vault = self.settings.vault
        if not vault:
            raise ProviderNotConfiguredError(
                "OP_VAULT must be set to read items through 1Password Connect"
            )
        if _VAULT_ID.match(vault):
            return vault

        logger.info("Looking up vault id for %s", vault, extra={"provider": self.provider_id})
        vaults = self._connect_get("/v1/vaults")
        for entry in vaults if isinstance(vaults, list) else []:
            if isinstance(entry, dict) and entry.get("name") == vault and entry.get("id"):
                return entry["id"]
        raise ProviderNotConfiguredError(f"1Password vault {vault!r} not found")

    def _connect_item_fields(self, vault_id: str, item_name: str) -> Optional[List[Any]]:
        logger.info("Retrieving item %s", item_name, extra={"provider": self.provider_id})
        items_path = f"/v1/vaults/{quote(vault_id, safe='')}/items"
        try:
            matches = self._connect_get(
                items_path, params={"filter": f'title eq "{item_name}"'}
            )
            item_id = matches[0].get("id") if isinstance(matches, list) and matches else None
            if not item_id:
                logger.warning("Item %s not found", item_name, extra={"provider": self.provider_id})
                return None
            item = self._connect_get(f"{items_path}/{quote(item_id, safe='')}")
        except ProviderAuthenticationError:
            raise
        except ProviderTransportError as exc:
            logger.warning(
                "Failed to retrieve item %s (%s)",
                item_name,
                exc.message,
                extra={"provider": self.provider_id},
            )
            return None
        return item.get("fields") if isinstance(item, dict) else None

    # -- op CLI ------------------------------------------------------------------

    def fetch_via_cli(self, op_path: str) -> List[SecretRecord]:
        """Load secret references and item fields with the ``op`` CLI.

        Raises:
            ProviderAuthenticationError: If no service account token is set and
                there is no signed-in CLI session
        """
        if self.settings.service_account_token is not None:
            logger.info(
                "Using 1Password service account authentication",
                extra={"provider": self.provider_id},
            )
        else:
            result = self._run_op(op_path, ["account", "get"])
            if result.returncode != 0:
                raise ProviderAuthenticationError(
                    "Not authenticated with 1Password CLI. Set OP_SERVICE_ACCOUNT_TOKEN or run 'op signin'"
                )

        records: List[SecretRecord] = []
        for reference in self.settings.secret_references:
            record = self._read_reference(op_path, reference)
            if record is not None:
                records.append(record)

        for item_name in self.settings.item_names:
            args = ["item", "get", item_name, "--format=json"]
            if self.settings.vault:
                args.append(f"--vault={self.settings.vault}")
            logger.info("Retrieving item %s", item_name, extra={"provider": self.provider_id})
            try:
                result = self._run_op(op_path, args)
            except ProviderTransportError as exc:
                logger.warning(
                    "Failed to retrieve item %s (%s)",
                    item_name,
                    exc.message,
                    extra={"provider": self.provider_id},
                )
                continue
            if result.returncode != 0:
                logger.warning(
                    "Failed to retrieve item %s (op exit code %d)",
                    item_name,
                    result.returncode,
                    extra={"provider": self.provider_id},
                )
                continue
            try:
                item = json.loads(result.stdout)
            except ValueError:
                logger.warning(
                    "Could not parse item %s returned by op",
                    item_name,
                    extra={"provider": self.provider_id},
                )
                continue
            if isinstance(item, dict):
                records.extend(self._field_records(item.get("fields") or []))
        return records

    def _read_reference(self, op_path: str, reference: str) -> Optional[SecretRecord]:
        logger.info("Loading secret reference %s", reference, extra={"provider": self.provider_id})
        try:
            result = self._run_op(op_path, ["read", reference])
        except ProviderTransportError as exc:
            logger.warning(
                "Failed to read secret reference %s (%s)",
                reference,
                exc.message,
                extra={"provider": self.provider_id},
            )
            return None
        if result.returncode != 0:
            logger.warning(
                "Failed to read secret reference %s (op exit code %d)",
                reference,
                result.returncode,
                extra={"provider": self.provider_id},
            )
            return None

        # op://vault/item[/section]/field[?attribute=...]
        field_name = reference.split("?", 1)[0].rstrip("/").rsplit("/", 1)[-1]
        value = (result.stdout or "").rstrip("\n")
        return SecretRecord(
            label=field_name,
            env_var=normalize_env_var_name(self.settings.prefix, field_name),
            value=value,
        )

    def _run_op(self, op_path: str, args: List[str]) -> subprocess.CompletedProcess:
        env = dict(self.environ)
        if self.settings.service_account_token is not None:
            env["OP_SERVICE_ACCOUNT_TOKEN"] = self.settings.service_account_token.get_secret_value()
        try:
            return self._runner(
                [op_path, *args],
                capture_output=True,
                text=True,
                check=False,
                env=env,
                timeout=CLI_TIMEOUT_SECONDS,
            )
        except (OSError, subprocess.SubprocessError) as exc:
            raise ProviderTransportError(
                f"Failed to run 1Password CLI ({type(exc).__name__})"
            ) from exc

    def _field_records(self, fields: List[Any]) -> List[SecretRecord]:
        records = []
        for item_field in fields:
            if not isinstance(item_field, dict):
                continue
            label = item_field.get("label")
            value = item_field.get("value")
            if not label or value is None or value == "":
                continue
            records.append(
                SecretRecord(
                    label=label,
                    env_var=normalize_env_var_name(self.settings.prefix, label),
                    value=str(value),
                )
            )
        return records
