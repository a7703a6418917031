"""AWS Secrets Manager provider."""

import json
import logging
from typing import Any, Callable, Dict, List, Optional

import boto3
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    NoCredentialsError,
    PartialCredentialsError,
)

from ..config import AWSSecretsSettings
from ..exceptions import (
    ProviderAuthenticationError,
    ProviderNotConfiguredError,
    ProviderTransportError,
)
from .base import SecretProvider, SecretRecord

logger = logging.getLogger(__name__)

DEFAULT_REGION = "us-east-1"

AUTH_ERROR_CODES = frozenset(
    {
        "AccessDenied",
        "AccessDeniedException",
        "ExpiredTokenException",
        "InvalidClientTokenId",
        "InvalidSignatureException",
        "SignatureDoesNotMatch",
        "UnrecognizedClientException",
    }
)

CONFIG_ERROR_CODES = frozenset(
    {
        "InvalidParameterException",
        "InvalidRequestException",
        "ResourceNotFoundException",
    }
)


class AWSSecretsManagerProvider(SecretProvider):
    """Load one secret from AWS Secrets Manager.

    A JSON object payload expands into one variable per key; any other
    payload is exported as a single variable.
    """

    provider_id = "aws"
    display_name = "AWS Secrets Manager"
    settings_cls = AWSSecretsSettings

    settings: AWSSecretsSettings

    def __init__(
        self,
        settings: AWSSecretsSettings,
        environ=None,
        session_factory: Optional[Callable[[], Any]] = None,
    ) -> None:
        super().__init__(settings, environ=environ)
        self._session_factory = session_factory or boto3.session.Session
        self._session: Any = None

    @property
    def session(self) -> Any:
        if self._session is None:
            self._session = self._session_factory()
        return self._session

    def resolve_region(self) -> str:
        """Explicit AWS_REGION, else the SDK's configured default, else us-east-1."""
        if self.settings.region:
            return self.settings.region
        return self.session.region_name or DEFAULT_REGION

    def fetch_secrets(self) -> List[SecretRecord]:
        if not self.settings.secret_name:
            raise ProviderNotConfiguredError(
                "AWS_SECRET_NAME must be set when AWS_SECRETS_ENABLED=true"
            )
        region = self.resolve_region()
        logger.info(
            "Retrieving %s from AWS Secrets Manager (region: %s)",
            self.settings.secret_name,
            region,
            extra={"provider": self.provider_id},
        )
        client = self.session.client("secretsmanager", region_name=region)
        payload = self._get_secret_value(client)
        return self._to_records(payload)

    def check_health(self) -> bool:
        if not self.settings.secret_name:
            logger.warning(
                "AWS Secrets Manager enabled but AWS_SECRET_NAME not set",
                extra={"provider": self.provider_id},
            )
            return False
        sts = self.session.client("sts", region_name=self.resolve_region())
        try:
            sts.get_caller_identity()
        except (BotoCoreError, ClientError) as exc:
            logger.warning(
                "AWS authentication check failed (%s)",
                _error_code(exc),
                extra={"provider": self.provider_id},
            )
            return False
        logger.info("AWS authentication successful", extra={"provider": self.provider_id})
        return True

    def _get_secret_value(self, client: Any) -> str:
        params: Dict[str, str] = {"SecretId": self.settings.secret_name or ""}
        if self.settings.version_id:
            params["VersionId"] = self.settings.version_id
        elif self.settings.version_stage:
            params["VersionStage"] = self.settings.version_stage

        try:
            response = client.get_secret_value(**params)
        except (NoCredentialsError, PartialCredentialsError) as exc:
            raise ProviderAuthenticationError("No usable AWS credentials found") from exc
        except ClientError as exc:
            code = _error_code(exc)
            if code in AUTH_ERROR_CODES:
                raise ProviderAuthenticationError(
                    f"AWS authentication failed ({code}); check credentials and IAM permissions",
                    details={"aws_error_code": code},
                ) from exc
            if code in CONFIG_ERROR_CODES:
                raise ProviderNotConfiguredError(
                    f"AWS rejected secret request ({code})",
                    details={"aws_error_code": code},
                ) from exc
            raise ProviderTransportError(
                f"Failed to retrieve secret from AWS Secrets Manager ({code})",
                details={"aws_error_code": code},
            ) from exc
        except BotoCoreError as exc:
            raise ProviderTransportError(
                f"AWS Secrets Manager unreachable ({type(exc).__name__})"
            ) from exc

        secret_string = response.get("SecretString")
        if secret_string:
            return secret_string
        # boto3 already base64-decodes SecretBinary from the API response
        binary_secret = response.get("SecretBinary")
        if binary_secret:
            if isinstance(binary_secret, bytes):
                try:
                    return binary_secret.decode("utf-8")
                except UnicodeDecodeError as exc:
                    raise ProviderTransportError(
                        "AWS binary secret is not valid UTF-8 text"
                    ) from exc
            return str(binary_secret)
        raise ProviderTransportError("No secret data found in AWS Secrets Manager response")

    def _to_records(self, payload: str) -> List[SecretRecord]:
        prefix = self.settings.prefix
        try:
            parsed = json.loads(payload)
        except ValueError:
            parsed = None

        if isinstance(parsed, dict):
            records = []
            for key, value in parsed.items():
                if value is None:
                    continue
                text = value if isinstance(value, str) else json.dumps(value)
                records.append(SecretRecord(label=key, env_var=f"{prefix}{key}", value=text))
            return records

        env_var = self.settings.env_var or f"{prefix}SECRET"
        return [SecretRecord(label=self.settings.secret_name or env_var, env_var=env_var, value=payload)]


def _error_code(exc: Exception) -> str:
    if isinstance(exc, ClientError):
        return exc.response.get("Error", {}).get("Code", "Unknown")
    return type(exc).__name__
