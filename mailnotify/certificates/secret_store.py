"""Secret store clients used to fetch intermediate certificate bundles."""

import logging
from typing import Dict, Optional, Protocol

import boto3

logger = logging.getLogger(__name__)


class SecretStore(Protocol):
    """Anything that can return a secret's string payload by identifier."""

    def get_secret_string(self, secret_id: str) -> Optional[str]:
        ...


class SecretsManagerStore:
    """AWS Secrets Manager backed secret store.

    The boto3 client is created lazily so that constructing the store (for
    example while wiring the CLI) never touches AWS credentials.
    """

    def __init__(
        self,
        client=None,
        region_name: Optional[str] = None,
        endpoint_url: Optional[str] = None,
    ):
        """Initialize the store.

        Args:
            client: Pre-built ``secretsmanager`` client (for mocking)
            region_name: AWS region (falls back to the boto3 default chain)
            endpoint_url: Custom endpoint, e.g. for localstack
        """
        self._client = client
        self.region_name = region_name
        self.endpoint_url = endpoint_url

    @property
    def client(self):
        if self._client is None:
            logger.debug(f"Creating Secrets Manager client (region={self.region_name or 'default'})")
            self._client = boto3.client(
                "secretsmanager",
                region_name=self.region_name,
                endpoint_url=self.endpoint_url,
            )
        return self._client

    def get_secret_string(self, secret_id: str) -> Optional[str]:
        """Fetch the ``SecretString`` of a secret.

        Returns:
            The secret string, or None when the secret only holds binary data

        Raises:
            botocore.exceptions.ClientError: If the secret cannot be read
        """
        response = self.client.get_secret_value(SecretId=secret_id)
        return response.get("SecretString")


class InMemorySecretStore:
    """Dictionary-backed secret store for tests and local runs."""

    def __init__(self, secrets: Optional[Dict[str, str]] = None):
        self.secrets = dict(secrets or {})

    def get_secret_string(self, secret_id: str) -> Optional[str]:
        if secret_id not in self.secrets:
            raise KeyError(f"Secret '{secret_id}' not found")
        return self.secrets[secret_id]
