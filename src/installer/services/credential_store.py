"""Credential resolution.

One reserved id resolves from the process environment and never touches
storage; every other id is a stored ``(id, secret)`` pair used as an AWS
access key / secret key.
"""

from __future__ import annotations

from collections.abc import Callable

from botocore.credentials import Credentials, EnvProvider

from shared.observability import get_logger

from ..errors import CredentialsNotFoundError, ValidationError
from ..repositories import PersistenceGateway

logger = get_logger(__name__)

DEFAULT_ENV_CREDENTIAL_ID = "aws_env"

EnvCredentialFactory = Callable[[], Credentials | None]


def load_env_credentials() -> Credentials | None:
    """Read AWS credentials from the environment (AWS_ACCESS_KEY_ID, ...)."""
    return EnvProvider().load()


class CredentialStore:
    """Resolves credential ids into botocore credentials."""

    def __init__(
        self,
        gateway: PersistenceGateway,
        env_credentials: EnvCredentialFactory = load_env_credentials,
        env_credential_id: str = DEFAULT_ENV_CREDENTIAL_ID,
    ):
        self.gateway = gateway
        self.env_credentials = env_credentials
        self.env_credential_id = env_credential_id

    async def save(self, credential_id: str, secret: str) -> None:
        """Store a credential pair.

        Raises:
            ValidationError: empty id/secret or the reserved environment id
            CredentialsAlreadyExistError: the id is already stored
        """
        if not credential_id or not secret:
            raise ValidationError("credential id and secret are required")
        if credential_id == self.env_credential_id:
            raise ValidationError(f"{credential_id!r} is reserved for environment credentials")
        await self.gateway.save_credentials(credential_id, secret)
        logger.info("Credentials stored", credential_id=credential_id)

    async def find(self, credential_id: str) -> Credentials:
        """Resolve ``credential_id``.

        Raises:
            CredentialsNotFoundError: nothing stored (or nothing in the environment)
        """
        if credential_id == self.env_credential_id:
            credentials = self.env_credentials()
            if credentials is None:
                logger.warning("No credentials found in environment")
                raise CredentialsNotFoundError(credential_id)
            return credentials

        secret = await self.gateway.find_secret(credential_id)
        return Credentials(access_key=credential_id, secret_key=secret, method="installer")
