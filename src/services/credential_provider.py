"""
Credential provider for platform access tokens.
Tokens are issued and refreshed elsewhere; this side only reads them.
"""
import logging
import time
from abc import ABC, abstractmethod
from typing import Optional
import boto3
from botocore.exceptions import ClientError
from src.core import config
from src.core.exceptions import DynamoDBException
from src.models.upload_session import Platform

logger = logging.getLogger(__name__)


class CredentialProvider(ABC):
    """Supplies a valid bearer credential for a user on a platform."""

    @abstractmethod
    def get_valid_credential(self, owner_id: str, platform: Platform) -> Optional[str]:
        """Return a usable access token, or None if the user has none."""
        pass


class DynamoCredentialProvider(CredentialProvider):
    """
    Reads OAuth tokens written by the account-linking service.

    Table layout: owner_id (HASH), platform (RANGE), access_token,
    expires_at (epoch seconds, optional).
    """

    def __init__(self, table_name: Optional[str] = None):
        self.dynamodb = boto3.resource('dynamodb', region_name=config.settings.aws_region)
        self.table = self.dynamodb.Table(table_name or config.settings.platform_tokens_table_name)

    def get_valid_credential(self, owner_id: str, platform: Platform) -> Optional[str]:
        """
        Look up the stored token for owner_id on platform.

        Returns:
            The access token, or None if missing or expired

        Raises:
            DynamoDBException: If the lookup fails
        """
        try:
            response = self.table.get_item(Key={'owner_id': owner_id, 'platform': Platform(platform).value})
        except ClientError as e:
            raise DynamoDBException(f"Failed to read platform token: {str(e)}") from e

        item = response.get('Item')
        if not item or not item.get('access_token'):
            return None

        expires_at = item.get('expires_at')
        if expires_at is not None and int(expires_at) <= int(time.time()):
            logger.info("Stored %s token for owner %s has expired", Platform(platform).value, owner_id)
            return None

        return item['access_token']
