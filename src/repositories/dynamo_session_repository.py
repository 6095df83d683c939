"""
DynamoDB Repository for upload sessions.
Stores one item per session with a native TTL attribute and an owner index.
"""
import logging
from typing import List, Optional
import boto3
from botocore.exceptions import ClientError
from src.core import config
from src.core.exceptions import (
    ConcurrentUpdateException,
    DynamoDBException,
    MediaUploadException,
    SessionNotFoundException
)
from src.models.upload_session import TERMINAL_STATUSES, UploadSession
from src.repositories.session_repository import SessionMutator, SessionRepository

logger = logging.getLogger(__name__)

OWNER_INDEX_NAME = 'OwnerIndex'
MAX_UPDATE_ATTEMPTS = 5


class DynamoSessionRepository(SessionRepository):
    """
    Repository for upload session DynamoDB operations.

    Table layout:
        session_id (HASH)       - partition key
        owner_id                - HASH key of the OwnerIndex GSI
        expires_at              - epoch seconds, configured as the table TTL attribute
        version                 - optimistic concurrency counter
    """

    def __init__(self, table_name: Optional[str] = None, ttl_seconds: Optional[int] = None):
        super().__init__(ttl_seconds if ttl_seconds is not None else config.settings.session_ttl_seconds)
        self.dynamodb = boto3.resource('dynamodb', region_name=config.settings.aws_region)
        self.table = self.dynamodb.Table(table_name or config.settings.upload_sessions_table_name)

    def create(self, session: UploadSession) -> None:
        """
        Create new upload session record.

        Args:
            session: UploadSession domain model

        Raises:
            DynamoDBException: If the id already exists or the write fails
        """
        try:
            self.table.put_item(
                Item=self._session_to_item(session),
                ConditionExpression='attribute_not_exists(session_id)'
            )
        except ClientError as e:
            raise DynamoDBException(f"Failed to create upload session: {str(e)}") from e
        except Exception as e:
            raise DynamoDBException(f"Unexpected error creating upload session: {str(e)}") from e

    def get_by_id(self, session_id: str) -> Optional[UploadSession]:
        """
        Retrieve upload session by ID.

        DynamoDB deletes expired items lazily, so expiry is checked here too.

        Args:
            session_id: Session identifier

        Returns:
            UploadSession object or None if not found or expired

        Raises:
            DynamoDBException: If query fails
        """
        try:
            item = self._get_item(session_id)
            if item is None:
                return None
            return self._item_to_session(item)
        except ClientError as e:
            raise DynamoDBException(f"Failed to get upload session: {str(e)}") from e
        except Exception as e:
            raise DynamoDBException(f"Unexpected error getting upload session: {str(e)}") from e

    def update(self, session_id: str, mutator: SessionMutator) -> UploadSession:
        """
        Read-modify-write one session with a conditional put on its version.

        Args:
            session_id: Session identifier
            mutator: Callable that mutates the loaded session in place

        Returns:
            The session as written

        Raises:
            SessionNotFoundException: If the session is unknown or expired
            ConcurrentUpdateException: If every attempt lost a write race
            DynamoDBException: If the update fails
        """
        try:
            for attempt in range(1, MAX_UPDATE_ATTEMPTS + 1):
                item = self._get_item(session_id)
                if item is None:
                    raise SessionNotFoundException(f"Upload session '{session_id}' not found or expired")

                expected_version = int(item.get('version', 0))
                session = self._apply_mutator(item, mutator)

                try:
                    self.table.put_item(
                        Item=self._session_to_item(session),
                        ConditionExpression='#version = :expected',
                        ExpressionAttributeNames={'#version': 'version'},
                        ExpressionAttributeValues={':expected': expected_version}
                    )
                    return session
                except ClientError as e:
                    if e.response.get('Error', {}).get('Code') != 'ConditionalCheckFailedException':
                        raise
                    logger.info("Version conflict on session %s (attempt %d), reloading", session_id, attempt)

            raise ConcurrentUpdateException(
                f"Upload session '{session_id}' changed concurrently {MAX_UPDATE_ATTEMPTS} times"
            )

        except MediaUploadException:
            raise
        except ClientError as e:
            raise DynamoDBException(f"Failed to update upload session: {str(e)}") from e
        except Exception as e:
            raise DynamoDBException(f"Unexpected error updating upload session: {str(e)}") from e

    def delete(self, session_id: str) -> None:
        """
        Delete upload session record.

        Raises:
            DynamoDBException: If delete fails
        """
        try:
            self.table.delete_item(Key={'session_id': session_id})
        except ClientError as e:
            raise DynamoDBException(f"Failed to delete upload session: {str(e)}") from e

    def list_by_owner(self, owner_id: str) -> List[UploadSession]:
        """
        List all unexpired sessions for an owner using the OwnerIndex GSI.

        Raises:
            DynamoDBException: If query fails
        """
        try:
            query_kwargs = {
                'IndexName': OWNER_INDEX_NAME,
                'KeyConditionExpression': 'owner_id = :owner',
                'ExpressionAttributeValues': {':owner': owner_id}
            }
            items = self._collect_pages(self.table.query, query_kwargs)
            sessions = [self._item_to_session(item) for item in items if not self._is_expired(item)]
            return sorted(sessions, key=lambda s: s.created_at)

        except ClientError as e:
            raise DynamoDBException(f"Failed to query upload sessions: {str(e)}") from e
        except Exception as e:
            raise DynamoDBException(f"Unexpected error querying upload sessions: {str(e)}") from e

    def list_active(self) -> List[UploadSession]:
        """
        List all unexpired, non-terminal sessions.

        Raises:
            DynamoDBException: If scan fails
        """
        try:
            terminal = sorted(status.value for status in TERMINAL_STATUSES)
            values = {f":t{i}": value for i, value in enumerate(terminal)}
            scan_kwargs = {
                'FilterExpression': f"NOT #status IN ({', '.join(values)})",
                'ExpressionAttributeNames': {'#status': 'status'},
                'ExpressionAttributeValues': values
            }
            items = self._collect_pages(self.table.scan, scan_kwargs)
            return [self._item_to_session(item) for item in items if not self._is_expired(item)]

        except ClientError as e:
            raise DynamoDBException(f"Failed to scan upload sessions: {str(e)}") from e
        except Exception as e:
            raise DynamoDBException(f"Unexpected error scanning upload sessions: {str(e)}") from e

    def _get_item(self, session_id: str) -> Optional[dict]:
        response = self.table.get_item(Key={'session_id': session_id}, ConsistentRead=True)
        item = response.get('Item')
        if item is None or self._is_expired(item):
            return None
        return item

    @staticmethod
    def _collect_pages(operation, kwargs: dict) -> List[dict]:
        """Follow LastEvaluatedKey until the result set is exhausted."""
        items = []
        while True:
            response = operation(**kwargs)
            items.extend(response.get('Items', []))
            last_key = response.get('LastEvaluatedKey')
            if not last_key:
                return items
            kwargs = dict(kwargs, ExclusiveStartKey=last_key)
