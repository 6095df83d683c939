"""
S3 Repository for staged media.
Container-publish platforms pull the file from a URL, so the source is
staged in S3 and exposed through a presigned link for the session's lifetime.
"""
import logging
from typing import BinaryIO, Optional
import boto3
from botocore.exceptions import ClientError
from src.core import config
from src.core.exceptions import S3Exception

logger = logging.getLogger(__name__)


class StagingRepository:
    """Repository for S3 staging operations."""

    def __init__(self, bucket_name: Optional[str] = None):
        self.s3_client = boto3.client('s3', region_name=config.settings.aws_region)
        self.bucket_name = bucket_name or config.settings.staging_bucket_name

    def stage_file(
        self,
        file: BinaryIO,
        session_id: str,
        file_name: str,
        content_type: Optional[str] = None,
        position: int = 0
    ) -> str:
        """
        Upload a source file under the session's staging prefix.

        Args:
            file: File object to upload
            session_id: Owning session, used as the key prefix
            file_name: Original filename
            content_type: Optional MIME type
            position: Item position within the session; keeps same-named carousel items apart

        Returns:
            str: The S3 key of the staged object

        Raises:
            S3Exception: If upload fails
        """
        s3_key = self._staging_key(session_id, file_name, position)
        try:
            extra_args = {'ContentType': content_type} if content_type else None
            self.s3_client.upload_fileobj(file, self.bucket_name, s3_key, ExtraArgs=extra_args)
            logger.info("Staged %s at s3://%s/%s", file_name, self.bucket_name, s3_key)
            return s3_key
        except ClientError as e:
            raise S3Exception(f"Failed to stage file in S3: {str(e)}") from e
        except Exception as e:
            raise S3Exception(f"Unexpected error during S3 staging: {str(e)}") from e

    def presigned_url(self, s3_key: str, expires_in: Optional[int] = None) -> str:
        """
        Generate a time-limited public GET URL for a staged object.

        Raises:
            S3Exception: If URL generation fails
        """
        try:
            return self.s3_client.generate_presigned_url(
                'get_object',
                Params={'Bucket': self.bucket_name, 'Key': s3_key},
                ExpiresIn=expires_in or config.settings.staging_url_expiration_seconds
            )
        except ClientError as e:
            raise S3Exception(f"Failed to presign staged object: {str(e)}") from e

    def delete_session_artifacts(self, session_id: str) -> int:
        """
        Remove every staged object under the session's prefix.

        Returns:
            int: Number of objects deleted

        Raises:
            S3Exception: If listing or deletion fails
        """
        try:
            deleted = 0
            paginator = self.s3_client.get_paginator('list_objects_v2')
            for page in paginator.paginate(Bucket=self.bucket_name, Prefix=self._staging_prefix(session_id)):
                keys = [{'Key': obj['Key']} for obj in page.get('Contents', [])]
                if keys:
                    self.s3_client.delete_objects(Bucket=self.bucket_name, Delete={'Objects': keys})
                    deleted += len(keys)
            return deleted
        except ClientError as e:
            raise S3Exception(f"Failed to delete staged objects: {str(e)}") from e

    def _staging_prefix(self, session_id: str) -> str:
        return f"staging/{session_id}/"

    def _staging_key(self, session_id: str, file_name: str, position: int = 0) -> str:
        """
        Generate the S3 key for a staged file.

        Format: staging/{session_id}/{position}-{filename}
        """
        return f"{self._staging_prefix(session_id)}{position}-{file_name}"
