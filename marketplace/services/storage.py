"""
Object storage for submission videos (S3 via boto3).

Only three operations are needed: put an object, delete an object, and mint a
signed read URL. Client errors surface as UpstreamServiceError; whether a
failure is fatal is the caller's decision.
"""
import logging
import os
import uuid
from dataclasses import dataclass
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from marketplace.errors import UpstreamServiceError

logger = logging.getLogger(__name__)


@dataclass
class VideoUpload:
    """An uploaded video already read from the multipart body."""
    filename: str
    content_type: str
    data: bytes

    @property
    def extension(self) -> str:
        ext = os.path.splitext(self.filename or "")[1].lstrip(".").lower()
        return ext or "mp4"


def submission_object_key(user_id: str, upload: VideoUpload) -> str:
    """Fresh key per upload so a revision never overwrites the asset it replaces."""
    return f"submissions/{user_id or 'unknown'}/{uuid.uuid4()}.{upload.extension}"


class S3Storage:
    def __init__(self, bucket: str, region: Optional[str] = None, url_expiry_seconds: int = 3600, client=None):
        self.bucket = bucket
        self.url_expiry_seconds = url_expiry_seconds
        self.client = client or boto3.client("s3", region_name=region)

    def upload(self, key: str, upload: VideoUpload) -> None:
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=upload.data,
                ContentType=upload.content_type or "application/octet-stream",
            )
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Upload of {key} failed: {e}", exc_info=True)
            raise UpstreamServiceError("Failed to store video") from e
        logger.info(f"Stored {len(upload.data)} bytes at {key}")

    def delete(self, key: str) -> None:
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            raise UpstreamServiceError(f"Failed to delete {key}: {e}") from e
        logger.info(f"Deleted {key}")

    def signed_url(self, key: str) -> str:
        try:
            return self.client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=self.url_expiry_seconds,
            )
        except (BotoCoreError, ClientError) as e:
            raise UpstreamServiceError("Failed to sign video URL") from e
