"""
S3 object storage. Objects are world-readable through the bucket policy;
URLs are built from bucket/region/key, not presigned.
"""
import logging
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

from app.storage.base import Storage, object_key

logger = logging.getLogger(__name__)

LOGOS = "logos"
RESULTS = "results"


class StorageError(Exception):
    pass


class S3Storage(Storage):
    def __init__(self, client: Any, bucket: str, region: str) -> None:
        self.client = client
        self.bucket = bucket
        self.region = region

    def public_url(self, key: str) -> str:
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"

    def put_object(self, collection: str, user_id: str, filename: str, content: bytes, content_type: str) -> str:
        key = object_key(collection, user_id, filename)
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=content,
                ContentType=content_type,
            )
        except (BotoCoreError, ClientError) as e:
            logger.error("s3_put_failed", extra={"key": key, "error": str(e)})
            raise StorageError(f"Failed to upload {key}") from e
        logger.info("s3_put", extra={"key": key, "user_id": user_id})
        return self.public_url(key)
