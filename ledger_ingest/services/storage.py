"""
Object storage access for uploaded CSV files (S3 / LocalStack).
"""

from __future__ import annotations

from botocore.exceptions import BotoCoreError, ClientError


class ObjectStoreError(RuntimeError):
    """Domain error for object storage operations."""


class S3ObjectStore:
    """Fetches object bodies as text from a single bucket."""

    def __init__(self, client, bucket: str) -> None:
        self._client = client
        self.bucket = bucket

    def get_text(self, key: str) -> str:
        try:
            obj = self._client.get_object(Bucket=self.bucket, Key=key)
            body = obj["Body"].read()
        except (ClientError, BotoCoreError) as e:
            raise ObjectStoreError(f"Failed to fetch s3://{self.bucket}/{key}: {e}") from e
        if not body:
            return ""
        # utf-8-sig drops a leading BOM
        return body.decode("utf-8-sig", errors="replace")
