"""S3-compatible object storage for submitted work files."""

import logging
import uuid
from functools import lru_cache
from pathlib import PurePath
from typing import NamedTuple
from urllib.parse import quote

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from contest.core import config

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """The object store rejected or failed an operation."""


class StoredFile(NamedTuple):
    key: str
    size: int


def build_object_key(file_name: str) -> str:
    extension = PurePath(file_name).suffix.lower()
    return f"works/{uuid.uuid4().hex}{extension}"


class S3Storage:
    def __init__(self, client=None, bucket: str | None = None):
        self.bucket = bucket or config.S3_BUCKET
        self.client = client or boto3.client(
            's3',
            endpoint_url=config.S3_ENDPOINT or None,
            region_name=config.S3_REGION,
            aws_access_key_id=config.S3_ACCESS_KEY or None,
            aws_secret_access_key=config.S3_SECRET_KEY or None,
            config=BotoConfig(s3={'addressing_style': 'path'}),
        )

    def put(self, data: bytes, file_name: str, mime_type: str) -> StoredFile:
        key = build_object_key(file_name)
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=mime_type,
                ContentDisposition=f"inline; filename*=UTF-8''{quote(file_name)}",
            )
        except (BotoCoreError, ClientError) as exc:
            logger.exception('Upload of %s failed', key)
            raise StorageError('File upload failed.') from exc
        return StoredFile(key=key, size=len(data))

    def signed_url(self, key: str, ttl_seconds: int | None = None) -> str:
        try:
            return self.client.generate_presigned_url(
                'get_object',
                Params={'Bucket': self.bucket, 'Key': key},
                ExpiresIn=ttl_seconds or config.DOWNLOAD_URL_TTL_SECONDS,
            )
        except (BotoCoreError, ClientError) as exc:
            logger.exception('Could not sign download URL for %s', key)
            raise StorageError('Could not create a download link.') from exc

    def delete(self, key: str) -> None:
        # The object may already be gone; a failed delete never blocks the caller
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError):
            logger.warning('Delete of %s failed', key, exc_info=True)

    def get(self, key: str) -> bytes:
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
            return response['Body'].read()
        except (BotoCoreError, ClientError) as exc:
            logger.exception('Download of %s failed', key)
            raise StorageError('File download failed.') from exc


@lru_cache
def get_storage() -> S3Storage:
    return S3Storage()
