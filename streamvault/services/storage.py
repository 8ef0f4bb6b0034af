from collections.abc import Iterator
from pathlib import Path
from typing import BinaryIO

import boto3
import structlog
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from streamvault.core.config import settings
from streamvault.core.errors import StorageUnavailable

logger = structlog.get_logger()


def _iter_body(body, chunk_size: int) -> Iterator[bytes]:
    try:
        yield from body.iter_chunks(chunk_size)
    finally:
        body.close()


class MediaStore:
    """S3-compatible blob store for uploaded media (MinIO/S3).

    Blobs are written once at intake and only read afterwards, so range reads
    need no coordination between concurrent readers.
    """

    def __init__(self) -> None:
        endpoint = settings.minio_endpoint
        if not endpoint.startswith(("http://", "https://")):
            endpoint = f"http://{endpoint}"

        self.client = boto3.client(
            "s3",
            endpoint_url=endpoint,
            aws_access_key_id=settings.minio_access_key,
            aws_secret_access_key=settings.minio_secret_key,
            config=Config(signature_version="s3v4"),
        )
        self.bucket = settings.minio_bucket

    def upload_file(self, file_obj: BinaryIO, key: str, content_type: str | None = None) -> str:
        extra_args = {}
        if content_type:
            extra_args["ContentType"] = content_type

        self.client.upload_fileobj(file_obj, self.bucket, key, ExtraArgs=extra_args)
        logger.info("blob_written", bucket=self.bucket, key=key)
        return key

    def download_file(self, key: str, destination: str) -> str:
        """Copy a blob to a local path for tools that need a real file."""
        Path(destination).parent.mkdir(parents=True, exist_ok=True)
        try:
            self.client.download_file(self.bucket, key, destination)
        except (ClientError, BotoCoreError) as e:
            raise StorageUnavailable(f"Failed to download {key}: {e}") from e
        logger.info("blob_downloaded", key=key, destination=destination)
        return destination

    def get_size(self, key: str) -> int:
        try:
            head = self.client.head_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise StorageUnavailable(f"Blob not readable: {key}: {e}") from e
        return int(head["ContentLength"])

    def read_range(
        self, key: str, start: int | None = None, end: int | None = None, chunk_size: int | None = None
    ) -> Iterator[bytes]:
        """Open ``key`` and return an iterator over its bytes.

        ``start``/``end`` are inclusive offsets. The object is requested
        before returning so storage errors surface to the caller, not to
        whoever drains the iterator.
        """
        params = {"Bucket": self.bucket, "Key": key}
        if start is not None:
            params["Range"] = f"bytes={start}-{'' if end is None else end}"
        try:
            response = self.client.get_object(**params)
        except (ClientError, BotoCoreError) as e:
            raise StorageUnavailable(f"Blob not readable: {key}: {e}") from e
        return _iter_body(response["Body"], chunk_size or settings.stream_chunk_size)

    def delete_file(self, key: str) -> None:
        self.client.delete_object(Bucket=self.bucket, Key=key)
        logger.info("blob_deleted", bucket=self.bucket, key=key)

    def ensure_bucket_exists(self) -> None:
        try:
            self.client.head_bucket(Bucket=self.bucket)
        except ClientError:
            self.client.create_bucket(Bucket=self.bucket)
            logger.info("bucket_created", bucket=self.bucket)
