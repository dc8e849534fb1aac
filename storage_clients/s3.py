"""
S3 Object Store

Snapshot storage on S3 (or any S3-compatible endpoint) through boto3. Writes
are multipart uploads: parts go out as the buffer fills and the object only
appears when the upload is completed on ``close``. A failed backup aborts
the multipart upload, leaving the previous object version untouched.

boto3 is blocking, so every call runs on a dedicated thread pool via
``loop.run_in_executor``.
"""

import asyncio
import functools
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional

import boto3
from botocore.client import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from backup_recovery.core.base import ObjectSink, ObjectSource, ObjectStore
from backup_recovery.exceptions import ConfigValidationError, TransferError

logger = logging.getLogger(__name__)

# S3 rejects non-final multipart parts below 5 MiB
MIN_PART_SIZE = 5 * 1024 * 1024
DEFAULT_PART_SIZE = 8 * 1024 * 1024
READ_CHUNK_SIZE = 1024 * 1024


def create_s3_client(
    region: Optional[str] = None,
    endpoint_url: Optional[str] = None,
    access_key_id: Optional[str] = None,
    secret_access_key: Optional[str] = None,
    session_token: Optional[str] = None,
    max_pool_connections: int = 16
):
    """
    Create a boto3 S3 client.

    Explicit keys are optional; without them the standard AWS credential
    chain applies, including automatic refresh of temporary credentials.
    """
    session_kwargs: Dict[str, Any] = {}
    if access_key_id and secret_access_key:
        session_kwargs["aws_access_key_id"] = access_key_id
        session_kwargs["aws_secret_access_key"] = secret_access_key
    if session_token:
        session_kwargs["aws_session_token"] = session_token

    client_kwargs: Dict[str, Any] = {}
    if region:
        client_kwargs["region_name"] = region
    if endpoint_url:
        client_kwargs["endpoint_url"] = endpoint_url

    session = boto3.Session(**session_kwargs)
    return session.client(
        "s3",
        config=BotoConfig(signature_version="s3v4", max_pool_connections=max_pool_connections),
        **client_kwargs
    )


class S3MultipartSink(ObjectSink):
    """
    Streaming upload of one key.

    Small bodies that never fill a part are sent with a single
    ``put_object`` on close.
    """

    def __init__(self, store: "S3ObjectStore", key: str, storage_class: Optional[str]):
        self._store = store
        self.key = key
        self.storage_class = storage_class
        self._buffer = bytearray()
        self._upload_id: Optional[str] = None
        self._parts: List[Dict[str, Any]] = []
        self._finished = False

    def _extra_args(self) -> Dict[str, Any]:
        return {"StorageClass": self.storage_class} if self.storage_class else {}

    async def _flush_part(self, data: bytes) -> None:
        if self._upload_id is None:
            response = await self._store._run(
                self._store.client.create_multipart_upload,
                Bucket=self._store.bucket,
                Key=self.key,
                **self._extra_args()
            )
            self._upload_id = response["UploadId"]
            logger.debug(f"Started multipart upload of s3://{self._store.bucket}/{self.key}")

        part_number = len(self._parts) + 1
        response = await self._store._run(
            self._store.client.upload_part,
            Bucket=self._store.bucket,
            Key=self.key,
            UploadId=self._upload_id,
            PartNumber=part_number,
            Body=data
        )
        self._parts.append({"PartNumber": part_number, "ETag": response["ETag"]})

    async def write(self, chunk: bytes) -> None:
        if self._finished:
            raise ValueError(f"upload of {self.key} already finished")
        self._buffer.extend(chunk)
        while len(self._buffer) >= self._store.part_size:
            data = bytes(self._buffer[:self._store.part_size])
            del self._buffer[:self._store.part_size]
            await self._flush_part(data)

    async def close(self) -> None:
        if self._finished:
            return
        if self._upload_id is None:
            await self._store._run(
                self._store.client.put_object,
                Bucket=self._store.bucket,
                Key=self.key,
                Body=bytes(self._buffer),
                **self._extra_args()
            )
        else:
            if self._buffer:
                await self._flush_part(bytes(self._buffer))
            await self._store._run(
                self._store.client.complete_multipart_upload,
                Bucket=self._store.bucket,
                Key=self.key,
                UploadId=self._upload_id,
                MultipartUpload={"Parts": self._parts}
            )
        self._buffer = bytearray()
        self._finished = True
        logger.debug(f"Completed upload of s3://{self._store.bucket}/{self.key}")

    async def abort(self) -> None:
        self._finished = True
        self._buffer = bytearray()
        if self._upload_id is None:
            return
        await self._store._run(
            self._store.client.abort_multipart_upload,
            Bucket=self._store.bucket,
            Key=self.key,
            UploadId=self._upload_id
        )
        logger.info(f"Aborted multipart upload of s3://{self._store.bucket}/{self.key}")


class S3ObjectSource(ObjectSource):
    """Reads a ``get_object`` body in chunks."""

    def __init__(self, store: "S3ObjectStore", body, chunk_size: int = READ_CHUNK_SIZE):
        self._store = store
        self._body = body
        self._chunk_size = chunk_size

    async def read(self) -> bytes:
        return await self._store._run(self._body.read, self._chunk_size)

    async def close(self) -> None:
        await self._store._run(self._body.close)


class S3ObjectStore(ObjectStore):
    """
    Snapshot store on one S3 bucket.

    Example:
        ```python
        store = S3ObjectStore(bucket="foo-backup", region="us-west-2")
        sink = await store.open_write("abc/table/def", storage_class="STANDARD_IA")
        await sink.write(body)
        await sink.close()
        ```
    """

    def __init__(
        self,
        bucket: str,
        client=None,
        part_size: int = DEFAULT_PART_SIZE,
        max_workers: int = 8,
        **client_kwargs
    ):
        if not bucket:
            raise ConfigValidationError("S3 bucket must be set")
        if part_size < MIN_PART_SIZE:
            raise ConfigValidationError(f"part_size must be at least {MIN_PART_SIZE} bytes")
        self.bucket = bucket
        self.part_size = part_size
        self.client = client or create_s3_client(max_pool_connections=max_workers, **client_kwargs)
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="s3")

    @classmethod
    def from_settings(cls, s3_settings) -> "S3ObjectStore":
        """Build from ``config.settings.S3Settings``."""
        return cls(
            bucket=s3_settings.bucket,
            part_size=s3_settings.part_size_mb * 1024 * 1024,
            max_workers=s3_settings.max_workers,
            region=s3_settings.region,
            endpoint_url=s3_settings.endpoint_url,
            access_key_id=s3_settings.access_key_id,
            secret_access_key=s3_settings.secret_access_key,
            session_token=s3_settings.session_token
        )

    async def _run(self, fn, *args, **kwargs):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, functools.partial(fn, *args, **kwargs))

    async def open_write(self, key: str, storage_class: Optional[str] = None) -> S3MultipartSink:
        return S3MultipartSink(self, key, storage_class)

    async def open_read(self, key: str) -> S3ObjectSource:
        try:
            response = await self._run(self.client.get_object, Bucket=self.bucket, Key=key)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            if code in ("NoSuchKey", "404"):
                raise TransferError(
                    f"Snapshot s3://{self.bucket}/{key} not found",
                    snapshot_key=key
                ) from e
            raise TransferError(f"Failed to read s3://{self.bucket}/{key}: {e}", snapshot_key=key) from e
        except BotoCoreError as e:
            raise TransferError(f"Failed to read s3://{self.bucket}/{key}: {e}", snapshot_key=key) from e
        return S3ObjectSource(self, response["Body"])

    def close(self) -> None:
        """Shut down the worker threads."""
        self._executor.shutdown(wait=True)
