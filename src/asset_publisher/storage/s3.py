"""
S3-compatible object store

Object store backed by AWS S3, Cloudflare R2 or MinIO through a persistent
aioboto3 client.
"""

import asyncio
import inspect
import logging
import time
import uuid
from contextlib import AsyncExitStack
from typing import IO, Any

import aioboto3
import aiobotocore.config
from botocore.exceptions import BotoCoreError, ClientError
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_fixed

from ..constants import (
    DEFAULT_LIST_RETRIES,
    DEFAULT_RETRY_WAIT_SECONDS,
    DEFAULT_S3_MAX_POOL_CONNECTIONS,
    MULTIPART_PART_SIZE,
    MULTIPART_UPLOAD_THRESHOLD,
)
from .base import BackendConfig, Body, ListPage, ObjectStore, StorageError, StorageNotFoundError

logger = logging.getLogger(__name__)

NOT_FOUND_ERROR_CODES = {"404", "NoSuchKey", "NotFound"}


def is_not_found(error: ClientError) -> bool:
    return error.response.get("Error", {}).get("Code") in NOT_FOUND_ERROR_CODES


def translate_boto_error(error: ClientError | BotoCoreError, operation: str, path: str) -> StorageError:
    """Map a botocore error onto the storage error taxonomy.

    ClientError carries a service error code; everything else from botocore
    (connection failures, timeouts, broken response streams) becomes a plain
    StorageError.
    """
    if isinstance(error, ClientError):
        if is_not_found(error):
            return StorageNotFoundError(f"Object not found: {path}")
        code = error.response.get("Error", {}).get("Code", "unknown")
        return StorageError(f"{operation} failed for {path} ({code}): {error}")
    return StorageError(f"{operation} failed for {path}: {error}")


def _should_retry_listing(exception: BaseException) -> bool:
    """Retry transient listing failures, never a missing bucket."""
    return isinstance(exception, StorageError) and not isinstance(exception, StorageNotFoundError)


class S3ContentStream:
    """ContentStream over an aiobotocore StreamingBody."""

    def __init__(self, body: Any, path: str):
        self._body = body
        self.path = path

    async def read(self, size: int = -1) -> bytes:
        try:
            if size is None or size < 0:
                return await self._body.read()
            return await self._body.read(size)
        except (ClientError, BotoCoreError) as e:
            raise translate_boto_error(e, "read", self.path) from e
        except (OSError, asyncio.TimeoutError) as e:
            raise StorageError(f"read failed for {self.path}: {e}") from e

    async def close(self) -> None:
        result = self._body.close()
        if inspect.isawaitable(result):
            await result


class S3ObjectStore(ObjectStore):
    """
    Async S3-compatible object store.

    One aioboto3 client is created lazily and reused for the lifetime of the
    store.
    """

    def __init__(self, config: BackendConfig, max_pool_connections: int = DEFAULT_S3_MAX_POOL_CONNECTIONS):
        super().__init__(config)
        self.max_pool_connections = max_pool_connections
        self._s3_client: Any = None
        self._s3_session: Any = None
        self._exit_stack: AsyncExitStack | None = None
        self._client_lock = asyncio.Lock()

        # Instance identification for logging
        self._instance_id = str(uuid.uuid4())[:8]

        logger.info(f"Object store created (id={self._instance_id}, type={config.storage_type})")

    @property
    def backend_id(self) -> str:
        return f"{self.config.storage_type}:{self.config.endpoint_url or 'aws'}:{self.config.account_name or ''}"

    async def _get_s3_client(self):
        """Get or create persistent S3 client."""
        if self._s3_client is None:
            async with self._client_lock:
                # Double-check pattern to prevent race condition
                if self._s3_client is None:
                    config = aiobotocore.config.AioConfig(
                        max_pool_connections=self.max_pool_connections,
                        retries={"max_attempts": 3, "mode": "adaptive"},
                        read_timeout=300,
                        connect_timeout=120,
                    )

                    logger.info(
                        f"Creating S3 client (store_id={self._instance_id}, "
                        f"max_pool_connections={self.max_pool_connections})"
                    )

                    client_kwargs: dict[str, Any] = {"config": config}
                    if self.config.options.get("key"):
                        client_kwargs["aws_access_key_id"] = self.config.options["key"]
                        client_kwargs["aws_secret_access_key"] = self.config.options.get("secret")
                    if self.config.endpoint_url:
                        client_kwargs["endpoint_url"] = self.config.endpoint_url
                    if self.config.options.get("region_name"):
                        client_kwargs["region_name"] = self.config.options["region_name"]

                    self._s3_session = aioboto3.Session()
                    self._exit_stack = AsyncExitStack()
                    self._s3_client = await self._exit_stack.enter_async_context(
                        self._s3_session.client("s3", **client_kwargs)
                    )

                    logger.info(f"S3 client created (store_id={self._instance_id})")

        return self._s3_client

    def _log_operation_end(self, operation: str, path: str, start_time: float) -> None:
        duration = time.time() - start_time
        if duration > 60.0:
            logger.warning(
                f"SLOW S3 operation: {operation} for {path} took {duration:.3f}s (store_id={self._instance_id})"
            )

    async def put_object(
        self,
        container: str,
        key: str,
        body: Body,
        content_type: str,
        content_encoding: str | None = None,
        cache_control: str | None = None,
    ) -> None:
        path = f"{container}/{key}"
        start_time = time.time()
        s3_client = await self._get_s3_client()

        extra: dict[str, str] = {"ContentType": content_type}
        if content_encoding:
            extra["ContentEncoding"] = content_encoding
        if cache_control:
            extra["CacheControl"] = cache_control

        try:
            if isinstance(body, bytes | bytearray):
                await s3_client.put_object(Bucket=container, Key=key, Body=bytes(body), **extra)
            else:
                size = _remaining_size(body)
                if size >= MULTIPART_UPLOAD_THRESHOLD:
                    await self._multipart_upload_from_fileobj(s3_client, container, key, body, extra)
                else:
                    data = await asyncio.get_running_loop().run_in_executor(None, body.read)
                    await s3_client.put_object(Bucket=container, Key=key, Body=data, **extra)
        except (ClientError, BotoCoreError) as e:
            raise translate_boto_error(e, "put_object", path) from e
        finally:
            self._log_operation_end("put_object", path, start_time)

    async def _multipart_upload_from_fileobj(
        self, s3_client, bucket: str, key: str, fileobj: IO[bytes], extra: dict[str, str]
    ) -> None:
        """Upload a large payload using streaming parallel multipart upload with bounded memory."""
        max_concurrent_parts = 4
        queue_size = 4  # Maximum chunks in memory at once

        response = await s3_client.create_multipart_upload(Bucket=bucket, Key=key, **extra)
        upload_id = response["UploadId"]

        logger.debug(f"Starting multipart upload for {key} (upload_id={upload_id}, store_id={self._instance_id})")

        try:
            chunk_queue: asyncio.Queue[tuple[int, bytes] | None] = asyncio.Queue(maxsize=queue_size)
            results: list[tuple[int, str]] = []
            loop = asyncio.get_running_loop()

            async def producer():
                """Read the payload and add parts to the queue."""
                part_number = 1
                while True:
                    chunk = await loop.run_in_executor(None, fileobj.read, MULTIPART_PART_SIZE)
                    if not chunk:
                        break
                    await chunk_queue.put((part_number, chunk))
                    part_number += 1
                # Signal end of payload with one None per consumer
                for _ in range(max_concurrent_parts):
                    await chunk_queue.put(None)

            async def consumer():
                """Take parts from the queue and upload them."""
                while True:
                    item = await chunk_queue.get()
                    try:
                        if item is None:
                            break
                        part_number, chunk = item
                        part_response = await s3_client.upload_part(
                            Bucket=bucket, Key=key, PartNumber=part_number, UploadId=upload_id, Body=chunk
                        )
                        results.append((part_number, part_response["ETag"]))
                        logger.debug(f"Completed upload of part {part_number} for {key}")
                    finally:
                        chunk_queue.task_done()

            tasks = [asyncio.create_task(producer())]
            tasks += [asyncio.create_task(consumer()) for _ in range(max_concurrent_parts)]
            try:
                done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
            finally:
                for task in tasks:
                    if not task.done():
                        task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
            for task in done:
                error = task.exception()
                if error is not None:
                    raise error

            results.sort(key=lambda x: x[0])
            parts = [{"ETag": etag, "PartNumber": part_number} for part_number, etag in results]

            await s3_client.complete_multipart_upload(
                Bucket=bucket, Key=key, UploadId=upload_id, MultipartUpload={"Parts": parts}
            )
            logger.debug(f"Multipart upload completed ({key}, parts={len(parts)}, upload_id={upload_id})")

        except BaseException:
            try:
                await s3_client.abort_multipart_upload(Bucket=bucket, Key=key, UploadId=upload_id)
                logger.error(f"Aborted multipart upload ({key}, upload_id={upload_id})")
            except (ClientError, BotoCoreError) as abort_error:
                logger.warning(f"Failed to abort multipart upload ({key}, upload_id={upload_id}): {abort_error}")
            raise

    async def open_object(self, container: str, key: str) -> S3ContentStream:
        path = f"{container}/{key}"
        s3_client = await self._get_s3_client()
        try:
            response = await s3_client.get_object(Bucket=container, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise translate_boto_error(e, "get_object", path) from e
        return S3ContentStream(response["Body"], path)

    async def head_object(self, container: str, key: str) -> dict[str, Any]:
        path = f"{container}/{key}"
        s3_client = await self._get_s3_client()
        try:
            return await s3_client.head_object(Bucket=container, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise translate_boto_error(e, "head_object", path) from e

    async def delete_object(self, container: str, key: str) -> None:
        path = f"{container}/{key}"
        s3_client = await self._get_s3_client()
        try:
            await s3_client.delete_object(Bucket=container, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise translate_boto_error(e, "delete_object", path) from e

    async def copy_object(self, dst_container: str, dst_key: str, src_container: str, src_key: str) -> None:
        path = f"{src_container}/{src_key} -> {dst_container}/{dst_key}"
        s3_client = await self._get_s3_client()
        try:
            await s3_client.copy_object(
                Bucket=dst_container, Key=dst_key, CopySource={"Bucket": src_container, "Key": src_key}
            )
        except (ClientError, BotoCoreError) as e:
            raise translate_boto_error(e, "copy_object", path) from e

    async def set_content_type(self, container: str, key: str, content_type: str) -> None:
        """Replace the content type by copying the object onto itself.

        S3 has no in-place property update; REPLACE drops everything not
        passed again, so encoding, cache control and user metadata are carried over.
        """
        path = f"{container}/{key}"
        head = await self.head_object(container, key)
        s3_client = await self._get_s3_client()

        extra: dict[str, Any] = {"ContentType": content_type, "Metadata": head.get("Metadata", {})}
        if head.get("ContentEncoding"):
            extra["ContentEncoding"] = head["ContentEncoding"]
        if head.get("CacheControl"):
            extra["CacheControl"] = head["CacheControl"]

        try:
            await s3_client.copy_object(
                Bucket=container,
                Key=key,
                CopySource={"Bucket": container, "Key": key},
                MetadataDirective="REPLACE",
                **extra,
            )
        except (ClientError, BotoCoreError) as e:
            raise translate_boto_error(e, "set_content_type", path) from e

    async def list_keys(self, container: str, prefix: str = "", continuation_token: str | None = None) -> ListPage:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(DEFAULT_LIST_RETRIES + 1),
            retry=retry_if_exception(_should_retry_listing),
            wait=wait_fixed(DEFAULT_RETRY_WAIT_SECONDS),
            reraise=True,
        ):
            with attempt:
                return await self._list_page(container, prefix, continuation_token)
        raise AssertionError("unreachable")  # pragma: no cover

    async def _list_page(self, container: str, prefix: str, continuation_token: str | None) -> ListPage:
        s3_client = await self._get_s3_client()
        list_kwargs: dict[str, str] = {"Bucket": container}
        if prefix:
            list_kwargs["Prefix"] = prefix
        if continuation_token:
            list_kwargs["ContinuationToken"] = continuation_token

        try:
            page = await s3_client.list_objects_v2(**list_kwargs)
        except (ClientError, BotoCoreError) as e:
            raise translate_boto_error(e, "list_objects_v2", f"{container}/{prefix}") from e

        keys = [obj["Key"] for obj in page.get("Contents", []) if "Key" in obj]
        next_token = page.get("NextContinuationToken") if page.get("IsTruncated") else None
        return ListPage(keys=keys, next_token=next_token)

    async def close(self) -> None:
        """Clean up S3 client connections."""
        if self._exit_stack is not None:
            try:
                await self._exit_stack.aclose()
                logger.info(f"Object store resources closed (store_id={self._instance_id})")
            finally:
                self._exit_stack = None
                self._s3_client = None
                self._s3_session = None


def _remaining_size(fileobj: IO[bytes]) -> int:
    """Bytes left between the current position and the end of a seekable file object."""
    position = fileobj.tell()
    end = fileobj.seek(0, 2)
    fileobj.seek(position)
    return end - position
