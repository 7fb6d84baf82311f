"""Fake aiobotocore S3 client for store and publish tests."""

from dataclasses import dataclass, field
from typing import Any

from botocore.exceptions import ClientError


def client_error(code: str, operation: str = "Operation") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class FakeBody:
    def __init__(self, data: bytes, error: Exception | None = None):
        self.data = data
        self.position = 0
        self.error = error
        self.closed = False

    async def read(self, size: int | None = None) -> bytes:
        if self.error is not None:
            raise self.error
        end = len(self.data) if size is None else self.position + size
        chunk = self.data[self.position : end]
        self.position += len(chunk)
        return chunk

    def close(self) -> None:
        self.closed = True


@dataclass
class FakeS3Client:
    """
    Lightweight stub of the aiobotocore S3 client calls the store makes.

    ``failures`` maps (operation, key) to the exception that call raises;
    ``body_errors`` maps a key to the exception its body raises when read.
    """

    objects: dict[tuple[str, str], dict[str, Any]] = field(default_factory=dict)
    calls: list[tuple[str, dict[str, Any]]] = field(default_factory=list)
    list_pages: list[Any] = field(default_factory=list)
    failures: dict[tuple[str, str], Exception] = field(default_factory=dict)
    body_errors: dict[str, Exception] = field(default_factory=dict)
    part_failures: dict[int, Exception] = field(default_factory=dict)
    uploaded_parts: dict[int, bytes] = field(default_factory=dict)
    completed_parts: list[dict[str, Any]] | None = None
    abort_called: bool = False

    def _maybe_fail(self, operation: str, key: str) -> None:
        failure = self.failures.get((operation, key))
        if failure is not None:
            raise failure

    def _get(self, bucket: str, key: str) -> dict[str, Any]:
        if (bucket, key) not in self.objects:
            raise client_error("NoSuchKey")
        return self.objects[(bucket, key)]

    async def put_object(self, *, Bucket: str, Key: str, Body: bytes, **kwargs: Any) -> dict[str, Any]:
        self.calls.append(("put_object", {"Bucket": Bucket, "Key": Key, **kwargs}))
        self._maybe_fail("put_object", Key)
        self.objects[(Bucket, Key)] = {"Body": Body, **kwargs}
        return {}

    async def get_object(self, *, Bucket: str, Key: str) -> dict[str, Any]:
        self._maybe_fail("get_object", Key)
        return {"Body": FakeBody(self._get(Bucket, Key)["Body"], self.body_errors.get(Key))}

    async def head_object(self, *, Bucket: str, Key: str) -> dict[str, Any]:
        self._maybe_fail("head_object", Key)
        stored = self._get(Bucket, Key)
        return {k: v for k, v in stored.items() if k != "Body"}

    async def delete_object(self, *, Bucket: str, Key: str) -> dict[str, Any]:
        self.calls.append(("delete_object", {"Bucket": Bucket, "Key": Key}))
        self._maybe_fail("delete_object", Key)
        if Key == "forbidden":
            raise client_error("AccessDenied")
        self.objects.pop((Bucket, Key), None)
        return {}

    async def copy_object(self, *, Bucket: str, Key: str, CopySource: dict[str, str], **kwargs: Any) -> dict:
        self.calls.append(("copy_object", {"Bucket": Bucket, "Key": Key, "CopySource": CopySource, **kwargs}))
        self._maybe_fail("copy_object", Key)
        source = self._get(CopySource["Bucket"], CopySource["Key"])
        if kwargs.get("MetadataDirective") == "REPLACE":
            self.objects[(Bucket, Key)] = {"Body": source["Body"], **kwargs}
        else:
            self.objects[(Bucket, Key)] = dict(source)
        return {}

    async def list_objects_v2(self, **kwargs: Any) -> dict[str, Any]:
        self.calls.append(("list_objects_v2", kwargs))
        page = self.list_pages.pop(0)
        if isinstance(page, Exception):
            raise page
        return page

    async def create_multipart_upload(self, **kwargs: Any) -> dict[str, str]:
        self.calls.append(("create_multipart_upload", kwargs))
        return {"UploadId": "fake-upload-id"}

    async def upload_part(self, *, Bucket: str, Key: str, PartNumber: int, UploadId: str, Body: bytes) -> dict:
        failure = self.part_failures.get(PartNumber)
        if failure:
            raise failure
        self.uploaded_parts[PartNumber] = Body
        return {"ETag": f"etag-{PartNumber}"}

    async def complete_multipart_upload(self, **kwargs: Any) -> None:
        self.completed_parts = kwargs["MultipartUpload"]["Parts"]

    async def abort_multipart_upload(self, **kwargs: Any) -> None:
        self.abort_called = True
