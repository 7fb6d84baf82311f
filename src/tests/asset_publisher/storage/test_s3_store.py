"""Tests for the S3-compatible object store against a fake client."""

import io

import pytest
from botocore.exceptions import EndpointConnectionError, ReadTimeoutError

from asset_publisher.storage import s3 as s3_module
from asset_publisher.storage.base import BackendConfig, StorageError, StorageNotFoundError
from asset_publisher.storage.s3 import S3ObjectStore
from tests.test_utils.fake_s3 import FakeS3Client, client_error


@pytest.fixture
def client():
    return FakeS3Client()


@pytest.fixture
def store(client):
    s3_store = S3ObjectStore(BackendConfig.minio("http://minio:9000", "key", "secret"))
    s3_store._s3_client = client
    return s3_store


class TestObjects:
    @pytest.mark.asyncio
    async def test_put_bytes_with_properties(self, store, client):
        await store.put_object(
            "public", "abc/style.css", b"gz", "text/css", content_encoding="gzip", cache_control="max-age=60"
        )

        assert client.calls == [
            (
                "put_object",
                {
                    "Bucket": "public",
                    "Key": "abc/style.css",
                    "ContentType": "text/css",
                    "ContentEncoding": "gzip",
                    "CacheControl": "max-age=60",
                },
            )
        ]

    @pytest.mark.asyncio
    async def test_put_small_file_object_uses_single_request(self, store, client):
        await store.put_object("public", "a.png", io.BytesIO(b"png"), "image/png")

        assert client.objects[("public", "a.png")]["Body"] == b"png"
        assert client.completed_parts is None

    @pytest.mark.asyncio
    async def test_open_object_streams_body(self, store, client):
        client.objects[("private", "abc")] = {"Body": b"hello world"}

        stream = await store.open_object("private", "abc")

        assert await stream.read(5) == b"hello"
        assert await stream.read() == b" world"
        await stream.close()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("operation", ["open_object", "head_object"])
    async def test_missing_object_raises_not_found(self, store, operation):
        with pytest.raises(StorageNotFoundError):
            await getattr(store, operation)("private", "missing")

    @pytest.mark.asyncio
    async def test_other_client_errors_become_storage_errors(self, store):
        with pytest.raises(StorageError, match="AccessDenied") as exc_info:
            await store.delete_object("public", "forbidden")

        assert not isinstance(exc_info.value, StorageNotFoundError)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "client_operation,call",
        [
            ("put_object", lambda store: store.put_object("public", "a.png", b"png", "image/png")),
            ("get_object", lambda store: store.open_object("public", "a.png")),
            ("head_object", lambda store: store.head_object("public", "a.png")),
            ("delete_object", lambda store: store.delete_object("public", "a.png")),
            ("copy_object", lambda store: store.copy_object("public", "a.png", "private", "abc")),
        ],
    )
    async def test_connection_errors_become_storage_errors(self, store, client, client_operation, call):
        client.objects[("private", "abc")] = {"Body": b"data"}
        client.failures[(client_operation, "a.png")] = EndpointConnectionError(endpoint_url="http://minio:9000")

        with pytest.raises(StorageError, match="Could not connect to the endpoint URL") as exc_info:
            await call(store)

        assert not isinstance(exc_info.value, StorageNotFoundError)
        assert isinstance(exc_info.value.__cause__, EndpointConnectionError)

    @pytest.mark.asyncio
    async def test_set_content_type_connection_error(self, store, client):
        client.objects[("public", "a.svg")] = {"Body": b"<svg/>", "ContentType": "application/octet-stream"}
        client.failures[("copy_object", "a.svg")] = EndpointConnectionError(endpoint_url="http://minio:9000")

        with pytest.raises(StorageError, match="set_content_type failed"):
            await store.set_content_type("public", "a.svg", "image/svg+xml")

    @pytest.mark.asyncio
    async def test_read_timeout_while_streaming_becomes_storage_error(self, store, client):
        client.objects[("private", "abc")] = {"Body": b"hello world"}
        client.body_errors["abc"] = ReadTimeoutError(endpoint_url="http://minio:9000/private/abc")

        stream = await store.open_object("private", "abc")

        with pytest.raises(StorageError, match="read failed for private/abc"):
            await stream.read(5)

    @pytest.mark.asyncio
    async def test_connection_reset_while_streaming_becomes_storage_error(self, store, client):
        client.objects[("private", "abc")] = {"Body": b"hello world"}
        client.body_errors["abc"] = ConnectionResetError("connection reset by peer")

        stream = await store.open_object("private", "abc")

        with pytest.raises(StorageError, match="connection reset by peer"):
            await stream.read()

    @pytest.mark.asyncio
    async def test_copy_object(self, store, client):
        client.objects[("private", "abc")] = {"Body": b"data", "ContentType": "image/png"}

        await store.copy_object("public", "abc/a.png", "private", "abc")

        assert client.objects[("public", "abc/a.png")]["Body"] == b"data"

    @pytest.mark.asyncio
    async def test_set_content_type_replaces_and_keeps_properties(self, store, client):
        client.objects[("public", "abc/a.svg")] = {
            "Body": b"gz",
            "ContentType": "application/octet-stream",
            "ContentEncoding": "gzip",
            "CacheControl": "max-age=60",
            "Metadata": {"origin": "import"},
        }

        await store.set_content_type("public", "abc/a.svg", "image/svg+xml")

        name, kwargs = client.calls[-1]
        assert name == "copy_object"
        assert kwargs["MetadataDirective"] == "REPLACE"
        assert kwargs["CopySource"] == {"Bucket": "public", "Key": "abc/a.svg"}
        assert kwargs["ContentType"] == "image/svg+xml"
        assert kwargs["ContentEncoding"] == "gzip"
        assert kwargs["CacheControl"] == "max-age=60"
        assert kwargs["Metadata"] == {"origin": "import"}


class TestListing:
    @pytest.mark.asyncio
    async def test_continuation_token_passed_through(self, store, client):
        client.list_pages = [
            {"Contents": [{"Key": "v1/a"}, {"Key": "v1/b"}], "IsTruncated": True, "NextContinuationToken": "t1"},
            {"Contents": [{"Key": "v1/c"}], "IsTruncated": False},
        ]

        first = await store.list_keys("public", prefix="v1/")
        second = await store.list_keys("public", prefix="v1/", continuation_token=first.next_token)

        assert first.keys == ["v1/a", "v1/b"]
        assert first.next_token == "t1"
        assert second.keys == ["v1/c"]
        assert second.next_token is None
        assert client.calls[1] == ("list_objects_v2", {"Bucket": "public", "Prefix": "v1/", "ContinuationToken": "t1"})

    @pytest.mark.asyncio
    async def test_empty_bucket(self, store, client):
        client.list_pages = [{"KeyCount": 0, "IsTruncated": False}]

        page = await store.list_keys("public")

        assert page.keys == []
        assert client.calls == [("list_objects_v2", {"Bucket": "public"})]

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(self, store, client):
        client.list_pages = [client_error("SlowDown"), {"Contents": [{"Key": "a"}], "IsTruncated": False}]

        page = await store.list_keys("public")

        assert page.keys == ["a"]
        assert len(client.calls) == 2

    @pytest.mark.asyncio
    async def test_persistent_failure_gives_up(self, store, client):
        client.list_pages = [client_error("InternalError") for _ in range(3)]

        with pytest.raises(StorageError, match="InternalError"):
            await store.list_keys("public")

        assert len(client.calls) == 3

    @pytest.mark.asyncio
    async def test_connection_failure_is_retried(self, store, client):
        client.list_pages = [
            EndpointConnectionError(endpoint_url="http://minio:9000"),
            {"Contents": [{"Key": "a"}], "IsTruncated": False},
        ]

        page = await store.list_keys("public")

        assert page.keys == ["a"]
        assert len(client.calls) == 2


class TestMultipartUpload:
    @pytest.fixture(autouse=True)
    def small_parts(self, monkeypatch):
        monkeypatch.setattr(s3_module, "MULTIPART_UPLOAD_THRESHOLD", 8)
        monkeypatch.setattr(s3_module, "MULTIPART_PART_SIZE", 4)

    @pytest.mark.asyncio
    async def test_large_payload_uploaded_in_parts(self, store, client):
        await store.put_object("public", "big.bin", io.BytesIO(b"abcdefghij"), "application/octet-stream")

        assert client.uploaded_parts == {1: b"abcd", 2: b"efgh", 3: b"ij"}
        assert client.completed_parts == [
            {"ETag": "etag-1", "PartNumber": 1},
            {"ETag": "etag-2", "PartNumber": 2},
            {"ETag": "etag-3", "PartNumber": 3},
        ]
        assert client.abort_called is False
        assert client.calls[0] == (
            "create_multipart_upload",
            {"Bucket": "public", "Key": "big.bin", "ContentType": "application/octet-stream"},
        )

    @pytest.mark.asyncio
    async def test_size_counts_from_current_position(self, store, client):
        payload = io.BytesIO(b"0123456789abcdef")
        payload.seek(10)

        await store.put_object("public", "tail.bin", payload, "application/octet-stream")

        assert client.objects[("public", "tail.bin")]["Body"] == b"abcdef"
        assert client.completed_parts is None

    @pytest.mark.asyncio
    async def test_part_failure_aborts_upload(self, store, client):
        client.part_failures = {2: client_error("InternalError", "UploadPart")}

        with pytest.raises(StorageError, match="InternalError"):
            await store.put_object("public", "big.bin", io.BytesIO(b"x" * 40), "application/octet-stream")

        assert client.abort_called is True
        assert client.completed_parts is None


def test_backend_identity():
    first = S3ObjectStore(BackendConfig.minio("http://minio:9000", "key", "secret"))
    second = S3ObjectStore(BackendConfig.minio("http://minio:9000", "other", "secret"))
    other = S3ObjectStore(BackendConfig.minio("http://other:9000", "key", "secret"))

    assert first.shares_backend_with(second)
    assert not first.shares_backend_with(other)
