"""
Storage Base Classes and Configuration

Core object store abstraction shared by the S3-compatible and local
backends. The publish target only talks to this interface.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import IO, Any, TypeAlias

from ..constants import DEFAULT_S3_ACCOUNT_NAME, PUBLIC_ENDPOINT_DOMAINS
from ..exceptions import ConfigurationError
from ..models import ContentStream

Body: TypeAlias = bytes | IO[bytes]


class StorageError(Exception):
    """Raised when a backend operation fails."""

    pass


class StorageNotFoundError(StorageError):
    """Raised when storage object doesn't exist."""

    pass


@dataclass(frozen=True)
class ListPage:
    """One page of a prefix listing."""

    keys: list[str]
    next_token: str | None = None


class BackendConfig:
    """Configuration for different storage backends."""

    def __init__(
        self,
        protocol: str = "file",
        storage_type: str = "local",
        endpoint_url: str | None = None,
        account_name: str | None = None,
        public_endpoint: str | None = None,
        **kwargs: Any,
    ) -> None:
        self.protocol = protocol
        self.storage_type = storage_type
        self.endpoint_url = endpoint_url
        self.account_name = account_name
        self.public_endpoint = public_endpoint
        self.options = kwargs

    @classmethod
    def s3(cls, account_name: str | None = None, **kwargs: Any) -> "BackendConfig":
        """Configure for AWS S3."""
        return cls(protocol="s3", storage_type="s3", account_name=account_name or DEFAULT_S3_ACCOUNT_NAME, **kwargs)

    @classmethod
    def r2(cls, endpoint_url: str, access_key: str, secret_key: str, account_name: str, **kwargs: Any) -> "BackendConfig":
        """Configure for Cloudflare R2 storage."""
        return cls(
            protocol="s3",
            storage_type="r2",
            endpoint_url=endpoint_url,
            account_name=account_name,
            key=access_key,
            secret=secret_key,
            **kwargs,
        )

    @classmethod
    def minio(cls, endpoint_url: str, access_key: str, secret_key: str, **kwargs: Any) -> "BackendConfig":
        """Configure for MinIO or S3-compatible storage."""
        return cls(
            protocol="s3", storage_type="minio", endpoint_url=endpoint_url, key=access_key, secret=secret_key, **kwargs
        )

    @classmethod
    def local(cls, base_path: str, public_endpoint: str | None = None) -> "BackendConfig":
        """Configure for local filesystem (base_path required)."""
        if not base_path:
            raise ValueError("Local storage requires explicit base_path")
        return cls(protocol="file", storage_type="local", public_endpoint=public_endpoint, base_path=base_path)

    def resolve_public_endpoint(self) -> str:
        """Native public endpoint of the account, always ending with a slash."""
        if self.public_endpoint:
            return self.public_endpoint.rstrip("/") + "/"
        domain = PUBLIC_ENDPOINT_DOMAINS.get(self.storage_type)
        if not domain or not self.account_name:
            raise ConfigurationError(
                f"No public endpoint known for {self.storage_type} storage, configure public_endpoint"
            )
        return f"https://{self.account_name}.{domain}/"


class ObjectStore(ABC):
    """Capability interface of a backing object store.

    Containers are buckets (S3) or top-level directories (local). All
    operations are coroutines; content is passed as bytes or a binary file
    object and read back through a ContentStream.
    """

    def __init__(self, config: BackendConfig):
        self.config = config

    @property
    def backend_type(self) -> str:
        """Kind of backend; objects can only be copied server-side within one type."""
        return self.config.protocol

    @property
    @abstractmethod
    def backend_id(self) -> str:
        """Identity of the backend endpoint (two stores with equal ids see the same containers)."""

    @property
    def public_endpoint(self) -> str:
        return self.config.resolve_public_endpoint()

    def shares_backend_with(self, other: "ObjectStore") -> bool:
        return self.backend_type == other.backend_type and self.backend_id == other.backend_id

    @abstractmethod
    async def put_object(
        self,
        container: str,
        key: str,
        body: Body,
        content_type: str,
        content_encoding: str | None = None,
        cache_control: str | None = None,
    ) -> None:
        """Create or overwrite an object."""

    @abstractmethod
    async def open_object(self, container: str, key: str) -> ContentStream:
        """Open an object for reading. Raises StorageNotFoundError."""

    @abstractmethod
    async def head_object(self, container: str, key: str) -> dict[str, Any]:
        """Return object properties. Raises StorageNotFoundError."""

    @abstractmethod
    async def delete_object(self, container: str, key: str) -> None:
        """Delete an object. Raises StorageNotFoundError."""

    @abstractmethod
    async def copy_object(self, dst_container: str, dst_key: str, src_container: str, src_key: str) -> None:
        """Copy an object without the bytes passing through the client."""

    @abstractmethod
    async def set_content_type(self, container: str, key: str, content_type: str) -> None:
        """Update the declared content type of an existing object."""

    @abstractmethod
    async def list_keys(self, container: str, prefix: str = "", continuation_token: str | None = None) -> ListPage:
        """List one page of keys starting with prefix."""

    async def close(self) -> None:
        """Release backend resources."""
        return None


@dataclass
class ObjectProperties:
    """Properties stored alongside an object."""

    content_type: str
    content_encoding: str | None = None
    cache_control: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ContentType": self.content_type,
            "ContentEncoding": self.content_encoding,
            "CacheControl": self.cache_control,
            "Metadata": dict(self.metadata),
        }
