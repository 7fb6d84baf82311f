"""
Resource Storage

The private side of a collection: resources are stored in a container under
``key_prefix + sha1`` and indexed in the resource database.
"""

import asyncio
import hashlib
import logging
import shutil
import tempfile
from collections.abc import AsyncIterator, Mapping
from pathlib import Path
from typing import IO, Any

from ..constants import STREAM_CHUNK_SIZE
from ..database import ResourceRepository
from ..exceptions import ConfigurationError
from ..models import ContentStream, NativeLocation, Resource, ResourceSource, StorageObject, StreamSource
from .base import ObjectStore, StorageError, StorageNotFoundError

logger = logging.getLogger(__name__)

STORAGE_OPTIONS = ("container", "keyPrefix")


class ResourceStorage:
    """
    Writable resource storage backed by an object store container.

    Implements storage patterns for content-addressed resources.
    """

    def __init__(
        self,
        name: str,
        store: ObjectStore,
        repository: ResourceRepository,
        container: str = "",
        key_prefix: str = "",
    ):
        self.name = name
        self.store = store
        self.repository = repository
        self.container = container or name
        self.key_prefix = key_prefix.lstrip("/")

        if not self.container:
            raise ConfigurationError(
                f'No container was specified in the configuration of the "{name}" resource storage. '
                "Please check your settings."
            )

    @classmethod
    def from_options(
        cls, name: str, store: ObjectStore, repository: ResourceRepository, options: Mapping[str, Any]
    ) -> "ResourceStorage":
        """Build a storage from its configuration options."""
        for key, value in options.items():
            if key not in STORAGE_OPTIONS and value is not None:
                raise ConfigurationError(
                    f'An unknown option "{key}" was specified in the configuration of the "{name}" '
                    "resource storage. Please check your settings."
                )
        return cls(
            name,
            store,
            repository,
            container=options.get("container") or "",
            key_prefix=options.get("keyPrefix") or "",
        )

    def object_key(self, sha1: str) -> str:
        return f"{self.key_prefix}{sha1}"

    def is_same_container(self, store: ObjectStore, container: str) -> bool:
        """Whether a target container is this storage's own container."""
        return self.store.shares_backend_with(store) and self.container == container

    def source_for(self, resource: Resource, target_store: ObjectStore) -> ResourceSource:
        """
        Describe how a target can obtain the resource's bytes.

        Stores sharing one backend can copy server-side from the native
        location; anything else has to stream the content through.
        """
        key = self.object_key(resource.sha1)
        if self.store.shares_backend_with(target_store):
            return NativeLocation(container=self.container, key=key)

        async def open_stream() -> ContentStream:
            return await self.store.open_object(self.container, key)

        return StreamSource(open_stream=open_stream)

    async def objects(self, collection_name: str) -> AsyncIterator[StorageObject]:
        """Yield the storage objects of a collection, opening content only on demand."""
        async for resource in self.repository.find_by_collection(collection_name):
            key = self.object_key(resource.sha1)

            async def open_stream(key: str = key) -> ContentStream:
                return await self.store.open_object(self.container, key)

            yield StorageObject(resource=resource, open_stream=open_stream)

    async def import_resource(
        self, source: str | Path | IO[bytes], collection_name: str, filename: str | None = None
    ) -> Resource:
        """
        Import a file (path) or binary stream into this storage.

        The content goes through a temporary file so its hash can be computed
        before upload; the temporary file is removed on every path.

        Returns:
            Resource: the imported resource, already recorded in the repository
        """
        if isinstance(source, str | Path) and filename is None:
            filename = Path(source).name

        with tempfile.NamedTemporaryFile(prefix="asset_publisher_", delete=False) as temp_file:
            temp_path = Path(temp_file.name)

        try:
            loop = asyncio.get_running_loop()
            try:
                if isinstance(source, str | Path):
                    await loop.run_in_executor(None, shutil.copyfile, source, temp_path)
                else:
                    await loop.run_in_executor(None, _copy_stream_to_file, source, temp_path)
            except OSError as e:
                raise StorageError(f"Could not copy the import source to temporary file {temp_path}: {e}") from e

            return await self._import_temporary_file(temp_path, collection_name, filename)
        finally:
            temp_path.unlink(missing_ok=True)

    async def import_resource_from_content(
        self, content: bytes, collection_name: str, filename: str | None = None
    ) -> Resource:
        """Import bytes; without a filename the hash doubles as filename."""
        sha1 = hashlib.sha1(content).hexdigest()
        resource = Resource(
            sha1=sha1,
            filename=filename or sha1,
            file_size=len(content),
            collection_name=collection_name,
        )
        await self.store.put_object(self.container, self.object_key(sha1), content, resource.media_type)
        await self.repository.add(resource)
        return resource

    async def _import_temporary_file(self, temp_path: Path, collection_name: str, filename: str | None) -> Resource:
        loop = asyncio.get_running_loop()
        sha1 = await loop.run_in_executor(None, _sha1_file, temp_path)
        resource = Resource(
            sha1=sha1,
            filename=filename or sha1,
            file_size=temp_path.stat().st_size,
            collection_name=collection_name,
        )
        key = self.object_key(sha1)

        try:
            await self.store.head_object(self.container, key)
            logger.info(
                f'Did not import resource as object "{key}" into container "{self.container}" '
                "because that object already existed."
            )
        except StorageNotFoundError:
            try:
                with open(temp_path, "rb") as f:
                    await self.store.put_object(self.container, key, f, resource.media_type)
            except StorageError as e:
                logger.error(
                    f'Failed importing the temporary file into storage collection "{collection_name}": {e}'
                )
                raise
            logger.info(
                f'Successfully imported resource as object "{key}" into container "{self.container}" '
                f'with SHA1 hash "{sha1}"'
            )

        await self.repository.add(resource)
        return resource

    async def delete_resource(self, resource: Resource) -> bool:
        """Delete the stored bytes of a resource. Returns False if they were already gone."""
        key = self.object_key(resource.sha1)
        try:
            await self.store.delete_object(self.container, key)
        except StorageNotFoundError:
            return False
        except StorageError as e:
            message = (
                f"Could not delete object for resource {resource.filename} "
                f"(/{self.container}/{key}). {e}"
            )
            logger.error(message)
            raise StorageError(message) from e
        return True

    async def get_stream_by_resource(self, resource: Resource) -> ContentStream | None:
        """Open the content of a resource, None if it does not exist."""
        return await self._open(self.object_key(resource.sha1), resource.filename)

    async def get_stream_by_path(self, relative_path: str) -> ContentStream | None:
        """Open an object by path relative to the storage root, None if it does not exist."""
        return await self._open(f"{self.key_prefix}{relative_path.lstrip('/')}", relative_path)

    async def _open(self, key: str, label: str) -> ContentStream | None:
        try:
            return await self.store.open_object(self.container, key)
        except StorageNotFoundError:
            return None
        except StorageError as e:
            message = f"Could not retrieve stream for resource {label} (/{self.container}/{key}). {e}"
            logger.error(message)
            raise StorageError(message) from e


def _copy_stream_to_file(stream: IO[bytes], path: Path) -> None:
    with open(path, "wb") as target:
        shutil.copyfileobj(stream, target, STREAM_CHUNK_SIZE)


def _sha1_file(path: Path) -> str:
    digest = hashlib.sha1()
    with open(path, "rb") as f:
        while chunk := f.read(STREAM_CHUNK_SIZE):
            digest.update(chunk)
    return digest.hexdigest()
