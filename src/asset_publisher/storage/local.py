"""
Local filesystem object store

Containers are directories below a base path, objects are files. Object
properties (content type, encoding, cache control) live in JSON side-car
files under each container's ``.meta`` directory.
"""

import asyncio
import json
import logging
import shutil
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.os
import fsspec

from ..constants import STREAM_CHUNK_SIZE
from ..models import media_type_from_filename
from .base import BackendConfig, Body, ListPage, ObjectProperties, ObjectStore, StorageError, StorageNotFoundError

logger = logging.getLogger(__name__)

META_DIR = ".meta"
DEFAULT_PAGE_SIZE = 1000


class LocalObjectStore(ObjectStore):
    """Object store on the local filesystem."""

    def __init__(self, config: BackendConfig, page_size: int = DEFAULT_PAGE_SIZE):
        super().__init__(config)
        base_path = config.options.get("base_path")
        if not base_path:
            raise ValueError("Local storage requires explicit base_path")
        self.base_path = Path(base_path)
        self.page_size = page_size
        self._fs = None

    @property
    def backend_id(self) -> str:
        return f"file:{self.base_path.resolve()}"

    def _get_fs(self) -> Any:
        """Get filesystem instance (lazy initialization)."""
        if self._fs is None:
            self._fs = fsspec.filesystem("file")
        return self._fs

    def _object_path(self, container: str, key: str) -> Path:
        key = key.lstrip("/")
        if not container or "/" in container or container in (".", ".."):
            raise StorageError(f"Invalid container name: {container!r}")
        if not key or any(part in ("", ".", "..") for part in key.split("/")) or key.startswith(f"{META_DIR}/"):
            raise StorageError(f"Invalid object key: {key!r}")
        return self.base_path / container / key

    def _meta_path(self, container: str, key: str) -> Path:
        return self.base_path / container / META_DIR / f"{key.lstrip('/')}.json"

    async def _read_properties(self, container: str, key: str) -> ObjectProperties:
        meta_path = self._meta_path(container, key)
        if not await aiofiles.os.path.exists(meta_path):
            return ObjectProperties(content_type=media_type_from_filename(key))
        async with aiofiles.open(meta_path) as f:
            data = json.loads(await f.read())
        return ObjectProperties(
            content_type=data["content_type"],
            content_encoding=data.get("content_encoding"),
            cache_control=data.get("cache_control"),
        )

    async def _write_properties(self, container: str, key: str, properties: ObjectProperties) -> None:
        meta_path = self._meta_path(container, key)
        meta_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(meta_path, "w") as f:
            await f.write(
                json.dumps(
                    {
                        "content_type": properties.content_type,
                        "content_encoding": properties.content_encoding,
                        "cache_control": properties.cache_control,
                    }
                )
            )

    async def _require(self, container: str, key: str) -> Path:
        path = self._object_path(container, key)
        if not await aiofiles.os.path.isfile(path):
            raise StorageNotFoundError(f"Object not found: {container}/{key}")
        return path

    async def put_object(
        self,
        container: str,
        key: str,
        body: Body,
        content_type: str,
        content_encoding: str | None = None,
        cache_control: str | None = None,
    ) -> None:
        path = self._object_path(container, key)
        path.parent.mkdir(parents=True, exist_ok=True)

        async with aiofiles.open(path, "wb") as f:
            if isinstance(body, bytes | bytearray):
                await f.write(body)
            else:
                loop = asyncio.get_running_loop()
                while chunk := await loop.run_in_executor(None, body.read, STREAM_CHUNK_SIZE):
                    await f.write(chunk)

        await self._write_properties(
            container,
            key,
            ObjectProperties(content_type=content_type, content_encoding=content_encoding, cache_control=cache_control),
        )
        logger.debug(f"Wrote local object {path}")

    async def open_object(self, container: str, key: str):
        path = await self._require(container, key)
        return await aiofiles.open(path, "rb")

    async def head_object(self, container: str, key: str) -> dict[str, Any]:
        path = await self._require(container, key)
        properties = await self._read_properties(container, key)
        result = properties.to_dict()
        result["ContentLength"] = (await aiofiles.os.stat(path)).st_size
        return result

    async def delete_object(self, container: str, key: str) -> None:
        path = await self._require(container, key)
        await aiofiles.os.remove(path)
        meta_path = self._meta_path(container, key)
        if await aiofiles.os.path.exists(meta_path):
            await aiofiles.os.remove(meta_path)

    async def copy_object(self, dst_container: str, dst_key: str, src_container: str, src_key: str) -> None:
        src_path = await self._require(src_container, src_key)
        dst_path = self._object_path(dst_container, dst_key)
        dst_path.parent.mkdir(parents=True, exist_ok=True)

        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, shutil.copyfile, src_path, dst_path)

        src_meta = self._meta_path(src_container, src_key)
        if await aiofiles.os.path.exists(src_meta):
            dst_meta = self._meta_path(dst_container, dst_key)
            dst_meta.parent.mkdir(parents=True, exist_ok=True)
            await loop.run_in_executor(None, shutil.copyfile, src_meta, dst_meta)

    async def set_content_type(self, container: str, key: str, content_type: str) -> None:
        await self._require(container, key)
        properties = await self._read_properties(container, key)
        properties.content_type = content_type
        await self._write_properties(container, key, properties)

    async def list_keys(self, container: str, prefix: str = "", continuation_token: str | None = None) -> ListPage:
        """List keys in lexical order; the continuation token is the last key of the previous page."""
        container_path = self.base_path / container
        if not container_path.is_dir():
            return ListPage(keys=[])

        loop = asyncio.get_running_loop()
        keys = await loop.run_in_executor(
            None, self._scan_keys, str(container_path), prefix, continuation_token, self.page_size + 1
        )

        page = keys[: self.page_size]
        next_token = page[-1] if len(keys) > self.page_size else None
        return ListPage(keys=page, next_token=next_token)

    def _scan_keys(self, container_path: str, prefix: str, start_after: str | None, limit: int) -> list[str]:
        """
        Walk a container in key order and collect up to ``limit`` keys after ``start_after``.

        A directory sorts as "name/", the prefix every key below it shares, so
        visiting sorted entries depth-first yields keys in lexical order. Only
        the directories a page actually needs are listed: subtrees outside the
        prefix or entirely before the token are skipped, and the walk stops as
        soon as the page is full.
        """
        fs = self._get_fs()
        keys: list[str] = []

        def visit(directory: str, key_prefix: str) -> bool:
            entries = []
            for entry in fs.ls(directory, detail=True):
                name = entry["name"].rstrip("/").rsplit("/", 1)[-1]
                if not key_prefix and name == META_DIR:
                    continue
                if entry["type"] == "directory":
                    entries.append((f"{key_prefix}{name}/", entry["name"]))
                elif entry["type"] == "file":
                    entries.append((f"{key_prefix}{name}", None))

            for key, subdirectory in sorted(entries):
                if subdirectory is not None:
                    if not (key.startswith(prefix) or prefix.startswith(key)):
                        continue
                    if start_after is not None and key < start_after and not start_after.startswith(key):
                        continue
                    if not visit(subdirectory, key):
                        return False
                elif key.startswith(prefix) and (start_after is None or key > start_after):
                    keys.append(key)
                    if len(keys) >= limit:
                        return False
            return True

        visit(container_path, "")
        return keys
