"""
Resource data models

Resources, storage objects and the source variants the publish target
dispatches on.
"""

from __future__ import annotations

import mimetypes
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import TYPE_CHECKING, Protocol, TypeAlias

if TYPE_CHECKING:
    from .storage.resource_storage import ResourceStorage
    from .target import PublishTarget

SHA1_PATTERN = re.compile(r"^[0-9a-f]{40}$")

DEFAULT_MEDIA_TYPE = "application/octet-stream"


def media_type_from_filename(filename: str) -> str:
    """Derive the IANA media type from a filename's extension."""
    media_type, _ = mimetypes.guess_type(filename, strict=False)
    return media_type or DEFAULT_MEDIA_TYPE


class ContentStream(Protocol):
    """Async readable byte stream, owned by whoever opened it."""

    async def read(self, size: int = -1) -> bytes: ...

    async def close(self) -> None: ...


StreamOpener: TypeAlias = Callable[[], Awaitable[ContentStream]]


@dataclass(frozen=True)
class Resource:
    """A content-addressed resource.

    Persistent resources are identified by (collection_name, sha1). Static
    resources carry a relative_publication_path and are identified by
    (collection_name, relative_publication_path + filename).
    """

    sha1: str
    filename: str
    media_type: str = ""
    file_size: int = 0
    collection_name: str = ""
    relative_publication_path: str = ""

    def __post_init__(self) -> None:
        if not SHA1_PATTERN.match(self.sha1):
            raise ValueError(f"Invalid SHA1 hash '{self.sha1}' (expected 40 lowercase hex characters)")
        if not self.media_type:
            object.__setattr__(self, "media_type", media_type_from_filename(self.filename))

    @property
    def file_extension(self) -> str:
        """Lower-case file extension without the dot, empty if there is none."""
        return PurePosixPath(self.filename).suffix.lstrip(".").lower()


@dataclass(frozen=True)
class StorageObject:
    """A resource as yielded by a storage, with a way to open its content."""

    resource: Resource
    open_stream: StreamOpener = field(compare=False, repr=False)

    @property
    def sha1(self) -> str:
        return self.resource.sha1

    @property
    def filename(self) -> str:
        return self.resource.filename

    @property
    def media_type(self) -> str:
        return self.resource.media_type


@dataclass(frozen=True)
class NativeLocation:
    """Source object lives on the same backend as the target: copy server-side."""

    container: str
    key: str


@dataclass(frozen=True)
class StreamSource:
    """Source object lives elsewhere: its bytes have to be streamed through."""

    open_stream: StreamOpener = field(repr=False)


ResourceSource: TypeAlias = NativeLocation | StreamSource


@dataclass
class Collection:
    """Named pairing of a storage (source) and a target (sink)."""

    name: str
    storage: ResourceStorage
    target: PublishTarget
