"""
Resource index database

SQLite index of the resources held by each collection. Storages use it to
enumerate a collection's resources; the metadata refresh command walks it
in hash order.
"""

import logging
from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

import aiosqlite

from .models import Resource

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS resources (
    sha1 TEXT NOT NULL,
    collection_name TEXT NOT NULL,
    filename TEXT NOT NULL,
    media_type TEXT NOT NULL,
    file_size INTEGER NOT NULL DEFAULT 0,
    relative_publication_path TEXT NOT NULL DEFAULT '',
    PRIMARY KEY (collection_name, sha1, filename, relative_publication_path)
);
CREATE INDEX IF NOT EXISTS idx_resources_collection_sha1 ON resources (collection_name, sha1);
"""

RESOURCE_COLUMNS = "sha1, collection_name, filename, media_type, file_size, relative_publication_path"


@asynccontextmanager
async def connect_async(db_path: str | Path, timeout: float = 30.0) -> AsyncGenerator[aiosqlite.Connection, None]:
    """Create an asynchronous database connection with WAL mode enabled."""
    async with aiosqlite.connect(str(db_path), timeout=timeout) as conn:
        await conn.execute("PRAGMA journal_mode=WAL")
        await conn.execute("PRAGMA synchronous=NORMAL")
        await conn.execute("PRAGMA busy_timeout=5000")  # Wait up to 5 seconds for locks
        yield conn


def _row_to_resource(row) -> Resource:
    sha1, collection_name, filename, media_type, file_size, relative_publication_path = row
    return Resource(
        sha1=sha1,
        filename=filename,
        media_type=media_type,
        file_size=file_size,
        collection_name=collection_name,
        relative_publication_path=relative_publication_path,
    )


class ResourceRepository:
    """Async repository of resource records."""

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path)

    async def initialize(self) -> None:
        """Create the database file and schema if needed."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        async with connect_async(self.db_path) as db:
            await db.executescript(SCHEMA)
            await db.commit()
        logger.debug(f"Resource database ready at {self.db_path}")

    async def add(self, resource: Resource) -> None:
        async with connect_async(self.db_path) as db:
            await db.execute(
                f"INSERT OR REPLACE INTO resources ({RESOURCE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)",
                (
                    resource.sha1,
                    resource.collection_name,
                    resource.filename,
                    resource.media_type,
                    resource.file_size,
                    resource.relative_publication_path,
                ),
            )
            await db.commit()

    async def remove(self, resource: Resource) -> None:
        async with connect_async(self.db_path) as db:
            await db.execute(
                "DELETE FROM resources WHERE collection_name = ? AND sha1 = ? AND filename = ? "
                "AND relative_publication_path = ?",
                (resource.collection_name, resource.sha1, resource.filename, resource.relative_publication_path),
            )
            await db.commit()

    async def find_by_sha1(self, sha1: str, collection_name: str) -> Resource | None:
        async with connect_async(self.db_path) as db:
            async with db.execute(
                f"SELECT {RESOURCE_COLUMNS} FROM resources WHERE collection_name = ? AND sha1 = ? LIMIT 1",
                (collection_name, sha1),
            ) as cursor:
                row = await cursor.fetchone()
        return _row_to_resource(row) if row else None

    async def count(self, collection_name: str) -> int:
        async with connect_async(self.db_path) as db:
            async with db.execute(
                "SELECT COUNT(*) FROM resources WHERE collection_name = ?", (collection_name,)
            ) as cursor:
                row = await cursor.fetchone()
        return row[0] if row else 0

    async def find_by_collection(self, collection_name: str) -> AsyncIterator[Resource]:
        """Yield every resource of a collection."""
        async with connect_async(self.db_path) as db:
            async with db.execute(
                f"SELECT {RESOURCE_COLUMNS} FROM resources WHERE collection_name = ? ORDER BY sha1, filename",
                (collection_name,),
            ) as cursor:
                async for row in cursor:
                    yield _row_to_resource(row)

    async def iter_metadata(self, collection_name: str, start_sha1: str | None = None) -> AsyncIterator[Resource]:
        """
        Yield one resource per distinct hash, in hash order.

        Args:
            collection_name: Collection to walk
            start_sha1: If given, start after this hash (resume point)
        """
        query = f"SELECT {RESOURCE_COLUMNS} FROM resources WHERE collection_name = ?"
        params: tuple[str, ...] = (collection_name,)
        if start_sha1 is not None:
            query += " AND sha1 > ?"
            params += (start_sha1,)
        query += " ORDER BY sha1, filename"

        previous_sha1 = None
        async with connect_async(self.db_path) as db:
            async with db.execute(query, params) as cursor:
                async for row in cursor:
                    if row[0] == previous_sha1:
                        continue
                    previous_sha1 = row[0]
                    yield _row_to_resource(row)
