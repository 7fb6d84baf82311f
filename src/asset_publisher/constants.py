#!/usr/bin/env python3
"""
Constants for asset-publisher.

Centralized constants to eliminate duplication across the codebase.
"""

from pathlib import Path
from typing import Literal

OUTPUT_DIR = Path("output")

# Configuration
DEFAULT_CONFIG_PATH = Path("publish_config.json")

# Resource database
DEFAULT_DATABASE_PATH = OUTPUT_DIR / "resources.db"

# Default collection used by the CLI commands
DEFAULT_COLLECTION_NAME = "persistent"

# Persistent resource URI patterns
DEFAULT_PERSISTENT_RESOURCE_URI_PATTERN = "{baseUri}{keyPrefix}{sha1}/{filename}"
NATIVE_PERSISTENT_RESOURCE_URI_PATTERN = "{baseUri}{containerName}/{keyPrefix}{sha1}/{filename}"
DEFAULT_SIGNATURE_LIFETIME = 600

# Published objects are immutable (key embeds the content hash), so cache for two weeks
DEFAULT_CACHE_CONTROL = "public, max-age=1209600"
DEFAULT_CORS_ALLOW_ORIGIN = "*"

# Transcoding
DEFAULT_GZIP_COMPRESSION_LEVEL = 9
DEFAULT_GZIP_COMPRESSION_MEDIA_TYPES = (
    "text/plain",
    "text/css",
    "text/xml",
    "text/mathml",
    "text/javascript",
    "application/x-javascript",
    "application/xml",
    "application/rss+xml",
    "application/atom+xml",
    "application/javascript",
    "application/json",
    "application/x-font-woff",
    "image/svg+xml",
)
STREAM_CHUNK_SIZE = 512 * 1024  # 512 KiB reads from the source stream
SPOOL_MAX_MEMORY_SIZE = 8 * 1024 * 1024  # Spill spooled buffers to disk beyond 8 MiB

# Uploads at or above this size go through multipart upload
MULTIPART_UPLOAD_THRESHOLD = 16 * 1024 * 1024
MULTIPART_PART_SIZE = 8 * 1024 * 1024

# Sync engine concurrency (1 = strictly sequential)
DEFAULT_PUBLISH_CONCURRENCY = 1

# S3 connection pool configuration
DEFAULT_S3_MAX_POOL_CONNECTIONS = 50

# Listing retries
DEFAULT_LIST_RETRIES = 2
DEFAULT_RETRY_WAIT_SECONDS = 2

# Public endpoint domains per storage type ("https://{account}.{domain}/");
# MinIO has no public domain and needs an explicit public_endpoint
PUBLIC_ENDPOINT_DOMAINS = {
    "s3": "amazonaws.com",
    "r2": "r2.cloudflarestorage.com",
}
DEFAULT_S3_ACCOUNT_NAME = "s3"  # https://s3.amazonaws.com/{bucket}/ path-style endpoint

# Connectivity self-test
CONNECTION_TEST_KEY = "AssetPublisher.ConnectionTest.txt"
CONNECTION_TEST_CONTENT = "I am a teapot"

# Storage types
STORAGE_TYPES = Literal["s3", "r2", "minio", "local"]
