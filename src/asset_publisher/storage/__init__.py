"""
Storage Package

Object store abstraction (S3-compatible and local backends) and the
resource storage collections are published from.
"""

# Core storage classes and interfaces
from .base import BackendConfig, ListPage, ObjectStore, StorageError, StorageNotFoundError

# Storage creation
from .factories import (
    create_local_store,
    create_minio_store,
    create_object_store_from_config,
    create_r2_store,
    create_s3_store,
    get_storage_protocol,
)
from .local import LocalObjectStore

# Resource storage
from .resource_storage import ResourceStorage
from .s3 import S3ObjectStore

__all__ = [
    # Base classes
    "BackendConfig",
    "ListPage",
    "ObjectStore",
    "StorageError",
    "StorageNotFoundError",
    # Backends
    "LocalObjectStore",
    "S3ObjectStore",
    # Factories
    "create_object_store_from_config",
    "get_storage_protocol",
    "create_s3_store",
    "create_r2_store",
    "create_minio_store",
    "create_local_store",
    # Resource storage
    "ResourceStorage",
]
