#!/usr/bin/env python3
"""
Publish Configuration Management

Reads the JSON configuration naming profiles (object store connections),
storages, targets and the collections that pair them.
"""

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, NotRequired, TypedDict

from .constants import DEFAULT_DATABASE_PATH, STORAGE_TYPES
from .database import ResourceRepository
from .exceptions import ConfigurationError
from .models import Collection
from .storage.base import ObjectStore
from .storage.factories import create_object_store_from_config
from .storage.resource_storage import ResourceStorage
from .target import PublishTarget

logger = logging.getLogger(__name__)


class ProfileConfig(TypedDict, total=False):
    """Connection settings of one object store."""

    type: STORAGE_TYPES
    base_path: str  # For local storage
    endpoint_url: str  # For MinIO/R2, optional for S3
    account_name: str  # Account part of the public endpoint host
    region_name: str
    public_endpoint: str  # Overrides the derived https://{account}.{domain}/
    access_key: str
    secret_key: str
    credentials_file: str  # JSON file holding any of the above


class StorageEntry(TypedDict):
    profile: str
    options: NotRequired[dict[str, Any]]


class TargetEntry(TypedDict):
    profile: str
    options: dict[str, Any]


class CollectionEntry(TypedDict):
    storage: str
    target: str


@dataclass
class PublishConfig:
    """Loaded publish configuration."""

    profiles: dict[str, ProfileConfig]
    storages: dict[str, StorageEntry]
    targets: dict[str, TargetEntry]
    collections: dict[str, CollectionEntry]
    database_path: Path = DEFAULT_DATABASE_PATH
    source_path: Path | None = None
    _stores: dict[str, ObjectStore] = field(default_factory=dict, repr=False)

    def profile(self, name: str) -> ProfileConfig:
        try:
            return self.profiles[name]
        except KeyError:
            raise ConfigurationError(f'Unknown profile "{name}". Please check your settings.') from None

    def get_store(self, profile_name: str) -> ObjectStore:
        """Object store of a profile, created once and shared."""
        if profile_name not in self._stores:
            self._stores[profile_name] = create_object_store_from_config(profile_name, self.profile(profile_name))
        return self._stores[profile_name]

    async def close(self) -> None:
        """Close every object store created from this configuration."""
        stores, self._stores = list(self._stores.values()), {}
        for store in stores:
            await store.close()


def load_publish_config(config_path: str | Path) -> PublishConfig:
    """
    Load publish configuration from a JSON file.

    Raises:
        ConfigurationError: If the file cannot be read or parsed
    """
    config_path = Path(config_path)
    try:
        with open(config_path) as f:
            config_dict = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in configuration file {config_path}: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Could not read configuration file {config_path}: {e}") from e

    if not isinstance(config_dict, dict):
        raise ConfigurationError(f"Configuration file {config_path} must contain a JSON object")

    sections = {}
    for section in ("profiles", "storages", "targets", "collections"):
        value = config_dict.get(section) or {}
        if not isinstance(value, dict):
            raise ConfigurationError(f'Section "{section}" of {config_path} must be a JSON object')
        sections[section] = value

    database = config_dict.get("database")
    config = PublishConfig(
        **sections,
        database_path=Path(database) if database else DEFAULT_DATABASE_PATH,
        source_path=config_path,
    )
    logger.debug(
        f"Loaded configuration from {config_path}: {len(config.profiles)} profiles, "
        f"{len(config.collections)} collections"
    )
    return config


def build_storage(config: PublishConfig, name: str, repository: ResourceRepository) -> ResourceStorage:
    try:
        entry = config.storages[name]
    except KeyError:
        raise ConfigurationError(f'Unknown resource storage "{name}". Please check your settings.') from None
    return ResourceStorage.from_options(name, config.get_store(entry["profile"]), repository, entry.get("options") or {})


def build_target(
    config: PublishConfig, name: str, should_continue: Callable[[], bool] | None = None
) -> PublishTarget:
    try:
        entry = config.targets[name]
    except KeyError:
        raise ConfigurationError(f'Unknown publishing target "{name}". Please check your settings.') from None
    target = PublishTarget.from_options(name, config.get_store(entry["profile"]), entry.get("options") or {})
    target.should_continue = should_continue
    return target


async def build_collections(
    config: PublishConfig, should_continue: Callable[[], bool] | None = None
) -> dict[str, Collection]:
    """
    Build every configured collection with initialized targets.

    The resource database is created if needed and shared by all storages.
    """
    repository = ResourceRepository(config.database_path)
    await repository.initialize()

    collections: dict[str, Collection] = {}
    for name, entry in config.collections.items():
        if not entry.get("storage") or not entry.get("target"):
            raise ConfigurationError(f'Collection "{name}" must name both a storage and a target.')
        storage = build_storage(config, entry["storage"], repository)
        target = build_target(config, entry["target"], should_continue)
        await target.initialize()
        collections[name] = Collection(name=name, storage=storage, target=target)
    return collections


async def build_collection(
    config: PublishConfig, name: str, should_continue: Callable[[], bool] | None = None
) -> Collection:
    collections = await build_collections(config, should_continue)
    try:
        return collections[name]
    except KeyError:
        raise ConfigurationError(f'Unknown collection "{name}". Please check your settings.') from None
