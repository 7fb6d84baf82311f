"""
Storage Factory Functions

Creates object stores from configuration profiles.
"""

import json
import logging
from collections.abc import Mapping
from typing import Any

import boto3

from ..exceptions import ConfigurationError
from .base import BackendConfig, ObjectStore
from .local import LocalObjectStore
from .s3 import S3ObjectStore

logger = logging.getLogger(__name__)


def get_storage_protocol(storage_type: str) -> str:
    """
    Determine storage protocol from storage type.

    Args:
        storage_type: Profile storage type (minio, r2, s3, local)

    Returns:
        str: Storage protocol ("s3" or "file")
    """
    if storage_type in ("minio", "r2", "s3"):
        return "s3"
    return "file"


def load_json_credentials(credentials_path: str) -> dict[str, Any]:
    """Load and parse JSON credentials file."""
    try:
        with open(credentials_path) as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in credentials file {credentials_path}: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Could not read credentials file {credentials_path}: {e}") from e


def s3_credentials_available() -> bool:
    """Check if S3 credentials are available via boto3's credential resolution."""
    try:
        session = boto3.Session()
        credentials = session.get_credentials()
        return credentials is not None and credentials.access_key is not None
    except Exception as e:
        logger.debug(f"boto3 credential resolution failed: {e}")
        return False


def validate_required_keys(data: Mapping[str, Any], required_keys: list[str], context: str = "configuration") -> None:
    """
    Validate that required keys exist in configuration dictionary.

    Raises:
        ConfigurationError: If any required keys are missing
    """
    missing_keys = [key for key in required_keys if not data.get(key)]
    if missing_keys:
        raise ConfigurationError(f"Missing required {context} keys: {missing_keys}")


def _resolve_credentials(profile_name: str, profile: Mapping[str, Any], required: list[str]) -> dict[str, Any]:
    """Merge inline profile settings with those of its credentials file (file wins)."""
    settings = dict(profile)
    credentials_file = profile.get("credentials_file")
    if credentials_file:
        settings.update(load_json_credentials(str(credentials_file)))
    validate_required_keys(settings, required, f'profile "{profile_name}"')
    return settings


def create_object_store_from_config(profile_name: str, profile: Mapping[str, Any]) -> ObjectStore:
    """
    Create an object store from a configuration profile.

    Args:
        profile_name: Name of the profile, used in error messages
        profile: Profile settings ("type" plus type-specific keys)

    Returns:
        ObjectStore: Configured object store

    Raises:
        ConfigurationError: If the storage type is unknown or settings are missing
    """
    storage_type = profile.get("type")
    public_endpoint = profile.get("public_endpoint")
    match storage_type:
        case "local":
            base_path = profile.get("base_path")
            if not base_path:
                raise ConfigurationError(
                    f'Local profile "{profile_name}" requires explicit base_path. '
                    "Provide base_path in the profile configuration."
                )
            return create_local_store(base_path, public_endpoint=public_endpoint)

        case "minio":
            settings = _resolve_credentials(profile_name, profile, ["endpoint_url", "access_key", "secret_key"])
            return create_minio_store(
                endpoint_url=settings["endpoint_url"],
                access_key=settings["access_key"],
                secret_key=settings["secret_key"],
                public_endpoint=public_endpoint,
            )

        case "r2":
            settings = _resolve_credentials(
                profile_name, profile, ["endpoint_url", "account_name", "access_key", "secret_key"]
            )
            return create_r2_store(
                endpoint_url=settings["endpoint_url"],
                access_key=settings["access_key"],
                secret_key=settings["secret_key"],
                account_name=settings["account_name"],
                public_endpoint=public_endpoint,
            )

        case "s3":
            settings = _resolve_credentials(profile_name, profile, [])
            if not settings.get("access_key") and not s3_credentials_available():
                logger.warning(
                    f'No credentials configured for S3 profile "{profile_name}" and none found by boto3; '
                    "requests will be anonymous and will probably fail."
                )
            kwargs: dict[str, Any] = {}
            if settings.get("access_key"):
                kwargs["key"] = settings["access_key"]
                kwargs["secret"] = settings.get("secret_key")
            if settings.get("region_name"):
                kwargs["region_name"] = settings["region_name"]
            return create_s3_store(
                account_name=settings.get("account_name"),
                endpoint_url=settings.get("endpoint_url"),
                public_endpoint=public_endpoint,
                **kwargs,
            )

        case _:
            raise ConfigurationError(f'Unknown storage type "{storage_type}" in profile "{profile_name}"')


def create_s3_store(account_name: str | None = None, **kwargs: Any) -> S3ObjectStore:
    """Create AWS S3 object store."""
    return S3ObjectStore(BackendConfig.s3(account_name=account_name, **kwargs))


def create_r2_store(endpoint_url: str, access_key: str, secret_key: str, account_name: str, **kwargs: Any) -> S3ObjectStore:
    """Create Cloudflare R2 object store."""
    return S3ObjectStore(BackendConfig.r2(endpoint_url, access_key, secret_key, account_name, **kwargs))


def create_minio_store(endpoint_url: str, access_key: str, secret_key: str, **kwargs: Any) -> S3ObjectStore:
    """Create MinIO object store."""
    return S3ObjectStore(BackendConfig.minio(endpoint_url, access_key, secret_key, **kwargs))


def create_local_store(base_path: str, public_endpoint: str | None = None) -> LocalObjectStore:
    """Create local filesystem object store."""
    return LocalObjectStore(BackendConfig.local(base_path, public_endpoint=public_endpoint))
