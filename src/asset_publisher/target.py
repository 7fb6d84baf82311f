"""
Publish Target

Synchronizes the resources of a collection into a public container and
resolves the public URIs they are served from.
"""

import asyncio
import importlib
import inspect
import logging
from collections.abc import Awaitable, Callable, Mapping
from contextlib import aclosing
from typing import Any, TypeAlias, TypedDict

from .compression import CompressionError, SpooledGzip, is_compressible, spool_stream, validate_compression_level
from .constants import (
    DEFAULT_CACHE_CONTROL,
    DEFAULT_CORS_ALLOW_ORIGIN,
    DEFAULT_GZIP_COMPRESSION_LEVEL,
    DEFAULT_GZIP_COMPRESSION_MEDIA_TYPES,
    DEFAULT_PUBLISH_CONCURRENCY,
    DEFAULT_SIGNATURE_LIFETIME,
)
from .exceptions import ConfigurationError, PublishCancelledError, SameContainerError
from .messages import MessageCode, MessageCollector, PublishReport, Severity
from .models import Collection, ContentStream, NativeLocation, Resource, StorageObject, StreamOpener, StreamSource
from .storage.base import Body, ObjectStore, StorageError, StorageNotFoundError
from .sync_session import SyncSession
from .uri import render_persistent_resource_uri, render_static_resource_uri, target_object_key

logger = logging.getLogger(__name__)

TARGET_OPTIONS = (
    "container",
    "keyPrefix",
    "persistentResourceUris",
    "corsAllowOrigin",
    "baseUri",
    "customBaseUriMethod",
    "gzipCompressionLevel",
    "gzipCompressionMediaTypes",
    "maxConcurrency",
)
PERSISTENT_RESOURCE_URI_OPTIONS = ("pattern", "enableSigning", "signatureLifetime")


class BaseUriContext(TypedDict):
    """What a base URI provider gets to see of its target."""

    target_name: str
    target_class: str
    container_name: str
    key_prefix: str
    base_uri: str
    enable_signing: bool


BaseUriProvider: TypeAlias = Callable[[BaseUriContext], str | Awaitable[str]]


def resolve_base_uri_provider(descriptor: str | Mapping[str, Any], target_name: str) -> BaseUriProvider:
    """
    Resolve a configured base URI provider to a callable.

    Accepted forms:
        "package.module:function"
        {"objectName": "package.module:SomeClass", "methodName": "base_uri"}

    An object that turns out to be a class is instantiated without arguments
    before the method is looked up.

    Raises:
        ConfigurationError: if the module, object or method cannot be resolved
    """
    if isinstance(descriptor, str):
        provider = _import_object(descriptor, target_name)
    elif isinstance(descriptor, Mapping):
        object_name = descriptor.get("objectName")
        method_name = descriptor.get("methodName")
        if not isinstance(object_name, str) or not object_name:
            raise ConfigurationError(
                f'No object name was specified for the custom base URI method of publishing target "{target_name}".'
            )
        if not isinstance(method_name, str) or not method_name:
            raise ConfigurationError(
                f'No method name was specified for the custom base URI method of publishing target "{target_name}".'
            )
        owner = _import_object(object_name, target_name)
        if inspect.isclass(owner):
            owner = owner()
        provider = getattr(owner, method_name, None)
        if provider is None:
            raise ConfigurationError(
                f'The method "{method_name}" of object "{object_name}" used as custom base URI method '
                f'of publishing target "{target_name}" does not exist.'
            )
    else:
        raise ConfigurationError(
            f'The custom base URI method of publishing target "{target_name}" must be a string or a mapping '
            'with "objectName" and "methodName".'
        )

    if not callable(provider):
        raise ConfigurationError(
            f'The custom base URI method "{descriptor}" of publishing target "{target_name}" is not callable.'
        )
    return provider


def _import_object(path: str, target_name: str) -> Any:
    module_name, _, attribute = path.partition(":")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigurationError(
            f'Could not import module "{module_name}" for the custom base URI method of publishing target '
            f'"{target_name}": {e}'
        ) from e
    if not attribute:
        return module
    try:
        return getattr(module, attribute)
    except AttributeError as e:
        raise ConfigurationError(
            f'Module "{module_name}" has no attribute "{attribute}" (custom base URI method of publishing '
            f'target "{target_name}").'
        ) from e


class PublishTarget:
    """
    A public container resources get published into.

    Object keys are ``key_prefix + relative_publication_path(resource)``, so a
    resource always lands at the same key and an existing key never needs to
    be rewritten.
    """

    def __init__(
        self,
        name: str,
        store: ObjectStore,
        container: str,
        key_prefix: str = "",
        *,
        persistent_resource_uri_pattern: str = "",
        enable_signing: bool = False,
        signature_lifetime: int = DEFAULT_SIGNATURE_LIFETIME,
        cors_allow_origin: str = DEFAULT_CORS_ALLOW_ORIGIN,
        base_uri: str = "",
        base_uri_provider: BaseUriProvider | None = None,
        gzip_compression_level: int = DEFAULT_GZIP_COMPRESSION_LEVEL,
        gzip_compression_media_types: tuple[str, ...] | list[str] = DEFAULT_GZIP_COMPRESSION_MEDIA_TYPES,
        max_concurrency: int = DEFAULT_PUBLISH_CONCURRENCY,
        cache_control: str = DEFAULT_CACHE_CONTROL,
        should_continue: Callable[[], bool] | None = None,
    ):
        if not container:
            raise ConfigurationError(
                f'No container was specified in the configuration of the "{name}" publishing target. '
                "Please check your settings."
            )
        try:
            validate_compression_level(gzip_compression_level)
        except ValueError as e:
            raise ConfigurationError(f'Publishing target "{name}": {e}') from e
        if not isinstance(max_concurrency, int) or isinstance(max_concurrency, bool) or max_concurrency < 1:
            raise ConfigurationError(
                f'Publishing target "{name}": maxConcurrency must be a positive integer, got {max_concurrency!r}'
            )

        self.name = name
        self.store = store
        self.container = container
        self.key_prefix = key_prefix.lstrip("/")
        self.persistent_resource_uri_pattern = persistent_resource_uri_pattern
        self.enable_signing = enable_signing
        self.signature_lifetime = signature_lifetime
        self.cors_allow_origin = cors_allow_origin
        self.base_uri = base_uri
        self.base_uri_provider = base_uri_provider
        self.gzip_compression_level = gzip_compression_level
        self.gzip_compression_media_types = frozenset(gzip_compression_media_types)
        self.max_concurrency = max_concurrency
        self.cache_control = cache_control
        self.should_continue = should_continue
        self._initialized = False

        if base_uri_provider is None:
            self._check_public_endpoint()

    @classmethod
    def from_options(cls, name: str, store: ObjectStore, options: Mapping[str, Any]) -> "PublishTarget":
        """Build a target from its configuration options, rejecting unknown ones."""
        for key, value in options.items():
            if key not in TARGET_OPTIONS and value is not None:
                raise ConfigurationError(
                    f'An unknown option "{key}" was specified in the configuration of the "{name}" '
                    "publishing target. Please check your settings."
                )

        uri_options = options.get("persistentResourceUris") or {}
        if not isinstance(uri_options, Mapping):
            raise ConfigurationError(
                f'The option "persistentResourceUris" of publishing target "{name}" must be a mapping.'
            )
        for key, value in uri_options.items():
            if key not in PERSISTENT_RESOURCE_URI_OPTIONS and value is not None:
                raise ConfigurationError(
                    f'An unknown option "{key}" was specified in the "persistentResourceUris" configuration '
                    f'of the "{name}" publishing target. Please check your settings.'
                )

        media_types = options.get("gzipCompressionMediaTypes")
        if media_types is None:
            media_types = DEFAULT_GZIP_COMPRESSION_MEDIA_TYPES
        elif not isinstance(media_types, list | tuple) or not all(isinstance(t, str) for t in media_types):
            raise ConfigurationError(
                f'The option "gzipCompressionMediaTypes" of publishing target "{name}" must be a list of strings.'
            )

        provider_descriptor = options.get("customBaseUriMethod")
        base_uri_provider = (
            resolve_base_uri_provider(provider_descriptor, name) if provider_descriptor is not None else None
        )

        level = options.get("gzipCompressionLevel")
        concurrency = options.get("maxConcurrency")
        lifetime = uri_options.get("signatureLifetime")
        return cls(
            name,
            store,
            options.get("container") or "",
            options.get("keyPrefix") or "",
            persistent_resource_uri_pattern=uri_options.get("pattern") or "",
            enable_signing=bool(uri_options.get("enableSigning", False)),
            signature_lifetime=DEFAULT_SIGNATURE_LIFETIME if lifetime is None else int(lifetime),
            cors_allow_origin=options.get("corsAllowOrigin") or DEFAULT_CORS_ALLOW_ORIGIN,
            base_uri=options.get("baseUri") or "",
            base_uri_provider=base_uri_provider,
            gzip_compression_level=DEFAULT_GZIP_COMPRESSION_LEVEL if level is None else level,
            gzip_compression_media_types=tuple(media_types),
            max_concurrency=DEFAULT_PUBLISH_CONCURRENCY if concurrency is None else concurrency,
        )

    async def initialize(self) -> None:
        """Resolve the base URI through the custom provider, once."""
        if self._initialized:
            return
        self._initialized = True
        if self.base_uri_provider is None:
            return

        context: BaseUriContext = {
            "target_name": self.name,
            "target_class": type(self).__name__,
            "container_name": self.container,
            "key_prefix": self.key_prefix,
            "base_uri": self.base_uri,
            "enable_signing": self.enable_signing,
        }
        base_uri = self.base_uri_provider(context)
        if inspect.isawaitable(base_uri):
            base_uri = await base_uri
        if not isinstance(base_uri, str):
            raise ConfigurationError(
                f'The custom base URI method of publishing target "{self.name}" returned '
                f"{type(base_uri).__name__} instead of a string."
            )
        self.base_uri = base_uri
        logger.debug(f'Publishing target "{self.name}" uses base URI "{base_uri}"')
        self._check_public_endpoint()

    def _check_public_endpoint(self) -> None:
        """Persistent URIs without a pattern or base URI are served from the store's native endpoint."""
        if self.persistent_resource_uri_pattern or self.base_uri:
            return
        try:
            self.store.config.resolve_public_endpoint()
        except ConfigurationError as e:
            raise ConfigurationError(
                f'Publishing target "{self.name}" has neither a base URI nor a URI pattern: {e}'
            ) from e

    def object_key(self, resource: Resource) -> str:
        return target_object_key(self.key_prefix, resource)

    def is_compressible(self, media_type: str) -> bool:
        return is_compressible(media_type, self.gzip_compression_media_types)

    def public_persistent_resource_uri(self, resource: Resource) -> str:
        """Public URI of a persistent resource."""
        # The store's native endpoint is only needed when nothing else provides a base
        public_endpoint = (
            "" if self.persistent_resource_uri_pattern or self.base_uri else self.store.public_endpoint
        )
        return render_persistent_resource_uri(
            resource,
            pattern=self.persistent_resource_uri_pattern,
            base_uri=self.base_uri,
            container_name=self.container,
            key_prefix=self.key_prefix,
            public_endpoint=public_endpoint,
        )

    def public_static_resource_uri(self, relative_path: str) -> str:
        """Public URI of a static resource, always served from the store's native endpoint."""
        return render_static_resource_uri(
            relative_path,
            container_name=self.container,
            key_prefix=self.key_prefix,
            public_endpoint=self.store.public_endpoint,
        )

    def _check_cancelled(self) -> None:
        if self.should_continue is not None and not self.should_continue():
            raise PublishCancelledError(f'Publishing into target "{self.name}" was cancelled.')

    def _guard_same_container(self, collection: Collection) -> None:
        if collection.storage.is_same_container(self.store, self.container):
            raise SameContainerError(
                f'Could not publish collection "{collection.name}" because the source and target '
                f'container is the same: "{self.container}".'
            )

    async def publish_collection(self, collection: Collection) -> PublishReport:
        """
        Synchronize a whole collection into this target.

        New objects are copied or uploaded, existing ones are left alone and
        objects under the key prefix that no resource maps to anymore are
        deleted. Per-object failures end up in the report; listing and pruning
        failures propagate.

        Args:
            collection: Collection to publish

        Returns:
            PublishReport: counts and collected messages
        """
        self._guard_same_container(collection)

        report = PublishReport(collection=collection.name)
        messages = MessageCollector()

        session = await SyncSession.build(self.store, self.container, self.key_prefix, self._check_cancelled)
        logger.info(f'Found {len(session.existing)} existing objects in target container "{self.container}".')

        semaphore = asyncio.Semaphore(self.max_concurrency)
        pending: set[asyncio.Task] = set()
        failures: list[BaseException] = []

        async def worker(storage_object: StorageObject) -> None:
            try:
                await self._sync_object(storage_object, collection, session, report, messages)
            except Exception as e:
                failures.append(e)
            finally:
                semaphore.release()

        try:
            async with aclosing(collection.storage.objects(collection.name)) as storage_objects:
                async for storage_object in storage_objects:
                    self._check_cancelled()
                    if failures:
                        break
                    await semaphore.acquire()
                    task = asyncio.create_task(worker(storage_object))
                    pending.add(task)
                    task.add_done_callback(pending.discard)
        finally:
            # Every worker has to finish before the obsolete set is read
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
            report.messages.extend(messages.flush())

        if failures:
            raise failures[0]

        logger.info(
            f'Published {report.published + report.copied} new objects into target container "{self.container}".'
        )

        obsolete = await session.obsolete_keys()
        logger.info(f'Removing {len(obsolete)} obsolete objects from target container "{self.container}".')
        for key in obsolete:
            self._check_cancelled()
            try:
                await self.store.delete_object(self.container, key)
            except StorageNotFoundError:
                logger.debug(f'Obsolete object "{key}" was already gone from container "{self.container}"')
                continue
            report.deleted += 1
            logger.debug(f'Deleted obsolete object "{key}" from container "{self.container}"')

        logger.info(f"Publish finished: {report.summary()}")
        return report

    async def _sync_object(
        self,
        storage_object: StorageObject,
        collection: Collection,
        session: SyncSession,
        report: PublishReport,
        messages: MessageCollector,
    ) -> None:
        resource = storage_object.resource
        key = self.object_key(resource)
        await session.retain(key)

        match collection.storage.source_for(resource, self.store):
            case NativeLocation() if session.exists(key):
                logger.debug(f'Skipping "{key}", it already exists in container "{self.container}"')
                report.skipped += 1
            case NativeLocation() as location if not self.is_compressible(resource.media_type):
                if await self._copy(location, key, resource, messages):
                    report.copied += 1
            case NativeLocation():
                if await self._publish_stream(storage_object.open_stream, key, resource, messages):
                    report.published += 1
            case StreamSource(open_stream=open_stream):
                if await self._publish_stream(open_stream, key, resource, messages):
                    report.published += 1

    async def publish_resource(self, resource: Resource, collection: Collection) -> PublishReport:
        """Publish a single resource without listing or pruning the target."""
        self._guard_same_container(collection)

        report = PublishReport(collection=collection.name)
        messages = MessageCollector()
        key = self.object_key(resource)
        storage = collection.storage

        match storage.source_for(resource, self.store):
            case NativeLocation() as location if not self.is_compressible(resource.media_type):
                if await self._copy(location, key, resource, messages):
                    report.copied += 1
                report.messages.extend(messages.flush())
                return report
            case NativeLocation(container=source_container, key=source_key):

                async def open_stream() -> ContentStream:
                    return await storage.store.open_object(source_container, source_key)

            case StreamSource(open_stream=open_stream):
                pass

        if await self._publish_stream(open_stream, key, resource, messages):
            report.published += 1
        report.messages.extend(messages.flush())
        return report

    async def unpublish_resource(self, resource: Resource) -> None:
        """Remove a resource from this target. Removing an absent object is not an error."""
        key = self.object_key(resource)
        try:
            await self.store.delete_object(self.container, key)
        except StorageNotFoundError:
            logger.debug(f'Object "{key}" was not published in container "{self.container}"')
            return
        logger.debug(f'Unpublished object "{key}" from container "{self.container}"')

    async def refresh_content_type(self, resource: Resource) -> None:
        """Reapply the resource's media type to its published object."""
        await self.store.set_content_type(self.container, self.object_key(resource), resource.media_type)

    async def _copy(
        self, location: NativeLocation, key: str, resource: Resource, messages: MessageCollector
    ) -> bool:
        try:
            await self.store.copy_object(self.container, key, location.container, location.key)
            await self.store.set_content_type(self.container, key, resource.media_type)
        except (StorageError, OSError) as e:
            messages.append(
                f"Could not copy resource with SHA1 hash {resource.sha1} of collection "
                f'{resource.collection_name} from container "{location.container}" to "{self.container}": {e}',
                Severity.ERROR,
                MessageCode.COPY_FAILED,
            )
            return False
        logger.debug(f'Copied "{location.container}/{location.key}" to "{self.container}/{key}"')
        return True

    async def _publish_stream(
        self, open_stream: StreamOpener, key: str, resource: Resource, messages: MessageCollector
    ) -> bool:
        try:
            stream = await open_stream()
        except StorageNotFoundError:
            messages.append(
                f"Could not publish resource {resource.filename} with SHA1 hash {resource.sha1} of collection "
                f"{resource.collection_name} because there seems to be no corresponding data in the storage.",
                Severity.ERROR,
                MessageCode.SOURCE_MISSING,
            )
            return False
        except StorageError as e:
            messages.append(
                f'Failed opening resource {resource.filename} for publishing as object "{key}": {e}',
                Severity.ERROR,
                MessageCode.UPLOAD_FAILED,
            )
            return False

        return await self._upload(stream, key, resource, messages)

    async def _upload(self, stream: ContentStream, key: str, resource: Resource, messages: MessageCollector) -> bool:
        try:
            if self.is_compressible(resource.media_type):
                try:
                    async with SpooledGzip(stream, self.gzip_compression_level) as payload:
                        await self._put(key, payload, resource, content_encoding="gzip")
                except CompressionError as e:
                    messages.append(
                        f'Failed compressing resource {resource.filename} for publishing as object "{key}" '
                        f'into container "{self.container}": {e}',
                        Severity.WARNING,
                        MessageCode.COMPRESSION_FAILED,
                    )
                    return False
            else:
                async with spool_stream(stream) as payload:
                    await self._put(key, payload, resource)
        except (StorageError, OSError) as e:
            messages.append(
                f'Failed publishing resource {resource.filename} as object "{key}" into container '
                f'"{self.container}": {e}',
                Severity.ERROR,
                MessageCode.UPLOAD_FAILED,
            )
            return False

        logger.debug(f'Published "{key}" into container "{self.container}"')
        return True

    async def _put(self, key: str, payload: Body, resource: Resource, content_encoding: str | None = None) -> None:
        await self.store.put_object(
            self.container,
            key,
            payload,
            resource.media_type,
            content_encoding=content_encoding,
            cache_control=self.cache_control,
        )
