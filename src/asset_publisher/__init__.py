"""
Asset Publisher

Async publishing of content-addressed resources into public object store
containers.
"""

from .exceptions import ConfigurationError, PublishCancelledError, PublishError, SameContainerError
from .messages import MessageCollector, PublishMessage, PublishReport, Severity
from .models import Collection, NativeLocation, Resource, StorageObject, StreamSource
from .target import BaseUriContext, PublishTarget

__all__ = [
    "PublishTarget",
    "BaseUriContext",
    "Collection",
    "Resource",
    "StorageObject",
    "NativeLocation",
    "StreamSource",
    "PublishReport",
    "PublishMessage",
    "MessageCollector",
    "Severity",
    "PublishError",
    "ConfigurationError",
    "SameContainerError",
    "PublishCancelledError",
]
