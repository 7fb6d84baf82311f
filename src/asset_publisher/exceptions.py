"""
Publishing exceptions
"""


class PublishError(Exception):
    """Base exception for publishing errors."""

    pass


class ConfigurationError(PublishError):
    """Raised when a storage, target or collection is misconfigured."""

    pass


class SameContainerError(ConfigurationError):
    """Raised when a collection's storage and target share one container."""

    pass


class PublishCancelledError(PublishError):
    """Raised when a host requests cancellation between resources or listing pages."""

    pass
