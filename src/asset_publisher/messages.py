"""
Publishing messages and reports

Per-object failures during publishing are not raised. They are collected
here and surfaced to the caller for display or logging.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


class Severity(Enum):
    """How serious a collected message is."""

    NOTICE = "notice"
    WARNING = "warning"
    ERROR = "error"


class MessageCode(Enum):
    """Stable identifiers for the kinds of per-object failures."""

    COPY_FAILED = "copy_failed"
    UPLOAD_FAILED = "upload_failed"
    COMPRESSION_FAILED = "compression_failed"
    SOURCE_MISSING = "source_missing"


@dataclass(frozen=True)
class PublishMessage:
    severity: Severity
    text: str
    code: MessageCode | None = None


class MessageCollector:
    """Collects messages for the host and mirrors them into the log."""

    def __init__(self) -> None:
        self._messages: list[PublishMessage] = []

    def append(self, text: str, severity: Severity = Severity.ERROR, code: MessageCode | None = None) -> None:
        self._messages.append(PublishMessage(severity=severity, text=text, code=code))
        if severity is Severity.NOTICE:
            logger.info(text)
        elif severity is Severity.WARNING:
            logger.warning(text)
        else:
            logger.error(text)

    def has_messages(self) -> bool:
        return bool(self._messages)

    def flush(self) -> list[PublishMessage]:
        """Return all collected messages and start over."""
        messages, self._messages = self._messages, []
        return messages

    def __iter__(self):
        return iter(list(self._messages))

    def __len__(self) -> int:
        return len(self._messages)


@dataclass
class PublishReport:
    """Outcome of a publish call."""

    collection: str
    published: int = 0
    copied: int = 0
    skipped: int = 0
    deleted: int = 0
    messages: list[PublishMessage] = field(default_factory=list)

    @property
    def success(self) -> bool:
        """No per-object failure was reported."""
        return not any(m.severity is Severity.ERROR for m in self.messages)

    @property
    def failed(self) -> int:
        return sum(1 for m in self.messages if m.severity in (Severity.ERROR, Severity.WARNING))

    def summary(self) -> str:
        return (
            f"collection={self.collection} published={self.published} copied={self.copied} "
            f"skipped={self.skipped} deleted={self.deleted} failed={self.failed}"
        )
