"""Events consumed and effects produced by Replica.step()."""

from dataclasses import dataclass

from .wire import Preview, Update

DEFAULT_DEVICE = "default"


@dataclass(frozen=True)
class LocalPress:
    x: int
    y: int
    device: str = DEFAULT_DEVICE


@dataclass(frozen=True)
class LocalMove:
    x: int
    y: int
    device: str = DEFAULT_DEVICE


@dataclass(frozen=True)
class LocalRelease:
    device: str = DEFAULT_DEVICE


@dataclass(frozen=True)
class LocalCancel:
    device: str = DEFAULT_DEVICE


@dataclass(frozen=True)
class AuthoritativeUpdate:
    """An update delivered by the log with its serial numbers.

    update is None for an entry the log could not decode; its serial is
    still consumed.
    """

    update: Update | None
    serial: int
    max_serial: int


@dataclass(frozen=True)
class PreviewUpdate:
    preview: Preview


Event = LocalPress | LocalMove | LocalRelease | LocalCancel | AuthoritativeUpdate | PreviewUpdate


@dataclass(frozen=True)
class PublishUpdate:
    """Send an update to the authoritative log."""

    update: Update


@dataclass(frozen=True)
class SendPreview:
    """Send a preview on the ephemeral channel."""

    preview: Preview


@dataclass(frozen=True)
class InSync:
    """The replica has applied everything the log knows about."""

    serial: int


Effect = PublishUpdate | SendPreview | InSync
