"""
Harmony Flasher error hierarchy.

Every failure in the flashing session is fatal. Nothing is retried
internally; errors travel up to the CLI, which prints the message and exits
with the code attached to the error class.

FlasherError (base)
├── TransportError - serial port could not be opened, read or written
│   └── FramingError - bad frame header, short read or read timeout
├── DeviceStatusError - device answered with a non-2xx status
├── ResponseDecodeError - response body does not have the expected shape
├── PreconditionError - device or host not ready for an update
│   └── DeviceNotFoundError - no serial port with the expected VID/PID
├── ArchivePatchError - update bundle does not have the expected layout
└── ReleaseError - vendor release metadata or bundle download failed
"""

from typing import Optional


class FlasherError(Exception):
    """Base exception for all flasher errors."""

    exit_code = 1


class TransportError(FlasherError):
    """Serial stream could not be opened, read or written."""

    exit_code = 2


class FramingError(TransportError):
    """
    Inbound frame could not be read.

    The stream position is unknown afterwards, so the session cannot continue.
    """

    exit_code = 3


class DeviceStatusError(FlasherError):
    """
    Device answered with a status outside the 2xx range.

    Attributes:
        status: Numeric status code from the response
        endpoint: Endpoint the failed request was addressed to
    """

    exit_code = 4

    def __init__(self, status: int, endpoint: Optional[int] = None):
        self.status = status
        self.endpoint = endpoint
        if endpoint is None:
            message = f"status code {status}"
        else:
            message = f"status code {status} (endpoint {endpoint})"
        super().__init__(message)


class ResponseDecodeError(FlasherError):
    """Response body could not be decoded into the requested shape."""

    exit_code = 5


class PreconditionError(FlasherError):
    """Device or host state does not allow the update to proceed."""

    exit_code = 6


class DeviceNotFoundError(PreconditionError):
    """No serial port matched the expected USB vendor/product ID."""


class ArchivePatchError(FlasherError):
    """Update bundle is missing entries or has an unexpected manifest."""

    exit_code = 7


class ReleaseError(FlasherError):
    """Vendor release could not be fetched or cached."""

    exit_code = 8
