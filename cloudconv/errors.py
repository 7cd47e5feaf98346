"""Exceptions raised by the cloudconv client."""
from typing import Optional


class CloudConvertError(RuntimeError):
    """Base class for every error the client raises."""


class TransportError(CloudConvertError):
    """Connection, DNS or timeout failure talking to the remote service."""


class ApiError(CloudConvertError):
    """The service answered with an HTTP error or a body that could not be decoded."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class ProcessRejected(CloudConvertError):
    """Process creation returned an error string; nothing was uploaded."""


class ConversionFailed(CloudConvertError):
    """The remote job reached step "error"."""


class StatusUnavailable(CloudConvertError):
    """Status polling failed more times in a row than the retry budget allows."""


class UploadError(CloudConvertError):
    """Reading or encoding the source file failed during upload."""


class FormatError(ValueError):
    """A conversion format could not be resolved from the arguments."""
