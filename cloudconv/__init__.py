"""Client for the cloudconvert file-conversion service."""
from .api.client import CloudConvertClient
from .batch import BatchDriver, BatchResult, FileResult, convert_many
from .conversion import Conversion, Process, StatusResponse, UploadOptions, convert_file
from .history import HistoryIndex

__version__ = "1.0.0"

__all__ = [
    "CloudConvertClient",
    "BatchDriver",
    "BatchResult",
    "FileResult",
    "convert_many",
    "Conversion",
    "Process",
    "StatusResponse",
    "UploadOptions",
    "convert_file",
    "HistoryIndex",
]
