from .models import Process, ProcessState, StatusResponse, UploadOptions
from .service import Conversion, compute_wait, convert_file

__all__ = ["Conversion", "Process", "ProcessState", "StatusResponse", "UploadOptions", "compute_wait", "convert_file"]
