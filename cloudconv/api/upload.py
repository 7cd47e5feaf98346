"""Streaming multipart/form-data body.

The body is encoded on a producer thread into a bounded queue while the HTTP
request iterates over it, so the source file is never held in memory whole.
"""
import logging
import mimetypes
import queue
import threading
from pathlib import Path
from typing import BinaryIO, Iterator, Optional

from urllib3.fields import RequestField
from urllib3.filepost import choose_boundary

from cloudconv.config import UPLOAD_CHUNK_SIZE, UPLOAD_QUEUE_SIZE

logger = logging.getLogger("cloudconv.upload")

_EOF = object()


class MultipartPipe:
    """Producer/consumer pair for one multipart body.

    Iterate over the pipe to consume encoded chunks. If reading the source fails,
    iteration raises that error and `error` keeps it for the caller to inspect
    after the request has returned or failed.
    """

    def __init__(
        self,
        fields: dict[str, str],
        file_path: Path,
        file_field: str = "file",
        chunk_size: int = UPLOAD_CHUNK_SIZE,
        queue_size: int = UPLOAD_QUEUE_SIZE,
    ):
        self.fields = {k: v for k, v in fields.items() if v}
        self.file_path = Path(file_path)
        self.file_field = file_field
        self.chunk_size = chunk_size
        self.boundary = choose_boundary()
        self.error: Optional[BaseException] = None
        self.bytes_sent = 0
        self._queue: queue.Queue = queue.Queue(maxsize=queue_size)
        self._closed = threading.Event()
        self._thread: Optional[threading.Thread] = None
        # Opened here so a missing file fails before any request is made
        self._file: BinaryIO = open(self.file_path, "rb")

    @property
    def content_type(self) -> str:
        return f"multipart/form-data; boundary={self.boundary}"

    def start(self) -> "MultipartPipe":
        self._thread = threading.Thread(
            target=self._produce, name=f"upload-{self.file_path.name}", daemon=True
        )
        self._thread.start()
        return self

    def close(self) -> None:
        """Stop the producer (if still running) and release the source file."""
        self._closed.set()
        if self._thread is not None:
            self._thread.join(timeout=5)
        self._file.close()

    def __enter__(self) -> "MultipartPipe":
        return self.start()

    def __exit__(self, *exc) -> None:
        self.close()

    def __iter__(self) -> Iterator[bytes]:
        while True:
            item = self._queue.get()
            if item is _EOF:
                return
            if isinstance(item, BaseException):
                raise item
            yield item

    def _put(self, item) -> bool:
        while not self._closed.is_set():
            try:
                self._queue.put(item, timeout=0.1)
                return True
            except queue.Full:
                continue
        return False

    def _field_header(self, name: str, filename: Optional[str] = None) -> bytes:
        rf = RequestField(name=name, data=b"", filename=filename)
        content_type = None
        if filename is not None:
            content_type = mimetypes.guess_type(filename)[0] or "application/octet-stream"
        rf.make_multipart(content_type=content_type)
        return f"--{self.boundary}\r\n".encode("latin-1") + rf.render_headers().encode("utf-8")

    def _produce(self) -> None:
        logger.debug("Uploading %s", self.file_path)
        try:
            for name, value in self.fields.items():
                if not self._put(self._field_header(name) + value.encode("utf-8") + b"\r\n"):
                    return
            if not self._put(self._field_header(self.file_field, self.file_path.name)):
                return
            while True:
                chunk = self._file.read(self.chunk_size)
                if not chunk:
                    break
                self.bytes_sent += len(chunk)
                if not self._put(chunk):
                    return
            self._put(f"\r\n--{self.boundary}--\r\n".encode("latin-1"))
            logger.debug("Uploaded %s bytes of %s", self.bytes_sent, self.file_path.name)
        except Exception as e:
            logger.error("Upload of %s failed after %s bytes: %s", self.file_path.name, self.bytes_sent, e)
            self.error = e
            self._put(e)
            return
        self._put(_EOF)


def build_upload_fields(output_format: str, output: str = "", callback: str = "", email: bool = False,
                        conversion_options: Optional[dict[str, str]] = None) -> dict[str, str]:
    """Metadata fields sent ahead of the file part. Empty values are dropped by MultipartPipe."""
    fields = {
        "input": "upload",
        "outputformat": output_format,
        "output": output,
        "callback": callback,
        "email": "1" if email else "",
    }
    for name, value in (conversion_options or {}).items():
        fields[f"options[{name}]"] = "" if value is None else str(value)
    return fields
