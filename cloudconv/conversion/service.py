"""Conversion lifecycle: create, upload, poll with adaptive waits, save."""
import logging
import time
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Optional, Union

from cloudconv.config import (
    MAX_POLL_WAIT,
    MIN_POLL_WAIT,
    POLL_INTERVAL,
    STATUS_RETRY_BACKOFF,
    STATUS_RETRY_LIMIT,
)
from cloudconv.conversion.models import (
    DownloadSource,
    ExplicitURL,
    FromStatus,
    Process,
    ProcessState,
    StatusResponse,
    UploadOptions,
    format_from_filename,
)
from cloudconv.errors import (
    ApiError,
    ConversionFailed,
    FormatError,
    ProcessRejected,
    StatusUnavailable,
    TransportError,
)

if TYPE_CHECKING:
    from cloudconv.api.client import CloudConvertClient
    from cloudconv.history import HistoryIndex

logger = logging.getLogger("cloudconv.service")

PathLike = Union[str, Path]


def compute_wait(
    status: StatusResponse,
    now: float,
    fallback: float = POLL_INTERVAL,
    min_wait: float = MIN_POLL_WAIT,
    max_wait: float = MAX_POLL_WAIT,
) -> float:
    """Seconds to sleep before the next poll.

    With progress p in (0, 100] the remaining time is estimated from the time
    spent so far: elapsed * (100 - p) / p, halved so we poll before the estimate
    runs out, and clamped to [min_wait, max_wait]. Without progress: fallback.
    """
    percent = status.percent
    if percent is None or percent <= 0:
        return fallback
    elapsed = max(0.0, now - status.starttime)
    wait = elapsed * (100.0 - percent) / percent / 2.0
    logger.debug("Wait: percent=%s starttime=%s elapsed=%.1fs wait=%.1fs", percent, status.starttime, elapsed, wait)
    return min(max(wait, min_wait), max_wait)


def resolve_output_format(destination: PathLike, to_format: str = "") -> str:
    """Explicit to_format wins; otherwise the destination's extension (case preserved)."""
    fmt = to_format or format_from_filename(destination)
    if not fmt:
        raise FormatError(f"Cannot tell the output format of {destination}: give a format or a file extension.")
    return fmt


class Conversion:
    """One source file converted remotely into one destination file."""

    def __init__(
        self,
        client: "CloudConvertClient",
        process: Process,
        source: PathLike,
        destination: PathLike,
        to_format: str,
        *,
        poll_interval: float = POLL_INTERVAL,
        retry_limit: int = STATUS_RETRY_LIMIT,
        retry_backoff: float = STATUS_RETRY_BACKOFF,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
    ):
        if not to_format:
            raise FormatError("Output format must be resolved before a conversion is built.")
        self.client = client
        self.process = process
        self.source = Path(source)
        self.destination = Path(destination)
        self.to_format = to_format
        self.poll_interval = poll_interval
        self.retry_limit = retry_limit
        self.retry_backoff = retry_backoff
        self._sleep = sleep
        self._clock = clock
        self.options = UploadOptions()
        self.last_status: Optional[StatusResponse] = None
        self.from_history = bool(process.download_url)
        self.state = ProcessState.FINISHED if self.from_history else ProcessState.CREATED

    @classmethod
    def create(
        cls,
        client: "CloudConvertClient",
        source: PathLike,
        destination: PathLike,
        from_format: str = "",
        to_format: str = "",
        **kwargs,
    ) -> "Conversion":
        """Create the remote process. Raises ProcessRejected if the service refuses the format pair."""
        # If these are not resolved right, the caller has to pass explicit formats.
        from_format = from_format or format_from_filename(source)
        to_format = resolve_output_format(destination, to_format)
        process = client.create_process(from_format, to_format)
        if process.error:
            logger.error("Process rejected (%s -> %s): %s", from_format, to_format, process.error)
            raise ProcessRejected(process.error)
        if not process.url:
            raise ApiError("Process creation returned neither a URL nor an error.")
        return cls(client, process, source, destination, to_format, **kwargs)

    @classmethod
    def for_history_hit(
        cls,
        client: "CloudConvertClient",
        source: PathLike,
        destination: PathLike,
        download_url: str,
        to_format: str = "",
        **kwargs,
    ) -> "Conversion":
        """A conversion whose output already exists remotely; only save() is left to do."""
        to_format = resolve_output_format(destination, to_format)
        return cls(client, Process(url="", download_url=download_url), source, destination, to_format, **kwargs)

    @property
    def download_source(self) -> DownloadSource:
        if self.process.download_url:
            return ExplicitURL(self.process.download_url)
        return FromStatus()

    def start(self, options: Optional[UploadOptions] = None) -> Optional[StatusResponse]:
        """Upload the source file, which starts the remote conversion."""
        if self.state is not ProcessState.CREATED:
            raise RuntimeError(f"Cannot start a conversion in state {self.state.value}")
        self.options = options or UploadOptions()
        self.state = ProcessState.UPLOADING
        try:
            status = self.client.upload_file(self.process, self.source, self.to_format, self.options)
        except Exception:
            self.state = ProcessState.ERROR
            raise
        self.last_status = status
        self.state = ProcessState.POLLING
        return status

    def wait(self) -> StatusResponse:
        """Poll until the step is "finished" (returns the status) or "error" (raises ConversionFailed)."""
        errcnt = 0
        while True:
            try:
                status = self.client.status(self.process)
            except (TransportError, ApiError) as e:
                errcnt += 1
                logger.error("Checking status of %s failed (%s/%s): %s", self.process.url, errcnt, self.retry_limit, e)
                if errcnt > self.retry_limit:
                    self.state = ProcessState.ERROR
                    raise StatusUnavailable(f"Status of {self.process.url} unavailable: {e}") from e
                self._sleep(self.retry_backoff)
                continue
            errcnt = 0
            self.last_status = status
            logger.debug("Process %s step=%s percent=%s", self.process.id, status.step, status.percent)
            if status.is_error:
                self.state = ProcessState.ERROR
                raise ConversionFailed(status.message or f"Conversion of {self.source.name} failed")
            if status.is_finished:
                self.state = ProcessState.FINISHED
                return status
            self._sleep(compute_wait(status, self._clock(), self.poll_interval))

    def _resolve_download_url(self) -> str:
        source = self.download_source
        if isinstance(source, ExplicitURL):
            return source.url
        status = self.last_status
        if status is None or not status.is_finished:
            status = self.client.status(self.process)
            self.last_status = status
        if status.is_error:
            self.state = ProcessState.ERROR
            raise ConversionFailed(status.message or f"Conversion of {self.source.name} failed")
        if not status.output.url:
            raise ApiError(f"Process {self.process.url} has no output URL (step={status.step!r}).")
        return status.output.url

    def save(self) -> Optional[int]:
        """Download the output into the destination file. Returns bytes written.

        When the upload named an output target (e.g. third-party storage) there is
        nothing to download: returns None and counts as success.
        """
        if self.options.output:
            logger.info("Output of %s sent to %s; nothing to save locally", self.source.name, self.options.output)
            self.state = ProcessState.SAVED
            return None
        url = self._resolve_download_url()
        try:
            written = self.client.download(url, self.destination)
        except Exception:
            self.state = ProcessState.ERROR
            raise
        self.state = ProcessState.SAVED
        return written

    def cancel(self) -> None:
        """Ask the service to cancel. Does not stop a wait() running in another thread."""
        self.client.cancel(self.process)

    def delete(self) -> None:
        self.client.delete(self.process)


def convert_file(
    client: "CloudConvertClient",
    source: PathLike,
    destination: PathLike,
    *,
    from_format: str = "",
    to_format: str = "",
    options: Optional[UploadOptions] = None,
    history: Optional["HistoryIndex"] = None,
    **kwargs,
) -> Conversion:
    """Run one conversion end to end, short-circuiting to a download when history has the output."""
    if history is not None:
        hit = history.lookup(source)
        if hit is not None:
            logger.info("%s already converted, downloading %s", Path(source).name, hit.output_url)
            conversion = Conversion.for_history_hit(client, source, destination, hit.output_url, to_format, **kwargs)
            conversion.save()
            return conversion
    conversion = Conversion.create(client, source, destination, from_format, to_format, **kwargs)
    logger.info("Process URL for %s: %s", Path(source).name, conversion.process.url)
    conversion.start(options)
    logger.info("Uploaded %s", Path(source).name)
    conversion.wait()
    logger.info("Converted %s", Path(source).name)
    conversion.save()
    return conversion
