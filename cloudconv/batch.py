"""Batch conversion: many files, one target format, bounded parallelism."""
import logging
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional, Sequence, Union

from cloudconv import db
from cloudconv.api.client import CloudConvertClient
from cloudconv.config import MAX_CONCURRENT_CONVERSIONS
from cloudconv.conversion.models import UploadOptions, replace_extension
from cloudconv.conversion.service import Conversion, convert_file
from cloudconv.errors import ApiError, TransportError
from cloudconv.history import HistoryIndex

logger = logging.getLogger("cloudconv.batch")

ConvertFn = Callable[..., Conversion]


@dataclass
class FileResult:
    source: Path
    destination: Path
    ok: bool = False
    error: Optional[str] = None
    from_history: bool = False
    process_url: str = ""


@dataclass
class BatchResult:
    batch_id: str
    target_format: str
    files: list[FileResult] = field(default_factory=list)

    @property
    def status(self) -> str:  # "completed" | "failed"
        return "completed" if all(f.ok for f in self.files) else "failed"

    @property
    def failed(self) -> list[FileResult]:
        return [f for f in self.files if not f.ok]


class BatchDriver:
    """Converts files concurrently; at most `concurrency` conversions are in flight.

    Each file is its own unit of work: a failure is logged and recorded in its
    FileResult and never stops the other files.
    """

    def __init__(
        self,
        client: CloudConvertClient,
        *,
        concurrency: int = MAX_CONCURRENT_CONVERSIONS,
        history: Optional[HistoryIndex] = None,
        options: Optional[UploadOptions] = None,
        use_ledger: bool = False,
        convert: ConvertFn = convert_file,
        **conversion_kwargs,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.client = client
        self.concurrency = concurrency
        self.history = history
        self.options = options
        self.use_ledger = use_ledger
        self._convert = convert
        self._conversion_kwargs = conversion_kwargs
        self._slots = threading.BoundedSemaphore(concurrency)

    def _run_one(self, batch_id: str, source: Path, target_format: str) -> FileResult:
        destination = Path(replace_extension(source, target_format))
        result = FileResult(source=source, destination=destination)
        with self._slots:
            try:
                conversion = self._convert(
                    self.client,
                    source,
                    destination,
                    to_format=target_format,
                    options=self.options,
                    history=self.history,
                    **self._conversion_kwargs,
                )
                result.ok = True
                result.from_history = conversion.from_history
                result.process_url = conversion.process.url
                logger.info("Converted %s -> %s", source, destination)
            except Exception as e:
                logger.error("Converting %s failed: %s", source, e)
                result.error = str(e) or type(e).__name__
        if self.use_ledger:
            self._record(batch_id, result)
        return result

    @staticmethod
    def _record(batch_id: str, result: FileResult) -> None:
        try:
            db.record_file_result(
                batch_id,
                str(result.source),
                str(result.destination),
                "completed" if result.ok else "failed",
                error=result.error,
                process_url=result.process_url,
                from_history=result.from_history,
            )
        except Exception as e:
            logger.warning("Could not record %s in ledger: %s", result.source, e)

    def run(self, sources: Sequence[Union[str, Path]], target_format: str) -> BatchResult:
        """Convert every source to target_format; returns once all of them have finished or failed."""
        if not target_format:
            raise ValueError("A target format is needed for batch conversion.")
        batch_id = str(uuid.uuid4())
        paths = [Path(s) for s in sources]
        batch = BatchResult(batch_id=batch_id, target_format=target_format)
        if self.use_ledger:
            db.save_batch(batch_id, "processing", target_format, len(paths))
        if not paths:
            if self.use_ledger:
                db.update_batch_status(batch_id, batch.status)
            return batch
        logger.info("Batch %s: %s files -> %s (concurrency=%s)", batch_id[:8], len(paths), target_format, self.concurrency)
        with ThreadPoolExecutor(max_workers=min(len(paths), self.concurrency), thread_name_prefix="convert") as executor:
            futures = {executor.submit(self._run_one, batch_id, p, target_format): p for p in paths}
            for future in as_completed(futures):
                batch.files.append(future.result())
        # Report in input order
        order = {p: i for i, p in enumerate(paths)}
        batch.files.sort(key=lambda f: order[f.source])
        if self.use_ledger:
            errors = "; ".join(f"{f.source.name}: {f.error}" for f in batch.failed) or None
            db.update_batch_status(batch_id, batch.status, error=errors)
        logger.info("Batch %s %s (%s/%s ok)", batch_id[:8], batch.status, len(paths) - len(batch.failed), len(paths))
        return batch


def convert_many(
    client: CloudConvertClient,
    sources: Sequence[Union[str, Path]],
    target_format: str,
    *,
    concurrency: int = MAX_CONCURRENT_CONVERSIONS,
    options: Optional[UploadOptions] = None,
    use_history: bool = True,
    use_ledger: bool = False,
    **conversion_kwargs,
) -> BatchResult:
    """Build the history index once, then run the batch."""
    history = None
    if use_history:
        try:
            history = HistoryIndex(client.list_history())
        except (ApiError, TransportError) as e:
            logger.warning("Conversion history unavailable, converting every file: %s", e)
    driver = BatchDriver(
        client,
        concurrency=concurrency,
        history=history,
        options=options,
        use_ledger=use_ledger,
        **conversion_kwargs,
    )
    return driver.run(sources, target_format)
