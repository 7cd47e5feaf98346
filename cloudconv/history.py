"""Lookup of previously finished conversions, to skip converting the same file twice."""
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional, Union

from cloudconv.conversion.models import HistoryEntry, Step

logger = logging.getLogger("cloudconv.history")


@dataclass(frozen=True)
class HistoryHit:
    output_url: str
    output_filename: str
    process_url: str = ""


def history_keys(input_filename: str) -> tuple[str, str]:
    """Lowercased name, and the same with spaces turned back into path separators.

    The service stores uploaded names with separators flattened to spaces.
    """
    key = input_filename.lower()
    return key, key.replace(" ", "/")


class HistoryIndex:
    """Read-only map from source file names to already produced outputs.

    Built once, before any conversion runs; safe to share between threads.
    """

    def __init__(self, entries: Iterable[HistoryEntry] = ()):
        self._hits: dict[str, HistoryHit] = {}
        for entry in entries:
            self._register(entry)
        logger.info("History index holds %s keys", len(self._hits))

    def _register(self, entry: HistoryEntry) -> None:
        if entry.step != Step.FINISHED.value:
            return
        status = entry.status
        if not (status.output.url and status.output.filename and status.input.filename):
            return
        hit = HistoryHit(
            output_url=status.output.url,
            output_filename=status.output.filename,
            process_url=entry.url,
        )
        for key in history_keys(status.input.filename):
            self._hits[key] = hit

    def __len__(self) -> int:
        return len(self._hits)

    def __contains__(self, key: str) -> bool:
        return key in self._hits

    def get(self, key: str) -> Optional[HistoryHit]:
        return self._hits.get(key)

    def lookup(self, source: Union[str, os.PathLike]) -> Optional[HistoryHit]:
        """Exact match on the lowercased base name, else the first key the path ends with."""
        path = os.fspath(source).lower()
        hit = self._hits.get(Path(path).name)
        if hit is not None:
            return hit
        # Several keys may be suffixes of path; the first registered wins.
        for key, candidate in self._hits.items():
            if path.endswith(key):
                return candidate
        return None
