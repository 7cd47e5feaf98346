"""Remote process, status and history models."""
import logging
import math
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

logger = logging.getLogger("cloudconv.models")


class ProcessState(str, Enum):
    CREATED = "created"
    UPLOADING = "uploading"
    POLLING = "polling"
    FINISHED = "finished"
    SAVED = "saved"
    ERROR = "error"


class Step(str, Enum):
    """Remote-reported steps the client acts on. Any other value means "keep polling"."""
    FINISHED = "finished"
    ERROR = "error"


def normalize_url(url: str, scheme_source: str = "https:") -> str:
    """Prefix protocol-relative URLs ("//host/...") with the scheme of scheme_source."""
    if not url.startswith("//"):
        return url
    idx = scheme_source.find(":")
    scheme = scheme_source[: idx + 1] if idx >= 0 else "https:"
    return scheme + url


def parse_percent(raw: Any) -> Optional[float]:
    """Normalize a percent value that may arrive as a number or a quoted string.

    Returns None when there is no usable value; malformed or out-of-range values
    are logged as a warning and treated as absent.
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        value = float(raw)
    else:
        text = str(raw).strip().strip('"').strip()
        if not text:
            return None
        try:
            value = float(text)
        except ValueError:
            logger.warning("Cannot parse percent %r", raw)
            return None
    if math.isnan(value) or value < 0 or value > 100:
        logger.warning("Percent out of range: %r", raw)
        return None
    return value


def _str(d: dict, key: str) -> str:
    v = d.get(key)
    return "" if v is None else str(v)


def _int(d: dict, key: str) -> int:
    try:
        return int(d.get(key) or 0)
    except (TypeError, ValueError):
        return 0


def _dict(d: dict, key: str) -> dict:
    v = d.get(key)
    return v if isinstance(v, dict) else {}


@dataclass(frozen=True)
class StatusInput:
    type: str = ""
    filename: str = ""
    size: int = 0
    name: str = ""
    ext: str = ""

    @classmethod
    def from_dict(cls, d: dict) -> "StatusInput":
        return cls(
            type=_str(d, "type"),
            filename=_str(d, "filename"),
            size=_int(d, "size"),
            name=_str(d, "name"),
            ext=_str(d, "ext"),
        )


@dataclass(frozen=True)
class StatusOutput:
    filename: str = ""
    ext: str = ""
    files: tuple[str, ...] = ()
    size: int = 0
    url: str = ""
    downloads: int = 0

    @classmethod
    def from_dict(cls, d: dict) -> "StatusOutput":
        files = d.get("files") or ()
        return cls(
            filename=_str(d, "filename"),
            ext=_str(d, "ext"),
            files=tuple(str(f) for f in files) if isinstance(files, (list, tuple)) else (),
            size=_int(d, "size"),
            url=_str(d, "url"),
            downloads=_int(d, "downloads"),
        )


@dataclass(frozen=True)
class StatusConverter:
    format: str = ""
    type: str = ""
    options: dict = field(default_factory=dict)
    duration: float = 0.0

    @classmethod
    def from_dict(cls, d: dict) -> "StatusConverter":
        try:
            duration = float(d.get("duration") or 0)
        except (TypeError, ValueError):
            duration = 0.0
        return cls(
            format=_str(d, "format"),
            type=_str(d, "type"),
            options=dict(_dict(d, "options")),
            duration=duration,
        )


@dataclass(frozen=True)
class StatusResponse:
    """One snapshot of a remote job. A fresh instance is fetched on every poll."""
    id: str = ""
    url: str = ""
    percent: Optional[float] = None
    message: str = ""
    step: str = ""
    starttime: int = 0
    endtime: int = 0
    expire: int = 0
    input: StatusInput = field(default_factory=StatusInput)
    output: StatusOutput = field(default_factory=StatusOutput)
    converter: StatusConverter = field(default_factory=StatusConverter)

    @classmethod
    def from_dict(cls, d: dict, scheme_source: str = "https:") -> "StatusResponse":
        """Build from decoded JSON; protocol-relative output URLs take scheme_source's scheme."""
        if not isinstance(d, dict):
            raise ValueError(f"status body must be a JSON object, got {type(d).__name__}")
        output = StatusOutput.from_dict(_dict(d, "output"))
        if output.url.startswith("//"):
            output = StatusOutput(
                filename=output.filename,
                ext=output.ext,
                files=output.files,
                size=output.size,
                url=normalize_url(output.url, scheme_source),
                downloads=output.downloads,
            )
        return cls(
            id=_str(d, "id"),
            url=_str(d, "url"),
            percent=parse_percent(d.get("percent")),
            message=_str(d, "message"),
            step=_str(d, "step"),
            starttime=_int(d, "starttime"),
            endtime=_int(d, "endtime"),
            expire=_int(d, "expire"),
            input=StatusInput.from_dict(_dict(d, "input")),
            output=output,
            converter=StatusConverter.from_dict(_dict(d, "converter")),
        )

    @property
    def is_finished(self) -> bool:
        return self.step == Step.FINISHED.value

    @property
    def is_error(self) -> bool:
        return self.step == Step.ERROR.value


@dataclass
class Process:
    url: str
    error: str = ""
    download_url: str = ""

    @property
    def id(self) -> str:
        idx = self.url.rfind("/")
        if idx < 0:
            return self.url
        return self.url[idx + 1:]


@dataclass
class HistoryEntry:
    id: str = ""
    host: str = ""
    step: str = ""
    starttime: str = ""
    endtime: str = ""
    url: str = ""
    status: StatusResponse = field(default_factory=StatusResponse)

    @classmethod
    def from_dict(cls, d: dict) -> "HistoryEntry":
        return cls(
            id=_str(d, "id"),
            host=_str(d, "host"),
            step=_str(d, "step"),
            starttime=_str(d, "starttime"),
            endtime=_str(d, "endtime"),
            url=normalize_url(_str(d, "url")),
        )


@dataclass(frozen=True)
class ConversionType:
    inputformat: str
    outputformat: str
    converter: str = ""
    converter_options: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, d: dict) -> "ConversionType":
        return cls(
            inputformat=_str(d, "inputformat"),
            outputformat=_str(d, "outputformat"),
            converter=_str(d, "converter"),
            converter_options=dict(_dict(d, "converteroptions")),
        )


@dataclass
class UploadOptions:
    """Optional upload fields. An empty `output` means "download to a local file"."""
    email: bool = False
    output: str = ""
    callback: str = ""
    conversion_options: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ExplicitURL:
    url: str


@dataclass(frozen=True)
class FromStatus:
    pass


DownloadSource = Union[ExplicitURL, FromStatus]


def format_from_filename(filename: Union[str, os.PathLike]) -> str:
    """Extension of filename without the leading dot, case preserved; "" when there is none."""
    ext = os.path.splitext(os.fspath(filename))[1]
    return ext[1:] if ext else ""


def replace_extension(filename: Union[str, os.PathLike], fmt: str) -> str:
    """filename with its extension replaced by .fmt (appended when it has none)."""
    root, _ = os.path.splitext(os.fspath(filename))
    return f"{root}.{fmt}"
