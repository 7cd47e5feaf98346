"""Thin HTTP adapter for the remote conversion API."""
import logging
from pathlib import Path
from typing import Any, Optional

import requests

from cloudconv.api.upload import MultipartPipe, build_upload_fields
from cloudconv.config import API_BASE_URL, DOWNLOAD_CHUNK_SIZE, HTTP_TIMEOUT
from cloudconv.conversion.models import (
    ConversionType,
    HistoryEntry,
    Process,
    StatusResponse,
    UploadOptions,
    normalize_url,
)
from cloudconv.errors import ApiError, TransportError, UploadError

logger = logging.getLogger("cloudconv.api")


class CloudConvertClient:
    """Calls the remote service. One instance may be shared by many threads."""

    def __init__(
        self,
        api_key: str,
        base_url: str = API_BASE_URL,
        *,
        timeout: float = HTTP_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.http = session or requests.Session()

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        kwargs.setdefault("timeout", self.timeout)
        try:
            response = self.http.request(method, url, **kwargs)
        except requests.RequestException as exc:
            raise TransportError(f"{method} {url} failed: {exc}") from exc
        if response.status_code >= 400:
            body = response.text
            response.close()
            raise ApiError(f"{method} {url} returned {response.status_code}: {body}", response.status_code, body)
        return response

    @staticmethod
    def _decode(response: requests.Response, url: str) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise ApiError(f"Response from {url} is not valid JSON.", response.status_code, response.text) from exc
        finally:
            response.close()

    def _get_json(self, url: str, params: Optional[dict] = None) -> Any:
        return self._decode(self._request("GET", url, params=params), url)

    def list_history(self) -> list[HistoryEntry]:
        """Past processes for the API key, each with its status resolved where possible."""
        data = self._get_json(f"{self.base_url}/processes", {"apikey": self.api_key})
        if not isinstance(data, list):
            raise ApiError("Process history is not a JSON list.")
        entries = [HistoryEntry.from_dict(d) for d in data if isinstance(d, dict)]
        for entry in entries:
            if not entry.url:
                continue
            try:
                entry.status = self.status(Process(url=entry.url))
            except (TransportError, ApiError, ValueError) as e:
                logger.warning("Getting process status for %s failed: %s", entry.url, e)
        logger.info("Loaded %s history entries", len(entries))
        return entries

    def conversion_types(self, input_format: str = "", output_format: str = "") -> list[ConversionType]:
        """Advertised conversions; an empty format means no filtering on that side."""
        params = {}
        if input_format:
            params["inputformat"] = input_format
        if output_format:
            params["outputformat"] = output_format
        data = self._get_json(f"{self.base_url}/conversiontypes", params)
        if not isinstance(data, list):
            raise ApiError("Conversion types response is not a JSON list.")
        return [ConversionType.from_dict(d) for d in data if isinstance(d, dict)]

    def is_possible(self, input_format: str, output_format: str) -> bool:
        if not input_format or not output_format:
            return False
        return len(self.conversion_types(input_format, output_format)) > 0

    def create_process(self, input_format: str, output_format: str) -> Process:
        """Start a job on the remote side. A rejection comes back in Process.error, not as an exception."""
        url = f"{self.base_url}/process"
        data = self._get_json(
            url,
            {"inputformat": input_format, "outputformat": output_format, "apikey": self.api_key},
        )
        if not isinstance(data, dict):
            raise ApiError("Process creation response is not a JSON object.")
        process = Process(
            url=normalize_url(str(data.get("url") or ""), self.base_url),
            error=str(data.get("error") or ""),
        )
        logger.info("Created process %s (%s -> %s)", process.url or "-", input_format, output_format)
        return process

    def status(self, process: Process) -> StatusResponse:
        data = self._get_json(process.url)
        try:
            return StatusResponse.from_dict(data, process.url)
        except ValueError as exc:
            raise ApiError(f"Invalid status body from {process.url}: {exc}") from exc

    def upload_file(
        self,
        process: Process,
        file_path: Path,
        output_format: str,
        options: Optional[UploadOptions] = None,
    ) -> Optional[StatusResponse]:
        """Stream file_path to the process. Returns the initial status, or None if the body was not decodable."""
        opts = options or UploadOptions()
        fields = build_upload_fields(
            output_format,
            output=opts.output,
            callback=opts.callback,
            email=opts.email,
            conversion_options=opts.conversion_options,
        )
        try:
            pipe = MultipartPipe(fields, Path(file_path))
        except OSError as exc:
            raise UploadError(f"Cannot read {file_path}: {exc}") from exc
        with pipe:
            try:
                response = self._request(
                    "POST",
                    process.url,
                    data=iter(pipe),
                    headers={"Content-Type": pipe.content_type},
                )
            except Exception:
                if pipe.error is not None:
                    raise UploadError(f"Reading {file_path} failed: {pipe.error}") from pipe.error
                raise
            if pipe.error is not None:
                response.close()
                raise UploadError(f"Reading {file_path} failed: {pipe.error}") from pipe.error
        logger.info("Uploaded %s (%s bytes) to %s", Path(file_path).name, pipe.bytes_sent, process.url)
        try:
            return StatusResponse.from_dict(self._decode(response, process.url), process.url)
        except (ApiError, ValueError) as e:
            logger.error("Decoding upload response from %s failed: %s", process.url, e)
            return None

    def download(self, url: str, dest: Path) -> int:
        """Stream url into dest. Returns the number of bytes written."""
        logger.debug("Begin downloading %s", url)
        response = self._request("GET", url, stream=True)
        written = 0
        try:
            with open(dest, "wb") as f:
                for chunk in response.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                    if chunk:
                        f.write(chunk)
                        written += len(chunk)
        except requests.RequestException as exc:
            raise TransportError(f"Downloading {url} failed: {exc}") from exc
        finally:
            response.close()
        logger.info("Saved %s (%s bytes)", Path(dest).name, written)
        return written

    def _fire(self, process: Process, action: str) -> None:
        self._request("GET", f"{process.url}/{action}").close()
        logger.info("Sent %s for %s", action, process.url)

    def cancel(self, process: Process) -> None:
        """Cancel the remote job. There is no way to resume it."""
        self._fire(process, "cancel")

    def delete(self, process: Process) -> None:
        """Delete the remote job's files."""
        self._fire(process, "delete")
