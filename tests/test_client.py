"""Tests for the HTTP adapter."""

import pytest
import requests

from conftest import BASE, FakeResponse
from cloudconv.conversion.models import Process
from cloudconv.errors import ApiError, TransportError


class TestCreateProcess:
    def test_url_normalized(self, client, session):
        session.add("GET", f"{BASE}/process", FakeResponse(json_data={"url": "//srv1.example/process/abc"}))
        process = client.create_process("png", "webp")
        assert process.url == "https://srv1.example/process/abc"
        assert process.id == "abc"
        assert process.error == ""

    def test_rejection_is_returned(self, client, session):
        session.add("GET", f"{BASE}/process", FakeResponse(json_data={"error": "Invalid API key"}))
        process = client.create_process("png", "webp")
        assert process.error == "Invalid API key"
        assert process.url == ""


class TestConversionTypes:
    def test_empty_formats_not_sent(self, client, session):
        session.add("GET", f"{BASE}/conversiontypes", FakeResponse(json_data=[
            {"inputformat": "png", "outputformat": "webp", "converter": "imagemagick",
             "converteroptions": {"quality": None}},
        ]))
        types = client.conversion_types(output_format="webp")
        assert session.calls[0]["params"] == {"outputformat": "webp"}
        assert types[0].converter == "imagemagick"
        assert types[0].converter_options == {"quality": None}

    def test_is_possible(self, client, session):
        session.add("GET", f"{BASE}/conversiontypes", FakeResponse(json_data=[{"inputformat": "png", "outputformat": "webp"}]))
        assert client.is_possible("png", "webp")
        assert not client.is_possible("", "webp")
        assert len(session.calls) == 1

    def test_not_possible_when_list_empty(self, client, session):
        session.add("GET", f"{BASE}/conversiontypes", FakeResponse(json_data=[]))
        assert not client.is_possible("png", "xyz")


class TestErrors:
    def test_http_error_status(self, client, session):
        session.add("GET", f"{BASE}/conversiontypes", FakeResponse(503, content=b"maintenance"))
        with pytest.raises(ApiError) as exc_info:
            client.conversion_types()
        assert exc_info.value.status_code == 503
        assert exc_info.value.body == "maintenance"

    def test_transport_error_wrapped(self, client, session):
        session.add("GET", f"{BASE}/conversiontypes", requests.ConnectionError("no route to host"))
        with pytest.raises(TransportError, match="no route to host"):
            client.conversion_types()

    def test_invalid_json(self, client, session):
        session.add("GET", f"{BASE}/processes", FakeResponse(content=b"<html>"))
        with pytest.raises(ApiError, match="not valid JSON"):
            client.list_history()


class TestDownloadAndControl:
    def test_download_streams_to_file(self, client, session, tmp_path):
        payload = bytes(range(256)) * 1000
        session.add("GET", "https://cdn/out.bin", FakeResponse(content=payload))
        written = client.download("https://cdn/out.bin", tmp_path / "out.bin")
        assert written == len(payload)
        assert (tmp_path / "out.bin").read_bytes() == payload

    def test_download_http_error(self, client, session, tmp_path):
        session.add("GET", "https://cdn/gone", FakeResponse(404, content=b"not found"))
        with pytest.raises(ApiError):
            client.download("https://cdn/gone", tmp_path / "x")
        assert not (tmp_path / "x").exists()

    def test_cancel_transport_error_returned(self, client, session):
        session.add("GET", "https://host/process/p/cancel", requests.ConnectionError("down"))
        with pytest.raises(TransportError):
            client.cancel(Process(url="https://host/process/p"))
