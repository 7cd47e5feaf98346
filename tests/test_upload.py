"""Tests for the streaming multipart upload."""

import pytest

from conftest import FakeResponse, status_body
from cloudconv.api.upload import MultipartPipe, build_upload_fields
from cloudconv.conversion.models import Process, UploadOptions
from cloudconv.errors import UploadError

PROCESS_URL = "https://host.example/process/p1"


class BrokenFile:
    def __init__(self):
        self.calls = 0

    def read(self, size=-1):
        self.calls += 1
        if self.calls == 1:
            return b"first chunk"
        raise OSError("disk went away")

    def close(self):
        pass


def _parts(body, content_type):
    boundary = content_type.split("boundary=", 1)[1].encode()
    chunks = body.split(b"--" + boundary)
    assert chunks[-1] == b"--\r\n"
    return chunks[1:-1]


class TestBuildUploadFields:
    def test_defaults(self):
        fields = build_upload_fields("webp")
        assert fields["input"] == "upload"
        assert fields["outputformat"] == "webp"
        assert fields["email"] == ""

    def test_options_and_email(self):
        fields = build_upload_fields("pdf", output="dropbox", email=True, conversion_options={"quality": 80, "skip": None})
        assert fields["email"] == "1"
        assert fields["output"] == "dropbox"
        assert fields["options[quality]"] == "80"
        assert fields["options[skip]"] == ""


class TestMultipartPipe:
    def test_body_streams_fields_and_file(self, tmp_path):
        src = tmp_path / "photo.png"
        src.write_bytes(b"\x00\x01binary" * 1000)
        fields = build_upload_fields("webp", conversion_options={"quality": "75", "empty": ""})
        with MultipartPipe(fields, src, chunk_size=512, queue_size=2) as pipe:
            body = b"".join(pipe)
        parts = _parts(body, pipe.content_type)

        names = [p.split(b'name="', 1)[1].split(b'"', 1)[0] for p in parts]
        assert names == [b"input", b"outputformat", b"options[quality]", b"file"]
        assert b'filename="photo.png"' in parts[-1]
        assert b"Content-Type: image/png" in parts[-1]
        assert parts[-1].endswith(b"\x00\x01binary" * 1000 + b"\r\n")
        assert pipe.bytes_sent == src.stat().st_size
        assert pipe.error is None

    def test_missing_file_fails_before_streaming(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            MultipartPipe({"input": "upload"}, tmp_path / "nope.png")

    def test_read_error_is_raised_to_consumer(self, tmp_path):
        src = tmp_path / "a.png"
        src.write_bytes(b"x")
        pipe = MultipartPipe({"input": "upload"}, src)
        pipe._file.close()
        pipe._file = BrokenFile()
        with pipe:
            with pytest.raises(OSError, match="disk went away"):
                b"".join(pipe)
        assert isinstance(pipe.error, OSError)


class TestClientUpload:
    def test_upload_posts_multipart(self, client, session, tmp_path):
        src = tmp_path / "a.png"
        src.write_bytes(b"image bytes")
        session.add("POST", PROCESS_URL, FakeResponse(json_data=status_body("input", input_name="a.png")))
        status = client.upload_file(Process(url=PROCESS_URL), src, "webp",
                                    UploadOptions(callback="https://me/cb", conversion_options={"q": "1"}))
        call = session.calls[0]
        assert call["headers"]["Content-Type"].startswith("multipart/form-data; boundary=")
        assert b'name="callback"\r\n\r\nhttps://me/cb\r\n' in call["body"]
        assert b'name="options[q]"\r\n\r\n1\r\n' in call["body"]
        assert b'name="output"' not in call["body"]
        assert b'name="email"' not in call["body"]
        assert b"image bytes" in call["body"]
        assert status.input.filename == "a.png"

    def test_undecodable_response_is_not_fatal(self, client, session, tmp_path):
        src = tmp_path / "a.png"
        src.write_bytes(b"x")
        session.add("POST", PROCESS_URL, FakeResponse(content=b"OK"))
        assert client.upload_file(Process(url=PROCESS_URL), src, "webp") is None

    def test_read_error_fails_upload(self, client, session, tmp_path, monkeypatch):
        src = tmp_path / "a.png"
        src.write_bytes(b"x")
        session.add("POST", PROCESS_URL, FakeResponse(json_data=status_body("input")))

        original_init = MultipartPipe.__init__

        def broken_init(self, *args, **kwargs):
            original_init(self, *args, **kwargs)
            self._file.close()
            self._file = BrokenFile()

        monkeypatch.setattr(MultipartPipe, "__init__", broken_init)
        with pytest.raises(UploadError, match="disk went away"):
            client.upload_file(Process(url=PROCESS_URL), src, "webp")

    def test_missing_source_is_upload_error(self, client, session, tmp_path):
        with pytest.raises(UploadError):
            client.upload_file(Process(url=PROCESS_URL), tmp_path / "gone.png", "webp")
        assert session.calls == []
