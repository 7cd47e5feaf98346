"""Tests for status/process models and value normalization."""

import pytest

from cloudconv.conversion.models import (
    HistoryEntry,
    Process,
    StatusResponse,
    Step,
    format_from_filename,
    normalize_url,
    parse_percent,
    replace_extension,
)


class TestParsePercent:
    """Percent arrives as a JSON number or a quoted string."""

    @pytest.mark.parametrize("raw,expected", [(45, 45.0), (12.5, 12.5), ("45", 45.0), ('"45"', 45.0), (" 100 ", 100.0), ("0", 0.0)])
    def test_valid_values(self, raw, expected):
        assert parse_percent(raw) == expected

    @pytest.mark.parametrize("raw", [None, "", "abc", "150", -1, "-5", True])
    def test_unusable_values_are_absent(self, raw):
        assert parse_percent(raw) is None

    def test_malformed_value_logs_warning(self, caplog):
        with caplog.at_level("WARNING", logger="cloudconv.models"):
            assert parse_percent("n/a") is None
        assert "Cannot parse percent" in caplog.text


class TestUrls:
    def test_protocol_relative_gets_scheme(self):
        assert normalize_url("//host/x", "http://api/process/1") == "http://host/x"
        assert normalize_url("//host/x") == "https://host/x"

    def test_absolute_url_unchanged(self):
        assert normalize_url("https://host/x", "http://other") == "https://host/x"

    def test_status_output_url_uses_process_scheme(self):
        status = StatusResponse.from_dict({"step": "finished", "output": {"url": "//cdn/b.webp"}}, "http://api/p/1")
        assert status.output.url == "http://cdn/b.webp"
        assert status.is_finished

    def test_history_entry_url_defaults_to_https(self):
        entry = HistoryEntry.from_dict({"id": "abc", "step": "finished", "url": "//host/process/abc"})
        assert entry.url == "https://host/process/abc"


class TestStatusResponse:
    def test_missing_fields_take_defaults(self):
        status = StatusResponse.from_dict({})
        assert status.step == ""
        assert status.percent is None
        assert status.output.url == ""
        assert status.input.filename == ""

    def test_full_snapshot(self):
        status = StatusResponse.from_dict({
            "id": "p1",
            "step": "convert",
            "percent": "30",
            "message": "Converting",
            "starttime": 1000,
            "input": {"filename": "a.png", "size": 10, "ext": "png"},
            "output": {"filename": "a.webp", "files": ["a.webp"], "downloads": 2},
            "converter": {"format": "webp", "options": {"quality": "80"}, "duration": "1.5"},
        })
        assert status.percent == 30.0
        assert status.input.size == 10
        assert status.output.files == ("a.webp",)
        assert status.output.downloads == 2
        assert status.converter.options == {"quality": "80"}
        assert status.converter.duration == 1.5

    def test_non_object_body_rejected(self):
        with pytest.raises(ValueError):
            StatusResponse.from_dict(["nope"])

    @pytest.mark.parametrize("step", ["", "input", "wait", "convert", "output", "queued"])
    def test_intermediate_steps_keep_polling(self, step):
        status = StatusResponse.from_dict({"step": step})
        assert not status.is_finished
        assert not status.is_error

    def test_only_terminal_steps_are_named(self):
        assert {s.value for s in Step} == {"finished", "error"}
        assert StatusResponse.from_dict({"step": "finished"}).is_finished
        assert StatusResponse.from_dict({"step": "error"}).is_error


class TestFileNames:
    def test_process_id_is_last_segment(self):
        assert Process(url="https://host/process/abc123").id == "abc123"
        assert Process(url="abc123").id == "abc123"

    def test_format_from_filename_preserves_case(self):
        assert format_from_filename("out/b.WEBP") == "WEBP"
        assert format_from_filename("noext") == ""

    def test_replace_extension(self):
        assert replace_extension("dir/a.png", "webp") == "dir/a.webp"
        assert replace_extension("dir/a", "webp") == "dir/a.webp"
