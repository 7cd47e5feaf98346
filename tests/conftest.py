"""Shared fakes: an in-process stand-in for requests.Session."""
import json

import pytest

from cloudconv import config, db
from cloudconv.api.client import CloudConvertClient

BASE = "https://api.example.test"


class FakeResponse:
    def __init__(self, status_code=200, json_data=None, content=None):
        self.status_code = status_code
        self._json = json_data
        if content is None:
            content = b"" if json_data is None else json.dumps(json_data).encode()
        self.content = content
        self.closed = False

    @property
    def text(self):
        return self.content.decode("utf-8", "replace")

    def json(self):
        if self._json is None:
            return json.loads(self.content.decode())
        return self._json

    def iter_content(self, chunk_size=1):
        for i in range(0, len(self.content), chunk_size):
            yield self.content[i:i + chunk_size]

    def close(self):
        self.closed = True


class FakeSession:
    """Answers requests from a routing table keyed by (method, url).

    A route value is a list of responses served in order (the last one repeats);
    an exception instance in the list is raised instead of returned.
    """

    def __init__(self, routes=None):
        self.routes = {k: list(v) for k, v in (routes or {}).items()}
        self.calls = []

    def add(self, method, url, *responses):
        self.routes.setdefault((method, url), []).extend(responses)

    def request(self, method, url, **kwargs):
        body = None
        data = kwargs.get("data")
        if data is not None and not isinstance(data, (bytes, str, dict)):
            body = b"".join(data)
        self.calls.append({"method": method, "url": url, "params": kwargs.get("params"),
                           "headers": kwargs.get("headers"), "body": body})
        queue = self.routes.get((method, url))
        if not queue:
            return FakeResponse(404, content=b"no route")
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, BaseException):
            raise item
        return item

    def urls(self, method=None):
        return [c["url"] for c in self.calls if method is None or c["method"] == method]


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def client(session):
    return CloudConvertClient("KEY", BASE, session=session)


@pytest.fixture
def ledger():
    previous = config.DATABASE_URL
    db.init_db(db.IN_MEMORY_URL)
    yield db
    config.DATABASE_URL = previous
    db._engine = None


def status_body(step, percent=None, output_url="", message="", starttime=0, input_name="", output_name=""):
    body = {
        "step": step,
        "message": message,
        "starttime": starttime,
        "input": {"filename": input_name},
        "output": {"url": output_url, "filename": output_name},
    }
    if percent is not None:
        body["percent"] = percent
    return body
