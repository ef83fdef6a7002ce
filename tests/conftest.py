import threading
from typing import Any, Dict, List, Optional, Tuple

import pytest
from requests.structures import CaseInsensitiveDict

from webtools import probe as probe_module
from webtools.models import Failed, Ok
from webtools.storage import SQLAlchemyStorage


class FakeResponse:
    def __init__(self, status_code: int = 200, headers: Optional[Dict[str, str]] = None, text: str = "", url: str = ""):
        self.status_code = status_code
        self.headers = CaseInsensitiveDict(headers or {})
        self.text = text
        self.url = url
        self.closed = False

    def close(self) -> None:
        self.closed = True


class FakeSession:
    """Stands in for ``requests.Session``; routes are keyed by (METHOD, url).

    A route value may be a FakeResponse, an exception instance (raised), or a
    callable taking the URL. Unknown routes answer 404.
    """

    def __init__(self) -> None:
        self.headers: Dict[str, str] = {"User-Agent": probe_module.USER_AGENT}
        self.routes: Dict[Tuple[str, str], Any] = {}
        self.calls: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    def add(self, method: str, url: str, response: Any) -> None:
        self.routes[(method.upper(), url)] = response

    def request(self, method, url, timeout=None, headers=None, allow_redirects=True, stream=False, **kwargs):
        with self._lock:
            self.calls.append(
                {
                    "method": method,
                    "url": url,
                    "timeout": timeout,
                    "headers": headers,
                    "allow_redirects": allow_redirects,
                    "stream": stream,
                }
            )
        route = self.routes.get((method.upper(), url))
        if route is None:
            return FakeResponse(404, url=url)
        if isinstance(route, BaseException):
            raise route
        if callable(route):
            route = route(url)
        if not route.url:
            route.url = url
        return route


@pytest.fixture
def fake_http(monkeypatch):
    session = FakeSession()
    monkeypatch.setattr(probe_module, "_get_thread_session", lambda: session)
    return session


@pytest.fixture
def storage(tmp_path):
    return SQLAlchemyStorage(str(tmp_path / "webtools-test.db"))


class FakeSummarizer:
    def __init__(self, result=None, raises: Optional[Exception] = None):
        self.result = result
        self.raises = raises
        self.urls: List[str] = []

    def summarize(self, url):
        self.urls.append(url)
        if self.raises is not None:
            raise self.raises
        return self.result


@pytest.fixture
def summary_payload():
    return {
        "summary": "An example site.",
        "services": ["Examples"],
        "locations": [],
        "seoTitle": "Example",
        "seoDescription": "Example description",
        "seoKeywords": ["example"],
    }


@pytest.fixture
def fake_summarizer(summary_payload):
    return FakeSummarizer(result=Ok(summary_payload))


@pytest.fixture
def failing_summarizer():
    return FakeSummarizer(result=Failed("Failed to generate AI summary", details="quota"))
