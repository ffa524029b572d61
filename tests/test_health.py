import requests

from streamrelay.health import ProbeResult, probe


class FakeResponse:
    def __init__(self, status_code):
        self.status_code = status_code


class FakeSession:
    def __init__(self, status_code=200, error=None):
        self.status_code = status_code
        self.error = error
        self.calls = []

    def head(self, url, timeout=None, allow_redirects=False):
        self.calls.append((url, timeout, allow_redirects))
        if self.error is not None:
            raise self.error
        return FakeResponse(self.status_code)


def test_probe_success():
    session = FakeSession(200)
    result = probe("https://cdn.example/a", timeout=3, session=session)
    assert result == ProbeResult(reachable=True, status_code=200)
    assert session.calls == [("https://cdn.example/a", 3, True)]


def test_probe_http_error_status():
    result = probe("https://cdn.example/a", session=FakeSession(404))
    assert not result.reachable
    assert result.status_code == 404
    assert result.reason == "HTTP 404"


def test_probe_transport_failure_never_raises():
    session = FakeSession(error=requests.ConnectTimeout("timed out"))
    result = probe("https://cdn.example/a", session=session)
    assert not result.reachable
    assert result.status_code == 0
    assert result.reason == "timed out"


def test_probe_unfollowed_redirect_is_unreachable():
    assert not probe("https://cdn.example/a", session=FakeSession(302)).reachable
