import pytest
from fastapi.testclient import TestClient

from streamrelay import codec
from streamrelay.main import create_app

from conftest import StubResolver


@pytest.fixture
def coordinator(make_coordinator):
    return make_coordinator(resolver=StubResolver(failing={"https://www.youtube.com/watch?v=dead"}))


@pytest.fixture
def client(coordinator):
    with TestClient(create_app(coordinator=coordinator)) as client:
        yield client


def _upload(client, links, password="secret"):
    return client.post("/api/upload", json={"links": links, "password": password})


def test_upload_batch_is_pending_until_debounce(client, coordinator):
    links = ["https://youtu.be/a1", "https://youtu.be/b2", "https://vimeo.com/3"]

    resp = _upload(client, links)

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert "10 minutes" in body["message"]
    assert [r["internalId"] for r in body["results"]] == ["mov001", "mov002", "mov003"]
    assert [r["originalUrl"] for r in body["results"]] == links
    assert all(r["status"] == "success" for r in body["results"])
    token = body["results"][0]["publicLink"].rsplit("/r/", 1)[1]
    assert codec.decode(token) == "mov001"

    status = client.get("/api/status").json()
    assert status["totalLinks"] == 0
    assert status["pendingUploads"] == 3
    assert status["isRefreshing"] is False
    assert status["debounceArmed"] is True
    assert status["nextRefresh"] == "Scheduled"
    assert coordinator.find("mov001").original_url == "https://www.youtube.com/watch?v=a1"


def test_upload_marks_unresolvable_and_invalid_urls(client):
    resp = _upload(client, ["https://youtu.be/dead", "not a url"])

    first, second = resp.json()["results"]
    assert first["status"] == "failed"
    assert first["internalId"] == "mov001"
    assert first["title"] == "Described"
    assert second["status"] == "invalid"
    assert second["internalId"] is None
    assert second["publicLink"] is None


def test_upload_rejects_bad_password(client, coordinator):
    resp = _upload(client, ["https://youtu.be/a1"], password="wrong")
    assert resp.status_code == 401
    assert coordinator.pending_count == 0


@pytest.mark.parametrize("links", [None, "https://youtu.be/a1", {"url": "x"}, [1, 2]])
def test_upload_requires_links_array(client, links):
    assert _upload(client, links).status_code == 400


def test_get_link_by_token(client, coordinator):
    body = _upload(client, ["https://youtu.be/a1"]).json()
    token = body["results"][0]["publicLink"].rsplit("/r/", 1)[1]

    # still pending
    assert client.get(f"/api/links/{token}").status_code == 404

    coordinator.registry.merge([coordinator.find("mov001")])
    resp = client.get(f"/api/links/{token}")
    assert resp.status_code == 200
    assert resp.json()["id"] == "mov001"


@pytest.mark.parametrize("token", ["ab", "!!!!!!xyz", codec.encode("mov999")])
def test_get_link_rejects_bad_tokens(client, token):
    assert client.get(f"/api/links/{token}").status_code == 400


class ExplodingResolver(StubResolver):
    def resolve(self, original_url):
        if original_url.endswith("boom"):
            raise TypeError("extractor bug")
        return super().resolve(original_url)


def test_upload_survives_unexpected_resolver_error(make_coordinator):
    coordinator = make_coordinator(resolver=ExplodingResolver())
    with TestClient(create_app(coordinator=coordinator)) as client:
        resp = _upload(client, ["https://youtu.be/ok", "https://youtu.be/boom"])

        assert resp.status_code == 200
        ok, boom = resp.json()["results"]
        assert (ok["internalId"], ok["status"]) == ("mov001", "success")
        assert (boom["internalId"], boom["status"]) == ("mov002", "failed")
        assert coordinator.pending_count == 2
