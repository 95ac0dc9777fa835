import pytest
import requests

from outreach.adapters.instantly.client import PAGE_SIZE, InstantlyClient
from outreach.domain.errors import ExternalPlatformError


class FakeResponse:
    def __init__(self, status_code: int, payload: dict | None = None, text: str = "") -> None:
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self) -> dict:
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class FakeSession:
    def __init__(self, responses: list) -> None:
        self.responses = list(responses)
        self.calls: list[dict] = []
        self.headers: dict = {}

    def request(self, method, url, params=None, json=None, timeout=None):
        self.calls.append({"method": method, "url": url, "params": dict(params or {}), "json": json})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _client(responses: list, max_attempts: int = 3) -> tuple[InstantlyClient, FakeSession]:
    client = InstantlyClient(api_key="key", base_url="https://api.test/v2/", max_attempts=max_attempts)
    session = FakeSession(responses)
    client.session = session
    return client, session


@pytest.fixture(autouse=True)
def _no_sleep(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("time.sleep", lambda _seconds: None)


def test_list_emails_paginates() -> None:
    full_page = [{"email": f"user{i}@example.com", "status": "sent"} for i in range(PAGE_SIZE)]
    last_page = [{"email": "last@example.com", "status": "opened", "campaign_id": "other"}]
    client, session = _client(
        [FakeResponse(200, {"emails": full_page}), FakeResponse(200, {"emails": last_page})]
    )

    emails = client.list_emails("ext-1")

    assert len(emails) == PAGE_SIZE + 1
    assert emails[0]["campaign_id"] == "ext-1"
    assert emails[-1]["campaign_id"] == "other"
    assert session.calls[0]["url"] == "https://api.test/v2/emails"
    assert "offset" not in session.calls[0]["params"]
    assert session.calls[1]["params"]["offset"] == PAGE_SIZE


def test_transient_errors_are_retried() -> None:
    client, session = _client(
        [
            FakeResponse(503, text="unavailable"),
            requests.ConnectionError("reset"),
            FakeResponse(200, {"emails": []}),
        ]
    )

    assert client.list_emails("ext-1") == []
    assert len(session.calls) == 3


def test_client_errors_are_not_retried() -> None:
    client, session = _client([FakeResponse(401, text="unauthorized")])

    with pytest.raises(ExternalPlatformError) as excinfo:
        client.list_emails("ext-1")
    assert excinfo.value.status_code == 401
    assert len(session.calls) == 1


def test_network_failure_after_retries() -> None:
    client, session = _client([requests.Timeout("slow"), requests.Timeout("slow")], max_attempts=2)

    with pytest.raises(ExternalPlatformError):
        client.list_emails("ext-1")
    assert len(session.calls) == 2


def test_add_leads_posts_payload() -> None:
    client, session = _client([FakeResponse(200, {"status": "ok"})])

    client.add_leads_to_campaign("ext-1", [{"email": "jane@example.com"}])

    assert session.calls[0]["method"] == "POST"
    assert session.calls[0]["url"] == "https://api.test/v2/campaigns/ext-1/leads"
    assert session.calls[0]["json"] == {"leads": [{"email": "jane@example.com"}]}


def test_non_json_response() -> None:
    client, _ = _client([FakeResponse(200, None)])

    with pytest.raises(ExternalPlatformError):
        client.add_leads_to_campaign("ext-1", [])


def test_api_key_required() -> None:
    with pytest.raises(ExternalPlatformError):
        InstantlyClient(api_key="")
