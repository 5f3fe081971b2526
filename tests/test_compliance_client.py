from __future__ import annotations

import pytest
import requests

from harvester import compliance_client
from harvester.compliance_client import ComplianceClient
from harvester.config import Settings
from harvester.errors import ConfigurationError


class FakeApp:
    def __init__(self, **kwargs) -> None:
        self.kwargs = kwargs

    def acquire_token_silent(self, scopes, account=None):
        return None

    def acquire_token_for_client(self, scopes):
        return {"access_token": "token-123"}


class FakeResponse:
    def __init__(self, payload, status_code: int = 200) -> None:
        self.payload = payload
        self.status_code = status_code
        self.text = str(payload)
        self.content = b"x"

    def json(self):
        return self.payload

    def raise_for_status(self):
        raise requests.HTTPError(f"{self.status_code}")


class FakeSession:
    def __init__(self, responses) -> None:
        self.responses = list(responses)
        self.posts: list[tuple] = []

    def post(self, url, headers=None, json=None, timeout=None):
        self.posts.append((url, headers, json))
        return self.responses.pop(0)


@pytest.fixture
def client(monkeypatch) -> ComplianceClient:
    monkeypatch.setattr(compliance_client.msal, "ConfidentialClientApplication", FakeApp)
    settings = Settings(
        _env_file=None,
        COMPLIANCE_CLIENT_ID="app",
        COMPLIANCE_CLIENT_SECRET="secret",
        COMPLIANCE_TENANT_ID="contoso",
        COMPLIANCE_AUTH_MODE="client_credentials",
        COMPLIANCE_API_BASE="https://compliance.example.test/adminapi/beta/contoso",
    )
    return ComplianceClient(settings)


def test_missing_client_id_is_a_configuration_error() -> None:
    with pytest.raises(ConfigurationError):
        ComplianceClient(Settings(_env_file=None))


def test_invoke_posts_cmdlet_with_bearer_token(client) -> None:
    client.session = FakeSession([FakeResponse({"value": [{"Name": "job-1", "Status": "Completed"}]})])

    row = client.get_search("job-1")

    url, headers, body = client.session.posts[0]
    assert url == "https://compliance.example.test/adminapi/beta/contoso/InvokeCommand"
    assert headers["Authorization"] == "Bearer token-123"
    assert body == {"CmdletInput": {"CmdletName": "Get-ComplianceSearch", "Parameters": {"Identity": "job-1"}}}
    assert row["Status"] == "Completed"


def test_export_request_uses_fixed_format_and_scope(client) -> None:
    client.session = FakeSession([FakeResponse({"value": []})])

    client.create_export("job-1")

    parameters = client.session.posts[0][2]["CmdletInput"]["Parameters"]
    assert parameters["SearchName"] == "job-1"
    assert parameters["ExchangeArchiveFormat"] == "SinglePst"
    assert parameters["Scope"] == "IndexedItemsOnly"


def test_http_errors_are_raised(client) -> None:
    client.session = FakeSession([FakeResponse({"error": "nope"}, status_code=503)])

    with pytest.raises(requests.HTTPError):
        client.list_searches()
