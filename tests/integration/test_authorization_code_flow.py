"""Integration test: standalone launch with PKCE → callback → FHIR calls.

Flow: AuthorizationCodeFlow.authorize() → (user agent at authorize URL)
      → callback with code + state → POST token endpoint (authorization_code)
      → AuthenticatedSession → FHIR API with bearer token
      → 401 → refresh_token grant → retry
"""

from __future__ import annotations

from urllib.parse import parse_qs, urlsplit

import pytest
import requests_mock as req_mock

from smart_fhir.auth import AuthenticatedSession, AuthorizationCodeFlow
from smart_fhir.config import ClientConfig
from smart_fhir.errors import AuthenticationError
from tests.conftest import FHIR_BASE_URL, REDIRECT_URI, TOKEN_URL, WELL_KNOWN_URL

pytestmark = pytest.mark.integration


@pytest.fixture
def server(smart_configuration_json: dict):
    with req_mock.Mocker() as m:
        m.get(WELL_KNOWN_URL, json=smart_configuration_json)
        yield m


def _authorize_and_callback(flow: AuthorizationCodeFlow, code: str = "auth-code-1") -> tuple[str, str, str]:
    """Run authorize() and fake the authorization server's redirect."""
    request = flow.authorize(launch="launch-abc")
    query = parse_qs(urlsplit(request.authorize_url).query)
    callback = f"{REDIRECT_URI}?code={code}&state={query['state'][0]}"
    return callback, request.state, request.code_verifier


class TestStandaloneLaunch:
    def test_full_round_trip(self, server, interactive_config: ClientConfig) -> None:
        server.post(TOKEN_URL, json={
            "access_token": "user-token",
            "token_type": "Bearer",
            "expires_in": 3600,
            "scope": "launch/patient patient/*.read",
            "refresh_token": "refresh-1",
            "patient": "123",
        })
        server.get(f"{FHIR_BASE_URL}/Patient/123", json={"resourceType": "Patient", "id": "123"})

        flow = AuthorizationCodeFlow(interactive_config)
        callback, state, verifier = _authorize_and_callback(flow)
        session = flow.exchange(callback, expected_state=state, code_verifier=verifier)

        token_form = parse_qs(next(r for r in server.request_history if r.url == TOKEN_URL).text)
        assert token_form["grant_type"] == ["authorization_code"]
        assert token_form["code_verifier"] == [verifier]

        patient_id = session.token_response.model_extra["patient"]
        patient = session.fhir_client().read(f"Patient/{patient_id}")
        assert patient["id"] == "123"
        assert server.last_request.headers["Authorization"] == "Bearer user-token"

    def test_forged_state_never_reaches_token_endpoint(self, server, interactive_config: ClientConfig) -> None:
        token_endpoint = server.post(TOKEN_URL, json={"access_token": "x", "expires_in": 60})

        flow = AuthorizationCodeFlow(interactive_config)
        callback, _, verifier = _authorize_and_callback(flow)
        with pytest.raises(AuthenticationError, match="Invalid state"):
            flow.exchange(callback, expected_state="some-other-state", code_verifier=verifier)
        assert not token_endpoint.called

    def test_401_uses_refresh_token(self, server, interactive_config: ClientConfig) -> None:
        server.post(TOKEN_URL, [
            {"json": {"access_token": "first", "expires_in": 3600, "refresh_token": "refresh-1"}},
            {"json": {"access_token": "second", "expires_in": 3600, "refresh_token": "refresh-2"}},
        ])
        server.get(
            f"{FHIR_BASE_URL}/Observation",
            [{"status_code": 401}, {"json": {"resourceType": "Bundle", "entry": []}}],
        )

        flow = AuthorizationCodeFlow(interactive_config)
        callback, state, verifier = _authorize_and_callback(flow)
        session = flow.exchange(callback, expected_state=state, code_verifier=verifier)
        session.fhir_client().search("Observation")

        token_forms = [parse_qs(r.text) for r in server.request_history if r.url == TOKEN_URL]
        assert token_forms[1]["grant_type"] == ["refresh_token"]
        assert token_forms[1]["refresh_token"] == ["refresh-1"]
        assert session.access_token == "second"

    def test_session_survives_store_round_trip(self, server, interactive_config: ClientConfig) -> None:
        server.post(TOKEN_URL, json={"access_token": "stored-token", "expires_in": 3600})
        server.get(f"{FHIR_BASE_URL}/metadata", json={"resourceType": "CapabilityStatement", "fhirVersion": "4.0.1"})

        flow = AuthorizationCodeFlow(interactive_config)
        callback, state, verifier = _authorize_and_callback(flow)
        stored = flow.exchange(callback, expected_state=state, code_verifier=verifier).to_dict()

        restored = AuthenticatedSession.from_dict(stored)
        assert restored.fhir_client().get_fhir_release() == 4
        assert server.last_request.headers["Authorization"] == "Bearer stored-token"
