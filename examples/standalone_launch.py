"""Example: SMART standalone launch (authorization code + PKCE) with mocks.

Usage:
    python examples/standalone_launch.py

A web app would redirect the browser to ``authorize_url`` and keep
``state``/``code_verifier`` in the user's session until the callback.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from unittest.mock import MagicMock

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from smart_fhir import ClientConfig
from smart_fhir.auth import AuthenticatedSession, AuthorizationCodeFlow

FHIR_BASE_URL = "https://fhir.example.com/r4"


def _response(payload: dict, status_code: int = 200) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.content = json.dumps(payload).encode()
    response.json.return_value = payload
    return response


def main() -> None:
    print("=== SMART Standalone Launch Demo ===\n")

    session = MagicMock()
    session.get.return_value = _response({
        "authorization_endpoint": "https://auth.example.com/authorize",
        "token_endpoint": "https://auth.example.com/token",
        "code_challenge_methods_supported": ["S256"],
    })
    session.post.return_value = _response({
        "access_token": "mock-user-token",
        "token_type": "Bearer",
        "expires_in": 3600,
        "scope": "launch/patient patient/*.read openid fhirUser",
        "refresh_token": "mock-refresh-token",
        "patient": "123",
    })
    session.request.return_value = _response({"resourceType": "Patient", "id": "123"})

    config = ClientConfig(
        client_id="demo-public-app",
        issuer=FHIR_BASE_URL,
        scope="launch/patient patient/*.read openid fhirUser",
        redirect_uri="http://localhost:8000/callback",
        fhir_base_url=FHIR_BASE_URL,
    )
    flow = AuthorizationCodeFlow(config, session=session)

    # 1. Build the authorization URL
    request = flow.authorize()
    print(f"Redirect the user to:\n  {request.authorize_url}\n")

    # 2. The server redirects back with code + state
    callback_url = f"{config.redirect_uri}?code=mock-auth-code&state={request.state}"

    # 3. Exchange the code and use the session
    authenticated = flow.exchange(callback_url, expected_state=request.state, code_verifier=request.code_verifier)
    patient_id = authenticated.token_response.model_extra.get("patient")
    print(f"Launch patient: {patient_id}")
    patient = authenticated.fhir_client().read(f"Patient/{patient_id}")
    print(f"Read {patient['resourceType']}/{patient['id']}")

    # 4. Persist and restore the session
    stored = authenticated.to_dict()
    restored = AuthenticatedSession.from_dict(stored, session=session)
    print(f"Restored session for {restored.server_url}, expires at {restored.expires_at:.0f}")
    print("\nStandalone launch demo complete.")


if __name__ == "__main__":
    main()
