"""Shared pytest fixtures, mock factories, and test markers.

Test tiers
----------
  unit        Fast, fully offline, zero external dependencies.
              Always run.

  integration Mock the SMART server (discovery, token endpoint, FHIR API)
              with requests-mock. Always run. Validates end-to-end flow
              logic without real network calls.

  quality     Property-based tests (Hypothesis) and real cryptographic
              round trips. Always run offline.

  live        Real SMART sandbox calls. Skipped unless the required
              environment variables are set. See tests/live/conftest.py.

Run specific tiers:
  pytest tests/unit tests/integration tests/quality   # offline only
  pytest tests/live -m live                           # live only
  pytest tests/ -v                                    # everything
"""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from jwt.algorithms import ECAlgorithm, RSAAlgorithm

from smart_fhir.config import ClientConfig

FHIR_BASE_URL = "https://fhir.example.com/r4"
WELL_KNOWN_URL = "https://fhir.example.com/.well-known/smart-configuration"
TOKEN_URL = "https://auth.example.com/token"
AUTHORIZE_URL = "https://auth.example.com/authorize"
CLIENT_ID = "test-client-id"
SCOPE = "system/Observation.read system/Patient.read"
REDIRECT_URI = "https://app.example.com/fhir/callback"


# ---------------------------------------------------------------------------
# Pytest markers
# ---------------------------------------------------------------------------

def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast offline unit tests")
    config.addinivalue_line("markers", "integration: mock-server integration tests")
    config.addinivalue_line("markers", "quality: property-based and cryptographic checks")
    config.addinivalue_line("markers", "live: requires real credentials (skipped by default)")


# ---------------------------------------------------------------------------
# Key material: real keys so PyJWT actually signs
# ---------------------------------------------------------------------------

@pytest.fixture(scope="session")
def rsa_private_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def rsa_private_pem(rsa_private_key: rsa.RSAPrivateKey) -> str:
    return rsa_private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()


@pytest.fixture(scope="session")
def rsa_public_key(rsa_private_key: rsa.RSAPrivateKey) -> rsa.RSAPublicKey:
    return rsa_private_key.public_key()


@pytest.fixture(scope="session")
def rsa_private_jwk(rsa_private_key: rsa.RSAPrivateKey) -> str:
    jwk = json.loads(RSAAlgorithm.to_jwk(rsa_private_key))
    jwk["kid"] = "test-kid-jwk"
    return json.dumps(jwk)


@pytest.fixture(scope="session")
def ec_private_key() -> ec.EllipticCurvePrivateKey:
    return ec.generate_private_key(ec.SECP384R1())


@pytest.fixture(scope="session")
def ec_private_jwk(ec_private_key: ec.EllipticCurvePrivateKey) -> str:
    return ECAlgorithm.to_jwk(ec_private_key)


# ---------------------------------------------------------------------------
# Configuration fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def backend_config(rsa_private_pem: str) -> ClientConfig:
    return ClientConfig(
        client_id=CLIENT_ID,
        issuer=CLIENT_ID,
        scope=SCOPE,
        private_key=rsa_private_pem,
        fhir_base_url=FHIR_BASE_URL,
        kid="test-kid-pem",
    )


@pytest.fixture
def interactive_config() -> ClientConfig:
    return ClientConfig(
        client_id=CLIENT_ID,
        issuer=FHIR_BASE_URL,
        scope="openid fhirUser launch/patient patient/*.read",
        redirect_uri=REDIRECT_URI,
        fhir_base_url=FHIR_BASE_URL,
    )


# ---------------------------------------------------------------------------
# SMART server payloads
# ---------------------------------------------------------------------------

@pytest.fixture
def smart_configuration_json() -> dict:
    return {
        "authorization_endpoint": AUTHORIZE_URL,
        "token_endpoint": TOKEN_URL,
        "token_endpoint_auth_methods_supported": ["private_key_jwt"],
        "token_endpoint_auth_signing_alg_values_supported": ["RS384", "ES384"],
        "scopes_supported": ["system/Observation.read", "system/Patient.read", "openid", "fhirUser"],
        "response_types_supported": ["code", "token"],
        "capabilities": ["launch-ehr", "client-confidential-asymmetric"],
    }


@pytest.fixture
def token_response_json() -> dict:
    return {
        "access_token": "mocked_access_token_123",
        "token_type": "Bearer",
        "expires_in": 300,
        "scope": SCOPE,
    }


def make_bundle(entries: list[dict], next_url: str | None = None) -> dict:
    """A searchset Bundle with optional ``next`` link."""
    links = [{"relation": "self", "url": f"{FHIR_BASE_URL}/Patient"}]
    if next_url:
        links.append({"relation": "next", "url": next_url})
    return {
        "resourceType": "Bundle",
        "type": "searchset",
        "link": links,
        "entry": [{"resource": resource} for resource in entries],
    }


# ---------------------------------------------------------------------------
# Token session mocks
# ---------------------------------------------------------------------------

def make_token_session(*access_tokens: str, expires_in: int = 300) -> MagicMock:
    """A MagicMock session whose post() returns one token response per call."""
    session = MagicMock()
    responses = []
    for token in access_tokens:
        resp = MagicMock()
        resp.status_code = 200
        resp.json.return_value = {"access_token": token, "expires_in": expires_in, "token_type": "Bearer"}
        responses.append(resp)
    session.post.side_effect = responses
    return session
