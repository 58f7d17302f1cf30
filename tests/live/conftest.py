"""Skip guards for live tests.

Every live test that requires external credentials is guarded by a skip that
checks for the required environment variables. Tests silently skip when
credentials are absent; they never fail due to missing config.

Required environment variables (backend-services sandbox):
  SMART_CLIENT_ID          Client ID registered with the sandbox
  SMART_FHIR_BASE_URL      FHIR base URL (discovery runs against its origin)
  SMART_SCOPE              Space-separated system scopes
  SMART_PRIVATE_KEY_PATH   Path to the PEM or JWK private key (or SMART_PRIVATE_KEY)

Optional:
  SMART_KID                Key id registered in the sandbox JWKS
  SMART_SIGNING_ALGORITHM  Defaults to RS384
  SMART_TEST_PATIENT_ID    Patient to read in the sandbox

Set them in your shell before running:
  export SMART_CLIENT_ID=your_client_id
  pytest tests/live -v -m live
"""

from __future__ import annotations

import os

import pytest

from smart_fhir import ClientConfig

REQUIRED_VARS = ("SMART_CLIENT_ID", "SMART_FHIR_BASE_URL", "SMART_SCOPE")


def _skip_unless(env_var: str, reason: str | None = None):
    """Return a pytest.mark.skipif that skips when env_var is not set."""
    msg = reason or f"Set {env_var} to run this test"
    return pytest.mark.skipif(not os.environ.get(env_var), reason=msg)


# Import these marks in live test files
skip_no_smart = _skip_unless("SMART_CLIENT_ID", "Set SMART_CLIENT_ID + SMART_FHIR_BASE_URL to run sandbox tests")
skip_no_patient = _skip_unless("SMART_TEST_PATIENT_ID", "Set SMART_TEST_PATIENT_ID to read a sandbox patient")


@pytest.fixture(scope="session")
def live_config() -> ClientConfig:
    missing = [name for name in REQUIRED_VARS if not os.environ.get(name)]
    if not os.environ.get("SMART_PRIVATE_KEY") and not os.environ.get("SMART_PRIVATE_KEY_PATH"):
        missing.append("SMART_PRIVATE_KEY_PATH")
    if missing:
        pytest.skip(f"{', '.join(missing)} not set")
    return ClientConfig.from_env()
