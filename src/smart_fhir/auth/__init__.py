from .assertion import AssertionSigner, sign_client_assertion
from .authorization import AuthenticatedSession, AuthorizationCodeFlow
from .discovery import DiscoveryClient, check_compatibility, well_known_url
from .models import AuthorizationRequest, SmartConfiguration, TokenResponse
from .pkce import PkceChallenge, create_pkce_challenge, derive_challenge, generate_state, generate_verifier
from .tokens import TokenManager

__all__ = [
    "AssertionSigner",
    "sign_client_assertion",
    "AuthenticatedSession",
    "AuthorizationCodeFlow",
    "DiscoveryClient",
    "check_compatibility",
    "well_known_url",
    "AuthorizationRequest",
    "SmartConfiguration",
    "TokenResponse",
    "PkceChallenge",
    "create_pkce_challenge",
    "derive_challenge",
    "generate_state",
    "generate_verifier",
    "TokenManager",
]
