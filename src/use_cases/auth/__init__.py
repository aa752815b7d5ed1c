"""
Auth Use Case

Bearer-token authentication for WebSocket upgrade requests.
"""

from use_cases.auth.token_auth import (
    MIN_TOKEN_BYTES,
    TokenProvider,
    authenticate_request,
    extract_bearer_token,
    load_token,
    verify_token,
)

__all__ = [
    "MIN_TOKEN_BYTES",
    "TokenProvider",
    "authenticate_request",
    "extract_bearer_token",
    "load_token",
    "verify_token",
]
