"""
Bearer Token Authentication

Loads the shared secret once and checks inbound Authorization headers
against it in constant time.
"""

import hmac
from typing import Mapping, Optional

from tools.errors import ConfigError
from tools.logger import log_debug, log_info

MIN_TOKEN_BYTES = 32


def load_token(secret_store) -> str:
    """
    Read and validate the bearer token from the secret store.

    Raises:
        ConfigError: if the token is missing, insecurely stored, empty or
            shorter than MIN_TOKEN_BYTES.
    """
    token = secret_store.get()

    if token is None:
        raise ConfigError(
            f"Token file not found: {getattr(secret_store, 'path', '<secret store>')}\n"
            "Please run: generate-token"
        )

    if not token:
        raise ConfigError("Token file is empty")

    token_length = len(token.encode("utf-8"))
    if token_length < MIN_TOKEN_BYTES:
        raise ConfigError(
            f"Token is too short: {token_length} bytes "
            f"(minimum {MIN_TOKEN_BYTES} bytes required)\n"
            "Please regenerate token with: generate-token"
        )

    return token


class TokenProvider:
    """
    Init-once holder for the gateway bearer token.

    ``load()`` is called once by the gateway at startup; ``get()`` returns the
    cached value until the process exits. There is no reload.
    """

    def __init__(self, secret_store):
        self._secret_store = secret_store
        self._token: Optional[str] = None

    def load(self) -> str:
        if self._token is None:
            self._token = load_token(self._secret_store)
            log_info("Bearer token loaded")
        return self._token

    def get(self) -> str:
        if self._token is None:
            raise ConfigError("Bearer token requested before it was loaded")
        return self._token

    @property
    def is_loaded(self) -> bool:
        return self._token is not None


def extract_bearer_token(auth_header) -> Optional[str]:
    """
    Extract the token from an ``Authorization: Bearer <token>`` header.

    Returns None for any other shape, including an empty token.
    """
    if not auth_header or not isinstance(auth_header, str):
        return None

    parts = auth_header.split(" ")
    if len(parts) != 2 or parts[0] != "Bearer" or not parts[1]:
        return None

    return parts[1]


def verify_token(provided: Optional[str], expected: str) -> bool:
    """
    Compare a presented token with the expected one.

    Length mismatches short-circuit to False; equal-length tokens are compared
    byte by byte in constant time.
    """
    if not provided:
        return False

    provided_bytes = provided.encode("utf-8")
    expected_bytes = expected.encode("utf-8")

    if len(provided_bytes) != len(expected_bytes):
        return False

    return hmac.compare_digest(provided_bytes, expected_bytes)


def authenticate_request(headers: Mapping[str, str], token_provider: TokenProvider) -> bool:
    """Authenticate a WebSocket upgrade request from its HTTP headers."""
    auth_header = headers.get("Authorization") or headers.get("authorization")
    token = extract_bearer_token(auth_header)
    if token is None:
        log_debug("Upgrade request without a usable bearer token")
        return False

    return verify_token(token, token_provider.get())
