"""Tests for bearer token loading and verification."""

import pytest

from conftest import GOOD_TOKEN, MemorySecretStore
from tools.errors import ConfigError
from use_cases.auth import (
    MIN_TOKEN_BYTES,
    TokenProvider,
    authenticate_request,
    extract_bearer_token,
    load_token,
    verify_token,
)


class TestLoadToken:
    def test_returns_stored_token(self):
        assert load_token(MemorySecretStore(GOOD_TOKEN)) == GOOD_TOKEN

    def test_missing_token(self):
        with pytest.raises(ConfigError, match="not found"):
            load_token(MemorySecretStore(None))

    def test_empty_token(self):
        with pytest.raises(ConfigError, match="empty"):
            load_token(MemorySecretStore(""))

    def test_short_token(self):
        with pytest.raises(ConfigError, match="too short"):
            load_token(MemorySecretStore("x" * (MIN_TOKEN_BYTES - 1)))

    def test_length_is_measured_in_bytes(self):
        # 16 two-byte characters are 32 bytes
        token = "é" * 16
        assert load_token(MemorySecretStore(token)) == token


class TestTokenProvider:
    def test_get_before_load_raises(self):
        provider = TokenProvider(MemorySecretStore(GOOD_TOKEN))
        assert not provider.is_loaded
        with pytest.raises(ConfigError):
            provider.get()

    def test_loads_once(self):
        store = MemorySecretStore(GOOD_TOKEN)
        provider = TokenProvider(store)
        provider.load()

        store.secret = "b" * 64
        provider.load()

        assert provider.get() == GOOD_TOKEN


class TestExtractBearerToken:
    @pytest.mark.parametrize(
        "header",
        [None, "", "Bearer", "Bearer ", "Basic abc", "bearer abc", "Bearer a b", "Token abc"],
    )
    def test_rejects_malformed_headers(self, header):
        assert extract_bearer_token(header) is None

    def test_extracts_token(self):
        assert extract_bearer_token("Bearer abc123") == "abc123"


class TestVerifyToken:
    def test_matching(self):
        assert verify_token(GOOD_TOKEN, GOOD_TOKEN)

    def test_length_mismatch(self):
        assert not verify_token(GOOD_TOKEN[:-1], GOOD_TOKEN)

    def test_same_length_mismatch(self):
        assert not verify_token("b" * 64, GOOD_TOKEN)

    def test_empty(self):
        assert not verify_token("", GOOD_TOKEN)
        assert not verify_token(None, GOOD_TOKEN)


class TestAuthenticateRequest:
    def setup_method(self):
        self.provider = TokenProvider(MemorySecretStore(GOOD_TOKEN))
        self.provider.load()

    def test_valid_header(self):
        assert authenticate_request({"Authorization": f"Bearer {GOOD_TOKEN}"}, self.provider)

    def test_lowercase_header_key(self):
        assert authenticate_request({"authorization": f"Bearer {GOOD_TOKEN}"}, self.provider)

    def test_missing_header(self):
        assert not authenticate_request({}, self.provider)

    def test_wrong_token(self):
        assert not authenticate_request({"Authorization": "Bearer " + "c" * 64}, self.provider)
