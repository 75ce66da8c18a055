from __future__ import annotations

import hashlib
import hmac
import json
from datetime import timedelta

import pytest

from offerwise.auth.jwt import (
    _b64url_encode,
    create_access_token,
    decode_access_token,
    decode_jwt,
    encode_jwt,
)
from offerwise.core.exceptions import NotAuthenticated


def test_access_token_roundtrip_contains_required_claims(clock):
    token = create_access_token("agent-42", secret="test-secret", clock=clock, brokerage="acme")
    claims = decode_access_token(token, secret="test-secret", clock=clock)

    assert claims["sub"] == "agent-42"
    assert claims["token_use"] == "access"
    assert claims["brokerage"] == "acme"
    assert claims["exp"] - claims["iat"] == 3600
    assert "jti" in claims


def test_wrong_secret_is_rejected(clock):
    token = create_access_token("agent-42", secret="test-secret", clock=clock)

    with pytest.raises(NotAuthenticated, match="signature"):
        decode_jwt(token, secret="other-secret", clock=clock)


def test_expired_token_is_rejected(clock):
    token = create_access_token("agent-42", secret="test-secret", ttl_minutes=5, clock=clock)
    clock.advance(minutes=6)

    with pytest.raises(NotAuthenticated, match="expired"):
        decode_access_token(token, secret="test-secret", clock=clock)
    assert decode_jwt(token, secret="test-secret", verify_exp=False, clock=clock)["sub"] == "agent-42"


def test_malformed_and_non_access_tokens_are_rejected(clock):
    refresh = encode_jwt({"sub": "agent-42", "token_use": "refresh"}, "test-secret", timedelta(minutes=5), clock=clock)

    with pytest.raises(NotAuthenticated, match="format"):
        decode_jwt("not-a-token", secret="test-secret")
    with pytest.raises(NotAuthenticated, match="access token"):
        decode_access_token(refresh, secret="test-secret", clock=clock)
    with pytest.raises(NotAuthenticated):
        create_access_token("agent-42", secret="")


def test_foreign_algorithm_is_rejected(clock):
    header = _b64url_encode(json.dumps({"alg": "HS512", "typ": "JWT"}).encode())
    payload = _b64url_encode(json.dumps({"sub": "agent-42", "exp": 4102444800}).encode())
    signature = _b64url_encode(
        hmac.new(b"test-secret", f"{header}.{payload}".encode(), hashlib.sha256).digest()
    )

    with pytest.raises(NotAuthenticated, match="algorithm"):
        decode_jwt(f"{header}.{payload}.{signature}", secret="test-secret", clock=clock)
