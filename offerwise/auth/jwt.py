"""HS256 bearer tokens identifying the calling agent."""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import uuid
from datetime import timedelta
from typing import Any

from offerwise.core.exceptions import NotAuthenticated
from offerwise.utils.clock import Clock, utcnow

ALGORITHM = "HS256"
ACCESS_TOKEN_USE = "access"


def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def _b64url_decode(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(f"{data}{padding}".encode("ascii"))


def _segment(payload: dict[str, Any]) -> str:
    return _b64url_encode(json.dumps(payload, separators=(",", ":"), sort_keys=True).encode("utf-8"))


def _signature(signing_input: str, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), signing_input.encode("utf-8"), hashlib.sha256).digest()
    return _b64url_encode(digest)


def encode_jwt(claims: dict[str, Any], secret: str, ttl: timedelta, clock: Clock = utcnow) -> str:
    if not secret:
        raise NotAuthenticated("JWT secret must be configured.")

    issued_at = clock()
    body = dict(claims)
    body.setdefault("iat", int(issued_at.timestamp()))
    body.setdefault("exp", int((issued_at + ttl).timestamp()))
    body.setdefault("jti", str(uuid.uuid4()))

    signing_input = f"{_segment({'alg': ALGORITHM, 'typ': 'JWT'})}.{_segment(body)}"
    return f"{signing_input}.{_signature(signing_input, secret)}"


def decode_jwt(token: str, secret: str, verify_exp: bool = True, clock: Clock = utcnow) -> dict[str, Any]:
    """Verify signature and expiry, returning the claims."""
    if not secret:
        raise NotAuthenticated("JWT secret must be configured.")
    try:
        header_segment, payload_segment, signature = token.split(".")
    except ValueError as exc:
        raise NotAuthenticated("Invalid token format.") from exc

    if not hmac.compare_digest(_signature(f"{header_segment}.{payload_segment}", secret), signature):
        raise NotAuthenticated("Invalid token signature.")

    try:
        header = json.loads(_b64url_decode(header_segment).decode("utf-8"))
        claims = json.loads(_b64url_decode(payload_segment).decode("utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError, ValueError) as exc:
        raise NotAuthenticated("Invalid token payload.") from exc
    if header.get("alg") != ALGORITHM:
        raise NotAuthenticated("Unsupported token algorithm.")

    if verify_exp:
        expires = claims.get("exp")
        if expires is None:
            raise NotAuthenticated("Token is missing exp claim.")
        if int(expires) < int(clock().timestamp()):
            raise NotAuthenticated("Token has expired.")
    return claims


def create_access_token(agent_id: str, secret: str, ttl_minutes: int = 60, clock: Clock = utcnow, **extra_claims: Any) -> str:
    claims = {**extra_claims, "sub": agent_id, "token_use": ACCESS_TOKEN_USE}
    return encode_jwt(claims, secret=secret, ttl=timedelta(minutes=ttl_minutes), clock=clock)


def decode_access_token(token: str, secret: str, clock: Clock = utcnow) -> dict[str, Any]:
    claims = decode_jwt(token, secret, clock=clock)
    if claims.get("token_use") != ACCESS_TOKEN_USE:
        raise NotAuthenticated("Token is not an access token.")
    return claims
