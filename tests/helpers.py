"""Shared test helper functions for CityVenture refunds tests.

Plain functions (not fixtures) importable by conftest.py and test modules.
"""

from __future__ import annotations

import base64
import time
from typing import Any
from unittest.mock import MagicMock

import jwt
from cryptography.hazmat.primitives.asymmetric import rsa

from cityventure.api.auth import CurrentUser

OIDC_ISSUER = "https://auth.cityventure.example"
OIDC_AUDIENCE = "cityventure-api"


def _generate_rsa_keypair():
    """Generate RSA key pair for test JWT signing."""
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return private_key, private_key.public_key()


def _create_jwks(public_key, kid: str = "test-key-1") -> dict:
    """Create JWKS from public key."""
    public_numbers = public_key.public_numbers()

    def int_to_base64(n: int) -> str:
        byte_length = (n.bit_length() + 7) // 8
        return (
            base64.urlsafe_b64encode(n.to_bytes(byte_length, "big"))
            .rstrip(b"=")
            .decode()
        )

    return {
        "keys": [
            {
                "kty": "RSA",
                "use": "sig",
                "alg": "RS256",
                "kid": kid,
                "n": int_to_base64(public_numbers.n),
                "e": int_to_base64(public_numbers.e),
            }
        ]
    }


def _create_token(
    private_key,
    kid: str = "test-key-1",
    sub: str = "user-123",
    iss: str = OIDC_ISSUER,
    aud: str = OIDC_AUDIENCE,
    exp: int | None = None,
    azp: str | None = None,
) -> str:
    """Create signed JWT for testing."""
    now = int(time.time())
    payload: dict[str, Any] = {
        "sub": sub,
        "iss": iss,
        "aud": aud,
        "exp": exp if exp is not None else now + 3600,
        "iat": now,
    }
    if azp:
        payload["azp"] = azp
    return jwt.encode(payload, private_key, algorithm="RS256", headers={"kid": kid})


def _auth_headers(private_key, sub: str = "user-123") -> dict[str, str]:
    return {"Authorization": f"Bearer {_create_token(private_key, sub=sub)}"}


def _user(user_id: str, sub: str = "user-123") -> CurrentUser:
    return CurrentUser(id=user_id, external_subject=sub, email=None, full_name=None)


def _bind_txn(mock_txn: MagicMock, cursor: Any = None) -> MagicMock:
    """Make a patched txn() yield the given cursor (a fresh MagicMock by default)."""
    cursor = cursor if cursor is not None else MagicMock()
    mock_txn.return_value.__enter__.return_value = cursor
    mock_txn.return_value.__exit__.return_value = False
    return cursor
