"""Shared pytest fixtures for CityVenture refunds tests."""
import sys
sys.dont_write_bytecode = True

import time  # noqa: E402

import pytest  # noqa: E402

from helpers import OIDC_AUDIENCE, OIDC_ISSUER, _create_jwks, _generate_rsa_keypair  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_oidc_jwks_cache():
    """Reset the module-level JWKS cache so keys never leak between tests."""
    import cityventure.api.auth as auth_module

    auth_module._jwks_cache = None
    auth_module._jwks_cache_time = 0
    yield
    auth_module._jwks_cache = None
    auth_module._jwks_cache_time = 0


@pytest.fixture
def rsa_keypair():
    return _generate_rsa_keypair()


@pytest.fixture
def jwks(rsa_keypair):
    _, public_key = rsa_keypair
    return _create_jwks(public_key)


@pytest.fixture
def oidc_env(monkeypatch):
    """OIDC settings for the authenticated API tests."""
    monkeypatch.setenv("OIDC_ISSUER", OIDC_ISSUER)
    monkeypatch.setenv("OIDC_AUDIENCE", OIDC_AUDIENCE)
    monkeypatch.setenv("OIDC_JWKS_URL", f"{OIDC_ISSUER}/.well-known/jwks.json")
    monkeypatch.delenv("OIDC_AUTHORIZED_PARTIES", raising=False)


@pytest.fixture
def mock_jwks_fetch(jwks):
    """Serve the test JWKS without network access."""
    import cityventure.api.auth as auth_module

    original_get = auth_module._get_jwks
    original_fetch = auth_module._fetch_jwks
    auth_module._get_jwks = lambda url, force_refresh=False: jwks
    auth_module._fetch_jwks = lambda url: jwks
    auth_module._jwks_cache = jwks
    auth_module._jwks_cache_time = time.time() + 9999
    yield
    auth_module._get_jwks = original_get
    auth_module._fetch_jwks = original_fetch
    auth_module._jwks_cache = None
    auth_module._jwks_cache_time = 0
