from datetime import timedelta

import jwt
import pytest

from shared import time
from shared.auth_tokens import TokenProvider, decode_token, issue_token


def test_issue_and_decode(fake_clock):
    token = issue_token("u1", "secret", timedelta(hours=24))

    claims = jwt.decode(token, "secret", algorithms=["HS256"], options={"verify_exp": False})
    assert claims["sub"] == "u1"
    assert claims["exp"] - claims["iat"] == 24 * 3600


def test_decode_rejects_wrong_secret():
    token = issue_token("u1", "secret", timedelta(hours=1))

    with pytest.raises(jwt.InvalidTokenError):
        decode_token(token, "other")
    assert decode_token(token, "secret")["sub"] == "u1"


@pytest.mark.asyncio
async def test_stored_token_is_served_until_expiry(fake_clock):
    provider = TokenProvider(secret="secret")
    token = issue_token("u1", "backend-secret", timedelta(minutes=30))

    expires_at = provider.store_token("u1", token)

    assert expires_at == fake_clock + timedelta(minutes=30)
    assert await provider.get_token("u1") == token

    time.set_fake_utcnow(fake_clock + timedelta(minutes=31))
    assert await provider.get_token("u1") is None


@pytest.mark.asyncio
async def test_opaque_token_gets_default_lifetime(fake_clock):
    provider = TokenProvider()

    expires_at = provider.store_token("u1", "opaque-token")

    assert expires_at == fake_clock + timedelta(hours=6)
    assert await provider.get_token("u1") == "opaque-token"


@pytest.mark.asyncio
async def test_minting_issues_short_lived_token(fake_clock):
    provider = TokenProvider(secret="secret", mint=True)

    token = await provider.get_token("u7")

    claims = jwt.decode(token, "secret", algorithms=["HS256"], options={"verify_exp": False})
    assert claims["sub"] == "u7"
    assert await provider.get_token("u7") == token


@pytest.mark.asyncio
async def test_forget():
    provider = TokenProvider()
    provider.store_token("u1", "tok")

    provider.forget("u1")

    assert await provider.get_token("u1") is None
