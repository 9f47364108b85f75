"""Tests for access token minting and verification."""

from datetime import timedelta

import pytest
from jose import jwt

from ceboelha.auth.models import User, UserRole
from ceboelha.auth.tokens import INVALID_TOKEN_MESSAGE, TokenSigner
from ceboelha.core.exceptions import UnauthorizedError
from ceboelha.testing.utils import TEST_SECRET


@pytest.fixture
def signer(clock):
    return TokenSigner(
        secret_key=TEST_SECRET,
        ttl=timedelta(minutes=15),
        issuer="ceboelha-api",
        audience="ceboelha-app",
        clock=clock,
    )


@pytest.fixture
def user():
    return User(email="alice@example.com", password_hash="x", name="Alice", role=UserRole.ADMIN)


class TestTokenSigner:
    """Tests for TokenSigner."""

    def test_fresh_token_verifies(self, signer, user):
        claims = signer.verify(signer.mint(user))

        assert claims.sub == str(user.id)
        assert claims.user_id == user.id
        assert claims.email == "alice@example.com"
        assert claims.role == UserRole.ADMIN
        assert claims.type == "access"
        assert claims.iss == "ceboelha-api"
        assert claims.aud == "ceboelha-app"
        assert claims.exp - claims.iat == 15 * 60

    def test_tokens_are_unique(self, signer, user):
        assert signer.mint(user) != signer.mint(user)

    def test_expires_in(self, signer):
        assert signer.expires_in == 900

    def test_expired_token_is_rejected(self, signer, user, clock):
        token = signer.mint(user)
        clock.advance(minutes=15, seconds=1)

        with pytest.raises(UnauthorizedError) as exc_info:
            signer.verify(token)
        assert exc_info.value.message == INVALID_TOKEN_MESSAGE

    def test_refresh_typed_token_is_rejected(self, signer, user):
        token = signer.mint(user, token_type="refresh")

        with pytest.raises(UnauthorizedError):
            signer.verify(token)

    def test_wrong_secret_is_rejected(self, signer, user, clock):
        other = TokenSigner(
            secret_key="another-secret-key-that-is-long-enough",
            ttl=timedelta(minutes=15),
            issuer="ceboelha-api",
            audience="ceboelha-app",
            clock=clock,
        )
        with pytest.raises(UnauthorizedError):
            signer.verify(other.mint(user))

    def test_wrong_audience_is_rejected(self, signer, user, clock):
        other = TokenSigner(
            secret_key=TEST_SECRET,
            ttl=timedelta(minutes=15),
            issuer="ceboelha-api",
            audience="someone-else",
            clock=clock,
        )
        with pytest.raises(UnauthorizedError):
            signer.verify(other.mint(user))

    def test_wrong_issuer_is_rejected(self, signer, user, clock):
        other = TokenSigner(
            secret_key=TEST_SECRET,
            ttl=timedelta(minutes=15),
            issuer="someone-else",
            audience="ceboelha-app",
            clock=clock,
        )
        with pytest.raises(UnauthorizedError) as exc_info:
            signer.verify(other.mint(user))
        assert exc_info.value.message == INVALID_TOKEN_MESSAGE

    def test_tampered_token_is_rejected(self, signer, user):
        header, payload, signature = signer.mint(user).split(".")
        tampered = f"{header}.{payload}.{signature[:-2]}xx"

        with pytest.raises(UnauthorizedError):
            signer.verify(tampered)

    def test_missing_claims_are_rejected(self, signer):
        token = jwt.encode(
            {"sub": "not-enough", "aud": "ceboelha-app", "iss": "ceboelha-api"},
            TEST_SECRET,
            algorithm="HS256",
        )
        with pytest.raises(UnauthorizedError):
            signer.verify(token)

    @pytest.mark.parametrize("token", ["", "garbage", "a.b.c"])
    def test_garbage_is_rejected(self, signer, token):
        with pytest.raises(UnauthorizedError):
            signer.verify(token)
