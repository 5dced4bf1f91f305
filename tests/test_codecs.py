"""Password hashing, password policy and JWT pair issuing/verification."""
from datetime import datetime, timedelta, timezone

import jwt
import pytest

from fintrack.models.principal import Principal
from fintrack.services.auth_exceptions import TokenExpired, TokenInvalid, TokenMalformed
from fintrack.services.password_codec import PasswordCodec, validate_password_strength
from fintrack.services.token_codec import REFRESH_TOKEN_TYPE, TokenCodec, hash_token


@pytest.fixture
def principal():
    return Principal(id="3f1c2b7e-0000-4000-8000-000000000001", username="alice", email="a@x.com")


@pytest.fixture
def codec():
    return TokenCodec(secret="access-secret", refresh_secret="refresh-secret")


class TestPasswordCodec:
    def test_hash_is_salted_and_verifies(self):
        codec = PasswordCodec(rounds=4)
        first = codec.hash_password("Abcd1234!")
        second = codec.hash_password("Abcd1234!")

        assert first != second
        assert first != "Abcd1234!"
        assert codec.verify_password("Abcd1234!", first)
        assert codec.verify_password("Abcd1234!", second)
        assert not codec.verify_password("abcd1234!", first)

    def test_work_factor_is_configurable(self):
        assert PasswordCodec(rounds=5).hash_password("Abcd1234!").startswith("$2b$05$")

    def test_missing_or_corrupt_hash_never_verifies(self):
        codec = PasswordCodec(rounds=4)
        assert codec.verify_password("Abcd1234!", None) is False
        assert codec.verify_password("Abcd1234!", "not-a-bcrypt-hash") is False

    async def test_async_variants(self):
        codec = PasswordCodec(rounds=4)
        hashed = await codec.hash_password_async("Abcd1234!")
        assert await codec.verify_password_async("Abcd1234!", hashed)
        assert not await codec.verify_password_async("wrong", hashed)


class TestPasswordPolicy:
    def test_strong_password_passes(self):
        assert validate_password_strength("Abcd1234!") == []

    @pytest.mark.parametrize("password, fragment", [
        ("Ab1!", "at least 8"),
        ("abcd1234!", "uppercase"),
        ("ABCD1234!", "lowercase"),
        ("Abcdefgh!", "number"),
        ("Abcd12345", "special"),
    ])
    def test_each_rule_is_reported(self, password, fragment):
        errors = validate_password_strength(password)
        assert any(fragment in error for error in errors)

    def test_all_failures_reported_together(self):
        assert len(validate_password_strength("abc")) == 4

    def test_rejects_passwords_bcrypt_would_truncate(self):
        errors = validate_password_strength("Aa1!" + "x" * 80)
        assert any("72 bytes" in error for error in errors)

    def test_length_limit_counts_utf8_bytes_not_characters(self):
        assert validate_password_strength("Aa1!" + "x" * 68) == []
        # 39 characters but 74 bytes
        errors = validate_password_strength("Aa1!" + "\u00e9" * 35)
        assert any("72 bytes" in error for error in errors)


class TestTokenCodec:
    def test_round_trip_recovers_principal_claims(self, codec, principal):
        pair = codec.issue_token_pair(principal)
        claims = codec.verify(pair.access_token)

        assert claims["sub"] == principal.id
        assert claims["username"] == "alice"
        assert claims["email"] == "a@x.com"
        assert claims["type"] == "access"
        assert pair.expires_in == 24 * 3600
        assert pair.refresh_expires_at - pair.access_expires_at == timedelta(days=30) - timedelta(hours=24)

    def test_refresh_token_carries_type_claim(self, codec, principal):
        pair = codec.issue_token_pair(principal)
        claims = codec.verify(pair.refresh_token, token_type=REFRESH_TOKEN_TYPE)
        assert claims["type"] == "refresh"
        assert claims["sub"] == principal.id

    def test_access_token_cannot_be_used_as_refresh(self, principal):
        codec = TokenCodec(secret="same-secret")
        pair = codec.issue_token_pair(principal)
        with pytest.raises(TokenInvalid):
            codec.verify(pair.access_token, token_type=REFRESH_TOKEN_TYPE)

    def test_refresh_token_cannot_be_used_as_access(self, principal):
        codec = TokenCodec(secret="same-secret")
        pair = codec.issue_token_pair(principal)
        with pytest.raises(TokenInvalid):
            codec.verify(pair.refresh_token)

    def test_different_audience_is_rejected(self, codec, principal):
        pair = codec.issue_token_pair(principal)
        with pytest.raises(TokenInvalid):
            codec.verify(pair.access_token, expected_audience="some-other-service")

    def test_different_issuer_is_rejected(self, codec, principal):
        pair = codec.issue_token_pair(principal)
        with pytest.raises(TokenInvalid):
            codec.verify(pair.access_token, expected_issuer="someone-else")

    def test_wrong_signature_is_rejected(self, codec, principal):
        pair = TokenCodec(secret="another-secret").issue_token_pair(principal)
        with pytest.raises(TokenInvalid):
            codec.verify(pair.access_token)

    def test_expired_token(self, codec, principal):
        past = datetime.now(timezone.utc) - timedelta(days=2)
        stale = TokenCodec(secret="access-secret", clock=lambda: past).issue_token_pair(principal)
        with pytest.raises(TokenExpired):
            codec.verify(stale.access_token)

    def test_malformed_token(self, codec):
        with pytest.raises(TokenMalformed):
            codec.verify("definitely.not.a-jwt")
        # Malformed is reported as a kind of invalid token
        assert issubclass(TokenMalformed, TokenInvalid)

    def test_missing_required_claim_is_rejected(self, codec):
        token = jwt.encode(
            {"sub": "x", "iss": codec.issuer, "aud": codec.audience,
             "exp": datetime.now(timezone.utc) + timedelta(hours=1)},
            "access-secret",
            algorithm="HS256",
        )
        with pytest.raises(TokenInvalid):
            codec.verify(token)

    def test_empty_secret_refused(self):
        with pytest.raises(ValueError):
            TokenCodec(secret="")

    def test_token_hash_is_stable_and_one_way(self):
        assert hash_token("abc") == hash_token("abc")
        assert hash_token("abc") != hash_token("abd")
        assert "abc" not in hash_token("abc")
