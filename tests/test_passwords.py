"""Unit tests for the credential hasher in auth/tokens.py.

Covers:
- hash/verify round trip and rejection of other passwords
- per-call salting (two hashes of one password differ)
- cost factor embedded in the hash
- malformed hashes verify as False instead of raising
"""

import pytest

from auth.tokens import burn_verify, hash_password, verify_password


class TestHashPassword:
    def test_verify_accepts_original_password(self) -> None:
        hashed = hash_password("correct horse", rounds=4)
        assert verify_password("correct horse", hashed) is True

    def test_verify_rejects_other_password(self) -> None:
        hashed = hash_password("pw1", rounds=4)
        assert verify_password("pw2", hashed) is False

    def test_hash_is_salted_per_call(self) -> None:
        """Same input, different output -- the salt is embedded in each hash."""
        a = hash_password("same", rounds=4)
        b = hash_password("same", rounds=4)
        assert a != b
        assert verify_password("same", a) and verify_password("same", b)

    def test_hash_never_contains_plaintext(self) -> None:
        assert "s3cret-value" not in hash_password("s3cret-value", rounds=4)

    def test_cost_factor_is_recorded(self) -> None:
        assert hash_password("pw", rounds=5).startswith("$2b$05$")

    def test_password_longer_than_bcrypt_limit(self) -> None:
        """128-char passwords (the API maximum) hash and verify without error."""
        long_pw = "x" * 128
        assert verify_password(long_pw, hash_password(long_pw, rounds=4)) is True

    def test_default_cost_is_ten(self) -> None:
        assert hash_password("pw").startswith("$2b$10$")


class TestVerifyPasswordMalformed:
    @pytest.mark.parametrize("bad_hash", ["", "not-a-hash", "$2b$04$short", "\x00\x01"])
    def test_malformed_hash_returns_false(self, bad_hash: str) -> None:
        assert verify_password("anything", bad_hash) is False

    def test_burn_verify_returns_nothing_and_does_not_raise(self) -> None:
        assert burn_verify("whatever") is None
