"""Tests for the verification token codec."""

import pytest

from gatehouse.service.tokens import VerificationTokenCodec


@pytest.fixture
def codec():
    return VerificationTokenCodec("codec-secret")


class TestEncode:
    def test_same_inputs_produce_same_token(self, codec):
        assert codec.encode("alice", 1_700_000_000) == codec.encode("alice", 1_700_000_000)

    def test_token_is_lowercase_hex_sha256(self, codec):
        token = codec.encode("alice", 1_700_000_000)
        assert len(token) == 64
        assert token == token.lower()
        int(token, 16)

    def test_username_changes_token(self, codec):
        assert codec.encode("alice", 100) != codec.encode("alicf", 100)

    def test_expiry_changes_token(self, codec):
        assert codec.encode("alice", 100) != codec.encode("alice", 101)

    def test_secret_changes_token(self, codec):
        other = VerificationTokenCodec("another-secret")
        assert codec.encode("alice", 100) != other.encode("alice", 100)

    def test_empty_secret_rejected(self):
        with pytest.raises(ValueError):
            VerificationTokenCodec("")


class TestMatches:
    def test_matches_own_output(self, codec):
        token = codec.encode("bob@example.com", 42)
        assert codec.matches(token, "bob@example.com", 42)

    def test_rejects_other_user(self, codec):
        token = codec.encode("alice", 42)
        assert not codec.matches(token, "mallory", 42)

    def test_rejects_missing_token(self, codec):
        assert not codec.matches(None, "alice", 42)
        assert not codec.matches("", "alice", 42)

    def test_rejects_non_ascii_garbage(self, codec):
        assert not codec.matches("tökén", "alice", 42)
