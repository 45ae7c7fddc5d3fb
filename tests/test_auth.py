"""Tests for accounts and password hashing."""

import pytest

from doorlink.auth import authenticate_user, hash_password, register_user, require_user, verify_password
from doorlink.errors import ConflictError, NotFoundError


class TestPasswordHashing:
    def test_hash_and_verify(self):
        hashed = hash_password("open-sesame")
        assert hashed != "open-sesame"
        assert verify_password("open-sesame", hashed)
        assert not verify_password("wrong", hashed)

    def test_hashes_are_salted(self):
        assert hash_password("same") != hash_password("same")

    def test_malformed_hash_never_matches(self):
        assert verify_password("anything", "not-a-bcrypt-hash") is False


class TestAccounts:
    def test_register_stores_hash(self, session):
        user = register_user(session, "dave", "dave-pass")
        assert user.id is not None
        assert user.password_hash != "dave-pass"

    def test_duplicate_username_conflicts(self, session, alice):
        with pytest.raises(ConflictError):
            register_user(session, "alice", "other-pass")

    def test_require_user(self, session, alice):
        assert require_user(session, "alice").id == alice.id
        with pytest.raises(NotFoundError):
            require_user(session, "ghost")

    def test_authenticate(self, session, alice):
        assert authenticate_user(session, "alice", "alice-pass").id == alice.id
        assert authenticate_user(session, "alice", "wrong") is None
        assert authenticate_user(session, "ghost", "alice-pass") is None
