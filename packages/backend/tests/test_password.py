"""Credential hasher tests."""

import pytest

from authkit.auth.password import CredentialHasher


@pytest.fixture()
def hasher():
    return CredentialHasher(rounds=4)


def test_hash_and_verify(hasher):
    digest = hasher.hash("correct horse")
    assert digest.startswith("$2b$04$")
    assert hasher.verify("correct horse", digest)
    assert not hasher.verify("wrong horse", digest)


def test_hash_is_salted(hasher):
    assert hasher.hash("same") != hasher.hash("same")


def test_malformed_digest_never_matches(hasher):
    assert not hasher.verify("anything", "not-a-bcrypt-hash")


def test_empty_inputs_never_match(hasher):
    digest = hasher.hash("secret")
    assert not hasher.verify("", digest)
    assert not hasher.verify("secret", "")


def test_rounds_must_be_in_bcrypt_range():
    with pytest.raises(ValueError):
        CredentialHasher(rounds=3)
    with pytest.raises(ValueError):
        CredentialHasher(rounds=32)
