"""
tests/test_passwords.py -- Unit tests for salted SHA-256 credential hashing.
"""

from __future__ import annotations

import hashlib
import re

from auth.passwords import generate_hash_and_salt, generate_salt, hash_password, verify_password


def test_hash_format_matches_stored_rows() -> None:
    expected = hashlib.sha256(b"hunter2-salt-abc").hexdigest()
    assert hash_password("hunter2", "salt-abc") == expected


def test_salt_format_and_uniqueness() -> None:
    salts = {generate_salt() for _ in range(20)}
    assert len(salts) == 20
    for salt in salts:
        assert re.fullmatch(r"salt-[0-9a-f]{32}", salt)


def test_generate_hash_and_salt() -> None:
    salt, password_hash = generate_hash_and_salt("hunter2")
    assert password_hash == hash_password("hunter2", salt)


def test_verify_password() -> None:
    salt, password_hash = generate_hash_and_salt("hunter2")
    assert verify_password("hunter2", salt, password_hash)
    assert not verify_password("hunter3", salt, password_hash)
    assert not verify_password("hunter2", "salt-other", password_hash)
