"""
auth/passwords.py -- Salted SHA-256 credential hashing.

Stored form: hex(sha256(password + "-" + salt)) with a fresh random salt per
registration or password reset. Existing rows were written in this format, so
the algorithm is fixed; switching to a slow KDF would need a rehash-on-login
migration.

Verification compares digests with hmac.compare_digest so the time taken does
not depend on how many leading characters match.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets


def generate_salt() -> str:
    return f"salt-{secrets.token_hex(16)}"


def hash_password(password: str, salt: str) -> str:
    return hashlib.sha256(f"{password}-{salt}".encode("utf-8")).hexdigest()


def generate_hash_and_salt(password: str) -> tuple[str, str]:
    """Return (salt, password_hash) for a new credential."""
    salt = generate_salt()
    return salt, hash_password(password, salt)


def verify_password(password: str, salt: str, stored_hash: str) -> bool:
    """Return True if password hashes to stored_hash under salt."""
    return hmac.compare_digest(hash_password(password, salt), stored_hash)
