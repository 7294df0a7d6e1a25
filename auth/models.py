"""
auth/models.py -- Domain dataclasses for accounts, organizations and codes.

Pattern: Data class (pure data container, zero logic). Stores and services
own the behavior; these classes only own the shape.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Purpose(str, Enum):
    """Why a verification code was issued. A code only verifies for its own purpose."""

    register = "Register"
    change_password = "ChangePassword"


@dataclass
class VerificationCode:
    """The single live code for a (phone, purpose) key.

    Rows are overwritten on re-issue and flipped to used=True on successful
    verification. They are never deleted -- expiry is a timestamp comparison.
    """

    phone: str
    purpose: Purpose
    code: str
    expires_at: datetime
    used: bool = False
    updated_at: datetime | None = None


@dataclass
class User:
    """A registered account.

    password_hash is sha256(password + "-" + password_salt) as lowercase hex.
    deleted_at is the soft-delete marker; deleted users cannot log in.
    """

    id: str
    username: str
    phone: str
    org_id: str
    password_hash: str
    password_salt: str
    created_at: datetime | None = None
    updated_at: datetime | None = None
    deleted_at: datetime | None = None


@dataclass
class Organization:
    """The team an account belongs to. owner_id is None only inside the registration transaction."""

    id: str
    name: str
    owner_id: str | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class OrgInfo:
    """Read-only projection returned by the organization lookup."""

    id: str
    name: str
    owner_id: str | None
