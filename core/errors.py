"""
core/errors.py -- Failure taxonomy shared by the auth core and the API layer.

Every expected outcome that is not success is a ServiceError subclass with a
stable `code` string. The classes group into the five families the API layer
maps to transport codes:

  NotFoundError     -- the resource is absent
  ConflictError     -- request rejected, retry with different input (or later)
  CredentialError   -- the submitted credential or code is incorrect
  SoftDeletedError  -- the account exists but is logically gone
  InternalError     -- storage / notifier / programming failures, opaque to clients

TokenError covers bearer-token failures at the HTTP edge (always a 401).

Internal errors always chain the underlying exception (raise ... from exc)
so the log carries the real cause while clients see a generic message.

Layer rule: core/ is the kernel. No imports from api/ or auth/.
"""

from __future__ import annotations


class ServiceError(Exception):
    """Base class for every classified failure raised by the auth core."""

    code: str = "service_error"
    message: str = "Request failed."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)
        self.message = message or self.message


# ---------------------------------------------------------------------------
# Families
# ---------------------------------------------------------------------------


class NotFoundError(ServiceError):
    code = "not_found"
    message = "Resource not found."


class ConflictError(ServiceError):
    code = "conflict"
    message = "Request conflicts with existing state."


class CredentialError(ServiceError):
    code = "bad_credentials"
    message = "Credential or code is incorrect."


class SoftDeletedError(ServiceError):
    code = "deleted"
    message = "Account has been deleted."


class InternalError(ServiceError):
    code = "internal_error"
    message = "An unexpected error occurred."


# ---------------------------------------------------------------------------
# Verification codes
# ---------------------------------------------------------------------------


class CodeNotFoundError(NotFoundError):
    code = "code_not_found"
    message = "No verification code was issued for this phone."


class CodeNotExpiredError(ConflictError):
    code = "code_not_expired"
    message = "A verification code was sent recently. Wait for it to expire before requesting another."


class CodeExpiredError(CredentialError):
    code = "code_expired"
    message = "Verification code has expired."


class CodeInvalidError(CredentialError):
    code = "code_invalid"
    message = "Verification code is incorrect."


class CodeUsedError(CodeInvalidError):
    code = "code_used"
    message = "Verification code has already been used."


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


class UsernameTakenError(ConflictError):
    code = "username_taken"
    message = "Username is already registered."


class PhoneTakenError(ConflictError):
    code = "phone_taken"
    message = "Phone number is already registered."


class UserNotFoundError(NotFoundError):
    code = "user_not_found"
    message = "Username or phone not found."


class UserDeletedError(SoftDeletedError):
    code = "user_deleted"
    # Same text as UserNotFoundError so clients cannot probe for deleted accounts.
    message = "Username or phone not found."


class WrongPasswordError(CredentialError):
    code = "wrong_password"
    message = "Incorrect password."


class OrgNotFoundError(NotFoundError):
    code = "org_not_found"
    message = "Organization not found."


class UnknownRuleError(NotFoundError):
    code = "unknown_rule"
    message = "No such access rule."


# ---------------------------------------------------------------------------
# Bearer tokens
# ---------------------------------------------------------------------------


class TokenError(ServiceError):
    code = "unauthorized"
    message = "Authentication required."


class TokenExpiredError(TokenError):
    code = "token_expired"
    message = "Token has expired."


class TokenMalformedError(TokenError):
    code = "token_malformed"
    message = "Token is invalid."


# ---------------------------------------------------------------------------
# Infrastructure
# ---------------------------------------------------------------------------


class StorageError(InternalError):
    code = "storage_error"


class NotifierError(InternalError):
    code = "notifier_error"
    message = "Failed to deliver verification code."


class AlreadyInTransactionError(InternalError):
    code = "already_in_transaction"
    message = "A transaction is already open on this store."
