"""
auth/codes.py -- Verification code lifecycle: issue and verify.

One live code per (phone, purpose). Issuing while the current code is still
unexpired fails with CodeNotExpiredError; that is the only resend throttle.

issue():
  1. Generate a code.
  2. Upsert it with a fresh expiry and used=False, but only over a row that
     has already expired. The expiry check is part of the write, so two
     concurrent issuers cannot both pass it; the loser gets CodeNotExpiredError.
  3. Hand it to the notifier.
  A failed delivery is reported as NotifierError but the upsert stands: the
  row stays live and blocks re-issue until it expires.

verify():
  Read-check-mark inside one transaction, with the row locked for update and
  the mark conditional on used=False. Of two concurrent verifiers with the
  right code, one succeeds and the other gets CodeUsedError.

Expiry is one-sided: a code is expired once expires_at <= now.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from auth.models import Purpose
from auth.sms import Notifier
from auth.store import AuthStore, wrap_storage_errors
from core.errors import (
    CodeExpiredError,
    CodeInvalidError,
    CodeNotExpiredError,
    CodeNotFoundError,
    CodeUsedError,
)

logger = logging.getLogger("orgauth.codes")

DEFAULT_CODE_TTL = timedelta(minutes=2)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class VerificationCodeStore:
    def __init__(
        self,
        store: AuthStore,
        notifier: Notifier,
        ttl: timedelta = DEFAULT_CODE_TTL,
        now: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._ttl = ttl
        self._now = now

    def issue(self, phone: str, purpose: Purpose) -> None:
        """Create and send a new code for (phone, purpose).

        Raises CodeNotExpiredError if the current code is still live,
        NotifierError if delivery fails after the code was stored, and
        StorageError on database failures.
        """
        now = self._now()
        code = self._notifier.generate_code()
        with wrap_storage_errors("create phone code"):
            written = self._store.upsert_phone_code(phone, purpose, code, now + self._ttl, unless_live_at=now)
        if not written:
            raise CodeNotExpiredError()
        logger.info("Issued %s code for %s", purpose.value, phone)

        self._notifier.send_code(phone, code)

    def verify(self, phone: str, purpose: Purpose, submitted_code: str) -> None:
        """Consume the code for (phone, purpose) if submitted_code matches.

        Raises CodeNotFoundError, CodeExpiredError, CodeUsedError or
        CodeInvalidError; returns None on success.
        """
        with wrap_storage_errors("verify phone code"):
            with self._store.transaction() as tx:
                row = tx.get_phone_code(phone, purpose, for_update=True)
                if row is None:
                    raise CodeNotFoundError()
                if row.expires_at <= self._now():
                    raise CodeExpiredError()
                if row.used:
                    raise CodeUsedError()
                if row.code != submitted_code:
                    raise CodeInvalidError()
                if not tx.mark_phone_code_used(phone, purpose):
                    # Another verifier consumed it between our read and write.
                    raise CodeUsedError()
        logger.info("Verified %s code for %s", purpose.value, phone)
