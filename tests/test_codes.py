"""
tests/test_codes.py -- Unit tests for VerificationCodeStore issue/verify.

Covers:
  - One live code per (phone, purpose); re-issue blocked until expiry
  - Expiry boundary: live at ttl-1s, expired at exactly ttl and after
  - Single use: a consumed code cannot be verified again
  - Wrong code does not consume the live one
  - Delivery failure leaves the stored code in place
  - A live row stored by a concurrent issuer is never overwritten or re-sent
  - Losing the mark-used race reports CodeUsedError
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from auth.models import Purpose
from auth.store import AuthStore
from core.errors import (
    CodeExpiredError,
    CodeInvalidError,
    CodeNotExpiredError,
    CodeNotFoundError,
    CodeUsedError,
    NotifierError,
)

PHONE = "13800138000"


class TestIssue:
    def test_issue_stores_and_sends(self, services, store, notifier, clock) -> None:
        services.codes.issue(PHONE, Purpose.register)

        assert notifier.sent == [(PHONE, "9527")]
        row = store.get_phone_code(PHONE, Purpose.register)
        assert row is not None
        assert row.code == "9527"
        assert row.used is False
        assert row.expires_at == clock.now + timedelta(minutes=2)

    def test_reissue_while_live_is_rejected_without_sending(self, services, store, notifier, clock) -> None:
        services.codes.issue(PHONE, Purpose.register)
        before = store.get_phone_code(PHONE, Purpose.register)

        clock.advance(119)
        with pytest.raises(CodeNotExpiredError):
            services.codes.issue(PHONE, Purpose.register)

        assert len(notifier.sent) == 1
        assert store.get_phone_code(PHONE, Purpose.register).expires_at == before.expires_at

    def test_reissue_after_expiry_overwrites(self, services, store, notifier, clock) -> None:
        services.codes.issue(PHONE, Purpose.register)
        clock.advance(120)
        notifier.code = "123456"

        services.codes.issue(PHONE, Purpose.register)

        row = store.get_phone_code(PHONE, Purpose.register)
        assert row.code == "123456"
        assert row.expires_at == clock.now + timedelta(minutes=2)
        assert len(notifier.sent) == 2

    def test_reissue_resets_used_flag(self, services, store, clock) -> None:
        services.codes.issue(PHONE, Purpose.register)
        services.codes.verify(PHONE, Purpose.register, "9527")
        clock.advance(121)

        services.codes.issue(PHONE, Purpose.register)

        assert store.get_phone_code(PHONE, Purpose.register).used is False

    def test_used_but_unexpired_code_still_blocks_reissue(self, services, clock) -> None:
        services.codes.issue(PHONE, Purpose.register)
        services.codes.verify(PHONE, Purpose.register, "9527")
        clock.advance(30)

        with pytest.raises(CodeNotExpiredError):
            services.codes.issue(PHONE, Purpose.register)

    def test_row_written_by_concurrent_issuer_blocks_send(self, services, store, notifier, clock) -> None:
        # Another worker stored a live code after this one generated its own.
        store.upsert_phone_code(PHONE, Purpose.register, "55555", clock.now + timedelta(seconds=90))

        with pytest.raises(CodeNotExpiredError):
            services.codes.issue(PHONE, Purpose.register)

        assert notifier.sent == []
        assert store.get_phone_code(PHONE, Purpose.register).code == "55555"

    def test_purposes_are_independent(self, services, notifier) -> None:
        services.codes.issue(PHONE, Purpose.register)
        services.codes.issue(PHONE, Purpose.change_password)
        assert len(notifier.sent) == 2

    def test_delivery_failure_keeps_stored_code(self, services, store, notifier) -> None:
        notifier.fail = True
        with pytest.raises(NotifierError):
            services.codes.issue(PHONE, Purpose.register)

        assert store.get_phone_code(PHONE, Purpose.register) is not None
        notifier.fail = False
        with pytest.raises(CodeNotExpiredError):
            services.codes.issue(PHONE, Purpose.register)


class TestVerify:
    def test_verify_consumes_code(self, services, store) -> None:
        services.codes.issue(PHONE, Purpose.register)
        services.codes.verify(PHONE, Purpose.register, "9527")
        assert store.get_phone_code(PHONE, Purpose.register).used is True

    def test_second_verify_reports_used(self, services) -> None:
        services.codes.issue(PHONE, Purpose.register)
        services.codes.verify(PHONE, Purpose.register, "9527")

        with pytest.raises(CodeUsedError) as excinfo:
            services.codes.verify(PHONE, Purpose.register, "9527")
        assert isinstance(excinfo.value, CodeInvalidError)

    def test_never_issued(self, services) -> None:
        with pytest.raises(CodeNotFoundError):
            services.codes.verify(PHONE, Purpose.register, "9527")

    def test_wrong_code_does_not_consume(self, services, store) -> None:
        services.codes.issue(PHONE, Purpose.register)

        with pytest.raises(CodeInvalidError):
            services.codes.verify(PHONE, Purpose.register, "0000")

        assert store.get_phone_code(PHONE, Purpose.register).used is False
        services.codes.verify(PHONE, Purpose.register, "9527")

    def test_code_for_other_purpose_is_not_found(self, services) -> None:
        services.codes.issue(PHONE, Purpose.register)
        with pytest.raises(CodeNotFoundError):
            services.codes.verify(PHONE, Purpose.change_password, "9527")

    @pytest.mark.parametrize(
        ("elapsed", "expired"),
        [(119, False), (120, True), (121, True)],
    )
    def test_expiry_boundary(self, services, clock, elapsed, expired) -> None:
        services.codes.issue(PHONE, Purpose.register)
        clock.advance(elapsed)

        if expired:
            with pytest.raises(CodeExpiredError):
                services.codes.verify(PHONE, Purpose.register, "9527")
        else:
            services.codes.verify(PHONE, Purpose.register, "9527")

    def test_expired_check_precedes_mismatch(self, services, clock) -> None:
        services.codes.issue(PHONE, Purpose.register)
        clock.advance(300)
        with pytest.raises(CodeExpiredError):
            services.codes.verify(PHONE, Purpose.register, "0000")

    def test_losing_mark_race_reports_used(self, services, monkeypatch) -> None:
        services.codes.issue(PHONE, Purpose.register)
        monkeypatch.setattr(AuthStore, "mark_phone_code_used", lambda self, phone, purpose: False)

        with pytest.raises(CodeUsedError):
            services.codes.verify(PHONE, Purpose.register, "9527")
