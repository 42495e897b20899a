"""
tests/test_ban_service.py — Ban Gate Tests
===========================================
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from conftest import make_account
from sqlalchemy import select
from sqlalchemy.orm import Session

from waitlist import constants
from waitlist.database.models import Account, OnboardingEvent, OnboardingEventType
from waitlist.errors import AccountNotFound, SecurityBlock
from waitlist.services import ban_service


@pytest.fixture
def engine(db_engine):
    return db_engine


def _ban(engine, account_id: int, *, reason: str | None = "Spam", until: datetime | None = None):
    with Session(engine) as session:
        account = session.get(Account, account_id)
        account.banned = True
        account.ban_reason = reason
        account.banned_until = until
        session.commit()


class TestCheck:
    def test_unbanned_account_allowed(self, engine):
        acct = make_account(engine)
        status = ban_service.check(engine, acct)
        assert status.allowed is True
        status.raise_if_denied()

    def test_permanent_ban_denied(self, engine):
        acct = make_account(engine)
        _ban(engine, acct, reason="Spam")

        status = ban_service.check(engine, acct)

        assert status.allowed is False
        assert status.reason == "Spam"
        assert status.until is None
        with pytest.raises(SecurityBlock) as exc_info:
            status.raise_if_denied()
        assert exc_info.value.status_code == 403
        assert exc_info.value.to_dict()["reason"] == "Spam"

    def test_future_ban_denied_with_until(self, engine):
        acct = make_account(engine)
        until = datetime.now(UTC) + timedelta(days=1)
        _ban(engine, acct, until=until)

        status = ban_service.check(engine, acct)

        assert status.allowed is False
        assert status.until is not None
        assert abs((status.until - until).total_seconds()) < 1

    def test_missing_reason_falls_back_to_default(self, engine):
        acct = make_account(engine)
        _ban(engine, acct, reason=None)
        assert ban_service.check(engine, acct).reason == constants.DEFAULT_BAN_REASON

    def test_expired_ban_is_cleared_on_check(self, engine):
        acct = make_account(engine)
        _ban(engine, acct, until=datetime.now(UTC) - timedelta(hours=1))

        status = ban_service.check(engine, acct)

        assert status.allowed is True
        assert status.expired_now is True
        with Session(engine) as session:
            account = session.get(Account, acct)
            assert account.banned is False
            assert account.ban_reason is None
            assert account.banned_until is None
            events = session.scalars(
                select(OnboardingEvent.event_type).where(OnboardingEvent.account_id == acct)
            ).all()
            assert events == [OnboardingEventType.BAN_EXPIRED.value]

    def test_expiry_is_cleared_only_once(self, engine):
        acct = make_account(engine)
        _ban(engine, acct, until=datetime.now(UTC) - timedelta(minutes=5))

        assert ban_service.check(engine, acct).expired_now is True
        second = ban_service.check(engine, acct)
        assert second.allowed is True
        assert second.expired_now is False

    def test_explicit_now_drives_expiry(self, engine):
        acct = make_account(engine)
        until = datetime(2030, 1, 1, tzinfo=UTC)
        _ban(engine, acct, until=until)

        assert ban_service.check(engine, acct, now=datetime(2029, 12, 31, tzinfo=UTC)).allowed is False
        assert ban_service.check(engine, acct, now=datetime(2030, 1, 2, tzinfo=UTC)).allowed is True

    def test_unknown_account(self, engine):
        with pytest.raises(AccountNotFound):
            ban_service.check(engine, 404)

    def test_check_by_email(self, engine):
        acct = make_account(engine, "banned@example.com")
        _ban(engine, acct)
        assert ban_service.check_by_email(engine, "Banned@Example.com").allowed is False
