"""
tests/test_onboarding_service.py — Signup & Verification Flag Tests
====================================================================
"""

from __future__ import annotations

from datetime import UTC, datetime

import pytest
from conftest import make_account
from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import set_committed_value

from waitlist import constants
from waitlist.database.models import Account, OnboardingEvent, OnboardingEventType, Referral
from waitlist.engine.bot_scoring import compute_fingerprint
from waitlist.errors import (
    AccountNotFound,
    Conflict,
    InvalidTag,
    SecurityBlock,
    ValidationError,
)
from waitlist.services import ledger_service, onboarding_service, referral_service

UA = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) Chrome/126.0"


@pytest.fixture
def engine(db_engine):
    return db_engine


def _signup(engine, email, name="Someone", *, ip="198.51.100.20", referral_code=None, ua=UA):
    return onboarding_service.signup(
        engine,
        email,
        name,
        referral_code=referral_code,
        ip=ip,
        fingerprint=compute_fingerprint(ip, ua),
        user_agent=ua,
        interests=["defi"],
    )


def _events(engine, account_id: int) -> list[str]:
    with Session(engine) as session:
        return list(session.scalars(
            select(OnboardingEvent.event_type)
            .where(OnboardingEvent.account_id == account_id)
            .order_by(OnboardingEvent.id)
        ))


def _serve_stale(monkeypatch, **fields):
    """Make the next account loads look as if another request had not committed yet."""
    real = onboarding_service._require_account

    def stale(session, account_id):
        account = real(session, account_id)
        for key, value in fields.items():
            set_committed_value(account, key, value)
        return account

    monkeypatch.setattr(onboarding_service, "_require_account", stale)


# ===========================================================================
# signup()
# ===========================================================================
class TestSignup:
    def test_creates_account_and_start_event(self, engine):
        result = _signup(engine, "  New@Example.com ")

        assert result.email == "new@example.com"
        assert result.referred_by_id is None
        with Session(engine) as session:
            account = session.get(Account, result.account_id)
            assert account.interests == ["defi"]
            assert account.points == 0
            event = session.scalars(select(OnboardingEvent)).one()
            assert event.event_type == OnboardingEventType.ONBOARDING_STARTED.value
            assert event.ip_address == "198.51.100.20"
            assert event.fingerprint == result.verdict.fingerprint

    def test_referral_code_links_referrer_and_creates_record(self, engine):
        ref_id = make_account(engine, "ref@example.com", "Ref", referral_tag="refcode")

        result = _signup(engine, "friend@example.com", referral_code="RefCode")

        assert result.referred_by_id == ref_id
        with Session(engine) as session:
            referral = session.scalars(select(Referral)).one()
            assert referral.referrer_id == ref_id
            assert referral.referred_email == "friend@example.com"
            assert referral.points_awarded is False

    def test_unknown_referral_code_is_ignored(self, engine):
        result = _signup(engine, "lonely@example.com", referral_code="nobody")
        assert result.referred_by_id is None

    def test_duplicate_email_conflicts(self, engine):
        make_account(engine, "taken@example.com", created_at=datetime(2020, 1, 1, tzinfo=UTC))
        with pytest.raises(Conflict):
            _signup(engine, "taken@example.com")

    def test_recent_duplicate_email_is_rate_limited(self, engine):
        _signup(engine, "fast@example.com")
        with pytest.raises(SecurityBlock) as exc_info:
            _signup(engine, "fast@example.com")
        assert exc_info.value.status_code == 429

    def test_third_signup_from_same_ip_blocked(self, engine):
        _signup(engine, "one@example.com", ip="192.0.2.9")
        _signup(engine, "two@example.com", ip="192.0.2.9")
        with pytest.raises(SecurityBlock) as exc_info:
            _signup(engine, "three@example.com", ip="192.0.2.9")
        assert exc_info.value.status_code == 429
        assert exc_info.value.reason == "too_many_from_ip"

    def test_invalid_email_and_blank_name(self, engine):
        with pytest.raises(ValidationError):
            _signup(engine, "not-an-email")
        with pytest.raises(ValidationError):
            _signup(engine, "ok@example.com", name="   ")


# ===========================================================================
# Verification flags
# ===========================================================================
class TestVerificationFlags:
    def test_verify_email_is_idempotent(self, engine):
        acct = make_account(engine)
        assert onboarding_service.verify_email(engine, acct) is True
        assert onboarding_service.verify_email(engine, acct) is False
        assert _events(engine, acct) == [OnboardingEventType.EMAIL_VERIFIED.value]

    def test_verify_telegram_pays_once(self, engine):
        acct = make_account(engine)

        first = onboarding_service.verify_telegram(engine, acct, "@Alice_TG")
        second = onboarding_service.verify_telegram(engine, acct, "alice_tg")

        assert first["telegramUsername"] == "alice_tg"
        assert first["points"] == constants.DEFAULT_TELEGRAM_POINTS
        assert second["points"] == constants.DEFAULT_TELEGRAM_POINTS
        history = ledger_service.history(engine, acct)
        assert len(history) == 1
        assert history[0]["reason"] == constants.REASON_TELEGRAM_VERIFIED
        assert history[0]["kind"] == "telegram"

    def test_verify_telegram_pays_once_after_stale_read(self, engine, monkeypatch):
        acct = make_account(engine)
        onboarding_service.verify_telegram(engine, acct, "alice_tg")
        _serve_stale(monkeypatch, telegram_verified=False)

        again = onboarding_service.verify_telegram(engine, acct, "alice_new")

        assert again["points"] == constants.DEFAULT_TELEGRAM_POINTS
        assert len(ledger_service.history(engine, acct)) == 1
        with Session(engine) as session:
            assert session.get(Account, acct).telegram_username == "alice_new"

    def test_mark_followed(self, engine):
        acct = make_account(engine)
        assert onboarding_service.mark_telegram_followed(engine, acct) is True
        assert onboarding_service.mark_telegram_followed(engine, acct) is False

    def test_unknown_account(self, engine):
        with pytest.raises(AccountNotFound):
            onboarding_service.verify_email(engine, 12345)


# ===========================================================================
# Referral tags
# ===========================================================================
class TestReferralTag:
    def test_first_tag_pays_and_changes_do_not(self, engine):
        acct = make_account(engine)

        first = onboarding_service.create_referral_tag(engine, acct, "My_Tag")
        changed = onboarding_service.create_referral_tag(engine, acct, "other-tag")

        assert first == {"referralTag": "my_tag", "points": constants.DEFAULT_TAG_POINTS}
        assert changed["referralTag"] == "other-tag"
        assert changed["points"] == constants.DEFAULT_TAG_POINTS
        assert ledger_service.verify_balance(engine, acct, expected=constants.DEFAULT_TAG_POINTS)

    def test_first_tag_pays_once_after_stale_read(self, engine, monkeypatch):
        acct = make_account(engine)
        onboarding_service.create_referral_tag(engine, acct, "first")
        _serve_stale(monkeypatch, referral_tag=None)

        again = onboarding_service.create_referral_tag(engine, acct, "second")

        assert again == {"referralTag": "second", "points": constants.DEFAULT_TAG_POINTS}
        assert ledger_service.verify_balance(engine, acct, expected=constants.DEFAULT_TAG_POINTS)

    @pytest.mark.parametrize("tag", ["ab", "x" * 31, "has space", "émoji"])
    def test_invalid_tag(self, engine, tag):
        acct = make_account(engine)
        with pytest.raises(InvalidTag):
            onboarding_service.create_referral_tag(engine, acct, tag)

    def test_tag_owned_by_other_account_conflicts(self, engine):
        make_account(engine, "owner@example.com", referral_tag="popular")
        acct = make_account(engine, "late@example.com")
        with pytest.raises(Conflict):
            onboarding_service.create_referral_tag(engine, acct, "popular")


# ===========================================================================
# End to end: signup through referral reward
# ===========================================================================
class TestReferralJourney:
    def test_full_onboarding_pays_referral(self, engine):
        a1 = make_account(engine, "a1@example.com", "Alice", referral_tag="alice")
        a2 = _signup(engine, "a2@example.com", "Bob", referral_code="alice").account_id

        onboarding_service.verify_email(engine, a2)
        onboarding_service.verify_telegram(engine, a2, "bob")
        onboarding_service.mark_telegram_followed(engine, a2)
        onboarding_service.create_referral_tag(engine, a2, "bobby")

        check = referral_service.check_completion(engine, "a2@example.com")

        assert check.newly_awarded is True
        summary_a1 = onboarding_service.get_account_summary(engine, a1)
        summary_a2 = onboarding_service.get_account_summary(engine, a2)
        assert summary_a1["points"] == 150
        assert summary_a1["successfulReferrals"] == 1
        # 200 telegram + 100 tag + 100 referral bonus
        assert summary_a2["points"] == 400
        assert ledger_service.verify_balance(engine, a2)
