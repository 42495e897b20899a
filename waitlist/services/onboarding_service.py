"""
waitlist.services.onboarding_service — Signup & Verification Flags
===================================================================

Creates waitlist accounts and flips the four verification flags the
referral tracker watches.  One-off rewards for Telegram verification and
referral-tag creation are paid only by the request whose conditional
UPDATE flips the flag, in the same transaction as that UPDATE.

Token checks for email verification and the Telegram bot handshake live
outside this package; these functions assume the caller already proved
the fact they record.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import Engine, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from waitlist import constants
from waitlist.database.models import Account, OnboardingEvent, OnboardingEventType
from waitlist.engine.bot_scoring import BlockReason, BotVerdict
from waitlist.engine.rewards import TagReward, TelegramReward
from waitlist.errors import AccountNotFound, Conflict, InvalidTag, SecurityBlock, ValidationError
from waitlist.services import bot_service, settings_service
from waitlist.services.ledger_service import apply_award
from waitlist.services.log_context import LogHandle
from waitlist.services.referral_service import get_or_create_referral

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SignupResult:
    account_id: int
    email: str
    referred_by_id: int | None
    verdict: BotVerdict


def normalize_email(email: str) -> str:
    email = (email or "").strip().lower()
    if "@" not in email or email.startswith("@") or email.endswith("@"):
        raise ValidationError("Invalid email address")
    return email


def normalize_tag(tag: str) -> str:
    tag = (tag or "").strip().lower()
    if not constants.REFERRAL_TAG_PATTERN.match(tag):
        raise InvalidTag()
    return tag


def _require_account(session: Session, account_id: int) -> Account:
    account = session.get(Account, account_id)
    if account is None:
        raise AccountNotFound(f"Account {account_id} not found")
    return account


def _log_event(
    session: Session,
    account_id: int,
    event_type: OnboardingEventType,
    metadata: dict | None = None,
    *,
    ip: str | None = None,
    fingerprint: str | None = None,
) -> None:
    session.add(OnboardingEvent(
        account_id=account_id,
        event_type=event_type.value,
        ip_address=ip,
        fingerprint=fingerprint,
        metadata_=metadata or {},
    ))


# ---------------------------------------------------------------------------
# Signup
# ---------------------------------------------------------------------------
def signup(
    engine: Engine,
    email: str,
    name: str,
    *,
    referral_code: str | None = None,
    ip: str | None = None,
    fingerprint: str,
    user_agent: str | None = None,
    interests: list[str] | None = None,
    wallet_address: str | None = None,
    log: LogHandle | None = None,
) -> SignupResult:
    """Run the bot checks, then create the account and its pending referral.

    Raises :class:`SecurityBlock` when the bot scorer denies the attempt
    (429 for velocity limits, 403 for standing blocks) and
    :class:`Conflict` when the email is already registered.
    """
    log = log or logger
    email = normalize_email(email)
    name = (name or "").strip()
    if not name:
        raise ValidationError("Name is required")

    verdict = bot_service.evaluate(
        engine, email=email, ip=ip, fingerprint=fingerprint, user_agent=user_agent, log=log
    )
    if not verdict.allow:
        velocity = verdict.block_reason in (
            BlockReason.TOO_MANY_FROM_EMAIL, BlockReason.TOO_MANY_FROM_IP
        )
        raise SecurityBlock(
            verdict.message,
            reason=verdict.block_reason.value if verdict.block_reason else None,
            status_code=429 if velocity else 403,
        )

    with Session(engine) as session:
        if session.scalar(select(Account.id).where(Account.email == email)) is not None:
            raise Conflict("Email already registered. Please check your email for next steps.")

        referrer = None
        if referral_code:
            referrer = session.scalar(
                select(Account).where(Account.referral_tag == referral_code.strip().lower())
            )
            if referrer is None:
                log.info("Unknown referral code %r ignored for %s", referral_code, email)

        account = Account(
            email=email,
            name=name,
            wallet_address=wallet_address or None,
            interests=list(interests or []),
            referred_by_id=referrer.id if referrer else None,
            suspicion_score=verdict.score,
        )
        session.add(account)
        try:
            session.flush()
        except IntegrityError:
            raise Conflict(
                "Email already registered. Please check your email for next steps."
            ) from None

        _log_event(
            session,
            account.id,
            OnboardingEventType.ONBOARDING_STARTED,
            {
                "referred_by": referrer.referral_tag if referrer else None,
                "interests": account.interests,
                "suspicion_score": verdict.score,
            },
            ip=ip,
            fingerprint=verdict.fingerprint,
        )
        if referrer is not None:
            get_or_create_referral(session, referrer.id, email, name)

        session.commit()
        result = SignupResult(
            account_id=account.id,
            email=email,
            referred_by_id=account.referred_by_id,
            verdict=verdict,
        )

    log.info("Account %d signed up for waitlist: %s", result.account_id, email)
    return result


# ---------------------------------------------------------------------------
# Verification flags
# ---------------------------------------------------------------------------
def verify_email(
    engine: Engine, account_id: int, *, log: LogHandle | None = None
) -> bool:
    """Mark the email verified.  Returns True if the flag changed."""
    log = log or logger
    with Session(engine) as session:
        account = _require_account(session, account_id)
        if account.email_verified:
            return False
        account.email_verified = True
        _log_event(session, account.id, OnboardingEventType.EMAIL_VERIFIED)
        session.commit()
    log.info("Email verified for account %d", account_id)
    return True


def verify_telegram(
    engine: Engine,
    account_id: int,
    username: str,
    *,
    log: LogHandle | None = None,
) -> dict:
    """Record the Telegram username and pay the one-time verification reward."""
    log = log or logger
    username = (username or "").strip().lstrip("@").lower()
    if not username:
        raise ValidationError("Telegram username is required")

    with Session(engine) as session:
        account = _require_account(session, account_id)
        claimed = session.execute(
            update(Account)
            .where(Account.id == account.id, Account.telegram_verified.is_(False))
            .values(telegram_verified=True, telegram_username=username)
            .execution_options(synchronize_session=False)
        ).rowcount == 1
        if not claimed:
            session.execute(
                update(Account)
                .where(Account.id == account.id)
                .values(telegram_username=username)
                .execution_options(synchronize_session=False)
            )

        balance = None
        if claimed:
            amount = settings_service.get_int(
                session, constants.SETTING_TELEGRAM_POINTS, constants.DEFAULT_TELEGRAM_POINTS
            )
            if amount > 0:
                balance = apply_award(
                    session, account.id, amount,
                    constants.REASON_TELEGRAM_VERIFIED,
                    TelegramReward(username=username),
                ).new_balance
            _log_event(
                session, account.id, OnboardingEventType.TELEGRAM_VERIFIED,
                {"username": username, "points_awarded": amount},
            )
        if balance is None:
            balance = session.scalar(select(Account.points).where(Account.id == account.id))
        session.commit()

    log.info("Telegram verified for account %d (@%s)", account_id, username)
    return {"telegramVerified": True, "telegramUsername": username, "points": balance}


def mark_telegram_followed(
    engine: Engine, account_id: int, *, log: LogHandle | None = None
) -> bool:
    """Mark the Telegram channel followed.  Returns True if the flag changed."""
    log = log or logger
    with Session(engine) as session:
        account = _require_account(session, account_id)
        if account.telegram_followed:
            return False
        account.telegram_followed = True
        _log_event(session, account.id, OnboardingEventType.TELEGRAM_FOLLOWED)
        session.commit()
    log.info("Telegram follow recorded for account %d", account_id)
    return True


def create_referral_tag(
    engine: Engine,
    account_id: int,
    tag: str,
    *,
    log: LogHandle | None = None,
) -> dict:
    """Claim *tag* as the account's referral handle.

    The first tag an account sets pays the tag reward; changing it later
    does not pay again.
    """
    log = log or logger
    tag = normalize_tag(tag)

    with Session(engine) as session:
        account = _require_account(session, account_id)
        owner = session.scalar(select(Account.id).where(Account.referral_tag == tag))
        if owner is not None and owner != account.id:
            raise Conflict("This tag is already taken")

        try:
            claimed = session.execute(
                update(Account)
                .where(Account.id == account.id, Account.referral_tag.is_(None))
                .values(referral_tag=tag)
                .execution_options(synchronize_session=False)
            ).rowcount == 1
            if not claimed:
                session.execute(
                    update(Account)
                    .where(Account.id == account.id)
                    .values(referral_tag=tag)
                    .execution_options(synchronize_session=False)
                )
        except IntegrityError:
            raise Conflict("This tag is already taken") from None

        balance = None
        if claimed:
            amount = settings_service.get_int(
                session, constants.SETTING_TAG_POINTS, constants.DEFAULT_TAG_POINTS
            )
            if amount > 0:
                balance = apply_award(
                    session, account.id, amount,
                    constants.REASON_TAG_CREATED,
                    TagReward(tag=tag),
                ).new_balance
            _log_event(
                session, account.id, OnboardingEventType.REFERRAL_TAG_CREATED,
                {"tag": tag, "points_awarded": amount},
            )
        if balance is None:
            balance = session.scalar(select(Account.points).where(Account.id == account.id))
        session.commit()

    log.info("Referral tag %r set for account %d", tag, account_id)
    return {"referralTag": tag, "points": balance}


def get_account_summary(engine: Engine, account_id: int) -> dict:
    """Dashboard view of one account."""
    with Session(engine) as session:
        account = _require_account(session, account_id)
        return {
            "id": account.id,
            "email": account.email,
            "name": account.name,
            "points": account.points,
            "emailVerified": account.email_verified,
            "telegramVerified": account.telegram_verified,
            "telegramFollowed": account.telegram_followed,
            "telegramUsername": account.telegram_username,
            "referralTag": account.referral_tag,
            "successfulReferrals": account.successful_referrals,
            "banned": account.banned,
            "createdAt": account.created_at,
        }
