"""
waitlist.services.referral_service — Referral Dual-Completion Tracker
======================================================================

A referral is complete once the referred account has all four
verification flags (email, Telegram verified, Telegram followed, referral
tag created).  Completion is detected whenever :func:`check_completion`
runs; nothing polls.

Reward step (both sides, at most once):

1. Claim the record with
   ``UPDATE referrals SET points_awarded = true WHERE id = :id AND points_awarded = false``.
   Zero rows updated means another request already claimed it.
2. In the same transaction, award the referrer and the referred account
   and bump ``successful_referrals``.
3. Any failure rolls back all three statements and the claim, so the next
   check retries the reward step.  The completion itself is committed
   beforehand and never re-runs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime

from sqlalchemy import Engine, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from waitlist import constants
from waitlist.database.models import Account, Referral, ReferralStatus
from waitlist.engine.rewards import ReferredReward, ReferrerReward
from waitlist.errors import AccountNotFound, WaitlistError
from waitlist.services import settings_service
from waitlist.services.ledger_service import apply_award
from waitlist.services.log_context import LogHandle

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ReferralCheck:
    """Result of :func:`check_completion`."""

    all_complete: bool
    requirements: dict[str, bool] = field(default_factory=dict)
    referral_id: int | None = None
    referrer_id: int | None = None
    points_awarded: bool = False
    newly_awarded: bool = False

    def to_dict(self) -> dict:
        return {
            "allComplete": self.all_complete,
            "requirements": self.requirements,
            "referralId": self.referral_id,
            "pointsAwarded": self.points_awarded,
            "newlyAwarded": self.newly_awarded,
        }


def requirements_for(account: Account) -> dict[str, bool]:
    """The four-item checklist shown to the referred account."""
    return {
        "emailVerified": bool(account.email_verified),
        "telegramVerified": bool(account.telegram_verified),
        "telegramFollowed": bool(account.telegram_followed),
        "tagCreated": account.tag_created,
    }


# ---------------------------------------------------------------------------
# Record creation
# ---------------------------------------------------------------------------
def get_or_create_referral(
    session: Session,
    referrer_id: int,
    referred_email: str,
    referred_name: str | None = None,
) -> Referral:
    """Fetch or insert the record for (*referrer_id*, *referred_email*).

    A concurrent insert of the same pair trips the unique constraint; the
    SAVEPOINT is rolled back and the winner's row is returned instead.
    """
    referred_email = referred_email.strip().lower()
    stmt = select(Referral).where(
        Referral.referrer_id == referrer_id,
        Referral.referred_email == referred_email,
    )
    referral = session.scalar(stmt)
    if referral is not None:
        return referral

    referral = Referral(
        referrer_id=referrer_id,
        referred_email=referred_email,
        referred_name=referred_name,
        status=ReferralStatus.PENDING.value,
    )
    try:
        with session.begin_nested():
            session.add(referral)
            session.flush()
    except IntegrityError:
        referral = session.scalar(stmt)
        if referral is None:
            raise
    return referral


def _refresh_mirror(referral: Referral, account: Account, now: datetime) -> bool:
    """Copy the account's flags onto *referral*.

    Returns True if this call moved the record from pending to complete.
    """
    referral.email_verified = bool(account.email_verified)
    referral.telegram_verified = bool(account.telegram_verified)
    referral.telegram_followed = bool(account.telegram_followed)
    referral.tag_created = account.tag_created

    if account.all_verifications_complete and not referral.all_verifications_complete:
        referral.all_verifications_complete = True
        referral.status = ReferralStatus.COMPLETED.value
        if referral.completed_at is None:
            referral.completed_at = now
        return True
    return False


# ---------------------------------------------------------------------------
# Completion check
# ---------------------------------------------------------------------------
def check_completion(
    engine: Engine,
    account_email: str,
    *,
    log: LogHandle | None = None,
) -> ReferralCheck:
    """Re-evaluate the referral of the account identified by *account_email*.

    Mirrors the account's flags onto its referral record on every call,
    records the first transition to complete, and pays the two-sided
    reward while it is still unpaid.
    """
    log = log or logger
    email = account_email.strip().lower()
    now = datetime.now(UTC)

    with Session(engine, expire_on_commit=False) as session:
        account = session.scalar(select(Account).where(Account.email == email))
        if account is None:
            raise AccountNotFound(f"No account for {email}")

        check = ReferralCheck(
            all_complete=account.all_verifications_complete,
            requirements=requirements_for(account),
        )

        referral = None
        if account.referred_by_id is not None:
            referrer = session.get(Account, account.referred_by_id)
            if referrer is not None:
                referral = get_or_create_referral(
                    session, referrer.id, email, account.name
                )
                if _refresh_mirror(referral, account, now):
                    log.info(
                        "Referral %d completed: referrer=%d referred=%s",
                        referral.id, referrer.id, email,
                    )
        session.commit()

    if referral is None:
        return check

    check.referral_id = referral.id
    check.referrer_id = referral.referrer_id
    check.points_awarded = referral.points_awarded

    if referral.all_verifications_complete and not referral.points_awarded:
        check.newly_awarded = pay_referral(engine, referral.id, log=log)
        if check.newly_awarded:
            check.points_awarded = True
        else:
            # another request may have won the claim and paid
            with Session(engine) as session:
                check.points_awarded = bool(session.scalar(
                    select(Referral.points_awarded).where(Referral.id == referral.id)
                ))

    return check


def pay_referral(
    engine: Engine,
    referral_id: int,
    *,
    log: LogHandle | None = None,
) -> bool:
    """Pay both sides of a complete referral, at most once.

    Returns True only when this call performed the payment.
    """
    log = log or logger

    with Session(engine) as session:
        referral = session.get(Referral, referral_id)
        if (
            referral is None
            or not referral.all_verifications_complete
            or referral.points_awarded
        ):
            return False

        referrer_points = settings_service.get_int(
            session, constants.SETTING_REFERRER_POINTS, constants.DEFAULT_REFERRER_POINTS
        )
        referred_points = settings_service.get_int(
            session, constants.SETTING_REFERRED_POINTS, constants.DEFAULT_REFERRED_POINTS
        )
        referred_email = referral.referred_email
        referrer_id = referral.referrer_id

        try:
            claimed = session.execute(
                update(Referral)
                .where(Referral.id == referral_id, Referral.points_awarded.is_(False))
                .values(points_awarded=True)
            ).rowcount
            if claimed != 1:
                session.rollback()
                log.info("Referral %d already claimed by another request", referral_id)
                return False

            referrer = session.get(Account, referrer_id)
            referred = session.scalar(
                select(Account).where(Account.email == referred_email)
            )
            if referrer is None:
                raise AccountNotFound(f"Referrer {referrer_id} not found")
            if referred is None:
                raise AccountNotFound(f"Referred account {referred_email} not found")

            apply_award(
                session, referrer.id, referrer_points,
                constants.REASON_REFERRAL_COMPLETED,
                ReferrerReward(referral_id=referral_id, referred_email=referred_email),
            )
            apply_award(
                session, referred.id, referred_points,
                constants.REASON_REFERRAL_BONUS,
                ReferredReward(referral_id=referral_id, referrer_email=referrer.email),
            )
            session.execute(
                update(Account)
                .where(Account.id == referrer.id)
                .values(successful_referrals=Account.successful_referrals + 1)
            )
            session.commit()
        except (WaitlistError, SQLAlchemyError):
            session.rollback()
            log.warning(
                "Referral %d reward failed; will retry on next check",
                referral_id, exc_info=True,
            )
            return False

    log.info(
        "Referral %d paid: referrer=%d +%d, referred=%s +%d",
        referral_id, referrer_id, referrer_points, referred_email, referred_points,
    )
    return True


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------
def list_referrals(engine: Engine, account_id: int) -> dict:
    """Referrals made by *account_id* with the referred accounts' live flags."""
    with Session(engine) as session:
        account = session.get(Account, account_id)
        if account is None:
            raise AccountNotFound(f"Account {account_id} not found")

        referrals = session.scalars(
            select(Referral)
            .where(Referral.referrer_id == account_id)
            .order_by(Referral.created_at.desc(), Referral.id.desc())
        ).all()

        emails = [r.referred_email for r in referrals]
        referred = {
            a.email: a
            for a in session.scalars(select(Account).where(Account.email.in_(emails)))
        } if emails else {}

        rows = []
        for r in referrals:
            other = referred.get(r.referred_email)
            rows.append({
                "id": r.id,
                "referredEmail": r.referred_email,
                "referredName": other.name if other else r.referred_name,
                "status": r.status,
                "allVerificationsComplete": r.all_verifications_complete,
                "pointsAwarded": r.points_awarded,
                "completedAt": r.completed_at,
                "requirements": requirements_for(other) if other else None,
            })

        return {
            "referrals": rows,
            "stats": {
                "total": len(referrals),
                "successful": sum(1 for r in referrals if r.all_verifications_complete),
                "pending": sum(
                    1 for r in referrals if r.status == ReferralStatus.PENDING.value
                ),
            },
            "referralCode": account.referral_tag,
        }


def count_unpaid(session: Session) -> int:
    """Complete referrals still waiting for their reward."""
    return int(session.scalar(
        select(func.count()).select_from(Referral).where(
            Referral.all_verifications_complete.is_(True),
            Referral.points_awarded.is_(False),
        )
    ) or 0)
