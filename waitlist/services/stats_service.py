"""
waitlist.services.stats_service — Admin dashboard counters
===========================================================
"""

from __future__ import annotations

from sqlalchemy import Engine, func, select
from sqlalchemy.orm import Session

from waitlist.database.models import (
    Account,
    CompletionStatus,
    PointsTransaction,
    Referral,
    ReferralStatus,
    TaskCompletion,
)
from waitlist.services.referral_service import count_unpaid

TOP_REFERRERS_LIMIT = 10


def _count(session: Session, model, *where) -> int:
    return int(session.scalar(select(func.count()).select_from(model).where(*where)) or 0)


def get_overview(engine: Engine, top: int = TOP_REFERRERS_LIMIT) -> dict:
    """Headline numbers for the admin dashboard."""
    with Session(engine) as session:
        points_issued = session.scalar(
            select(func.coalesce(func.sum(PointsTransaction.amount), 0))
        )
        top_referrers = session.execute(
            select(Account.id, Account.email, Account.name, Account.successful_referrals)
            .where(Account.successful_referrals > 0)
            .order_by(Account.successful_referrals.desc(), Account.id)
            .limit(top)
        ).all()

        return {
            "accounts": {
                "total": _count(session, Account),
                "banned": _count(session, Account, Account.banned.is_(True)),
                "emailVerified": _count(session, Account, Account.email_verified.is_(True)),
            },
            "referrals": {
                "total": _count(session, Referral),
                "successful": _count(
                    session, Referral, Referral.all_verifications_complete.is_(True)
                ),
                "pending": _count(
                    session, Referral, Referral.status == ReferralStatus.PENDING.value
                ),
                "unpaid": count_unpaid(session),
            },
            "points": {"issued": int(points_issued or 0)},
            "tasks": {
                "pendingSubmissions": _count(
                    session, TaskCompletion,
                    TaskCompletion.status == CompletionStatus.SUBMITTED.value,
                ),
            },
            "topReferrers": [
                {
                    "id": r.id,
                    "email": r.email,
                    "name": r.name,
                    "successfulReferrals": r.successful_referrals,
                }
                for r in top_referrers
            ],
        }
