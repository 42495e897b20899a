"""
waitlist.services.reconciliation_service — Ledger Audit & Reward Retry
=======================================================================

Two maintenance jobs, both safe to run at any time:

:func:`audit_balances`
    Compares every ``accounts.points`` against ``SUM(points_transactions.amount)``.
    Drift is reported and logged, never corrected: the ledger is
    append-only, so a mismatch means something bypassed
    :mod:`waitlist.services.ledger_service` and needs a human.

:func:`retry_unpaid_rewards`
    Re-runs the guarded payment step for every complete referral and every
    done task whose ``points_awarded`` is still false.  The conditional
    claim inside each payment helper makes a retry racing a live request
    harmless.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from sqlalchemy import Engine, func, select
from sqlalchemy.orm import Session

from waitlist import constants
from waitlist.database.engine import get_session
from waitlist.database.models import Account, PointsTransaction, Referral, Task, TaskCompletion
from waitlist.engine.rewards import TaskReward
from waitlist.services.referral_service import pay_referral
from waitlist.services.task_service import DONE_STATUSES, pay_task_reward

logger = logging.getLogger(__name__)


def audit_balances(engine: Engine) -> dict:
    """Check cached balances against the ledger for every account.

    Returns ``{"checked": N, "mismatched": M, "mismatches": [...], "timestamp": ...}``.
    """
    mismatches: list[dict] = []

    with get_session(engine) as session:
        ledger_q = (
            select(
                PointsTransaction.account_id,
                func.sum(PointsTransaction.amount).label("total"),
            )
            .group_by(PointsTransaction.account_id)
        )
        ledger_map: dict[int, int] = {
            row.account_id: int(row.total) for row in session.execute(ledger_q)
        }

        accounts = session.execute(
            select(Account.id, Account.email, Account.points).order_by(Account.id)
        ).all()

        for row in accounts:
            actual = ledger_map.get(row.id, 0)
            if row.points != actual:
                mismatches.append({
                    "account_id": row.id,
                    "email": row.email,
                    "cached": row.points,
                    "ledger": actual,
                    "diff": row.points - actual,
                })

    for m in mismatches:
        logger.warning(
            "Ledger drift: account=%d cached=%d ledger=%d",
            m["account_id"], m["cached"], m["ledger"],
        )
    logger.info(
        "Balance audit complete: %d checked, %d mismatched",
        len(accounts), len(mismatches),
    )
    return {
        "checked": len(accounts),
        "mismatched": len(mismatches),
        "mismatches": mismatches,
        "timestamp": datetime.now(UTC).isoformat(),
    }


def retry_unpaid_rewards(engine: Engine) -> dict:
    """Pay every reward whose state transition committed but whose award did not.

    Returns ``{"referrals_paid", "referrals_failed", "tasks_paid", "tasks_failed"}``.
    """
    with Session(engine) as session:
        referral_ids = session.scalars(
            select(Referral.id)
            .where(
                Referral.all_verifications_complete.is_(True),
                Referral.points_awarded.is_(False),
            )
            .order_by(Referral.id)
        ).all()
        task_rows = session.execute(
            select(TaskCompletion, Task)
            .join(Task, Task.id == TaskCompletion.task_id)
            .where(
                TaskCompletion.status.in_(DONE_STATUSES),
                TaskCompletion.points_awarded.is_(False),
                Task.points_reward > 0,
            )
            .order_by(TaskCompletion.id)
        ).all()
        task_jobs = [
            (
                tc.id,
                task.points_reward,
                (constants.REASON_TASK_APPROVED if task.requires_verification
                 else constants.REASON_TASK_COMPLETED).format(title=task.title),
                TaskReward(
                    task_id=task.id,
                    task_type=task.task_type,
                    completion_id=tc.id,
                    reviewed_by=tc.reviewed_by,
                ),
            )
            for tc, task in task_rows
        ]

    summary = {"referrals_paid": 0, "referrals_failed": 0, "tasks_paid": 0, "tasks_failed": 0}

    for referral_id in referral_ids:
        if pay_referral(engine, referral_id):
            summary["referrals_paid"] += 1
        else:
            summary["referrals_failed"] += 1

    for completion_id, amount, reason, metadata in task_jobs:
        if pay_task_reward(engine, completion_id, amount, reason, metadata):
            summary["tasks_paid"] += 1
        else:
            summary["tasks_failed"] += 1

    if any(summary.values()):
        logger.info(
            "Reward retry: %d/%d referrals paid, %d/%d tasks paid",
            summary["referrals_paid"], len(referral_ids),
            summary["tasks_paid"], len(task_jobs),
        )
    return summary
