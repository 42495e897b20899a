"""
tests/test_task_service.py — Task Completion Lifecycle Tests
=============================================================
Direct completion, the submit → approve / reject → resubmit loop, and
at-most-once task rewards.
"""

from __future__ import annotations

from unittest.mock import patch

import pytest
from conftest import make_account
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from waitlist import constants
from waitlist.database.models import (
    Account,
    CompletionStatus,
    PointsTransaction,
    Task,
    TaskCompletion,
)
from waitlist.errors import Conflict, InvalidLink, SubmissionNotFound, TaskNotFound
from waitlist.services import ledger_service, reconciliation_service, task_service


@pytest.fixture
def engine(db_engine):
    return db_engine


def _make_task(engine, *, reward: int = 50, review: bool = False, active: bool = True,
               title: str = "Follow us") -> int:
    with Session(engine) as session:
        task = Task(
            title=title,
            task_type="follow_x",
            points_reward=reward,
            requires_verification=review,
            is_active=active,
        )
        session.add(task)
        session.commit()
        return task.id


def _points(engine, account_id: int) -> int:
    with Session(engine) as session:
        return session.get(Account, account_id).points


def _tx_count(engine) -> int:
    with Session(engine) as session:
        return session.scalar(select(func.count()).select_from(PointsTransaction))


# ===========================================================================
# complete_task()
# ===========================================================================
class TestCompleteTask:
    def test_direct_completion_pays_reward(self, engine):
        acct = make_account(engine)
        task = _make_task(engine, reward=50)

        result = task_service.complete_task(engine, acct, task, {"handle": "@me"})

        assert result["status"] == CompletionStatus.COMPLETED.value
        assert result["pointsAwarded"] is True
        assert result["verificationData"] == {"handle": "@me"}
        assert _points(engine, acct) == 50

    def test_second_completion_conflicts_without_second_payment(self, engine):
        acct = make_account(engine)
        task = _make_task(engine, reward=50)
        task_service.complete_task(engine, acct, task)

        with pytest.raises(Conflict):
            task_service.complete_task(engine, acct, task)
        assert _points(engine, acct) == 50
        assert _tx_count(engine) == 1

    def test_review_task_must_be_submitted(self, engine):
        acct = make_account(engine)
        task = _make_task(engine, review=True)
        with pytest.raises(Conflict):
            task_service.complete_task(engine, acct, task)

    def test_inactive_task_is_not_found(self, engine):
        acct = make_account(engine)
        task = _make_task(engine, active=False)
        with pytest.raises(TaskNotFound):
            task_service.complete_task(engine, acct, task)

    def test_zero_reward_task_writes_no_transaction(self, engine):
        acct = make_account(engine)
        task = _make_task(engine, reward=0)
        result = task_service.complete_task(engine, acct, task)
        assert result["status"] == CompletionStatus.COMPLETED.value
        assert result["pointsAwarded"] is False
        assert _tx_count(engine) == 0

    def test_reason_uses_task_title(self, engine):
        acct = make_account(engine)
        task = _make_task(engine, title="Join Discord")
        task_service.complete_task(engine, acct, task)
        with Session(engine) as session:
            tx = session.scalars(select(PointsTransaction)).one()
            assert tx.reason == constants.REASON_TASK_COMPLETED.format(title="Join Discord")
            assert tx.metadata_["kind"] == "task"
            assert tx.metadata_["task_id"] == task


# ===========================================================================
# submit / approve / reject
# ===========================================================================
class TestReviewFlow:
    def test_submit_then_approve_pays_once(self, engine):
        acct = make_account(engine)
        task = _make_task(engine, reward=75, review=True)

        sub = task_service.submit_task(engine, acct, task, "https://x.com/me/status/1")
        assert sub["status"] == CompletionStatus.SUBMITTED.value
        assert sub["submissionLink"] == "https://x.com/me/status/1"

        approved = task_service.approve_submission(engine, sub["id"], reviewer_id=7)
        assert approved["status"] == CompletionStatus.APPROVED.value
        assert approved["reviewedBy"] == 7
        assert approved["pointsAwarded"] is True
        assert _points(engine, acct) == 75

        with pytest.raises(Conflict):
            task_service.approve_submission(engine, sub["id"], reviewer_id=7)
        assert _points(engine, acct) == 75

    def test_reject_then_resubmit_then_approve(self, engine):
        acct = make_account(engine)
        task = _make_task(engine, reward=30, review=True)

        sub = task_service.submit_task(engine, acct, task, "https://example.com/proof-1")
        rejected = task_service.reject_submission(engine, sub["id"])
        assert rejected["status"] == CompletionStatus.REJECTED.value
        assert rejected["rejectionReason"] == constants.DEFAULT_REJECTION_REASON
        assert _points(engine, acct) == 0

        again = task_service.submit_task(engine, acct, task, "https://example.com/proof-2")
        assert again["id"] == sub["id"]
        assert again["status"] == CompletionStatus.SUBMITTED.value

        task_service.approve_submission(engine, again["id"])
        assert _points(engine, acct) == 30
        with Session(engine) as session:
            assert session.scalar(select(func.count()).select_from(TaskCompletion)) == 1

    def test_reject_with_custom_reason(self, engine):
        acct = make_account(engine)
        task = _make_task(engine, review=True)
        sub = task_service.submit_task(engine, acct, task, "https://example.com/p")
        rejected = task_service.reject_submission(engine, sub["id"], "Blurry screenshot")
        assert rejected["rejectionReason"] == "Blurry screenshot"

    def test_cannot_submit_after_approval(self, engine):
        acct = make_account(engine)
        task = _make_task(engine, review=True)
        sub = task_service.submit_task(engine, acct, task, "https://example.com/p")
        task_service.approve_submission(engine, sub["id"])
        with pytest.raises(Conflict):
            task_service.submit_task(engine, acct, task, "https://example.com/q")

    def test_reject_requires_submitted_status(self, engine):
        acct = make_account(engine)
        task = _make_task(engine, review=True)
        sub = task_service.submit_task(engine, acct, task, "https://example.com/p")
        task_service.reject_submission(engine, sub["id"])
        with pytest.raises(Conflict):
            task_service.reject_submission(engine, sub["id"])

    @pytest.mark.parametrize("link", ["", "   ", "not a url", "example.com/no-scheme"])
    def test_invalid_link_rejected_without_write(self, engine, link):
        acct = make_account(engine)
        task = _make_task(engine, review=True)
        with pytest.raises(InvalidLink):
            task_service.submit_task(engine, acct, task, link)
        with Session(engine) as session:
            assert session.scalar(select(func.count()).select_from(TaskCompletion)) == 0

    def test_unknown_submission(self, engine):
        with pytest.raises(SubmissionNotFound):
            task_service.approve_submission(engine, 9999)


# ===========================================================================
# Reward failures
# ===========================================================================
class TestRewardFailure:
    """A failed award keeps the status change and leaves the reward owed."""

    def _assert_unpaid(self, engine, account_id: int, completion_id: int, status: str):
        with Session(engine) as session:
            tc = session.get(TaskCompletion, completion_id)
            assert tc.status == status
            assert tc.points_awarded is False
        assert _points(engine, account_id) == 0
        assert _tx_count(engine) == 0
        assert ledger_service.verify_balance(engine, account_id, expected=0)

    def test_direct_completion_survives_failed_award(self, engine):
        acct = make_account(engine)
        task_id = _make_task(engine, reward=30)

        with patch.object(task_service, "apply_award", side_effect=SQLAlchemyError("db down")):
            result = task_service.complete_task(engine, acct, task_id)

        assert result["status"] == CompletionStatus.COMPLETED.value
        assert result["pointsAwarded"] is False
        self._assert_unpaid(engine, acct, result["id"], CompletionStatus.COMPLETED.value)

        summary = reconciliation_service.retry_unpaid_rewards(engine)
        assert summary["tasks_paid"] == 1
        assert reconciliation_service.retry_unpaid_rewards(engine)["tasks_paid"] == 0
        assert _points(engine, acct) == 30
        assert _tx_count(engine) == 1

    def test_approval_survives_failed_award(self, engine):
        acct = make_account(engine)
        task_id = _make_task(engine, reward=40, review=True)
        sub = task_service.submit_task(engine, acct, task_id, "https://x.com/me/status/1")

        with patch.object(task_service, "apply_award", side_effect=SQLAlchemyError("db down")):
            result = task_service.approve_submission(engine, sub["id"], reviewer_id=7)

        assert result["status"] == CompletionStatus.APPROVED.value
        assert result["pointsAwarded"] is False
        self._assert_unpaid(engine, acct, sub["id"], CompletionStatus.APPROVED.value)

        assert reconciliation_service.retry_unpaid_rewards(engine)["tasks_paid"] == 1
        assert _points(engine, acct) == 40
        history = ledger_service.history(engine, acct)
        assert len(history) == 1
        assert history[0]["reason"] == constants.REASON_TASK_APPROVED.format(title="Follow us")


# ===========================================================================
# Listings
# ===========================================================================
class TestListings:
    def test_tasks_for_account_include_status(self, engine):
        acct = make_account(engine)
        done = _make_task(engine, title="Done")
        _make_task(engine, title="Open")
        _make_task(engine, title="Hidden", active=False)
        task_service.complete_task(engine, acct, done)

        rows = {r["title"]: r for r in task_service.list_tasks_for_account(engine, acct)}

        assert set(rows) == {"Done", "Open"}
        assert rows["Done"]["status"] == CompletionStatus.COMPLETED.value
        assert rows["Open"]["status"] == CompletionStatus.PENDING.value

    def test_pending_submissions(self, engine):
        acct = make_account(engine, "sub@example.com", "Sub")
        task = _make_task(engine, review=True, title="Retweet")
        task_service.submit_task(engine, acct, task, "https://example.com/p")

        pending = task_service.list_pending_submissions(engine)
        assert len(pending) == 1
        assert pending[0]["taskTitle"] == "Retweet"
        assert pending[0]["accountEmail"] == "sub@example.com"
