"""
waitlist.services.task_service — Task Completion Lifecycle
===========================================================

Each (account, task) pair owns one ``task_completions`` row that walks
``pending → completed`` (direct tasks) or
``pending → submitted → approved`` (review tasks).  The only backwards
edge is ``submitted → rejected → submitted``: a rejected submission may be
sent in again.

Rewards follow the same claim-then-award pattern as referrals: the state
transition is committed first, then ``points_awarded`` is claimed with a
conditional UPDATE and the ledger award runs in that same transaction.
If the award fails the claim is rolled back and
:func:`waitlist.services.reconciliation_service.retry_unpaid_rewards` can
pay it later.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from pydantic import AnyUrl, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import Engine, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from waitlist import constants
from waitlist.database.models import (
    Account,
    CompletionStatus,
    Task,
    TaskCompletion,
)
from waitlist.engine.rewards import TaskReward
from waitlist.errors import (
    AccountNotFound,
    Conflict,
    InvalidLink,
    SubmissionNotFound,
    TaskNotFound,
    WaitlistError,
)
from waitlist.services.ledger_service import apply_award
from waitlist.services.log_context import LogHandle

logger = logging.getLogger(__name__)

_URL = TypeAdapter(AnyUrl)

# Statuses that already hold a paid-for (or payable) success.
DONE_STATUSES = frozenset({CompletionStatus.APPROVED.value, CompletionStatus.COMPLETED.value})


def validate_link(link: str | None) -> str:
    """Return *link* stripped, or raise :class:`InvalidLink`."""
    if not link or not link.strip():
        raise InvalidLink("Submission link is required")
    link = link.strip()
    try:
        _URL.validate_python(link)
    except PydanticValidationError:
        raise InvalidLink("Invalid URL format") from None
    return link


def completion_to_dict(tc: TaskCompletion) -> dict:
    return {
        "id": tc.id,
        "accountId": tc.account_id,
        "taskId": tc.task_id,
        "status": tc.status,
        "submissionLink": tc.submission_link,
        "submittedAt": tc.submitted_at,
        "verificationData": tc.verification_data or {},
        "reviewedAt": tc.reviewed_at,
        "reviewedBy": tc.reviewed_by,
        "rejectionReason": tc.rejection_reason,
        "completedAt": tc.completed_at,
        "pointsAwarded": tc.points_awarded,
    }


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------
def _require_account(session: Session, account_id: int) -> Account:
    account = session.get(Account, account_id)
    if account is None:
        raise AccountNotFound(f"Account {account_id} not found")
    return account


def _require_active_task(session: Session, task_id: int) -> Task:
    task = session.get(Task, task_id)
    if task is None or not task.is_active:
        raise TaskNotFound()
    return task


def _get_completion(session: Session, account_id: int, task_id: int) -> TaskCompletion | None:
    return session.scalar(
        select(TaskCompletion).where(
            TaskCompletion.account_id == account_id,
            TaskCompletion.task_id == task_id,
        )
    )


def _insert_completion(session: Session, completion: TaskCompletion) -> None:
    """Insert a new completion row; a concurrent insert surfaces as Conflict."""
    try:
        with session.begin_nested():
            session.add(completion)
            session.flush()
    except IntegrityError:
        raise Conflict("Task completion already in progress") from None


# ---------------------------------------------------------------------------
# Direct path
# ---------------------------------------------------------------------------
def complete_task(
    engine: Engine,
    account_id: int,
    task_id: int,
    verification_data: dict[str, Any] | None = None,
    *,
    log: LogHandle | None = None,
) -> dict:
    """Complete a task that needs no manual review, rewarding it once."""
    log = log or logger
    now = datetime.now(UTC)

    with Session(engine, expire_on_commit=False) as session:
        _require_account(session, account_id)
        task = _require_active_task(session, task_id)

        if task.requires_verification:
            raise Conflict(
                "This task requires submission for review. "
                "Please use the submit endpoint."
            )

        completion = _get_completion(session, account_id, task_id)
        if completion is not None and completion.status in DONE_STATUSES:
            raise Conflict("Task already completed")

        if completion is None:
            completion = TaskCompletion(
                account_id=account_id,
                task_id=task_id,
                status=CompletionStatus.COMPLETED.value,
                completed_at=now,
                verification_data=verification_data or {},
            )
            _insert_completion(session, completion)
        else:
            completion.status = CompletionStatus.COMPLETED.value
            completion.completed_at = now
            completion.verification_data = verification_data or {}
        session.commit()

        reward = task.points_reward
        reason = constants.REASON_TASK_COMPLETED.format(title=task.title)
        task_type = task.task_type

    log.info("Task %d completed by account %d", task_id, account_id)

    if reward > 0:
        paid = pay_task_reward(
            engine, completion.id, reward, reason,
            TaskReward(task_id=task_id, task_type=task_type, completion_id=completion.id),
            log=log,
        )
        completion.points_awarded = completion.points_awarded or paid

    return completion_to_dict(completion)


# ---------------------------------------------------------------------------
# Review path
# ---------------------------------------------------------------------------
def submit_task(
    engine: Engine,
    account_id: int,
    task_id: int,
    link: str,
    *,
    log: LogHandle | None = None,
) -> dict:
    """Submit (or resubmit after rejection) a proof link for review."""
    log = log or logger
    link = validate_link(link)
    now = datetime.now(UTC)

    with Session(engine, expire_on_commit=False) as session:
        _require_account(session, account_id)
        _require_active_task(session, task_id)

        completion = _get_completion(session, account_id, task_id)
        if completion is not None and completion.status in DONE_STATUSES:
            raise Conflict("Task already completed")

        if completion is None:
            completion = TaskCompletion(
                account_id=account_id,
                task_id=task_id,
                status=CompletionStatus.SUBMITTED.value,
                submission_link=link,
                submitted_at=now,
            )
            _insert_completion(session, completion)
        else:
            completion.status = CompletionStatus.SUBMITTED.value
            completion.submission_link = link
            completion.submitted_at = now
        session.commit()

    log.info(
        "Task submission received: task=%d account=%d link=%s",
        task_id, account_id, link,
    )
    return completion_to_dict(completion)


def _load_submitted(session: Session, submission_id: int) -> TaskCompletion:
    completion = session.get(TaskCompletion, submission_id)
    if completion is None:
        raise SubmissionNotFound()
    if completion.status != CompletionStatus.SUBMITTED.value:
        raise Conflict("Submission is not in submitted status")
    return completion


def approve_submission(
    engine: Engine,
    submission_id: int,
    reviewer_id: int | None = None,
    *,
    log: LogHandle | None = None,
) -> dict:
    """Approve a submitted task and pay its reward once."""
    log = log or logger
    now = datetime.now(UTC)

    with Session(engine, expire_on_commit=False) as session:
        completion = _load_submitted(session, submission_id)
        completion.status = CompletionStatus.APPROVED.value
        completion.reviewed_at = now
        completion.reviewed_by = reviewer_id
        completion.completed_at = now

        task = session.get(Task, completion.task_id)
        reward = task.points_reward if task else 0
        reason = constants.REASON_TASK_APPROVED.format(title=task.title if task else "")
        task_type = task.task_type if task else ""
        session.commit()

    log.info("Task submission %d approved by %s", submission_id, reviewer_id)

    if reward > 0:
        paid = pay_task_reward(
            engine, submission_id, reward, reason,
            TaskReward(
                task_id=completion.task_id,
                task_type=task_type,
                completion_id=submission_id,
                reviewed_by=reviewer_id,
            ),
            log=log,
        )
        completion.points_awarded = completion.points_awarded or paid

    return completion_to_dict(completion)


def reject_submission(
    engine: Engine,
    submission_id: int,
    reason: str | None = None,
    reviewer_id: int | None = None,
    *,
    log: LogHandle | None = None,
) -> dict:
    """Reject a submitted task.  No reward; the account may resubmit."""
    log = log or logger
    now = datetime.now(UTC)

    with Session(engine, expire_on_commit=False) as session:
        completion = _load_submitted(session, submission_id)
        completion.status = CompletionStatus.REJECTED.value
        completion.reviewed_at = now
        completion.reviewed_by = reviewer_id
        completion.rejection_reason = (
            reason.strip() if reason and reason.strip() else constants.DEFAULT_REJECTION_REASON
        )
        session.commit()

    log.info(
        "Task submission %d rejected by %s: %s",
        submission_id, reviewer_id, completion.rejection_reason,
    )
    return completion_to_dict(completion)


# ---------------------------------------------------------------------------
# Reward
# ---------------------------------------------------------------------------
def pay_task_reward(
    engine: Engine,
    completion_id: int,
    amount: int,
    reason: str,
    metadata: TaskReward,
    *,
    log: LogHandle | None = None,
) -> bool:
    """Claim ``points_awarded`` and award *amount* in one transaction.

    Returns True only when this call performed the payment.
    """
    log = log or logger

    with Session(engine) as session:
        completion = session.get(TaskCompletion, completion_id)
        if (
            completion is None
            or completion.points_awarded
            or completion.status not in DONE_STATUSES
        ):
            return False
        account_id = completion.account_id

        try:
            claimed = session.execute(
                update(TaskCompletion)
                .where(
                    TaskCompletion.id == completion_id,
                    TaskCompletion.points_awarded.is_(False),
                )
                .values(points_awarded=True)
            ).rowcount
            if claimed != 1:
                session.rollback()
                return False

            apply_award(session, account_id, amount, reason, metadata)
            session.commit()
        except (WaitlistError, SQLAlchemyError):
            session.rollback()
            log.warning(
                "Task reward for completion %d failed; left unpaid",
                completion_id, exc_info=True,
            )
            return False

    return True


# ---------------------------------------------------------------------------
# Listings
# ---------------------------------------------------------------------------
def list_tasks_for_account(engine: Engine, account_id: int) -> list[dict]:
    """Active tasks with the account's completion status folded in."""
    with Session(engine) as session:
        _require_account(session, account_id)
        tasks = session.scalars(
            select(Task)
            .where(Task.is_active.is_(True))
            .order_by(Task.created_at.desc(), Task.id.desc())
        ).all()
        completions = {
            tc.task_id: tc
            for tc in session.scalars(
                select(TaskCompletion).where(TaskCompletion.account_id == account_id)
            )
        }

        result = []
        for task in tasks:
            tc = completions.get(task.id)
            result.append({
                "id": task.id,
                "title": task.title,
                "description": task.description,
                "taskType": task.task_type,
                "actionUrl": task.action_url,
                "pointsReward": task.points_reward,
                "requiresVerification": task.requires_verification,
                "verificationMethod": task.verification_method,
                "status": tc.status if tc else CompletionStatus.PENDING.value,
                "submissionLink": tc.submission_link if tc else None,
                "submittedAt": tc.submitted_at if tc else None,
                "reviewedAt": tc.reviewed_at if tc else None,
                "rejectionReason": tc.rejection_reason if tc else None,
                "pointsAwarded": tc.points_awarded if tc else False,
            })
        return result


def list_pending_submissions(engine: Engine) -> list[dict]:
    """Submissions awaiting review, newest first."""
    with Session(engine) as session:
        rows = session.execute(
            select(TaskCompletion, Task, Account)
            .join(Task, Task.id == TaskCompletion.task_id)
            .join(Account, Account.id == TaskCompletion.account_id)
            .where(TaskCompletion.status == CompletionStatus.SUBMITTED.value)
            .order_by(TaskCompletion.submitted_at.desc(), TaskCompletion.id.desc())
        ).all()
        return [
            {
                **completion_to_dict(tc),
                "taskTitle": task.title,
                "pointsReward": task.points_reward,
                "accountEmail": account.email,
                "accountName": account.name,
            }
            for tc, task, account in rows
        ]
