"""
waitlist.services.admin_service — Admin Mutation Service Layer
===============================================================

Every admin write follows the same pattern:
  1. Begin transaction
  2. Read "before" snapshot
  3. Apply change
  4. Write admin_log with before/after JSON
  5. Commit

Ban and unban additionally write an ``onboarding_events`` row so the
account's own journal shows who locked it out and when.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from waitlist.database.models import (
    Account,
    AdminLog,
    OnboardingEvent,
    OnboardingEventType,
    Task,
    TaskType,
)
from waitlist.errors import AccountNotFound, TaskNotFound, ValidationError
from waitlist.services.log_context import LogHandle

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Generic audit helpers
# ---------------------------------------------------------------------------

def _row_to_dict(obj: Any) -> dict | None:
    """Convert a SQLAlchemy model instance to a JSON-serializable dict."""
    if obj is None:
        return None
    result = {}
    for col in obj.__table__.columns:
        val = getattr(obj, col.key if col.key != "metadata" else "metadata_", None)
        if isinstance(val, datetime):
            val = val.isoformat()
        result[col.name] = val
    return result


def _log_admin_action(
    session: Session,
    *,
    actor_id: int,
    action_type: str,
    target_table: str,
    target_id: str | None,
    before: dict | None,
    after: dict | None,
    reason: str | None = None,
) -> None:
    """Insert a row into admin_log within the current transaction."""
    session.add(AdminLog(
        actor_id=actor_id,
        action_type=action_type,
        target_table=target_table,
        target_id=target_id,
        before_snapshot=before,
        after_snapshot=after,
        reason=reason,
    ))


def _check_task_fields(fields: dict[str, Any]) -> None:
    if "title" in fields and not (fields["title"] or "").strip():
        raise ValidationError("Task title is required")
    if "task_type" in fields and fields["task_type"] not in {t.value for t in TaskType}:
        raise ValidationError(f"Unknown task type {fields['task_type']!r}")
    reward = fields.get("points_reward")
    if reward is not None and (isinstance(reward, bool) or not isinstance(reward, int) or reward < 0):
        raise ValidationError("Task reward must be a non-negative integer")


# ---------------------------------------------------------------------------
# Task CRUD
# ---------------------------------------------------------------------------

def create_task(
    engine,
    *,
    title: str,
    task_type: str,
    description: str | None = None,
    action_url: str | None = None,
    points_reward: int = 0,
    requires_verification: bool = False,
    verification_method: str | None = None,
    is_active: bool = True,
    actor_id: int,
) -> Task:
    """Create a task and return it detached from its session."""
    _check_task_fields({"title": title, "task_type": task_type, "points_reward": points_reward})
    with Session(engine, expire_on_commit=False) as session:
        task = Task(
            title=title.strip(),
            description=description,
            task_type=task_type,
            action_url=action_url,
            points_reward=points_reward,
            requires_verification=requires_verification,
            verification_method=verification_method,
            is_active=is_active,
            created_by=actor_id,
        )
        session.add(task)
        session.flush()
        _log_admin_action(
            session,
            actor_id=actor_id,
            action_type="CREATE",
            target_table="tasks",
            target_id=str(task.id),
            before=None,
            after=_row_to_dict(task),
        )
        session.commit()
        session.refresh(task)
        session.expunge(task)

    logger.info("Task %d created by %d: %s", task.id, actor_id, task.title)
    return task


def update_task(
    engine,
    *,
    task_id: int,
    actor_id: int,
    **kwargs: Any,
) -> Task:
    """Update an existing task.  Unknown or frozen keys are ignored."""
    _check_task_fields(kwargs)
    frozen_keys = ("id", "created_by", "created_at")
    with Session(engine, expire_on_commit=False) as session:
        task = session.get(Task, task_id)
        if task is None:
            raise TaskNotFound()
        before = _row_to_dict(task)
        for key, value in kwargs.items():
            if key in Task.__table__.columns and key not in frozen_keys:
                setattr(task, key, value)
        session.flush()
        _log_admin_action(
            session,
            actor_id=actor_id,
            action_type="UPDATE",
            target_table="tasks",
            target_id=str(task.id),
            before=before,
            after=_row_to_dict(task),
        )
        session.commit()
        session.refresh(task)
        session.expunge(task)

    logger.info("Task %d updated by %d", task_id, actor_id)
    return task


def delete_task(engine, *, task_id: int, actor_id: int) -> bool:
    """Delete a task.  Returns ``True`` if the row existed and was deleted."""
    with Session(engine) as session:
        task = session.get(Task, task_id)
        if task is None:
            return False
        _log_admin_action(
            session,
            actor_id=actor_id,
            action_type="DELETE",
            target_table="tasks",
            target_id=str(task.id),
            before=_row_to_dict(task),
            after=None,
        )
        session.delete(task)
        session.commit()

    logger.warning("Task %d deleted by %d", task_id, actor_id)
    return True


# ---------------------------------------------------------------------------
# Bans
# ---------------------------------------------------------------------------

def ban_account(
    engine,
    *,
    account_id: int,
    reason: str,
    until: datetime | None = None,
    actor_id: int,
    log: LogHandle | None = None,
) -> dict:
    """Ban *account_id*, permanently when *until* is ``None``."""
    log = log or logger
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("Ban reason is required")

    with Session(engine) as session:
        account = session.get(Account, account_id)
        if account is None:
            raise AccountNotFound(f"Account {account_id} not found")
        before = _row_to_dict(account)
        account.banned = True
        account.ban_reason = reason
        account.banned_until = until
        session.flush()

        session.add(OnboardingEvent(
            account_id=account.id,
            event_type=OnboardingEventType.ACCOUNT_BANNED.value,
            metadata_={
                "ban_reason": reason,
                "banned_until": until.isoformat() if until else None,
                "banned_by": actor_id,
            },
        ))
        _log_admin_action(
            session,
            actor_id=actor_id,
            action_type="BAN",
            target_table="accounts",
            target_id=str(account.id),
            before=before,
            after=_row_to_dict(account),
            reason=reason,
        )
        session.commit()

    log.warning(
        "Account %d banned by %d until %s: %s",
        account_id, actor_id, until.isoformat() if until else "forever", reason,
    )
    return {"banned": True, "banReason": reason, "bannedUntil": until}


def unban_account(
    engine,
    *,
    account_id: int,
    actor_id: int,
    log: LogHandle | None = None,
) -> dict:
    """Lift any ban on *account_id*."""
    log = log or logger
    with Session(engine) as session:
        account = session.get(Account, account_id)
        if account is None:
            raise AccountNotFound(f"Account {account_id} not found")
        before = _row_to_dict(account)
        account.banned = False
        account.ban_reason = None
        account.banned_until = None
        session.flush()

        session.add(OnboardingEvent(
            account_id=account.id,
            event_type=OnboardingEventType.ACCOUNT_UNBANNED.value,
            metadata_={"unbanned_by": actor_id},
        ))
        _log_admin_action(
            session,
            actor_id=actor_id,
            action_type="UNBAN",
            target_table="accounts",
            target_id=str(account.id),
            before=before,
            after=_row_to_dict(account),
        )
        session.commit()

    log.info("Account %d unbanned by %d", account_id, actor_id)
    return {"banned": False}


# ---------------------------------------------------------------------------
# Audit log
# ---------------------------------------------------------------------------

def get_audit_log(engine, *, page: int = 1, page_size: int = 25) -> dict:
    """Paginated admin audit log, newest first."""
    offset = (page - 1) * page_size
    with Session(engine) as session:
        total = session.scalar(select(func.count()).select_from(AdminLog)) or 0
        rows = session.scalars(
            select(AdminLog)
            .order_by(AdminLog.timestamp.desc(), AdminLog.id.desc())
            .offset(offset)
            .limit(page_size)
        ).all()
        return {
            "total": total,
            "page": page,
            "page_size": page_size,
            "entries": [
                {
                    "id": r.id,
                    "actor_id": r.actor_id,
                    "action_type": r.action_type,
                    "target_table": r.target_table,
                    "target_id": r.target_id,
                    "before_snapshot": r.before_snapshot,
                    "after_snapshot": r.after_snapshot,
                    "reason": r.reason,
                    "timestamp": r.timestamp.isoformat() if r.timestamp else None,
                }
                for r in rows
            ],
        }
