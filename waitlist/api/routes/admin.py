"""
waitlist.api.routes.admin — Admin endpoints (JWT‑protected)
============================================================
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from waitlist.api.deps import admin_actor_id, get_current_admin, get_engine, get_request_log
from waitlist.database.models import Task, TaskType
from waitlist.engine.rewards import ManualReward
from waitlist.services import (
    admin_service,
    ledger_service,
    reconciliation_service,
    settings_service,
    stats_service,
    task_service,
)

router = APIRouter(prefix="/admin", tags=["admin"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class TaskCreate(BaseModel):
    title: str
    task_type: TaskType = TaskType.CUSTOM
    description: str | None = None
    action_url: str | None = None
    points_reward: int = 0
    requires_verification: bool = False
    verification_method: str | None = None
    is_active: bool = True


class TaskUpdate(BaseModel):
    title: str | None = None
    task_type: TaskType | None = None
    description: str | None = None
    action_url: str | None = None
    points_reward: int | None = None
    requires_verification: bool | None = None
    verification_method: str | None = None
    is_active: bool | None = None


class RejectBody(BaseModel):
    reason: str | None = None


class BanBody(BaseModel):
    ban_reason: str
    banned_until: datetime | None = None


class ManualAward(BaseModel):
    amount: int
    reason: str = "Manual award"
    note: str = ""


class SettingUpdate(BaseModel):
    key: str
    value: Any
    category: str | None = None
    description: str | None = None


def _task_dict(t: Task) -> dict:
    return {
        "id": t.id,
        "title": t.title,
        "description": t.description,
        "taskType": t.task_type,
        "actionUrl": t.action_url,
        "pointsReward": t.points_reward,
        "requiresVerification": t.requires_verification,
        "verificationMethod": t.verification_method,
        "isActive": t.is_active,
    }


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------
@router.post("/tasks", status_code=201)
def create_task(
    body: TaskCreate,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    task = admin_service.create_task(
        engine,
        title=body.title,
        task_type=body.task_type.value,
        description=body.description,
        action_url=body.action_url,
        points_reward=body.points_reward,
        requires_verification=body.requires_verification,
        verification_method=body.verification_method,
        is_active=body.is_active,
        actor_id=admin_actor_id(admin),
    )
    return _task_dict(task)


@router.patch("/tasks/{task_id}")
def update_task(
    task_id: int,
    body: TaskUpdate,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    changes = body.model_dump(exclude_unset=True)
    if changes.get("task_type") is not None:
        changes["task_type"] = TaskType(changes["task_type"]).value
    task = admin_service.update_task(
        engine, task_id=task_id, actor_id=admin_actor_id(admin), **changes
    )
    return _task_dict(task)


@router.delete("/tasks/{task_id}")
def delete_task(
    task_id: int,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    if not admin_service.delete_task(engine, task_id=task_id, actor_id=admin_actor_id(admin)):
        raise HTTPException(404, "Task not found")
    return {"deleted": True}


# ---------------------------------------------------------------------------
# Submission review
# ---------------------------------------------------------------------------
@router.get("/submissions")
def pending_submissions(
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    return {"submissions": task_service.list_pending_submissions(engine)}


@router.post("/submissions/{submission_id}/approve")
def approve_submission(
    submission_id: int,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
    log=Depends(get_request_log),
):
    return task_service.approve_submission(
        engine, submission_id, admin_actor_id(admin), log=log
    )


@router.post("/submissions/{submission_id}/reject")
def reject_submission(
    submission_id: int,
    body: RejectBody | None = None,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
    log=Depends(get_request_log),
):
    return task_service.reject_submission(
        engine, submission_id, body.reason if body else None, admin_actor_id(admin), log=log
    )


# ---------------------------------------------------------------------------
# Bans
# ---------------------------------------------------------------------------
@router.post("/accounts/{account_id}/ban")
def ban_account(
    account_id: int,
    body: BanBody,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
    log=Depends(get_request_log),
):
    return admin_service.ban_account(
        engine,
        account_id=account_id,
        reason=body.ban_reason,
        until=body.banned_until,
        actor_id=admin_actor_id(admin),
        log=log,
    )


@router.post("/accounts/{account_id}/unban")
def unban_account(
    account_id: int,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
    log=Depends(get_request_log),
):
    return admin_service.unban_account(
        engine, account_id=account_id, actor_id=admin_actor_id(admin), log=log
    )


# ---------------------------------------------------------------------------
# Ledger & maintenance
# ---------------------------------------------------------------------------
@router.post("/accounts/{account_id}/points")
def award_points(
    account_id: int,
    body: ManualAward,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
    log=Depends(get_request_log),
):
    result = ledger_service.award(
        engine, account_id, body.amount, body.reason,
        ManualReward(admin_id=admin_actor_id(admin), note=body.note),
        log=log,
    )
    return {
        "accountId": result.account_id,
        "amount": result.amount,
        "points": result.new_balance,
        "transactionId": result.transaction_id,
    }


@router.get("/accounts/{account_id}/points/verify")
def verify_points(
    account_id: int,
    expected: int | None = Query(None),
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
    log=Depends(get_request_log),
):
    return {
        "accountId": account_id,
        "consistent": ledger_service.verify_balance(engine, account_id, expected, log=log),
    }


@router.get("/ledger/audit")
def audit_ledger(
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    return reconciliation_service.audit_balances(engine)


@router.post("/rewards/retry")
def retry_rewards(
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    return reconciliation_service.retry_unpaid_rewards(engine)


@router.get("/stats")
def stats(
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    return stats_service.get_overview(engine)


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------
@router.get("/settings")
def get_all_settings(
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    return {"settings": settings_service.get_all_settings(engine)}


@router.put("/settings")
def update_settings(
    body: list[SettingUpdate],
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    for s in body:
        settings_service.upsert_setting(
            engine,
            key=s.key,
            value=s.value,
            category=s.category,
            description=s.description,
        )
    return {"updated": len(body)}


# ---------------------------------------------------------------------------
# Audit Log
# ---------------------------------------------------------------------------
@router.get("/audit")
def get_audit_log(
    page: int = Query(1, ge=1),
    page_size: int = Query(25, ge=1, le=100),
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    """Paginated admin audit log."""
    return admin_service.get_audit_log(engine, page=page, page_size=page_size)
