"""
waitlist.api.routes.account — Authenticated account endpoints
==============================================================

Every route here sits behind ``require_active_account``, so a banned
account is turned away (and an expired ban cleared) before any handler
runs.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from waitlist import constants
from waitlist.api.deps import get_engine, get_request_log, require_active_account
from waitlist.services import (
    ledger_service,
    onboarding_service,
    referral_service,
    task_service,
)

router = APIRouter(prefix="/account", tags=["account"])


class TelegramVerify(BaseModel):
    username: str = Field(min_length=1, max_length=64)


class TagCreate(BaseModel):
    tag: str


class TaskComplete(BaseModel):
    verification_data: dict[str, Any] = Field(default_factory=dict)


class TaskSubmit(BaseModel):
    submission_link: str


# ---------------------------------------------------------------------------
# Profile & verification flags
# ---------------------------------------------------------------------------
@router.get("/me")
def me(
    account_id: int = Depends(require_active_account),
    engine=Depends(get_engine),
):
    return onboarding_service.get_account_summary(engine, account_id)


@router.post("/verify/email")
def verify_email(
    account_id: int = Depends(require_active_account),
    engine=Depends(get_engine),
    log=Depends(get_request_log),
):
    changed = onboarding_service.verify_email(engine, account_id, log=log)
    return {"emailVerified": True, "changed": changed}


@router.post("/verify/telegram")
def verify_telegram(
    body: TelegramVerify,
    account_id: int = Depends(require_active_account),
    engine=Depends(get_engine),
    log=Depends(get_request_log),
):
    return onboarding_service.verify_telegram(engine, account_id, body.username, log=log)


@router.post("/telegram/followed")
def telegram_followed(
    account_id: int = Depends(require_active_account),
    engine=Depends(get_engine),
    log=Depends(get_request_log),
):
    changed = onboarding_service.mark_telegram_followed(engine, account_id, log=log)
    return {"telegramFollowed": True, "changed": changed}


@router.post("/referral-tag")
def create_referral_tag(
    body: TagCreate,
    account_id: int = Depends(require_active_account),
    engine=Depends(get_engine),
    log=Depends(get_request_log),
):
    return onboarding_service.create_referral_tag(engine, account_id, body.tag, log=log)


# ---------------------------------------------------------------------------
# Referrals
# ---------------------------------------------------------------------------
@router.post("/referral/check")
def check_referral(
    account_id: int = Depends(require_active_account),
    engine=Depends(get_engine),
    log=Depends(get_request_log),
):
    """Re-evaluate this account's own referral and pay it if it just completed."""
    email = onboarding_service.get_account_summary(engine, account_id)["email"]
    return referral_service.check_completion(engine, email, log=log).to_dict()


@router.get("/referrals")
def list_referrals(
    account_id: int = Depends(require_active_account),
    engine=Depends(get_engine),
):
    return referral_service.list_referrals(engine, account_id)


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------
@router.get("/tasks")
def list_tasks(
    account_id: int = Depends(require_active_account),
    engine=Depends(get_engine),
):
    return {"tasks": task_service.list_tasks_for_account(engine, account_id)}


@router.post("/tasks/{task_id}/complete")
def complete_task(
    task_id: int,
    body: TaskComplete | None = None,
    account_id: int = Depends(require_active_account),
    engine=Depends(get_engine),
    log=Depends(get_request_log),
):
    return task_service.complete_task(
        engine, account_id, task_id,
        body.verification_data if body else None,
        log=log,
    )


@router.post("/tasks/{task_id}/submit")
def submit_task(
    task_id: int,
    body: TaskSubmit,
    account_id: int = Depends(require_active_account),
    engine=Depends(get_engine),
    log=Depends(get_request_log),
):
    return task_service.submit_task(engine, account_id, task_id, body.submission_link, log=log)


# ---------------------------------------------------------------------------
# Points
# ---------------------------------------------------------------------------
@router.get("/points/history")
def points_history(
    limit: int = Query(constants.HISTORY_DEFAULT_LIMIT, ge=1, le=constants.HISTORY_MAX_LIMIT),
    account_id: int = Depends(require_active_account),
    engine=Depends(get_engine),
):
    return {"transactions": ledger_service.history(engine, account_id, limit)}
