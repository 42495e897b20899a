"""
waitlist.database.models — SQLAlchemy 2.0 Data Models
======================================================

Tables:
- accounts             — Waitlist identities (email is the natural key)
- points_transactions  — Append-only points ledger
- referrals            — One row per (referrer, referred email) pair
- tasks                — Admin-authored engagement tasks
- task_completions     — One row per (account, task) pair
- bot_signals          — Append-only bot-suspicion events
- onboarding_events    — Append-only onboarding journal (signup IPs, bans)
- settings             — Key-value tuning knobs
- admin_log            — Append-only audit trail
"""

from __future__ import annotations

import enum
from datetime import UTC, datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utcnow() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all waitlist ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class TaskType(enum.StrEnum):
    FOLLOW_TELEGRAM = "follow_telegram"
    FOLLOW_X = "follow_x"
    JOIN_DISCORD = "join_discord"
    FOLLOW_INSTAGRAM = "follow_instagram"
    LIKE_POST = "like_post"
    RETWEET = "retweet"
    CUSTOM = "custom"


class CompletionStatus(enum.StrEnum):
    """Lifecycle of a (account, task) pair.

    ``submitted ⇄ rejected`` is the only backwards edge.
    """
    PENDING = "pending"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMPLETED = "completed"


class ReferralStatus(enum.StrEnum):
    PENDING = "pending"
    COMPLETED = "completed"


class OnboardingEventType(enum.StrEnum):
    """Event types recorded in the onboarding journal."""
    ONBOARDING_STARTED = "onboarding_started"
    EMAIL_VERIFIED = "email_verified"
    TELEGRAM_VERIFIED = "telegram_verified"
    TELEGRAM_FOLLOWED = "telegram_followed"
    REFERRAL_TAG_CREATED = "referral_tag_created"
    ACCOUNT_BANNED = "account_banned"
    ACCOUNT_UNBANNED = "account_unbanned"
    BAN_EXPIRED = "ban_expired"


# ---------------------------------------------------------------------------
# Accounts — one row per waitlist identity
# ---------------------------------------------------------------------------
class Account(Base):
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(254), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    wallet_address: Mapped[str | None] = mapped_column(String(128), default=None)
    interests: Mapped[list | None] = mapped_column(JSONB, default=list)

    # Cached aggregate of points_transactions.amount
    points: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Verification flags
    email_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    telegram_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    telegram_followed: Mapped[bool] = mapped_column(Boolean, default=False)
    telegram_username: Mapped[str | None] = mapped_column(String(64), default=None)
    referral_tag: Mapped[str | None] = mapped_column(
        String(30), unique=True, nullable=True, default=None
    )

    # Referral back-reference (id only, looked up through the store)
    referred_by_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True
    )
    successful_referrals: Mapped[int] = mapped_column(Integer, default=0)

    # Embedded ban state
    banned: Mapped[bool] = mapped_column(Boolean, default=False)
    ban_reason: Mapped[str | None] = mapped_column(Text, default=None)
    banned_until: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )

    suspicion_score: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    transactions: Mapped[list[PointsTransaction]] = relationship(
        back_populates="account", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint("points >= 0", name="ck_accounts_points_non_negative"),
        Index("ix_accounts_created_at", "created_at"),
        Index("ix_accounts_banned", "banned"),
        Index("ix_accounts_referred_by", "referred_by_id"),
    )

    @property
    def tag_created(self) -> bool:
        return bool(self.referral_tag)

    @property
    def all_verifications_complete(self) -> bool:
        return bool(
            self.email_verified
            and self.telegram_verified
            and self.telegram_followed
            and self.tag_created
        )

    def __repr__(self) -> str:
        return f"<Account id={self.id} email={self.email!r} points={self.points}>"


# ---------------------------------------------------------------------------
# PointsTransaction — append-only ledger
# ---------------------------------------------------------------------------
class PointsTransaction(Base):
    __tablename__ = "points_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(String(200), nullable=False)
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSONB, nullable=True)
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )

    account: Mapped[Account] = relationship(back_populates="transactions")

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_points_transactions_amount_positive"),
        Index("ix_points_transactions_account_time", "account_id", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<PointsTransaction id={self.id} account={self.account_id} "
            f"amount={self.amount}>"
        )


# ---------------------------------------------------------------------------
# Referral — dual-completion tracker record
# ---------------------------------------------------------------------------
class Referral(Base):
    __tablename__ = "referrals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    referrer_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    referred_email: Mapped[str] = mapped_column(String(254), nullable=False)
    referred_name: Mapped[str | None] = mapped_column(String(100), default=None)
    status: Mapped[str] = mapped_column(
        String(20), default=ReferralStatus.PENDING.value, nullable=False
    )

    # Mirrored from the referred account at last check
    email_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    telegram_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    telegram_followed: Mapped[bool] = mapped_column(Boolean, default=False)
    tag_created: Mapped[bool] = mapped_column(Boolean, default=False)

    all_verifications_complete: Mapped[bool] = mapped_column(Boolean, default=False)
    points_awarded: Mapped[bool] = mapped_column(Boolean, default=False)
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        UniqueConstraint(
            "referrer_id", "referred_email", name="uq_referrals_referrer_email"
        ),
        Index("ix_referrals_referred_email", "referred_email"),
        Index("ix_referrals_complete_unpaid", "all_verifications_complete", "points_awarded"),
    )

    def __repr__(self) -> str:
        return (
            f"<Referral id={self.id} referrer={self.referrer_id} "
            f"email={self.referred_email!r} paid={self.points_awarded}>"
        )


# ---------------------------------------------------------------------------
# Task — admin-authored reference data
# ---------------------------------------------------------------------------
class Task(Base):
    __tablename__ = "tasks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    task_type: Mapped[str] = mapped_column(
        String(30), default=TaskType.CUSTOM.value, nullable=False
    )
    action_url: Mapped[str | None] = mapped_column(String(500), default=None)
    points_reward: Mapped[int] = mapped_column(Integer, default=0)
    requires_verification: Mapped[bool] = mapped_column(Boolean, default=False)
    verification_method: Mapped[str | None] = mapped_column(String(100), default=None)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_by: Mapped[int | None] = mapped_column(BigInteger, default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )

    completions: Mapped[list[TaskCompletion]] = relationship(
        back_populates="task", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint("points_reward >= 0", name="ck_tasks_reward_non_negative"),
        Index("ix_tasks_active", "is_active"),
    )

    def __repr__(self) -> str:
        return f"<Task id={self.id} title={self.title!r} reward={self.points_reward}>"


# ---------------------------------------------------------------------------
# TaskCompletion — per (account, task) state machine
# ---------------------------------------------------------------------------
class TaskCompletion(Base):
    __tablename__ = "task_completions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    task_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(20), default=CompletionStatus.PENDING.value, nullable=False
    )
    submission_link: Mapped[str | None] = mapped_column(String(500), default=None)
    submitted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    verification_data: Mapped[dict | None] = mapped_column(JSONB, default=dict)
    reviewed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    reviewed_by: Mapped[int | None] = mapped_column(BigInteger, default=None)
    rejection_reason: Mapped[str | None] = mapped_column(Text, default=None)
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    points_awarded: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    task: Mapped[Task] = relationship(back_populates="completions")

    __table_args__ = (
        UniqueConstraint("account_id", "task_id", name="uq_task_completions_account_task"),
        Index("ix_task_completions_account_status", "account_id", "status"),
        Index("ix_task_completions_status_submitted", "status", "submitted_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<TaskCompletion id={self.id} account={self.account_id} "
            f"task={self.task_id} status={self.status}>"
        )


# ---------------------------------------------------------------------------
# BotSignal — append-only suspicion events
# ---------------------------------------------------------------------------
class BotSignal(Base):
    __tablename__ = "bot_signals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str | None] = mapped_column(String(254), default=None)
    ip_address: Mapped[str | None] = mapped_column(String(45), default=None)
    user_agent: Mapped[str | None] = mapped_column(Text, default=None)
    fingerprint: Mapped[str | None] = mapped_column(String(64), default=None)
    suspicion_score: Mapped[int] = mapped_column(Integer, default=0)
    flagged_reasons: Mapped[list | None] = mapped_column(JSONB, default=list)
    blocked: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "suspicion_score >= 0 AND suspicion_score <= 100",
            name="ck_bot_signals_score_range",
        ),
        Index("ix_bot_signals_email", "email"),
        Index("ix_bot_signals_ip", "ip_address"),
        Index("ix_bot_signals_fingerprint", "fingerprint"),
        Index("ix_bot_signals_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<BotSignal id={self.id} email={self.email!r} "
            f"score={self.suspicion_score} blocked={self.blocked}>"
        )


# ---------------------------------------------------------------------------
# OnboardingEvent — append-only onboarding journal
# ---------------------------------------------------------------------------
class OnboardingEvent(Base):
    __tablename__ = "onboarding_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    ip_address: Mapped[str | None] = mapped_column(String(45), default=None)
    fingerprint: Mapped[str | None] = mapped_column(String(64), default=None)
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSONB, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )

    __table_args__ = (
        Index("ix_onboarding_events_account_type", "account_id", "event_type"),
        Index("ix_onboarding_events_ip_time", "event_type", "ip_address", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<OnboardingEvent id={self.id} account={self.account_id} "
            f"type={self.event_type}>"
        )


# ---------------------------------------------------------------------------
# Setting — key-value tuning store
# ---------------------------------------------------------------------------
class Setting(Base):
    """Key-value configuration store.

    Reward amounts and bot-scoring thresholds live here so admins can tune
    them without redeploying.  Values are stored as JSON strings.
    """
    __tablename__ = "settings"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value_json: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False, default="general")
    description: Mapped[str | None] = mapped_column(Text, default=None)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        Index("ix_settings_category", "category"),
    )

    def __repr__(self) -> str:
        return f"<Setting key={self.key!r} category={self.category!r}>"


# ---------------------------------------------------------------------------
# AdminLog — append-only audit trail
# ---------------------------------------------------------------------------
class AdminLog(Base):
    __tablename__ = "admin_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    actor_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    target_table: Mapped[str] = mapped_column(String(50), nullable=False)
    target_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    before_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    after_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )

    __table_args__ = (
        Index("ix_admin_log_actor_time", "actor_id", "timestamp"),
        Index("ix_admin_log_target", "target_table", "target_id", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<AdminLog id={self.id} actor={self.actor_id} action={self.action_type}>"
