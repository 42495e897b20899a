"""
waitlist.engine.rewards — Tagged metadata for ledger entries and signals
=========================================================================

Every producer of a PointsTransaction or BotSignal describes *why* with one
of the frozen dataclasses below.  Each carries a ``kind`` discriminator so
the JSON stored in ``metadata`` / ``flagged_reasons`` can be decoded back
into the same shape by :func:`parse_award_metadata`.
"""

from __future__ import annotations

import enum
from dataclasses import asdict, dataclass, field
from typing import Any, ClassVar

__all__ = [
    "AwardKind",
    "AwardMetadata",
    "ReferrerReward",
    "ReferredReward",
    "TaskReward",
    "TelegramReward",
    "TagReward",
    "ManualReward",
    "SignalReason",
    "FlaggedReason",
    "parse_award_metadata",
]


class AwardKind(enum.StrEnum):
    REFERRER = "referrer"
    REFERRED = "referred"
    TASK = "task"
    TELEGRAM = "telegram"
    TAG = "tag"
    MANUAL = "manual"


# ---------------------------------------------------------------------------
# Award metadata variants
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class AwardMetadata:
    """Base for all award metadata variants."""

    kind: ClassVar[AwardKind]

    def to_json(self) -> dict[str, Any]:
        data = asdict(self)
        data["kind"] = self.kind.value
        return data


@dataclass(frozen=True, slots=True)
class ReferrerReward(AwardMetadata):
    kind: ClassVar[AwardKind] = AwardKind.REFERRER

    referral_id: int
    referred_email: str


@dataclass(frozen=True, slots=True)
class ReferredReward(AwardMetadata):
    kind: ClassVar[AwardKind] = AwardKind.REFERRED

    referral_id: int
    referrer_email: str


@dataclass(frozen=True, slots=True)
class TaskReward(AwardMetadata):
    kind: ClassVar[AwardKind] = AwardKind.TASK

    task_id: int
    task_type: str
    completion_id: int
    reviewed_by: int | None = None


@dataclass(frozen=True, slots=True)
class TelegramReward(AwardMetadata):
    kind: ClassVar[AwardKind] = AwardKind.TELEGRAM

    username: str


@dataclass(frozen=True, slots=True)
class TagReward(AwardMetadata):
    kind: ClassVar[AwardKind] = AwardKind.TAG

    tag: str


@dataclass(frozen=True, slots=True)
class ManualReward(AwardMetadata):
    kind: ClassVar[AwardKind] = AwardKind.MANUAL

    admin_id: int | None = None
    note: str = ""
    extra: dict[str, Any] = field(default_factory=dict)


_AWARD_TYPES: dict[str, type[AwardMetadata]] = {
    cls.kind.value: cls
    for cls in (
        ReferrerReward,
        ReferredReward,
        TaskReward,
        TelegramReward,
        TagReward,
        ManualReward,
    )
}


def parse_award_metadata(data: dict[str, Any] | None) -> AwardMetadata | None:
    """Decode stored ledger metadata back into its tagged variant.

    Returns ``None`` for empty metadata.  Unknown kinds (or untagged blobs
    written by older code) come back as :class:`ManualReward` with the raw
    payload kept under ``extra``.
    """
    if not data:
        return None
    payload = dict(data)
    kind = payload.pop("kind", None)
    cls = _AWARD_TYPES.get(kind) if kind else None
    if cls is None:
        return ManualReward(extra=payload)
    try:
        return cls(**payload)
    except TypeError:
        return ManualReward(extra=payload)


# ---------------------------------------------------------------------------
# Bot signal reasons
# ---------------------------------------------------------------------------
class SignalReason(enum.StrEnum):
    IP_VELOCITY = "ip_velocity"
    HIGH_SCORE = "high_score"
    SHORT_USER_AGENT = "short_user_agent"


_SIGNAL_TEXT: dict[SignalReason, str] = {
    SignalReason.IP_VELOCITY: "too many signups from same IP",
    SignalReason.HIGH_SCORE: "high suspicious score",
    SignalReason.SHORT_USER_AGENT: "missing or short user-agent",
}


@dataclass(frozen=True, slots=True)
class FlaggedReason:
    """One entry of ``BotSignal.flagged_reasons``."""

    code: SignalReason
    detail: dict[str, Any] = field(default_factory=dict)

    @property
    def reason(self) -> str:
        return _SIGNAL_TEXT[self.code]

    def to_json(self) -> dict[str, Any]:
        return {"kind": self.code.value, "reason": self.reason, **self.detail}
