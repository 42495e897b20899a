"""
waitlist.engine.bot_scoring — Signup fingerprinting & suspicion scoring
=========================================================================

Pure functions only: no database access.  The store-backed decision
pipeline lives in :mod:`waitlist.services.bot_service`, which feeds the
counts and the latest matching signal into :func:`score_signup`.
"""

from __future__ import annotations

import enum
import hashlib
from dataclasses import dataclass, field

from waitlist import constants
from waitlist.engine.rewards import FlaggedReason, SignalReason


class BlockReason(enum.StrEnum):
    TOO_MANY_FROM_EMAIL = "too_many_from_email"
    TOO_MANY_FROM_IP = "too_many_from_ip"
    SECURITY_BLOCK = "security_block"


BLOCK_MESSAGES: dict[BlockReason, str] = {
    BlockReason.TOO_MANY_FROM_EMAIL: (
        "Too many signups from this email. Please try again later."
    ),
    BlockReason.TOO_MANY_FROM_IP: (
        "Too many signups from this IP. Please try again later."
    ),
    BlockReason.SECURITY_BLOCK: "Access denied due to suspicious activity",
}


@dataclass(slots=True)
class BotVerdict:
    """Outcome of one signup evaluation."""

    allow: bool
    fingerprint: str
    score: int = 0
    block_reason: BlockReason | None = None
    flagged: list[FlaggedReason] = field(default_factory=list)

    @property
    def message(self) -> str | None:
        if self.block_reason is None:
            return None
        return BLOCK_MESSAGES[self.block_reason]


def compute_fingerprint(
    ip: str | None,
    user_agent: str | None,
    accept_language: str | None = None,
    accept_encoding: str | None = None,
) -> str:
    """Stable SHA-256 hex digest of the request's identifying headers."""
    raw = "-".join(
        part or "" for part in (ip, user_agent, accept_language, accept_encoding)
    )
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def ip_limit_reached(prior_signups: int, max_per_ip: int) -> bool:
    """True when the current signup would be the *max_per_ip*-th in the window.

    *prior_signups* excludes the signup being evaluated, so with the default
    limit of 3 the first two pass and the third is blocked.
    """
    return prior_signups + 1 >= max_per_ip


def score_signup(
    base_score: int,
    user_agent: str | None,
    *,
    ua_penalty: int = constants.DEFAULT_BOT_UA_PENALTY,
) -> tuple[int, list[FlaggedReason]]:
    """Add heuristic penalties to *base_score*.

    Returns ``(score, reasons)``.  Scores accumulate across signals and are
    not capped; only negative bases are floored at 0.
    """
    score = max(base_score, 0)
    reasons: list[FlaggedReason] = []

    if not user_agent or len(user_agent) < constants.MIN_USER_AGENT_LENGTH:
        score += ua_penalty
        reasons.append(FlaggedReason(
            SignalReason.SHORT_USER_AGENT,
            {"length": len(user_agent or "")},
        ))

    return score, reasons
