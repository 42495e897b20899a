"""
waitlist.services.bot_service — Store-backed Bot Scorer
========================================================

Runs the signup checks in order and stops at the first block:

1. Email velocity — an account with this email was created inside the
   window.
2. IP velocity — prior ``onboarding_started`` events from this IP inside
   the window; the signup that makes the count reach the limit is blocked
   and a blocking :class:`BotSignal` is recorded.
3. Standing block — the most recent signal matching the email, IP or
   fingerprint is a blocking one.
4. Heuristic score — seeded from that same signal's score; at or above the
   threshold a non-blocking signal is recorded for future correlation but
   the signup is still allowed.

The fingerprint is always returned so callers can log it with the signup.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

from sqlalchemy import Engine, func, or_, select
from sqlalchemy.orm import Session

from waitlist import constants
from waitlist.database.models import (
    Account,
    BotSignal,
    OnboardingEvent,
    OnboardingEventType,
)
from waitlist.engine.bot_scoring import (
    BlockReason,
    BotVerdict,
    ip_limit_reached,
    score_signup,
)
from waitlist.engine.rewards import FlaggedReason, SignalReason
from waitlist.services import settings_service
from waitlist.services.log_context import LogHandle

logger = logging.getLogger(__name__)


def latest_signal(
    session: Session,
    *,
    email: str | None,
    ip: str | None,
    fingerprint: str | None,
) -> BotSignal | None:
    """Most recent signal matching any of the given identities."""
    clauses = []
    if email:
        clauses.append(BotSignal.email == email)
    if ip:
        clauses.append(BotSignal.ip_address == ip)
    if fingerprint:
        clauses.append(BotSignal.fingerprint == fingerprint)
    if not clauses:
        return None
    return session.scalar(
        select(BotSignal)
        .where(or_(*clauses))
        .order_by(BotSignal.created_at.desc(), BotSignal.id.desc())
        .limit(1)
    )


def count_recent_signups_from_ip(session: Session, ip: str, since: datetime) -> int:
    return int(session.scalar(
        select(func.count())
        .select_from(OnboardingEvent)
        .where(
            OnboardingEvent.event_type == OnboardingEventType.ONBOARDING_STARTED.value,
            OnboardingEvent.ip_address == ip,
            OnboardingEvent.created_at >= since,
        )
    ) or 0)


def evaluate(
    engine: Engine,
    *,
    email: str | None,
    ip: str | None,
    fingerprint: str,
    user_agent: str | None,
    now: datetime | None = None,
    log: LogHandle | None = None,
) -> BotVerdict:
    """Decide whether a signup attempt may proceed."""
    log = log or logger
    now = now or datetime.now(UTC)
    email = email.strip().lower() if email else None

    with Session(engine) as session:
        window = settings_service.get_int(
            session, constants.SETTING_BOT_WINDOW_SECONDS, constants.DEFAULT_BOT_WINDOW_SECONDS
        )
        max_per_ip = settings_service.get_int(
            session, constants.SETTING_BOT_MAX_SIGNUPS_PER_IP,
            constants.DEFAULT_BOT_MAX_SIGNUPS_PER_IP,
        )
        threshold = settings_service.get_int(
            session, constants.SETTING_BOT_SCORE_THRESHOLD, constants.DEFAULT_BOT_SCORE_THRESHOLD
        )
        ua_penalty = settings_service.get_int(
            session, constants.SETTING_BOT_UA_PENALTY, constants.DEFAULT_BOT_UA_PENALTY
        )
        since = now - timedelta(seconds=window)

        # 1. Email velocity
        if email:
            recent = session.scalar(
                select(Account.id).where(Account.email == email, Account.created_at >= since)
            )
            if recent is not None:
                log.warning("Signup blocked: recent account for %s", email)
                return BotVerdict(
                    allow=False,
                    fingerprint=fingerprint,
                    block_reason=BlockReason.TOO_MANY_FROM_EMAIL,
                )

        # 2. IP velocity
        if ip:
            prior = count_recent_signups_from_ip(session, ip, since)
            if ip_limit_reached(prior, max_per_ip):
                reason = FlaggedReason(
                    SignalReason.IP_VELOCITY, {"prior_signups": prior, "window": window}
                )
                session.add(BotSignal(
                    email=email,
                    ip_address=ip,
                    user_agent=user_agent,
                    fingerprint=fingerprint,
                    suspicion_score=constants.BOT_BLOCK_SCORE,
                    flagged_reasons=[reason.to_json()],
                    blocked=True,
                ))
                session.commit()
                log.warning(
                    "Bot activity detected: email=%s ip=%s fingerprint=%s prior=%d",
                    email, ip, fingerprint, prior,
                )
                return BotVerdict(
                    allow=False,
                    fingerprint=fingerprint,
                    score=constants.BOT_BLOCK_SCORE,
                    block_reason=BlockReason.TOO_MANY_FROM_IP,
                    flagged=[reason],
                )

        # 3. Standing block
        previous = latest_signal(session, email=email, ip=ip, fingerprint=fingerprint)
        if previous is not None and previous.blocked:
            log.warning("Signup denied by standing bot signal %d", previous.id)
            return BotVerdict(
                allow=False,
                fingerprint=fingerprint,
                score=previous.suspicion_score,
                block_reason=BlockReason.SECURITY_BLOCK,
            )

        # 4. Heuristic score
        base = previous.suspicion_score if previous is not None else 0
        score, flagged = score_signup(base, user_agent, ua_penalty=ua_penalty)
        if score >= threshold:
            flagged = [*flagged, FlaggedReason(SignalReason.HIGH_SCORE, {"score": score})]
            session.add(BotSignal(
                email=email,
                ip_address=ip,
                user_agent=user_agent,
                fingerprint=fingerprint,
                suspicion_score=score,
                flagged_reasons=[f.to_json() for f in flagged],
                blocked=False,
            ))
            session.commit()
            log.info("Suspicious signup allowed: email=%s score=%d", email, score)

    return BotVerdict(allow=True, fingerprint=fingerprint, score=score, flagged=flagged)
