"""
waitlist.services.ban_service — Ban Gate
=========================================

Bans are stored on the account itself (``banned``, ``ban_reason``,
``banned_until``).  There is no sweeper: an expired temporary ban is
cleared by the first :func:`check` that sees it, through a conditional
UPDATE so two concurrent checks clear it exactly once.  Every entry point
that gates on ban status must call :func:`check` (the API does it in the
``require_active_account`` dependency).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy import Engine, select, update
from sqlalchemy.orm import Session

from waitlist import constants
from waitlist.database.models import Account, OnboardingEvent, OnboardingEventType
from waitlist.errors import AccountNotFound, SecurityBlock
from waitlist.services import settings_service
from waitlist.services.log_context import LogHandle

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class BanStatus:
    allowed: bool
    reason: str | None = None
    until: datetime | None = None
    expired_now: bool = False

    def raise_if_denied(self) -> None:
        if not self.allowed:
            raise SecurityBlock(
                "Your account has been banned", reason=self.reason, until=self.until
            )


def _aware(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _evaluate(
    session: Session,
    account: Account,
    now: datetime,
    log: LogHandle,
) -> BanStatus:
    if not account.banned:
        return BanStatus(allowed=True)

    until = _aware(account.banned_until)
    if until is not None and until < now:
        cleared = session.execute(
            update(Account)
            .where(
                Account.id == account.id,
                Account.banned.is_(True),
                Account.banned_until.is_not(None),
                Account.banned_until < now,
            )
            .values(banned=False, ban_reason=None, banned_until=None)
            .execution_options(synchronize_session=False)
        ).rowcount
        if cleared:
            session.add(OnboardingEvent(
                account_id=account.id,
                event_type=OnboardingEventType.BAN_EXPIRED.value,
                metadata_={"banned_until": until.isoformat()},
            ))
            session.commit()
            log.info("Temporary ban expired for account %d", account.id)
        return BanStatus(allowed=True, expired_now=bool(cleared))

    fallback = settings_service.get_str(
        session, constants.SETTING_BAN_DEFAULT_REASON, constants.DEFAULT_BAN_REASON
    )
    log.warning("Banned account %d attempted access", account.id)
    return BanStatus(allowed=False, reason=account.ban_reason or fallback, until=until)


def check(
    engine: Engine,
    account_id: int,
    *,
    now: datetime | None = None,
    log: LogHandle | None = None,
) -> BanStatus:
    """Evaluate (and lazily clear) the ban on *account_id*."""
    log = log or logger
    now = _aware(now) or datetime.now(UTC)
    with Session(engine) as session:
        account = session.get(Account, account_id)
        if account is None:
            raise AccountNotFound(f"Account {account_id} not found")
        return _evaluate(session, account, now, log)


def check_by_email(
    engine: Engine,
    email: str,
    *,
    now: datetime | None = None,
    log: LogHandle | None = None,
) -> BanStatus:
    """Same as :func:`check`, keyed by email (login path)."""
    log = log or logger
    now = _aware(now) or datetime.now(UTC)
    with Session(engine) as session:
        account = session.scalar(
            select(Account).where(Account.email == email.strip().lower())
        )
        if account is None:
            raise AccountNotFound(f"No account for {email}")
        return _evaluate(session, account, now, log)
