"""
waitlist.services.ledger_service — Points Ledger
=================================================

The only code allowed to change ``accounts.points``.

Every award is one database transaction holding two statements:

1. ``UPDATE accounts SET points = points + :amount WHERE id = :id RETURNING points``
2. ``INSERT INTO points_transactions (...)``

The increment is a single conditional statement rather than a
read-modify-write, so concurrent awards to the same account cannot lose
updates, and the cached balance always equals the sum of the ledger.

:func:`apply_award` works inside a caller's session so the referral and
task services can bundle a reward with their own ``points_awarded`` claim.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy import Engine, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from waitlist import constants
from waitlist.database.models import Account, PointsTransaction
from waitlist.engine.rewards import AwardMetadata, parse_award_metadata
from waitlist.errors import AccountNotFound, InvalidAmount
from waitlist.services.log_context import LogHandle

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class AwardResult:
    account_id: int
    amount: int
    new_balance: int
    transaction_id: int


def _validate_amount(amount: Any) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmount()
    return amount


def _metadata_json(metadata: AwardMetadata | dict | None) -> dict | None:
    if metadata is None:
        return None
    if isinstance(metadata, AwardMetadata):
        return metadata.to_json()
    return dict(metadata)


# ---------------------------------------------------------------------------
# Award
# ---------------------------------------------------------------------------
def apply_award(
    session: Session,
    account_id: int,
    amount: int,
    reason: str,
    metadata: AwardMetadata | dict | None = None,
) -> AwardResult:
    """Stage an award inside *session* without committing.

    Raises :class:`InvalidAmount` or :class:`AccountNotFound`; in both cases
    nothing has been written.
    """
    amount = _validate_amount(amount)

    new_balance = session.execute(
        update(Account)
        .where(Account.id == account_id)
        .values(points=Account.points + amount)
        .returning(Account.points)
    ).scalar_one_or_none()
    if new_balance is None:
        raise AccountNotFound(f"Account {account_id} not found")

    tx = PointsTransaction(
        account_id=account_id,
        amount=amount,
        reason=reason,
        metadata_=_metadata_json(metadata),
        balance_after=new_balance,
    )
    session.add(tx)
    session.flush()
    return AwardResult(
        account_id=account_id,
        amount=amount,
        new_balance=new_balance,
        transaction_id=tx.id,
    )


def award(
    engine: Engine,
    account_id: int,
    amount: int,
    reason: str,
    metadata: AwardMetadata | dict | None = None,
    *,
    log: LogHandle | None = None,
) -> AwardResult:
    """Award *amount* points to *account_id* and commit.

    Either both the ledger row and the balance increment are committed, or
    neither is.
    """
    log = log or logger
    _validate_amount(amount)

    with Session(engine) as session:
        result = apply_award(session, account_id, amount, reason, metadata)
        session.commit()

    log.info(
        "Points awarded: account=%d amount=%d reason=%r balance=%d",
        account_id, amount, reason, result.new_balance,
    )
    return result


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------
def ledger_sum(session: Session, account_id: int) -> int:
    """Σ amount over every transaction of *account_id*."""
    return int(session.scalar(
        select(func.coalesce(func.sum(PointsTransaction.amount), 0))
        .where(PointsTransaction.account_id == account_id)
    ) or 0)


def verify_balance(
    engine: Engine,
    account_id: int,
    expected: int | None = None,
    *,
    log: LogHandle | None = None,
) -> bool:
    """Check the cached balance against the ledger (and *expected*, if given).

    For auditing only: logs a warning on mismatch and never raises.
    """
    log = log or logger
    try:
        with Session(engine) as session:
            account = session.get(Account, account_id)
            if account is None:
                return False
            cached = account.points
            actual = ledger_sum(session, account_id)
    except SQLAlchemyError:
        log.exception("Error verifying points balance for account %d", account_id)
        return False

    ok = cached == actual and (expected is None or cached == expected)
    if not ok:
        log.warning(
            "Points balance mismatch: account=%d cached=%d ledger=%d expected=%s",
            account_id, cached, actual, expected,
        )
    return ok


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------
def _tx_to_dict(tx: PointsTransaction) -> dict:
    meta = parse_award_metadata(tx.metadata_)
    return {
        "id": tx.id,
        "amount": tx.amount,
        "reason": tx.reason,
        "kind": meta.kind.value if meta else None,
        "metadata": tx.metadata_ or {},
        "balance_after": tx.balance_after,
        "timestamp": tx.created_at,
    }


def history(
    engine: Engine,
    account_id: int,
    limit: int = constants.HISTORY_DEFAULT_LIMIT,
) -> list[dict]:
    """Return up to *limit* transactions for *account_id*, newest first.

    Unknown accounts simply have an empty history.
    """
    limit = max(1, min(int(limit), constants.HISTORY_MAX_LIMIT))
    with Session(engine) as session:
        rows = session.scalars(
            select(PointsTransaction)
            .where(PointsTransaction.account_id == account_id)
            .order_by(PointsTransaction.created_at.desc(), PointsTransaction.id.desc())
            .limit(limit)
        ).all()
        return [_tx_to_dict(tx) for tx in rows]
