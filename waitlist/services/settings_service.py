"""
waitlist.services.settings_service — Typed settings access
============================================================

Read/write access to the ``settings`` table.  Services read tuning values
through :func:`get_int` / :func:`get_str` inside their own session so a
changed setting takes effect on the next call without a restart.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from waitlist.database.models import Setting

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

def get_setting_value(session: Session, key: str, default=None):
    """Read a single setting's parsed value from an existing session.

    Returns the JSON-decoded value, or *default* when the key is missing.
    """
    row = session.get(Setting, key)
    if row is None:
        return default
    try:
        return json.loads(row.value_json)
    except (json.JSONDecodeError, TypeError):
        return row.value_json


def get_int(session: Session, key: str, default: int) -> int:
    value = get_setting_value(session, key, default)
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.warning("Setting %s is not an integer (%r); using %d", key, value, default)
        return default


def get_str(session: Session, key: str, default: str) -> str:
    value = get_setting_value(session, key, default)
    return str(value) if value not in (None, "") else default


def get_all_settings(engine) -> list[dict]:
    """Fetch every setting, ordered by category then key."""
    with Session(engine) as session:
        rows = session.scalars(
            select(Setting).order_by(Setting.category, Setting.key)
        ).all()
        return [
            {
                "key": r.key,
                "value": get_setting_value(session, r.key),
                "category": r.category,
                "description": r.description,
            }
            for r in rows
        ]


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------

def upsert_setting(
    engine,
    *,
    key: str,
    value: Any,
    category: str | None = None,
    description: str | None = None,
) -> None:
    """Insert or update a single setting."""
    value_json = json.dumps(value)
    with Session(engine) as session:
        existing = session.get(Setting, key)
        if existing:
            existing.value_json = value_json
            if category:
                existing.category = category
            if description is not None:
                existing.description = description
        else:
            session.add(Setting(
                key=key,
                value_json=value_json,
                category=category or "general",
                description=description,
            ))
        session.commit()
    logger.info("Setting %s updated", key)
