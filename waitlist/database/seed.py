"""
waitlist.database.seed — Default Settings Seeder
=================================================

Baseline tuning values seeded on first startup (reward amounts, bot-scoring
thresholds, ban messaging).

Idempotent — only inserts keys that don't already exist.  Admin edits are
never overwritten.
"""

from __future__ import annotations

import json
import logging

from sqlalchemy import Engine
from sqlalchemy.orm import Session

from waitlist import constants
from waitlist.database.models import Setting

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Default settings catalogue
# ---------------------------------------------------------------------------
DEFAULT_SETTINGS: dict[str, tuple[object, str, str]] = {
    constants.SETTING_REFERRER_POINTS: (
        constants.DEFAULT_REFERRER_POINTS, "rewards",
        "Points paid to the referrer when a referral completes",
    ),
    constants.SETTING_REFERRED_POINTS: (
        constants.DEFAULT_REFERRED_POINTS, "rewards",
        "Points paid to the referred account when its referral completes",
    ),
    constants.SETTING_TELEGRAM_POINTS: (
        constants.DEFAULT_TELEGRAM_POINTS, "rewards",
        "Points paid the first time an account verifies Telegram",
    ),
    constants.SETTING_TAG_POINTS: (
        constants.DEFAULT_TAG_POINTS, "rewards",
        "Points paid the first time an account creates its referral tag",
    ),
    constants.SETTING_BOT_WINDOW_SECONDS: (
        constants.DEFAULT_BOT_WINDOW_SECONDS, "bot_detection",
        "Rolling window for email / IP signup velocity checks",
    ),
    constants.SETTING_BOT_MAX_SIGNUPS_PER_IP: (
        constants.DEFAULT_BOT_MAX_SIGNUPS_PER_IP, "bot_detection",
        "Signups from one IP inside the window that trigger a block",
    ),
    constants.SETTING_BOT_SCORE_THRESHOLD: (
        constants.DEFAULT_BOT_SCORE_THRESHOLD, "bot_detection",
        "Suspicion score at which a non-blocking signal is recorded",
    ),
    constants.SETTING_BOT_UA_PENALTY: (
        constants.DEFAULT_BOT_UA_PENALTY, "bot_detection",
        "Score added for a missing or very short user-agent",
    ),
    constants.SETTING_BAN_DEFAULT_REASON: (
        constants.DEFAULT_BAN_REASON, "moderation",
        "Reason shown to banned accounts when none was recorded",
    ),
}
"""Each entry maps ``key`` → ``(default_value, category, description)``."""


# ---------------------------------------------------------------------------
# Seeder
# ---------------------------------------------------------------------------
def seed_default_settings(engine: Engine) -> None:
    """Insert default settings that don't yet exist."""
    session = Session(engine)
    inserted = 0
    try:
        for key, (value, category, desc) in DEFAULT_SETTINGS.items():
            existing = session.get(Setting, key)
            if existing is None:
                session.add(Setting(
                    key=key,
                    value_json=json.dumps(value),
                    category=category,
                    description=desc,
                ))
                inserted += 1
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    if inserted:
        logger.info("Seeded %d default settings.", inserted)
