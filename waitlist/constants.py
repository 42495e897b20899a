"""
waitlist.constants — Shared Constants
======================================

Single source of truth for reward reasons, default tuning values and the
``settings`` keys that override them.
"""

from __future__ import annotations

import re

# ---------------------------------------------------------------------------
# Reward reasons (stored on every PointsTransaction)
# ---------------------------------------------------------------------------
REASON_REFERRAL_COMPLETED = "Successful referral completed"
REASON_REFERRAL_BONUS = "Referral bonus - completed all verifications"
REASON_TELEGRAM_VERIFIED = "Telegram verified"
REASON_TAG_CREATED = "Referral tag created"
REASON_TASK_COMPLETED = "Task completed: {title}"
REASON_TASK_APPROVED = "Task approved: {title}"

DEFAULT_REJECTION_REASON = "Submission does not meet requirements"
DEFAULT_BAN_REASON = "Violation of terms of service"

# ---------------------------------------------------------------------------
# Settings keys + defaults
# ---------------------------------------------------------------------------
SETTING_REFERRER_POINTS = "rewards.referrer_points"
SETTING_REFERRED_POINTS = "rewards.referred_points"
SETTING_TELEGRAM_POINTS = "rewards.telegram_points"
SETTING_TAG_POINTS = "rewards.tag_points"
SETTING_BOT_WINDOW_SECONDS = "bot.window_seconds"
SETTING_BOT_MAX_SIGNUPS_PER_IP = "bot.max_signups_per_ip"
SETTING_BOT_SCORE_THRESHOLD = "bot.score_threshold"
SETTING_BOT_UA_PENALTY = "bot.user_agent_penalty"
SETTING_BAN_DEFAULT_REASON = "moderation.default_ban_reason"

DEFAULT_REFERRER_POINTS = 150
DEFAULT_REFERRED_POINTS = 100
DEFAULT_TELEGRAM_POINTS = 200
DEFAULT_TAG_POINTS = 100

DEFAULT_BOT_WINDOW_SECONDS = 3600
DEFAULT_BOT_MAX_SIGNUPS_PER_IP = 3
DEFAULT_BOT_SCORE_THRESHOLD = 50
DEFAULT_BOT_UA_PENALTY = 20
BOT_BLOCK_SCORE = 100
MIN_USER_AGENT_LENGTH = 10

# ---------------------------------------------------------------------------
# Referral tags
# ---------------------------------------------------------------------------
REFERRAL_TAG_PATTERN = re.compile(r"^[a-z0-9_-]{3,30}$")

HISTORY_DEFAULT_LIMIT = 50
HISTORY_MAX_LIMIT = 500
