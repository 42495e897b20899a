"""
waitlist — Waitlist & Referral Onboarding Backend
==================================================
Signup, verification flags, referral rewards, engagement tasks and
moderation for a pre-launch waitlist.  The reward integrity core makes
sure every reward is paid at most once and only to eligible accounts.

Package layout::

    waitlist/
    ├── config.py            # YAML → typed Python config
    ├── constants.py         # Reward reasons, defaults, settings keys
    ├── errors.py            # Typed service-layer failures
    ├── database/
    │   ├── engine.py        # SQLAlchemy engine + async helper
    │   ├── models.py        # All ORM models
    │   └── seed.py          # Default settings seeder
    ├── engine/
    │   ├── rewards.py       # Tagged reward / signal metadata
    │   └── bot_scoring.py   # Fingerprint + suspicion score (pure)
    ├── services/
    │   ├── ledger_service.py        # PointsLedger
    │   ├── referral_service.py      # ReferralTracker
    │   ├── task_service.py          # TaskLifecycle
    │   ├── ban_service.py           # BanGate
    │   ├── bot_service.py           # BotScorer (store-backed)
    │   ├── onboarding_service.py    # Signup + verification flags
    │   ├── admin_service.py         # Audit-logged admin mutations
    │   ├── reconciliation_service.py # Ledger audit + reward retries
    │   ├── settings_service.py      # Typed settings access
    │   └── stats_service.py         # Dashboard counters
    └── api/
        ├── main.py          # FastAPI app
        ├── deps.py          # Engine, JWT, ban-gate dependencies
        └── routes/          # Onboarding, account and admin endpoints
"""

__version__ = "0.1.0"
