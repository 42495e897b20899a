"""
waitlist.config — YAML Configuration Loader
============================================

Reads ``config.yaml`` for **infrastructure-only** settings (service
identity, frontend URL, API port).  Reward amounts and bot-scoring
thresholds live in the ``settings`` database table instead, so admins can
tune them without a redeploy.  Secrets (``DATABASE_URL``, ``JWT_SECRET``)
come from the environment / ``.env``.

Usage::

    from waitlist.config import load_config

    cfg = load_config()          # reads ./config.yaml by default
    print(cfg.service_name)      # "waitlist-api"
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml


# ---------------------------------------------------------------------------
# Typed settings object — infrastructure only
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class WaitlistConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    service_name: str
    frontend_url: str
    api_port: int

    # Optional
    admin_contact: str | None = None
    log_level: str = "INFO"

    @property
    def referral_link_base(self) -> str:
        return f"{self.frontend_url.rstrip('/')}/ref/"


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> WaitlistConfig:
    """Read *path* and return a :class:`WaitlistConfig` instance.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    return WaitlistConfig(
        service_name=raw["service_name"],
        frontend_url=raw["frontend_url"],
        api_port=int(raw["api_port"]),
        admin_contact=raw.get("admin_contact") or None,
        log_level=str(raw.get("log_level", "INFO")).upper(),
    )
