"""
waitlist.services.log_context — Request-scoped logging handles
===============================================================

Core operations accept an optional ``log`` argument instead of reaching for
a process-wide logger.  The API builds one :class:`RequestLogger` per
request so every line a service writes carries the request id and the
acting account; tests and scripts simply omit it and get the module logger.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import MutableMapping
from typing import Any

LogHandle = logging.Logger | logging.LoggerAdapter


class RequestLogger(logging.LoggerAdapter):
    """Prefixes each message with ``[req=<id> acct=<id>]``."""

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        extra = self.extra or {}
        prefix = f"[req={extra.get('request_id', '-')}"
        if extra.get("account_id") is not None:
            prefix += f" acct={extra['account_id']}"
        prefix += "]"
        kwargs.setdefault("extra", {}).update(extra)
        return f"{prefix} {msg}", kwargs


def request_logger(
    name: str = "waitlist",
    *,
    request_id: str | None = None,
    account_id: int | None = None,
) -> RequestLogger:
    """Build a :class:`RequestLogger` for one inbound request."""
    return RequestLogger(
        logging.getLogger(name),
        {"request_id": request_id or uuid.uuid4().hex[:12], "account_id": account_id},
    )
