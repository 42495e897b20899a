"""
tests/test_jwt_startup — JWT Secret Validation at Startup
==========================================================
The API must refuse to start when JWT_SECRET is missing, blank, too short,
or a known weak default.
"""

from __future__ import annotations

import os
from unittest.mock import patch

import pytest

from waitlist.api import deps


class TestJWTSecretValidation:
    """Prove that _load_jwt_secret() rejects bad secrets and accepts good ones."""

    def test_rejects_missing_secret(self):
        with patch.dict(os.environ, {}, clear=False):
            os.environ.pop("JWT_SECRET", None)
            with pytest.raises(RuntimeError, match="JWT_SECRET environment variable is not set"):
                deps._load_jwt_secret()

    def test_rejects_empty_secret(self):
        with patch.dict(os.environ, {"JWT_SECRET": ""}):
            with pytest.raises(RuntimeError, match="JWT_SECRET environment variable is not set"):
                deps._load_jwt_secret()

    def test_rejects_known_weak_default(self):
        with patch.dict(os.environ, {"JWT_SECRET": "waitlist-dev-secret-change-me"}):
            with pytest.raises(RuntimeError, match="known weak default"):
                deps._load_jwt_secret()

    def test_rejects_short_secret(self):
        with patch.dict(os.environ, {"JWT_SECRET": "tooshort"}):
            with pytest.raises(RuntimeError, match="too short"):
                deps._load_jwt_secret()

    def test_accepts_strong_secret(self):
        good_secret = "a" * 64
        with patch.dict(os.environ, {"JWT_SECRET": good_secret}):
            assert deps._load_jwt_secret() == good_secret


class TestTokenSubject:
    def test_non_numeric_subject_rejected(self):
        import jwt
        from fastapi import HTTPException

        token = jwt.encode({"sub": "abc"}, deps.JWT_SECRET, algorithm=deps.JWT_ALGORITHM)
        with pytest.raises(HTTPException) as exc_info:
            deps.get_current_account(f"Bearer {token}")
        assert exc_info.value.status_code == 401

    def test_numeric_subject_returned_as_int(self):
        import jwt

        token = jwt.encode({"sub": "42"}, deps.JWT_SECRET, algorithm=deps.JWT_ALGORITHM)
        assert deps.get_current_account(f"Bearer {token}") == 42
