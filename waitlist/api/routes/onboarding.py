"""
waitlist.api.routes.onboarding — Public signup endpoint
========================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from waitlist.api.deps import get_config, get_engine, get_request_log
from waitlist.config import WaitlistConfig
from waitlist.engine.bot_scoring import compute_fingerprint
from waitlist.services import onboarding_service

router = APIRouter(prefix="/onboarding", tags=["onboarding"])


class SignupRequest(BaseModel):
    email: str = Field(min_length=3, max_length=254)
    name: str = Field(min_length=1, max_length=100)
    referral_code: str | None = Field(default=None, max_length=30)
    interests: list[str] = Field(default_factory=list)
    wallet_address: str | None = Field(default=None, max_length=128)


def client_ip(request: Request) -> str | None:
    """First hop of ``X-Forwarded-For`` when behind a proxy, else the peer address."""
    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded.strip():
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


@router.post("/signup", status_code=201)
def signup(
    body: SignupRequest,
    request: Request,
    engine=Depends(get_engine),
    log=Depends(get_request_log),
):
    ip = client_ip(request)
    user_agent = request.headers.get("user-agent")
    fingerprint = compute_fingerprint(
        ip,
        user_agent,
        request.headers.get("accept-language"),
        request.headers.get("accept-encoding"),
    )
    result = onboarding_service.signup(
        engine,
        body.email,
        body.name,
        referral_code=body.referral_code,
        ip=ip,
        fingerprint=fingerprint,
        user_agent=user_agent,
        interests=body.interests,
        wallet_address=body.wallet_address,
        log=log,
    )
    return {
        "success": True,
        "message": "Signup successful. Please check your email to verify your account.",
        "data": {
            "accountId": result.account_id,
            "email": result.email,
            "referred": result.referred_by_id is not None,
        },
    }


@router.get("/referral-link/{tag}")
def referral_link(tag: str, cfg: WaitlistConfig = Depends(get_config)):
    """Shareable link for a referral tag."""
    tag = onboarding_service.normalize_tag(tag)
    return {"tag": tag, "link": f"{cfg.referral_link_base}{tag}"}


@router.get("/info")
def public_info(cfg: WaitlistConfig = Depends(get_config)):
    """Static details the signup page shows."""
    return {
        "serviceName": cfg.service_name,
        "referralLinkBase": cfg.referral_link_base,
        "adminContact": cfg.admin_contact,
    }
