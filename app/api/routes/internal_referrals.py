from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from app.api.routes.internal_helpers import assert_internal_access, raise_for_engine_error
from app.economy.eras.catalog import EraNotFoundError
from app.economy.engine import get_engine
from app.economy.referrals.invites import InvalidInviteError
from app.economy.referrals.types import (
    AlreadyProcessed,
    NoReferral,
    PartialFailure,
    RewardOutcome,
    Rewarded,
)
from app.economy.rights.errors import PersistenceFailureError

router = APIRouter(tags=["internal", "referrals"])


class SignupRequest(BaseModel):
    account_id: str = Field(min_length=1, max_length=64)
    email: str = Field(min_length=3, max_length=320)


class SignupResponse(BaseModel):
    outcome: str
    referrer_id: str | None = None
    reward_amount: int | None = None
    reward_kind: str | None = None
    stage: str | None = None
    error: str | None = None
    welcome_grant_error: str | None = None


class InviteRequest(BaseModel):
    sender_account_id: str = Field(min_length=1, max_length=64)
    sender_name: str = Field(default="", max_length=64)
    friend_email: str = Field(min_length=3, max_length=320)
    era_id: str = Field(min_length=1, max_length=64)


class InviteResponse(BaseModel):
    voucher_code: str
    status: str
    redeem_link: str
    sender_rewarded: bool
    email_sent: bool
    email_error: str | None = None


def _outcome_as_response(outcome: RewardOutcome) -> SignupResponse:
    if isinstance(outcome, Rewarded):
        return SignupResponse(
            outcome="rewarded",
            referrer_id=outcome.referrer_id,
            reward_amount=outcome.reward_amount,
            reward_kind=outcome.reward_kind,
            welcome_grant_error=outcome.welcome_grant_error,
        )
    if isinstance(outcome, PartialFailure):
        return SignupResponse(
            outcome="partial_failure",
            referrer_id=outcome.referrer_id,
            stage=outcome.stage.value,
            error=outcome.error,
        )
    if isinstance(outcome, AlreadyProcessed):
        return SignupResponse(outcome="already_processed")
    if isinstance(outcome, NoReferral):
        return SignupResponse(outcome="no_referral")
    raise TypeError(f"unhandled reward outcome: {type(outcome).__name__}")


@router.post("/internal/referrals/signup", response_model=SignupResponse)
async def process_signup(payload: SignupRequest, request: Request) -> SignupResponse:
    assert_internal_access(request, scope="referrals")
    try:
        outcome = await get_engine().process_signup(
            account_id=payload.account_id,
            email=payload.email,
        )
    except PersistenceFailureError as exc:
        raise_for_engine_error(exc)
    return _outcome_as_response(outcome)


@router.post("/internal/referrals/invite", response_model=InviteResponse)
async def send_invite(payload: InviteRequest, request: Request) -> InviteResponse:
    assert_internal_access(request, scope="referrals")
    try:
        result = await get_engine().send_invite(
            sender_account_id=payload.sender_account_id,
            sender_name=payload.sender_name,
            friend_email=payload.friend_email,
            era_id=payload.era_id,
        )
    except InvalidInviteError as exc:
        raise HTTPException(status_code=400, detail={"code": "E_INVALID_INVITE"}) from exc
    except (EraNotFoundError, PersistenceFailureError) as exc:
        raise_for_engine_error(exc)
    return InviteResponse(
        voucher_code=result.voucher_code,
        status=result.status,
        redeem_link=result.redeem_link,
        sender_rewarded=result.sender_rewarded,
        email_sent=result.email_sent,
        email_error=result.email_error,
    )
