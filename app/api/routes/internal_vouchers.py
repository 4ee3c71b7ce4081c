from __future__ import annotations

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from app.api.routes.internal_helpers import assert_internal_access, raise_for_engine_error
from app.economy.engine import get_engine
from app.economy.rights.errors import PersistenceFailureError
from app.economy.vouchers.codec import describe
from app.economy.vouchers.errors import MalformedCodeError, VoucherError

router = APIRouter(tags=["internal", "vouchers"])


class RedeemVoucherRequest(BaseModel):
    account_id: str = Field(min_length=1, max_length=64)
    voucher_code: str = Field(min_length=1, max_length=160)
    email: str | None = Field(default=None, max_length=320)


class RedeemVoucherResponse(BaseModel):
    entitlement_id: UUID
    rights_type: str
    rights_value: str
    uses_remaining: int
    expires_at: datetime | None


class GenerateVoucherRequest(BaseModel):
    type_token: str = Field(min_length=1, max_length=64)
    value: str = Field(min_length=1, max_length=16)
    purpose: str = Field(default="manual", min_length=1, max_length=32)
    created_by: str | None = Field(default=None, max_length=64)
    recipient_email: str | None = Field(default=None, max_length=320)
    reward_passes: int = Field(default=1, ge=0)
    signup_bonus: int | None = Field(default=None, ge=0)


class GenerateVoucherResponse(BaseModel):
    voucher_code: str
    purpose: str
    created_at: datetime | None = None


class VoucherPreviewResponse(BaseModel):
    voucher_code: str
    is_valid: bool
    title: str
    description: str
    display_text: str | None = None


@router.post("/internal/vouchers/redeem", response_model=RedeemVoucherResponse)
async def redeem_voucher(payload: RedeemVoucherRequest, request: Request) -> RedeemVoucherResponse:
    assert_internal_access(request, scope="vouchers")
    try:
        entitlement = await get_engine().redeem_voucher(
            account_id=payload.account_id,
            code=payload.voucher_code,
            email=payload.email,
        )
    except (VoucherError, PersistenceFailureError) as exc:
        raise_for_engine_error(exc)
    return RedeemVoucherResponse(
        entitlement_id=entitlement.id,
        rights_type=entitlement.rights_type,
        rights_value=entitlement.rights_value,
        uses_remaining=entitlement.uses_remaining,
        expires_at=entitlement.expires_at,
    )


@router.post("/internal/vouchers/generate", response_model=GenerateVoucherResponse)
async def generate_voucher(
    payload: GenerateVoucherRequest,
    request: Request,
) -> GenerateVoucherResponse:
    assert_internal_access(request, scope="vouchers")
    try:
        voucher = await get_engine().generate_voucher(
            type_token=payload.type_token,
            value=payload.value,
            purpose=payload.purpose,
            created_by=payload.created_by,
            recipient_email=payload.recipient_email,
            reward_passes=payload.reward_passes,
            signup_bonus=payload.signup_bonus,
        )
    except (MalformedCodeError, PersistenceFailureError) as exc:
        raise_for_engine_error(exc)
    return GenerateVoucherResponse(
        voucher_code=voucher.voucher_code,
        purpose=voucher.purpose,
        created_at=voucher.created_at,
    )


@router.get("/internal/vouchers/{voucher_code}/preview", response_model=VoucherPreviewResponse)
async def preview_voucher(voucher_code: str, request: Request) -> VoucherPreviewResponse:
    assert_internal_access(request, scope="vouchers")
    display = describe(voucher_code)
    return VoucherPreviewResponse(
        voucher_code=voucher_code,
        is_valid=display.is_valid,
        title=display.title,
        description=display.description,
        display_text=display.display_text,
    )
