from __future__ import annotations

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from app.api.routes.internal_helpers import assert_internal_access, raise_for_engine_error
from app.economy.eras.catalog import EraNotFoundError
from app.economy.engine import get_engine
from app.economy.rights.errors import (
    InsufficientBalanceError,
    InvalidCreditError,
    NoAccessError,
    PersistenceFailureError,
)
from app.economy.rights.types import AccessDecision, PassesAccess, VoucherAccess

router = APIRouter(tags=["internal", "rights"])


class AccessRequest(BaseModel):
    account_id: str | None = Field(default=None, max_length=64)
    era_id: str = Field(min_length=1, max_length=64)


class AccessDecisionResponse(BaseModel):
    era_id: str
    method: str
    can_play: bool
    prompt: str | None = None
    uses_remaining: int | None = None
    expires_at: datetime | None = None
    required: int | None = None
    balance: int | None = None
    plays_available: int | None = None
    label: str | None = None


class PassDebitResponse(BaseModel):
    row_id: UUID
    amount: int
    remaining: int


class ConsumeResponse(BaseModel):
    era_id: str
    method: str
    consumed: int
    remaining: int
    debits: list[PassDebitResponse]


class CreditPassesRequest(BaseModel):
    account_id: str = Field(min_length=1, max_length=64)
    amount: int = Field(gt=0, le=10_000)
    source: str = Field(min_length=1, max_length=32)
    metadata: dict[str, object] = Field(default_factory=dict)


class CreditPassesResponse(BaseModel):
    entitlement_id: UUID
    account_id: str
    amount: int
    expires_at: datetime | None
    balance: int


class BalanceResponse(BaseModel):
    account_id: str
    balance: int


def _decision_as_response(era_id: str, decision: AccessDecision) -> AccessDecisionResponse:
    response = AccessDecisionResponse(
        era_id=era_id,
        method=decision.method.value,
        can_play=decision.can_play,
        prompt=decision.prompt,
        label=getattr(decision, "label", None),
    )
    if isinstance(decision, VoucherAccess):
        response.uses_remaining = decision.uses_remaining
        response.expires_at = decision.expires_at
    elif isinstance(decision, PassesAccess):
        response.required = decision.required
        response.balance = decision.balance
        response.plays_available = decision.plays_available
    return response


@router.post("/internal/rights/resolve", response_model=AccessDecisionResponse)
async def resolve_access(payload: AccessRequest, request: Request) -> AccessDecisionResponse:
    assert_internal_access(request, scope="rights")
    try:
        decision = await get_engine().resolve(payload.account_id, payload.era_id)
    except (EraNotFoundError, PersistenceFailureError) as exc:
        raise_for_engine_error(exc)
    return _decision_as_response(payload.era_id, decision)


@router.post("/internal/rights/consume", response_model=ConsumeResponse)
async def consume_access(payload: AccessRequest, request: Request) -> ConsumeResponse:
    assert_internal_access(request, scope="rights")
    try:
        result = await get_engine().consume(payload.account_id, payload.era_id)
    except (
        EraNotFoundError,
        NoAccessError,
        InsufficientBalanceError,
        PersistenceFailureError,
    ) as exc:
        raise_for_engine_error(exc)
    return ConsumeResponse(
        era_id=result.era_id,
        method=result.method.value,
        consumed=result.consumed,
        remaining=result.remaining,
        debits=[
            PassDebitResponse(row_id=debit.row_id, amount=debit.amount, remaining=debit.remaining)
            for debit in result.debits
        ],
    )


@router.post("/internal/rights/credit", response_model=CreditPassesResponse)
async def credit_passes(payload: CreditPassesRequest, request: Request) -> CreditPassesResponse:
    assert_internal_access(request, scope="rights")
    engine = get_engine()
    try:
        entitlement = await engine.credit_passes(
            account_id=payload.account_id,
            amount=payload.amount,
            source_tag=payload.source,
            metadata=payload.metadata,
        )
        balance = await engine.pass_balance(payload.account_id)
    except (InvalidCreditError, PersistenceFailureError) as exc:
        raise_for_engine_error(exc)
    return CreditPassesResponse(
        entitlement_id=entitlement.id,
        account_id=payload.account_id,
        amount=payload.amount,
        expires_at=entitlement.expires_at,
        balance=balance,
    )


@router.get("/internal/rights/{account_id}/balance", response_model=BalanceResponse)
async def get_balance(account_id: str, request: Request) -> BalanceResponse:
    assert_internal_access(request, scope="rights")
    try:
        balance = await get_engine().pass_balance(account_id)
    except PersistenceFailureError as exc:
        raise_for_engine_error(exc)
    return BalanceResponse(account_id=account_id, balance=balance)
