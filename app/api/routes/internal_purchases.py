from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

import structlog
from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from app.api.routes.internal_helpers import assert_internal_access, raise_for_engine_error
from app.economy.eras.catalog import EraNotFoundError
from app.economy.engine import get_engine
from app.economy.rights.errors import InvalidCreditError, PersistenceFailureError

router = APIRouter(tags=["internal", "purchases"])
logger = structlog.get_logger(__name__)


class PurchaseEventRequest(BaseModel):
    account_id: str = Field(min_length=1, max_length=64)
    era_id: str = Field(min_length=1, max_length=64)
    purchase_reference: str = Field(min_length=1, max_length=128)
    status: Literal["succeeded", "failed"] = "succeeded"
    amount_minor: int | None = Field(default=None, ge=0)
    currency: str | None = Field(default=None, max_length=8)


class PurchaseEventResponse(BaseModel):
    received: bool
    granted: bool
    idempotent_replay: bool = False
    entitlement_id: UUID | None = None
    expires_at: datetime | None = None


@router.post("/internal/purchases/completed", response_model=PurchaseEventResponse)
async def purchase_completed(
    payload: PurchaseEventRequest,
    request: Request,
) -> PurchaseEventResponse:
    assert_internal_access(request, scope="purchases")
    if payload.status == "failed":
        logger.info(
            "purchase_failed_received",
            account_id=payload.account_id,
            era_id=payload.era_id,
            purchase_reference=payload.purchase_reference,
        )
        return PurchaseEventResponse(received=True, granted=False)

    metadata: dict[str, object] = {}
    if payload.amount_minor is not None:
        metadata["amount_minor"] = payload.amount_minor
    if payload.currency:
        metadata["currency"] = payload.currency.upper()

    try:
        grant = await get_engine().grant_era_purchase(
            account_id=payload.account_id,
            era_id=payload.era_id,
            purchase_reference=payload.purchase_reference,
            metadata=metadata,
        )
    except (EraNotFoundError, InvalidCreditError, PersistenceFailureError) as exc:
        raise_for_engine_error(exc)
    return PurchaseEventResponse(
        received=True,
        granted=True,
        idempotent_replay=grant.idempotent_replay,
        entitlement_id=grant.entitlement.id,
        expires_at=grant.entitlement.expires_at,
    )
