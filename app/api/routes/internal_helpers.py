from __future__ import annotations

from typing import NoReturn

import structlog
from fastapi import HTTPException, Request

from app.core.config import get_settings
from app.economy.eras.catalog import EraNotFoundError
from app.economy.rights.errors import (
    InsufficientBalanceError,
    InvalidCreditError,
    NoAccessError,
    PersistenceFailureError,
)
from app.economy.rights.types import ExclusiveBlocked, GuestBlocked, PassesAccess
from app.economy.vouchers.errors import (
    AlreadyRedeemedError,
    EmailMismatchError,
    InvalidVoucherError,
    MalformedCodeError,
    SelfRedemptionError,
    VoucherDeniedError,
)
from app.services.internal_auth import (
    extract_client_ip,
    is_client_ip_allowed,
    is_internal_request_authenticated,
)

logger = structlog.get_logger(__name__)

DENIAL_CODES: dict[type[VoucherDeniedError], tuple[int, str]] = {
    SelfRedemptionError: (403, "E_VOUCHER_SELF_REDEMPTION"),
    EmailMismatchError: (403, "E_VOUCHER_EMAIL_MISMATCH"),
    AlreadyRedeemedError: (409, "E_VOUCHER_ALREADY_REDEEMED"),
}


def assert_internal_access(request: Request, *, scope: str) -> None:
    settings = get_settings()
    client_ip = extract_client_ip(
        request,
        trusted_proxies=settings.internal_api_trusted_proxies,
    )

    if not is_client_ip_allowed(client_ip=client_ip, allowlist=settings.internal_api_allowlist):
        logger.warning("internal_auth_failed", scope=scope, reason="ip_not_allowed", client_ip=client_ip)
        raise HTTPException(status_code=403, detail={"code": "E_FORBIDDEN"})

    if not is_internal_request_authenticated(request, expected_token=settings.internal_api_token):
        logger.warning(
            "internal_auth_failed",
            scope=scope,
            reason="invalid_credentials",
            client_ip=client_ip,
        )
        raise HTTPException(status_code=403, detail={"code": "E_FORBIDDEN"})


def raise_for_access_denial(exc: NoAccessError) -> NoReturn:
    decision = exc.decision
    detail = {"method": decision.method.value, "prompt": decision.prompt}
    if isinstance(decision, GuestBlocked):
        raise HTTPException(status_code=403, detail={"code": "E_SIGN_IN_REQUIRED", **detail}) from exc
    if isinstance(decision, ExclusiveBlocked):
        raise HTTPException(
            status_code=403,
            detail={"code": "E_EXCLUSIVE", "label": decision.label, **detail},
        ) from exc
    if isinstance(decision, PassesAccess):
        raise HTTPException(
            status_code=402,
            detail={
                "code": "E_PASSES_REQUIRED",
                "required": decision.required,
                "balance": decision.balance,
                **detail,
            },
        ) from exc
    raise HTTPException(status_code=403, detail={"code": "E_NO_ACCESS", **detail}) from exc


def raise_for_engine_error(exc: Exception) -> NoReturn:
    """Maps engine exceptions to the internal API error contract."""
    if isinstance(exc, NoAccessError):
        raise_for_access_denial(exc)
    if isinstance(exc, MalformedCodeError):
        raise HTTPException(status_code=400, detail={"code": "E_VOUCHER_MALFORMED"}) from exc
    if isinstance(exc, InvalidVoucherError):
        raise HTTPException(status_code=404, detail={"code": "E_VOUCHER_INVALID"}) from exc
    if isinstance(exc, VoucherDeniedError):
        status_code, code = DENIAL_CODES.get(type(exc), (403, "E_VOUCHER_DENIED"))
        raise HTTPException(
            status_code=status_code,
            detail={"code": code, "message": exc.message},
        ) from exc
    if isinstance(exc, InsufficientBalanceError):
        raise HTTPException(status_code=409, detail={"code": "E_TRY_AGAIN"}) from exc
    if isinstance(exc, EraNotFoundError):
        raise HTTPException(status_code=404, detail={"code": "E_ERA_NOT_FOUND"}) from exc
    if isinstance(exc, InvalidCreditError):
        raise HTTPException(status_code=422, detail={"code": "E_INVALID_CREDIT"}) from exc
    if isinstance(exc, PersistenceFailureError):
        raise HTTPException(status_code=503, detail={"code": "E_TRY_LATER"}) from exc
    raise exc
