from __future__ import annotations

from app.economy.vouchers.errors import (
    AlreadyRedeemedError,
    EmailMismatchError,
    SelfRedemptionError,
    VoucherDeniedError,
)
from app.economy.vouchers.types import Allow, Deny, DenyReason, GuardDecision, RedeemableGrant

DENIAL_ERRORS: dict[DenyReason, type[VoucherDeniedError]] = {
    DenyReason.SELF_REDEMPTION: SelfRedemptionError,
    DenyReason.EMAIL_MISMATCH: EmailMismatchError,
    DenyReason.ALREADY_REDEEMED: AlreadyRedeemedError,
}


def _deny(reason: DenyReason) -> Deny:
    return Deny(reason=reason, message=DENIAL_ERRORS[reason].message)


def check_redeemable(
    grant: RedeemableGrant,
    redeeming_account_id: str,
    redeeming_email: str | None = None,
) -> GuardDecision:
    """Apply redemption rules in order; the first failing rule wins."""
    if (
        grant.created_by_account_id is not None
        and grant.created_by_account_id == redeeming_account_id
    ):
        return _deny(DenyReason.SELF_REDEMPTION)

    if (
        redeeming_email
        and grant.recipient_email
        and grant.recipient_email.strip().lower() != redeeming_email.strip().lower()
    ):
        return _deny(DenyReason.EMAIL_MISMATCH)

    if grant.redeemed_at is not None:
        return _deny(DenyReason.ALREADY_REDEEMED)

    return Allow()


def ensure_redeemable(
    grant: RedeemableGrant,
    redeeming_account_id: str,
    redeeming_email: str | None = None,
) -> None:
    decision = check_redeemable(grant, redeeming_account_id, redeeming_email)
    if isinstance(decision, Deny):
        raise DENIAL_ERRORS[decision.reason]


class AbuseGuard:
    check_redeemable = staticmethod(check_redeemable)
    ensure_redeemable = staticmethod(ensure_redeemable)
