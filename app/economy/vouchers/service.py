from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.entitlements import Entitlement
from app.db.models.vouchers import Voucher
from app.db.repo.entitlements_repo import EntitlementsRepo
from app.db.repo.vouchers_repo import VouchersRepo
from app.economy.rights.issuance import IssuanceService
from app.economy.vouchers.codec import build_code, parse
from app.economy.vouchers.errors import AlreadyRedeemedError, InvalidVoucherError
from app.economy.vouchers.guard import ensure_redeemable
from app.economy.vouchers.types import FindOrCreateStatus

logger = structlog.get_logger(__name__)

DEFAULT_SIGNUP_BONUS = 10


def normalize_email(email: str | None) -> str | None:
    if email is None:
        return None
    normalized = email.strip().lower()
    return normalized or None


class VoucherService:
    def __init__(
        self,
        *,
        issuance: IssuanceService,
        vouchers_repo: type[VouchersRepo] = VouchersRepo,
        entitlements_repo: type[EntitlementsRepo] = EntitlementsRepo,
        default_signup_bonus: int = DEFAULT_SIGNUP_BONUS,
    ) -> None:
        self._issuance = issuance
        self._vouchers = vouchers_repo
        self._entitlements = entitlements_repo
        self._default_signup_bonus = default_signup_bonus

    async def generate(
        self,
        session: AsyncSession,
        *,
        type_token: str,
        value: str | int,
        purpose: str = "manual",
        created_by: str | None = None,
        recipient_email: str | None = None,
        reward_passes: int = 1,
        signup_bonus: int | None = None,
        suffix: str | None = None,
        now_utc: datetime | None = None,
    ) -> Voucher:
        now_utc = now_utc or datetime.now(timezone.utc)
        voucher = await self._vouchers.create(
            session,
            voucher=Voucher(
                id=uuid4(),
                voucher_code=build_code(type_token, value, suffix),
                purpose=purpose,
                created_by_account_id=created_by,
                recipient_email=normalize_email(recipient_email),
                reward_passes=reward_passes,
                signup_bonus=(
                    self._default_signup_bonus if signup_bonus is None else signup_bonus
                ),
                created_at=now_utc,
            ),
        )
        logger.info(
            "voucher_generated",
            voucher_code=voucher.voucher_code,
            purpose=purpose,
            created_by=created_by,
        )
        return voucher

    async def find_or_create(
        self,
        session: AsyncSession,
        *,
        type_token: str,
        value: str | int,
        created_by: str,
        recipient_email: str,
        purpose: str = "email_friend",
        reward_passes: int = 1,
        signup_bonus: int | None = None,
        now_utc: datetime | None = None,
    ) -> tuple[Voucher, FindOrCreateStatus]:
        existing = await self._vouchers.get_latest_from_sender_to_email(
            session,
            created_by_account_id=created_by,
            recipient_email=recipient_email,
        )
        if existing is not None:
            if existing.redeemed_at is not None:
                return existing, FindOrCreateStatus.ALREADY_REDEEMED
            return existing, FindOrCreateStatus.REUSED

        voucher = await self.generate(
            session,
            type_token=type_token,
            value=value,
            purpose=purpose,
            created_by=created_by,
            recipient_email=recipient_email,
            reward_passes=reward_passes,
            signup_bonus=signup_bonus,
            now_utc=now_utc,
        )
        return voucher, FindOrCreateStatus.CREATED

    async def redeem(
        self,
        session: AsyncSession,
        *,
        account_id: str,
        code: str,
        email: str | None = None,
        now_utc: datetime | None = None,
    ) -> Entitlement:
        now_utc = now_utc or datetime.now(timezone.utc)
        code = code.strip()

        voucher = await self._vouchers.get_by_code(session, code)
        if voucher is None:
            raise InvalidVoucherError

        ensure_redeemable(voucher, account_id, email)

        if await self._entitlements.get_by_source_voucher_code(session, code) is not None:
            raise AlreadyRedeemedError

        descriptor = parse(code)

        marked = await self._vouchers.mark_redeemed_if_available(
            session,
            voucher_code=code,
            account_id=account_id,
            now_utc=now_utc,
        )
        if not marked:
            raise AlreadyRedeemedError

        entitlement = await self._issuance.grant_from_voucher(
            session,
            account_id=account_id,
            descriptor=descriptor,
            created_by_account_id=voucher.created_by_account_id,
            recipient_email=voucher.recipient_email,
            now_utc=now_utc,
        )
        logger.info(
            "voucher_redeemed",
            account_id=account_id,
            voucher_code=code,
            rights_type=entitlement.rights_type,
            rights_value=entitlement.rights_value,
        )
        return entitlement

    async def issue_and_redeem(
        self,
        session: AsyncSession,
        *,
        account_id: str,
        type_token: str,
        value: str | int,
        purpose: str,
        recipient_email: str | None = None,
        suffix: str | None = None,
        now_utc: datetime | None = None,
    ) -> Entitlement | None:
        """System reward: a creator-less voucher redeemed straight away.

        With a fixed ``suffix`` the reward code is stable, so a repeated call
        finds the voucher it already paid out and returns ``None``.
        """
        voucher = None
        if suffix is not None:
            voucher = await self._vouchers.get_by_code(
                session, build_code(type_token, value, suffix)
            )
            if voucher is not None and voucher.redeemed_at is not None:
                logger.info(
                    "system_reward_already_paid",
                    account_id=account_id,
                    voucher_code=voucher.voucher_code,
                )
                return None

        if voucher is None:
            voucher = await self.generate(
                session,
                type_token=type_token,
                value=value,
                purpose=purpose,
                created_by=None,
                recipient_email=recipient_email,
                reward_passes=0,
                signup_bonus=0,
                suffix=suffix,
                now_utc=now_utc,
            )
        return await self.redeem(
            session,
            account_id=account_id,
            code=voucher.voucher_code,
            email=recipient_email,
            now_utc=now_utc,
        )
