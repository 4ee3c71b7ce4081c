from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.vouchers import Voucher


class VouchersRepo:
    @staticmethod
    async def create(session: AsyncSession, *, voucher: Voucher) -> Voucher:
        session.add(voucher)
        await session.flush()
        return voucher

    @staticmethod
    async def get_by_code(session: AsyncSession, voucher_code: str) -> Voucher | None:
        stmt = select(Voucher).where(Voucher.voucher_code == voucher_code)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_latest_from_sender_to_email(
        session: AsyncSession,
        *,
        created_by_account_id: str,
        recipient_email: str,
    ) -> Voucher | None:
        stmt = (
            select(Voucher)
            .where(
                Voucher.created_by_account_id == created_by_account_id,
                func.lower(Voucher.recipient_email) == recipient_email.lower(),
            )
            .order_by(Voucher.created_at.desc(), Voucher.id.desc())
            .limit(1)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_pending_referral_for_email(
        session: AsyncSession,
        *,
        recipient_email: str,
    ) -> Voucher | None:
        stmt = (
            select(Voucher)
            .where(
                func.lower(Voucher.recipient_email) == recipient_email.lower(),
                Voucher.created_by_account_id.is_not(None),
                Voucher.redeemed_at.is_(None),
            )
            .order_by(Voucher.created_at.desc(), Voucher.id.desc())
            .limit(1)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def has_redeemed_referral_for_account(
        session: AsyncSession,
        *,
        recipient_email: str,
        account_id: str,
    ) -> bool:
        stmt = select(Voucher.id).where(
            func.lower(Voucher.recipient_email) == recipient_email.lower(),
            Voucher.created_by_account_id.is_not(None),
            Voucher.redeemed_by_account_id == account_id,
        )
        result = await session.execute(stmt.limit(1))
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def mark_redeemed_if_available(
        session: AsyncSession,
        *,
        voucher_code: str,
        account_id: str,
        now_utc: datetime,
    ) -> bool:
        stmt = (
            update(Voucher)
            .where(
                Voucher.voucher_code == voucher_code,
                Voucher.redeemed_at.is_(None),
                or_(
                    Voucher.created_by_account_id.is_(None),
                    Voucher.created_by_account_id != account_id,
                ),
            )
            .values(redeemed_at=now_utc, redeemed_by_account_id=account_id)
            .returning(Voucher.id)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def force_mark_redeemed(
        session: AsyncSession,
        *,
        voucher_code: str,
        account_id: str,
        now_utc: datetime,
    ) -> bool:
        stmt = (
            update(Voucher)
            .where(
                Voucher.voucher_code == voucher_code,
                Voucher.redeemed_at.is_(None),
            )
            .values(redeemed_at=now_utc, redeemed_by_account_id=account_id)
            .returning(Voucher.id)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None
