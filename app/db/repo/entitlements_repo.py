from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.entitlements import Entitlement


def _is_active_clause(now_utc: datetime):
    return and_(
        or_(Entitlement.uses_remaining == -1, Entitlement.uses_remaining > 0),
        or_(Entitlement.expires_at.is_(None), Entitlement.expires_at > now_utc),
    )


class EntitlementsRepo:
    @staticmethod
    async def create(session: AsyncSession, *, entitlement: Entitlement) -> Entitlement:
        session.add(entitlement)
        await session.flush()
        return entitlement

    @staticmethod
    async def get_by_id(session: AsyncSession, entitlement_id: UUID) -> Entitlement | None:
        return await session.get(Entitlement, entitlement_id)

    @staticmethod
    async def get_by_source_voucher_code(
        session: AsyncSession,
        voucher_code: str,
    ) -> Entitlement | None:
        stmt = select(Entitlement).where(Entitlement.source_voucher_code == voucher_code)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_purchase_reference(
        session: AsyncSession,
        purchase_reference: str,
    ) -> Entitlement | None:
        stmt = select(Entitlement).where(Entitlement.purchase_reference == purchase_reference)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def list_active_era_rows(
        session: AsyncSession,
        *,
        account_id: str,
        era_id: str,
        now_utc: datetime,
    ) -> list[Entitlement]:
        stmt = (
            select(Entitlement)
            .where(
                Entitlement.account_id == account_id,
                Entitlement.rights_type == "era",
                Entitlement.rights_value == era_id,
                _is_active_clause(now_utc),
            )
            .order_by(Entitlement.created_at.asc(), Entitlement.id.asc())
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def list_active_pass_rows(
        session: AsyncSession,
        *,
        account_id: str,
        now_utc: datetime,
    ) -> list[Entitlement]:
        stmt = (
            select(Entitlement)
            .where(
                Entitlement.account_id == account_id,
                Entitlement.rights_type == "pass",
                Entitlement.uses_remaining > 0,
                or_(Entitlement.expires_at.is_(None), Entitlement.expires_at > now_utc),
            )
            .order_by(Entitlement.created_at.asc(), Entitlement.id.asc())
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def sum_active_pass_balance(
        session: AsyncSession,
        *,
        account_id: str,
        now_utc: datetime,
    ) -> int:
        stmt = select(func.coalesce(func.sum(Entitlement.uses_remaining), 0)).where(
            Entitlement.account_id == account_id,
            Entitlement.rights_type == "pass",
            Entitlement.uses_remaining > 0,
            or_(Entitlement.expires_at.is_(None), Entitlement.expires_at > now_utc),
        )
        result = await session.execute(stmt)
        return int(result.scalar_one() or 0)

    @staticmethod
    async def decrement_if_available(
        session: AsyncSession,
        *,
        entitlement_id: UUID,
        amount: int,
        now_utc: datetime,
    ) -> int | None:
        """Single conditional UPDATE; returns the new balance or None when nothing matched."""
        if amount <= 0:
            raise ValueError("amount must be positive")

        stmt = (
            update(Entitlement)
            .where(
                Entitlement.id == entitlement_id,
                Entitlement.uses_remaining >= amount,
                or_(Entitlement.expires_at.is_(None), Entitlement.expires_at > now_utc),
            )
            .values(
                uses_remaining=Entitlement.uses_remaining - amount,
                updated_at=now_utc,
            )
            .returning(Entitlement.uses_remaining)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def list_for_account(
        session: AsyncSession,
        *,
        account_id: str,
        limit: int = 200,
    ) -> list[Entitlement]:
        stmt = (
            select(Entitlement)
            .where(Entitlement.account_id == account_id)
            .order_by(Entitlement.created_at.desc(), Entitlement.id.desc())
            .limit(limit)
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())
