from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from app.db.repo.entitlements_repo import EntitlementsRepo
from app.economy.eras.catalog import EraConfig
from app.economy.rights.types import (
    GENERIC_ERA_VALUE,
    AccessDecision,
    EraGrant,
    ExclusiveBlocked,
    Free,
    GuestBlocked,
    PassesAccess,
    PassGrant,
    Purchased,
    VoucherAccess,
    grant_from_row,
    is_active,
)

DEFAULT_GUEST_PREFIX = "guest-"


def is_guest_account(account_id: str | None, guest_prefix: str = DEFAULT_GUEST_PREFIX) -> bool:
    return not account_id or account_id.startswith(guest_prefix)


class AccessResolver:
    """Read-only access decisions.

    Priority: purchase, era voucher, exclusivity block, generic passes, free.
    Guests only ever get free non-exclusive eras.
    """

    def __init__(
        self,
        *,
        entitlements_repo: type[EntitlementsRepo] = EntitlementsRepo,
        guest_prefix: str = DEFAULT_GUEST_PREFIX,
    ) -> None:
        self._entitlements = entitlements_repo
        self._guest_prefix = guest_prefix

    def is_guest(self, account_id: str | None) -> bool:
        return is_guest_account(account_id, self._guest_prefix)

    async def _active_era_grants(
        self,
        session: AsyncSession,
        *,
        account_id: str,
        era_value: str,
        now_utc: datetime,
    ) -> list[EraGrant]:
        rows = await self._entitlements.list_active_era_rows(
            session,
            account_id=account_id,
            era_id=era_value,
            now_utc=now_utc,
        )
        grants: list[EraGrant] = []
        for row in rows:
            grant = grant_from_row(row)
            if not isinstance(grant, EraGrant):
                continue
            if is_active(grant, now_utc):
                grants.append(grant)
        return grants

    @staticmethod
    def _voucher_decision(grants: list[EraGrant]) -> VoucherAccess | None:
        for grant in grants:
            if grant.is_purchase or grant.source_voucher_code is None:
                continue
            return VoucherAccess(
                uses_remaining=grant.uses_remaining,
                row_id=grant.row_id,
                expires_at=grant.expires_at,
                voucher_code=grant.source_voucher_code,
            )
        return None

    async def pass_balance(
        self,
        session: AsyncSession,
        account_id: str,
        *,
        now_utc: datetime | None = None,
    ) -> int:
        if self.is_guest(account_id):
            return 0
        now_utc = now_utc or datetime.now(timezone.utc)
        return await self._entitlements.sum_active_pass_balance(
            session,
            account_id=account_id,
            now_utc=now_utc,
        )

    async def list_pass_grants(
        self,
        session: AsyncSession,
        account_id: str,
        *,
        now_utc: datetime,
    ) -> list[PassGrant]:
        rows = await self._entitlements.list_active_pass_rows(
            session,
            account_id=account_id,
            now_utc=now_utc,
        )
        grants: list[PassGrant] = []
        for row in rows:
            grant = grant_from_row(row)
            if isinstance(grant, PassGrant) and is_active(grant, now_utc):
                grants.append(grant)
        return grants

    async def resolve(
        self,
        session: AsyncSession,
        account_id: str | None,
        era: EraConfig,
        *,
        now_utc: datetime | None = None,
    ) -> AccessDecision:
        now_utc = now_utc or datetime.now(timezone.utc)

        if self.is_guest(account_id):
            if era.passes_required == 0 and not era.exclusive:
                return Free()
            return GuestBlocked()
        assert account_id is not None

        era_grants = await self._active_era_grants(
            session,
            account_id=account_id,
            era_value=era.identifier,
            now_utc=now_utc,
        )
        for grant in era_grants:
            if grant.is_purchase:
                return Purchased(row_id=grant.row_id)

        voucher = self._voucher_decision(era_grants)
        if voucher is None and era.exclusive:
            generic_grants = await self._active_era_grants(
                session,
                account_id=account_id,
                era_value=GENERIC_ERA_VALUE,
                now_utc=now_utc,
            )
            voucher = self._voucher_decision(generic_grants)
        if voucher is not None:
            return voucher

        if era.exclusive:
            return ExclusiveBlocked(label=era.badge_label)

        if era.passes_required > 0:
            balance = await self.pass_balance(session, account_id, now_utc=now_utc)
            return PassesAccess(required=era.passes_required, balance=balance)

        return Free()
