from __future__ import annotations

from datetime import datetime, timezone
from uuid import UUID, uuid4

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.ledger_entries import LedgerEntry
from app.db.repo.entitlements_repo import EntitlementsRepo
from app.db.repo.ledger_repo import LedgerRepo
from app.economy.eras.catalog import EraConfig
from app.economy.rights.errors import InsufficientBalanceError, NoAccessError
from app.economy.rights.resolver import AccessResolver
from app.economy.rights.types import (
    UNLIMITED_USES,
    AccessDecision,
    AccessMethod,
    ConsumptionResult,
    ExclusiveBlocked,
    Free,
    GuestBlocked,
    PassDebit,
    PassesAccess,
    Purchased,
    RightsType,
    VoucherAccess,
)

logger = structlog.get_logger(__name__)


class ConsumptionEngine:
    """Applies a resolved decision with conditional updates only.

    Every decrement re-checks the balance inside the UPDATE, so a stale
    resolve can never spend the same use twice.
    """

    def __init__(
        self,
        *,
        resolver: AccessResolver,
        entitlements_repo: type[EntitlementsRepo] = EntitlementsRepo,
        ledger_repo: type[LedgerRepo] = LedgerRepo,
    ) -> None:
        self._resolver = resolver
        self._entitlements = entitlements_repo
        self._ledger = ledger_repo

    async def _record_debit(
        self,
        session: AsyncSession,
        *,
        consumption_id: UUID,
        account_id: str,
        row_id: UUID,
        asset: RightsType,
        amount: int,
        era_id: str,
        now_utc: datetime,
    ) -> None:
        await self._ledger.create(
            session,
            entry=LedgerEntry(
                account_id=account_id,
                entitlement_id=row_id,
                entry_type="ERA_PLAY" if asset is RightsType.ERA else "PASS_SPEND",
                asset=asset.value,
                direction="DEBIT",
                amount=amount,
                source="consumption",
                idempotency_key=f"rights:debit:{consumption_id}:{row_id}",
                metadata_={"era_id": era_id, "consumption_id": str(consumption_id)},
                created_at=now_utc,
            ),
        )

    async def _consume_voucher(
        self,
        session: AsyncSession,
        *,
        consumption_id: UUID,
        account_id: str,
        era_id: str,
        decision: VoucherAccess,
        now_utc: datetime,
    ) -> ConsumptionResult:
        if decision.uses_remaining == UNLIMITED_USES:
            return ConsumptionResult(
                method=AccessMethod.VOUCHER,
                era_id=era_id,
                consumed=0,
                remaining=UNLIMITED_USES,
            )

        remaining = await self._entitlements.decrement_if_available(
            session,
            entitlement_id=decision.row_id,
            amount=1,
            now_utc=now_utc,
        )
        if remaining is None:
            logger.warning(
                "rights_voucher_exhausted_on_consume",
                account_id=account_id,
                era_id=era_id,
                entitlement_id=str(decision.row_id),
            )
            raise InsufficientBalanceError

        await self._record_debit(
            session,
            consumption_id=consumption_id,
            account_id=account_id,
            row_id=decision.row_id,
            asset=RightsType.ERA,
            amount=1,
            era_id=era_id,
            now_utc=now_utc,
        )
        return ConsumptionResult(
            method=AccessMethod.VOUCHER,
            era_id=era_id,
            consumed=1,
            remaining=remaining,
            debits=(PassDebit(row_id=decision.row_id, amount=1, remaining=remaining),),
        )

    async def _consume_passes(
        self,
        session: AsyncSession,
        *,
        consumption_id: UUID,
        account_id: str,
        era_id: str,
        decision: PassesAccess,
        now_utc: datetime,
    ) -> ConsumptionResult:
        still_needed = decision.required
        debits: list[PassDebit] = []
        grants = await self._resolver.list_pass_grants(session, account_id, now_utc=now_utc)
        for grant in grants:
            if still_needed == 0:
                break
            take = min(grant.uses_remaining, still_needed)
            remaining = await self._entitlements.decrement_if_available(
                session,
                entitlement_id=grant.row_id,
                amount=take,
                now_utc=now_utc,
            )
            if remaining is None:
                continue

            still_needed -= take
            debits.append(PassDebit(row_id=grant.row_id, amount=take, remaining=remaining))
            await self._record_debit(
                session,
                consumption_id=consumption_id,
                account_id=account_id,
                row_id=grant.row_id,
                asset=RightsType.PASS,
                amount=take,
                era_id=era_id,
                now_utc=now_utc,
            )

        if still_needed > 0:
            logger.warning(
                "rights_pass_walk_short",
                account_id=account_id,
                era_id=era_id,
                required=decision.required,
                missing=still_needed,
            )
            raise InsufficientBalanceError

        balance = await self._entitlements.sum_active_pass_balance(
            session,
            account_id=account_id,
            now_utc=now_utc,
        )
        return ConsumptionResult(
            method=AccessMethod.PASSES,
            era_id=era_id,
            consumed=decision.required,
            remaining=balance,
            debits=tuple(debits),
        )

    async def apply(
        self,
        session: AsyncSession,
        *,
        account_id: str,
        era: EraConfig,
        decision: AccessDecision,
        now_utc: datetime,
    ) -> ConsumptionResult:
        if not decision.can_play:
            raise NoAccessError(decision)

        consumption_id = uuid4()
        if isinstance(decision, Purchased):
            return ConsumptionResult(
                method=AccessMethod.PURCHASED,
                era_id=era.identifier,
                consumed=0,
                remaining=UNLIMITED_USES,
            )
        if isinstance(decision, VoucherAccess):
            return await self._consume_voucher(
                session,
                consumption_id=consumption_id,
                account_id=account_id,
                era_id=era.identifier,
                decision=decision,
                now_utc=now_utc,
            )
        if isinstance(decision, PassesAccess):
            return await self._consume_passes(
                session,
                consumption_id=consumption_id,
                account_id=account_id,
                era_id=era.identifier,
                decision=decision,
                now_utc=now_utc,
            )
        if isinstance(decision, Free):
            return ConsumptionResult(
                method=AccessMethod.FREE,
                era_id=era.identifier,
                consumed=0,
                remaining=UNLIMITED_USES,
            )
        if isinstance(decision, (ExclusiveBlocked, GuestBlocked)):
            raise NoAccessError(decision)
        raise TypeError(f"unhandled access decision: {type(decision).__name__}")

    async def consume(
        self,
        session: AsyncSession,
        account_id: str | None,
        era: EraConfig,
        *,
        now_utc: datetime | None = None,
    ) -> ConsumptionResult:
        now_utc = now_utc or datetime.now(timezone.utc)
        decision = await self._resolver.resolve(session, account_id, era, now_utc=now_utc)
        result = await self.apply(
            session,
            account_id=account_id or "",
            era=era,
            decision=decision,
            now_utc=now_utc,
        )
        logger.info(
            "rights_consumed",
            account_id=account_id,
            era_id=era.identifier,
            method=result.method.value,
            consumed=result.consumed,
            remaining=result.remaining,
        )
        return result
