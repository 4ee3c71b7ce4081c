from __future__ import annotations

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.entitlements import Entitlement
from app.db.models.ledger_entries import LedgerEntry
from app.db.repo.entitlements_repo import EntitlementsRepo
from app.db.repo.ledger_repo import LedgerRepo
from app.economy.rights.errors import InvalidCreditError
from app.economy.rights.resolver import DEFAULT_GUEST_PREFIX, is_guest_account
from app.economy.rights.types import UNLIMITED_USES, RightsType
from app.economy.vouchers.types import ValueKind, VoucherDescriptor

logger = structlog.get_logger(__name__)

CREDIT_SOURCES = frozenset({"achievement", "referral", "bundle", "admin", "voucher"})
GRANT_VALIDITY_YEARS = 2


def years_from(moment: datetime, years: int) -> datetime:
    try:
        return moment.replace(year=moment.year + years)
    except ValueError:
        # Feb 29 on a non-leap target year.
        return moment.replace(year=moment.year + years, day=28)


def voucher_expiry(descriptor: VoucherDescriptor, now_utc: datetime) -> datetime:
    if descriptor.value_kind is ValueKind.TIME and descriptor.duration is not None:
        return now_utc + descriptor.duration
    return years_from(now_utc, GRANT_VALIDITY_YEARS)


class IssuanceService:
    def __init__(
        self,
        *,
        entitlements_repo: type[EntitlementsRepo] = EntitlementsRepo,
        ledger_repo: type[LedgerRepo] = LedgerRepo,
        guest_prefix: str = DEFAULT_GUEST_PREFIX,
    ) -> None:
        self._entitlements = entitlements_repo
        self._ledger = ledger_repo
        self._guest_prefix = guest_prefix

    async def _record_credit(
        self,
        session: AsyncSession,
        *,
        entitlement: Entitlement,
        entry_type: str,
        source: str,
        now_utc: datetime,
        metadata: dict[str, object] | None = None,
    ) -> None:
        unlimited = entitlement.uses_remaining == UNLIMITED_USES
        await self._ledger.create(
            session,
            entry=LedgerEntry(
                account_id=entitlement.account_id,
                entitlement_id=entitlement.id,
                entry_type=entry_type,
                asset=entitlement.rights_type,
                direction="CREDIT",
                amount=1 if unlimited else entitlement.uses_remaining,
                source=source,
                idempotency_key=f"rights:credit:{entitlement.id}",
                metadata_={**(metadata or {}), "unlimited": unlimited},
                created_at=now_utc,
            ),
        )

    async def credit_passes(
        self,
        session: AsyncSession,
        *,
        account_id: str,
        amount: int,
        source_tag: str,
        metadata: dict[str, object] | None = None,
        now_utc: datetime | None = None,
    ) -> Entitlement:
        if is_guest_account(account_id, self._guest_prefix):
            raise InvalidCreditError("guest accounts cannot hold passes")
        if amount <= 0:
            raise InvalidCreditError("amount must be positive")
        if source_tag not in CREDIT_SOURCES:
            raise InvalidCreditError(f"unknown pass source: {source_tag}")

        now_utc = now_utc or datetime.now(timezone.utc)
        entitlement = await self._entitlements.create(
            session,
            entitlement=Entitlement(
                id=uuid4(),
                account_id=account_id,
                rights_type=RightsType.PASS.value,
                rights_value=source_tag,
                uses_remaining=amount,
                expires_at=years_from(now_utc, GRANT_VALIDITY_YEARS),
                created_at=now_utc,
                updated_at=now_utc,
            ),
        )
        await self._record_credit(
            session,
            entitlement=entitlement,
            entry_type="PASS_CREDIT",
            source=source_tag,
            now_utc=now_utc,
            metadata=metadata,
        )
        logger.info(
            "passes_credited",
            account_id=account_id,
            amount=amount,
            source=source_tag,
            entitlement_id=str(entitlement.id),
        )
        return entitlement

    async def grant_era_access(
        self,
        session: AsyncSession,
        *,
        account_id: str,
        era_id: str,
        purchase_reference: str,
        metadata: dict[str, object] | None = None,
        now_utc: datetime | None = None,
    ) -> tuple[Entitlement, bool]:
        """Returns the purchase row and whether it already existed."""
        if is_guest_account(account_id, self._guest_prefix):
            raise InvalidCreditError("guest accounts cannot purchase eras")
        if not purchase_reference:
            raise InvalidCreditError("purchase reference is required")

        existing = await self._entitlements.get_by_purchase_reference(session, purchase_reference)
        if existing is not None:
            if existing.account_id != account_id or existing.rights_value != era_id:
                raise InvalidCreditError("purchase reference belongs to another grant")
            return existing, True

        now_utc = now_utc or datetime.now(timezone.utc)
        entitlement = await self._entitlements.create(
            session,
            entitlement=Entitlement(
                id=uuid4(),
                account_id=account_id,
                rights_type=RightsType.ERA.value,
                rights_value=era_id,
                uses_remaining=UNLIMITED_USES,
                expires_at=years_from(now_utc, GRANT_VALIDITY_YEARS),
                purchase_reference=purchase_reference,
                created_at=now_utc,
                updated_at=now_utc,
            ),
        )
        await self._record_credit(
            session,
            entitlement=entitlement,
            entry_type="ERA_PURCHASE",
            source="purchase",
            now_utc=now_utc,
            metadata={**(metadata or {}), "purchase_reference": purchase_reference},
        )
        logger.info(
            "era_access_granted",
            account_id=account_id,
            era_id=era_id,
            entitlement_id=str(entitlement.id),
        )
        return entitlement, False

    async def grant_from_voucher(
        self,
        session: AsyncSession,
        *,
        account_id: str,
        descriptor: VoucherDescriptor,
        created_by_account_id: str | None,
        recipient_email: str | None,
        now_utc: datetime,
    ) -> Entitlement:
        entitlement = await self._entitlements.create(
            session,
            entitlement=Entitlement(
                id=uuid4(),
                account_id=account_id,
                rights_type=descriptor.kind.value,
                rights_value=descriptor.rights_value,
                uses_remaining=descriptor.uses_granted,
                expires_at=voucher_expiry(descriptor, now_utc),
                created_by_account_id=created_by_account_id,
                recipient_email=recipient_email,
                source_voucher_code=descriptor.code,
                created_at=now_utc,
                updated_at=now_utc,
            ),
        )
        await self._record_credit(
            session,
            entitlement=entitlement,
            entry_type="VOUCHER_REDEEM",
            source="voucher",
            now_utc=now_utc,
            metadata={"voucher_code": descriptor.code, "value_kind": descriptor.value_kind.value},
        )
        return entitlement
