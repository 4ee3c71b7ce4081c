from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings, get_settings
from app.db.models.entitlements import Entitlement
from app.db.models.vouchers import Voucher
from app.db.repo.entitlements_repo import EntitlementsRepo
from app.db.repo.ledger_repo import LedgerRepo
from app.db.repo.vouchers_repo import VouchersRepo
from app.economy.eras.catalog import EraCatalog
from app.economy.referrals.chain import ReferralRewardChain
from app.economy.referrals.invites import InviteService
from app.economy.referrals.types import InviteResult, RewardOutcome, _SessionFactory
from app.economy.rights.consumption import ConsumptionEngine
from app.economy.rights.errors import PersistenceFailureError
from app.economy.rights.issuance import IssuanceService
from app.economy.rights.resolver import AccessResolver
from app.economy.rights.types import AccessDecision, ConsumptionResult
from app.economy.vouchers.service import VoucherService
from app.services.invite_email import BrevoInviteEmailSender, InviteEmailSender

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class EraPurchaseGrant:
    entitlement: Entitlement
    idempotent_replay: bool


class EntitlementEngine:
    """Request-level entry points; one transaction per call.

    Store errors surface as ``PersistenceFailureError`` and are never
    reported as partial success.
    """

    def __init__(
        self,
        *,
        session_factory: _SessionFactory,
        catalog: EraCatalog,
        resolver: AccessResolver,
        consumption: ConsumptionEngine,
        issuance: IssuanceService,
        vouchers: VoucherService,
        referrals: ReferralRewardChain,
        invites: InviteService,
    ) -> None:
        self.session_factory = session_factory
        self.catalog = catalog
        self.resolver = resolver
        self.consumption = consumption
        self.issuance = issuance
        self.vouchers = vouchers
        self.referrals = referrals
        self.invites = invites

    @asynccontextmanager
    async def _transaction(self, operation: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self.session_factory.begin() as session:
                yield session
        except SQLAlchemyError as exc:
            logger.exception("rights_persistence_failed", operation=operation)
            raise PersistenceFailureError(operation) from exc

    async def resolve(
        self,
        account_id: str | None,
        era_id: str,
        *,
        now_utc: datetime | None = None,
    ) -> AccessDecision:
        era = self.catalog.get(era_id)
        async with self._transaction("resolve") as session:
            return await self.resolver.resolve(session, account_id, era, now_utc=now_utc)

    async def consume(
        self,
        account_id: str | None,
        era_id: str,
        *,
        now_utc: datetime | None = None,
    ) -> ConsumptionResult:
        era = self.catalog.get(era_id)
        async with self._transaction("consume") as session:
            return await self.consumption.consume(session, account_id, era, now_utc=now_utc)

    async def pass_balance(self, account_id: str) -> int:
        async with self._transaction("pass_balance") as session:
            return await self.resolver.pass_balance(session, account_id)

    async def credit_passes(
        self,
        *,
        account_id: str,
        amount: int,
        source_tag: str,
        metadata: dict[str, object] | None = None,
    ) -> Entitlement:
        async with self._transaction("credit_passes") as session:
            return await self.issuance.credit_passes(
                session,
                account_id=account_id,
                amount=amount,
                source_tag=source_tag,
                metadata=metadata,
            )

    async def grant_era_purchase(
        self,
        *,
        account_id: str,
        era_id: str,
        purchase_reference: str,
        metadata: dict[str, object] | None = None,
    ) -> EraPurchaseGrant:
        self.catalog.get(era_id)
        async with self._transaction("grant_era_purchase") as session:
            entitlement, replay = await self.issuance.grant_era_access(
                session,
                account_id=account_id,
                era_id=era_id,
                purchase_reference=purchase_reference,
                metadata=metadata,
            )
        return EraPurchaseGrant(entitlement=entitlement, idempotent_replay=replay)

    async def redeem_voucher(
        self,
        *,
        account_id: str,
        code: str,
        email: str | None = None,
    ) -> Entitlement:
        async with self._transaction("redeem_voucher") as session:
            return await self.vouchers.redeem(
                session,
                account_id=account_id,
                code=code,
                email=email,
            )

    async def generate_voucher(
        self,
        *,
        type_token: str,
        value: str | int,
        purpose: str = "manual",
        created_by: str | None = None,
        recipient_email: str | None = None,
        reward_passes: int = 1,
        signup_bonus: int | None = None,
    ) -> Voucher:
        async with self._transaction("generate_voucher") as session:
            return await self.vouchers.generate(
                session,
                type_token=type_token,
                value=value,
                purpose=purpose,
                created_by=created_by,
                recipient_email=recipient_email,
                reward_passes=reward_passes,
                signup_bonus=signup_bonus,
            )

    async def process_signup(self, *, account_id: str, email: str) -> RewardOutcome:
        try:
            return await self.referrals.process_signup(account_id, email)
        except SQLAlchemyError as exc:
            logger.exception("rights_persistence_failed", operation="process_signup")
            raise PersistenceFailureError("process_signup") from exc

    async def send_invite(
        self,
        *,
        sender_account_id: str,
        sender_name: str,
        friend_email: str,
        era_id: str,
    ) -> InviteResult:
        self.catalog.get(era_id)
        try:
            return await self.invites.send_invite(
                sender_account_id=sender_account_id,
                sender_name=sender_name,
                friend_email=friend_email,
                era_id=era_id,
                now_utc=datetime.now(timezone.utc),
            )
        except SQLAlchemyError as exc:
            logger.exception("rights_persistence_failed", operation="send_invite")
            raise PersistenceFailureError("send_invite") from exc


def build_engine(
    *,
    session_factory: _SessionFactory,
    settings: Settings | None = None,
    catalog: EraCatalog | None = None,
    email_sender: InviteEmailSender | None = None,
    entitlements_repo: type[EntitlementsRepo] = EntitlementsRepo,
    vouchers_repo: type[VouchersRepo] = VouchersRepo,
    ledger_repo: type[LedgerRepo] = LedgerRepo,
) -> EntitlementEngine:
    settings = settings or get_settings()
    catalog = catalog or EraCatalog.load(settings.era_catalog_path)
    email_sender = email_sender or BrevoInviteEmailSender.from_settings(settings)

    resolver = AccessResolver(
        entitlements_repo=entitlements_repo,
        guest_prefix=settings.guest_account_prefix,
    )
    issuance = IssuanceService(
        entitlements_repo=entitlements_repo,
        ledger_repo=ledger_repo,
        guest_prefix=settings.guest_account_prefix,
    )
    vouchers = VoucherService(
        issuance=issuance,
        vouchers_repo=vouchers_repo,
        entitlements_repo=entitlements_repo,
        default_signup_bonus=settings.referral_signup_bonus,
    )
    return EntitlementEngine(
        session_factory=session_factory,
        catalog=catalog,
        resolver=resolver,
        consumption=ConsumptionEngine(
            resolver=resolver,
            entitlements_repo=entitlements_repo,
            ledger_repo=ledger_repo,
        ),
        issuance=issuance,
        vouchers=vouchers,
        referrals=ReferralRewardChain(
            session_factory=session_factory,
            vouchers=vouchers,
            vouchers_repo=vouchers_repo,
            default_signup_bonus=settings.referral_signup_bonus,
        ),
        invites=InviteService(
            session_factory=session_factory,
            vouchers=vouchers,
            email_sender=email_sender,
            redeem_link_base_url=settings.redeem_link_base_url,
            referral_email_reward=settings.referral_email_reward,
            referral_signup_bonus=settings.referral_signup_bonus,
        ),
    )


@lru_cache(maxsize=1)
def get_engine() -> EntitlementEngine:
    from app.db.session import SessionLocal

    return build_engine(session_factory=SessionLocal)
