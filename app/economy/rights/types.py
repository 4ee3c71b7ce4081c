from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import ClassVar, Protocol
from uuid import UUID

from app.economy.rights.errors import UnknownRightsTypeError

UNLIMITED_USES = -1
GENERIC_ERA_VALUE = "era"

PROMPT_SIGN_IN = "Sign in to continue"
PROMPT_ENTER_VOUCHER = "Enter a voucher"
PROMPT_BUY_PASSES = "Buy passes"


class RightsType(str, Enum):
    PASS = "pass"
    ERA = "era"


class AccessMethod(str, Enum):
    PURCHASED = "purchased"
    VOUCHER = "voucher"
    EXCLUSIVE = "exclusive"
    PASSES = "passes"
    FREE = "free"
    GUEST = "guest"


class EntitlementRow(Protocol):
    id: UUID
    account_id: str | None
    rights_type: str
    rights_value: str
    uses_remaining: int
    expires_at: datetime | None
    source_voucher_code: str | None
    purchase_reference: str | None
    created_at: datetime


@dataclass(frozen=True, slots=True)
class PassGrant:
    row_id: UUID
    account_id: str | None
    source_tag: str
    uses_remaining: int
    expires_at: datetime | None
    created_at: datetime


@dataclass(frozen=True, slots=True)
class EraGrant:
    row_id: UUID
    account_id: str | None
    era_id: str
    uses_remaining: int
    expires_at: datetime | None
    created_at: datetime
    purchase_reference: str | None = None
    source_voucher_code: str | None = None

    @property
    def is_purchase(self) -> bool:
        return self.purchase_reference is not None


RightsGrant = PassGrant | EraGrant


def is_active(grant: RightsGrant, now_utc: datetime) -> bool:
    has_uses = grant.uses_remaining == UNLIMITED_USES or grant.uses_remaining > 0
    not_expired = grant.expires_at is None or grant.expires_at > now_utc
    return has_uses and not_expired


def grant_from_row(row: EntitlementRow) -> RightsGrant:
    if row.rights_type == RightsType.PASS.value:
        return PassGrant(
            row_id=row.id,
            account_id=row.account_id,
            source_tag=row.rights_value,
            uses_remaining=row.uses_remaining,
            expires_at=row.expires_at,
            created_at=row.created_at,
        )
    if row.rights_type == RightsType.ERA.value:
        return EraGrant(
            row_id=row.id,
            account_id=row.account_id,
            era_id=row.rights_value,
            uses_remaining=row.uses_remaining,
            expires_at=row.expires_at,
            created_at=row.created_at,
            purchase_reference=row.purchase_reference,
            source_voucher_code=row.source_voucher_code,
        )
    raise UnknownRightsTypeError(row.rights_type)


@dataclass(frozen=True, slots=True)
class Purchased:
    method: ClassVar[AccessMethod] = AccessMethod.PURCHASED
    row_id: UUID

    @property
    def can_play(self) -> bool:
        return True

    @property
    def prompt(self) -> str | None:
        return None


@dataclass(frozen=True, slots=True)
class VoucherAccess:
    method: ClassVar[AccessMethod] = AccessMethod.VOUCHER
    uses_remaining: int
    row_id: UUID
    expires_at: datetime | None
    voucher_code: str | None = None

    @property
    def can_play(self) -> bool:
        return True

    @property
    def prompt(self) -> str | None:
        return None


@dataclass(frozen=True, slots=True)
class ExclusiveBlocked:
    method: ClassVar[AccessMethod] = AccessMethod.EXCLUSIVE
    label: str

    @property
    def can_play(self) -> bool:
        return False

    @property
    def prompt(self) -> str | None:
        return PROMPT_ENTER_VOUCHER


@dataclass(frozen=True, slots=True)
class PassesAccess:
    method: ClassVar[AccessMethod] = AccessMethod.PASSES
    required: int
    balance: int

    @property
    def plays_available(self) -> int:
        return self.balance // self.required

    @property
    def can_play(self) -> bool:
        return self.balance >= self.required

    @property
    def prompt(self) -> str | None:
        return None if self.can_play else PROMPT_BUY_PASSES


@dataclass(frozen=True, slots=True)
class Free:
    method: ClassVar[AccessMethod] = AccessMethod.FREE

    @property
    def can_play(self) -> bool:
        return True

    @property
    def prompt(self) -> str | None:
        return None


@dataclass(frozen=True, slots=True)
class GuestBlocked:
    method: ClassVar[AccessMethod] = AccessMethod.GUEST

    @property
    def can_play(self) -> bool:
        return False

    @property
    def prompt(self) -> str | None:
        return PROMPT_SIGN_IN


AccessDecision = Purchased | VoucherAccess | ExclusiveBlocked | PassesAccess | Free | GuestBlocked


@dataclass(frozen=True, slots=True)
class PassDebit:
    row_id: UUID
    amount: int
    remaining: int


@dataclass(frozen=True, slots=True)
class ConsumptionResult:
    method: AccessMethod
    era_id: str
    consumed: int
    # -1 when the access method is unlimited.
    remaining: int
    debits: tuple[PassDebit, ...] = ()
