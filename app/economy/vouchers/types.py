from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Protocol


class VoucherKind(str, Enum):
    PASS = "pass"
    ERA = "era"


class ValueKind(str, Enum):
    COUNT = "count"
    TIME = "time"


class DenyReason(str, Enum):
    SELF_REDEMPTION = "SELF_REDEMPTION"
    EMAIL_MISMATCH = "EMAIL_MISMATCH"
    ALREADY_REDEEMED = "ALREADY_REDEEMED"


class FindOrCreateStatus(str, Enum):
    REUSED = "reused"
    ALREADY_REDEEMED = "already_redeemed"
    CREATED = "created"


@dataclass(frozen=True, slots=True)
class VoucherDescriptor:
    kind: VoucherKind
    type_token: str
    rights_value: str
    value_kind: ValueKind
    uses_granted: int
    duration: timedelta | None
    unique_suffix: str
    code: str
    display_text: str

    @property
    def duration_ms(self) -> int | None:
        if self.duration is None:
            return None
        return int(self.duration.total_seconds() * 1000)


@dataclass(frozen=True, slots=True)
class VoucherDisplay:
    title: str
    description: str
    display_text: str | None
    is_valid: bool


class RedeemableGrant(Protocol):
    created_by_account_id: str | None
    recipient_email: str | None
    redeemed_at: datetime | None


@dataclass(frozen=True, slots=True)
class Allow:
    @property
    def allowed(self) -> bool:
        return True


@dataclass(frozen=True, slots=True)
class Deny:
    reason: DenyReason
    message: str

    @property
    def allowed(self) -> bool:
        return False


GuardDecision = Allow | Deny
