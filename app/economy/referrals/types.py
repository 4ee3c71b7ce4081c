from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Protocol


class _SessionFactory(Protocol):
    def begin(self): ...


class RewardStage(str, Enum):
    REFERRER_REWARD = "referrer_reward"
    NEW_ACCOUNT_REWARD = "new_account_reward"
    WELCOME_GRANT = "welcome_grant"


@dataclass(frozen=True, slots=True)
class NoReferral:
    pass


@dataclass(frozen=True, slots=True)
class AlreadyProcessed:
    pass


@dataclass(frozen=True, slots=True)
class Rewarded:
    referrer_id: str
    reward_amount: int
    reward_kind: str
    referral_code: str
    welcome_grant_error: str | None = None


@dataclass(frozen=True, slots=True)
class PartialFailure:
    stage: RewardStage
    error: str
    referrer_id: str
    referral_code: str


RewardOutcome = NoReferral | AlreadyProcessed | Rewarded | PartialFailure


@dataclass(frozen=True, slots=True)
class InviteResult:
    voucher_code: str
    status: str
    redeem_link: str
    sender_rewarded: bool
    email_sent: bool
    email_error: str | None = None
