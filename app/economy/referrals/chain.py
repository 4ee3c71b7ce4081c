from __future__ import annotations

from datetime import datetime, timezone

import structlog
from sqlalchemy.exc import SQLAlchemyError

from app.db.repo.vouchers_repo import VouchersRepo
from app.economy.referrals.types import (
    AlreadyProcessed,
    NoReferral,
    PartialFailure,
    RewardOutcome,
    RewardStage,
    Rewarded,
    _SessionFactory,
)
from app.economy.rights.errors import RightsError
from app.economy.vouchers.codec import PASS_TYPE_TOKEN, parse
from app.economy.vouchers.errors import MalformedCodeError, VoucherError
from app.economy.vouchers.service import DEFAULT_SIGNUP_BONUS, VoucherService, normalize_email

logger = structlog.get_logger(__name__)

STAGE_ERRORS = (VoucherError, RightsError, SQLAlchemyError)
SIGNUP_REWARD_PURPOSE = "referral_signup_reward"


def _describe_error(exc: Exception) -> str:
    return str(exc) or type(exc).__name__


class ReferralRewardChain:
    """Pays both sides of a referral once the invitee signs up.

    Each stage runs in its own transaction. A failed reward stage stops the
    chain and reports the stage; the welcome grant is best effort.
    """

    def __init__(
        self,
        *,
        session_factory: _SessionFactory,
        vouchers: VoucherService,
        vouchers_repo: type[VouchersRepo] = VouchersRepo,
        default_signup_bonus: int = DEFAULT_SIGNUP_BONUS,
    ) -> None:
        self._session_factory = session_factory
        self._vouchers = vouchers
        self._vouchers_repo = vouchers_repo
        self._default_signup_bonus = default_signup_bonus

    @staticmethod
    def _reward_basis(voucher_code: str) -> tuple[str, str]:
        """Reward kind and the suffix base that keys this referral's reward codes."""
        try:
            descriptor = parse(voucher_code)
        except MalformedCodeError:
            return PASS_TYPE_TOKEN, voucher_code
        return descriptor.type_token, descriptor.unique_suffix

    async def _issue_reward(
        self,
        *,
        account_id: str,
        kind: str,
        amount: int,
        recipient_email: str | None,
        suffix: str,
        now_utc: datetime,
    ) -> None:
        async with self._session_factory.begin() as session:
            await self._vouchers.issue_and_redeem(
                session,
                account_id=account_id,
                type_token=kind,
                value=amount,
                purpose=SIGNUP_REWARD_PURPOSE,
                recipient_email=recipient_email,
                suffix=suffix,
                now_utc=now_utc,
            )

    async def _grant_welcome(
        self,
        *,
        new_account_id: str,
        new_account_email: str,
        referral_code: str,
        now_utc: datetime,
    ) -> str | None:
        try:
            async with self._session_factory.begin() as session:
                await self._vouchers.redeem(
                    session,
                    account_id=new_account_id,
                    code=referral_code,
                    email=new_account_email,
                    now_utc=now_utc,
                )
        except STAGE_ERRORS as exc:
            error = _describe_error(exc)
            logger.warning(
                "referral_stage_failed",
                stage=RewardStage.WELCOME_GRANT.value,
                new_account_id=new_account_id,
                referral_code=referral_code,
                error=error,
            )
        else:
            return None

        try:
            async with self._session_factory.begin() as session:
                await self._vouchers_repo.force_mark_redeemed(
                    session,
                    voucher_code=referral_code,
                    account_id=new_account_id,
                    now_utc=now_utc,
                )
        except SQLAlchemyError as exc:
            mark_error = _describe_error(exc)
            logger.warning(
                "referral_force_mark_failed",
                new_account_id=new_account_id,
                referral_code=referral_code,
                error=mark_error,
            )
            error = f"{error}; mark redeemed failed: {mark_error}"
        return error

    async def process_signup(
        self,
        new_account_id: str,
        new_account_email: str,
        *,
        now_utc: datetime | None = None,
    ) -> RewardOutcome:
        now_utc = now_utc or datetime.now(timezone.utc)
        email = normalize_email(new_account_email)
        if email is None:
            return NoReferral()

        async with self._session_factory.begin() as session:
            referral = await self._vouchers_repo.get_pending_referral_for_email(
                session,
                recipient_email=email,
            )
            if referral is None:
                already = await self._vouchers_repo.has_redeemed_referral_for_account(
                    session,
                    recipient_email=email,
                    account_id=new_account_id,
                )
                return AlreadyProcessed() if already else NoReferral()

            referrer_id = referral.created_by_account_id
            referral_code = referral.voucher_code
            bonus = referral.signup_bonus or self._default_signup_bonus

        if referrer_id is None or referrer_id == new_account_id:
            logger.warning(
                "referral_self_signup_ignored",
                new_account_id=new_account_id,
                referral_code=referral_code,
            )
            return NoReferral()

        kind, suffix_base = self._reward_basis(referral_code)
        reward_stages = (
            (RewardStage.REFERRER_REWARD, referrer_id, None),
            (RewardStage.NEW_ACCOUNT_REWARD, new_account_id, email),
        )
        for stage, account_id, recipient_email in reward_stages:
            try:
                await self._issue_reward(
                    account_id=account_id,
                    kind=kind,
                    amount=bonus,
                    recipient_email=recipient_email,
                    suffix=f"{suffix_base}-{stage.value}",
                    now_utc=now_utc,
                )
            except STAGE_ERRORS as exc:
                error = _describe_error(exc)
                logger.warning(
                    "referral_stage_failed",
                    stage=stage.value,
                    referrer_id=referrer_id,
                    new_account_id=new_account_id,
                    referral_code=referral_code,
                    error=error,
                )
                return PartialFailure(
                    stage=stage,
                    error=error,
                    referrer_id=referrer_id,
                    referral_code=referral_code,
                )

        welcome_error = await self._grant_welcome(
            new_account_id=new_account_id,
            new_account_email=email,
            referral_code=referral_code,
            now_utc=now_utc,
        )
        logger.info(
            "referral_rewarded",
            referrer_id=referrer_id,
            new_account_id=new_account_id,
            reward_kind=kind,
            reward_amount=bonus,
            welcome_grant_failed=welcome_error is not None,
        )
        return Rewarded(
            referrer_id=referrer_id,
            reward_amount=bonus,
            reward_kind=kind,
            referral_code=referral_code,
            welcome_grant_error=welcome_error,
        )
