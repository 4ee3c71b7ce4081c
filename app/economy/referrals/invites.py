from __future__ import annotations

import re
from datetime import datetime, timezone

import structlog

from app.economy.referrals.types import InviteResult, _SessionFactory
from app.economy.vouchers.service import DEFAULT_SIGNUP_BONUS, VoucherService, normalize_email
from app.economy.vouchers.types import FindOrCreateStatus
from app.economy.vouchers.codec import era_title
from app.services.invite_email import InviteEmail, InviteEmailSender

logger = structlog.get_logger(__name__)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
INVITE_PURPOSE = "email_friend"
SENDER_REWARD_PURPOSE = "referral_email_reward"


class InvalidInviteError(ValueError):
    pass


class InviteService:
    def __init__(
        self,
        *,
        session_factory: _SessionFactory,
        vouchers: VoucherService,
        email_sender: InviteEmailSender,
        redeem_link_base_url: str,
        referral_email_reward: int = 1,
        referral_signup_bonus: int = DEFAULT_SIGNUP_BONUS,
    ) -> None:
        self._session_factory = session_factory
        self._vouchers = vouchers
        self._email_sender = email_sender
        self._redeem_link_base_url = redeem_link_base_url.rstrip("/")
        self._referral_email_reward = referral_email_reward
        self._referral_signup_bonus = referral_signup_bonus

    def redeem_link(self, voucher_code: str) -> str:
        return f"{self._redeem_link_base_url}/{voucher_code}"

    async def send_invite(
        self,
        *,
        sender_account_id: str,
        sender_name: str,
        friend_email: str,
        era_id: str,
        now_utc: datetime | None = None,
    ) -> InviteResult:
        now_utc = now_utc or datetime.now(timezone.utc)
        email = normalize_email(friend_email)
        if email is None or EMAIL_RE.match(email) is None:
            raise InvalidInviteError("invalid email address")
        if not sender_account_id or not era_id:
            raise InvalidInviteError("sender and era are required")

        sender_rewarded = False
        async with self._session_factory.begin() as session:
            voucher, status = await self._vouchers.find_or_create(
                session,
                type_token=era_id,
                value=self._referral_email_reward,
                created_by=sender_account_id,
                recipient_email=email,
                purpose=INVITE_PURPOSE,
                reward_passes=self._referral_email_reward,
                signup_bonus=self._referral_signup_bonus,
                now_utc=now_utc,
            )
            if status is FindOrCreateStatus.CREATED:
                await self._vouchers.issue_and_redeem(
                    session,
                    account_id=sender_account_id,
                    type_token=era_id,
                    value=voucher.reward_passes,
                    purpose=SENDER_REWARD_PURPOSE,
                    now_utc=now_utc,
                )
                sender_rewarded = True
            voucher_code = voucher.voucher_code

        link = self.redeem_link(voucher_code)
        if status is FindOrCreateStatus.ALREADY_REDEEMED:
            logger.info(
                "invite_skipped_already_redeemed",
                sender_account_id=sender_account_id,
                voucher_code=voucher_code,
            )
            return InviteResult(
                voucher_code=voucher_code,
                status=status.value,
                redeem_link=link,
                sender_rewarded=False,
                email_sent=False,
            )

        delivery = await self._email_sender.send(
            InviteEmail(
                to_email=email,
                sender_name=sender_name or "A friend",
                era_name=era_title(era_id),
                voucher_code=voucher_code,
                voucher_link=link,
            )
        )
        logger.info(
            "invite_processed",
            sender_account_id=sender_account_id,
            era_id=era_id,
            status=status.value,
            sender_rewarded=sender_rewarded,
            email_sent=delivery.sent,
        )
        return InviteResult(
            voucher_code=voucher_code,
            status=status.value,
            redeem_link=link,
            sender_rewarded=sender_rewarded,
            email_sent=delivery.sent,
            email_error=delivery.error,
        )
