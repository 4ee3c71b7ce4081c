from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

import httpx
import structlog

from app.core.config import get_settings

logger = structlog.get_logger(__name__)
BREVO_TIMEOUT_SECONDS = 10.0


@dataclass(frozen=True, slots=True)
class InviteEmail:
    to_email: str
    sender_name: str
    era_name: str
    voucher_code: str
    voucher_link: str


@dataclass(frozen=True, slots=True)
class EmailDelivery:
    sent: bool
    error: str | None = None
    message_id: str | None = None


class InviteEmailSender(Protocol):
    async def send(self, email: InviteEmail) -> EmailDelivery: ...


def _template_id(raw: str) -> int | str:
    # Brevo accepts both legacy numeric ids and newer string ids.
    value = raw.strip()
    return int(value) if value.isdigit() else value


def build_brevo_payload(*, email: InviteEmail, template_id: int | str) -> dict[str, Any]:
    return {
        "to": [{"email": email.to_email}],
        "templateId": template_id,
        "params": {
            "SENDER_NAME": email.sender_name,
            "ERA_NAME": email.era_name,
            "VOUCHER_CODE": email.voucher_code,
            "VOUCHER_LINK": email.voucher_link,
        },
    }


class BrevoInviteEmailSender:
    def __init__(self, *, api_key: str, api_url: str, template_id: str) -> None:
        self._api_key = api_key.strip()
        self._api_url = api_url
        self._template_id = template_id

    @classmethod
    def from_settings(cls, settings: object | None = None) -> BrevoInviteEmailSender:
        settings = settings or get_settings()
        return cls(
            api_key=settings.brevo_api_key,
            api_url=settings.brevo_api_url,
            template_id=settings.brevo_invite_template_id,
        )

    async def send(self, email: InviteEmail) -> EmailDelivery:
        if not self._api_key or not self._template_id.strip():
            logger.warning("invite_email_not_configured", voucher_code=email.voucher_code)
            return EmailDelivery(sent=False, error="email delivery is not configured")

        body = build_brevo_payload(email=email, template_id=_template_id(self._template_id))
        headers = {"api-key": self._api_key, "accept": "application/json"}
        try:
            async with httpx.AsyncClient(timeout=BREVO_TIMEOUT_SECONDS) as client:
                response = await client.post(self._api_url, json=body, headers=headers)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            error = str(exc) or type(exc).__name__
            logger.warning(
                "invite_email_delivery_failed",
                voucher_code=email.voucher_code,
                error=error,
            )
            return EmailDelivery(sent=False, error=error)

        try:
            payload = response.json()
        except ValueError:
            payload = None
        message_id = payload.get("messageId") if isinstance(payload, dict) else None

        logger.info("invite_email_sent", voucher_code=email.voucher_code, message_id=message_id)
        return EmailDelivery(sent=True, message_id=message_id)
