from __future__ import annotations

from types import SimpleNamespace
from typing import Any

import httpx
import pytest

from app.services import invite_email
from app.services.invite_email import BrevoInviteEmailSender, InviteEmail, build_brevo_payload

EMAIL = InviteEmail(
    to_email="friend@example.com",
    sender_name="Kim",
    era_name="Midway Island",
    voucher_code="midway_island-1-abc",
    voucher_link="https://oceans.example/redeem/midway_island-1-abc",
)


class _Response:
    def __init__(self, payload: object) -> None:
        self._payload = payload

    def raise_for_status(self) -> None:
        return None

    def json(self) -> object:
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


class _Client:
    def __init__(self, calls: list[dict[str, Any]], *, payload: object, error: Exception | None) -> None:
        self._calls = calls
        self._payload = payload
        self._error = error

    async def __aenter__(self) -> "_Client":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:  # type: ignore[override]
        return None

    async def post(self, url: str, json: dict[str, object], headers: dict[str, str]) -> _Response:
        self._calls.append({"url": url, "json": json, "headers": headers})
        if self._error is not None:
            raise self._error
        return _Response(self._payload)


def _patch_http_client(
    monkeypatch: pytest.MonkeyPatch,
    calls: list[dict[str, Any]],
    *,
    payload: object = None,
    error: Exception | None = None,
) -> None:
    def factory(timeout: float) -> _Client:  # noqa: ARG001
        return _Client(calls, payload=payload, error=error)

    monkeypatch.setattr(invite_email.httpx, "AsyncClient", factory)


def _sender(**overrides: str) -> BrevoInviteEmailSender:
    base = {
        "api_key": "brevo-key",
        "api_url": "https://api.brevo.test/v3/smtp/email",
        "template_id": "12",
    }
    base.update(overrides)
    return BrevoInviteEmailSender(**base)


def test_build_brevo_payload_maps_template_params() -> None:
    payload = build_brevo_payload(email=EMAIL, template_id=12)

    assert payload == {
        "to": [{"email": "friend@example.com"}],
        "templateId": 12,
        "params": {
            "SENDER_NAME": "Kim",
            "ERA_NAME": "Midway Island",
            "VOUCHER_CODE": "midway_island-1-abc",
            "VOUCHER_LINK": "https://oceans.example/redeem/midway_island-1-abc",
        },
    }


@pytest.mark.asyncio
async def test_send_posts_to_brevo_and_returns_message_id(monkeypatch) -> None:
    calls: list[dict[str, Any]] = []
    _patch_http_client(monkeypatch, calls, payload={"messageId": "<m1@brevo>"})

    delivery = await _sender().send(EMAIL)

    assert delivery.sent is True
    assert delivery.message_id == "<m1@brevo>"
    assert calls[0]["url"] == "https://api.brevo.test/v3/smtp/email"
    assert calls[0]["json"]["templateId"] == 12
    assert calls[0]["headers"]["api-key"] == "brevo-key"


@pytest.mark.asyncio
async def test_send_keeps_string_template_id_and_tolerates_empty_body(monkeypatch) -> None:
    calls: list[dict[str, Any]] = []
    _patch_http_client(monkeypatch, calls, payload=ValueError("no json"))

    delivery = await _sender(template_id="invite-v2").send(EMAIL)

    assert delivery.sent is True
    assert delivery.message_id is None
    assert calls[0]["json"]["templateId"] == "invite-v2"


@pytest.mark.asyncio
async def test_send_reports_http_failure(monkeypatch) -> None:
    calls: list[dict[str, Any]] = []
    _patch_http_client(monkeypatch, calls, error=httpx.ConnectError("connection refused"))

    delivery = await _sender().send(EMAIL)

    assert delivery.sent is False
    assert delivery.error == "connection refused"


@pytest.mark.asyncio
async def test_send_without_api_key_skips_http(monkeypatch) -> None:
    calls: list[dict[str, Any]] = []
    _patch_http_client(monkeypatch, calls)

    delivery = await _sender(api_key=" ").send(EMAIL)

    assert delivery.sent is False
    assert delivery.error == "email delivery is not configured"
    assert calls == []


def test_from_settings_reads_brevo_fields() -> None:
    settings = SimpleNamespace(
        brevo_api_key="k",
        brevo_api_url="https://api.brevo.test",
        brevo_invite_template_id="7",
    )

    sender = BrevoInviteEmailSender.from_settings(settings)

    assert sender._api_url == "https://api.brevo.test"
