from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from app.api.routes import internal_helpers, internal_rights
from app.economy.eras.catalog import EraNotFoundError
from app.economy.rights.errors import (
    InsufficientBalanceError,
    InvalidCreditError,
    NoAccessError,
    PersistenceFailureError,
)
from app.economy.rights.types import (
    AccessMethod,
    ConsumptionResult,
    ExclusiveBlocked,
    GuestBlocked,
    PassDebit,
    PassesAccess,
    VoucherAccess,
)
from app.main import app
from tests.api.internal_api_fixtures import AUTH_HEADERS, internal_settings

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _patch_engine(monkeypatch, **methods) -> None:
    monkeypatch.setattr(internal_rights, "get_engine", lambda: SimpleNamespace(**methods))


def _raising(exc: Exception):
    async def _call(*args, **kwargs):
        raise exc

    return _call


def test_rights_resolve_rejects_missing_token(internal_client) -> None:
    response = internal_client.post("/internal/rights/resolve", json={"era_id": "pirates"})

    assert response.status_code == 403
    assert response.json() == {"detail": {"code": "E_FORBIDDEN"}}


def test_rights_resolve_rejects_disallowed_ip(monkeypatch) -> None:
    monkeypatch.setattr(
        internal_helpers,
        "get_settings",
        lambda: internal_settings(internal_api_allowlist="192.168.0.0/16"),
    )
    client = TestClient(app, client=("127.0.0.1", 5101))

    response = client.post(
        "/internal/rights/resolve",
        json={"era_id": "pirates"},
        headers={**AUTH_HEADERS, "X-Forwarded-For": "192.168.1.10"},
    )

    assert response.status_code == 403
    assert response.json() == {"detail": {"code": "E_FORBIDDEN"}}


def test_rights_resolve_trusts_forwarded_ip_from_proxy(monkeypatch) -> None:
    monkeypatch.setattr(
        internal_helpers,
        "get_settings",
        lambda: internal_settings(
            internal_api_allowlist="10.0.0.0/8",
            internal_api_trusted_proxies="127.0.0.1/32",
        ),
    )

    async def resolve(account_id, era_id):
        return PassesAccess(required=1, balance=3)

    _patch_engine(monkeypatch, resolve=resolve)
    client = TestClient(app, client=("127.0.0.1", 5102))

    response = client.post(
        "/internal/rights/resolve",
        json={"account_id": "acc-1", "era_id": "midway_island"},
        headers={**AUTH_HEADERS, "X-Forwarded-For": "10.0.0.25"},
    )

    assert response.status_code == 200


def test_rights_resolve_returns_passes_decision(internal_client, monkeypatch) -> None:
    calls = []

    async def resolve(account_id, era_id):
        calls.append((account_id, era_id))
        return PassesAccess(required=2, balance=5)

    _patch_engine(monkeypatch, resolve=resolve)

    response = internal_client.post(
        "/internal/rights/resolve",
        json={"account_id": "acc-1", "era_id": "super_battleship"},
        headers=AUTH_HEADERS,
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["method"] == "passes"
    assert payload["can_play"] is True
    assert payload["required"] == 2
    assert payload["balance"] == 5
    assert payload["plays_available"] == 2
    assert calls == [("acc-1", "super_battleship")]


def test_rights_resolve_returns_voucher_and_guest_decisions(internal_client, monkeypatch) -> None:
    decisions = iter(
        [
            VoucherAccess(uses_remaining=-1, row_id=uuid4(), expires_at=NOW),
            GuestBlocked(),
        ]
    )

    async def resolve(account_id, era_id):
        return next(decisions)

    _patch_engine(monkeypatch, resolve=resolve)

    voucher = internal_client.post(
        "/internal/rights/resolve",
        json={"account_id": "acc-1", "era_id": "pirates"},
        headers=AUTH_HEADERS,
    ).json()
    guest = internal_client.post(
        "/internal/rights/resolve",
        json={"era_id": "pirates"},
        headers=AUTH_HEADERS,
    ).json()

    assert voucher["method"] == "voucher"
    assert voucher["uses_remaining"] == -1
    assert guest == {
        "era_id": "pirates",
        "method": "guest",
        "can_play": False,
        "prompt": "Sign in to continue",
        "uses_remaining": None,
        "expires_at": None,
        "required": None,
        "balance": None,
        "plays_available": None,
        "label": None,
    }


def test_rights_resolve_unknown_era_is_404(internal_client, monkeypatch) -> None:
    _patch_engine(monkeypatch, resolve=_raising(EraNotFoundError("atlantis")))

    response = internal_client.post(
        "/internal/rights/resolve",
        json={"account_id": "acc-1", "era_id": "atlantis"},
        headers=AUTH_HEADERS,
    )

    assert response.status_code == 404
    assert response.json() == {"detail": {"code": "E_ERA_NOT_FOUND"}}


def test_rights_consume_returns_debits(internal_client, monkeypatch) -> None:
    row_id = uuid4()

    async def consume(account_id, era_id):
        return ConsumptionResult(
            method=AccessMethod.PASSES,
            era_id=era_id,
            consumed=1,
            remaining=4,
            debits=(PassDebit(row_id=row_id, amount=1, remaining=4),),
        )

    _patch_engine(monkeypatch, consume=consume)

    response = internal_client.post(
        "/internal/rights/consume",
        json={"account_id": "acc-1", "era_id": "midway_island"},
        headers=AUTH_HEADERS,
    )

    assert response.status_code == 200
    assert response.json() == {
        "era_id": "midway_island",
        "method": "passes",
        "consumed": 1,
        "remaining": 4,
        "debits": [{"row_id": str(row_id), "amount": 1, "remaining": 4}],
    }


@pytest.mark.parametrize(
    ("exc", "status_code", "detail"),
    [
        (
            NoAccessError(ExclusiveBlocked(label="PIRATES")),
            403,
            {"code": "E_EXCLUSIVE", "label": "PIRATES", "method": "exclusive", "prompt": "Enter a voucher"},
        ),
        (
            NoAccessError(GuestBlocked()),
            403,
            {"code": "E_SIGN_IN_REQUIRED", "method": "guest", "prompt": "Sign in to continue"},
        ),
        (
            NoAccessError(PassesAccess(required=7, balance=2)),
            402,
            {
                "code": "E_PASSES_REQUIRED",
                "required": 7,
                "balance": 2,
                "method": "passes",
                "prompt": "Buy passes",
            },
        ),
        (InsufficientBalanceError(), 409, {"code": "E_TRY_AGAIN"}),
        (PersistenceFailureError("consume"), 503, {"code": "E_TRY_LATER"}),
    ],
)
def test_rights_consume_maps_engine_errors(internal_client, monkeypatch, exc, status_code, detail) -> None:
    _patch_engine(monkeypatch, consume=_raising(exc))

    response = internal_client.post(
        "/internal/rights/consume",
        json={"account_id": "acc-1", "era_id": "pirates"},
        headers=AUTH_HEADERS,
    )

    assert response.status_code == status_code
    assert response.json() == {"detail": detail}


def test_rights_credit_returns_new_balance(internal_client, monkeypatch) -> None:
    entitlement = SimpleNamespace(id=uuid4(), expires_at=NOW)
    credits = []

    async def credit_passes(**kwargs):
        credits.append(kwargs)
        return entitlement

    async def pass_balance(account_id):
        return 15

    _patch_engine(monkeypatch, credit_passes=credit_passes, pass_balance=pass_balance)

    response = internal_client.post(
        "/internal/rights/credit",
        json={"account_id": "acc-1", "amount": 5, "source": "achievement", "metadata": {"id": "a1"}},
        headers=AUTH_HEADERS,
    )

    assert response.status_code == 200
    assert response.json()["balance"] == 15
    assert response.json()["entitlement_id"] == str(entitlement.id)
    assert credits == [
        {"account_id": "acc-1", "amount": 5, "source_tag": "achievement", "metadata": {"id": "a1"}}
    ]


def test_rights_credit_rejects_invalid_source(internal_client, monkeypatch) -> None:
    _patch_engine(monkeypatch, credit_passes=_raising(InvalidCreditError("unknown pass source")))

    response = internal_client.post(
        "/internal/rights/credit",
        json={"account_id": "acc-1", "amount": 5, "source": "lottery"},
        headers=AUTH_HEADERS,
    )

    assert response.status_code == 422
    assert response.json() == {"detail": {"code": "E_INVALID_CREDIT"}}


def test_rights_credit_validates_amount(internal_client) -> None:
    response = internal_client.post(
        "/internal/rights/credit",
        json={"account_id": "acc-1", "amount": 0, "source": "bundle"},
        headers=AUTH_HEADERS,
    )

    assert response.status_code == 422


def test_rights_balance(internal_client, monkeypatch) -> None:
    async def pass_balance(account_id):
        return 9 if account_id == "acc-1" else 0

    _patch_engine(monkeypatch, pass_balance=pass_balance)

    response = internal_client.get("/internal/rights/acc-1/balance", headers=AUTH_HEADERS)

    assert response.status_code == 200
    assert response.json() == {"account_id": "acc-1", "balance": 9}
