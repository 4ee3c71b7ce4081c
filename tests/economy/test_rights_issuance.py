from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from app.economy.rights.errors import InvalidCreditError
from app.economy.rights.issuance import voucher_expiry, years_from
from app.economy.vouchers.codec import parse
from tests.economy.rights_fakes import NOW, UTC, build_harness

SESSION = object()


@pytest.mark.asyncio
async def test_credit_passes_creates_row_and_credit_entry() -> None:
    harness = build_harness()

    row = await harness.issuance.credit_passes(
        SESSION,
        account_id="acc-1",
        amount=5,
        source_tag="achievement",
        metadata={"achievement": "first_win"},
        now_utc=NOW,
    )

    assert row.rights_type == "pass"
    assert row.rights_value == "achievement"
    assert row.uses_remaining == 5
    assert row.expires_at == datetime(2028, 3, 1, 12, 0, tzinfo=UTC)
    assert await harness.resolver.pass_balance(SESSION, "acc-1", now_utc=NOW) == 5

    entry = harness.store.ledger[0]
    assert entry.direction == "CREDIT"
    assert entry.entry_type == "PASS_CREDIT"
    assert entry.amount == 5
    assert entry.idempotency_key == f"rights:credit:{row.id}"
    assert entry.metadata_ == {"achievement": "first_win", "unlimited": False}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("account_id", "amount", "source_tag"),
    [
        ("guest-1", 5, "bundle"),
        ("", 5, "bundle"),
        ("acc-1", 0, "bundle"),
        ("acc-1", -3, "bundle"),
        ("acc-1", 5, "lottery"),
    ],
)
async def test_credit_passes_rejects_invalid_credit(account_id, amount, source_tag) -> None:
    harness = build_harness()

    with pytest.raises(InvalidCreditError):
        await harness.issuance.credit_passes(
            SESSION,
            account_id=account_id,
            amount=amount,
            source_tag=source_tag,
            now_utc=NOW,
        )

    assert harness.store.entitlements == []
    assert harness.store.ledger == []


@pytest.mark.asyncio
async def test_era_purchase_is_unlimited_for_two_years() -> None:
    harness = build_harness()

    row, replay = await harness.issuance.grant_era_access(
        SESSION,
        account_id="acc-1",
        era_id="pirates",
        purchase_reference="pi_1",
        metadata={"amount": 499},
        now_utc=NOW,
    )

    assert replay is False
    assert row.uses_remaining == -1
    assert row.expires_at == years_from(NOW, 2)
    entry = harness.store.ledger[0]
    assert entry.entry_type == "ERA_PURCHASE"
    assert entry.amount == 1
    assert entry.metadata_["unlimited"] is True
    assert entry.metadata_["purchase_reference"] == "pi_1"


@pytest.mark.asyncio
async def test_era_purchase_replay_returns_existing_row() -> None:
    harness = build_harness()
    first, _ = await harness.issuance.grant_era_access(
        SESSION, account_id="acc-1", era_id="pirates", purchase_reference="pi_1", now_utc=NOW
    )

    second, replay = await harness.issuance.grant_era_access(
        SESSION,
        account_id="acc-1",
        era_id="pirates",
        purchase_reference="pi_1",
        now_utc=NOW + timedelta(minutes=5),
    )

    assert replay is True
    assert second is first
    assert len(harness.store.entitlements) == 1
    assert len(harness.store.ledger) == 1


@pytest.mark.asyncio
async def test_era_purchase_reference_reused_for_other_account_is_rejected() -> None:
    harness = build_harness()
    await harness.issuance.grant_era_access(
        SESSION, account_id="acc-1", era_id="pirates", purchase_reference="pi_1", now_utc=NOW
    )

    with pytest.raises(InvalidCreditError):
        await harness.issuance.grant_era_access(
            SESSION, account_id="acc-2", era_id="pirates", purchase_reference="pi_1", now_utc=NOW
        )


@pytest.mark.asyncio
async def test_guest_cannot_purchase_era() -> None:
    harness = build_harness()

    with pytest.raises(InvalidCreditError):
        await harness.issuance.grant_era_access(
            SESSION, account_id="guest-7", era_id="pirates", purchase_reference="pi_1", now_utc=NOW
        )


def test_years_from_handles_leap_day() -> None:
    leap_day = datetime(2028, 2, 29, 9, 0, tzinfo=UTC)

    assert years_from(leap_day, 2) == datetime(2030, 2, 28, 9, 0, tzinfo=UTC)
    assert years_from(leap_day, 4) == datetime(2032, 2, 29, 9, 0, tzinfo=UTC)


def test_voucher_expiry_uses_duration_for_time_codes_only() -> None:
    assert voucher_expiry(parse("pirates-days3-x"), NOW) == NOW + timedelta(days=3)
    assert voucher_expiry(parse("pass-5-x"), NOW) == years_from(NOW, 2)
