from __future__ import annotations

from datetime import timedelta

import pytest

from app.economy.vouchers.errors import (
    AlreadyRedeemedError,
    EmailMismatchError,
    InvalidVoucherError,
    MalformedCodeError,
    SelfRedemptionError,
)
from app.economy.vouchers.service import normalize_email
from app.economy.vouchers.types import FindOrCreateStatus
from tests.economy.rights_fakes import NOW, build_harness

SESSION = object()


def test_normalize_email() -> None:
    assert normalize_email("  Friend@Example.COM ") == "friend@example.com"
    assert normalize_email("   ") is None
    assert normalize_email(None) is None


@pytest.mark.asyncio
async def test_generate_builds_valid_code_with_defaults() -> None:
    harness = build_harness()

    voucher = await harness.vouchers.generate(
        SESSION,
        type_token="pass",
        value=10,
        recipient_email="Friend@Example.com",
        now_utc=NOW,
    )

    assert voucher.voucher_code.startswith("pass-10-")
    assert voucher.purpose == "manual"
    assert voucher.recipient_email == "friend@example.com"
    assert voucher.reward_passes == 1
    assert voucher.signup_bonus == 10
    assert voucher.redeemed_at is None


@pytest.mark.asyncio
async def test_generate_rejects_malformed_value() -> None:
    harness = build_harness()

    with pytest.raises(MalformedCodeError):
        await harness.vouchers.generate(SESSION, type_token="pirates", value="forever", now_utc=NOW)

    assert harness.store.vouchers == []


@pytest.mark.asyncio
async def test_find_or_create_reuses_pending_voucher_case_insensitively() -> None:
    harness = build_harness()
    first, status = await harness.vouchers.find_or_create(
        SESSION,
        type_token="pirates",
        value=1,
        created_by="acc-1",
        recipient_email="friend@example.com",
        now_utc=NOW,
    )
    again, again_status = await harness.vouchers.find_or_create(
        SESSION,
        type_token="pirates",
        value=1,
        created_by="acc-1",
        recipient_email="FRIEND@example.com",
        now_utc=NOW + timedelta(hours=1),
    )

    assert status is FindOrCreateStatus.CREATED
    assert again_status is FindOrCreateStatus.REUSED
    assert again is first
    assert len(harness.store.vouchers) == 1


@pytest.mark.asyncio
async def test_find_or_create_reports_already_redeemed() -> None:
    harness = build_harness()
    voucher, _ = await harness.vouchers.find_or_create(
        SESSION,
        type_token="pirates",
        value=1,
        created_by="acc-1",
        recipient_email="friend@example.com",
        now_utc=NOW,
    )
    await harness.vouchers.redeem(
        SESSION, account_id="acc-2", code=voucher.voucher_code, email="friend@example.com", now_utc=NOW
    )

    found, status = await harness.vouchers.find_or_create(
        SESSION,
        type_token="pirates",
        value=1,
        created_by="acc-1",
        recipient_email="friend@example.com",
        now_utc=NOW,
    )

    assert status is FindOrCreateStatus.ALREADY_REDEEMED
    assert found is voucher


@pytest.mark.asyncio
async def test_redeem_count_voucher_grants_passes() -> None:
    harness = build_harness()
    voucher = await harness.vouchers.generate(SESSION, type_token="pass", value=10, now_utc=NOW)

    row = await harness.vouchers.redeem(
        SESSION, account_id="acc-1", code=f"  {voucher.voucher_code} ", now_utc=NOW
    )

    assert row.rights_type == "pass"
    assert row.rights_value == "voucher"
    assert row.uses_remaining == 10
    assert row.source_voucher_code == voucher.voucher_code
    assert voucher.redeemed_by_account_id == "acc-1"
    assert voucher.redeemed_at == NOW
    assert harness.store.ledger[0].entry_type == "VOUCHER_REDEEM"


@pytest.mark.asyncio
async def test_redeem_time_voucher_grants_unlimited_until_expiry() -> None:
    harness = build_harness()
    voucher = await harness.vouchers.generate(
        SESSION, type_token="pirates", value="days7", created_by="acc-1", now_utc=NOW
    )

    row = await harness.vouchers.redeem(
        SESSION, account_id="acc-2", code=voucher.voucher_code, now_utc=NOW
    )

    assert row.rights_type == "era"
    assert row.rights_value == "pirates"
    assert row.uses_remaining == -1
    assert row.expires_at == NOW + timedelta(days=7)
    assert row.created_by_account_id == "acc-1"


@pytest.mark.asyncio
async def test_redeem_unknown_code_is_invalid() -> None:
    harness = build_harness()

    with pytest.raises(InvalidVoucherError):
        await harness.vouchers.redeem(SESSION, account_id="acc-1", code="pass-10-nope", now_utc=NOW)


@pytest.mark.asyncio
async def test_redeem_denials_leave_voucher_untouched() -> None:
    harness = build_harness()
    voucher = await harness.vouchers.generate(
        SESSION,
        type_token="pirates",
        value=1,
        created_by="acc-1",
        recipient_email="friend@example.com",
        now_utc=NOW,
    )

    with pytest.raises(SelfRedemptionError):
        await harness.vouchers.redeem(
            SESSION, account_id="acc-1", code=voucher.voucher_code, now_utc=NOW
        )
    with pytest.raises(EmailMismatchError):
        await harness.vouchers.redeem(
            SESSION,
            account_id="acc-2",
            code=voucher.voucher_code,
            email="other@example.com",
            now_utc=NOW,
        )

    assert voucher.redeemed_at is None
    assert harness.store.entitlements == []


@pytest.mark.asyncio
async def test_second_redemption_is_rejected() -> None:
    harness = build_harness()
    voucher = await harness.vouchers.generate(SESSION, type_token="pass", value=3, now_utc=NOW)
    await harness.vouchers.redeem(SESSION, account_id="acc-1", code=voucher.voucher_code, now_utc=NOW)

    with pytest.raises(AlreadyRedeemedError):
        await harness.vouchers.redeem(
            SESSION, account_id="acc-2", code=voucher.voucher_code, now_utc=NOW
        )

    assert len(harness.store.entitlements) == 1


@pytest.mark.asyncio
async def test_lost_mark_race_raises_already_redeemed() -> None:
    harness = build_harness()
    voucher = await harness.vouchers.generate(SESSION, type_token="pass", value=3, now_utc=NOW)

    async def lost_race(session, *, voucher_code, account_id, now_utc):
        return False

    harness.vouchers_repo.mark_redeemed_if_available = lost_race

    with pytest.raises(AlreadyRedeemedError):
        await harness.vouchers.redeem(
            SESSION, account_id="acc-1", code=voucher.voucher_code, now_utc=NOW
        )

    assert harness.store.entitlements == []


@pytest.mark.asyncio
async def test_issue_and_redeem_creates_system_voucher() -> None:
    harness = build_harness()

    row = await harness.vouchers.issue_and_redeem(
        SESSION,
        account_id="acc-1",
        type_token="pass",
        value=10,
        purpose="referral_signup_bonus",
        recipient_email="new@example.com",
        now_utc=NOW,
    )

    voucher = harness.store.voucher(row.source_voucher_code)
    assert voucher.created_by_account_id is None
    assert voucher.reward_passes == 0
    assert voucher.signup_bonus == 0
    assert voucher.redeemed_by_account_id == "acc-1"
    assert row.uses_remaining == 10


@pytest.mark.asyncio
async def test_issue_and_redeem_with_fixed_suffix_pays_once() -> None:
    harness = build_harness()

    async def issue():
        return await harness.vouchers.issue_and_redeem(
            SESSION,
            account_id="acc-1",
            type_token="pass",
            value=10,
            purpose="referral_signup_reward",
            suffix="abc-referrer_reward",
            now_utc=NOW,
        )

    first = await issue()
    second = await issue()

    assert first.source_voucher_code == "pass-10-abc-referrer_reward"
    assert second is None
    assert len(harness.store.vouchers) == 1
    assert [row.uses_remaining for row in harness.store.rows_for("acc-1")] == [10]


@pytest.mark.asyncio
async def test_generate_rejects_zero_play_count() -> None:
    harness = build_harness()

    with pytest.raises(MalformedCodeError):
        await harness.vouchers.generate(SESSION, type_token="pass", value=0, now_utc=NOW)

    assert harness.store.vouchers == []
