import asyncio

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.future import select

from models.credit_transaction import CreditTransaction
from services.credit_types import DebitOutcome, UnknownActionError, WalletNotFoundError
from services.credits import REASON_INSUFFICIENT_CREDITS, REASON_UNKNOWN_ACTION
from services.pricing import PricingResolver
from services.wallets import is_transient_error, load_wallet, locked_wallet


async def _transactions(session, user_id):
    result = await session.execute(
        select(CreditTransaction)
        .where(CreditTransaction.user_id == user_id)
        .order_by(CreditTransaction.id.asc())
    )
    rows = [
        (row.transaction_type, row.amount, row.balance_after, row.action_type)
        for row in result.scalars().all()
    ]
    await session.rollback()
    return rows


async def _wallet_state(session_maker, user_id):
    async with session_maker() as session:
        wallet = await load_wallet(session, user_id)
        if wallet is None:
            return None
        return {
            "balance": wallet.credits_balance,
            "used": wallet.credits_used,
            "is_trial": bool(wallet.is_trial),
            "use_own_keys": bool(wallet.use_own_keys),
            "keys_valid": bool(wallet.keys_valid),
        }


async def _enable_byok_flags(session_maker, user_id):
    async with session_maker() as session:
        async with locked_wallet(session, user_id) as wallet:
            wallet.use_own_keys = True
            wallet.keys_valid = True


@pytest.mark.asyncio
async def test_charge_then_purchase_scenario(session_maker, make_ledger):
    async with session_maker() as session:
        ledger = make_ledger(session)
        charge = await ledger.debit("user-a", "ai_email")
        assert charge.outcome is DebitOutcome.CHARGED
        assert charge.credits_deducted == 20
        assert charge.balance == 980
        assert charge.transaction_id is not None

        rows = await _transactions(session, "user-a")
        assert rows == [
            ("credit", 1000, 1000, "trial"),
            ("debit", 20, 980, "ai_email"),
        ]

        credit = await ledger.credit("user-a", 500, "purchase", "bought 500")
        assert credit.credits_added == 500
        assert credit.balance == 1480

        rows = await _transactions(session, "user-a")
        assert rows[-1] == ("credit", 500, 1480, "purchase")
        assert len(rows) == 3

    state = await _wallet_state(session_maker, "user-a")
    assert state["balance"] == 1480
    assert state["used"] == 20
    assert state["is_trial"] is False


@pytest.mark.asyncio
async def test_debit_denied_when_balance_below_price(session_maker, make_ledger):
    async with session_maker() as session:
        await PricingResolver(session).set_cost("ai_proposal", 100)
        ledger = make_ledger(session, trial_credits=50)

        result = await ledger.debit("user-poor", "ai_proposal")
        assert result.outcome is DebitOutcome.INSUFFICIENT
        assert result.success is False
        assert result.credits_required == 100
        assert result.balance == 50
        assert result.credits_deducted == 0

        admission = await ledger.can_perform("user-poor", "ai_proposal")
        assert admission.allowed is False
        assert admission.reason == REASON_INSUFFICIENT_CREDITS
        assert admission.credits_required == 100
        assert admission.current_balance == 50

        rows = await _transactions(session, "user-poor")
        assert [row[0] for row in rows] == ["credit"]

    state = await _wallet_state(session_maker, "user-poor")
    assert state["balance"] == 50


@pytest.mark.asyncio
async def test_byok_wallet_is_exempt_and_unledgered(session_maker, make_ledger):
    async with session_maker() as session:
        await make_ledger(session).get_or_create_wallet("user-byok")
    await _enable_byok_flags(session_maker, "user-byok")

    async with session_maker() as session:
        ledger = make_ledger(session)
        for action_type in ("ai_email", "seo_analysis", "google_search"):
            result = await ledger.debit("user-byok", action_type)
            assert result.outcome is DebitOutcome.EXEMPT
            assert result.using_own_keys is True
            assert result.credits_deducted == 0
            assert result.balance == 1000

        admission = await ledger.can_perform("user-byok", "ai_proposal")
        assert admission.allowed is True
        assert admission.using_own_keys is True

        rows = await _transactions(session, "user-byok")
        assert rows == [("credit", 1000, 1000, "trial")]

    state = await _wallet_state(session_maker, "user-byok")
    assert state["balance"] == 1000
    assert state["used"] == 0


@pytest.mark.asyncio
async def test_invalidate_returns_wallet_to_metered_billing(session_maker, make_ledger, make_vault):
    async with session_maker() as session:
        await make_ledger(session).get_or_create_wallet("user-revoked")
    await _enable_byok_flags(session_maker, "user-revoked")

    async with session_maker() as session:
        await make_vault(session).invalidate("user-revoked")

    async with session_maker() as session:
        result = await make_ledger(session).debit("user-revoked", "ai_custom")
    assert result.outcome is DebitOutcome.CHARGED
    assert result.credits_deducted == 30
    assert result.balance == 970

    state = await _wallet_state(session_maker, "user-revoked")
    assert state["use_own_keys"] is False
    assert state["keys_valid"] is False


@pytest.mark.asyncio
async def test_unknown_action_fails_without_creating_wallet(session_maker, make_ledger):
    async with session_maker() as session:
        ledger = make_ledger(session)
        with pytest.raises(UnknownActionError) as exc_info:
            await ledger.debit("user-new", "teleport")
        assert exc_info.value.action_type == "teleport"

        admission = await ledger.can_perform("user-new", "teleport")
        assert admission.allowed is False
        assert admission.reason == REASON_UNKNOWN_ACTION

    assert await _wallet_state(session_maker, "user-new") is None


@pytest.mark.asyncio
async def test_inactive_price_is_unknown(session_maker, make_ledger):
    async with session_maker() as session:
        await PricingResolver(session).set_cost("ai_custom", 30, is_active=False)
        with pytest.raises(UnknownActionError):
            await make_ledger(session).debit("user-x", "ai_custom")


@pytest.mark.asyncio
async def test_credit_never_creates_a_wallet(session_maker, make_ledger):
    async with session_maker() as session:
        ledger = make_ledger(session)
        with pytest.raises(WalletNotFoundError):
            await ledger.credit("ghost", 100, "purchase", "bought 100")
        with pytest.raises(ValueError):
            await ledger.credit("ghost", 0, "purchase", "nothing")

    assert await _wallet_state(session_maker, "ghost") is None


@pytest.mark.asyncio
async def test_zero_priced_action_charges_nothing(session_maker, make_ledger):
    async with session_maker() as session:
        await PricingResolver(session).set_cost("free_preview", 0)
        result = await make_ledger(session).debit("user-free", "free_preview")
        assert result.outcome is DebitOutcome.CHARGED
        assert result.credits_deducted == 0
        assert result.balance == 1000

        rows = await _transactions(session, "user-free")
        assert len(rows) == 1


@pytest.mark.asyncio
async def test_concurrent_first_access_grants_trial_once(session_maker, make_ledger):
    async def first_debit():
        async with session_maker() as session:
            return await make_ledger(session).debit("user-race", "ai_email")

    async def first_check():
        async with session_maker() as session:
            return await make_ledger(session).can_perform("user-race", "ai_email")

    results = await asyncio.gather(first_debit(), first_check(), first_debit(), first_check(), first_debit())

    charges = [result for result in results if hasattr(result, "outcome")]
    assert all(charge.outcome is DebitOutcome.CHARGED for charge in charges)

    async with session_maker() as session:
        rows = await _transactions(session, "user-race")
    trial_rows = [row for row in rows if row[3] == "trial"]
    assert trial_rows == [("credit", 1000, 1000, "trial")]
    assert len([row for row in rows if row[0] == "debit"]) == 3

    state = await _wallet_state(session_maker, "user-race")
    assert state["balance"] == 940


@pytest.mark.asyncio
async def test_concurrent_debits_never_overdraw(session_maker, make_ledger):
    async with session_maker() as session:
        await make_ledger(session, trial_credits=100).get_or_create_wallet("user-burst")

    async def spend():
        async with session_maker() as session:
            return await make_ledger(session, trial_credits=100).debit("user-burst", "ai_email")

    results = await asyncio.gather(*(spend() for _ in range(8)))
    outcomes = [result.outcome for result in results]
    assert outcomes.count(DebitOutcome.CHARGED) == 5
    assert outcomes.count(DebitOutcome.INSUFFICIENT) == 3

    async with session_maker() as session:
        rows = await _transactions(session, "user-burst")
    debits = [row for row in rows if row[0] == "debit"]
    assert [row[2] for row in debits] == [80, 60, 40, 20, 0]

    state = await _wallet_state(session_maker, "user-burst")
    assert state["balance"] == 0
    assert state["used"] == 100


@pytest.mark.asyncio
async def test_concurrent_debits_and_credits_balance_matches_log(session_maker, make_ledger):
    async with session_maker() as session:
        await make_ledger(session).get_or_create_wallet("user-mixed")

    async def spend():
        async with session_maker() as session:
            return await make_ledger(session).debit("user-mixed", "ai_email")

    async def top_up():
        async with session_maker() as session:
            return await make_ledger(session).credit("user-mixed", 25, "purchase", "top up")

    await asyncio.gather(*([spend() for _ in range(6)] + [top_up() for _ in range(4)]))

    async with session_maker() as session:
        ledger = make_ledger(session)
        report = await ledger.reconcile("user-mixed")
        rows = await _transactions(session, "user-mixed")

    assert report["consistent"] is True
    assert report["stored_balance"] == 1000 - 6 * 20 + 4 * 25
    running = 0
    for direction, amount, balance_after, _ in rows:
        running += amount if direction == "credit" else -amount
        assert balance_after == running


@pytest.mark.asyncio
async def test_refund_restores_charge_and_keeps_trial_flag(session_maker, make_ledger):
    async with session_maker() as session:
        ledger = make_ledger(session)
        charge = await ledger.debit("user-refund", "seo_analysis")
        refund = await ledger.refund(charge, "user-refund", reason="provider_error")
        assert refund is not None
        assert refund.credits_added == 50
        assert refund.balance == 1000

        rows = await _transactions(session, "user-refund")
        assert rows[-1] == ("credit", 50, 1000, "refund")

    state = await _wallet_state(session_maker, "user-refund")
    assert state["is_trial"] is True


@pytest.mark.asyncio
async def test_refund_of_exempt_charge_is_noop(session_maker, make_ledger):
    async with session_maker() as session:
        await make_ledger(session).get_or_create_wallet("user-free-ride")
    await _enable_byok_flags(session_maker, "user-free-ride")

    async with session_maker() as session:
        ledger = make_ledger(session)
        charge = await ledger.debit("user-free-ride", "ai_email")
        assert await ledger.refund(charge, "user-free-ride", reason="provider_error") is None


@pytest.mark.asyncio
async def test_reconcile_detects_tampered_balance(session_maker, make_ledger):
    async with session_maker() as session:
        await make_ledger(session).debit("user-tamper", "google_search")

    async with session_maker() as session:
        async with locked_wallet(session, "user-tamper") as wallet:
            wallet.credits_balance = 5

    async with session_maker() as session:
        report = await make_ledger(session).reconcile("user-tamper")
    assert report["consistent"] is False
    assert report["stored_balance"] == 5
    assert report["replayed_balance"] == 990


@pytest.mark.asyncio
async def test_history_and_usage_stats(session_maker, make_ledger):
    async with session_maker() as session:
        ledger = make_ledger(session)
        await ledger.debit("user-stats", "ai_email")
        await ledger.debit("user-stats", "ai_email")
        await ledger.debit("user-stats", "google_search")

        history = await ledger.get_history("user-stats", page=1, limit=2)
        assert history["pagination"]["total"] == 4
        assert history["pagination"]["total_pages"] == 2
        assert [item["action_type"] for item in history["items"]] == ["google_search", "ai_email"]

        filtered = await ledger.get_history("user-stats", action_type="ai_email")
        assert filtered["pagination"]["total"] == 2

        stats = await ledger.get_usage_stats("user-stats", days=7)
        assert stats["by_action_type"][0] == {"action_type": "ai_email", "count": 2, "total_credits": 40}
        assert stats["period"] == "7 days"

        summary = await ledger.get_summary("user-stats")
        assert summary["credits_balance"] == 950
        assert summary["total_transactions"] == 4


def test_lock_failures_are_transient():
    exc = OperationalError("SELECT 1", {}, Exception("database is locked"))
    assert is_transient_error(exc) is True
