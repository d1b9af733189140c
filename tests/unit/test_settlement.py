"""
test_settlement.py - Unit tests for batched fee settlement

Tests:
- Pure plan / split / accumulator functions
- swap_back no-ops (empty state, disabled)
- Settlement mutex
- A full run: conversion, locked liquidity, charity payout, record
- Batch cap
- Charity payout failure and retry
"""

import pytest

from feeledger import (
    SettlementPlan, calculate_settlement_plan, calculate_currency_split, decrement_accumulators,
    swap_back, TokenConfig, DEAD_ADDRESS, SettlementReentry, Unauthorized,
)
from tests.helpers import OWNER, CHARITY, SUPPLY, buy, assert_invariants, live, pair_of


class TestCalculateSettlementPlan:

    def test_pro_rata_liquidity(self):
        plan = calculate_settlement_plan(1000, 750, 250, 10_000)
        assert plan == SettlementPlan(batch=1000, liquidity_tokens=250, half_liquidity=125, to_convert=875)
        assert plan.charity_tokens == 750

    def test_batch_capped(self):
        plan = calculate_settlement_plan(50_000, 30_000, 10_000, 10_000)
        assert plan.batch == 10_000
        assert plan.liquidity_tokens == 2_500

    @pytest.mark.parametrize("held,charity,liquidity", [(0, 10, 10), (100, 0, 0)])
    def test_nothing_to_settle(self, held, charity, liquidity):
        assert calculate_settlement_plan(held, charity, liquidity, 10_000) is None

    def test_charity_only(self):
        plan = calculate_settlement_plan(400, 400, 0, 10_000)
        assert plan.half_liquidity == 0
        assert plan.to_convert == 400


class TestCalculateCurrencySplit:

    def test_split(self):
        assert calculate_currency_split(875, 125, 875) == (125, 750)

    def test_rounds_toward_charity(self):
        for_liquidity, for_charity = calculate_currency_split(100, 1, 3)
        assert (for_liquidity, for_charity) == (33, 67)

    def test_nothing_converted(self):
        assert calculate_currency_split(0, 0, 0) == (0, 0)


class TestDecrementAccumulators:

    def test_subtracts_shares(self):
        plan = calculate_settlement_plan(400, 300, 100, 10_000)
        assert decrement_accumulators(300, 100, plan) == (0, 0)

    def test_partial_batch(self):
        plan = calculate_settlement_plan(2_000, 3_000, 1_000, 400)
        assert decrement_accumulators(3_000, 1_000, plan) == (2_700, 900)

    def test_floors_at_zero(self):
        # Contract holds more than was earmarked (tokens sent to it directly).
        plan = calculate_settlement_plan(1_000, 30, 10, 10_000)
        assert decrement_accumulators(30, 10, plan) == (0, 0)


def accrue(token, trader="alice", eth=1_000, times=1):
    """Taxed buys; buys never trigger settlement, so fees just accumulate."""
    for _ in range(times):
        buy(token, trader, eth)


class TestSwapBackNoOps:

    def test_empty_state(self, live_token):
        log_length = len(live_token.ledger.transaction_log)
        assert swap_back(live_token) is None
        assert live_token.settlement_log == []
        assert len(live_token.ledger.transaction_log) == log_length

    def test_disabled(self, live_token, traders):
        accrue(live_token)
        held = live_token.balance_of(live_token.address)
        live_token.policy.set_swap_enabled(OWNER, False)
        assert live_token.manual_swap_back(OWNER) is None
        assert live_token.balance_of(live_token.address) == held

    def test_mutex(self, live_token):
        live_token.settling = True
        with pytest.raises(SettlementReentry):
            swap_back(live_token)
        assert live_token.settling

    def test_mutex_released_after_run(self, live_token, traders):
        accrue(live_token)
        live_token.manual_swap_back(OWNER)
        assert not live_token.settling

    def test_manual_requires_owner(self, live_token):
        with pytest.raises(Unauthorized):
            live_token.manual_swap_back("alice")


class TestSwapBackRun:

    def test_full_run(self, live_token, traders):
        token, ledger = live_token, live_token.ledger
        accrue(token)
        held = token.balance_of(token.address)
        earmarked = token.tokens_for_charity + token.tokens_for_liquidity
        assert held == earmarked > 0
        share_symbol = pair_of(token).share_symbol
        dead_shares = ledger.get_balance(DEAD_ADDRESS, share_symbol)

        record = token.manual_swap_back(OWNER)

        assert record is token.settlement_log[-1]
        assert record.tokens_processed == held
        assert record.currency_received == record.currency_for_liquidity + record.currency_for_charity
        assert record.liquidity_shares > 0
        assert record.charity_paid
        assert record.pending_charity_currency == 0
        assert token.tokens_for_charity == 0
        assert token.tokens_for_liquidity == 0
        assert ledger.get_balance(DEAD_ADDRESS, share_symbol) == dead_shares + record.liquidity_shares
        assert ledger.get_balance(CHARITY, "ETH") == record.charity_payout == record.currency_for_charity
        assert_invariants(token)

    def test_batch_cap(self, live_token, traders):
        token = live_token
        token.policy.set_swap_threshold(OWNER, 10)
        accrue(token, times=2)
        held = token.balance_of(token.address)
        cap = token.policy.settlement_batch_cap
        assert held > cap == 200

        record = token.manual_swap_back(OWNER)

        assert record.tokens_processed == cap
        assert token.tokens_for_charity + token.tokens_for_liquidity > 0
        assert_invariants(token)

    def test_no_charity_wallet(self):
        token = live(TokenConfig(total_supply=SUPPLY))
        token.ledger.mint("ETH", "alice", 10_000)
        accrue(token)
        before = token.ledger.get_balance(token.address, "ETH")
        record = token.manual_swap_back(OWNER)
        assert record.charity_payout == 0
        assert not record.charity_paid
        assert token.pending_charity_currency == 0
        assert token.ledger.get_balance(token.address, "ETH") >= before + record.currency_for_charity


class TestCharityRetry:

    def test_failure_then_success(self, live_token, traders):
        token, ledger = live_token, live_token.ledger
        calls = []

        def flaky(sender, amount):
            calls.append(amount)
            if len(calls) == 1:
                raise RuntimeError("charity offline")

        ledger.register_receiver(CHARITY, flaky)

        accrue(token, "alice")
        first = token.manual_swap_back(OWNER)
        assert not first.charity_paid
        assert token.pending_charity_currency == first.charity_payout > 0
        assert ledger.get_balance(CHARITY, "ETH") == 0
        assert ledger.get_balance(token.address, "ETH") >= token.pending_charity_currency
        assert_invariants(token)

        accrue(token, "bob")
        second = token.manual_swap_back(OWNER)
        assert second.charity_paid
        assert second.charity_payout == second.currency_for_charity + first.charity_payout
        assert token.pending_charity_currency == 0
        assert ledger.get_balance(CHARITY, "ETH") == first.currency_for_charity + second.currency_for_charity
        assert_invariants(token)

    def test_reentrant_charity_is_refused(self, live_token, traders):
        token, ledger = live_token, live_token.ledger

        def reenter(sender, amount):
            token.manual_swap_back(OWNER)

        ledger.register_receiver(CHARITY, reenter)
        accrue(token)
        record = token.manual_swap_back(OWNER)
        assert not record.charity_paid
        assert token.pending_charity_currency == record.charity_payout
        assert len(token.settlement_log) == 1
