"""
test_exchange.py - Unit tests for the constant-product exchange

Tests:
- get_amount_out / quote arithmetic
- Factory pair creation rules
- Liquidity provisioning (first deposit, ratio trimming, minimum liquidity)
- Router swaps, slippage and deadline checks
- Token legs always go through the token contract
"""

import pytest
from datetime import datetime

from feeledger import (
    get_amount_out, quote, MINIMUM_LIQUIDITY, DEAD_ADDRESS,
    ConstantProductFactory, ConstantProductRouter, PairFactory, ExchangeRouter,
    Ledger, currency, token, MAX_ALLOWANCE,
    ExchangeError, ExpiredDeadline, InsufficientLiquidity, InsufficientOutputAmount, InsufficientAllowance,
)
from tests.helpers import OWNER, POOL_TOKENS, POOL_CURRENCY, pair_of, sell, buy, assert_invariants


class TestPureMath:

    def test_amount_out(self):
        # 1000 * 997 * 500000 // (100000 * 1000 + 997000)
        assert get_amount_out(1_000, 100_000, 500_000) == 4_935

    def test_amount_out_requires_input(self):
        with pytest.raises(InsufficientOutputAmount):
            get_amount_out(0, 100, 100)

    def test_amount_out_requires_reserves(self):
        with pytest.raises(InsufficientLiquidity):
            get_amount_out(10, 0, 100)

    def test_quote(self):
        assert quote(100, 500, 100) == 20
        with pytest.raises(InsufficientLiquidity):
            quote(100, 0, 100)


@pytest.fixture
def plain_ledger():
    """Exchange over a plain (contract-less) token unit."""
    ledger = Ledger("amm", datetime(2025, 1, 1), verbose=False)
    ledger.register_unit(currency("ETH", "Ether"))
    ledger.register_unit(token("PLN", "Plain Token"))
    ledger.mint("ETH", "lp", 1_000_000)
    ledger.mint("PLN", "lp", 1_000_000)
    return ledger


class TestFactory:

    def test_create_pair(self, plain_ledger):
        factory = ConstantProductFactory(plain_ledger)
        address = factory.create_pair("ETH", "PLN")
        pair = factory.get_pair("PLN", "ETH")
        assert pair.address == address == "pair:PLN/ETH"
        assert pair.token_symbol == "PLN"
        assert "PLN-ETH-LP" in plain_ledger.units

    def test_duplicate_pair(self, plain_ledger):
        factory = ConstantProductFactory(plain_ledger)
        factory.create_pair("PLN", "ETH")
        with pytest.raises(ValueError, match="already exists"):
            factory.create_pair("ETH", "PLN")

    def test_needs_one_currency(self, plain_ledger):
        plain_ledger.register_unit(token("OTH", "Other"))
        factory = ConstantProductFactory(plain_ledger)
        with pytest.raises(ValueError, match="exactly one currency"):
            factory.create_pair("PLN", "OTH")

    def test_protocols(self, plain_ledger):
        factory = ConstantProductFactory(plain_ledger)
        router = ConstantProductRouter(plain_ledger, factory, "ETH")
        assert isinstance(factory, PairFactory)
        assert isinstance(router, ExchangeRouter)


class TestPlainPool:

    @pytest.fixture
    def amm(self, plain_ledger):
        factory = ConstantProductFactory(plain_ledger)
        factory.create_pair("PLN", "ETH")
        router = ConstantProductRouter(plain_ledger, factory, "ETH")
        router.provide_liquidity("lp", "PLN", 500_000, 0, 0, "lp", plain_ledger.current_time, 100_000)
        return plain_ledger, factory, router

    def test_first_deposit_locks_minimum(self, amm):
        ledger, factory, router = amm
        pair = factory.get_pair("PLN", "ETH")
        assert pair.reserve_token == 500_000
        assert pair.reserve_currency == 100_000
        assert ledger.get_balance(DEAD_ADDRESS, pair.share_symbol) == MINIMUM_LIQUIDITY
        assert ledger.get_balance("lp", pair.share_symbol) == 223_606 - MINIMUM_LIQUIDITY

    def test_second_deposit_trimmed_to_ratio(self, amm):
        ledger, factory, router = amm
        used_token, used_currency, shares = router.provide_liquidity(
            "lp", "PLN", 50_000, 0, 0, "lp", ledger.current_time, 50_000,
        )
        assert (used_token, used_currency) == (50_000, 10_000)
        assert shares > 0
        assert ledger.get_balance("lp", "ETH") == 1_000_000 - 110_000

    def test_min_currency_enforced(self, amm):
        ledger, factory, router = amm
        with pytest.raises(InsufficientOutputAmount):
            router.provide_liquidity("lp", "PLN", 50_000, 0, 20_000, "lp", ledger.current_time, 50_000)

    def test_convert(self, amm):
        ledger, factory, router = amm
        received = router.convert("lp", 5_000, 0, ("PLN", "ETH"), "bob", ledger.current_time)
        assert received == get_amount_out(5_000, 500_000, 100_000)
        assert ledger.get_balance("bob", "ETH") == received
        pair = factory.get_pair("PLN", "ETH")
        assert pair.reserve_token == 505_000

    def test_convert_slippage_rolls_back(self, amm):
        ledger, factory, router = amm
        before = ledger.get_balance("lp", "PLN")
        with pytest.raises(InsufficientOutputAmount):
            router.convert("lp", 5_000, 10**9, ("PLN", "ETH"), "lp", ledger.current_time)
        assert ledger.get_balance("lp", "PLN") == before
        assert factory.get_pair("PLN", "ETH").reserve_token == 500_000

    def test_expired_deadline(self, amm):
        ledger, factory, router = amm
        with pytest.raises(ExpiredDeadline):
            router.convert("lp", 5_000, 0, ("PLN", "ETH"), "lp", datetime(2024, 1, 1))

    def test_bad_path(self, amm):
        ledger, factory, router = amm
        with pytest.raises(ExchangeError):
            router.convert("lp", 5_000, 0, ("PLN", "ETH", "PLN"), "lp", ledger.current_time)
        with pytest.raises(ExchangeError):
            router.convert("lp", 5_000, 0, ("ETH", "PLN"), "lp", ledger.current_time)

    def test_unknown_pair(self, plain_ledger):
        plain_ledger.register_unit(token("OTH", "Other"))
        router = ConstantProductRouter(plain_ledger, ConstantProductFactory(plain_ledger), "ETH")
        with pytest.raises(ExchangeError, match="no pair"):
            router.buy("lp", 10, 0, "OTH", "lp", plain_ledger.current_time)

    def test_no_liquidity(self, plain_ledger):
        factory = ConstantProductFactory(plain_ledger)
        factory.create_pair("PLN", "ETH")
        router = ConstantProductRouter(plain_ledger, factory, "ETH")
        with pytest.raises(InsufficientLiquidity):
            router.buy("lp", 10, 0, "PLN", "lp", plain_ledger.current_time)

    def test_buy(self, amm):
        ledger, factory, router = amm
        received = router.buy("lp", 1_000, 0, "PLN", "carol", ledger.current_time)
        assert received == 4_935
        assert ledger.verify_double_entry()['valid']


class TestFeeTokenPool:

    def test_seeded_pool(self, live_token):
        pair = pair_of(live_token)
        assert pair.reserve_token == POOL_TOKENS
        assert pair.reserve_currency == POOL_CURRENCY
        assert live_token.balance_of(OWNER) == 1_000_000 - POOL_TOKENS

    def test_buy_pays_through_token_fees(self, live_token, traders):
        received = buy(live_token, "alice", 1_000)
        # 4935 out of the pool, 5% fee (246) taken on the way to alice
        assert received == 4_935 - 246
        assert live_token.balance_of("alice") == received
        assert pair_of(live_token).reserve_token == POOL_TOKENS - 4_935
        assert_invariants(live_token)

    def test_sell_measures_net_input(self, live_token, traders):
        buy(live_token, "alice", 1_000)
        pair = pair_of(live_token)
        reserve_before = pair.reserve_token
        received = sell(live_token, "alice", 1_000)
        # Only the net 950 reaches the pool.
        assert pair.reserve_token == reserve_before + 950
        assert received > 0
        assert_invariants(live_token)

    def test_sell_requires_approval(self, live_token):
        live_token.ledger.mint("ETH", "dave", 10_000)
        buy(live_token, "dave", 1_000)
        with pytest.raises(InsufficientAllowance):
            sell(live_token, "dave", 100)
        live_token.approve("dave", live_token.router.address, MAX_ALLOWANCE)
        sell(live_token, "dave", 100)
