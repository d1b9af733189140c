"""
helpers.py - Deployment and invariant helpers shared by the test suites

All tokens use a 1,000,000 unit supply, so the default limits are:
    max transaction 10,000 / max wallet 20,000 / settlement threshold 500
"""

from datetime import datetime
from typing import Optional, Tuple

from feeledger import (
    Ledger, currency,
    TokenConfig, FeeToken,
    ConstantProductFactory, ConstantProductRouter, ConstantProductPair,
    MAX_ALLOWANCE,
)


OWNER = "deployer"
CHARITY = "charity"
SUPPLY = 1_000_000
POOL_TOKENS = 500_000
POOL_CURRENCY = 100_000
T0 = datetime(2025, 1, 1)


def make_ledger(name: str = "test") -> Ledger:
    ledger = Ledger(name, T0, verbose=False)
    ledger.register_unit(currency("ETH", "Ether"))
    return ledger


def make_exchange(ledger: Ledger) -> Tuple[ConstantProductFactory, ConstantProductRouter]:
    factory = ConstantProductFactory(ledger)
    router = ConstantProductRouter(ledger, factory, "ETH")
    return factory, router


def deploy(ledger: Ledger, config: Optional[TokenConfig] = None) -> FeeToken:
    """Deploy a token on a fresh exchange (no liquidity, trading disabled)."""
    if config is None:
        config = TokenConfig(total_supply=SUPPLY, charity_wallet=CHARITY)
    factory, router = make_exchange(ledger)
    return FeeToken(ledger, config, OWNER, factory, router)


def seed_pool(token: FeeToken, tokens: int = POOL_TOKENS, eth: int = POOL_CURRENCY) -> None:
    """Owner funds the primary pair. The owner is fee-exempt, so this is untaxed."""
    ledger = token.ledger
    ledger.mint("ETH", OWNER, eth, contract_id="faucet")
    token.approve(OWNER, token.router.address, MAX_ALLOWANCE)
    token.router.provide_liquidity(OWNER, token.symbol, tokens, 0, 0, OWNER, ledger.current_time, eth)


def live(config: Optional[TokenConfig] = None) -> FeeToken:
    """Deployed, pool seeded, trading enabled."""
    token = deploy(make_ledger(), config)
    seed_pool(token)
    token.policy.enable_trading(OWNER)
    return token


def pair_of(token: FeeToken) -> ConstantProductPair:
    return token.router.factory.get_pair(token.symbol, "ETH")


def fund_trader(token: FeeToken, trader: str, eth: int = 50_000) -> None:
    token.ledger.mint("ETH", trader, eth, contract_id="faucet")
    token.approve(trader, token.router.address, MAX_ALLOWANCE)


def sell(token: FeeToken, trader: str, amount: int) -> int:
    return token.router.convert(
        trader, amount, 0, (token.symbol, "ETH"), trader, token.ledger.current_time,
    )


def buy(token: FeeToken, trader: str, eth: int) -> int:
    return token.router.buy(trader, eth, 0, token.symbol, trader, token.ledger.current_time)


def assert_invariants(token: FeeToken) -> None:
    """Conservation for every unit plus the accumulator bound."""
    result = token.ledger.verify_double_entry()
    assert result['valid'], result['discrepancies']
    held = token.balance_of(token.address)
    assert token.tokens_for_charity + token.tokens_for_liquidity <= held
