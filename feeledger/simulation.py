"""
simulation.py - Seeded Random Trading Sessions

Drives a deployed FeeToken with random buys and sells through a
ConstantProductRouter and records how supply, the contract's retained
balance, the accumulators and pending charity currency evolve.

Trade sides are drawn uniformly, buy sizes are lognormal in currency and
sell sizes are a uniform fraction of the trader's holdings. Trades that
the policy or the pool rejects are counted and skipped; everything else
propagates. The same seed always yields the same session.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Sequence

import numpy as np

from .core import ExchangeError, InsufficientFunds, TradingNotActive, TransferLimitExceeded
from .exchange import ConstantProductRouter
from .fee_token import FeeToken


REJECTIONS = (TransferLimitExceeded, TradingNotActive, InsufficientFunds, ExchangeError)


@dataclass(frozen=True)
class SessionReport:
    """Per-step paths (arrays of length ``steps``) and session totals."""
    total_supply: np.ndarray
    contract_balance: np.ndarray
    tokens_for_charity: np.ndarray
    tokens_for_liquidity: np.ndarray
    pending_charity_currency: np.ndarray
    buys: int
    sells: int
    rejections: int
    settlements: int

    @property
    def destroyed(self) -> int:
        """Supply burned between the first and the last recorded step."""
        if len(self.total_supply) == 0:
            return 0
        return int(self.total_supply[0] - self.total_supply[-1])


def simulate_session(
    token: FeeToken,
    router: ConstantProductRouter,
    traders: Sequence[str],
    steps: int,
    seed: int = 42,
    buy_probability: float = 0.5,
    mean_buy: float = 1_000.0,
    sigma: float = 0.75,
) -> SessionReport:
    """
    Run ``steps`` random trades.

    Traders must already hold currency and have approved the router.

    Args:
        token: Deployed token with trading enabled
        router: Router over the token's primary pair
        traders: Addresses trading in the session
        steps: Number of trades attempted
        seed: Seed for numpy's default_rng
        buy_probability: Chance that a step is a buy
        mean_buy: Median currency spent per buy
        sigma: Lognormal shape of buy sizes

    Returns:
        SessionReport
    """
    if not traders:
        raise ValueError("traders cannot be empty")
    if steps < 0:
        raise ValueError(f"steps must be non-negative, got {steps}")

    rng = np.random.default_rng(seed)
    ledger = token.ledger
    currency_symbol = router.currency_symbol

    who = rng.integers(0, len(traders), size=steps)
    is_buy = rng.random(steps) < buy_probability
    buy_sizes = rng.lognormal(np.log(mean_buy), sigma, size=steps).astype(np.int64)
    sell_fractions = rng.uniform(0.1, 1.0, size=steps)

    supply = np.zeros(steps, dtype=object)
    held = np.zeros(steps, dtype=object)
    charity = np.zeros(steps, dtype=object)
    liquidity = np.zeros(steps, dtype=object)
    pending = np.zeros(steps, dtype=object)

    buys = sells = rejections = 0
    settlements_before = len(token.settlement_log)

    for step in range(steps):
        trader = traders[who[step]]
        try:
            if is_buy[step]:
                spend = min(int(buy_sizes[step]), ledger.get_balance(trader, currency_symbol))
                if spend > 0:
                    router.buy(trader, spend, 0, token.symbol, trader, ledger.current_time)
                    buys += 1
            else:
                amount = token.balance_of(trader) * int(sell_fractions[step] * 1000) // 1000
                if amount > 0:
                    router.convert(
                        trader, amount, 0, (token.symbol, currency_symbol), trader, ledger.current_time,
                    )
                    sells += 1
        except REJECTIONS:
            rejections += 1

        supply[step] = token.total_supply()
        held[step] = token.balance_of(token.address)
        charity[step] = token.tokens_for_charity
        liquidity[step] = token.tokens_for_liquidity
        pending[step] = token.pending_charity_currency

    return SessionReport(
        total_supply=supply,
        contract_balance=held,
        tokens_for_charity=charity,
        tokens_for_liquidity=liquidity,
        pending_charity_currency=pending,
        buys=buys,
        sells=sells,
        rejections=rejections,
        settlements=len(token.settlement_log) - settlements_before,
    )
