#!/usr/bin/env python3
"""
demo.py - Interactive Tutorial: Learn the Fee Token Step by Step

A walk through one token's life. Each step builds on the previous one.
Press Enter to advance.

WHAT YOU'LL LEARN:
  1-3:   Foundation   - The ledger, genesis, seeding the pool
  4-6:   Transfers    - The trading gate, taxed buys, limits
  7-9:   Settlement   - Threshold settlement, charity retry, rollback
  10-11: At Scale     - A seeded trading session, the conservation proof

Run:
    python demo.py           # Interactive mode (press Enter for each step)
    python demo.py --quick   # Run all steps without pausing
"""

from dataclasses import dataclass
from datetime import datetime
import sys

from feeledger import (
    Ledger, currency, MAX_ALLOWANCE, DEAD_ADDRESS,
    TokenConfig, FeeToken, calculate_fee,
    ConstantProductFactory, ConstantProductRouter,
    TradingNotActive, TransferLimitExceeded, ExchangeError,
    simulate_session,
)


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Configuration for the tutorial. Modify these to experiment."""
    start_time: datetime = datetime(2025, 1, 1, 9, 0, 0)

    total_supply: int = 1_000_000
    pool_tokens: int = 500_000
    pool_currency: int = 100_000

    trader_currency: int = 50_000
    first_buy: int = 1_000

    session_steps: int = 300
    session_seed: int = 42


CONFIG = DemoConfig()

QUICK_MODE = "--quick" in sys.argv

OWNER = "deployer"
CHARITY = "charity"


def wait_for_enter():
    """Pause for user input unless in quick mode."""
    if not QUICK_MODE:
        input("\n[Press Enter to continue...]")


def step_header(number: int, title: str, objective: str):
    print(f"\n{'='*70}")
    print(f"STEP {number}: {title}")
    print(f"{'='*70}")
    print(f"\nObjective: {objective}\n")


def section_header(text: str):
    print(f"\n--- {text} ---\n")


def show_token(token: FeeToken):
    print(f"Total supply:          {token.total_supply()}")
    print(f"Contract balance:      {token.balance_of(token.address)}")
    print(f"tokens_for_charity:    {token.tokens_for_charity}")
    print(f"tokens_for_liquidity:  {token.tokens_for_liquidity}")
    print(f"pending charity ETH:   {token.pending_charity_currency}")


def buy(token: FeeToken, trader: str, eth: int) -> int:
    return token.router.buy(trader, eth, 0, token.symbol, trader, token.ledger.current_time)


def sell(token: FeeToken, trader: str, amount: int) -> int:
    return token.router.convert(
        trader, amount, 0, (token.symbol, "ETH"), trader, token.ledger.current_time,
    )


# ============================================================================
# PHASE 1: FOUNDATION (Steps 1-3)
# ============================================================================

def step_01_ledger():
    step_header(1, "The Ledger and the Exchange",
        "Balances live in a Ledger; the exchange is just more addresses on it.")

    print("""
    Everything is an integer balance on one Ledger:

    1. UNITS     - ETH (the currency), the fee token, LP shares
    2. ADDRESSES - traders, the token contract, the pair, the dead address
    3. SUPPLY    - minted and burned explicitly, so sum(balances) == supply
    """)
    wait_for_enter()

    ledger = Ledger("tutorial", CONFIG.start_time, verbose=True)
    ledger.register_unit(currency("ETH", "Ether"))
    factory = ConstantProductFactory(ledger)
    router = ConstantProductRouter(ledger, factory, "ETH")

    section_header("Initial State")
    print(f"Units:           {ledger.list_units()}")
    print(f"Router address:  {router.address}")
    return ledger, factory, router


def step_02_genesis(ledger, factory, router):
    step_header(2, "Genesis",
        "Deploying the token mints the supply, creates the pair and sets exclusions.")

    config = TokenConfig(total_supply=CONFIG.total_supply, charity_wallet=CHARITY)
    token = FeeToken(ledger, config, OWNER, factory, router)

    section_header("Derived Limits")
    print(f"Max transaction:       {token.policy.max_transaction_amount}")
    print(f"Max wallet:            {token.policy.max_wallet}")
    print(f"Settlement threshold:  {token.settlement_threshold}")
    print(f"Batch cap:             {token.policy.settlement_batch_cap}")
    print(f"Buy fees:              {token.buy_fees}")
    print(f"Sell fees:             {token.sell_fees}")

    section_header("Key Insight")
    print(f"""
    The owner, the contract and {DEAD_ADDRESS} never pay fees.
    The pair is registered as an AMM pair: transfers INTO it are sells,
    transfers OUT of it are buys.
    """)
    return token


def step_03_seed_pool(token: FeeToken):
    step_header(3, "Seeding the Pool",
        "The owner adds liquidity untaxed, because the owner is fee-excluded.")

    ledger = token.ledger
    ledger.mint("ETH", OWNER, CONFIG.pool_currency, contract_id="faucet")
    token.approve(OWNER, token.router.address, MAX_ALLOWANCE)
    token.router.provide_liquidity(
        OWNER, token.symbol, CONFIG.pool_tokens, 0, 0, OWNER, ledger.current_time, CONFIG.pool_currency,
    )
    print(f"\n{token.router.factory.get_pair(token.symbol, 'ETH')}")
    show_token(token)


# ============================================================================
# PHASE 2: TRANSFERS (Steps 4-6)
# ============================================================================

def step_04_trading_gate(token: FeeToken):
    step_header(4, "The Trading Gate",
        "Before trading is enabled, only transfers touching an excluded address pass.")

    ledger = token.ledger
    for trader in ("alice", "bob", "carol"):
        ledger.mint("ETH", trader, CONFIG.trader_currency, contract_id="faucet")
        token.approve(trader, token.router.address, MAX_ALLOWANCE)

    try:
        buy(token, "alice", CONFIG.first_buy)
    except TradingNotActive as e:
        print(f"\nRejected as expected: {e}")

    token.policy.enable_trading(OWNER)
    print(f"\ntrading_active = {token.policy.trading_active} (one-way: it can never be turned off)")


def step_05_taxed_buy(token: FeeToken):
    step_header(5, "A Taxed Buy",
        "The fee is split at transfer time: destroyed now, the rest retained.")

    breakdown = calculate_fee(1_000, token.buy_fees)
    section_header("Fee on 1,000 tokens")
    print(f"fee {breakdown.fee} = destroyed {breakdown.destroyed} "
          f"+ charity {breakdown.to_charity} + liquidity {breakdown.to_liquidity}; net {breakdown.net}")

    wait_for_enter()
    received = buy(token, "alice", CONFIG.first_buy)
    print(f"\nalice received {received} {token.symbol}")
    show_token(token)


def step_06_limits(token: FeeToken):
    step_header(6, "Transaction and Wallet Limits",
        "Buys and sells are capped per transaction; balances are capped per wallet.")

    try:
        buy(token, "bob", 5_000)
    except TransferLimitExceeded as e:
        print(f"\nRejected as expected: {e}")
    print(f"bob still holds {token.balance_of('bob')} {token.symbol}: nothing happened")


# ============================================================================
# PHASE 3: SETTLEMENT (Steps 7-9)
# ============================================================================

def step_07_settlement(token: FeeToken):
    step_header(7, "Threshold Settlement",
        "A sell that finds the contract over the threshold settles the retained fees.")

    buy(token, "bob", 1_000)
    buy(token, "carol", 1_000)
    section_header("Before")
    show_token(token)

    wait_for_enter()
    sell(token, "alice", 1_000)

    section_header("After")
    show_token(token)
    record = token.settlement_log[-1]
    print(f"\n{record}")
    print(f"\ncharity ETH: {token.ledger.get_balance(CHARITY, 'ETH')}")


def step_08_charity_retry(token: FeeToken):
    step_header(8, "Charity Payout Retry",
        "A refused payout is held back and retried in full on the next settlement.")

    ledger = token.ledger
    state = {"online": False}

    def charity_hook(sender, amount):
        if not state["online"]:
            raise RuntimeError("wallet paused")

    ledger.register_receiver(CHARITY, charity_hook)
    for trader in ("alice", "bob", "carol"):
        buy(token, trader, 1_000)
    token.manual_swap_back(OWNER)
    print(f"\npending charity ETH after refusal: {token.pending_charity_currency}")

    state["online"] = True
    for trader in ("alice", "bob", "carol"):
        buy(token, trader, 1_000)
    token.manual_swap_back(OWNER)
    print(f"pending charity ETH after retry:   {token.pending_charity_currency}")
    ledger.register_receiver(CHARITY, None)


def step_09_rollback(token: FeeToken):
    step_header(9, "All or Nothing",
        "If settlement fails, the user's transfer fails with it and nothing changes.")

    ledger = token.ledger
    original = token.router.provide_liquidity

    def broken(*args, **kwargs):
        raise ExchangeError("pool paused")

    for trader in ("alice", "bob", "carol"):
        buy(token, trader, 1_000)
    before = (token.balance_of("alice"), token.total_supply(), len(ledger.transaction_log))

    token.router.provide_liquidity = broken
    try:
        sell(token, "alice", 1_000)
    except ExchangeError as e:
        print(f"\nSell failed: {e}")
    finally:
        token.router.provide_liquidity = original

    after = (token.balance_of("alice"), token.total_supply(), len(ledger.transaction_log))
    print(f"(alice balance, supply, log length) before: {before}")
    print(f"(alice balance, supply, log length) after:  {after}")


# ============================================================================
# PHASE 4: AT SCALE (Steps 10-11)
# ============================================================================

def step_10_session(token: FeeToken):
    step_header(10, "A Seeded Trading Session",
        "Random buys and sells; the same seed always gives the same session.")

    ledger = token.ledger
    traders = [f"trader_{i}" for i in range(8)]
    for trader in traders:
        ledger.mint("ETH", trader, CONFIG.trader_currency, contract_id="faucet")
        token.approve(trader, token.router.address, MAX_ALLOWANCE)

    ledger.verbose = token.verbose = token.policy.verbose = token.router.verbose = False
    report = simulate_session(token, token.router, traders, CONFIG.session_steps, seed=CONFIG.session_seed)

    section_header("Session Summary")
    print(f"Buys / sells / rejections:  {report.buys} / {report.sells} / {report.rejections}")
    print(f"Settlements:                {report.settlements}")
    print(f"Supply destroyed:           {report.destroyed}")
    print(f"Peak contract balance:      {max(report.contract_balance, default=0)}")
    print(f"Final pending charity ETH:  {token.pending_charity_currency}")


def step_11_conservation(token: FeeToken):
    step_header(11, "The Conservation Proof",
        "For every unit, the balances still add up to the tracked supply.")

    result = token.ledger.verify_double_entry()
    for unit, supply in result['supplies'].items():
        print(f"{unit:>16}: supply {supply}")
    print(f"\nvalid = {result['valid']}")
    held = token.balance_of(token.address)
    earmarked = token.tokens_for_charity + token.tokens_for_liquidity
    print(f"earmarked {earmarked} <= contract balance {held}: {earmarked <= held}")


def main():
    print("=" * 70)
    print("       FEE TOKEN TUTORIAL")
    print("=" * 70)

    ledger, factory, router = step_01_ledger()
    wait_for_enter()
    token = step_02_genesis(ledger, factory, router)
    wait_for_enter()
    step_03_seed_pool(token)
    wait_for_enter()

    step_04_trading_gate(token)
    wait_for_enter()
    step_05_taxed_buy(token)
    wait_for_enter()
    step_06_limits(token)
    wait_for_enter()

    step_07_settlement(token)
    wait_for_enter()
    step_08_charity_retry(token)
    wait_for_enter()
    step_09_rollback(token)
    wait_for_enter()

    step_10_session(token)
    wait_for_enter()
    step_11_conservation(token)

    print("\n" + "=" * 70)
    print("       TUTORIAL COMPLETE!")
    print("=" * 70)
    print("""
    Next steps:
      - See feeledger/settlement.py for the settlement arithmetic
      - Run tests: pytest tests/
    """)


if __name__ == "__main__":
    main()
