"""
settlement.py - Batched Settlement of Accumulated Fees (swap_back)

Converts a capped batch of the token contract's own balance into the
reference currency, pairs part of it with tokens as permanently locked
liquidity, and forwards the rest to the charity destination.

ARCHITECTURE (Pure Function Pattern):
=====================================

1. FROZEN DATACLASSES:
   - SettlementPlan: how much of the held balance one run will process
   - SettlementRecord: the detail record every completed run emits

2. PURE CALCULATION FUNCTIONS:
   - calculate_settlement_plan(): batch cap and pro-rata liquidity share
   - calculate_currency_split(): currency for liquidity vs charity
   - decrement_accumulators(): floor-at-zero accumulator update

3. STATE MACHINE:
   - swap_back(token): the only function here with side effects

Ordering inside swap_back:
    convert  ->  update accumulators  ->  provide liquidity  ->  pay charity

Accumulators are settled before the liquidity and charity calls, so a
callback that re-enters the token mid-run already sees post-batch values.
Conversion and liquidity failures propagate; only the charity payment can
fail softly, in which case the payout is carried in
``pending_charity_currency`` and retried on the next successful run.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Optional, Tuple

from .core import DEAD_ADDRESS, SettlementReentry

if TYPE_CHECKING:
    from .fee_token import FeeToken


@dataclass(frozen=True, slots=True)
class SettlementPlan:
    """
    Token amounts for one settlement run.

    Attributes:
        batch: Tokens processed this run, min(held, batch cap)
        liquidity_tokens: Pro-rata liquidity share of the batch
        half_liquidity: Tokens paired with currency as liquidity
        to_convert: Tokens sold for currency (batch - half_liquidity)
    """
    batch: int
    liquidity_tokens: int
    half_liquidity: int
    to_convert: int

    @property
    def charity_tokens(self) -> int:
        return self.batch - self.liquidity_tokens


@dataclass(frozen=True, slots=True)
class SettlementRecord:
    """Detail record of a completed settlement run."""
    tokens_processed: int
    liquidity_tokens: int
    currency_for_liquidity: int
    currency_for_charity: int
    currency_received: int
    liquidity_shares: int
    charity_payout: int
    charity_paid: bool
    pending_charity_currency: int
    timestamp: datetime


# ============================================================================
# PURE CALCULATION FUNCTIONS
# ============================================================================

def calculate_settlement_plan(
    held: int,
    tokens_for_charity: int,
    tokens_for_liquidity: int,
    batch_cap: int,
) -> Optional[SettlementPlan]:
    """
    Size a settlement run.

    The liquidity share is weighted by the current, un-decremented
    accumulators. Returns None when nothing is held or nothing is earmarked.

    Example:
        >>> calculate_settlement_plan(1000, 750, 250, 10_000)
        SettlementPlan(batch=1000, liquidity_tokens=250, half_liquidity=125, to_convert=875)
    """
    total_to_settle = tokens_for_charity + tokens_for_liquidity
    if held <= 0 or total_to_settle <= 0:
        return None
    batch = min(held, batch_cap)
    if batch <= 0:
        return None
    liquidity_tokens = batch * tokens_for_liquidity // total_to_settle
    half_liquidity = liquidity_tokens // 2
    return SettlementPlan(
        batch=batch,
        liquidity_tokens=liquidity_tokens,
        half_liquidity=half_liquidity,
        to_convert=batch - half_liquidity,
    )


def calculate_currency_split(received: int, half_liquidity: int, to_convert: int) -> Tuple[int, int]:
    """
    Split converted currency between liquidity and charity.

    Returns:
        (currency_for_liquidity, currency_for_charity)
    """
    if to_convert <= 0:
        return 0, received
    for_liquidity = received * half_liquidity // to_convert
    return for_liquidity, received - for_liquidity


def decrement_accumulators(
    tokens_for_charity: int,
    tokens_for_liquidity: int,
    plan: SettlementPlan,
) -> Tuple[int, int]:
    """Subtract the processed shares, flooring each accumulator at zero."""
    return (
        max(0, tokens_for_charity - plan.charity_tokens),
        max(0, tokens_for_liquidity - plan.liquidity_tokens),
    )


# ============================================================================
# STATE MACHINE
# ============================================================================

def swap_back(token: FeeToken) -> Optional[SettlementRecord]:
    """
    Run one settlement for ``token`` under its settlement mutex.

    Returns:
        The emitted SettlementRecord, or None if settlement is disabled or
        there is nothing to settle (in which case nothing changes).

    Raises:
        SettlementReentry: If a settlement is already running
        ExchangeError: If conversion or liquidity provisioning fails
    """
    if token.settling:
        raise SettlementReentry("settlement is already running")
    token.settling = True
    try:
        return _settle(token)
    finally:
        token.settling = False


def _settle(token: FeeToken) -> Optional[SettlementRecord]:
    policy = token.policy
    ledger = token.ledger
    router = token.router

    if not policy.swap_enabled:
        return None

    held = ledger.get_balance(token.address, token.symbol)
    plan = calculate_settlement_plan(
        held, token.tokens_for_charity, token.tokens_for_liquidity, policy.settlement_batch_cap,
    )
    if plan is None:
        return None

    currency_symbol = router.currency_symbol
    received = 0
    if plan.to_convert > 0:
        before = ledger.get_balance(token.address, currency_symbol)
        router.convert(
            token.address,
            plan.to_convert,
            0,
            (token.symbol, currency_symbol),
            token.address,
            ledger.current_time,
        )
        received = ledger.get_balance(token.address, currency_symbol) - before

    for_liquidity, for_charity = calculate_currency_split(received, plan.half_liquidity, plan.to_convert)

    token.tokens_for_charity, token.tokens_for_liquidity = decrement_accumulators(
        token.tokens_for_charity, token.tokens_for_liquidity, plan,
    )

    shares = 0
    if plan.half_liquidity > 0 and for_liquidity > 0:
        _, _, shares = router.provide_liquidity(
            token.address,
            token.symbol,
            plan.half_liquidity,
            0,
            0,
            DEAD_ADDRESS,
            ledger.current_time,
            for_liquidity,
        )

    payout = 0
    paid = False
    charity_wallet = policy.charity_wallet
    if for_charity > 0 and charity_wallet is not None:
        payout = for_charity + token.pending_charity_currency
        paid = ledger.push(currency_symbol, token.address, charity_wallet, payout, contract_id="charity_payout")
        token.pending_charity_currency = 0 if paid else payout
        if not paid and token.verbose:
            print(f"⚠️  CHARITY PAYOUT FAILED: {payout} {currency_symbol} held for retry")

    record = SettlementRecord(
        tokens_processed=plan.batch,
        liquidity_tokens=plan.liquidity_tokens,
        currency_for_liquidity=for_liquidity,
        currency_for_charity=for_charity,
        currency_received=received,
        liquidity_shares=shares,
        charity_payout=payout,
        charity_paid=paid,
        pending_charity_currency=token.pending_charity_currency,
        timestamp=ledger.current_time,
    )
    token.settlement_log.append(record)
    if token.verbose:
        print(f"✓ SETTLED: {plan.batch} {token.symbol} → {received} {currency_symbol} "
              f"(liquidity {for_liquidity}, charity {for_charity})")
    return record
