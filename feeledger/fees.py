"""
fees.py - Transfer-Time Fee Engine

Decides whether a transfer is taxed, classifies its direction and splits the
fee between the three sinks: immediate destruction, the liquidity
accumulator and the charity accumulator.

ARCHITECTURE (Pure Function Pattern):
=====================================

1. FROZEN DATACLASSES (explicit inputs/outputs):
   - FeeSet: rates for one direction, parts per thousand
   - FeeBreakdown: everything a single transfer owes

2. PURE CALCULATION FUNCTIONS:
   - classify_transfer(source, dest, amm_pairs) -> TransferDirection
   - calculate_fee(amount, fee_set) -> FeeBreakdown

3. ADAPTER FUNCTIONS:
   - compute_fee(policy, source, dest, amount): reads the PolicyRegistry
   - apply_fee(ledger, ...): the ONLY function here that touches balances

Key Formulas:
    fee         = amount * total   // 1000
    destroyed   = amount * destroy // 1000
    retained    = fee - destroyed
    to_charity  = retained * charity // (charity + liquidity)
    to_liquidity = retained - to_charity      (remainder favors liquidity)
    net         = amount - fee
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, AbstractSet

from .core import FEE_DENOMINATOR
from .ledger import Ledger

if TYPE_CHECKING:
    from .policy import PolicyRegistry


class TransferDirection(Enum):
    """
    Direction of a transfer relative to the registered AMM pairs.

    SELL: recipient is a pair (checked first, so pair-to-pair is a sell)
    BUY: sender is a pair
    WALLET: neither side is a pair
    """
    BUY = "buy"
    SELL = "sell"
    WALLET = "wallet"


@dataclass(frozen=True, slots=True)
class FeeSet:
    """
    Fee rates for one transfer direction, in parts per thousand.

    Fixed at construction; the token never mutates its fee tables.
    """
    charity: int = 0
    destroy: int = 0
    liquidity: int = 0

    def __post_init__(self):
        for name in ("charity", "destroy", "liquidity"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool):
                raise ValueError(f"{name} rate must be int, got {type(value)}")
            if value < 0:
                raise ValueError(f"{name} rate must be non-negative, got {value}")
        if self.total > FEE_DENOMINATOR:
            raise ValueError(
                f"total fee {self.total} exceeds {FEE_DENOMINATOR} parts per thousand"
            )

    @property
    def total(self) -> int:
        return self.charity + self.destroy + self.liquidity


NO_FEES = FeeSet()


@dataclass(frozen=True, slots=True)
class FeeBreakdown:
    """
    Immutable result of fee calculation for one transfer.

    ``fee == destroyed + to_charity + to_liquidity`` always holds.
    """
    amount: int
    direction: TransferDirection
    take_fee: bool
    fee: int = 0
    destroyed: int = 0
    to_charity: int = 0
    to_liquidity: int = 0

    @property
    def retained(self) -> int:
        """Fee units kept by the contract for later settlement."""
        return self.to_charity + self.to_liquidity

    @property
    def net(self) -> int:
        """Units delivered to the recipient."""
        return self.amount - self.fee


# ============================================================================
# PURE CALCULATION FUNCTIONS
# ============================================================================

def classify_transfer(source: str, dest: str, amm_pairs: AbstractSet[str]) -> TransferDirection:
    """Sell if the recipient is a pair, buy if the sender is, wallet otherwise."""
    if dest in amm_pairs:
        return TransferDirection.SELL
    if source in amm_pairs:
        return TransferDirection.BUY
    return TransferDirection.WALLET


def calculate_fee(
    amount: int,
    fee_set: FeeSet,
    direction: TransferDirection = TransferDirection.WALLET,
) -> FeeBreakdown:
    """
    Split the fee owed on ``amount`` under ``fee_set``.

    Example:
        >>> b = calculate_fee(1000, FeeSet(charity=30, destroy=10, liquidity=10))
        >>> (b.fee, b.destroyed, b.to_charity, b.to_liquidity, b.net)
        (50, 10, 30, 10, 950)
    """
    if amount < 0:
        raise ValueError(f"amount must be non-negative, got {amount}")
    if fee_set.total == 0 or amount == 0:
        return FeeBreakdown(amount=amount, direction=direction, take_fee=True)

    fee = amount * fee_set.total // FEE_DENOMINATOR
    destroyed = amount * fee_set.destroy // FEE_DENOMINATOR
    remain = fee - destroyed
    to_charity = 0
    to_liquidity = 0
    weight = fee_set.charity + fee_set.liquidity
    if remain > 0 and weight > 0:
        to_charity = remain * fee_set.charity // weight
        to_liquidity = remain - to_charity
    return FeeBreakdown(
        amount=amount,
        direction=direction,
        take_fee=True,
        fee=fee,
        destroyed=destroyed,
        to_charity=to_charity,
        to_liquidity=to_liquidity,
    )


# ============================================================================
# ADAPTER FUNCTIONS
# ============================================================================

def compute_fee(policy: PolicyRegistry, source: str, dest: str, amount: int) -> FeeBreakdown:
    """
    Decide taxability and direction from the policy, then calculate the fee.

    A transfer touching a fee-excluded address owes nothing regardless of
    direction.
    """
    direction = classify_transfer(source, dest, policy.amm_pairs)
    take_fee = not (policy.is_excluded_from_fees(source) or policy.is_excluded_from_fees(dest))
    if not take_fee:
        return FeeBreakdown(amount=amount, direction=direction, take_fee=False)
    return calculate_fee(amount, policy.fees_for(direction), direction)


def apply_fee(
    ledger: Ledger,
    unit_symbol: str,
    contract_address: str,
    source: str,
    breakdown: FeeBreakdown,
) -> None:
    """
    Apply a breakdown to balances: destroy from ``source`` now, then move
    the retained part to the contract. Accumulators are the caller's job.
    """
    if breakdown.destroyed > 0:
        ledger.burn(unit_symbol, source, breakdown.destroyed, contract_id="fee_destroy")
    if breakdown.retained > 0:
        ledger.transfer(
            unit_symbol, source, contract_address, breakdown.retained,
            contract_id="fee_retain",
        )
