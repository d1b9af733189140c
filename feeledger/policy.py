"""
policy.py - Token Configuration and Policy Registry

This module holds every knob the fee engine and the transfer orchestrator
consult:

1. TokenConfig: immutable term sheet fixed at deployment (fee tables,
   supply, limit and threshold ratios)
2. PolicyRegistry: the single mutable configuration aggregate (exclusion
   sets, AMM pairs, one-way locks, trading gate, limits, settlement switch,
   charity destination), gated by ownership
3. check_trading_gate() / check_limits(): pure checks against a LedgerView

One-way switches (trading activation, the four locks, limit removal) go
from False to True exactly once; a second attempt raises
ConfigurationLocked.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import FrozenSet, Optional, Set

from .core import (
    BPS_DENOMINATOR, ZERO_ADDRESS, LedgerView,
    ConfigurationLocked, TradingNotActive, TransferLimitExceeded, Unauthorized, ZeroAddress,
)
from .fees import FeeSet, NO_FEES, TransferDirection, classify_transfer


# Default fee table: 5% total, 1% destroyed, 3% charity, 1% liquidity.
DEFAULT_FEES = FeeSet(charity=30, destroy=10, liquidity=10)

# Defaults in basis points of total supply.
DEFAULT_MAX_TRANSACTION_BPS = 100    # 1%
DEFAULT_MAX_WALLET_BPS = 200         # 2%
DEFAULT_SWAP_THRESHOLD_BPS = 5       # 0.05%

# A settlement run processes at most threshold * SETTLEMENT_BATCH_MULTIPLIER.
SETTLEMENT_BATCH_MULTIPLIER = 20

# set_swap_threshold() bounds, as fractions of total supply.
MIN_SWAP_THRESHOLD_DIVISOR = 100_000   # 0.001%
MAX_SWAP_THRESHOLD_NUMERATOR = 5       # 0.5% == 5 / 1000
MAX_SWAP_THRESHOLD_DENOMINATOR = 1000

# Limits may never be configured tighter than 0.1% of supply.
MIN_LIMIT_BPS = 10


@dataclass(frozen=True, slots=True)
class TokenConfig:
    """
    Immutable term sheet for a fee token - set at deployment, never changes.

    Attributes:
        name: Human-readable token name
        symbol: Ledger unit symbol for the token
        decimals: Display precision
        total_supply: Genesis supply in base units, minted to the owner
        buy_fees: Fee table applied when the sender is an AMM pair
        sell_fees: Fee table applied when the recipient is an AMM pair
        wallet_fees: Fee table for wallet-to-wallet transfers (none by default)
        max_transaction_bps: Max AMM-adjacent transfer, bps of supply
        max_wallet_bps: Max resulting recipient balance, bps of supply
        swap_threshold_bps: Contract balance that triggers settlement, bps of supply
        batch_multiplier: Settlement batch cap as a multiple of the threshold
        charity_wallet: Initial charity destination (None = not configured)
        address: Address of the token contract itself
    """
    name: str = "Charity Token"
    symbol: str = "CHRT"
    decimals: int = 18
    total_supply: int = 1_000_000 * 10 ** 18
    buy_fees: FeeSet = DEFAULT_FEES
    sell_fees: FeeSet = DEFAULT_FEES
    wallet_fees: FeeSet = NO_FEES
    max_transaction_bps: int = DEFAULT_MAX_TRANSACTION_BPS
    max_wallet_bps: int = DEFAULT_MAX_WALLET_BPS
    swap_threshold_bps: int = DEFAULT_SWAP_THRESHOLD_BPS
    batch_multiplier: int = SETTLEMENT_BATCH_MULTIPLIER
    charity_wallet: Optional[str] = None
    address: Optional[str] = None

    def __post_init__(self):
        if not self.symbol or not self.symbol.strip():
            raise ValueError("symbol cannot be empty")
        if self.total_supply <= 0:
            raise ValueError(f"total_supply must be positive, got {self.total_supply}")
        for name in ("max_transaction_bps", "max_wallet_bps"):
            value = getattr(self, name)
            if not MIN_LIMIT_BPS <= value <= BPS_DENOMINATOR:
                raise ValueError(f"{name} must be in [{MIN_LIMIT_BPS}, {BPS_DENOMINATOR}], got {value}")
        if not 0 < self.swap_threshold_bps <= BPS_DENOMINATOR:
            raise ValueError(f"swap_threshold_bps must be in (0, {BPS_DENOMINATOR}], got {self.swap_threshold_bps}")
        if self.batch_multiplier < 1:
            raise ValueError(f"batch_multiplier must be >= 1, got {self.batch_multiplier}")
        if self.charity_wallet == ZERO_ADDRESS:
            raise ValueError("charity_wallet cannot be the zero address")
        if self.address is None:
            object.__setattr__(self, 'address', f"token:{self.symbol}")

    @property
    def max_transaction_amount(self) -> int:
        return self.total_supply * self.max_transaction_bps // BPS_DENOMINATOR

    @property
    def max_wallet(self) -> int:
        return self.total_supply * self.max_wallet_bps // BPS_DENOMINATOR

    @property
    def swap_tokens_at_amount(self) -> int:
        return self.total_supply * self.swap_threshold_bps // BPS_DENOMINATOR


class PolicyRegistry:
    """
    Mutable configuration aggregate for one fee token.

    Constructed once at genesis and shared by reference with the fee engine
    and the orchestrator. Every mutator takes the caller's address and
    raises Unauthorized unless it is the owner; mutators guarded by a
    one-way lock raise ConfigurationLocked once that lock is set.
    """

    def __init__(self, config: TokenConfig, owner: str, verbose: bool = True):
        if owner == ZERO_ADDRESS:
            raise ZeroAddress("owner cannot be the zero address")
        self.config = config
        self.owner: Optional[str] = owner
        self.verbose = verbose

        # Fee tables are fixed for the life of the token.
        self.buy_fees = config.buy_fees
        self.sell_fees = config.sell_fees
        self.wallet_fees = config.wallet_fees

        self._fee_excluded: Set[str] = set()
        self._limit_excluded: Set[str] = set()
        self._amm_pairs: Set[str] = set()
        self.primary_pair: Optional[str] = None

        self.trading_active = False
        self.swap_enabled = True
        self.limits_in_effect = True
        self.max_transaction_amount = config.max_transaction_amount
        self.max_wallet = config.max_wallet
        self.swap_tokens_at_amount = config.swap_tokens_at_amount
        self.charity_wallet: Optional[str] = config.charity_wallet

        self.charity_wallet_locked = False
        self.limit_exclusions_locked = False
        self.rescue_locked = False
        self.fee_exclusions_locked = False

    # ========================================================================
    # READ-ONLY ACCESSORS
    # ========================================================================

    @property
    def amm_pairs(self) -> FrozenSet[str]:
        return frozenset(self._amm_pairs)

    def is_amm_pair(self, address: str) -> bool:
        return address in self._amm_pairs

    def is_excluded_from_fees(self, address: str) -> bool:
        return address in self._fee_excluded

    def is_excluded_from_limits(self, address: str) -> bool:
        return address in self._limit_excluded

    def fees_for(self, direction: TransferDirection) -> FeeSet:
        if direction is TransferDirection.BUY:
            return self.buy_fees
        if direction is TransferDirection.SELL:
            return self.sell_fees
        return self.wallet_fees

    @property
    def settlement_batch_cap(self) -> int:
        return self.swap_tokens_at_amount * self.config.batch_multiplier

    # ========================================================================
    # OWNERSHIP
    # ========================================================================

    def require_owner(self, caller: str) -> None:
        if self.owner is None or caller != self.owner:
            raise Unauthorized(f"{caller} is not the owner")

    def transfer_ownership(self, caller: str, new_owner: str) -> None:
        self.require_owner(caller)
        if not new_owner or new_owner == ZERO_ADDRESS:
            raise ZeroAddress("new owner cannot be the zero address")
        self.owner = new_owner

    def renounce_ownership(self, caller: str) -> None:
        """Give up ownership for good; every owner-only call fails afterwards."""
        self.require_owner(caller)
        self.owner = None

    # ========================================================================
    # ONE-WAY SWITCHES
    # ========================================================================

    def enable_trading(self, caller: str) -> None:
        self.require_owner(caller)
        if self.trading_active:
            raise ConfigurationLocked("trading is already active")
        self.trading_active = True
        if self.verbose:
            print("✓ TRADING ENABLED")

    def remove_limits(self, caller: str) -> None:
        self.require_owner(caller)
        if not self.limits_in_effect:
            raise ConfigurationLocked("limits already removed")
        self.limits_in_effect = False

    def lock_charity_wallet(self, caller: str) -> None:
        self._lock(caller, 'charity_wallet_locked')

    def lock_limit_exclusions(self, caller: str) -> None:
        self._lock(caller, 'limit_exclusions_locked')

    def lock_rescue(self, caller: str) -> None:
        self._lock(caller, 'rescue_locked')

    def lock_fee_exclusions(self, caller: str) -> None:
        self._lock(caller, 'fee_exclusions_locked')

    def _lock(self, caller: str, flag: str) -> None:
        self.require_owner(caller)
        if getattr(self, flag):
            raise ConfigurationLocked(f"{flag} is already set")
        setattr(self, flag, True)
        if self.verbose:
            print(f"🔒 {flag}")

    def _require_unlocked(self, flag: str) -> None:
        if getattr(self, flag):
            raise ConfigurationLocked(f"{flag}: setting can no longer change")

    # ========================================================================
    # MUTATORS
    # ========================================================================

    def set_charity_wallet(self, caller: str, wallet: str) -> None:
        self.require_owner(caller)
        self._require_unlocked('charity_wallet_locked')
        if not wallet or wallet == ZERO_ADDRESS:
            raise ZeroAddress("charity wallet cannot be the zero address")
        self.charity_wallet = wallet

    def exclude_from_fees(self, caller: str, address: str, excluded: bool = True) -> None:
        self.require_owner(caller)
        self._require_unlocked('fee_exclusions_locked')
        if excluded:
            self._fee_excluded.add(address)
        else:
            self._fee_excluded.discard(address)

    def exclude_from_limits(self, caller: str, address: str, excluded: bool = True) -> None:
        self.require_owner(caller)
        self._require_unlocked('limit_exclusions_locked')
        if excluded:
            self._limit_excluded.add(address)
        else:
            self._limit_excluded.discard(address)

    def set_automated_market_maker_pair(self, caller: str, pair: str, value: bool = True) -> None:
        """
        Register or de-register an AMM pair. The primary pair created at
        genesis cannot be removed.
        """
        self.require_owner(caller)
        if pair == self.primary_pair and not value:
            raise ConfigurationLocked("the primary pair cannot be removed")
        if value:
            self._amm_pairs.add(pair)
        else:
            self._amm_pairs.discard(pair)

    def set_swap_enabled(self, caller: str, enabled: bool) -> None:
        self.require_owner(caller)
        self.swap_enabled = enabled

    def set_swap_threshold(self, caller: str, amount: int) -> None:
        """
        Change the settlement trigger. Bounded to [0.001%, 0.5%] of supply.
        """
        self.require_owner(caller)
        supply = self.config.total_supply
        low = supply // MIN_SWAP_THRESHOLD_DIVISOR
        high = supply * MAX_SWAP_THRESHOLD_NUMERATOR // MAX_SWAP_THRESHOLD_DENOMINATOR
        if not low <= amount <= high:
            raise ValueError(f"swap threshold must be in [{low}, {high}], got {amount}")
        self.swap_tokens_at_amount = amount

    def _register_primary_pair(self, pair: str) -> None:
        self.primary_pair = pair
        self._amm_pairs.add(pair)


# ============================================================================
# PURE CHECKS
# ============================================================================

def check_trading_gate(policy: PolicyRegistry, source: str, dest: str) -> None:
    """
    Before trading is enabled only transfers touching a fee-excluded
    address are allowed.

    Raises:
        TradingNotActive: If neither party is fee-excluded
    """
    if policy.trading_active:
        return
    if policy.is_excluded_from_fees(source) or policy.is_excluded_from_fees(dest):
        return
    raise TradingNotActive(f"trading is not active: {source} -> {dest}")


def check_limits(
    view: LedgerView,
    policy: PolicyRegistry,
    unit_symbol: str,
    source: str,
    dest: str,
    amount: int,
) -> None:
    """
    Enforce the max-transaction and max-wallet limits.

    Skipped when limits have been removed or either party is limit-exempt.
        BUY:    amount <= max tx, and recipient balance after <= max wallet
        SELL:   amount <= max tx
        WALLET: recipient balance after <= max wallet

    Raises:
        TransferLimitExceeded: If a limit is broken
    """
    if not policy.limits_in_effect:
        return
    if policy.is_excluded_from_limits(source) or policy.is_excluded_from_limits(dest):
        return

    direction = classify_transfer(source, dest, policy.amm_pairs)
    if direction is not TransferDirection.WALLET and amount > policy.max_transaction_amount:
        raise TransferLimitExceeded(
            f"{direction.value} of {amount} exceeds max transaction {policy.max_transaction_amount}"
        )
    if direction is not TransferDirection.SELL:
        resulting = view.get_balance(dest, unit_symbol) + amount
        if resulting > policy.max_wallet:
            raise TransferLimitExceeded(
                f"{dest} would hold {resulting}, above max wallet {policy.max_wallet}"
            )
