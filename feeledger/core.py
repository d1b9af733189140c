"""
Core types and pure helpers for the fee-diverting token ledger.

This module provides the foundational data structures and protocols:
1. Protocols: LedgerView for read-only ledger access
2. Immutable data structures: Move, Transaction, Unit
3. Exceptions: LedgerError and domain-specific error types
4. Type aliases: Positions, BalanceMap
5. Unit factories: Functions to create standard unit types

Amounts are plain integers in the unit's smallest denomination. Every
division in the fee and settlement math is floor division, so all values
stay exact and reproducible.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, Protocol, runtime_checkable


# ============================================================================
# CONSTANTS
# ============================================================================

# The zero address can never send or receive value.
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# Permanent custody address. Sending value here does NOT reduce total
# supply, but the Ledger refuses to move or burn anything held here.
DEAD_ADDRESS = "0x000000000000000000000000000000000000dEaD"

# Unit type constants (strings, not enum).
UNIT_TYPE_TOKEN = "TOKEN"
UNIT_TYPE_CURRENCY = "CURRENCY"
UNIT_TYPE_LIQUIDITY_SHARE = "LIQUIDITY_SHARE"

# Fee rates are expressed in parts per thousand.
FEE_DENOMINATOR = 1000

# Limit and threshold ratios are expressed in basis points of total supply.
BPS_DENOMINATOR = 10_000

# Allowance value treated as infinite (never decremented by transfer_from).
MAX_ALLOWANCE = 2 ** 256 - 1


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Mapping from address to quantity held by that address for a specific unit.
Positions = Dict[str, int]

# Mapping from unit symbol to quantity held by a single address.
BalanceMap = Dict[str, int]


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class LedgerView(Protocol):
    """
    Read-only interface to ledger state.

    Policy checks and pure calculations accept a LedgerView to declare that
    they never mutate balances. The Ledger class implements this protocol;
    tests use FakeView.
    """

    @property
    def current_time(self) -> datetime:
        """Return the current logical time of the ledger."""
        ...

    def get_balance(self, address: str, unit_symbol: str) -> int:
        """Return the balance of a unit held by an address (0 if none)."""
        ...

    def get_positions(self, unit_symbol: str) -> Positions:
        """Return all non-zero positions for a unit."""
        ...

    def total_supply(self, unit_symbol: str) -> int:
        """Return the tracked total supply of a unit."""
        ...


# ============================================================================
# ENUMS
# ============================================================================

class EntryKind(Enum):
    """
    Classification of a ledger primitive recorded in the audit log.

    MINT: Supply created and credited to an address (genesis only for tokens).
    TRANSFER: Value moved between two addresses; supply unchanged.
    BURN: Value debited from an address and removed from supply.
    """
    MINT = "mint"
    TRANSFER = "transfer"
    BURN = "burn"


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LedgerError(Exception):
    """Base exception for all ledger-related errors."""
    pass


class ZeroAddress(LedgerError):
    """Raised when the zero address participates in a transfer, mint or burn."""
    pass


class InsufficientFunds(LedgerError):
    """Raised when a debit would take a balance below zero."""
    pass


class InsufficientAllowance(LedgerError):
    """Raised when transfer_from exceeds the spender's allowance."""
    pass


class UnitNotRegistered(LedgerError):
    """Raised when operating on a unit that has not been registered with the ledger."""
    pass


class TradingNotActive(LedgerError):
    """Raised when a non-exempt transfer is attempted before trading is enabled."""
    pass


class TransferLimitExceeded(LedgerError):
    """Raised when a transfer breaks the max-transaction or max-wallet limit."""
    pass


class SettlementReentry(LedgerError):
    """Raised when settlement is entered while another settlement is running."""
    pass


class Unauthorized(LedgerError):
    """Raised when a non-owner calls an administrative operation."""
    pass


class ConfigurationLocked(LedgerError):
    """Raised when mutating a locked setting or re-firing a one-way switch."""
    pass


class PermanentCustody(LedgerError):
    """Raised when value held at DEAD_ADDRESS would be moved or burned."""
    pass


class ExchangeError(LedgerError):
    """Base exception for failures inside the exchange collaborator."""
    pass


class InsufficientLiquidity(ExchangeError):
    """Raised when a pair has no reserves (or too few) for the operation."""
    pass


class InsufficientOutputAmount(ExchangeError):
    """Raised when a swap or liquidity call falls below its minimum amounts."""
    pass


class ExpiredDeadline(ExchangeError):
    """Raised when an exchange call is made after its deadline."""
    pass


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Move:
    """
    A single transfer of value between two addresses.

    Attributes:
        quantity: The amount to transfer (positive integer).
        unit_symbol: The symbol of the unit being transferred.
        source: Address debited. ZERO_ADDRESS marks a mint.
        dest: Address credited. ZERO_ADDRESS marks a burn.
        contract_id: Identifier of the operation generating this move.
    """
    quantity: int
    unit_symbol: str
    source: str
    dest: str
    contract_id: str

    def __post_init__(self):
        if not self.source or not self.source.strip():
            raise ValueError("Move source cannot be empty")
        if not self.dest or not self.dest.strip():
            raise ValueError("Move dest cannot be empty")
        if not self.unit_symbol or not self.unit_symbol.strip():
            raise ValueError("Move unit_symbol cannot be empty")
        if not self.contract_id or not self.contract_id.strip():
            raise ValueError("Move contract_id cannot be empty")
        if not isinstance(self.quantity, int) or isinstance(self.quantity, bool):
            raise ValueError(f"Move quantity must be int, got {type(self.quantity)}")
        if self.quantity <= 0:
            raise ValueError(f"Move quantity must be positive, got {self.quantity}")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        return f"Move({self.quantity} {self.unit_symbol}: {self.source}→{self.dest})"


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    An executed, immutable record of one ledger primitive - represents FACT.

    Attributes:
        move: The value transfer that was applied
        kind: MINT, TRANSFER or BURN
        exec_id: Unique execution identifier (ledger + sequence + time)
        ledger_name: Name of the ledger that executed this
        execution_time: Ledger time when executed
        sequence_number: Monotonic sequence within the ledger (for ordering)
    """
    move: Move
    kind: EntryKind
    exec_id: str
    ledger_name: str
    execution_time: datetime
    sequence_number: int

    def __repr__(self) -> str:
        return f"Transaction({self.sequence_number}: {self.kind.value} {self.move!r})"


@dataclass(frozen=True, slots=True)
class Unit:
    """
    Definition of a unit (asset type) held in the ledger.

    Attributes:
        symbol: Short identifier for the unit (e.g., "CHRT", "ETH").
        name: Human-readable name for the unit.
        unit_type: TOKEN, CURRENCY or LIQUIDITY_SHARE.
        decimals: Display precision; balances are always stored as integers
                  in the smallest denomination.
    """
    symbol: str
    name: str
    unit_type: str
    decimals: int = 18

    def __post_init__(self):
        if not self.symbol or not self.symbol.strip():
            raise ValueError("Unit symbol cannot be empty")
        if self.decimals < 0:
            raise ValueError(f"decimals must be non-negative, got {self.decimals}")


# ============================================================================
# UNIT FACTORIES
# ============================================================================

def currency(symbol: str, name: str, decimals: int = 18) -> Unit:
    """
    Create the reference currency unit (the asset fees are converted into).

    Args:
        symbol: Currency code (e.g., "ETH").
        name: Full name of the currency.
        decimals: Display precision (default: 18).
    """
    return Unit(symbol=symbol, name=name, unit_type=UNIT_TYPE_CURRENCY, decimals=decimals)


def token(symbol: str, name: str, decimals: int = 18) -> Unit:
    """Create a fungible token unit."""
    return Unit(symbol=symbol, name=name, unit_type=UNIT_TYPE_TOKEN, decimals=decimals)


def liquidity_share(symbol: str, name: str) -> Unit:
    """Create a liquidity-share unit minted by an exchange pair."""
    return Unit(symbol=symbol, name=name, unit_type=UNIT_TYPE_LIQUIDITY_SHARE, decimals=18)
