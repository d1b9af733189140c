"""
ledger.py - Stateful Multi-Unit Balance Ledger

The Ledger class is the central state manager for balances. Token contracts,
exchange pairs and routers call into it; it is the only module that changes
balances or supply.

Key responsibilities:
    - Implements LedgerView protocol for safe read-only access by pure functions
    - Maintains per-address balances and a total-supply counter per unit
    - Provides the trusted primitives: mint, burn, transfer, push
    - Provides the all-or-nothing boundary (atomic) that every top-level call
      runs inside, covering balances, supply, the audit log and any attached
      participant state
    - Always logs: every primitive is recorded in the transaction log
"""

from __future__ import annotations
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Iterator, List, Optional, Protocol, Set, Tuple

from .core import (
    # Types
    Move, Transaction, Unit, EntryKind,
    Positions, BalanceMap,
    # Constants
    ZERO_ADDRESS, DEAD_ADDRESS,
    # Exceptions
    LedgerError, InsufficientFunds, PermanentCustody, UnitNotRegistered, ZeroAddress,
)


# Called after a pushed amount has been credited. Raising rejects the push.
ReceiveHook = Callable[[str, int], None]


class Participant(Protocol):
    """
    State owner that must roll back together with the ledger.

    Anything attached with Ledger.attach() is snapshotted on entry to every
    atomic block and restored if that block raises.
    """

    def snapshot_state(self) -> Any:
        ...

    def restore_state(self, state: Any) -> None:
        ...


@dataclass(frozen=True, slots=True)
class _Snapshot:
    balances: Dict[str, Dict[str, int]]
    supply: Dict[str, int]
    positions: Dict[str, Dict[str, int]]
    log_length: int
    next_sequence: int
    participants: Tuple[Tuple[Any, Any], ...]


class Ledger:
    """
    Integer balance ledger with an audit trail and nested atomic blocks.

    Implements the LedgerView protocol, allowing the ledger to be passed to
    pure functions that access only read-only methods.

    Design Principles:
        - Conservation: for every unit, the sum of balances equals the
          tracked total supply. Only mint and burn change supply.
        - Atomicity: work inside ``with ledger.atomic():`` either completes
          or leaves no trace, including in attached participants.
        - Always logs: every primitive lands in ``transaction_log``.

    Thread Safety:
        Not thread-safe. Each thread should maintain its own Ledger instance.

    Example:
        ledger = Ledger("main")
        ledger.register_unit(currency("ETH", "Ether"))
        ledger.mint("ETH", "alice", 1_000)

        with ledger.atomic():
            ledger.transfer("ETH", "alice", "bob", 400)
    """

    def __init__(
        self,
        name: str,
        initial_time: Optional[datetime] = None,
        verbose: bool = True,
    ):
        """
        Create a ledger.

        Args:
            name: Ledger identifier
            initial_time: Starting time for the ledger (default: 1970-01-01)
            verbose: Enable status output (default: True)
        """
        self.name = name
        self.balances: Dict[str, Dict[str, int]] = defaultdict(lambda: defaultdict(int))
        self.units: Dict[str, Unit] = {}
        self.transaction_log: List[Transaction] = []
        self._current_time: datetime = initial_time or datetime(1970, 1, 1)
        self.verbose = verbose
        self._next_sequence: int = 0
        self._supply: Dict[str, int] = {}
        # Inverted index mapping unit -> {address -> quantity} for O(1) position lookups
        self._positions_by_unit: Dict[str, Dict[str, int]] = defaultdict(dict)
        self._receivers: Dict[str, ReceiveHook] = {}
        self._contracts: Dict[str, Any] = {}
        self._participants: List[Participant] = []
        self._depth: int = 0

    # ========================================================================
    # LedgerView PROTOCOL IMPLEMENTATION (read-only methods)
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        """Current logical time of the ledger."""
        return self._current_time

    def get_balance(self, address: str, unit_symbol: str) -> int:
        """
        Get the balance of a unit held by an address.

        Raises:
            UnitNotRegistered: If unit is not registered
        """
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        wallet = self.balances.get(address)
        if wallet is None:
            return 0
        return wallet.get(unit_symbol, 0)

    def get_positions(self, unit_symbol: str) -> Positions:
        """Get all non-zero positions for a unit across all addresses."""
        return dict(self._positions_by_unit.get(unit_symbol, {}))

    def total_supply(self, unit_symbol: str) -> int:
        """
        Tracked total supply of a unit.

        Raises:
            UnitNotRegistered: If unit is not registered
        """
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        return self._supply[unit_symbol]

    def sum_of_balances(self, unit_symbol: str) -> int:
        """Sum a unit's balances over all addresses, in sorted address order."""
        return sum(
            self.balances[w].get(unit_symbol, 0)
            for w in sorted(self.balances)
        )

    def list_wallets(self) -> Set[str]:
        """List every address that has ever held a balance."""
        return set(self.balances.keys())

    def list_units(self) -> List[str]:
        """List all registered unit symbols."""
        return sorted(self.units.keys())

    def get_unit(self, symbol: str) -> Unit:
        """Return the Unit object for a given symbol."""
        if symbol not in self.units:
            raise UnitNotRegistered(f"Unit {symbol} not registered")
        return self.units[symbol]

    def get_wallet_balances(self, address: str) -> BalanceMap:
        """Get all balances for an address."""
        return dict(self.balances.get(address, {}))

    def verify_double_entry(self) -> Dict[str, Any]:
        """
        Verify that the conservation law holds for every unit.

        For each unit the sum of balances across all addresses must equal
        the tracked total supply, and no balance may be negative.

        Returns:
            Dict with keys:
            - 'valid': bool - True if all conservation laws hold
            - 'supplies': Dict[str, int] - Tracked total supply for each unit
            - 'discrepancies': List[Dict] - Details of any violations

        Example:
            result = ledger.verify_double_entry()
            assert result['valid'], f"Conservation violated: {result['discrepancies']}"
        """
        supplies = {}
        discrepancies = []

        for unit_symbol in self.units:
            tracked = self._supply[unit_symbol]
            supplies[unit_symbol] = tracked
            actual = self.sum_of_balances(unit_symbol)
            if actual != tracked:
                discrepancies.append({
                    'unit': unit_symbol,
                    'expected': tracked,
                    'actual': actual,
                    'difference': actual - tracked,
                })
            for address, bals in self.balances.items():
                if bals.get(unit_symbol, 0) < 0:
                    discrepancies.append({
                        'unit': unit_symbol,
                        'address': address,
                        'error': 'negative balance',
                        'actual': bals[unit_symbol],
                    })

        return {
            'valid': len(discrepancies) == 0,
            'supplies': supplies,
            'discrepancies': discrepancies,
        }

    # ========================================================================
    # TIME MANAGEMENT
    # ========================================================================

    def advance_time(self, new_time: datetime) -> None:
        """
        Advance the ledger's logical clock. Exchange deadlines are checked
        against this clock.

        Raises:
            ValueError: If new_time is before the current time
        """
        if new_time < self._current_time:
            raise ValueError(
                f"Cannot move time backwards: {new_time} < {self._current_time}"
            )
        self._current_time = new_time

    # ========================================================================
    # REGISTRATION (Mutating)
    # ========================================================================

    def register_unit(self, unit: Unit) -> None:
        """
        Register a new unit. Its supply starts at zero.

        Raises:
            ValueError: If unit symbol is already registered
        """
        if unit.symbol in self.units:
            raise ValueError(f"Unit {unit.symbol} already registered")
        self.units[unit.symbol] = unit
        self._supply[unit.symbol] = 0
        if self.verbose:
            print(f"📝 Registered: {unit.symbol} ({unit.name}) [{unit.unit_type}]")

    def register_contract(self, unit_symbol: str, contract: Any) -> None:
        """
        Record the contract that governs transfers of a unit.

        Exchange routers look tokens up here so that moving a token always
        goes through its contract (and therefore its fee policy).
        """
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        self._contracts[unit_symbol] = contract

    def contract_for(self, unit_symbol: str) -> Optional[Any]:
        """Return the governing contract for a unit, or None for plain units."""
        return self._contracts.get(unit_symbol)

    def register_receiver(self, address: str, hook: Optional[ReceiveHook]) -> None:
        """
        Install (or with None, remove) the hook run when value is pushed to
        an address. A hook that raises rejects the push.
        """
        if hook is None:
            self._receivers.pop(address, None)
        else:
            self._receivers[address] = hook

    def attach(self, participant: Participant) -> None:
        """Include a participant's state in every atomic snapshot."""
        if participant not in self._participants:
            self._participants.append(participant)

    # ========================================================================
    # PRIMITIVES (Mutating)
    # ========================================================================

    def mint(self, unit_symbol: str, dest: str, amount: int, contract_id: str = "mint") -> None:
        """
        Create ``amount`` units and credit them to ``dest``.

        Raises:
            ZeroAddress: If dest is the zero address
            UnitNotRegistered: If unit is not registered
        """
        self._require_unit(unit_symbol)
        if dest == ZERO_ADDRESS:
            raise ZeroAddress("mint to the zero address")
        move = Move(amount, unit_symbol, ZERO_ADDRESS, dest, contract_id)
        self._credit(dest, unit_symbol, amount)
        self._supply[unit_symbol] += amount
        self._record(move, EntryKind.MINT)

    def burn(self, unit_symbol: str, source: str, amount: int, contract_id: str = "burn") -> None:
        """
        Debit ``amount`` from ``source`` and remove it from supply.

        A zero amount is validated and then has no effect.

        Raises:
            ZeroAddress: If source is the zero address
            PermanentCustody: If source is DEAD_ADDRESS
            InsufficientFunds: If source holds less than amount
        """
        self._require_unit(unit_symbol)
        if source == ZERO_ADDRESS:
            raise ZeroAddress("burn from the zero address")
        self._require_movable(source)
        if amount < 0:
            raise ValueError(f"amount must be non-negative, got {amount}")
        if amount == 0:
            return
        move = Move(amount, unit_symbol, source, ZERO_ADDRESS, contract_id)
        self._require_funds(source, unit_symbol, amount)
        self._debit(source, unit_symbol, amount)
        self._supply[unit_symbol] -= amount
        self._record(move, EntryKind.BURN)

    def transfer(
        self,
        unit_symbol: str,
        source: str,
        dest: str,
        amount: int,
        contract_id: str = "transfer",
    ) -> None:
        """
        Move ``amount`` from ``source`` to ``dest``. Supply is unchanged.

        A zero amount or a self-transfer is validated and then has no effect.

        Raises:
            ZeroAddress: If either party is the zero address
            PermanentCustody: If source is DEAD_ADDRESS
            InsufficientFunds: If source holds less than amount
        """
        self._require_unit(unit_symbol)
        if source == ZERO_ADDRESS or dest == ZERO_ADDRESS:
            raise ZeroAddress(f"transfer {source} -> {dest} involves the zero address")
        self._require_movable(source)
        if amount < 0:
            raise ValueError(f"amount must be non-negative, got {amount}")
        self._require_funds(source, unit_symbol, amount)
        if amount == 0 or source == dest:
            return
        move = Move(amount, unit_symbol, source, dest, contract_id)
        self._debit(source, unit_symbol, amount)
        self._credit(dest, unit_symbol, amount)
        self._record(move, EntryKind.TRANSFER)

    def push(
        self,
        unit_symbol: str,
        source: str,
        dest: str,
        amount: int,
        contract_id: str = "push",
    ) -> bool:
        """
        Transfer to an address that may refuse the payment.

        The credit and the receiver's hook run in a nested atomic block. If
        the hook raises, for any reason, the credit is undone and False is
        returned; the caller decides how to record the failure. Errors in
        the sender's own inputs (zero address, insufficient funds) are not
        receiver failures and propagate.

        Returns:
            True if the payment was accepted, False if the receiver refused it
        """
        self._require_unit(unit_symbol)
        if source == ZERO_ADDRESS or dest == ZERO_ADDRESS:
            raise ZeroAddress(f"push {source} -> {dest} involves the zero address")
        self._require_movable(source)
        self._require_funds(source, unit_symbol, amount)
        hook = self._receivers.get(dest)
        try:
            with self.atomic():
                self.transfer(unit_symbol, source, dest, amount, contract_id)
                if hook is not None:
                    hook(source, amount)
        except Exception as exc:
            if self.verbose:
                print(f"⚠️  PUSH REFUSED: {amount} {unit_symbol} {source}→{dest}: {exc!r}")
            return False
        return True

    # ========================================================================
    # ATOMICITY
    # ========================================================================

    @property
    def in_atomic(self) -> bool:
        """True while at least one atomic block is open."""
        return self._depth > 0

    @contextmanager
    def atomic(self) -> Iterator[Ledger]:
        """
        All-or-nothing block.

        Snapshots balances, supplies, the audit log and every attached
        participant. If the block raises, all of it is restored and the
        exception propagates. Blocks nest: an inner rollback only undoes the
        inner block's work.
        """
        snapshot = self._snapshot()
        self._depth += 1
        try:
            yield self
        except Exception as exc:
            self._restore(snapshot)
            if self.verbose and self._depth == 1:
                print(f"✗ ROLLED BACK: {exc}")
            raise
        finally:
            self._depth -= 1

    def _snapshot(self) -> _Snapshot:
        return _Snapshot(
            balances={w: dict(b) for w, b in self.balances.items()},
            supply=dict(self._supply),
            positions={u: dict(p) for u, p in self._positions_by_unit.items()},
            log_length=len(self.transaction_log),
            next_sequence=self._next_sequence,
            participants=tuple((p, p.snapshot_state()) for p in self._participants),
        )

    def _restore(self, snapshot: _Snapshot) -> None:
        self.balances = defaultdict(lambda: defaultdict(int))
        for wallet, bals in snapshot.balances.items():
            self.balances[wallet] = defaultdict(int, bals)
        self._supply = dict(snapshot.supply)
        self._positions_by_unit = defaultdict(dict)
        for unit_symbol, positions in snapshot.positions.items():
            self._positions_by_unit[unit_symbol] = dict(positions)
        del self.transaction_log[snapshot.log_length:]
        self._next_sequence = snapshot.next_sequence
        for participant, state in snapshot.participants:
            participant.restore_state(state)

    # ========================================================================
    # INTERNALS
    # ========================================================================

    def _require_unit(self, unit_symbol: str) -> None:
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")

    def _require_movable(self, source: str) -> None:
        if source == DEAD_ADDRESS:
            raise PermanentCustody(f"value held at {DEAD_ADDRESS} can never move")

    def _require_funds(self, address: str, unit_symbol: str, amount: int) -> None:
        available = self.get_balance(address, unit_symbol)
        if available < amount:
            raise InsufficientFunds(
                f"{address} {unit_symbol}: balance {available} < {amount}"
            )

    def _debit(self, address: str, unit_symbol: str, amount: int) -> None:
        new_balance = self.balances[address][unit_symbol] - amount
        self.balances[address][unit_symbol] = new_balance
        self._update_position_index(address, unit_symbol, new_balance)

    def _credit(self, address: str, unit_symbol: str, amount: int) -> None:
        new_balance = self.balances[address][unit_symbol] + amount
        self.balances[address][unit_symbol] = new_balance
        self._update_position_index(address, unit_symbol, new_balance)

    def _update_position_index(self, address: str, unit_symbol: str, quantity: int) -> None:
        """Keep the unit -> {address -> quantity} index free of zero positions."""
        if quantity != 0:
            self._positions_by_unit[unit_symbol][address] = quantity
        else:
            self._positions_by_unit[unit_symbol].pop(address, None)

    def _generate_exec_id(self, sequence: int) -> str:
        """
        Generate a unique execution ID.

        Format: exec:{ledger_name}:{sequence:012d}:{timestamp_micros}
        """
        micros = int(self._current_time.timestamp() * 1_000_000)
        return f"exec:{self.name}:{sequence:012d}:{micros}"

    def _record(self, move: Move, kind: EntryKind) -> None:
        sequence = self._next_sequence
        self._next_sequence += 1
        self.transaction_log.append(Transaction(
            move=move,
            kind=kind,
            exec_id=self._generate_exec_id(sequence),
            ledger_name=self.name,
            execution_time=self._current_time,
            sequence_number=sequence,
        ))
