"""
fake_view.py - Test Helper for LedgerView

Provides a minimal LedgerView implementation for testing the pure checks
(limits, classification) without building a full Ledger.
"""

from __future__ import annotations
from datetime import datetime
from typing import Dict, Optional, Set

from feeledger import LedgerView, UnitNotRegistered


Positions = Dict[str, int]


class FakeView:
    """
    Minimal LedgerView implementation.

    Example:
        view = FakeView(
            balances={'alice': {'CHRT': 1000, 'ETH': 10}},
            time=datetime(2025, 1, 1)
        )

        view.get_positions('CHRT')
        # Returns: {'alice': 1000}
    """

    def __init__(
        self,
        balances: Dict[str, Dict[str, int]],
        time: Optional[datetime] = None,
        supplies: Optional[Dict[str, int]] = None,
    ):
        self._balances = balances
        self._time = time or datetime(2025, 1, 1)
        self._supplies = supplies

    @property
    def current_time(self) -> datetime:
        return self._time

    def get_balance(self, address: str, unit_symbol: str) -> int:
        return self._balances.get(address, {}).get(unit_symbol, 0)

    def get_positions(self, unit_symbol: str) -> Positions:
        return {
            a: b[unit_symbol]
            for a, b in self._balances.items()
            if b.get(unit_symbol, 0) != 0
        }

    def total_supply(self, unit_symbol: str) -> int:
        if self._supplies is not None:
            if unit_symbol not in self._supplies:
                raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
            return self._supplies[unit_symbol]
        return sum(b.get(unit_symbol, 0) for b in self._balances.values())

    def list_wallets(self) -> Set[str]:
        return set(self._balances.keys())
