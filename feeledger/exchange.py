"""
exchange.py - Exchange Collaborators

The fee token consumes an exchange only through two narrow contracts:

- PairFactory.create_pair(token_a, token_b) -> pair address (once, at genesis)
- ExchangeRouter.convert(...) and ExchangeRouter.provide_liquidity(...)
  (during settlement)

This module defines those Protocols and ships a minimal constant-product
implementation (x * y = k, 0.3% swap fee) that runs on the same Ledger.
The implementation exists so that tokens can be deployed, traded and
settled end to end in tests, the demo and the simulation; it deliberately
supports a single token/currency pair shape and nothing more.

Token units are always moved through their governing contract (looked up
with Ledger.contract_for), so every leg an exchange performs is subject to
the token's fee policy. Amounts a pair receives are measured from its
balance delta, which keeps the math correct for fee-on-transfer tokens.
"""

from __future__ import annotations
from datetime import datetime
from math import isqrt
from typing import Any, Dict, Optional, Protocol, Sequence, Tuple, runtime_checkable

from .core import (
    DEAD_ADDRESS, UNIT_TYPE_CURRENCY,
    ExchangeError, ExpiredDeadline, InsufficientLiquidity, InsufficientOutputAmount,
    liquidity_share,
)
from .ledger import Ledger


# Swap fee: 3 parts per thousand are kept by the pool.
SWAP_FEE_NUMERATOR = 997
SWAP_FEE_DENOMINATOR = 1000

# Shares permanently locked when a pool is first funded.
MINIMUM_LIQUIDITY = 1000


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class PairFactory(Protocol):
    """Creates the AMM pair a token uses for buy/sell classification."""

    def create_pair(self, token_a: str, token_b: str) -> str:
        ...


@runtime_checkable
class ExchangeRouter(Protocol):
    """
    Conversion and liquidity-provisioning entry points used by settlement.

    ``address`` is the spender the token approves; ``currency_symbol`` is
    the reference currency proceeds are paid in.
    """
    address: str
    currency_symbol: str

    def convert(
        self,
        sender: str,
        amount_in: int,
        min_out: int,
        path: Sequence[str],
        recipient: str,
        deadline: datetime,
    ) -> int:
        """Exchange ``amount_in`` tokens pulled from ``sender`` for currency paid to ``recipient``."""
        ...

    def provide_liquidity(
        self,
        sender: str,
        token: str,
        token_amount_desired: int,
        min_token: int,
        min_currency: int,
        receiver: str,
        deadline: datetime,
        currency_amount: int,
    ) -> Tuple[int, int, int]:
        """Add liquidity from ``sender``; shares go to ``receiver``. Returns (token_used, currency_used, shares)."""
        ...


# ============================================================================
# PURE CALCULATION FUNCTIONS
# ============================================================================

def get_amount_out(amount_in: int, reserve_in: int, reserve_out: int) -> int:
    """
    Constant-product output for an exact input, after the swap fee.

    Raises:
        InsufficientLiquidity: If either reserve is empty
    """
    if amount_in <= 0:
        raise InsufficientOutputAmount(f"input amount must be positive, got {amount_in}")
    if reserve_in <= 0 or reserve_out <= 0:
        raise InsufficientLiquidity("pair has no liquidity")
    amount_in_with_fee = amount_in * SWAP_FEE_NUMERATOR
    numerator = amount_in_with_fee * reserve_out
    denominator = reserve_in * SWAP_FEE_DENOMINATOR + amount_in_with_fee
    return numerator // denominator


def quote(amount_a: int, reserve_a: int, reserve_b: int) -> int:
    """Amount of B worth ``amount_a`` of A at the current reserve ratio."""
    if reserve_a <= 0 or reserve_b <= 0:
        raise InsufficientLiquidity("pair has no liquidity")
    return amount_a * reserve_b // reserve_a


# ============================================================================
# CONSTANT-PRODUCT IMPLEMENTATION
# ============================================================================

class ConstantProductPair:
    """
    A token/currency pool whose reserves are ledger balances at ``address``.

    Cached reserves are attached to the ledger so they roll back together
    with balances.
    """

    def __init__(self, ledger: Ledger, address: str, token_symbol: str, currency_symbol: str):
        self.ledger = ledger
        self.address = address
        self.token_symbol = token_symbol
        self.currency_symbol = currency_symbol
        self.share_symbol = f"{token_symbol}-{currency_symbol}-LP"
        self.reserve_token = 0
        self.reserve_currency = 0
        ledger.register_unit(liquidity_share(
            self.share_symbol, f"{token_symbol}/{currency_symbol} liquidity share"
        ))
        ledger.attach(self)

    def snapshot_state(self) -> Tuple[int, int]:
        return self.reserve_token, self.reserve_currency

    def restore_state(self, state: Tuple[int, int]) -> None:
        self.reserve_token, self.reserve_currency = state

    @property
    def has_liquidity(self) -> bool:
        return self.reserve_token > 0 and self.reserve_currency > 0

    def sync(self) -> None:
        self.reserve_token = self.ledger.get_balance(self.address, self.token_symbol)
        self.reserve_currency = self.ledger.get_balance(self.address, self.currency_symbol)

    def swap_token_for_currency(self, recipient: str) -> int:
        """Pay out currency for whatever tokens arrived since the last sync."""
        amount_in = self.ledger.get_balance(self.address, self.token_symbol) - self.reserve_token
        amount_out = get_amount_out(amount_in, self.reserve_token, self.reserve_currency)
        if amount_out <= 0:
            raise InsufficientOutputAmount(f"{amount_in} {self.token_symbol} buys nothing")
        self.ledger.transfer(
            self.currency_symbol, self.address, recipient, amount_out, contract_id="pair_swap",
        )
        self.sync()
        return amount_out

    def swap_currency_for_token(self, recipient: str) -> int:
        """Pay out tokens, through the token's contract, for currency that arrived since the last sync."""
        amount_in = self.ledger.get_balance(self.address, self.currency_symbol) - self.reserve_currency
        amount_out = get_amount_out(amount_in, self.reserve_currency, self.reserve_token)
        if amount_out <= 0:
            raise InsufficientOutputAmount(f"{amount_in} {self.currency_symbol} buys nothing")
        _send_token(self.ledger, self.token_symbol, self.address, recipient, amount_out)
        self.sync()
        return amount_out

    def mint_shares(self, receiver: str) -> int:
        """Issue liquidity shares for the deposits that arrived since the last sync."""
        amount_token = self.ledger.get_balance(self.address, self.token_symbol) - self.reserve_token
        amount_currency = self.ledger.get_balance(self.address, self.currency_symbol) - self.reserve_currency
        total = self.ledger.total_supply(self.share_symbol)
        if total == 0:
            shares = isqrt(amount_token * amount_currency) - MINIMUM_LIQUIDITY
            if shares > 0:
                self.ledger.mint(self.share_symbol, DEAD_ADDRESS, MINIMUM_LIQUIDITY, "minimum_liquidity")
        else:
            shares = min(
                amount_token * total // self.reserve_token,
                amount_currency * total // self.reserve_currency,
            )
        if shares <= 0:
            raise InsufficientLiquidity("insufficient liquidity minted")
        self.ledger.mint(self.share_symbol, receiver, shares, "liquidity_shares")
        self.sync()
        return shares

    def __repr__(self) -> str:
        return (f"ConstantProductPair({self.address}: {self.reserve_token} {self.token_symbol} / "
                f"{self.reserve_currency} {self.currency_symbol})")


class ConstantProductFactory:
    """Creates one ConstantProductPair per token/currency combination."""

    def __init__(self, ledger: Ledger):
        self.ledger = ledger
        self.pairs: Dict[Tuple[str, str], ConstantProductPair] = {}

    def create_pair(self, token_a: str, token_b: str) -> str:
        """
        Create the pool for a token and the reference currency.

        Raises:
            ValueError: If the pair exists or neither/both sides are currency
        """
        token_symbol, currency_symbol = self._order(token_a, token_b)
        key = (token_symbol, currency_symbol)
        if key in self.pairs:
            raise ValueError(f"pair {token_symbol}/{currency_symbol} already exists")
        pair = ConstantProductPair(
            self.ledger, f"pair:{token_symbol}/{currency_symbol}", token_symbol, currency_symbol,
        )
        self.pairs[key] = pair
        return pair.address

    def get_pair(self, token_a: str, token_b: str) -> Optional[ConstantProductPair]:
        return self.pairs.get(self._order(token_a, token_b))

    def _order(self, token_a: str, token_b: str) -> Tuple[str, str]:
        a_is_currency = self.ledger.get_unit(token_a).unit_type == UNIT_TYPE_CURRENCY
        b_is_currency = self.ledger.get_unit(token_b).unit_type == UNIT_TYPE_CURRENCY
        if a_is_currency == b_is_currency:
            raise ValueError(f"pair needs exactly one currency side: {token_a}/{token_b}")
        return (token_b, token_a) if a_is_currency else (token_a, token_b)


class ConstantProductRouter:
    """
    Router over ConstantProductFactory pools.

    Pulls token inputs with transfer_from (so callers must approve
    ``address``) and currency inputs with a plain ledger transfer.
    """

    def __init__(
        self,
        ledger: Ledger,
        factory: ConstantProductFactory,
        currency_symbol: str,
        address: str = "router",
        verbose: Optional[bool] = None,
    ):
        self.ledger = ledger
        self.factory = factory
        self.currency_symbol = currency_symbol
        self.address = address
        self.verbose = ledger.verbose if verbose is None else verbose

    def _pair(self, token_symbol: str) -> ConstantProductPair:
        pair = self.factory.get_pair(token_symbol, self.currency_symbol)
        if pair is None:
            raise ExchangeError(f"no pair for {token_symbol}/{self.currency_symbol}")
        return pair

    def _check_deadline(self, deadline: datetime) -> None:
        if deadline < self.ledger.current_time:
            raise ExpiredDeadline(f"deadline {deadline} passed at {self.ledger.current_time}")

    def _pull_token(self, token_symbol: str, owner: str, dest: str, amount: int) -> None:
        contract = self.ledger.contract_for(token_symbol)
        if contract is None:
            self.ledger.transfer(token_symbol, owner, dest, amount, contract_id="router_pull")
        else:
            contract.transfer_from(self.address, owner, dest, amount)

    def convert(
        self,
        sender: str,
        amount_in: int,
        min_out: int,
        path: Sequence[str],
        recipient: str,
        deadline: datetime,
    ) -> int:
        """
        Sell exactly ``amount_in`` tokens for currency.

        Returns:
            Currency actually received by ``recipient``

        Raises:
            ExpiredDeadline, InsufficientLiquidity, InsufficientOutputAmount
        """
        token_symbol, out_symbol = self._token_path(path)
        if out_symbol != self.currency_symbol:
            raise ExchangeError(f"can only convert into {self.currency_symbol}, not {out_symbol}")
        self._check_deadline(deadline)
        pair = self._pair(token_symbol)
        if not pair.has_liquidity:
            raise InsufficientLiquidity(f"{pair.address} has no liquidity")

        with self.ledger.atomic():
            before = self.ledger.get_balance(recipient, self.currency_symbol)
            self._pull_token(token_symbol, sender, pair.address, amount_in)
            pair.swap_token_for_currency(recipient)
            received = self.ledger.get_balance(recipient, self.currency_symbol) - before
            if received < min_out:
                raise InsufficientOutputAmount(f"received {received} < minimum {min_out}")
        if self.verbose:
            print(f"🔄 SWAP: {amount_in} {token_symbol} → {received} {self.currency_symbol} for {recipient}")
        return received

    def buy(
        self,
        sender: str,
        currency_in: int,
        min_out: int,
        token_symbol: str,
        recipient: str,
        deadline: datetime,
    ) -> int:
        """
        Spend exactly ``currency_in`` on tokens.

        Returns:
            Tokens actually received by ``recipient`` (after the token's fees)
        """
        self._check_deadline(deadline)
        pair = self._pair(token_symbol)
        if not pair.has_liquidity:
            raise InsufficientLiquidity(f"{pair.address} has no liquidity")

        with self.ledger.atomic():
            before = self.ledger.get_balance(recipient, token_symbol)
            self.ledger.transfer(self.currency_symbol, sender, pair.address, currency_in, contract_id="router_pay")
            pair.swap_currency_for_token(recipient)
            received = self.ledger.get_balance(recipient, token_symbol) - before
            if received < min_out:
                raise InsufficientOutputAmount(f"received {received} < minimum {min_out}")
        if self.verbose:
            print(f"🔄 SWAP: {currency_in} {self.currency_symbol} → {received} {token_symbol} for {recipient}")
        return received

    def provide_liquidity(
        self,
        sender: str,
        token: str,
        token_amount_desired: int,
        min_token: int,
        min_currency: int,
        receiver: str,
        deadline: datetime,
        currency_amount: int,
    ) -> Tuple[int, int, int]:
        """
        Deposit tokens and currency at the pool ratio and mint shares.

        The first deposit sets the ratio. Afterwards, whichever side is in
        excess is trimmed; the untouched remainder stays with ``sender``.

        Returns:
            (token_used, currency_used, shares)
        """
        self._check_deadline(deadline)
        pair = self._pair(token)

        if not pair.has_liquidity:
            token_used, currency_used = token_amount_desired, currency_amount
        else:
            currency_optimal = quote(token_amount_desired, pair.reserve_token, pair.reserve_currency)
            if currency_optimal <= currency_amount:
                if currency_optimal < min_currency:
                    raise InsufficientOutputAmount(f"currency {currency_optimal} < minimum {min_currency}")
                token_used, currency_used = token_amount_desired, currency_optimal
            else:
                token_optimal = quote(currency_amount, pair.reserve_currency, pair.reserve_token)
                if token_optimal < min_token:
                    raise InsufficientOutputAmount(f"token {token_optimal} < minimum {min_token}")
                token_used, currency_used = token_optimal, currency_amount

        if token_used <= 0 or currency_used <= 0:
            raise InsufficientLiquidity(f"nothing to deposit: {token_used} {token} / {currency_used}")
        with self.ledger.atomic():
            self._pull_token(token, sender, pair.address, token_used)
            self.ledger.transfer(
                self.currency_symbol, sender, pair.address, currency_used, contract_id="router_deposit",
            )
            shares = pair.mint_shares(receiver)
        if self.verbose:
            print(f"💧 LIQUIDITY: {token_used} {token} + {currency_used} {self.currency_symbol} "
                  f"→ {shares} shares for {receiver}")
        return token_used, currency_used, shares

    @staticmethod
    def _token_path(path: Sequence[str]) -> Tuple[str, str]:
        if len(path) != 2:
            raise ExchangeError(f"path must have exactly two units, got {list(path)}")
        return path[0], path[1]


def _send_token(ledger: Ledger, token_symbol: str, source: str, dest: str, amount: int) -> None:
    contract: Any = ledger.contract_for(token_symbol)
    if contract is None:
        ledger.transfer(token_symbol, source, dest, amount, contract_id="pair_pay")
    else:
        contract.transfer(source, dest, amount)
