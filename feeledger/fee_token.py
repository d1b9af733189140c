"""
fee_token.py - Fee-on-Transfer Token Contract

FeeToken is the orchestrator: it owns the token's accumulators and
allowances, holds a PolicyRegistry, and routes every movement of its unit
through ``_transfer``:

    zero-address check
      -> balance check
      -> trading gate
      -> limit check            (skipped while settlement is running)
      -> fee engine             (destroy now, retain the rest)
      -> settlement trigger     (swap_back when the retained pile is large)
      -> credit the net amount

Every public entry point runs inside ``ledger.atomic()``. The token is
attached to the ledger as a participant, so accumulators, allowances and
the settlement log roll back together with balances.

Example:
    ledger = Ledger("main", verbose=False)
    ledger.register_unit(currency("ETH", "Ether"))
    factory = ConstantProductFactory(ledger)
    router = ConstantProductRouter(ledger, factory, "ETH")
    chrt = FeeToken(ledger, TokenConfig(charity_wallet="charity"), "deployer", factory, router)
    chrt.policy.enable_trading("deployer")
"""

from __future__ import annotations
from typing import Any, Dict, List, Optional, Tuple

from .core import (
    ZERO_ADDRESS, DEAD_ADDRESS, MAX_ALLOWANCE,
    InsufficientAllowance, InsufficientFunds, ZeroAddress,
    token as token_unit,
)
from .exchange import ExchangeRouter, PairFactory
from .fees import FeeSet, apply_fee, compute_fee
from .ledger import Ledger
from .policy import PolicyRegistry, TokenConfig, check_limits, check_trading_gate
from .settlement import SettlementRecord, swap_back


class FeeToken:
    """
    A fungible token that taxes AMM trades and settles the proceeds.

    Genesis (the constructor) registers the unit, mints the full supply to
    the owner, creates the primary pair through ``factory``, applies the
    standard exclusions and approves ``router`` for the contract's own
    balance.
    """

    def __init__(
        self,
        ledger: Ledger,
        config: TokenConfig,
        owner: str,
        factory: PairFactory,
        router: ExchangeRouter,
        verbose: Optional[bool] = None,
    ):
        self.ledger = ledger
        self.config = config
        self.router = router
        self.address: str = config.address
        self.verbose = ledger.verbose if verbose is None else verbose
        self.policy = PolicyRegistry(config, owner, verbose=self.verbose)

        self.tokens_for_charity = 0
        self.tokens_for_liquidity = 0
        self.pending_charity_currency = 0
        self.settling = False
        self.settlement_log: List[SettlementRecord] = []
        self._allowances: Dict[Tuple[str, str], int] = {}

        ledger.register_unit(token_unit(config.symbol, config.name, config.decimals))
        ledger.register_contract(config.symbol, self)
        ledger.attach(self)
        ledger.mint(config.symbol, owner, config.total_supply, contract_id="genesis")

        self.pair = factory.create_pair(config.symbol, router.currency_symbol)
        self.policy._register_primary_pair(self.pair)

        for address in (owner, self.address, DEAD_ADDRESS):
            self.policy.exclude_from_fees(owner, address)
            self.policy.exclude_from_limits(owner, address)
        self.policy.exclude_from_limits(owner, router.address)

        self._approve(self.address, router.address, MAX_ALLOWANCE)

        if self.verbose:
            print(f"✓ DEPLOYED: {config.symbol} supply {config.total_supply} to {owner}, pair {self.pair}")

    # ========================================================================
    # PARTICIPANT PROTOCOL
    # ========================================================================

    def snapshot_state(self) -> Tuple[Any, ...]:
        return (
            self.tokens_for_charity,
            self.tokens_for_liquidity,
            self.pending_charity_currency,
            self.settling,
            dict(self._allowances),
            len(self.settlement_log),
        )

    def restore_state(self, state: Tuple[Any, ...]) -> None:
        (self.tokens_for_charity,
         self.tokens_for_liquidity,
         self.pending_charity_currency,
         self.settling,
         allowances,
         log_length) = state
        self._allowances = dict(allowances)
        del self.settlement_log[log_length:]

    # ========================================================================
    # TOKEN SURFACE
    # ========================================================================

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def symbol(self) -> str:
        return self.config.symbol

    @property
    def decimals(self) -> int:
        return self.config.decimals

    def total_supply(self) -> int:
        return self.ledger.total_supply(self.symbol)

    def balance_of(self, address: str) -> int:
        return self.ledger.get_balance(address, self.symbol)

    def allowance(self, owner: str, spender: str) -> int:
        return self._allowances.get((owner, spender), 0)

    def approve(self, owner: str, spender: str, amount: int) -> bool:
        with self.ledger.atomic():
            self._approve(owner, spender, amount)
        return True

    def transfer(self, sender: str, to: str, amount: int) -> bool:
        """Move ``amount`` from ``sender`` to ``to`` under the fee policy."""
        with self.ledger.atomic():
            self._transfer(sender, to, amount)
        return True

    def transfer_from(self, spender: str, owner: str, to: str, amount: int) -> bool:
        """
        Move ``amount`` of ``owner``'s tokens on behalf of ``spender``.

        An allowance of MAX_ALLOWANCE is never decremented.

        Raises:
            InsufficientAllowance: If the allowance is below amount
        """
        with self.ledger.atomic():
            self._spend_allowance(owner, spender, amount)
            self._transfer(owner, to, amount)
        return True

    def burn(self, holder: str, amount: int) -> None:
        """Destroy ``amount`` of the holder's own tokens."""
        with self.ledger.atomic():
            self.ledger.burn(self.symbol, holder, amount, contract_id="holder_burn")

    # ========================================================================
    # VIEWS
    # ========================================================================

    @property
    def buy_fees(self) -> FeeSet:
        return self.policy.buy_fees

    @property
    def sell_fees(self) -> FeeSet:
        return self.policy.sell_fees

    @property
    def settlement_threshold(self) -> int:
        return self.policy.swap_tokens_at_amount

    # ========================================================================
    # OWNER OPERATIONS
    # ========================================================================

    def manual_swap_back(self, caller: str) -> Optional[SettlementRecord]:
        """Run a settlement now, regardless of the threshold."""
        self.policy.require_owner(caller)
        with self.ledger.atomic():
            return swap_back(self)

    def rescue_currency(self, caller: str, to: str, amount: int) -> None:
        """
        Withdraw currency stuck in the contract. Currency owed to charity
        (``pending_charity_currency``) cannot be withdrawn.

        Raises:
            ConfigurationLocked: Once rescue has been locked
            InsufficientFunds: If amount exceeds the unreserved balance
        """
        self.policy.require_owner(caller)
        self.policy._require_unlocked('rescue_locked')
        if to == ZERO_ADDRESS:
            raise ZeroAddress("rescue to the zero address")
        currency_symbol = self.router.currency_symbol
        available = self.ledger.get_balance(self.address, currency_symbol) - self.pending_charity_currency
        if amount > available:
            raise InsufficientFunds(
                f"only {available} {currency_symbol} is unreserved, requested {amount}"
            )
        with self.ledger.atomic():
            self.ledger.transfer(currency_symbol, self.address, to, amount, contract_id="rescue")

    def rescue_tokens(self, caller: str, unit_symbol: str, to: str) -> int:
        """
        Sweep the contract's whole balance of a foreign unit to ``to``.

        The token's own unit and the reference currency are refused.

        Returns:
            Amount swept
        """
        self.policy.require_owner(caller)
        self.policy._require_unlocked('rescue_locked')
        if unit_symbol in (self.symbol, self.router.currency_symbol):
            raise ValueError(f"{unit_symbol} cannot be rescued with rescue_tokens")
        if to == ZERO_ADDRESS:
            raise ZeroAddress("rescue to the zero address")
        amount = self.ledger.get_balance(self.address, unit_symbol)
        with self.ledger.atomic():
            contract = self.ledger.contract_for(unit_symbol)
            if contract is None:
                self.ledger.transfer(unit_symbol, self.address, to, amount, contract_id="rescue")
            else:
                contract.transfer(self.address, to, amount)
        return amount

    # ========================================================================
    # INTERNALS
    # ========================================================================

    def _approve(self, owner: str, spender: str, amount: int) -> None:
        if owner == ZERO_ADDRESS or spender == ZERO_ADDRESS:
            raise ZeroAddress(f"approve {owner} -> {spender} involves the zero address")
        if amount < 0:
            raise ValueError(f"allowance must be non-negative, got {amount}")
        self._allowances[(owner, spender)] = amount

    def _spend_allowance(self, owner: str, spender: str, amount: int) -> None:
        current = self.allowance(owner, spender)
        if current == MAX_ALLOWANCE:
            return
        if current < amount:
            raise InsufficientAllowance(
                f"{spender} may spend {current} of {owner}'s {self.symbol}, requested {amount}"
            )
        self._allowances[(owner, spender)] = current - amount

    def _transfer(self, source: str, dest: str, amount: int) -> None:
        if source == ZERO_ADDRESS or dest == ZERO_ADDRESS:
            raise ZeroAddress(f"transfer {source} -> {dest} involves the zero address")
        if amount < 0:
            raise ValueError(f"amount must be non-negative, got {amount}")
        if amount == 0:
            return

        held = self.balance_of(source)
        if held < amount:
            raise InsufficientFunds(f"{source} has {held} {self.symbol}, needs {amount}")

        policy = self.policy
        check_trading_gate(policy, source, dest)
        if not self.settling:
            check_limits(self.ledger, policy, self.symbol, source, dest, amount)

        breakdown = compute_fee(policy, source, dest, amount)
        if breakdown.fee > 0:
            apply_fee(self.ledger, self.symbol, self.address, source, breakdown)
            self.tokens_for_charity += breakdown.to_charity
            self.tokens_for_liquidity += breakdown.to_liquidity

        if (breakdown.take_fee
                and not self.settling
                and not policy.is_amm_pair(source)
                and self.balance_of(self.address) >= policy.swap_tokens_at_amount):
            swap_back(self)

        self.ledger.transfer(self.symbol, source, dest, breakdown.net, contract_id="transfer")

    def __repr__(self) -> str:
        return (f"FeeToken({self.symbol} @ {self.address}: supply={self.total_supply()}, "
                f"charity={self.tokens_for_charity}, liquidity={self.tokens_for_liquidity})")
