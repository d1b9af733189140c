"""
feeledger - Fee-on-Transfer Token Ledger

A token whose transfers to and from AMM pairs pay a fee that is partly
destroyed and partly retained, with retained fees periodically settled
into locked liquidity and a charity payout.

Usage:
    from feeledger import (
        Ledger, currency, TokenConfig, FeeToken,
        ConstantProductFactory, ConstantProductRouter,
    )

    ledger = Ledger("main")
    ledger.register_unit(currency("ETH", "Ether"))
    factory = ConstantProductFactory(ledger)
    router = ConstantProductRouter(ledger, factory, "ETH")

    chrt = FeeToken(ledger, TokenConfig(charity_wallet="charity"), "deployer", factory, router)
    chrt.policy.enable_trading("deployer")
"""

# Core types
from .core import (
    LedgerView,
    Move,
    Transaction,
    Unit,
    EntryKind,
    Positions,
    BalanceMap,
    currency,
    token,
    liquidity_share,
    ZERO_ADDRESS,
    DEAD_ADDRESS,
    MAX_ALLOWANCE,
    FEE_DENOMINATOR,
    BPS_DENOMINATOR,
    UNIT_TYPE_TOKEN,
    UNIT_TYPE_CURRENCY,
    UNIT_TYPE_LIQUIDITY_SHARE,
    LedgerError,
    ZeroAddress,
    InsufficientFunds,
    InsufficientAllowance,
    UnitNotRegistered,
    TradingNotActive,
    TransferLimitExceeded,
    SettlementReentry,
    Unauthorized,
    ConfigurationLocked,
    PermanentCustody,
    ExchangeError,
    InsufficientLiquidity,
    InsufficientOutputAmount,
    ExpiredDeadline,
)

# Ledger
from .ledger import Ledger, Participant, ReceiveHook

# Fee engine
from .fees import (
    TransferDirection,
    FeeSet,
    FeeBreakdown,
    NO_FEES,
    classify_transfer,
    calculate_fee,
    compute_fee,
    apply_fee,
)

# Policy
from .policy import (
    TokenConfig,
    PolicyRegistry,
    check_trading_gate,
    check_limits,
    DEFAULT_FEES,
)

# Settlement
from .settlement import (
    SettlementPlan,
    SettlementRecord,
    calculate_settlement_plan,
    calculate_currency_split,
    decrement_accumulators,
    swap_back,
)

# Token
from .fee_token import FeeToken

# Exchange
from .exchange import (
    PairFactory,
    ExchangeRouter,
    ConstantProductPair,
    ConstantProductFactory,
    ConstantProductRouter,
    get_amount_out,
    quote,
    MINIMUM_LIQUIDITY,
)

# Simulation
from .simulation import SessionReport, simulate_session


__all__ = [
    # Core
    'LedgerView', 'Move', 'Transaction', 'Unit', 'EntryKind',
    'Positions', 'BalanceMap',
    'currency', 'token', 'liquidity_share',
    'ZERO_ADDRESS', 'DEAD_ADDRESS', 'MAX_ALLOWANCE', 'FEE_DENOMINATOR', 'BPS_DENOMINATOR',
    'UNIT_TYPE_TOKEN', 'UNIT_TYPE_CURRENCY', 'UNIT_TYPE_LIQUIDITY_SHARE',
    # Exceptions
    'LedgerError', 'ZeroAddress', 'InsufficientFunds', 'InsufficientAllowance',
    'UnitNotRegistered', 'TradingNotActive', 'TransferLimitExceeded',
    'SettlementReentry', 'Unauthorized', 'ConfigurationLocked', 'PermanentCustody',
    'ExchangeError', 'InsufficientLiquidity', 'InsufficientOutputAmount', 'ExpiredDeadline',
    # Ledger
    'Ledger', 'Participant', 'ReceiveHook',
    # Fees
    'TransferDirection', 'FeeSet', 'FeeBreakdown', 'NO_FEES',
    'classify_transfer', 'calculate_fee', 'compute_fee', 'apply_fee',
    # Policy
    'TokenConfig', 'PolicyRegistry', 'check_trading_gate', 'check_limits', 'DEFAULT_FEES',
    # Settlement
    'SettlementPlan', 'SettlementRecord',
    'calculate_settlement_plan', 'calculate_currency_split', 'decrement_accumulators',
    'swap_back',
    # Token
    'FeeToken',
    # Exchange
    'PairFactory', 'ExchangeRouter',
    'ConstantProductPair', 'ConstantProductFactory', 'ConstantProductRouter',
    'get_amount_out', 'quote', 'MINIMUM_LIQUIDITY',
    # Simulation
    'SessionReport', 'simulate_session',
]

__version__ = '1.0.0'
