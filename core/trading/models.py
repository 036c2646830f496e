"""Domain models for rebalance runs.

Exchange and recommendation payloads are parsed into these models once,
at ingestion. Downstream sizing code works on typed optionals and never
re-coerces raw values.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from core.utils.numeric import to_float


class Category(str, Enum):
    COIN_MAJOR = "coin_major"
    COIN_MINOR = "coin_minor"
    NASDAQ = "nasdaq"


class OrderSide(str, Enum):
    BUY = "buy"
    SELL = "sell"


class RecommendationAction(str, Enum):
    BUY = "buy"
    SELL = "sell"
    HOLD = "hold"
    NO_TRADE = "no_trade"


class ExecutionUrgency(str, Enum):
    URGENT = "urgent"
    NORMAL = "normal"


class ExecutionMode(str, Enum):
    MARKET = "market"
    LIMIT_IOC = "limit_ioc"
    LIMIT_POST_ONLY = "limit_post_only"


class TradePolicy(BaseModel):
    """Named thresholds for sizing and gating. Immutable once built."""
    model_config = ConfigDict(frozen=True)

    min_allocation_band: float = 0.01
    allocation_band_ratio: float = 0.1
    estimated_fee_rate: float = 0.0005
    estimated_slippage_rate: float = 0.001
    edge_risk_buffer_rate: float = 0.0005
    staged_exit_light: float = -0.25
    staged_exit_medium: float = -0.5
    staged_exit_full: float = -1.0
    payoff_overlay_stop_loss_min: float = -0.5
    payoff_overlay_trailing_min: float = -0.3
    min_allocation_confidence: float = 0.35
    minimum_trade_price: float = 5000.0


DEFAULT_TRADE_POLICY = TradePolicy()


class CategoryExposureCaps(BaseModel):
    model_config = ConfigDict(frozen=True)

    coin_major: float = 0.6
    coin_minor: float = 0.45
    nasdaq: float = 0.25


class MarketRegimePolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    exposure_multiplier: float = 1.0
    rebalance_band_multiplier: float = 1.0
    turnover_cap: float = 0.55
    category_exposure_caps: CategoryExposureCaps = CategoryExposureCaps()


class MarketRegimeSnapshot(BaseModel):
    """Market-wide sentiment inputs. Any field may be missing."""
    fear_greed_index: Optional[float] = None
    btc_dominance: Optional[float] = None
    altcoin_index: Optional[float] = None


class MarketFeatures(BaseModel):
    """Per-symbol market features used by the signal scorer.

    Percent-style fields (confidence, momentum_strength, trend_persistence,
    intensity_stability) are on a 0..100 scale; liquidity_score is 0..10;
    volatility is a fraction.
    """
    confidence: Optional[float] = None
    momentum_strength: Optional[float] = None
    trend_persistence: Optional[float] = None
    liquidity_score: Optional[float] = None
    volatility: Optional[float] = None
    intensity_stability: Optional[float] = None


class Recommendation(BaseModel):
    """One model recommendation for one symbol. Immutable per run."""
    model_config = ConfigDict(frozen=True, use_enum_values=False)

    id: Optional[str] = None
    symbol: str
    category: Category
    intensity: float = 0.0
    confidence: Optional[float] = None
    decision_confidence: Optional[float] = None
    action: Optional[RecommendationAction] = None
    weight: Optional[float] = None
    model_target_weight: Optional[float] = None
    prev_model_target_weight: Optional[float] = None
    buy_score: Optional[float] = None
    sell_score: Optional[float] = None
    expected_volatility_pct: Optional[float] = None
    expected_edge_rate: Optional[float] = None
    estimated_cost_rate: Optional[float] = None
    spread_rate: Optional[float] = None
    impact_rate: Optional[float] = None
    risk_flags: List[str] = Field(default_factory=list)
    reason: Optional[str] = None
    has_stock: bool = False

    @property
    def holding_key(self) -> str:
        return f"{self.symbol}:{self.category.value}"


class BalanceEntry(BaseModel):
    """One account line as reported by the exchange (numbers arrive as strings)."""
    currency: str
    unit_currency: str
    balance: float = 0.0
    locked: float = 0.0
    avg_buy_price: float = 0.0

    @field_validator("balance", "locked", "avg_buy_price", mode="before")
    @classmethod
    def parse_number(cls, v):
        parsed = to_float(v)
        return parsed if parsed is not None else 0.0

    @property
    def symbol(self) -> str:
        return f"{self.currency}/{self.unit_currency}"

    @property
    def is_cash(self) -> bool:
        return self.currency == self.unit_currency


class Balances(BaseModel):
    info: List[BalanceEntry] = Field(default_factory=list)
    free: Dict[str, float] = Field(default_factory=dict)

    @classmethod
    def from_exchange(cls, payload: Mapping[str, Any]) -> "Balances":
        """Parse a ccxt-style balance payload: ``info`` lines plus per-currency dicts."""
        free: Dict[str, float] = {}
        for currency, value in payload.items():
            if currency == "info" or not isinstance(value, Mapping):
                continue
            parsed = to_float(value.get("free"))
            if parsed is not None:
                free[currency] = parsed
        return cls(info=list(payload.get("info") or []), free=free)

    def positions(self) -> List[BalanceEntry]:
        """Non-cash lines."""
        return [entry for entry in self.info if not entry.is_cash]


class ExchangeOrder(BaseModel):
    """Order payload returned by the exchange adapter."""
    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    symbol: Optional[str] = None
    side: Optional[str] = None
    type: Optional[str] = None
    status: Optional[str] = None
    price: Optional[float] = None
    average: Optional[float] = None
    amount: Optional[float] = None
    filled: Optional[float] = None
    cost: Optional[float] = None


class AdjustedOrderResult(BaseModel):
    """Structured order placement result with execution and fill metadata."""
    order: Optional[ExchangeOrder] = None
    execution_mode: str = ExecutionMode.MARKET.value
    order_type: Optional[str] = None
    time_in_force: Optional[str] = None
    request_price: Optional[float] = None
    requested_amount: Optional[float] = None
    requested_volume: Optional[float] = None
    filled_amount: Optional[float] = None
    filled_ratio: Optional[float] = None
    average_price: Optional[float] = None
    order_status: Optional[str] = None
    expected_edge_rate: Optional[float] = None
    estimated_cost_rate: Optional[float] = None
    spread_rate: Optional[float] = None
    impact_rate: Optional[float] = None
    gate_bypassed_reason: Optional[str] = None
    trigger_reason: Optional[str] = None


@dataclass(frozen=True)
class TradeRequest:
    """A gated, signed relative weight change for one symbol."""
    symbol: str
    diff: float
    balances: Balances
    market_price: float
    recommendation: Optional[Recommendation] = None
    execution_urgency: ExecutionUrgency = ExecutionUrgency.NORMAL
    trigger_reason: Optional[str] = None
    execution_mode: Optional[str] = None
    order_type: Optional[str] = None
    time_in_force: Optional[str] = None
    request_price: Optional[float] = None
    requested_amount: Optional[float] = None
    expected_edge_rate: Optional[float] = None
    estimated_cost_rate: Optional[float] = None
    spread_rate: Optional[float] = None
    impact_rate: Optional[float] = None
    gate_bypassed_reason: Optional[str] = None


@dataclass(frozen=True)
class ExecutionSnapshot:
    """Per-phase view of the account. Never mutated after it is built.

    ``orderable_symbols`` is None when orderability could not be checked at
    all; every quote-currency symbol is then treated as orderable.
    """
    balances: Balances
    orderable_symbols: Optional[FrozenSet[str]]
    market_price: float
    current_weights: Mapping[str, float] = field(default_factory=dict)
    tradable_market_value_map: Mapping[str, float] = field(default_factory=dict)


class TradeRecord(BaseModel):
    """Persisted trade. Append-only."""
    id: Optional[str] = None
    user_id: str
    type: OrderSide
    symbol: str
    amount: float = 0.0
    profit: float = 0.0
    execution_mode: Optional[str] = None
    order_type: Optional[str] = None
    time_in_force: Optional[str] = None
    request_price: Optional[float] = None
    average_price: Optional[float] = None
    requested_amount: Optional[float] = None
    filled_amount: Optional[float] = None
    filled_ratio: Optional[float] = None
    order_status: Optional[str] = None
    expected_edge_rate: Optional[float] = None
    estimated_cost_rate: Optional[float] = None
    spread_rate: Optional[float] = None
    impact_rate: Optional[float] = None
    missed_opportunity_cost: Optional[float] = None
    gate_bypassed_reason: Optional[str] = None
    trigger_reason: Optional[str] = None
    recommendation: Optional[Recommendation] = None
    created_at: Optional[datetime] = None


@dataclass
class TradeExecution:
    """A request paired with the trade it produced (None when nothing filled)."""
    request: TradeRequest
    trade: Optional[TradeRecord] = None


@dataclass(frozen=True)
class HoldingItem:
    symbol: str
    category: Category

    @property
    def key(self) -> str:
        return f"{self.symbol}:{self.category.value}"


@dataclass(frozen=True)
class HoldingLedgerItem:
    symbol: str
    category: Category
    index: int
