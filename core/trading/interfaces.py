from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Iterable, List, Optional, Protocol, Union, runtime_checkable

from core.trading.models import (
    AdjustedOrderResult,
    Balances,
    ExchangeOrder,
    HoldingItem,
    HoldingLedgerItem,
    MarketRegimeSnapshot,
    OrderSide,
    TradeRecord,
    TradeRequest,
)

# What ``adjust_order`` may return: a structured result, a bare order
# (legacy adapters), a raw dict of either shape, or nothing.
OrderResponse = Union[AdjustedOrderResult, ExchangeOrder, dict, None]


@runtime_checkable
class ExchangeAdapter(Protocol):
    """Exchange surface used by the rebalance core.

    Concrete adapters own credentials, client pooling and order sizing
    (turning a relative ``diff`` into an order).
    """

    async def get_balances(self, user_id: str) -> Optional[Balances]:
        ...

    async def get_price(self, symbol: str) -> float:
        ...

    async def calculate_tradable_market_value(
        self, balances: Balances, orderable_symbols: Optional[Iterable[str]]
    ) -> float:
        ...

    async def is_symbol_exist(self, symbol: str) -> bool:
        ...

    async def adjust_order(self, user_id: str, request: TradeRequest) -> OrderResponse:
        ...

    def get_order_type(self, order: ExchangeOrder) -> OrderSide:
        ...

    async def calculate_amount(self, order: ExchangeOrder) -> Optional[float]:
        ...

    async def calculate_profit(self, balances: Balances, order: ExchangeOrder, amount: float) -> float:
        ...

    async def cancel_order(self, user_id: str, order_id: str, symbol: str) -> Any:
        """Raises ``OrderCancelError`` when the exchange refuses the cancel."""
        ...

    def clear_clients(self) -> None:
        ...


@runtime_checkable
class NotifyCollaborator(Protocol):
    async def notify(self, user_id: str, text: str) -> None:
        ...

    def clear_clients(self) -> None:
        ...


@runtime_checkable
class MarketRegimeReader(Protocol):
    """Async source of the current market regime snapshot. May raise."""

    async def __call__(self) -> MarketRegimeSnapshot:
        ...


class HoldingLedgerStore(ABC):
    """Canonical holdings ledger, replaced wholesale per run."""

    @abstractmethod
    async def fetch_holdings_by_user(self, user_id: str) -> List[HoldingItem]:
        ...

    @abstractmethod
    async def replace_holdings_for_user(self, user_id: str, items: List[HoldingLedgerItem]) -> None:
        """Atomically delete every row of the user and insert ``items``."""
        ...


class TradeStore(ABC):
    """Append-only trade log."""

    @abstractmethod
    async def save_trade(self, record: TradeRecord) -> TradeRecord:
        ...
