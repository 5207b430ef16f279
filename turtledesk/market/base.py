"""Collaborator protocols consumed by the engine.

Concrete adapters (Yahoo, Kiwoom, SQLite, webhook) and test doubles all
satisfy these structurally.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

from turtledesk.market.models import AccountSummary, BrokerPosition, PricePoint, TradeRecord

if TYPE_CHECKING:
    from turtledesk.engine import RunResult


@runtime_checkable
class PriceHistoryProvider(Protocol):
    async def get_history(self, instrument_id: str, lookback_days: int) -> list[PricePoint]:
        """Return daily bars, most-recent-first. Raises ``Unavailable``."""
        ...


@runtime_checkable
class CurrentPriceProvider(Protocol):
    async def get_current_price(self, instrument_id: str) -> float:
        """Return the latest traded price. Raises ``Unavailable``."""
        ...


@runtime_checkable
class BrokerAccount(Protocol):
    async def get_account_summary(self) -> AccountSummary:
        ...

    async def get_positions(self) -> list[BrokerPosition]:
        ...


@runtime_checkable
class TradeHistory(Protocol):
    def find_turtle_entries(self, instrument_id: str) -> list[TradeRecord]:
        """Return turtle-tagged BUY records for *instrument_id*, newest first."""
        ...


@runtime_checkable
class WatchlistSource(Protocol):
    async def get_instruments(self) -> list[str]:
        ...


@runtime_checkable
class SignalSink(Protocol):
    async def publish(self, result: RunResult) -> None:
        """Receive the prioritized result of one daily run."""
        ...
