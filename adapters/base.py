from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Awaitable, TypeVar

from engine.errors import GatewayError
from engine.models import BuyResult, Candle, SellResult

T = TypeVar("T")


class ExchangeGateway(ABC):
    @abstractmethod
    async def fetch_candles(self, symbol: str, timeframe: str, limit: int = 200) -> list[Candle]:
        raise NotImplementedError

    @abstractmethod
    async def place_market_buy(self, symbol: str, usdt_amount: float) -> BuyResult:
        raise NotImplementedError

    @abstractmethod
    async def place_market_sell(self, symbol: str, quantity: float) -> SellResult:
        raise NotImplementedError

    async def get_exchange_info(self) -> dict:
        return {}

    async def close(self) -> None:
        return None


async def with_timeout(call: Awaitable[T], timeout: float | None, symbol: str, what: str) -> T:
    """Await a gateway call, turning a timeout into a GatewayError."""
    try:
        return await asyncio.wait_for(call, timeout)
    except asyncio.TimeoutError as exc:
        raise GatewayError(f"{what} for {symbol} timed out after {timeout}s", symbol=symbol) from exc
