from __future__ import annotations

import itertools
import random
import time

from loguru import logger

from adapters.base import ExchangeGateway
from engine.errors import GatewayError
from engine.models import BuyResult, Candle, SellResult
from services.scheduler import timeframe_seconds


class RandomWalkMarketData(ExchangeGateway):
    """Synthetic candles for dry runs: a random walk moving at most 1% per candle."""

    def __init__(self, seed: int | None = None) -> None:
        self._random = random.Random(seed)

    async def fetch_candles(self, symbol: str, timeframe: str, limit: int = 200) -> list[Candle]:
        step = timeframe_seconds(timeframe)
        start = int(time.time()) - step * limit
        price = 100 + self._random.random() * 100
        candles = []
        for i in range(limit):
            prev = price
            price += price * (self._random.random() * 0.02 - 0.01)
            spread = abs(price - prev) * 0.5
            candles.append(
                Candle(
                    ts=start + i * step,
                    open=prev,
                    high=max(prev, price) + spread,
                    low=min(prev, price) - spread,
                    close=price,
                    volume=self._random.uniform(1, 1000),
                )
            )
        return candles

    async def place_market_buy(self, symbol: str, usdt_amount: float) -> BuyResult:
        raise GatewayError("Synthetic market data cannot execute orders", symbol=symbol)

    async def place_market_sell(self, symbol: str, quantity: float) -> SellResult:
        raise GatewayError("Synthetic market data cannot execute orders", symbol=symbol)


class PaperAdapter(ExchangeGateway):
    """Simulated execution on top of a real or synthetic data provider.

    Orders fill at the last close of the provider's most recent candle.
    """

    def __init__(self, data_provider: ExchangeGateway, timeframe: str = "1m") -> None:
        self.data_provider = data_provider
        self.timeframe = timeframe
        self._order_ids = itertools.count(1)
        self.orders: list[dict] = []

    async def fetch_candles(self, symbol: str, timeframe: str, limit: int = 200) -> list[Candle]:
        return await self.data_provider.fetch_candles(symbol, timeframe, limit=limit)

    async def _last_price(self, symbol: str) -> float:
        candles = await self.fetch_candles(symbol, self.timeframe, limit=1)
        if not candles:
            raise GatewayError(f"No candles available for fill: {symbol}", symbol=symbol)
        return candles[-1].close

    async def place_market_buy(self, symbol: str, usdt_amount: float) -> BuyResult:
        price = await self._last_price(symbol)
        order_id = f"paper-{next(self._order_ids)}"
        result = BuyResult(executed_qty=usdt_amount / price, fill_price=price, order_id=order_id)
        self.orders.append({"side": "BUY", "symbol": symbol, "qty": result.executed_qty, "price": price, "order_id": order_id})
        logger.info("Paper buy: {} {} @ {}", symbol, result.executed_qty, price)
        return result

    async def place_market_sell(self, symbol: str, quantity: float) -> SellResult:
        price = await self._last_price(symbol)
        order_id = f"paper-{next(self._order_ids)}"
        self.orders.append({"side": "SELL", "symbol": symbol, "qty": quantity, "price": price, "order_id": order_id})
        logger.info("Paper sell: {} {} @ {}", symbol, quantity, price)
        return SellResult(executed_qty=quantity, order_id=order_id)

    async def close(self) -> None:
        await self.data_provider.close()
