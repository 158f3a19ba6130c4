from __future__ import annotations

import asyncio
from decimal import Decimal

from binance.client import Client
from binance.exceptions import BinanceAPIException, BinanceRequestException
from loguru import logger

from adapters.base import ExchangeGateway
from engine.errors import GatewayError
from engine.models import BuyResult, Candle, SellResult


_TIMEFRAME_MAP = {
    "1m": Client.KLINE_INTERVAL_1MINUTE,
    "5m": Client.KLINE_INTERVAL_5MINUTE,
    "15m": Client.KLINE_INTERVAL_15MINUTE,
    "30m": Client.KLINE_INTERVAL_30MINUTE,
    "1h": Client.KLINE_INTERVAL_1HOUR,
    "4h": Client.KLINE_INTERVAL_4HOUR,
}


class BinanceSpotAdapter(ExchangeGateway):
    def __init__(self, api_key: str = "", api_secret: str = "", client: Client | None = None) -> None:
        self.client = client or Client(api_key, api_secret)
        self._precision_cache: dict[str, Decimal] = {}
        self._has_keys = bool(api_key and api_secret) or client is not None

    async def fetch_candles(self, symbol: str, timeframe: str, limit: int = 200) -> list[Candle]:
        interval = _TIMEFRAME_MAP.get(timeframe)
        if not interval:
            raise ValueError(f"Unsupported timeframe: {timeframe}")
        klines = await self._call(self.client.get_klines, symbol=symbol, interval=interval, limit=limit)
        return [
            Candle(
                ts=int(k[0] / 1000),
                open=float(k[1]),
                high=float(k[2]),
                low=float(k[3]),
                close=float(k[4]),
                volume=float(k[5]),
            )
            for k in klines
        ]

    async def _call(self, fn, **params):
        try:
            return await asyncio.to_thread(fn, **params)
        except (BinanceAPIException, BinanceRequestException) as exc:
            logger.error("API request error: {}", exc.message)
            raise GatewayError(f"Binance request failed: {exc.message}", symbol=params.get("symbol")) from exc

    async def get_exchange_info(self) -> dict:
        return await self._call(self.client.get_exchange_info)

    async def place_market_buy(self, symbol: str, usdt_amount: float) -> BuyResult:
        resp = await self._create_order(symbol, Client.SIDE_BUY, quoteOrderQty=f"{usdt_amount:.2f}")
        fills = resp.get("fills", [])
        return BuyResult(
            executed_qty=float(resp["executedQty"]) if resp.get("executedQty") else None,
            fill_price=float(fills[0]["price"]) if fills else None,
            order_id=str(resp.get("orderId")),
        )

    async def place_market_sell(self, symbol: str, quantity: float) -> SellResult:
        qty = await self._round_qty(symbol, quantity)
        resp = await self._create_order(symbol, Client.SIDE_SELL, quantity=str(qty))
        return SellResult(executed_qty=float(resp.get("executedQty") or qty), order_id=str(resp.get("orderId")))

    async def _create_order(self, symbol: str, side: str, **params: str) -> dict:
        if not self._has_keys:
            raise GatewayError("Binance API keys missing for live order", symbol=symbol)
        try:
            resp = await asyncio.to_thread(
                self.client.create_order,
                symbol=symbol,
                side=side,
                type=Client.ORDER_TYPE_MARKET,
                **params,
            )
        except BinanceAPIException as exc:
            logger.error("[API {} ERROR] {}: {}", side, symbol, exc.message)
            raise GatewayError(f"Binance order failed: {exc.message}", symbol=symbol) from exc
        logger.info("[API {} SUCCESS] {}", side, resp)
        return resp

    async def _round_qty(self, symbol: str, qty: float) -> float:
        step = self._precision_cache.get(symbol)
        if step is None:
            step = await self._load_step(symbol)
            self._precision_cache[symbol] = step
        rounded = (Decimal(str(qty)) // step) * step
        return float(rounded)

    async def _load_step(self, symbol: str) -> Decimal:
        info = await self._call(self.client.get_symbol_info, symbol=symbol)
        if not info:
            raise GatewayError(f"Symbol not found: {symbol}", symbol=symbol)
        lot_filter = next(f for f in info["filters"] if f["filterType"] == "LOT_SIZE")
        return Decimal(lot_filter["stepSize"])
