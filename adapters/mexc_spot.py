from __future__ import annotations

import hashlib
import hmac
import time
from typing import Any
from urllib.parse import urlencode

import httpx
from loguru import logger

from adapters.base import ExchangeGateway
from engine.errors import GatewayError
from engine.models import BuyResult, Candle, SellResult

_INTERVALS = {"1m": "1m", "5m": "5m", "15m": "15m", "30m": "30m", "1h": "60m", "4h": "4h"}


class MexcSpotAdapter(ExchangeGateway):
    def __init__(
        self,
        api_key: str = "",
        api_secret: str = "",
        base_url: str = "https://api.mexc.com",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key
        self.api_secret = api_secret
        self.client = client or httpx.AsyncClient(base_url=base_url.rstrip("/"), timeout=10.0)
        self.client.headers.update({"X-MEXC-APIKEY": api_key, "Content-Type": "application/json"})

    @staticmethod
    def _query_string(params: dict[str, Any]) -> str:
        return urlencode(sorted(params.items()))

    def sign(self, params: dict[str, Any]) -> str:
        query = self._query_string(params)
        return hmac.new(self.api_secret.encode("utf-8"), query.encode("utf-8"), hashlib.sha256).hexdigest()

    async def _signed_request(self, method: str, path: str, params: dict[str, Any] | None = None) -> Any:
        if not (self.api_key and self.api_secret):
            raise GatewayError("MEXC API keys missing for signed request")
        query = dict(params or {})
        query["timestamp"] = int(time.time() * 1000)
        signature = self.sign(query)
        try:
            resp = await self.client.request(method, f"{path}?{self._query_string(query)}&signature={signature}")
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error("API request error: {}", exc)
            raise GatewayError(f"MEXC request failed: {exc}", symbol=query.get("symbol")) from exc
        return resp.json()

    async def _public_get(self, path: str, params: dict[str, Any] | None = None, symbol: str | None = None) -> Any:
        try:
            resp = await self.client.get(path, params=params)
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error("API request error: {}", exc)
            raise GatewayError(f"MEXC request failed: {exc}", symbol=symbol) from exc
        return resp.json()

    async def fetch_candles(self, symbol: str, timeframe: str, limit: int = 200) -> list[Candle]:
        interval = _INTERVALS.get(timeframe)
        if not interval:
            raise ValueError(f"Unsupported timeframe: {timeframe}")
        klines = await self._public_get(
            "/api/v3/klines", {"symbol": symbol, "interval": interval, "limit": limit}, symbol=symbol
        )
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

    async def place_market_buy(self, symbol: str, usdt_amount: float) -> BuyResult:
        logger.info("Placing market buy order: {}, {} USDT", symbol, usdt_amount)
        resp = await self._signed_request(
            "POST",
            "/api/v3/order",
            {"symbol": symbol, "side": "BUY", "type": "MARKET", "quoteOrderQty": f"{usdt_amount:.2f}"},
        )
        logger.info("[API BUY SUCCESS] {}", resp)
        fills = resp.get("fills") or []
        executed = resp.get("executedQty")
        return BuyResult(
            executed_qty=float(executed) if executed else None,
            fill_price=float(fills[0]["price"]) if fills else None,
            order_id=str(resp.get("orderId")) if resp.get("orderId") is not None else None,
        )

    async def place_market_sell(self, symbol: str, quantity: float) -> SellResult:
        logger.info("Placing market sell order: {}, {} units", symbol, quantity)
        resp = await self._signed_request(
            "POST",
            "/api/v3/order",
            {"symbol": symbol, "side": "SELL", "type": "MARKET", "quantity": str(quantity)},
        )
        logger.info("[API SELL SUCCESS] {}", resp)
        return SellResult(
            executed_qty=float(resp.get("executedQty") or quantity),
            order_id=str(resp.get("orderId")) if resp.get("orderId") is not None else None,
        )

    async def get_exchange_info(self) -> dict[str, Any]:
        return await self._public_get("/api/v3/exchangeInfo")

    async def close(self) -> None:
        await self.client.aclose()
