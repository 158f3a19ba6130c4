import asyncio
import hashlib
import hmac
import json
from types import SimpleNamespace

import httpx
import pytest
from binance.exceptions import BinanceAPIException, BinanceRequestException

from adapters.binance_spot import BinanceSpotAdapter
from adapters.mexc_spot import MexcSpotAdapter
from adapters.paper import PaperAdapter, RandomWalkMarketData
from engine.errors import GatewayError

KLINE = [1700000000000, "1.0", "2.0", "0.5", "1.5", "100.0", 1700000059999, "150.0"]


def _mexc(handler, key="key", secret="secret") -> MexcSpotAdapter:
    client = httpx.AsyncClient(base_url="https://api.mexc.com", transport=httpx.MockTransport(handler))
    return MexcSpotAdapter(key, secret, client=client)


def test_mexc_fetch_candles_maps_interval():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(request.url.params)
        return httpx.Response(200, json=[KLINE, KLINE])

    candles = asyncio.run(_mexc(handler).fetch_candles("BTCUSDT", "1h", limit=2))
    assert seen == {"symbol": "BTCUSDT", "interval": "60m", "limit": "2"}
    assert len(candles) == 2
    assert candles[0].ts == 1700000000
    assert candles[0].high == 2.0
    assert candles[0].close == 1.5


def test_mexc_rejects_unknown_timeframe():
    adapter = _mexc(lambda request: httpx.Response(200, json=[]))
    with pytest.raises(ValueError):
        asyncio.run(adapter.fetch_candles("BTCUSDT", "3d"))


def test_mexc_signed_buy():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        query = request.url.query.decode()
        payload, signature = query.rsplit("&signature=", 1)
        seen["payload"] = payload
        seen["signature"] = signature
        seen["api_key"] = request.headers["X-MEXC-APIKEY"]
        return httpx.Response(200, json={"orderId": 42, "executedQty": "0.5", "fills": [{"price": "20.0"}]})

    result = asyncio.run(_mexc(handler).place_market_buy("BTCUSDT", 10))
    expected = hmac.new(b"secret", seen["payload"].encode(), hashlib.sha256).hexdigest()
    assert seen["signature"] == expected
    assert seen["payload"].startswith("quoteOrderQty=10.00&side=BUY&symbol=BTCUSDT&timestamp=")
    assert seen["api_key"] == "key"
    assert result.executed_qty == 0.5
    assert result.fill_price == 20.0
    assert result.order_id == "42"


def test_mexc_sell_defaults_executed_qty():
    adapter = _mexc(lambda request: httpx.Response(200, json={"orderId": 7}))
    result = asyncio.run(adapter.place_market_sell("BTCUSDT", 1.25))
    assert result.executed_qty == 1.25
    assert result.order_id == "7"


def test_mexc_http_error_becomes_gateway_error():
    adapter = _mexc(lambda request: httpx.Response(400, json={"code": 30004, "msg": "Insufficient position"}))
    with pytest.raises(GatewayError) as excinfo:
        asyncio.run(adapter.place_market_sell("BTCUSDT", 1.0))
    assert excinfo.value.symbol == "BTCUSDT"


def test_mexc_candle_outage_becomes_gateway_error():
    adapter = _mexc(lambda request: httpx.Response(503))
    with pytest.raises(GatewayError) as excinfo:
        asyncio.run(adapter.fetch_candles("ETHUSDT", "1m"))
    assert excinfo.value.symbol == "ETHUSDT"


def test_mexc_connect_error_becomes_gateway_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(GatewayError):
        asyncio.run(_mexc(handler).fetch_candles("BTCUSDT", "1m"))


def test_mexc_exchange_info():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/v3/exchangeInfo"
        return httpx.Response(200, json={"symbols": [{"symbol": "BTCUSDT"}]})

    info = asyncio.run(_mexc(handler).get_exchange_info())
    assert info["symbols"][0]["symbol"] == "BTCUSDT"


def test_paper_fill_over_failing_feed_raises_gateway_error():
    adapter = PaperAdapter(_mexc(lambda request: httpx.Response(503)))
    with pytest.raises(GatewayError):
        asyncio.run(adapter.place_market_sell("BTCUSDT", 1.0))
    assert adapter.orders == []


def test_mexc_missing_keys():
    adapter = _mexc(lambda request: httpx.Response(200, json={}), key="", secret="")
    with pytest.raises(GatewayError):
        asyncio.run(adapter.place_market_buy("BTCUSDT", 10))


class FakeBinanceClient:
    def __init__(self, error: str | None = None, kline_error: str | None = None) -> None:
        self.error = error
        self.kline_error = kline_error
        self.orders = []

    def get_klines(self, symbol, interval, limit):
        if self.kline_error:
            raise BinanceRequestException(self.kline_error)
        return [KLINE] * limit

    def get_exchange_info(self):
        return {"symbols": [{"symbol": "BTCUSDT"}]}

    def get_symbol_info(self, symbol):
        return {"filters": [{"filterType": "PRICE_FILTER"}, {"filterType": "LOT_SIZE", "stepSize": "0.001"}]}

    def create_order(self, **params):
        if self.error:
            response = SimpleNamespace(text=json.dumps({"code": -2010, "msg": self.error}), request=None)
            raise BinanceAPIException(response, 400, response.text)
        self.orders.append(params)
        return {"orderId": 9, "executedQty": params.get("quantity") or "0.25", "fills": [{"price": "40.0"}]}


def test_binance_fetch_candles():
    adapter = BinanceSpotAdapter(client=FakeBinanceClient())
    candles = asyncio.run(adapter.fetch_candles("BTCUSDT", "1m", limit=3))
    assert len(candles) == 3
    assert candles[-1].low == 0.5


def test_binance_buy_uses_quote_amount():
    client = FakeBinanceClient()
    result = asyncio.run(BinanceSpotAdapter(client=client).place_market_buy("BTCUSDT", 10))
    assert client.orders[0]["quoteOrderQty"] == "10.00"
    assert client.orders[0]["side"] == "BUY"
    assert result.fill_price == 40.0
    assert result.executed_qty == 0.25


def test_binance_sell_rounds_to_lot_size():
    client = FakeBinanceClient()
    result = asyncio.run(BinanceSpotAdapter(client=client).place_market_sell("BTCUSDT", 1.23456))
    assert client.orders[0]["quantity"] == "1.234"
    assert result.executed_qty == pytest.approx(1.234)


def test_binance_api_error_becomes_gateway_error():
    adapter = BinanceSpotAdapter(client=FakeBinanceClient(error="Account has insufficient balance"))
    with pytest.raises(GatewayError, match="insufficient balance"):
        asyncio.run(adapter.place_market_buy("BTCUSDT", 10))


def test_paper_adapter_fills_at_last_close():
    adapter = PaperAdapter(RandomWalkMarketData(seed=7))
    buy = asyncio.run(adapter.place_market_buy("BTCUSDT", 50))
    sell = asyncio.run(adapter.place_market_sell("BTCUSDT", buy.executed_qty))
    assert buy.executed_qty == pytest.approx(50 / buy.fill_price)
    assert buy.order_id == "paper-1"
    assert sell.order_id == "paper-2"
    assert [o["side"] for o in adapter.orders] == ["BUY", "SELL"]


def test_random_walk_moves_at_most_one_percent():
    candles = asyncio.run(RandomWalkMarketData(seed=1).fetch_candles("BTCUSDT", "5m", limit=100))
    assert len(candles) == 100
    for candle in candles:
        assert abs(candle.close / candle.open - 1) <= 0.01
        assert candle.low <= min(candle.open, candle.close)
        assert candle.high >= max(candle.open, candle.close)
    assert candles[1].ts - candles[0].ts == 300


def test_random_walk_cannot_trade():
    with pytest.raises(GatewayError):
        asyncio.run(RandomWalkMarketData().place_market_buy("BTCUSDT", 10))


def test_binance_kline_error_becomes_gateway_error():
    adapter = BinanceSpotAdapter(client=FakeBinanceClient(kline_error="Read timed out"))
    with pytest.raises(GatewayError, match="Read timed out") as excinfo:
        asyncio.run(adapter.fetch_candles("BTCUSDT", "1m"))
    assert excinfo.value.symbol == "BTCUSDT"


def test_binance_exchange_info():
    info = asyncio.run(BinanceSpotAdapter(client=FakeBinanceClient()).get_exchange_info())
    assert info["symbols"] == [{"symbol": "BTCUSDT"}]


def test_simulated_feed_has_no_exchange_info():
    assert asyncio.run(PaperAdapter(RandomWalkMarketData(seed=3)).get_exchange_info()) == {}
