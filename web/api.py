from __future__ import annotations

from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

from engine.errors import GatewayError
from services.notifier import BusMessage
from services.orchestrator import EngineOrchestrator


class ForceTradeRequest(BaseModel):
    symbol: str | None = None


class ControlRequest(BaseModel):
    action: str


class KillSwitchRequest(BaseModel):
    active: bool


class LimitRequest(BaseModel):
    value: float


class ConnectionManager:
    def __init__(self) -> None:
        self.connections: set[WebSocket] = set()

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self.connections.add(websocket)

    def disconnect(self, websocket: WebSocket) -> None:
        self.connections.discard(websocket)

    async def broadcast(self, message: BusMessage) -> None:
        payload = message.to_dict()
        for websocket in list(self.connections):
            try:
                await websocket.send_json(payload)
            except (WebSocketDisconnect, RuntimeError) as exc:
                logger.debug("Dropping websocket client: {}", exc)
                self.disconnect(websocket)


def create_app(orchestrator: EngineOrchestrator) -> FastAPI:
    app = FastAPI(title="Trading Agent API")
    engine = orchestrator.engine
    clients = ConnectionManager()
    orchestrator.events.subscribe(clients.broadcast)
    app.state.orchestrator = orchestrator
    app.state.clients = clients

    @app.on_event("shutdown")
    async def detach_clients() -> None:
        orchestrator.events.unsubscribe(clients.broadcast)

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    @app.get("/api/status")
    async def get_status() -> dict:
        return engine.status()

    @app.get("/api/positions")
    async def get_positions() -> dict:
        positions = engine.manager.get_open_positions()
        return {"positions": {symbol: p.to_dict() for symbol, p in positions.items()}}

    @app.get("/api/positions/history")
    async def get_history() -> dict:
        return {"history": [p.to_dict() for p in engine.manager.get_closed_positions()]}

    @app.get("/api/positions/{symbol}")
    async def get_position(symbol: str) -> dict:
        position = engine.manager.get_open_positions().get(symbol)
        if position is None:
            raise HTTPException(status_code=404, detail=f"No position found for {symbol}")
        return {"position": position.to_dict()}

    @app.post("/api/positions/{symbol}/close")
    async def close_position(symbol: str) -> dict:
        try:
            position = await engine.close_position(symbol)
        except GatewayError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        except ValueError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        if position is None:
            raise HTTPException(status_code=404, detail=f"No position found for {symbol}")
        return {"success": True, "result": position.to_dict()}

    @app.get("/api/market")
    async def get_all_market() -> dict:
        return {"data": {symbol: s.to_dict() for symbol, s in engine.get_all_market_data().items()}}

    @app.get("/api/market/{symbol}")
    async def get_market(symbol: str) -> dict:
        snapshot = engine.get_market_data(symbol)
        if snapshot is None:
            raise HTTPException(status_code=404, detail=f"No data found for {symbol}")
        return {"symbol": symbol, "data": snapshot.to_dict()}

    @app.get("/api/config")
    async def get_config() -> dict:
        return {"config": engine.config.public_dict(), "strategy": engine.strategy.info()}

    @app.post("/api/force-trade")
    async def force_trade(body: ForceTradeRequest | None = None) -> dict:
        try:
            return await engine.force_trade(body.symbol if body else None)
        except GatewayError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc

    @app.post("/api/control")
    async def control(body: ControlRequest) -> dict:
        if body.action == "pause":
            orchestrator.pause()
            return {"success": True, "status": "paused"}
        if body.action == "resume":
            if not orchestrator.resume() and not engine.status()["running"]:
                raise HTTPException(status_code=409, detail="Trading is blocked by a safety control")
            return {"success": True, "status": "running"}
        raise HTTPException(status_code=400, detail='Invalid action. Use "pause" or "resume".')

    @app.get("/api/safety")
    async def get_safety() -> dict:
        return engine.safety_status()

    @app.post("/api/safety/kill-switch")
    async def kill_switch(body: KillSwitchRequest) -> dict:
        if body.active:
            engine.activate_kill_switch()
        else:
            engine.deactivate_kill_switch()
        return {"success": True, "safety_status": engine.safety_status()}

    @app.post("/api/safety/emergency-close")
    async def emergency_close() -> dict:
        closed = await engine.emergency_close_all()
        return {"closed": [p.to_dict() for p in closed], "count": len(closed)}

    @app.post("/api/safety/max-position-size")
    async def max_position_size(body: LimitRequest) -> dict:
        if not engine.set_max_position_size(body.value):
            raise HTTPException(status_code=400, detail="Maximum position size must be greater than 0")
        return {"success": True, "safety_status": engine.safety_status()}

    @app.post("/api/safety/daily-loss-limit")
    async def daily_loss_limit(body: LimitRequest) -> dict:
        if not engine.set_daily_loss_limit(body.value):
            raise HTTPException(status_code=400, detail="Daily loss limit must be a negative percentage")
        return {"success": True, "safety_status": engine.safety_status()}

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket) -> None:
        await clients.connect(websocket)
        await websocket.send_json({"type": "status", "data": engine.status()})
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            clients.disconnect(websocket)

    return app
