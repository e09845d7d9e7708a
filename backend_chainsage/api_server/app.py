"""
FastAPI/ASGI application — HTTP and WebSocket surface over MonitoringService.

Routes:
  /api/wallet/*  registry, analysis, activity feed, alerts, sync/reload
  /api/ai/*      transaction classification and history
  /api/store/*   durable object store
  /health        liveness
  /ws            live events (subscribe_wallet / unsubscribe_wallet)

Run with: uvicorn backend_chainsage.api_server.app:app --host 0.0.0.0 --port 3001
"""

from __future__ import annotations

import asyncio
import contextlib
import json
from contextlib import asynccontextmanager
from typing import Any, Literal

from fastapi import APIRouter, FastAPI, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from backend_chainsage.alerts.broadcaster import Subscriber
from backend_chainsage.chainsage_logging import get_logger
from backend_chainsage.chainsage_logging.logger import short_address
from backend_chainsage.core.exceptions import ChainSageError, InvalidAddress
from backend_chainsage.monitoring.service import MonitoringService, create_service
from backend_chainsage.utils.address import normalize_address

logger = get_logger(__name__)

MAX_BATCH_SIZE = 50


# -----------------------------------------------------------------------------
# Request models
# -----------------------------------------------------------------------------

class MonitorRequest(BaseModel):
    """POST /api/wallet/monitor body."""

    address: str = Field(..., min_length=1, max_length=128, description="EVM address (0x + 40 hex)")
    kind: Literal["wallet", "token", "contract", "project"] = Field("wallet", description="Entity kind")
    chain_id: str | None = Field(None, max_length=32, description="Chain id; defaults to the configured chain")
    threshold: float | None = Field(None, ge=0, description="Alert threshold; default 1000")


class ClassifyRequest(BaseModel):
    """POST /api/ai/classify body."""

    transaction: dict[str, Any] = Field(..., description="Transaction fields (hash, from, to, value, gasUsed...)")


class ClassifyBatchRequest(BaseModel):
    """POST /api/ai/classify-batch body."""

    transactions: list[dict[str, Any]] = Field(..., min_length=1, max_length=MAX_BATCH_SIZE)


class StoreRequest(BaseModel):
    """POST /api/store/store body."""

    data: Any = Field(..., description="JSON-serializable payload")
    type: str = Field("generic", min_length=1, max_length=64, description="Data type tag")


# -----------------------------------------------------------------------------
# Dependency
# -----------------------------------------------------------------------------

def get_service(request: Request) -> MonitoringService:
    return request.app.state.service


# -----------------------------------------------------------------------------
# /api/wallet
# -----------------------------------------------------------------------------

wallet_router = APIRouter(prefix="/api/wallet", tags=["wallet"])


@wallet_router.post("/monitor", status_code=201)
async def monitor_wallet(body: MonitorRequest, request: Request) -> dict[str, Any]:
    """Start monitoring an address. Re-adding an address replaces its entry."""
    service = get_service(request)
    entity = await service.monitor(
        body.address,
        body.kind,
        body.chain_id,
        body.threshold,
        metadata={"source": "api", "user_agent": request.headers.get("user-agent", "unknown")},
    )
    return {"success": True, "wallet": entity}


@wallet_router.delete("/monitor/{address}")
async def unmonitor_wallet(address: str, request: Request) -> dict[str, Any]:
    """Stop monitoring. 404 if the address is not monitored."""
    result = await get_service(request).unmonitor(address)
    return {"success": True, **result}


@wallet_router.get("/monitored")
def list_monitored(request: Request) -> dict[str, Any]:
    wallets = get_service(request).list_monitored()
    return {"wallets": wallets, "count": len(wallets)}


@wallet_router.get("/status")
def monitoring_status(request: Request) -> dict[str, Any]:
    return get_service(request).get_status()


@wallet_router.get("/analyze/{address}")
async def analyze_wallet(address: str, request: Request) -> dict[str, Any]:
    """One-shot analysis; the address does not have to be monitored."""
    return await get_service(request).analyze(address)


@wallet_router.get("/activity-feed")
async def activity_feed(
    request: Request,
    limit: int = Query(50, ge=1, le=500),
    chain_id: str | None = Query(None),
) -> dict[str, Any]:
    return await get_service(request).get_activity_feed(limit, chain_id)


@wallet_router.get("/activity/{address}")
async def wallet_activity(
    address: str,
    request: Request,
    type: str = Query("all"),
    limit: int = Query(20, ge=1, le=500),
) -> dict[str, Any]:
    try:
        return await get_service(request).get_activity(address, type, limit)
    except InvalidAddress:
        raise
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


@wallet_router.get("/balance/{address}")
async def wallet_balance(address: str, request: Request) -> dict[str, Any]:
    return await get_service(request).get_balance(address)


@wallet_router.get("/alerts")
async def alerts(
    request: Request,
    limit: int = Query(50, ge=1, le=1000),
    severity: str | None = Query(None),
    address: str | None = Query(None),
) -> dict[str, Any]:
    rows = await get_service(request).get_alerts(limit, severity, address)
    return {"alerts": rows, "count": len(rows)}


@wallet_router.get("/events")
async def events(
    request: Request,
    limit: int = Query(50, ge=1, le=1000),
    event_type: str | None = Query(None),
    address: str | None = Query(None),
) -> dict[str, Any]:
    rows = await get_service(request).get_events(limit, event_type, address)
    return {"events": rows, "count": len(rows)}


@wallet_router.post("/sync")
async def force_sync(request: Request) -> dict[str, Any]:
    return await get_service(request).force_sync()


@wallet_router.post("/reload")
async def reload_registry(request: Request) -> dict[str, Any]:
    return await get_service(request).reload_from_durable_store()


@wallet_router.post("/cycle")
async def run_cycle(request: Request) -> dict[str, Any]:
    """Run one aggregation cycle now (waits for a running cycle first)."""
    return await get_service(request).run_cycle()


# -----------------------------------------------------------------------------
# /api/ai
# -----------------------------------------------------------------------------

ai_router = APIRouter(prefix="/api/ai", tags=["ai"])


@ai_router.post("/classify")
async def classify(body: ClassifyRequest, request: Request) -> dict[str, Any]:
    return await get_service(request).classify_transaction(body.transaction)


@ai_router.post("/classify-batch")
async def classify_batch(body: ClassifyBatchRequest, request: Request) -> dict[str, Any]:
    results = await get_service(request).classify_transactions(body.transactions)
    return {"results": results, "count": len(results)}


@ai_router.get("/history/{tx_hash}")
async def classification_history(tx_hash: str, request: Request) -> dict[str, Any]:
    rows = await get_service(request).get_classification_history(tx_hash)
    return {"transaction_hash": tx_hash, "history": rows, "count": len(rows)}


@ai_router.get("/stats")
async def classification_stats(request: Request) -> dict[str, Any]:
    return await get_service(request).get_classification_stats()


# -----------------------------------------------------------------------------
# /api/store
# -----------------------------------------------------------------------------

store_router = APIRouter(prefix="/api/store", tags=["store"])


@store_router.post("/store", status_code=201)
async def store_data(body: StoreRequest, request: Request) -> dict[str, Any]:
    return await get_service(request).store_data(body.data, body.type)


@store_router.get("/retrieve")
async def retrieve_data(
    request: Request,
    type: str | None = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    page: int = Query(1, ge=1),
    address: str | None = Query(None),
    severity: str | None = Query(None),
    start_time: float | None = Query(None),
    end_time: float | None = Query(None),
) -> dict[str, Any]:
    return await get_service(request).retrieve_data(
        type,
        limit=limit,
        page=page,
        address=address,
        severity=severity,
        start_time=start_time,
        end_time=end_time,
    )


# -----------------------------------------------------------------------------
# WebSocket
# -----------------------------------------------------------------------------

def handle_ws_message(subscriber: Subscriber, message: Any) -> dict[str, Any]:
    """Apply one client message to the subscriber's filter; return the reply."""
    if not isinstance(message, dict):
        return {"type": "error", "data": {"message": "message must be a JSON object"}}
    kind = message.get("type")
    if kind == "ping":
        return {"type": "pong"}
    if kind not in ("subscribe_wallet", "unsubscribe_wallet"):
        return {"type": "error", "data": {"message": f"Unknown message type: {kind}"}}
    try:
        address = normalize_address(message.get("address") or (message.get("data") or {}).get("address"))
    except InvalidAddress as e:
        return {"type": "error", "data": {"message": e.message}}
    if kind == "subscribe_wallet":
        subscriber.follow(address)
        return {"type": "subscribed", "data": {"address": address}}
    subscriber.unfollow(address)
    return {"type": "unsubscribed", "data": {"address": address}}


async def _forward_events(websocket: WebSocket, subscriber: Subscriber) -> None:
    while True:
        message = await subscriber.queue.get()
        await websocket.send_json(message)


async def _receive_messages(websocket: WebSocket, subscriber: Subscriber) -> None:
    """Client -> server loop; returns when the client disconnects."""
    while True:
        try:
            raw = await websocket.receive_text()
        except WebSocketDisconnect:
            return
        try:
            message = json.loads(raw)
        except ValueError:
            await websocket.send_json({"type": "error", "data": {"message": "invalid JSON"}})
            continue
        reply = handle_ws_message(subscriber, message)
        if reply["type"] in ("subscribed", "unsubscribed"):
            logger.debug(
                "ws_filter_changed",
                subscriber_id=subscriber.id,
                action=reply["type"],
                wallet_id=short_address(reply["data"]["address"]),
            )
        await websocket.send_json(reply)


async def websocket_endpoint(websocket: WebSocket) -> None:
    """
    One connection = one subscriber. The receive loop and the event forwarder
    run side by side; when either ends (disconnect or a failed send) the other
    is cancelled and the subscriber is always removed.
    """
    await websocket.accept()
    service: MonitoringService = websocket.app.state.service
    subscriber = service.subscribe()
    tasks: list[asyncio.Task] = []
    try:
        await websocket.send_json(
            {"type": "connected", "data": {"subscriber_id": subscriber.id, "message": "Connected to ChainSage"}}
        )
        receiver = asyncio.create_task(_receive_messages(websocket, subscriber), name=f"ws-recv-{subscriber.id}")
        forwarder = asyncio.create_task(_forward_events(websocket, subscriber), name=f"ws-send-{subscriber.id}")
        tasks = [receiver, forwarder]
        done, pending = await asyncio.wait({receiver, forwarder}, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        for task in pending:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        for task in done:
            error = task.exception()
            if error is not None and not isinstance(error, WebSocketDisconnect):
                logger.warning(
                    "ws_connection_failed",
                    subscriber_id=subscriber.id,
                    task=task.get_name(),
                    error=str(error)[:200],
                )
    finally:
        for task in tasks:
            task.cancel()
        service.unsubscribe(subscriber)


# -----------------------------------------------------------------------------
# App factory
# -----------------------------------------------------------------------------

def chainsage_error_handler(request: Any, exc: ChainSageError) -> JSONResponse:
    """Map domain errors to their HTTP status with a consistent JSON body."""
    return JSONResponse(status_code=exc.http_status, content={"detail": exc.message, "code": exc.code})


def http_exception_handler(request: Any, exc: HTTPException) -> JSONResponse:
    """Consistent JSON error response for HTTPException."""
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


def create_app(service: MonitoringService | None = None, *, schedule: bool = True) -> FastAPI:
    """
    Build the app. Without a service one is created from settings at startup.
    schedule=False skips the periodic driver (tests drive cycles explicitly).
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        svc = service or create_service()
        app.state.service = svc
        await svc.start(schedule=schedule)
        logger.info("api_started")
        try:
            yield
        finally:
            await svc.stop()
            logger.info("api_stopped")

    app = FastAPI(title="ChainSage", version="0.1.0", lifespan=lifespan)
    app.include_router(wallet_router)
    app.include_router(ai_router)
    app.include_router(store_router)
    app.add_exception_handler(ChainSageError, chainsage_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_api_websocket_route("/ws", websocket_endpoint)

    @app.get("/health")
    def health() -> dict[str, Any]:
        """Liveness probe: API is up."""
        svc: MonitoringService | None = getattr(app.state, "service", None)
        return {
            "status": "ok",
            "wallets": len(svc.registry) if svc is not None else 0,
            "ai_enabled": svc.classifier.ai_configured if svc is not None else False,
        }

    return app


app = create_app()
