from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import structlog
from fastapi import FastAPI, Query, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ..agent import BevAgent, build_agent
from ..agent.realtime_openai import OpenAIRealtimeChannel, RealtimeClientConfig, create_ephemeral_session
from ..backend.errors import (
    BevError,
    CommandFailed,
    Conflict,
    ExternalServiceError,
    NotFound,
    ValidationFailed,
)
from ..backend.models import LineItem
from ..backend.venue import Venue
from ..config import Settings, get_settings
from ..log import configure_logging, is_configured
from ..realtime.channel import ProviderChannel
from ..realtime.session import VoiceSession

logger = structlog.get_logger(__name__)

ChannelFactory = Callable[[], ProviderChannel]


# ---------------------------------------------------------------------------
# Pydantic models
# ---------------------------------------------------------------------------
class OrderItemPayload(BaseModel):
    productId: str
    quantity: int = Field(default=1, gt=0)


class CreateOrderBody(BaseModel):
    items: List[OrderItemPayload] = Field(min_length=1)
    orderName: Optional[str] = None
    paymentMethod: str = "card"


class ExecuteToolBody(BaseModel):
    name: str
    args: Dict[str, Any] = Field(default_factory=dict)
    sessionId: str = "rest"


class CartItemQuantityBody(BaseModel):
    quantity: int = Field(ge=0)


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------
def status_for(exc: BevError) -> int:
    if isinstance(exc, ValidationFailed):
        return 422
    if isinstance(exc, NotFound):
        return 404
    if isinstance(exc, Conflict):
        return 409
    if isinstance(exc, ExternalServiceError):
        return 502
    if isinstance(exc, CommandFailed):
        return 500
    return 500


async def _bev_error_handler(request: Request, exc: BevError) -> JSONResponse:
    status = status_for(exc)
    log = logger.warning if status < 500 else logger.error
    log("Request failed", path=request.url.path, status=status, code=exc.code, error=exc.message)
    return JSONResponse(status_code=status, content={"error": exc.to_payload()})


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------
def create_app(
    settings: Optional[Settings] = None,
    venue: Optional[Venue] = None,
    channel_factory: Optional[ChannelFactory] = None,
) -> FastAPI:
    settings = settings or get_settings()
    if not is_configured():
        configure_logging(settings.log_level, settings.log_json)

    agent: BevAgent = build_agent(settings, venue)
    venue = agent.venue
    catalog = venue.catalog
    orders = venue.orders

    def openai_channel() -> ProviderChannel:
        return OpenAIRealtimeChannel(RealtimeClientConfig(settings), agent.instructions(), agent.tools())

    make_channel = channel_factory or openai_channel

    app = FastAPI(title="BevPro Voice POS API", version="1.0.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(BevError, _bev_error_handler)
    app.state.agent = agent
    app.state.venue = venue
    app.state.settings = settings

    @app.get("/health")
    def health() -> Dict[str, Any]:
        return {"status": "ok", "time": datetime.now(timezone.utc).isoformat()}

    # ---------------- products ----------------
    @app.get("/api/products/categories/list")
    def list_categories() -> Dict[str, Any]:
        return {"categories": catalog.category_names()}

    @app.get("/api/products")
    def list_products(category: Optional[str] = None) -> Dict[str, Any]:
        return {"products": [p.to_api() for p in catalog.list(category)]}

    @app.get("/api/products/{product_id}")
    def get_product(product_id: str) -> Dict[str, Any]:
        return catalog.require(product_id).to_api()

    # ---------------- orders ----------------
    @app.get("/api/orders")
    def list_orders(limit: int = Query(default=50, ge=1, le=500)) -> Dict[str, Any]:
        return {"orders": [o.to_api() for o in orders.list_orders(limit)]}

    @app.get("/api/orders/{order_id}")
    def get_order(order_id: str) -> Dict[str, Any]:
        return orders.get(order_id).to_api()

    @app.post("/api/orders", status_code=201)
    def create_order(body: CreateOrderBody) -> Dict[str, Any]:
        lines: List[LineItem] = []
        for item in body.items:
            product = catalog.require(item.productId)
            lines.append(LineItem(product_id=product.id, name=product.name, price=product.price, quantity=item.quantity))
        order = orders.create(items=lines, label=body.orderName)
        result = orders.finalize(order.id, body.paymentMethod, customer_name=body.orderName)
        return {"order": orders.get(order.id).to_api(), "inventory": result["inventory"]}

    @app.post("/api/orders/{order_id}/inventory/retry")
    def retry_inventory(order_id: str) -> Dict[str, Any]:
        return orders.resume_inventory(order_id)

    # ---------------- cart ----------------
    @app.get("/api/cart/{session_id}")
    def get_cart(session_id: str) -> Dict[str, Any]:
        order = orders.current_for_session(session_id)
        return {"order": order.to_api() if order else None}

    @app.patch("/api/cart/{session_id}/items/{product_id}")
    def update_cart_item(session_id: str, product_id: str, body: CartItemQuantityBody) -> Dict[str, Any]:
        return {"order": orders.set_quantity(session_id, product_id, body.quantity).to_api()}

    @app.delete("/api/cart/{session_id}/items/{product_id}")
    def remove_cart_item(session_id: str, product_id: str) -> Dict[str, Any]:
        return {"order": orders.set_quantity(session_id, product_id, 0).to_api()}

    # ---------------- realtime ----------------
    @app.get("/api/realtime/tools")
    def realtime_tools() -> Dict[str, Any]:
        return {"tools": agent.tools(), "instructions": agent.instructions()}

    @app.post("/api/realtime/execute-tool")
    async def execute_tool(body: ExecuteToolBody) -> Dict[str, Any]:
        result = await agent.execute(body.name, body.args, body.sessionId)
        return {"success": True, "result": result}

    @app.post("/api/realtime/session")
    async def realtime_session() -> Dict[str, Any]:
        return await create_ephemeral_session(settings, agent.instructions(), agent.tools())

    @app.get("/api/realtime/health")
    def realtime_health() -> Dict[str, Any]:
        config = RealtimeClientConfig(settings)
        return {
            "status": "ok",
            "configured": config.available,
            "provider": "azure" if config.use_azure else "openai",
            "model": config.model,
            "tools": len(agent.registry),
        }

    @app.websocket("/ws/voice")
    async def voice_socket(
        websocket: WebSocket,
        session_id: Optional[str] = None,
        sample_rate: int = 24000,
        channels: int = 1,
    ) -> None:
        await websocket.accept()
        session = VoiceSession(
            websocket,
            make_channel,
            agent.registry,
            venue,
            settings,
            session_id=session_id,
            sample_rate=sample_rate,
            channels=channels,
        )
        log = logger.bind(session_id=session.session_id)
        log.info("Voice client connected", resumed=bool(session_id), sample_rate=sample_rate, channels=channels)
        await session.start()

        receiver = asyncio.create_task(_pump_client(websocket, session))
        closer = asyncio.create_task(session.wait_closed())
        _, pending = await asyncio.wait({receiver, closer}, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        await session.close("client_disconnected")
        log.info("Voice client disconnected", reason=session.close_reason)

    return app


async def _pump_client(websocket: WebSocket, session: VoiceSession) -> None:
    try:
        while True:
            message = await websocket.receive()
            if message.get("type") == "websocket.disconnect":
                return
            data = message.get("bytes")
            if data is not None:
                await session.receive_bytes(data)
                continue
            text = message.get("text")
            if text is not None:
                await session.receive_text(text)
    except WebSocketDisconnect:
        return


app = create_app()

__all__ = ["app", "create_app", "status_for"]
