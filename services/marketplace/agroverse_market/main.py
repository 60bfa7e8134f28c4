"""
Marketplace Service - FastAPI エントリーポイント

CQRS パターンに従い、Command (POST) と Query (GET) のエンドポイントを分離。
すべての状態変更はイベントとしても記録する。

DB エンジン・セッションファクトリ・Redis クライアントは lifespan で生成して
app.state に置き、依存性注入でハンドラに渡す(モジュールグローバルは持たない)。
利用者の識別は上流のゲートウェイが付与するヘッダで受け取る:
    X-User-Id / X-User-Name / X-User-Role
"""

import asyncio
import logging
from contextlib import aclosing, asynccontextmanager
from datetime import datetime
from decimal import Decimal
from uuid import UUID

import redis.asyncio as aioredis
from fastapi import Depends, FastAPI, Header, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, HttpUrl
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from . import commands, event_store, feed, queries
from .config import Settings
from .errors import MarketplaceError, ProductNotFound
from .schema import init_schema

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = Settings.from_env()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    engine = create_async_engine(settings.database_url, echo=False)
    await init_schema(engine)

    app.state.settings = settings
    app.state.session_factory = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    app.state.redis = aioredis.from_url(settings.redis_url, decode_responses=True)
    logger.info("Marketplace service started")
    yield
    await app.state.redis.aclose()
    await engine.dispose()


app = FastAPI(title="Marketplace Service", lifespan=lifespan)


@app.exception_handler(MarketplaceError)
async def marketplace_error_handler(_request: Request, exc: MarketplaceError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# ── Dependencies ─────────────────────────────────

def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_session_factory(request: Request) -> sessionmaker:
    return request.app.state.session_factory


def get_redis(request: Request) -> aioredis.Redis:
    return request.app.state.redis


class Actor(BaseModel):
    user_id: str
    display_name: str | None = None
    role: str = "consumer"


def get_actor(
    x_user_id: str | None = Header(default=None),
    x_user_name: str | None = Header(default=None),
    x_user_role: str = Header(default="consumer"),
) -> Actor:
    if not x_user_id:
        raise HTTPException(401, "Sign in to continue.")
    return Actor(user_id=x_user_id, display_name=x_user_name, role=x_user_role.lower())


# ── Request Models ───────────────────────────────

class ListProductRequest(BaseModel):
    name: str = Field(min_length=3)
    description: str = Field(min_length=10)
    category: str | None = None
    unit: str | None = None
    starting_price: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    image_url: HttpUrl
    auction_end_time: datetime | None = None


class PlaceBidRequest(BaseModel):
    bid_amount: Decimal = Field(gt=0, max_digits=12, decimal_places=2)


# ── Command Endpoints (Write 側) ─────────────────

@app.post("/commands/products")
async def cmd_list_product(
    req: ListProductRequest,
    actor: Actor = Depends(get_actor),
    session_factory: sessionmaker = Depends(get_session_factory),
    redis: aioredis.Redis = Depends(get_redis),
):
    """出品コマンド(農家のみ)"""
    async with session_factory() as session:
        agg = await commands.list_product(
            session, redis,
            actor.user_id, actor.role, actor.display_name,
            req.name, req.description, req.starting_price, str(req.image_url),
            category=req.category, unit=req.unit,
            auction_end_time=req.auction_end_time,
        )
        return {"product_id": str(agg.id), "version": agg.version}


@app.post("/commands/products/{product_id}/bids")
async def cmd_place_bid(
    product_id: UUID,
    req: PlaceBidRequest,
    actor: Actor = Depends(get_actor),
    settings: Settings = Depends(get_settings),
    session_factory: sessionmaker = Depends(get_session_factory),
    redis: aioredis.Redis = Depends(get_redis),
):
    """入札コマンド"""
    placed = await commands.place_bid(
        session_factory, redis,
        product_id, actor.user_id, actor.display_name, req.bid_amount,
        max_attempts=settings.bid_max_attempts,
    )
    return {
        "bid_id": str(placed.bid_id),
        "product_id": str(placed.product_id),
        "bid_amount": f"{placed.bid_amount:.2f}",
        "current_highest_bid": f"{placed.current_highest_bid:.2f}",
        "bid_count": placed.bid_count,
        "sequence": placed.sequence,
        "bid_time": placed.bid_time.isoformat(),
    }


# ── Query Endpoints (Read 側) ────────────────────

@app.get("/queries/products")
async def query_list_products(
    q: str | None = None,
    session_factory: sessionmaker = Depends(get_session_factory),
):
    """商品一覧(新しい順)"""
    async with session_factory() as session:
        return await queries.list_products(session, q)


@app.get("/queries/products/{product_id}")
async def query_get_product(
    product_id: UUID,
    session_factory: sessionmaker = Depends(get_session_factory),
):
    async with session_factory() as session:
        product = await queries.get_product(session, product_id)
        if not product:
            raise ProductNotFound(product_id)
        return product


@app.get("/queries/products/{product_id}/aggregate")
async def query_get_aggregate(
    product_id: UUID,
    session_factory: sessionmaker = Depends(get_session_factory),
):
    async with session_factory() as session:
        return await queries.get_aggregate(session, product_id)


@app.get("/queries/products/{product_id}/bids")
async def query_list_bids(
    product_id: UUID,
    session_factory: sessionmaker = Depends(get_session_factory),
):
    """入札履歴(新しい順)"""
    async with session_factory() as session:
        if not await queries.get_product(session, product_id):
            raise ProductNotFound(product_id)
        return await queries.list_bids(session, product_id)


# ── Live Feed ────────────────────────────────────

async def _forward_bids(websocket: WebSocket, events) -> None:
    try:
        async for data in events:
            await websocket.send_json(data)
    except WebSocketDisconnect:
        logger.info("Bid feed send failed: client already gone")


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


@app.websocket("/ws/products/{product_id}/bids")
async def ws_bid_feed(websocket: WebSocket, product_id: UUID):
    """
    ライブ入札フィード

    クライアントの切断は送信時ではなく受信側で検知する。
    入札が来ない商品でも、切断したら Redis の購読をすぐに解除する。
    """
    await websocket.accept()
    async with aclosing(feed.bid_events(websocket.app.state.redis, product_id)) as events:
        forward = asyncio.create_task(_forward_bids(websocket, events))
        listen = asyncio.create_task(_wait_for_disconnect(websocket))
        done, pending = await asyncio.wait({forward, listen}, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        for task in done:
            task.result()
    logger.info("Bid feed client left product %s", product_id)


# ── Event Store (デバッグ用) ─────────────────────

@app.get("/events")
async def get_all_events(session_factory: sessionmaker = Depends(get_session_factory)):
    async with session_factory() as session:
        return await event_store.load_all_events(session)


@app.get("/events/{aggregate_id}")
async def get_aggregate_events(
    aggregate_id: UUID,
    session_factory: sessionmaker = Depends(get_session_factory),
):
    async with session_factory() as session:
        return await event_store.load_events(session, aggregate_id)


@app.get("/health")
async def health():
    return {"status": "ok", "service": "marketplace-service"}
