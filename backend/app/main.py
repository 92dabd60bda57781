from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Annotated, AsyncIterator

from fastapi import Depends, FastAPI, HTTPException, Path, Query, Request
from loguru import logger

from . import schemas
from .core.config import settings
from .domain.models import EventName, Network, Timeframe
from .services.activity_service import ActivityProcessor
from .services.events_store import EventStore
from .services.leaderboard_service import LeaderboardService
from .services.participants_service import get_market_participants
from ingestion.normalize import is_address, normalize_address


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the shared event store on boot and release its RPC clients on shutdown."""

    store = EventStore.from_settings(settings)
    processor = ActivityProcessor(store)
    app.state.event_store = store
    app.state.activity_processor = processor
    app.state.leaderboard_service = LeaderboardService(processor)
    if settings.refresh_on_startup:
        try:
            await store.fetch_all_logs()
        except Exception as exc:
            logger.error("Initial log fetch failed: {}", exc)
    try:
        yield
    finally:
        await store.aclose()


app = FastAPI(title="Prediction Market Events API", version="0.1.0", debug=settings.debug, lifespan=lifespan)


def _event_store(request: Request) -> EventStore:
    return request.app.state.event_store


def _activity_processor(request: Request) -> ActivityProcessor:
    return request.app.state.activity_processor


def _leaderboard_service(request: Request) -> LeaderboardService:
    return request.app.state.leaderboard_service


def _wallet_address(
    address: Annotated[str, Path(description="Wallet address (any case)")],
) -> str:
    """Validate and canonicalize a wallet address path parameter."""

    if not is_address(address):
        raise HTTPException(status_code=400, detail="Invalid wallet address")
    return normalize_address(address)


def _status(store: EventStore) -> schemas.StoreStatus:
    return schemas.StoreStatus(
        loading=store.loading,
        error=store.error,
        last_fetched=store.last_fetched,
        total_logs=len(store.logs),
        fingerprint=store.fingerprint,
        networks=store.networks,
        events_by_network=store.summary(),
    )


@app.get("/healthz", tags=["system"])
def healthcheck() -> dict[str, str]:
    """Basic readiness probe consumed by infrastructure monitors."""

    return {"status": "ok"}


@app.get("/status", response_model=schemas.StoreStatus, tags=["system"])
def store_status(store: EventStore = Depends(_event_store)):
    """Report cache freshness, loading state and the last fetch error."""

    return _status(store)


@app.get("/logs", response_model=schemas.LogList, tags=["logs"])
def list_logs(
    *,
    event: Annotated[EventName | None, Query(description="Event name filter")] = None,
    network: Annotated[Network | None, Query(description="Network filter")] = None,
    user: Annotated[str | None, Query(description="Wallet address appearing in any role")] = None,
    market: Annotated[str | None, Query(description="Market identifier filter")] = None,
    limit: Annotated[int, Query(ge=1, le=1000)] = 100,
    offset: Annotated[int, Query(ge=0)] = 0,
    store: EventStore = Depends(_event_store),
):
    """List cached contract logs, newest first."""

    if user is not None and not is_address(user):
        raise HTTPException(status_code=400, detail="Invalid wallet address")
    logs = store.query(event=event, network=network, user=user, market=market)
    items = [schemas.ContractLog.model_validate(log) for log in logs[offset : offset + limit]]
    return schemas.LogList(total=len(logs), items=items)


@app.post("/logs/refresh", response_model=schemas.StoreStatus, tags=["logs"])
async def refresh_logs(store: EventStore = Depends(_event_store)):
    """Re-scan every network; a refresh already running is not duplicated."""

    try:
        await store.fetch_all_logs()
    except Exception as exc:
        raise HTTPException(status_code=503, detail=store.error or str(exc)) from exc
    return _status(store)


@app.get(
    "/users/{address}/activities",
    response_model=list[schemas.UserActivity],
    tags=["users"],
)
async def user_activities(
    address: str = Depends(_wallet_address),
    processor: ActivityProcessor = Depends(_activity_processor),
):
    activities = await processor.get_user_activities(address)
    return [schemas.UserActivity.model_validate(activity) for activity in activities]


@app.get("/users/{address}/stats", response_model=schemas.UserStats, tags=["users"])
async def user_stats(
    address: str = Depends(_wallet_address),
    service: LeaderboardService = Depends(_leaderboard_service),
):
    """Lifetime statistics for one wallet, including its all-time rank."""

    stats = await service.calculate_user_stats(address)
    if stats is None:
        raise HTTPException(status_code=404, detail="No activity for this address")
    payload = schemas.UserStats.model_validate(stats)
    return payload.model_copy(update={"rank": await service.get_user_rank(address)})


@app.get("/users/{address}/rank", response_model=schemas.UserRank, tags=["users"])
async def user_rank(
    address: str = Depends(_wallet_address),
    service: LeaderboardService = Depends(_leaderboard_service),
):
    return schemas.UserRank(address=address, rank=await service.get_user_rank(address))


@app.get("/leaderboard", response_model=schemas.Leaderboard, tags=["leaderboard"])
async def leaderboard(
    timeframe: Annotated[Timeframe, Query(description="Trailing window")] = Timeframe.ALL,
    service: LeaderboardService = Depends(_leaderboard_service),
):
    """Users ranked by profit and loss over the requested window."""

    entries = await service.generate_leaderboard(timeframe)
    items = [schemas.UserStats.model_validate(entry) for entry in entries]
    return schemas.Leaderboard(timeframe=timeframe, total=len(items), items=items)


@app.get("/leaderboard/top", response_model=schemas.Leaderboard, tags=["leaderboard"])
async def top_users(
    count: Annotated[int, Query(ge=1, le=100)] = 10,
    timeframe: Annotated[Timeframe, Query(description="Trailing window")] = Timeframe.ALL,
    service: LeaderboardService = Depends(_leaderboard_service),
):
    entries = await service.get_top_users(count, timeframe)
    items = [schemas.UserStats.model_validate(entry) for entry in entries]
    return schemas.Leaderboard(timeframe=timeframe, total=len(items), items=items)


@app.get(
    "/markets/{market_id}/participants",
    response_model=list[schemas.MarketParticipant],
    tags=["markets"],
)
def market_participants(
    market_id: str,
    network: Annotated[Network | None, Query(description="Network filter")] = None,
    store: EventStore = Depends(_event_store),
):
    """Per-buyer YES/NO positions in one market, largest first."""

    participants = get_market_participants(store, market_id, network=network)
    return [schemas.MarketParticipant.model_validate(item) for item in participants]
