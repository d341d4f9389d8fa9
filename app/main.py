"""Entry point for the Master Order FastAPI service."""

from __future__ import annotations

import json
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any, TypeVar

import httpx
from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ValidationError

from .config import settings
from .database import Database
from .errors import (
    AllWatchedError,
    ConflictError,
    MasterOrderError,
    NoEligibleContentError,
    NotFoundError,
)
from .models import (
    BookProgressRequest,
    CompleteSessionRequest,
    SessionSubject,
    SettingsUpdate,
)
from .services.metadata_cache import MetadataCache
from .services.up_next import UpNextService

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app: FastAPI

ModelT = TypeVar("ModelT", bound=BaseModel)


@asynccontextmanager
async def lifespan(_: FastAPI):
    exit_stack = AsyncExitStack()
    metadata_http_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(timeout=httpx.Timeout(15.0, connect=5.0))
    )
    database = Database(settings.database_url)
    await database.create_all()

    metadata = MetadataCache(
        metadata_http_client,
        addon_base_url=(
            str(settings.metadata_addon_url)
            if settings.metadata_addon_url is not None
            else None
        ),
        comicvine_api_key=settings.comicvine_api_key,
        comicvine_base_url=str(settings.comicvine_api_url),
        ttl_seconds=settings.metadata_cache_seconds,
    )
    service = UpNextService(
        database.session_factory,
        metadata,
        enrichment_timeout=settings.enrichment_timeout_seconds,
    )

    app.state.up_next_service = service
    app.state.database = database

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Weighted picks of what to watch or read next",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def get_up_next_service(app: FastAPI) -> UpNextService:
    service = getattr(app.state, "up_next_service", None)
    if not isinstance(service, UpNextService):
        raise RuntimeError("Up next service not initialised")
    return service


def _http_error(exc: MasterOrderError) -> HTTPException:
    if isinstance(exc, (NotFoundError, NoEligibleContentError)):
        status = 404
    elif isinstance(exc, (ConflictError, AllWatchedError)):
        status = 409
    else:
        status = 500
    return HTTPException(status_code=status, detail=str(exc))


async def _parse_body(
    request: Request, model: type[ModelT], *, allow_empty: bool = False
) -> ModelT:
    raw = await request.body()
    if not raw.strip():
        if allow_empty:
            return model()
        raise HTTPException(status_code=400, detail="Request body is required")
    try:
        payload = json.loads(raw)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid JSON payload") from exc
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid payload")
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise HTTPException(
            status_code=400, detail=exc.errors(include_url=False, include_context=False)
        ) from exc


def _dump(model: BaseModel) -> dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True)


def register_routes(fastapi_app: FastAPI) -> None:
    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.get("/api/up_next")
    async def up_next() -> dict[str, Any]:
        service = get_up_next_service(fastapi_app)
        try:
            item = await service.up_next()
        except NoEligibleContentError as exc:
            raise HTTPException(status_code=404, detail="Nothing to watch") from exc
        except MasterOrderError as exc:
            raise _http_error(exc) from exc
        return _dump(item)

    @fastapi_app.get("/api/series/{series_id}/next-episode")
    async def series_next_episode(series_id: str) -> dict[str, Any]:
        service = get_up_next_service(fastapi_app)
        try:
            episode = await service.next_episode(series_id)
        except MasterOrderError as exc:
            raise _http_error(exc) from exc
        return _dump(episode)

    @fastapi_app.get("/api/custom-orders/next")
    async def custom_order_next() -> dict[str, Any]:
        service = get_up_next_service(fastapi_app)
        try:
            item = await service.next_custom_order_item()
        except MasterOrderError as exc:
            raise _http_error(exc) from exc
        return _dump(item)

    @fastapi_app.post("/api/custom-orders/items/{item_id}/watched")
    async def custom_order_item_watched(item_id: int) -> dict[str, Any]:
        service = get_up_next_service(fastapi_app)
        try:
            item = await service.mark_item_watched(item_id)
        except MasterOrderError as exc:
            raise _http_error(exc) from exc
        return _dump(item)

    @fastapi_app.post("/api/custom-orders/items/{item_id}/progress")
    async def custom_order_item_progress(item_id: int, request: Request) -> dict[str, Any]:
        service = get_up_next_service(fastapi_app)
        body = await _parse_body(request, BookProgressRequest)
        try:
            item = await service.record_book_progress(item_id, body.current_page)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except MasterOrderError as exc:
            raise _http_error(exc) from exc
        return _dump(item)

    @fastapi_app.get("/api/settings")
    async def read_settings() -> dict[str, Any]:
        service = get_up_next_service(fastapi_app)
        return _dump(await service.get_settings())

    @fastapi_app.post("/api/settings")
    async def write_settings(request: Request) -> dict[str, Any]:
        service = get_up_next_service(fastapi_app)
        update = await _parse_body(request, SettingsUpdate)
        return _dump(await service.update_settings(update))

    @fastapi_app.get("/api/sessions")
    async def recent_sessions(limit: int = 20) -> list[dict[str, Any]]:
        if limit < 1 or limit > 200:
            raise HTTPException(status_code=400, detail="limit must be between 1 and 200")
        service = get_up_next_service(fastapi_app)
        return [_dump(view) for view in await service.list_recent_sessions(limit)]

    @fastapi_app.post("/api/sessions", status_code=201)
    async def start_session(request: Request) -> dict[str, Any]:
        service = get_up_next_service(fastapi_app)
        subject = await _parse_body(request, SessionSubject)
        try:
            view = await service.start_session(subject)
        except MasterOrderError as exc:
            raise _http_error(exc) from exc
        return _dump(view)

    @fastapi_app.get("/api/sessions/{session_id}")
    async def read_session(session_id: int) -> dict[str, Any]:
        service = get_up_next_service(fastapi_app)
        try:
            view = await service.get_session(session_id)
        except MasterOrderError as exc:
            raise _http_error(exc) from exc
        return _dump(view)

    @fastapi_app.post("/api/sessions/{session_id}/pause")
    async def pause_session(session_id: int) -> dict[str, Any]:
        service = get_up_next_service(fastapi_app)
        try:
            view = await service.pause_session(session_id)
        except MasterOrderError as exc:
            raise _http_error(exc) from exc
        return _dump(view)

    @fastapi_app.post("/api/sessions/{session_id}/resume")
    async def resume_session(session_id: int) -> dict[str, Any]:
        service = get_up_next_service(fastapi_app)
        try:
            view = await service.resume_session(session_id)
        except MasterOrderError as exc:
            raise _http_error(exc) from exc
        return _dump(view)

    @fastapi_app.post("/api/sessions/{session_id}/complete")
    async def complete_session(session_id: int, request: Request) -> dict[str, Any]:
        service = get_up_next_service(fastapi_app)
        body = await _parse_body(request, CompleteSessionRequest, allow_empty=True)
        try:
            view = await service.complete_session(session_id, body.final_watch_time)
        except MasterOrderError as exc:
            raise _http_error(exc) from exc
        return _dump(view)

    @fastapi_app.delete("/api/sessions/{session_id}", status_code=204)
    async def delete_session(session_id: int) -> Response:
        service = get_up_next_service(fastapi_app)
        try:
            await service.delete_session(session_id)
        except MasterOrderError as exc:
            raise _http_error(exc) from exc
        return Response(status_code=204)


app = create_app()


if __name__ == "__main__":  # pragma: no cover - manual execution
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )
