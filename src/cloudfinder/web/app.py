"""FastAPI application exposing search and discovery."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncIterator, Optional

from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ValidationError

from cloudfinder.config import AppConfig
from cloudfinder.errors import StoreError
from cloudfinder.index.pipeline import Pipeline
from cloudfinder.index.storage import Direction, Index, SQLiteDocumentStore
from cloudfinder.remote.delegate import HttpDelegate
from cloudfinder.search.engine import Engine
from cloudfinder.search.scorer import Scorer
from cloudfinder.search.session import SearchChannel

LOGGER = logging.getLogger(__name__)

MAX_LIMIT = 50


class SearchPayload(BaseModel):
    query: str
    limit: int = 10
    delegate: bool = False


@dataclass(slots=True)
class AppState:
    store: SQLiteDocumentStore
    pipeline: Pipeline
    engine: Engine
    delegate: Optional[HttpDelegate] = None

    async def close(self) -> None:
        if self.delegate is not None:
            await self.delegate.aclose()
        self.pipeline.index.close()
        self.store.close()


def _resolve_db_path(db: Path | None) -> Path:
    config = AppConfig(db_path=db if db is not None else AppConfig().db_path)
    return config.resolve_db_path(Path.cwd())


def _ensure_db_parent(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)


def _clamp_limit(limit: int) -> int:
    return max(1, min(limit, MAX_LIMIT))


async def build_state(config: AppConfig) -> AppState:
    resolved_db = _resolve_db_path(config.db_path)
    _ensure_db_parent(resolved_db)
    store = SQLiteDocumentStore(resolved_db)
    pipeline = Pipeline(
        store, title_count=config.title_count, fulltext_count=config.fulltext_count
    )
    await pipeline.reload_index()
    delegate = (
        HttpDelegate(config.delegate_url, timeout=config.delegate_timeout)
        if config.delegate_url
        else None
    )
    engine = Engine(
        store, pipeline.index, delegate, Scorer(), delegate_delay=config.delegate_delay
    )
    return AppState(store=store, pipeline=pipeline, engine=engine, delegate=delegate)


def create_app(config: AppConfig | None = None) -> FastAPI:
    config = config or AppConfig()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")
        app.state.cloudfinder = await build_state(config)
        try:
            yield
        finally:
            await app.state.cloudfinder.close()

    app = FastAPI(title="CloudFinder", version="0.1.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def _state(request: Request) -> AppState:
        return request.app.state.cloudfinder

    @app.post("/search")
    async def search_documents(payload: SearchPayload, request: Request) -> dict[str, Any]:
        query = payload.query.strip()
        if not query:
            raise HTTPException(status_code=400, detail="Empty query")

        engine = _state(request).engine
        try:
            responses = await engine.search(query, _clamp_limit(payload.limit), payload.delegate)
        except StoreError as exc:
            LOGGER.error("Search for [%s] failed: %s", query, exc)
            raise HTTPException(status_code=500, detail=str(exc))
        return {"responses": jsonable_encoder(responses)}

    @app.get("/discovery")
    async def discovery(request: Request) -> dict[str, Any]:
        try:
            response = await _state(request).engine.query_discovery()
        except StoreError as exc:
            LOGGER.error("Discovery failed: %s", exc)
            raise HTTPException(status_code=500, detail=str(exc))
        return jsonable_encoder(response)

    @app.get("/documents")
    async def list_documents(
        request: Request,
        limit: int = 100,
        index: Optional[Index] = Index.MODIFIED,
        direction: Direction = Direction.DESC,
    ) -> dict[str, Any]:
        """List stored documents, most recently modified first by default."""
        store = _state(request).store
        documents = await store.list_documents(limit, index, direction)
        return {
            "documents": jsonable_encoder(documents),
            "stats": {"document_count": await store.count_documents()},
        }

    @app.post("/reindex")
    async def reindex(request: Request) -> dict[str, Any]:
        indexed = await _state(request).pipeline.reload_index()
        return {"status": "ok", "indexed": indexed}

    @app.websocket("/ws/search")
    async def search_socket(websocket: WebSocket) -> None:
        """Typeahead search: each incoming message supersedes the previous query."""
        await websocket.accept()
        channel = SearchChannel(websocket.app.state.cloudfinder.engine)

        async def forward() -> None:
            while True:
                try:
                    response = await channel.receive()
                except Exception as exc:
                    LOGGER.error("Search failed: %s", exc)
                    await websocket.send_json({"error": str(exc)})
                    continue
                await websocket.send_json(jsonable_encoder(response))

        sender = asyncio.create_task(forward())
        try:
            while True:
                message = await websocket.receive_json()
                try:
                    payload = SearchPayload.model_validate(message)
                except ValidationError as exc:
                    await websocket.send_json({"error": str(exc)})
                    continue
                channel.submit(payload.query.strip(), _clamp_limit(payload.limit), payload.delegate)
        except WebSocketDisconnect:
            LOGGER.debug("Search socket closed")
        finally:
            channel.cancel()
            sender.cancel()

    return app


app = create_app()
