"""HTTP API for convmem.

Routes:
    GET  /ping                       - liveness, no dependencies touched
    GET  /health                     - service status
    POST /api/conversation/search    - run a search, returns the SearchResult shape
    POST /api/conversation/classify  - classify a query without searching
"""

from __future__ import annotations

import contextlib
import logging
from typing import Any

from pydantic import ValidationError
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from convmem.config import ConvMemConfig
from convmem.models import SearchOptions, parse_time_window
from convmem.retrieval import ConversationSearchEngine

logger = logging.getLogger(__name__)


def parse_search_options(body: dict[str, Any]) -> SearchOptions:
    """Build SearchOptions from a JSON body.

    Raises:
        ValueError: On invalid values (pydantic ValidationError is a ValueError)
    """
    time_window = body.get("time_window")
    if time_window is not None and not isinstance(time_window, str):
        raise ValueError("time_window must be a string like '7d'")
    return SearchOptions(
        limit=body.get("limit"),
        min_similarity=body.get("min_similarity"),
        time_window=parse_time_window(time_window) if time_window else None,
        session_id=body.get("session_id"),
        use_two_tier=body.get("use_two_tier", True),
    )


async def _json_body(request: Request) -> dict[str, Any] | None:
    try:
        body = await request.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


def _query(body: dict[str, Any]) -> str:
    """Stripped query text; empty when missing or not a string."""
    query = body.get("query")
    return query.strip() if isinstance(query, str) else ""


async def ping(request: Request):
    """Liveness check with no database or service calls."""
    return JSONResponse({"status": "ok"})


async def health_check(request: Request):
    engine: ConversationSearchEngine = request.app.state.engine
    return JSONResponse({
        "status": "healthy",
        "service": "convmem",
        "classifier": "llm" if engine.classifier.backend is not None else "patterns",
    })


async def api_conversation_search(request: Request):
    """Search conversation history.

    POST /api/conversation/search
    Body: {
        "query": "...",
        "session_id": "..."      (optional),
        "limit": 3               (optional),
        "min_similarity": 0.25   (optional),
        "time_window": "7d"      (optional, legacy corpus only),
        "use_two_tier": true     (optional)
    }
    """
    body = await _json_body(request)
    if body is None:
        return JSONResponse({"error": "JSON object body required"}, status_code=400)

    query = _query(body)
    if not query:
        return JSONResponse({"error": "query is required"}, status_code=400)

    try:
        options = parse_search_options(body)
    except (ValidationError, ValueError) as e:
        return JSONResponse({"error": str(e)}, status_code=400)

    engine: ConversationSearchEngine = request.app.state.engine
    result = await engine.search_async(query, options)
    status_code = 200 if result.success else 503
    return JSONResponse(result.model_dump(mode="json"), status_code=status_code)


async def api_conversation_classify(request: Request):
    """Classify a query.

    POST /api/conversation/classify
    Body: {"query": "...", "session_id": "..." (optional)}
    """
    body = await _json_body(request)
    if body is None:
        return JSONResponse({"error": "JSON object body required"}, status_code=400)

    query = _query(body)
    if not query:
        return JSONResponse({"error": "query is required"}, status_code=400)

    session_id = body.get("session_id")
    if session_id is not None and not isinstance(session_id, str):
        return JSONResponse({"error": "session_id must be a string"}, status_code=400)

    engine: ConversationSearchEngine = request.app.state.engine
    classification = await engine.classify(query, session_id=session_id)
    return JSONResponse(classification.model_dump(mode="json"))


routes = [
    Route("/ping", ping, methods=["GET"]),
    Route("/health", health_check, methods=["GET"]),
    Route("/api/conversation/search", api_conversation_search, methods=["POST"]),
    Route("/api/conversation/classify", api_conversation_classify, methods=["POST"]),
]


def create_app(engine: ConversationSearchEngine) -> Starlette:
    """Create the Starlette app around an engine. The engine is closed on shutdown."""

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette):
        yield
        await engine.close()

    app = Starlette(routes=routes, lifespan=lifespan)
    app.state.engine = engine
    return app


def run_server(host: str | None = None, port: int | None = None, config: ConvMemConfig | None = None) -> None:
    """Run the HTTP server.

    Requires CONVMEM_DATABASE_URL and OPENROUTER_API_KEY.
    """
    import uvicorn

    config = config or ConvMemConfig()
    engine = ConversationSearchEngine.from_config(config)
    host = host or config.server_host
    port = port or config.server_port

    logger.info(f"Starting convmem HTTP server on {host}:{port}")
    uvicorn.run(create_app(engine), host=host, port=port)
