"""
Core API backend for SalesDesk.

It exposes the following endpoints:
- **GET /health**  - liveness check.
- **POST /chat**   - chat with the sales assistant:
  {"messages": [{"role": "user", "content": "..."}], "system": "...", "model": "..."}
  The answer is streamed back as plain text.
"""

import logging
from contextlib import asynccontextmanager
from typing import (
    AsyncIterator,
    Callable,
    Optional,
)

import openai
from fastapi import (
    Depends,
    FastAPI,
    Request,
)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import (
    PlainTextResponse,
    Response,
    StreamingResponse,
)

from salesdesk.agent.agent_loop import ChatOrchestrator
from salesdesk.agent.context import assemble_system_prompt
from salesdesk.agent.planner_interface import (
    BasePlanner,
    create_openai_client,
    load_planner,
)
from salesdesk.agent.streaming import stream_answer
from salesdesk.api.models import ChatRequest
from salesdesk.common import (
    AnsiColors,
    colored_print,
)
from salesdesk.config import settings
from salesdesk.data.postgrest import (
    DataStore,
    SupabaseStore,
)

logger = logging.getLogger(__name__)

MISSING_KEY_MESSAGE = "Missing OPENAI_API_KEY environment variable"
INVALID_REQUEST_MESSAGE = "Invalid chat request"
CHAT_ERROR_MESSAGE = "Error processing the chat"

PlannerFactory = Callable[[Optional[str]], BasePlanner]


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create the shared store and model clients on startup and close them on shutdown."""
    store = SupabaseStore.from_settings()
    if not store.configured:
        logger.warning("Supabase is not configured; chat tools will report read failures.")
    app.state.store = store
    app.state.openai_client = create_openai_client() if settings.OPENAI_API_KEY else None
    yield
    await store.aclose()
    if app.state.openai_client is not None:
        await app.state.openai_client.close()


app = FastAPI(
    title="SalesDesk API",
    version="0.1.0",
    description="Sales ERP chat assistant API",
    lifespan=lifespan,
)

# Add CORS middleware to allow requests from the admin frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------
def get_store(request: Request) -> DataStore:
    """Return the process-wide store client."""
    store = getattr(request.app.state, "store", None)
    if store is None:
        store = request.app.state.store = SupabaseStore.from_settings()
    return store


def get_openai_client(request: Request) -> Optional[openai.AsyncOpenAI]:
    """Return the process-wide model client, or *None* while no API key is configured."""
    client = getattr(request.app.state, "openai_client", None)
    if client is None and settings.OPENAI_API_KEY:
        client = request.app.state.openai_client = create_openai_client()
    return client


def get_planner_factory(request: Request) -> PlannerFactory:
    """Return the callable that builds a planner for a given model name."""
    client = get_openai_client(request)
    options = {} if client is None else {"client": client}

    def factory(model: Optional[str]) -> BasePlanner:
        return load_planner(model=model, **options)

    return factory


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
@app.get("/health", summary="Health check")
async def health() -> dict[str, str]:
    """Return a simple liveness payload."""
    return {"status": "ok"}


@app.get("/", summary="API root")
async def root() -> dict[str, str]:
    """Return a simple welcome message."""
    return {"message": "Welcome to the SalesDesk API! Use /docs for API documentation."}


@app.post("/chat", summary="Chat with the sales assistant")
async def chat_endpoint(
    request: Request,
    store: DataStore = Depends(get_store),
    planner_factory: PlannerFactory = Depends(get_planner_factory),
) -> Response:
    """Validate the request, run the tool loop and stream the final answer."""
    if not settings.OPENAI_API_KEY:
        logger.error("Chat request refused: OPENAI_API_KEY is not set")
        return PlainTextResponse(MISSING_KEY_MESSAGE, status_code=500)

    try:
        chat_request = ChatRequest.model_validate(await request.json())
    except ValueError as exc:  # bad JSON or pydantic.ValidationError
        logger.info("Rejected chat request: %s", exc)
        return PlainTextResponse(INVALID_REQUEST_MESSAGE, status_code=400)

    try:
        system_prompt = await assemble_system_prompt(store, chat_request.system)
        logger.debug("System prompt:\n%s", system_prompt)
        orchestrator = ChatOrchestrator(planner_factory(chat_request.model), store)
        outcome = await orchestrator.run(system_prompt, chat_request.conversation())
    except Exception:  # pylint: disable=broad-except
        logger.exception("Chat API error")
        return PlainTextResponse(CHAT_ERROR_MESSAGE, status_code=500)

    logger.debug("Chat loop streaming from state %s", outcome.state.value)
    return StreamingResponse(
        stream_answer(outcome.chunks, settings.BUDGET_FALLBACK_MESSAGE),
        media_type="text/plain; charset=utf-8",
    )


# ---------------------------------------------------------------------------
# Public helper to launch the API (imported by main.py)
# ---------------------------------------------------------------------------
def run_api(
    host: str = "0.0.0.0", port: int = 8000, reload: bool = False, log_level: str | None = None
) -> None:
    """Start a uvicorn server hosting *app*.

    Parameters
    ----------
    host, port:
        Bind address for the HTTP server.
    reload:
        If *True*, enable auto-reload (useful in development).
    log_level:
        Logging level to use (default from settings if not provided).
    """

    # Lazy import - keeps uvicorn an optional dependency at pkg-import time
    import uvicorn  # pylint: disable=import-outside-toplevel

    if log_level is None:  # Use the default from settings if not provided
        log_level = settings.LOG_LEVEL

    logger.info(
        "Starting SalesDesk API at %s:%d (reload=%s, log_level=%s)", host, port, reload, log_level
    )
    colored_print(f"SalesDesk API is running at http://localhost:{port}.", AnsiColors.GREEN)
    colored_print(f"Visit http://localhost:{port}/docs for API documentation.", AnsiColors.BLUE)
    uvicorn.run(
        "salesdesk.api.app:app",
        host=host,
        port=port,
        reload=reload,
        log_level=log_level,
    )


# ---------------------------------------------------------------------------
# `python -m salesdesk.api.app` helper
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    run_api(reload=True)
