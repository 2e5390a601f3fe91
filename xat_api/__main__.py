import time
import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.middleware.cors import CORSMiddleware

from xat_api.db import Database
from xat_api.db.crud_helper import ConversationStore
from xat_api.routes.chat.route import router as chat_router
from xat_api.settings import Config, config as default_config
from xat_api.utils.conversations import ConversationManager
from xat_api.utils.inference import InferenceClient
from xat_api.utils.relay import ResponseRelay

# Configure logging
logging.basicConfig(level=default_config.log_level)
logger = logging.getLogger(__name__)


def initialize_app(
    config: Config | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Build the application with its components wired from ``config``.

    ``transport`` replaces the HTTP transport used to reach the inference
    server, which lets tests answer upstream calls in-process.
    """
    config = config or default_config
    database = Database(config.db_url)
    store = ConversationStore(database)
    inference = InferenceClient(config, transport=transport)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await database.create_all()
        logger.info(f"Database ready, inference server at {config.ollama_url}")
        yield
        await database.dispose()

    app = FastAPI(
        title="Xat API",
        description="Conversation relay between HTTP clients and a local Ollama inference server",
        version="1.0.0",
        docs_url="/api/chat/docs",
        redoc_url="/api/chat/redoc",
        openapi_url="/api/chat/openapi.json",
        lifespan=lifespan,
    )

    app.state.config = config
    app.state.store = store
    app.state.inference = inference
    app.state.conversations = ConversationManager(store)
    app.state.relay = ResponseRelay(inference, store)

    app.include_router(chat_router, prefix="/api/chat", tags=["chat"])

    @app.get("/")
    async def root():
        return {"message": "Xat API is running"}

    @app.get("/health")
    async def health_check():
        return {"status": "healthy"}

    return app


def add_middlewares(app: FastAPI):
    app.add_middleware(GZipMiddleware, minimum_size=1000)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Replace with specific domains in production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def add_process_time_header(request: Request, call_next):
        start_time = time.time()
        response = await call_next(request)
        process_time = time.time() - start_time
        response.headers["X-Process-Time"] = str(process_time)
        return response


def create_app(
    config: Config | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    app = initialize_app(config, transport)
    add_middlewares(app)
    return app


app = create_app()


if __name__ == "__main__":
    logger.info("Starting Xat API server...")
    import uvicorn

    uvicorn.run(
        "xat_api.__main__:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info",
    )
