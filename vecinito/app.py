from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional, Set

from dotenv import load_dotenv
from fastapi import FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, Response
from fastapi.staticfiles import StaticFiles

from .chat_coordinator import ChatCoordinator, ChatReply
from .coalescing_buffer import CoalescingBuffer
from .config import REPO_DIR, Settings, load_settings
from .errors import ChatError, InvalidSize
from .image_index import PRODUCT_CATEGORY, ImageIndex, parse_size
from .inference_client import InferenceClient, build_inference_client
from .models import ChatRequest, ChatResponse, ErrorResponse, ImagesResponse, RandomImagesResponse
from .session_store import SessionStore

ENV_PATH = REPO_DIR / ".env"
if ENV_PATH.exists():
    load_dotenv(ENV_PATH, override=True)

log_level_name = os.getenv("LOG_LEVEL", "INFO").upper()
log_level = getattr(logging, log_level_name, logging.INFO)
if not logging.getLogger().handlers:
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

logging.getLogger("vecinito").setLevel(log_level)
logger = logging.getLogger("vecinito.app")


def to_chat_response(reply: ChatReply, buffered: bool) -> ChatResponse:
    """Purpose: Serialize a ChatReply into the HTTP response shape.
    Inputs/Outputs: Inputs are the reply and whether it went through the buffer;
        output is a ChatResponse.
    Side Effects / State: None.
    Dependencies: ChatResponse model.
    Failure Modes: None.
    If Removed: The chat endpoint cannot report seen/typing flags.
    Testing Notes: Superseded replies carry visto=True and escribiendo=True.
    """
    # Buffered replies carry read-receipt flags; direct replies do not.
    return ChatResponse(
        response=reply.reply_text,
        images=reply.images,
        imagenes=reply.imagenes,
        visto=True if buffered else None,
        escribiendo=reply.superseded if buffered else None,
    )


def create_app(settings: Optional[Settings] = None, client: Optional[InferenceClient] = None) -> FastAPI:
    """Purpose: Build the FastAPI application and its collaborators.
    Inputs/Outputs: Optional Settings and InferenceClient (tests inject fakes); returns
        the configured FastAPI app.
    Side Effects / State: Creates the session store, image index, coordinator, and
        coalescing buffer, and exposes them on app.state.
    Dependencies: FastAPI, StaticFiles, CORSMiddleware, load_settings.
    Failure Modes: Unknown INFERENCE_PROVIDER raises ValueError.
    If Removed: The server has no routes.
    Testing Notes: Use TestClient as a context manager so one event loop serves all
        requests.
    """
    # Settings and collaborators are resolved once per app instance.
    settings = settings or load_settings()
    client = client or build_inference_client(settings)
    sessions = SessionStore(max_sessions=settings.max_sessions)
    images = ImageIndex(settings.images_dir, settings.images_url_prefix)
    coordinator = ChatCoordinator(
        sessions=sessions,
        images=images,
        client=client,
        prompts_dir=settings.prompts_dir,
        default_agent=settings.default_agent,
        product_reply_delay=settings.product_reply_delay,
    )
    buffer = (
        CoalescingBuffer(coordinator, settings.coalesce_window, settings.random_image_count)
        if settings.coalesce_window > 0
        else None
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "provider=%s images=%s coalesce_window=%s port=%s",
            settings.provider,
            settings.images_dir,
            settings.coalesce_window,
            settings.port,
        )
        try:
            yield
        finally:
            if buffer is not None:
                await buffer.aclose()
            await client.aclose()

    app = FastAPI(title="El Vecinito Chat", lifespan=lifespan)
    app.state.settings = settings
    app.state.sessions = sessions
    app.state.images = images
    app.state.coordinator = coordinator
    app.state.buffer = buffer
    # No-repeat cycle for /api/imagenes, kept apart from chat sessions.
    api_shown_images: Set[str] = set()
    app.state.api_shown_images = api_shown_images

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    @app.exception_handler(ChatError)
    async def chat_error_handler(request: Request, exc: ChatError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("path=%s error=%s: %s", request.url.path, type(exc).__name__, exc.message)
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": "Solicitud inválida"})

    @app.get("/", include_in_schema=False)
    def serve_index() -> Response:
        """Purpose: Serve the landing page.
        Inputs/Outputs: No inputs; returns a FileResponse for index.html.
        Side Effects / State: None.
        Dependencies: Uses settings.public_dir.
        Failure Modes: Missing index.html yields a 404 JSON error.
        If Removed: The chat widget cannot load from the root path.
        Testing Notes: Request "/" and verify HTML is returned.
        """
        index_path = Path(settings.public_dir) / "index.html"
        if not index_path.is_file():
            return JSONResponse(status_code=404, content={"error": "index.html no encontrado"})
        return FileResponse(index_path)

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok"}

    @app.get("/imagenes", response_model=ImagesResponse)
    def list_all_images() -> ImagesResponse:
        return ImagesResponse(images=images.list_images(PRODUCT_CATEGORY))

    @app.get("/imagenes/{size}", response_model=ImagesResponse, responses={400: {"model": ErrorResponse}})
    def list_images_by_size(size: str) -> ImagesResponse:
        """Purpose: List product images for one size keyword.
        Inputs/Outputs: Input is the size path segment; output is the image list.
        Side Effects / State: Reads the size folder.
        Dependencies: parse_size and ImageIndex.list_images.
        Failure Modes: Unknown sizes raise InvalidSize (400) before any filesystem access.
        If Removed: The frontend cannot filter the catalog by size.
        Testing Notes: "pequeno", "small" and "pequeño" all list the same folder.
        """
        # Validate against the fixed keyword table before touching the disk.
        resolved = parse_size(size)
        if resolved is None:
            raise InvalidSize()
        return ImagesResponse(images=images.list_images(PRODUCT_CATEGORY, resolved))

    @app.get("/api/imagenes", response_model=RandomImagesResponse)
    def random_images(count: Optional[int] = Query(default=None, ge=1)) -> RandomImagesResponse:
        picked = images.pick_random_images(
            api_shown_images, PRODUCT_CATEGORY, count or settings.random_image_count
        )
        return RandomImagesResponse(imagenes=picked)

    @app.post(
        "/chat",
        response_model=ChatResponse,
        response_model_exclude_none=True,
        responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
    )
    async def chat(request: ChatRequest) -> ChatResponse:
        """Purpose: Handle a chat message, buffered or direct.
        Inputs/Outputs: Input is ChatRequest; output is ChatResponse.
        Side Effects / State: Updates the user's session; may wait for the quiet period.
        Dependencies: CoalescingBuffer.submit or ChatCoordinator.handle_message.
        Failure Modes: ChatError subclasses are rendered by chat_error_handler.
        If Removed: Core chat functionality is unavailable.
        Testing Notes: Missing userId returns 400 and creates no session.
        """
        # Route through the buffer when coalescing is enabled.
        if buffer is not None:
            reply = await buffer.submit(request.userId, request.prompt, request.agent)
            return to_chat_response(reply, buffered=True)
        reply = await coordinator.handle_message(request.userId, request.prompt, request.agent)
        return to_chat_response(reply, buffered=False)

    # Mounted last so the API routes above take precedence over static files.
    app.mount(
        settings.images_url_prefix,
        StaticFiles(directory=settings.images_dir, check_dir=False),
        name="imagenes",
    )
    return app


app = create_app()
