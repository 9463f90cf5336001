from __future__ import annotations

import asyncio
import json
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx
from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import FileResponse, JSONResponse
from starlette.concurrency import run_in_threadpool

from .assistant import AssistantTurn, UnknownProductError, VoiceAssistant
from .catalog_loader import CatalogLoader
from .catalog_provider import CatalogProvider
from .config import Settings, load_settings
from .fetcher import FetchError, RemoteFetcher
from .models import (
    AddLineRequest,
    CartView,
    ChatRequest,
    ChatResponse,
    CheckoutResponse,
    Product,
    QuantityRequest,
)
from .speech import ListeningSession, advisory_for_error
from .storage import KeyValueStore
from .utils import safe_json_loads

ENV_PATH = Path(os.getenv("VOCALSHOP_ENV_FILE", Path.cwd() / ".env"))
if ENV_PATH.exists():
    load_dotenv(ENV_PATH, override=False)

log_level_name = os.getenv("LOG_LEVEL", "INFO").upper()
log_level = getattr(logging, log_level_name, logging.INFO)
if not logging.getLogger().handlers:
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

logging.getLogger("vocalshop").setLevel(log_level)
logger = logging.getLogger("vocalshop.app")
telemetry_logger = logging.getLogger("vocalshop.telemetry")

CORS_HEADERS = {"Access-Control-Allow-Origin": "*"}

TURN_FAILED_MESSAGE = "Oups, je n'ai pas pu traiter ta demande. Répète-la ou tape-la, s'il te plaît."


def _turn_response(turn: AssistantTurn) -> ChatResponse:
    # Serialize a turn for the widget.
    return ChatResponse(
        session_id=turn.session_id,
        message=turn.message,
        spoken=turn.spoken or turn.message,
        intent=turn.intent,
        parsed=turn.parsed.to_dict() if turn.parsed else None,
        results=turn.results,
        suggestions=turn.suggestions,
        trace=turn.trace,
        cart=turn.cart,
        logs=turn.logs,
    )


def _catalog_payload(products: List[Product]) -> List[Dict[str, Any]]:
    return [product.model_dump(exclude_none=True) for product in products]


def create_app(
    settings: Optional[Settings] = None,
    transport: Optional[httpx.BaseTransport] = None,
) -> FastAPI:
    """Purpose: Build the FastAPI application and its collaborators.
    Inputs/Outputs: Inputs are optional Settings (defaults to load_settings()) and an
        optional httpx transport for the fetch proxy; output is a FastAPI app.
    Side Effects / State: Loads the local catalogs and opens the storage file.
    Dependencies: CatalogLoader, CatalogProvider, RemoteFetcher, KeyValueStore,
        VoiceAssistant.
    Failure Modes: A missing or invalid local catalog raises at startup.
    If Removed: Nothing serves the widget or the API.
    Testing Notes: Build with a tmp storage path and httpx.MockTransport.
    """
    # Resolve configuration and wire the assistant.
    settings = settings or load_settings()
    products, meta = CatalogLoader(settings.catalog_path).load()
    partner_products: List[Product] = []
    if settings.partner_catalog_path.exists():
        partner_products, _partner_meta = CatalogLoader(settings.partner_catalog_path).load()

    fetcher = RemoteFetcher(
        timeout=settings.fetch_timeout,
        max_bytes=settings.fetch_max_bytes,
        transport=transport,
    )
    storage = KeyValueStore(settings.storage_path, max_scopes=settings.max_sessions)
    assistant = VoiceAssistant(
        catalogs=CatalogProvider(products, fetcher=fetcher),
        storage=storage,
        policy=settings.policy,
        welcome_message=settings.welcome_message,
    )
    logger.info("catalog=%s products=%d storage=%s", meta.source, meta.count, settings.storage_path)

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        yield
        fetcher.close()

    app = FastAPI(title="VocalShop Voice Assistant", lifespan=lifespan)
    app.state.settings = settings
    app.state.assistant = assistant
    app.state.fetcher = fetcher

    @app.exception_handler(FetchError)
    async def fetch_error_handler(_request: Request, exc: FetchError) -> JSONResponse:
        return JSONResponse({"error": exc.message}, status_code=exc.status_code)

    @app.exception_handler(UnknownProductError)
    async def unknown_product_handler(_request: Request, exc: UnknownProductError) -> JSONResponse:
        return JSONResponse({"error": str(exc)}, status_code=404)

    @app.get("/health")
    def health() -> dict:
        return {"ok": True, "products": len(products), "catalog_sha256": meta.sha256}

    @app.get("/", include_in_schema=False)
    def serve_index() -> FileResponse:
        """Purpose: Serve the assistant panel page.
        Inputs/Outputs: No inputs; returns a FileResponse for widget.html.
        Side Effects / State: None.
        Dependencies: settings.static_dir.
        Failure Modes: FileResponse raises if the file is missing.
        If Removed: The panel cannot load from the root path.
        Testing Notes: Request "/" and verify HTML is returned.
        """
        return FileResponse(settings.static_dir / "widget.html")

    @app.get("/widget", include_in_schema=False)
    def serve_widget() -> FileResponse:
        # Same page; catalog/theme/welcome are read client-side from the query string.
        return FileResponse(settings.static_dir / "widget.html")

    @app.get("/widget.js", include_in_schema=False)
    def serve_loader() -> FileResponse:
        return FileResponse(
            settings.static_dir / "widget.js",
            media_type="application/javascript",
            headers=CORS_HEADERS,
        )

    @app.get("/api/widget-config")
    def widget_config() -> dict:
        return {
            "welcome": assistant.welcome_message,
            "listen_idle_timeout": settings.listen_idle_timeout,
            "default_catalog_url": settings.default_catalog_url,
        }

    @app.get("/api/catalogue")
    def catalogue() -> JSONResponse:
        return JSONResponse(_catalog_payload(products), headers=CORS_HEADERS)

    @app.get("/api/catalogue-partner")
    def catalogue_partner() -> JSONResponse:
        return JSONResponse(_catalog_payload(partner_products), headers=CORS_HEADERS)

    @app.get("/api/fetch")
    def fetch_proxy(url: Optional[str] = Query(default=None)) -> JSONResponse:
        """Purpose: Forward a caller-supplied URL and relay its JSON body.
        Inputs/Outputs: Input is the url query parameter; output is the upstream JSON.
        Side Effects / State: One outbound request with timeout and size cap.
        Dependencies: RemoteFetcher.fetch_json; FetchError handler maps statuses.
        Failure Modes: 400/413/415/502/504 as JSON {"error": ...}.
        If Removed: The widget cannot load cross-origin catalogs.
        Testing Notes: Missing url -> 400; slow upstream -> 504.
        """
        data = fetcher.fetch_json(url)
        return JSONResponse(data, headers={"Cache-Control": "no-store"})

    @app.post("/api/telemetry")
    async def telemetry(request: Request) -> JSONResponse:
        # Any JSON value is logged, null included; malformed bodies are rejected.
        raw = await request.body()
        try:
            body = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            return JSONResponse({"ok": False}, status_code=400)
        telemetry_logger.info("[telemetry] %s", json.dumps(body, ensure_ascii=False))
        return JSONResponse({"ok": True})

    @app.post("/api/chat", response_model=ChatResponse)
    def chat(request: ChatRequest) -> ChatResponse:
        """Purpose: Handle a typed message and run the assistant pipeline.
        Inputs/Outputs: Input is ChatRequest; output is ChatResponse with results and cart.
        Side Effects / State: Updates the session cart and last parsed intent.
        Dependencies: VoiceAssistant.handle_message.
        Failure Modes: User input never fails; unexpected errors propagate as 500.
        If Removed: Typed queries cannot be answered.
        Testing Notes: Send the blue shirt example and check the strict pass trace.
        """
        turn = assistant.handle_message(request.session_id, request.message, catalog_url=request.catalog_url)
        return _turn_response(turn)

    @app.get("/api/cart/{session_id}", response_model=CartView)
    def get_cart(session_id: str) -> CartView:
        return assistant.cart(session_id).view()

    @app.post("/api/cart/{session_id}/lines", response_model=CartView)
    def add_cart_line(session_id: str, request: AddLineRequest) -> CartView:
        assistant.add_product(
            session_id,
            request.product_id,
            variant_id=request.variant_id,
            quantity=request.quantity,
            catalog_url=request.catalog_url,
        )
        return assistant.cart(session_id).view()

    @app.put("/api/cart/{session_id}/lines/{variant_id}", response_model=CartView)
    def set_cart_quantity(session_id: str, variant_id: str, request: QuantityRequest) -> CartView:
        cart = assistant.cart(session_id)
        if cart.find(variant_id) is None:
            raise HTTPException(status_code=404, detail="Ligne introuvable.")
        cart.set_quantity(variant_id, request.quantity)
        return cart.view()

    @app.post("/api/cart/{session_id}/lines/{variant_id}/increment", response_model=CartView)
    def increment_cart_line(session_id: str, variant_id: str) -> CartView:
        cart = assistant.cart(session_id)
        if cart.increment(variant_id) is None:
            raise HTTPException(status_code=404, detail="Ligne introuvable.")
        return cart.view()

    @app.post("/api/cart/{session_id}/lines/{variant_id}/decrement", response_model=CartView)
    def decrement_cart_line(session_id: str, variant_id: str) -> CartView:
        cart = assistant.cart(session_id)
        if cart.find(variant_id) is None:
            raise HTTPException(status_code=404, detail="Ligne introuvable.")
        cart.decrement(variant_id)
        return cart.view()

    @app.delete("/api/cart/{session_id}/lines/{variant_id}", response_model=CartView)
    def remove_cart_line(session_id: str, variant_id: str) -> CartView:
        cart = assistant.cart(session_id)
        if not cart.remove_line(variant_id):
            raise HTTPException(status_code=404, detail="Ligne introuvable.")
        return cart.view()

    @app.delete("/api/cart/{session_id}", response_model=CartView)
    def clear_cart(session_id: str) -> CartView:
        cart = assistant.cart(session_id)
        cart.clear()
        return cart.view()

    @app.post("/api/cart/{session_id}/checkout", response_model=CheckoutResponse)
    def checkout(session_id: str) -> CheckoutResponse:
        return assistant.confirm_order(session_id)

    @app.websocket("/ws/listen/{session_id}")
    async def listen(websocket: WebSocket, session_id: str) -> None:
        """Purpose: Drive a listening session from browser transcript events.
        Inputs/Outputs: Receives JSON events {type: start|result|stop|cancel|error};
            sends {type: state|transcript|advisory|reply}.
        Side Effects / State: Final text runs the assistant pipeline (cart may change).
        Dependencies: ListeningSession, VoiceAssistant.handle_message.
        Failure Modes: Recognition errors become advisory messages; disconnect cancels.
        If Removed: Spoken queries must be submitted as typed text.
        Testing Notes: start, final "chemise bleue", stop -> a reply with results.
        """
        await websocket.accept()
        finals: "asyncio.Queue[str]" = asyncio.Queue()
        state: Dict[str, Any] = {"catalog_url": None}
        session = ListeningSession(on_final=finals.put_nowait, idle_timeout=settings.listen_idle_timeout)
        watcher: Optional[asyncio.Task] = None

        async def reply_loop() -> None:
            # Each delivered utterance becomes one assistant turn; a failed turn
            # becomes an advisory and the loop keeps serving the socket.
            while True:
                text = await finals.get()
                try:
                    turn = await run_in_threadpool(
                        assistant.handle_message, session_id, text, state["catalog_url"]
                    )
                except Exception:
                    logger.exception("session=%s spoken turn failed", session_id)
                    await websocket.send_json(
                        {"type": "advisory", "code": "assistant-error", "message": TURN_FAILED_MESSAGE}
                    )
                    continue
                payload = _turn_response(turn).model_dump()
                payload.update({"type": "reply", "transcript": text, "listening": session.listening})
                await websocket.send_json(payload)

        replier = asyncio.create_task(reply_loop())
        try:
            while True:
                event = safe_json_loads(await websocket.receive_text())
                if not isinstance(event, dict):
                    logger.info("session=%s ignoring malformed listening event", session_id)
                    continue
                kind = event.get("type")
                if kind == "start":
                    state["catalog_url"] = event.get("catalog_url")
                    session.start()
                    if watcher is not None:
                        watcher.cancel()
                    watcher = asyncio.create_task(session.watch())
                    await websocket.send_json({"type": "state", "listening": True})
                elif kind == "result":
                    is_final = bool(event.get("final"))
                    session.feed(event.get("transcript", ""), is_final)
                    await websocket.send_json(
                        {"type": "transcript", "text": event.get("transcript", ""), "final": is_final}
                    )
                elif kind == "stop":
                    session.stop()
                    await websocket.send_json({"type": "state", "listening": False})
                elif kind == "cancel":
                    session.cancel()
                    await websocket.send_json({"type": "state", "listening": False})
                elif kind == "error":
                    advisory = advisory_for_error(str(event.get("error", "")))
                    session.cancel()
                    await websocket.send_json(
                        {"type": "advisory", "code": advisory.code, "message": advisory.message}
                    )
        except WebSocketDisconnect:
            session.cancel()
            logger.info("session=%s listening socket closed", session_id)
        finally:
            tasks = [task for task in (watcher, replier) if task is not None]
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    return app


app = create_app()
