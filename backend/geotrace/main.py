"""
FastAPI application for GeoTrace.
One-shot, NDJSON streaming and WebSocket traceroute endpoints.
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, WebSocket, WebSocketDisconnect, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.requests import Request

from . import __version__
from .config import settings
from .exceptions import TraceError, ValidationError
from .schemas import ErrorResponse, HopResponse, TraceRequest, TraceResponse
from .tracer.emitter import SessionEventEmitter
from .tracer.orchestrator import TraceOrchestrator, close_orchestrator, get_orchestrator
from .tracer.session import TraceSession

logger = logging.getLogger(__name__)


def configure_logging():
    """Configure root logging from settings."""
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    if settings.debug:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    configure_logging()
    print(f"✓ {settings.app_name} {__version__} starting")
    print(f"✓ Server running at http://localhost:{settings.port}")
    print(f"✓ API docs available at http://localhost:{settings.port}/docs")

    yield

    await close_orchestrator()
    print("✓ Geolocation client closed")


# Create FastAPI app with lifespan
app = FastAPI(
    title=settings.app_name,
    description="Traceroute API with live geolocated hops",
    version=__version__,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Render HTTP errors as ``{"error": ...}`` bodies."""
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})


# ============================================================================
# Health Check
# ============================================================================


@app.get("/", response_class=PlainTextResponse)
async def root():
    """Liveness banner."""
    return "Traceroute API is running"


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "geotrace-api", "version": __version__}


# ============================================================================
# Traceroute Endpoints
# ============================================================================


@app.post(
    "/api/traceroute",
    response_model=TraceResponse,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def create_trace(
    request: TraceRequest, orchestrator: TraceOrchestrator = Depends(get_orchestrator)
):
    """
    Run a trace to completion.
    Returns every public hop with its location (when one could be resolved).
    """
    try:
        session = await orchestrator.execute_trace(request.target)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except TraceError as e:
        logger.error(f"Trace to {request.target!r} failed: {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))

    return TraceResponse(hops=[HopResponse.from_hop(hop) for hop in session.hops])


@app.post("/api/traceroute/stream")
async def stream_trace(
    request: TraceRequest, orchestrator: TraceOrchestrator = Depends(get_orchestrator)
):
    """
    Stream a trace as newline-delimited JSON events.
    The body ends after ``traceroute-completed`` or ``traceroute-error``.
    """
    session = TraceSession(request.target)
    messages: asyncio.Queue = asyncio.Queue()
    emitter = SessionEventEmitter(messages.put)

    async def body():
        trace = asyncio.ensure_future(orchestrator.run_session(session, emitter))
        trace.add_done_callback(lambda _: messages.put_nowait(None))
        try:
            while True:
                message = await messages.get()
                if message is None:
                    break
                yield json.dumps(message) + "\n"
            trace.result()
        finally:
            await _cancel_trace(trace)

    return StreamingResponse(body(), media_type="application/x-ndjson")


def _parse_socket_message(text: str) -> tuple[str, Optional[str]]:
    """
    Interpret a client frame as ``(action, target)``.

    Accepts ``{"target": ...}``, ``{"action": "cancel"}``, a JSON string or a
    bare target.
    """
    try:
        payload = json.loads(text)
    except ValueError:
        return "start", text

    if isinstance(payload, dict):
        action = str(payload.get("action") or "start").lower()
        target = payload.get("target")
        return action, target if isinstance(target, str) else None
    if isinstance(payload, str):
        return "start", payload
    return "start", None


async def _cancel_trace(trace: Optional[asyncio.Future]):
    if trace is None:
        return
    if not trace.done():
        trace.cancel()
    await asyncio.gather(trace, return_exceptions=True)


@app.websocket("/ws/traceroute")
async def traceroute_socket(
    websocket: WebSocket, orchestrator: TraceOrchestrator = Depends(get_orchestrator)
):
    """
    Persistent trace channel.

    Each ``{"target": ...}`` frame starts a new session once the previous one
    has ended; ``{"action": "cancel"}`` stops the running one. Disconnecting
    cancels the running trace without further events.
    """
    await websocket.accept()
    receiver: Optional[asyncio.Future] = None
    trace: Optional[asyncio.Future] = None
    session: Optional[TraceSession] = None
    emitter: Optional[SessionEventEmitter] = None

    try:
        while True:
            if receiver is None:
                receiver = asyncio.ensure_future(websocket.receive_text())
            waiting = {receiver} if trace is None else {receiver, trace}
            done, _ = await asyncio.wait(waiting, return_when=asyncio.FIRST_COMPLETED)

            if trace is not None and trace in done:
                finished, trace = trace, None
                finished.result()

            if receiver in done:
                text = receiver.result()
                receiver = None
                action, target = _parse_socket_message(text)

                if action == "cancel":
                    if trace is not None:
                        event = session.fail("trace cancelled")
                        if event is None:
                            # Already finishing; let the terminal event go out
                            await asyncio.gather(trace, return_exceptions=True)
                        else:
                            await _cancel_trace(trace)
                            await emitter.emit(event)
                        trace = None
                    continue

                if trace is not None:
                    logger.warning(
                        f"Ignoring trace request while session {session.id[:8]} is running"
                    )
                    continue

                session = TraceSession(target)
                emitter = SessionEventEmitter(websocket.send_json)
                trace = asyncio.ensure_future(orchestrator.run_session(session, emitter))
    except WebSocketDisconnect:
        logger.info("Trace client disconnected")
    finally:
        if receiver is not None:
            receiver.cancel()
        await _cancel_trace(trace)


# Serve directly (optional manual run)
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.host, port=settings.port)
