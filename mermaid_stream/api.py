"""HTTP surface: generation as a server-push event stream."""

import json
import logging
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Header, Request
from fastapi.responses import JSONResponse, StreamingResponse

from . import __version__
from .errors import (
    DetectionFailedError,
    DiagramTypeNotDetectedError,
    InvalidRequestError,
    ProjectNotFoundError,
    QuotaExceededError,
    UnauthorizedError,
    UnknownDiagramTypeError,
    UserNotFoundError,
)
from .models import DetectTypeRequestBody, DiagramRequestBody, PreviewRequestBody
from .service import DiagramService

log = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

# Request-level rejections and their HTTP status.
ERROR_STATUS = {
    UnauthorizedError: 401,
    UnknownDiagramTypeError: 400,
    InvalidRequestError: 400,
    DiagramTypeNotDetectedError: 400,
    QuotaExceededError: 403,
    UserNotFoundError: 404,
    ProjectNotFoundError: 404,
    DetectionFailedError: 502,
}


def format_event(event: dict) -> str:
    return f"data: {json.dumps(event)}\n\n"


def create_app(service: Optional[DiagramService] = None) -> FastAPI:
    """Build the FastAPI application around a diagram service."""
    app = FastAPI(title="mermaid-stream", version=__version__)
    app.state.service = service or DiagramService()

    for exc_type, status in ERROR_STATUS.items():
        async def handler(request: Request, exc: Exception, status: int = status) -> JSONResponse:
            log.info("http.rejected", extra={"status": status, "error": str(exc)})
            return JSONResponse({"error": str(exc)}, status_code=status)
        app.add_exception_handler(exc_type, handler)

    @app.post("/api/diagrams")
    async def create_diagram(
        body: DiagramRequestBody,
        request: Request,
        x_user_id: Optional[str] = Header(default=None),
    ) -> StreamingResponse:
        """Stream partial and terminal diagram events.

        Each event is one ``data: {json}`` frame; see ``PartialEvent``,
        ``SuccessEvent`` and ``FailureEvent`` for the payloads.
        """
        service: DiagramService = request.app.state.service
        prepared = await service.prepare(body, x_user_id)

        async def event_generator() -> AsyncGenerator[str, None]:
            async for event in service.stream(prepared, request.is_disconnected):
                yield format_event(event)
            log.info("http.stream_closed", extra={"request_id": prepared.request_id})

        return StreamingResponse(
            event_generator(),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )

    @app.post("/api/diagrams/preview")
    async def save_preview(
        body: PreviewRequestBody,
        request: Request,
        x_user_id: Optional[str] = Header(default=None),
    ) -> dict:
        service: DiagramService = request.app.state.service
        saved = await service.save_preview(body, x_user_id)
        return {"saved": saved}

    @app.post("/api/diagrams/detect-type")
    async def detect_type(
        body: DetectTypeRequestBody,
        request: Request,
        x_user_id: Optional[str] = Header(default=None),
    ) -> dict:
        service: DiagramService = request.app.state.service
        definition = await service.detect_type(body, x_user_id)
        return {"diagramType": definition.id}

    @app.get("/api/diagram-types")
    async def list_diagram_types(request: Request) -> list[dict]:
        service: DiagramService = request.app.state.service
        return [
            {
                "id": d.id,
                "title": d.title,
                "declaration": d.canonical_declaration,
                "aliases": list(d.aliases),
            }
            for d in service.registry
        ]

    return app
