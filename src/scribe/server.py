"""
Scribe Status Server

Read-mostly HTTP surface over a running MeetingPipeline:
- Job status and cancellation
- Queue/worker status and recent pipeline events
- Closing a session to start its summary

Run with: python -m scribe.server
"""

import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.middleware.base import BaseHTTPMiddleware

from .exceptions import InvalidJobTransition, JobNotFound
from .logger import get_logger
from .meeting.pipeline import MeetingPipeline

logger = get_logger(__name__)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 9877


# API Token Authentication Middleware
class APITokenMiddleware(BaseHTTPMiddleware):
    """Middleware to check API token if SCRIBE_API_TOKEN is set."""

    # Endpoints that don't require authentication
    PUBLIC_ENDPOINTS = {"/health", "/docs", "/openapi.json"}

    async def dispatch(self, request: Request, call_next):
        api_token = os.environ.get("SCRIBE_API_TOKEN")

        # If no token configured, allow all requests
        if not api_token:
            return await call_next(request)

        if request.url.path in self.PUBLIC_ENDPOINTS:
            return await call_next(request)

        provided_token = request.headers.get("X-API-Token")
        if not provided_token or provided_token != api_token:
            return JSONResponse(
                status_code=401,
                content={"detail": "Invalid or missing API token"}
            )

        return await call_next(request)


class PipelineStatus(BaseModel):
    """Pipeline status response."""
    status: str
    is_processing: bool
    chunks_in_queue: int
    queue_capacity: int
    dropped_chunks: int
    workers_running: bool
    num_workers: int
    processed_chunks: int
    unresolved_chunks: int
    sessions: int
    jobs: Dict[str, int]
    providers: Dict[str, Dict[str, Any]]


class CloseSessionRequest(BaseModel):
    """Request body for closing a session."""
    last_sequence_no: Optional[int] = None


class CloseSessionResponse(BaseModel):
    job_id: str
    session_id: str


class EventsResponse(BaseModel):
    events: List[Dict[str, Any]]
    last_id: int


def create_app(pipeline: MeetingPipeline, manage_lifecycle: bool = False) -> FastAPI:
    """
    Build the FastAPI app for a pipeline.

    Args:
        pipeline: Pipeline to expose
        manage_lifecycle: Start the pipeline on startup and stop it on shutdown
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if manage_lifecycle:
            pipeline.start()
        yield
        if manage_lifecycle:
            logger.info("Server shutting down, stopping pipeline")
            pipeline.stop()

    app = FastAPI(
        title="Scribe Status Server",
        description="Job status and pipeline events for meeting transcription and summarization",
        version="1.0.0",
        lifespan=lifespan
    )
    app.add_middleware(APITokenMiddleware)
    app.state.pipeline = pipeline

    @app.get("/health")
    async def health():
        """Simple health check endpoint."""
        return {"status": "ok"}

    @app.get("/status", response_model=PipelineStatus)
    async def status():
        """Queue depth, drops, workers and provider circuits."""
        return PipelineStatus(status="running", **pipeline.status())

    @app.get("/jobs/{job_id}/status")
    async def job_status(job_id: str):
        try:
            return pipeline.get_status(job_id).to_dict()
        except JobNotFound:
            raise HTTPException(status_code=404, detail=f"Unknown job '{job_id}'")

    @app.post("/jobs/{job_id}/cancel")
    async def cancel_job(job_id: str):
        """Cancel a Pending or Processing job."""
        try:
            return pipeline.cancel_job(job_id).to_dict()
        except JobNotFound:
            raise HTTPException(status_code=404, detail=f"Unknown job '{job_id}'")
        except InvalidJobTransition as e:
            raise HTTPException(status_code=409, detail=str(e))

    @app.post("/sessions/{session_id}/close", response_model=CloseSessionResponse)
    async def close_session(session_id: str, body: Optional[CloseSessionRequest] = None):
        """Finalize a session transcript and start summarizing it."""
        last_seq = body.last_sequence_no if body else None
        job_id = pipeline.close_session(session_id, last_seq)
        return CloseSessionResponse(job_id=job_id, session_id=session_id)

    @app.get("/events", response_model=EventsResponse)
    async def events(since: int = Query(0, ge=0)):
        """Recent chunk-drop and job-transition events after `since`."""
        recent = pipeline.events(since)
        last_id = recent[-1]["id"] if recent else since
        return EventsResponse(events=recent, last_id=last_id)

    return app


def run_server(host: str = DEFAULT_HOST, port: int = DEFAULT_PORT):
    """Build the pipeline from config and serve it."""
    pipeline = MeetingPipeline.from_config()
    app = create_app(pipeline, manage_lifecycle=True)
    logger.info(f"Starting status server on http://{host}:{port}")
    uvicorn.run(app, host=host, port=port, log_level="warning")


def main():
    # Load .env when run directly
    from dotenv import load_dotenv
    load_dotenv(Path.cwd() / ".env")

    from .utils import ConfigManager

    import argparse
    parser = argparse.ArgumentParser(description="Scribe Status Server")
    parser.add_argument("--host", default=None, help="Host to bind to")
    parser.add_argument("--port", type=int, default=None, help="Port to listen on")
    args = parser.parse_args()

    host = args.host or ConfigManager.get_config_value('server', 'host') or DEFAULT_HOST
    port = args.port or ConfigManager.get_config_value('server', 'port') or DEFAULT_PORT
    run_server(host, port)


if __name__ == "__main__":
    main()
