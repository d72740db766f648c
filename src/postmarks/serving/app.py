"""FastAPI application accepting link submissions, queries and inbound emails."""

from __future__ import annotations

import logging
import re
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from email.utils import parseaddr
from typing import Any

from fastapi import FastAPI, HTTPException, Request, Response
from pydantic import BaseModel, Field

from postmarks.config import settings
from postmarks.service import IngestionService, build_service

logger = logging.getLogger(__name__)

_URL_RE = re.compile(r"https?://[^\s<>\"]+")
_URL_TRAILING = ".,;:!?)]}'"


# ── Request / Response schemas ────────────────────────────────────────
class LinkRequest(BaseModel):
    """A URL to save for an owner."""

    owner: str = Field(min_length=1)
    url: str = Field(pattern=r"^https?://")


class QueryRequest(BaseModel):
    """A similarity query, or a listing when ``query`` is empty."""

    owner: str = Field(min_length=1)
    query: str = ""


class Accepted(BaseModel):
    status: str = "accepted"
    run_id: str | None = None


class StepView(BaseModel):
    step_name: str
    outcome: str
    attempts: int
    failure_kind: str | None = None
    error: str | None = None


class RunView(BaseModel):
    run_id: str
    owner: str
    url: str
    status: str
    error: str | None = None
    steps: list[StepView] = []


def create_app(service_factory: Callable[[], IngestionService] | None = None) -> FastAPI:
    """Build the API.  *service_factory* defaults to the settings-driven wiring."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logging.basicConfig(level=settings.log_level)
        service = service_factory() if service_factory else build_service(settings)
        app.state.service = service
        resumed = await service.recover()
        if resumed:
            logger.info("Resumed %d interrupted runs", len(resumed))
        yield
        await service.shutdown()

    app = FastAPI(
        title="Postmarks API",
        version="0.1.0",
        description="Save links and find them again by meaning.",
        lifespan=lifespan,
    )

    def _service(request: Request) -> IngestionService:
        return request.app.state.service

    # ── Routes ────────────────────────────────────────────────────────
    @app.get("/health")
    async def health() -> dict[str, str]:
        """Liveness check."""
        return {"status": "ok"}

    @app.post("/links", response_model=Accepted, status_code=202)
    async def submit_link(body: LinkRequest, request: Request) -> Accepted:
        run = await _service(request).submit_link(body.owner, body.url)
        return Accepted(run_id=run.run_id)

    @app.post("/queries", response_model=Accepted, status_code=202)
    async def submit_query(body: QueryRequest, request: Request) -> Accepted:
        service = _service(request)
        if body.query.strip():
            service.submit_query(body.owner, body.query)
        else:
            service.submit_list(body.owner)
        return Accepted()

    @app.get("/runs/{run_id}", response_model=RunView)
    async def get_run(run_id: str, request: Request) -> RunView:
        run = await _service(request).get_run(run_id)
        if run is None:
            raise HTTPException(status_code=404, detail=f"run {run_id} not found")
        return RunView(
            run_id=run.run_id,
            owner=run.owner,
            url=run.url,
            status=run.status.value,
            error=run.error,
            steps=[
                StepView(
                    step_name=s.step_name,
                    outcome=s.outcome.value,
                    attempts=s.attempts,
                    failure_kind=s.failure_kind.value if s.failure_kind else None,
                    error=s.error,
                )
                for s in run.steps.values()
            ],
        )

    @app.post("/inbound", status_code=204)
    async def inbound(message: dict[str, Any], request: Request) -> Response:
        """Route a Postmark inbound-webhook email.

        A URL in the subject or body saves a link, the subject ``list`` or an
        empty message asks for a listing, anything else is a similarity query.
        """
        owner = _sender(message)
        if not owner:
            raise HTTPException(status_code=422, detail="message has no sender")
        subject = str(message.get("Subject") or "").strip()
        body = str(message.get("TextBody") or "")

        service = _service(request)
        match = _URL_RE.search(subject) or _URL_RE.search(body)
        query = subject or body.strip()
        if match:
            await service.submit_link(owner, match.group(0).rstrip(_URL_TRAILING))
        elif subject.lower() == "list" or not query:
            service.submit_list(owner)
        else:
            service.submit_query(owner, query)
        return Response(status_code=204)

    return app


def _sender(message: dict[str, Any]) -> str:
    full = message.get("FromFull")
    if isinstance(full, dict) and full.get("Email"):
        return str(full["Email"])
    return parseaddr(str(message.get("From") or ""))[1]


app = create_app()
