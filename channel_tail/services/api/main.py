"""FastAPI read side serving the retained channel history with user-agent negotiation."""

import json
import logging
import re
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exception_handlers import http_exception_handler
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from channel_tail.core.errors import BrokerConnectError
from channel_tail.core.state import ServicePhase, ServiceState
from channel_tail.core.types import Message
from channel_tail.services.subscriber.main import SubscriptionBridge

logger = logging.getLogger(__name__)

DEFAULT_CONSTRAINED_CLIENTS = r"(Mobile|curl)"


def is_constrained_client(user_agent: str | None, pattern: re.Pattern[str]) -> bool:
    """Return True for mobile browsers and command-line tools that want readable text."""

    if not user_agent:
        return False
    return pattern.search(user_agent) is not None


def render_history(snapshot: Sequence[Message], constrained: bool) -> Response:
    """Render a history snapshot as indented text for constrained clients, JSON otherwise."""

    payload = [message.to_jsonable() for message in snapshot]
    if constrained:
        return PlainTextResponse(json.dumps(payload, indent=2, ensure_ascii=False) + "\n")
    return JSONResponse(payload)


def create_app(
    state: ServiceState,
    *,
    bridge: SubscriptionBridge | None = None,
    constrained_clients: str | re.Pattern[str] = DEFAULT_CONSTRAINED_CLIENTS,
    title: str = "Channel Tail",
    version: str = "0.1.0",
) -> FastAPI:
    """Build the HTTP app around an explicit service state.

    When a bridge is given, the lifespan subscribes before the listener starts
    and closes the subscription once in-flight requests have drained.
    """

    pattern = re.compile(constrained_clients) if isinstance(constrained_clients, str) else constrained_clients

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        state.advance(ServicePhase.STARTING)
        if bridge is not None:
            try:
                await bridge.start()
            except BrokerConnectError as exc:
                logger.error("api_subscribe_failed", extra={"error": str(exc)})
                state.advance(ServicePhase.SHUTTING_DOWN)
                state.advance(ServicePhase.STOPPED)
                raise

        state.advance(ServicePhase.RUNNING)
        logger.info(
            "api_startup",
            extra={
                "service": "api",
                "version": version,
                "pid": state.pid,
                "started_at": state.started_at.isoformat(),
            },
        )
        try:
            yield
        finally:
            state.advance(ServicePhase.SHUTTING_DOWN)
            if bridge is not None:
                await bridge.stop()
            state.advance(ServicePhase.STOPPED)
            logger.info("api_shutdown", extra={"service": "api"})

    app = FastAPI(
        title=title,
        version=version,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    @app.exception_handler(StarletteHTTPException)
    async def not_found(request: Request, exc: StarletteHTTPException) -> Response:
        # unknown paths and verbs get a bare 404
        if exc.status_code in (404, 405):
            return Response(status_code=404)
        return await http_exception_handler(request, exc)

    @app.get("/")
    def history(request: Request) -> Response:
        """Return the retained messages, newest first."""

        snapshot = state.history.snapshot()
        constrained = is_constrained_client(request.headers.get("user-agent"), pattern)
        return render_history(snapshot, constrained)

    return app
