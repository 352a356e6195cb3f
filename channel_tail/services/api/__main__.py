"""Module entrypoint wiring settings, the Redis subscription and the HTTP listener."""

import asyncio
import logging

import uvicorn

from channel_tail.core.config import Settings, get_settings
from channel_tail.core.errors import ConfigError
from channel_tail.core.logging import configure_logging
from channel_tail.core.state import ServiceState
from channel_tail.services.api.main import create_app
from channel_tail.services.subscriber.main import BrokerSubscription, SubscriptionBridge

logger = logging.getLogger(__name__)


def _request_shutdown(server: uvicorn.Server, exc: BaseException) -> None:
    if server.should_exit:
        return
    logger.info("api_shutdown_requested", extra={"reason": type(exc).__name__})
    server.should_exit = True


def build_server(settings: Settings, state: ServiceState, bridge: SubscriptionBridge) -> uvicorn.Server:
    """Create the uvicorn server; the app lifespan owns the subscription."""

    app = create_app(
        state,
        bridge=bridge,
        constrained_clients=settings.CONSTRAINED_CLIENT_PATTERN,
        title=settings.APP_NAME,
        version=settings.VERSION,
    )
    config = uvicorn.Config(
        app,
        host=settings.HOST,
        port=settings.PORT,
        lifespan="on",
        log_config=None,
    )
    server = uvicorn.Server(config)
    bridge.add_failure_callback(lambda exc: _request_shutdown(server, exc))
    return server


async def _serve(settings: Settings) -> int:
    state = ServiceState.create(capacity=settings.HISTORY_CAPACITY)
    logger.info(
        "bridge_startup",
        extra={
            "channel": settings.SUBSCRIBE_CHANNEL,
            "port": settings.PORT,
            "redis_host": settings.REDIS_HOST,
            "redis_port": settings.REDIS_PORT,
            "env": settings.ENV,
            "pid": state.pid,
            "started_at": state.started_at.isoformat(),
        },
    )

    bridge = SubscriptionBridge(
        BrokerSubscription.from_settings(settings),
        state,
        announce=settings.ANNOUNCE_SUBSCRIPTION,
    )
    server = build_server(settings, state, bridge)
    try:
        await server.serve()
    except SystemExit as exc:
        # recent uvicorn exits directly when lifespan startup or socket binding fails
        logger.error(
            "bridge_startup_failed",
            extra={"phase": state.phase.value, "exit_code": exc.code},
        )
        return 1

    if not server.started:
        logger.error("bridge_startup_failed", extra={"phase": state.phase.value})
        return 1
    if bridge.failure is not None:
        logger.error("bridge_terminated", extra={"error": str(bridge.failure)})
        return 1

    logger.info("bridge_shutdown", extra={"phase": state.phase.value})
    return 0


def main() -> int:
    """Run the channel bridge until interrupted or the subscription fails."""

    try:
        settings = get_settings()
    except ConfigError as exc:
        configure_logging()
        logger.error("config_invalid", extra={"key": exc.key, "reason": exc.reason})
        return 1

    configure_logging(settings.LOG_LEVEL)
    try:
        return asyncio.run(_serve(settings))
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    raise SystemExit(main())
