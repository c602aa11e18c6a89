"""
Service entry point. Wires the registry, simulator, notification channel and
session service together and serves the HTTP/WebSocket surface.
"""
import asyncio
import logging
import signal

import structlog
import uvicorn

from reflow.config import config
from reflow.events import EventBus
from reflow.services import (
    ActorSimulator,
    ApiService,
    MaterialRegistry,
    NotificationChannel,
    SessionService,
)
from reflow.storage import SQLiteStore

logging.basicConfig(format="%(message)s", level=getattr(logging, config.log_level, logging.INFO))

structlog.configure(
    processors=[
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    logger_factory=structlog.stdlib.LoggerFactory(),
)

log = structlog.get_logger()


def build_components(cfg):
    bus = EventBus()
    store = SQLiteStore(cfg.storage_path)
    registry = MaterialRegistry(store, bus=bus, storage_key=cfg.storage_key)
    notifications = NotificationChannel(bus=bus, ttl=cfg.notification_ttl)
    simulator = ActorSimulator(cfg, registry, notifications, bus=bus)
    sessions = SessionService()
    api = ApiService(cfg, registry, simulator, notifications, sessions, bus=bus)
    return store, simulator, notifications, api


async def main():
    store, simulator, notifications, api = build_components(config)

    shutdown = asyncio.Event()

    loop = asyncio.get_event_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, shutdown.set)

    server = uvicorn.Server(uvicorn.Config(
        api.app, host="0.0.0.0", port=config.http_port, log_level="warning"
    ))

    log.info("reflow_starting", http=config.http_port, storage=config.storage_path,
             materials=len(api.registry), simulation=config.simulation_enabled)

    if config.simulation_enabled:
        simulator.enable()

    async def wait_shutdown():
        await shutdown.wait()
        raise asyncio.CancelledError()

    try:
        await asyncio.gather(server.serve(), wait_shutdown())
    except asyncio.CancelledError:
        pass
    finally:
        # release every timer before the state containers go away
        simulator.close()
        notifications.close()
        store.close()
        log.info("reflow_stopped")


if __name__ == "__main__":
    asyncio.run(main())
