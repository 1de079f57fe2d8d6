"""HTTP alert endpoint.

    POST /api/v1/alerts  {"event_type": "...", "data": {"instance_id": "i-..."}}
    GET  /health

The alert is handled in the request; the response carries the router's
acknowledgment or the first error the orchestration raised.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

from aiohttp import web
from loguru import logger

from asgctl.core import (
    AsgctlError,
    InvalidEvent,
    NotFound,
    ProvisioningTimeout,
    UpstreamUnavailable,
)
from asgctl.router import EventRouter
from asgctl.types import AlertEvent

ROUTER_KEY = web.AppKey("router", EventRouter)

# Most specific first
_ERROR_STATUS: tuple[tuple[type[AsgctlError], int], ...] = (
    (InvalidEvent, 400),
    (NotFound, 404),
    (UpstreamUnavailable, 502),
    (ProvisioningTimeout, 504),
)


def error_status(error: AsgctlError) -> int:
    for kind, status in _ERROR_STATUS:
        if isinstance(error, kind):
            return status
    return 500


def error_response(status: int, kind: str, message: str) -> web.Response:
    return web.json_response(
        {"status": "error", "error": kind, "message": message},
        status=status,
    )


def create_app(router: EventRouter) -> web.Application:
    log = logger.bind(component="server")

    async def receive_alert(request: web.Request) -> web.Response:
        try:
            raw: Any = await request.json()
        except json.JSONDecodeError as e:
            return error_response(400, "InvalidEvent", f"Malformed JSON: {e}")
        if not isinstance(raw, dict):
            return error_response(400, "InvalidEvent", "Alert body must be a JSON object")

        try:
            event = AlertEvent.from_dict(raw)
        except ValueError as e:
            return error_response(400, "InvalidEvent", str(e))

        try:
            result = await request.app[ROUTER_KEY].route(event)
        except AsgctlError as e:
            status = error_status(e)
            log.error(f"{event.event_type} failed ({status}): {e}")
            return error_response(status, type(e).__name__, str(e))
        except Exception as e:
            log.exception(f"{event.event_type} failed unexpectedly: {e}")
            return error_response(500, type(e).__name__, str(e))

        return web.json_response(result.to_dict())

    async def health(_request: web.Request) -> web.Response:
        return web.json_response({"status": "ready"})

    app = web.Application()
    app[ROUTER_KEY] = router
    app.router.add_post("/api/v1/alerts", receive_alert)
    app.router.add_get("/health", health)
    return app


async def serve(router: EventRouter, host: str, port: int) -> None:
    """Run the alert endpoint until cancelled."""
    log = logger.bind(component="server")
    runner = web.AppRunner(create_app(router))
    await runner.setup()
    try:
        site = web.TCPSite(runner, host, port)
        await site.start()
        log.info(f"Listening on {host}:{port}")
        await asyncio.Event().wait()
    finally:
        await runner.cleanup()
        log.info("Server stopped")


__all__ = [
    "ROUTER_KEY",
    "create_app",
    "error_status",
    "serve",
]
