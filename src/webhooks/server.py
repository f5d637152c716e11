"""Async HTTP server for voice-engine server messages.

Runs alongside the Telegram polling bot in the same asyncio event loop.
Uses aiohttp's AppRunner/TCPSite for non-blocking start/stop.

The voice vendor posts call status and transcripts to
``POST /webhooks/vapi``; each payload is translated into a VoiceEvent and
fanned out to the controllers subscribed to that call.

NOTE: the firewall must allow inbound traffic on WEBHOOK_PORT (default 8443).
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from aiohttp import web

from src.config import settings
from src.voice.vapi import dispatch_server_message

logger = logging.getLogger(__name__)

SECRET_HEADER = "X-Vapi-Secret"

# Strong references to in-flight dispatch tasks
_background: set[asyncio.Task] = set()


async def _handle_vapi(request: web.Request) -> web.Response:
    """Accept a server message and dispatch it in the background."""
    secret = request.headers.get(SECRET_HEADER, "")
    if not settings.vapi_webhook_secret or secret != settings.vapi_webhook_secret:
        logger.warning("Voice webhook rejected: invalid secret")
        return web.json_response({"error": "unauthorized"}, status=401)

    try:
        payload: dict[str, Any] = await request.json()
    except Exception:
        logger.warning("Voice webhook bad request: invalid JSON")
        return web.json_response({"error": "invalid JSON"}, status=400)

    if not isinstance(payload, dict):
        return web.json_response({"error": "invalid payload"}, status=400)

    message = payload.get("message")
    kind = message.get("type") if isinstance(message, dict) else payload.get("type")
    logger.debug("Voice webhook received: type=%s", kind)

    # Fire-and-forget: return 200 immediately, process in background.
    task = asyncio.create_task(_run_dispatch(payload))
    _background.add(task)
    task.add_done_callback(_background.discard)

    return web.json_response({"ok": True})


async def _run_dispatch(payload: dict[str, Any]) -> None:
    """Dispatch a server message with error logging."""
    try:
        await dispatch_server_message(payload)
    except Exception:
        logger.exception("Voice webhook dispatch failed")


async def _health(request: web.Request) -> web.Response:
    """GET /health — basic liveness check."""
    return web.json_response({"status": "ok"})


def create_web_app() -> web.Application:
    """Build the aiohttp Application with routes."""
    app = web.Application()
    app.router.add_get("/health", _health)
    app.router.add_post("/webhooks/vapi", _handle_vapi)
    return app


class WebhookServer:
    """Manages the aiohttp server lifecycle."""

    def __init__(self, port: int | None = None) -> None:
        self.port = port if port is not None else settings.webhook_port
        self._runner: web.AppRunner | None = None

    @property
    def running(self) -> bool:
        return self._runner is not None

    async def start(self) -> None:
        """Start listening for voice server messages."""
        if not settings.vapi_webhook_secret:
            logger.warning("VAPI_WEBHOOK_SECRET empty — all voice webhooks will be rejected")

        app = create_web_app()
        self._runner = web.AppRunner(app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, "0.0.0.0", self.port)
        await site.start()
        logger.info("Webhook server listening on port %d", self.port)

    async def stop(self) -> None:
        """Shut down the server gracefully."""
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            logger.info("Webhook server stopped")
