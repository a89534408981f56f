# src/queue_pilot/control/server.py

from __future__ import annotations

import json
import logging
from typing import Any

from aiohttp import web

from ..core.state import AppState
from .api import handle_action

logger = logging.getLogger(__name__)

MAX_BODY_BYTES = 1024 * 1024


def _error(message: str, status: int) -> web.Response:
    return web.json_response({"success": False, "error": message}, status=status)


class ControlServer:
    """
    Local HTTP control endpoint: POST {"action": ..., "params": {...}}.

    Bound to loopback only. It exposes the same actions as the console, for
    scripts and test harnesses driving a running instance.
    """

    def __init__(self, state: AppState, host: str = "127.0.0.1", port: int = 54321) -> None:
        self._state = state
        self.host = host
        self.port = port
        self._runner: web.AppRunner | None = None

    def build_app(self) -> web.Application:
        app = web.Application(client_max_size=MAX_BODY_BYTES)
        app.router.add_post("/", self.handle)
        return app

    async def handle(self, request: web.Request) -> web.Response:
        try:
            body = await request.read()
        except web.HTTPRequestEntityTooLarge:
            return _error("Payload too large", 413)

        data: Any = {}
        if body:
            try:
                data = json.loads(body)
            except ValueError:
                return _error("Invalid JSON", 400)

        if not isinstance(data, dict) or not data.get("action"):
            return _error("Missing action", 400)

        params = data.get("params") or {}
        if not isinstance(params, dict):
            return _error("params must be an object", 400)

        action = str(data["action"])
        logger.info("Control action %s from %s", action, request.remote)
        result = await handle_action(self._state, action, params)
        return web.json_response(result)

    async def start(self) -> None:
        if self._runner is not None:
            return
        runner = web.AppRunner(self.build_app(), access_log=None)
        await runner.setup()
        site = web.TCPSite(runner, self.host, self.port)
        try:
            await site.start()
        except OSError as e:
            await runner.cleanup()
            logger.error("Control server could not bind %s:%s: %s", self.host, self.port, e)
            return
        self._runner = runner
        logger.info("Control server running on http://%s:%s", self.host, self.port)

    async def stop(self) -> None:
        runner = self._runner
        self._runner = None
        if runner is not None:
            await runner.cleanup()
            logger.info("Control server stopped")
