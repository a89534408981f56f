# src/queue_pilot/cdp/link.py

from __future__ import annotations

"""
One logical CDP connection to one debug target.

Requests are correlated by a per-link increasing id; a reader task settles the
matching future exactly once. A timeout fails only that request: evaluation of a
large payload can legitimately be slow, so the link is never torn down for it.
"""

import asyncio
import itertools
import json
import logging
from collections.abc import Callable
from typing import Any

import websockets
from websockets.exceptions import ConnectionClosed

from ..core.errors import ConnectionUnavailable, EvalError, EvalTimeout, LinkClosed

logger = logging.getLogger(__name__)

CloseCallback = Callable[["ProtocolLink"], None]
Connector = Callable[..., Any]


def _exception_text(details: dict[str, Any]) -> str:
    exc = details.get("exception") or {}
    return str(exc.get("description") or details.get("text") or "remote exception")


class ProtocolLink:
    def __init__(
        self,
        target_id: str,
        ws_url: str,
        *,
        on_close: CloseCallback | None = None,
        connect_timeout: float = 5.0,
        connector: Connector | None = None,
    ) -> None:
        self.target_id = target_id
        self.ws_url = ws_url
        self._on_close = on_close
        self._connect_timeout = connect_timeout
        self._connector = connector or websockets.connect

        self._ids = itertools.count(1)
        self._pending: dict[int, asyncio.Future[dict[str, Any]]] = {}
        self._ws: Any = None
        self._reader: asyncio.Task[None] | None = None
        self._closed = False

    @property
    def is_open(self) -> bool:
        return self._ws is not None and not self._closed

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def connect(self) -> ProtocolLink:
        if self._ws is not None:
            return self
        try:
            self._ws = await self._connector(
                self.ws_url,
                max_size=None,
                ping_interval=None,
                open_timeout=self._connect_timeout,
            )
        except Exception as e:
            self._closed = True
            raise ConnectionUnavailable(f"Cannot connect to target {self.target_id}: {e}") from e

        self._reader = asyncio.create_task(self._read_loop(), name=f"cdp-reader:{self.target_id}")
        logger.info("Connected to target %s", self.target_id)
        return self

    async def _read_loop(self) -> None:
        try:
            async for raw in self._ws:
                self._handle_frame(raw)
        except ConnectionClosed as e:
            logger.debug("Transport closed for %s: %s", self.target_id, e)
        except Exception:
            logger.exception("Reader crashed for %s", self.target_id)
        finally:
            self._mark_closed("transport closed")

    def _handle_frame(self, raw: str | bytes) -> None:
        try:
            msg = json.loads(raw)
        except ValueError:
            logger.debug("Non-JSON frame from %s ignored", self.target_id)
            return
        if not isinstance(msg, dict):
            return

        mid = msg.get("id")
        if mid is None:
            # Protocol event, nobody subscribes to those.
            return
        if not isinstance(mid, int) or isinstance(mid, bool):
            logger.debug("Response with unusable id %r from %s ignored", mid, self.target_id)
            return

        fut = self._pending.pop(mid, None)
        if fut is None or fut.done():
            logger.debug("Late or unknown response id=%s from %s", mid, self.target_id)
            return
        fut.set_result(msg)

    def _mark_closed(self, reason: str) -> None:
        if self._closed:
            return
        self._closed = True

        pending = list(self._pending.values())
        self._pending.clear()
        for fut in pending:
            if not fut.done():
                fut.set_exception(LinkClosed(f"{self.target_id}: {reason}"))

        logger.info("Disconnected from target %s (%s)", self.target_id, reason)
        if self._on_close is not None:
            try:
                self._on_close(self)
            except Exception:
                logger.exception("on_close callback failed for %s", self.target_id)

    async def call(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        *,
        timeout: float = 2.0,
    ) -> dict[str, Any]:
        """Send one protocol request and wait for the response with the same id."""
        if not self.is_open:
            raise LinkClosed(f"{self.target_id}: link is not open")

        mid = next(self._ids)
        fut: asyncio.Future[dict[str, Any]] = asyncio.get_running_loop().create_future()
        self._pending[mid] = fut

        message: dict[str, Any] = {"id": mid, "method": method}
        if params:
            message["params"] = params

        try:
            await self._ws.send(json.dumps(message))
        except ConnectionClosed as e:
            self._pending.pop(mid, None)
            raise LinkClosed(f"{self.target_id}: send failed") from e

        try:
            msg = await asyncio.wait_for(fut, timeout=timeout)
        except TimeoutError:
            raise EvalTimeout(f"{method} timed out after {timeout:.1f}s on {self.target_id}") from None
        finally:
            self._pending.pop(mid, None)

        error = msg.get("error")
        if error:
            text = error.get("message") if isinstance(error, dict) else str(error)
            raise EvalError(f"{method} failed on {self.target_id}: {text}")

        result = msg.get("result")
        return result if isinstance(result, dict) else {}

    async def evaluate(self, expression: str, timeout: float = 2.0) -> Any:
        """Runtime.evaluate in the target; returns the primitive value of the result."""
        result = await self.call(
            "Runtime.evaluate",
            {"expression": expression, "awaitPromise": True, "userGesture": True},
            timeout=timeout,
        )
        details = result.get("exceptionDetails")
        if details:
            raise EvalError(f"{self.target_id}: {_exception_text(details)}")
        remote = result.get("result") or {}
        return remote.get("value")

    async def close(self) -> None:
        ws = self._ws
        if ws is not None and not self._closed:
            try:
                await ws.close()
            except Exception:
                logger.debug("ws.close failed for %s", self.target_id, exc_info=True)

        reader = self._reader
        if reader is not None and not reader.done():
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass

        self._mark_closed("closed locally")
