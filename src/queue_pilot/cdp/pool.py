# src/queue_pilot/cdp/pool.py

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from ..core.clock import SystemClock
from ..core.errors import ConnectionUnavailable, QueuePilotError
from ..core.ports import Clock
from ..core.results import ClickStats, SendResult
from ..core.state import SharedState
from . import payload
from .discovery import TargetInfo, list_targets
from .link import CloseCallback, ProtocolLink

logger = logging.getLogger(__name__)

Discover = Callable[[], Awaitable[list[TargetInfo]]]
LinkFactory = Callable[[str, str, CloseCallback], Any]
PayloadLoader = Callable[[], str]


@dataclass(slots=True)
class ConnectionRecord:
    id: str
    link: Any
    injected: bool = False
    title: str = ""
    url: str = ""


@dataclass(slots=True, frozen=True)
class Probe:
    record: ConnectionRecord
    has_input: bool
    has_agent_panel: bool
    score: float


def _as_score(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.0
    return float(value)


def rank_candidates(probes: list[Probe], workspace_name: str = "") -> list[Probe]:
    """
    Order connections by how likely they host the chat input.

    Only connections with an input are kept. Agent-panel hosts win outright;
    with several candidates left, a workspace title match narrows them further.
    Ties are broken by connection id so the choice is stable between calls.
    """
    candidates = [p for p in probes if p.has_input]

    panel = [p for p in candidates if p.has_agent_panel]
    if panel:
        candidates = panel

    if workspace_name and len(candidates) > 1:
        needle = workspace_name.lower()
        matches = [p for p in candidates if needle in p.record.title.lower()]
        if matches:
            candidates = matches

    return sorted(candidates, key=lambda p: (-int(p.has_agent_panel), -p.score, p.record.id))


class ConnectionPool:
    """
    Owns every ProtocolLink and the map of connection records.

    Nothing outside the pool holds a link: the scheduler and the monitor only go
    through the methods below, which keeps discovery/injection and sends from
    racing over the same map.
    """

    def __init__(
        self,
        settings: Any,
        shared: SharedState,
        *,
        discover: Discover | None = None,
        link_factory: LinkFactory | None = None,
        payload_loader: PayloadLoader | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._settings = settings
        self._shared = shared
        self._discover = discover or self._discover_targets
        self._link_factory = link_factory or self._make_link
        self._payload_loader = payload_loader or (lambda: payload.load_payload(settings.payload_path))
        self._clock = clock or SystemClock()

        self._connections: dict[str, ConnectionRecord] = {}
        self._refresh_lock = asyncio.Lock()
        self._last_refresh_at: float | None = None

    # ---- wiring defaults ----

    async def _discover_targets(self) -> list[TargetInfo]:
        s = self._settings
        return await list_targets(
            s.cdp_host,
            s.cdp_port,
            timeout=s.discovery_timeout_s,
            settings_surface_title=s.settings_surface_title,
        )

    @staticmethod
    def _make_link(conn_id: str, ws_url: str, on_close: CloseCallback) -> ProtocolLink:
        return ProtocolLink(conn_id, ws_url, on_close=on_close)

    def _key(self, target_id: str) -> str:
        return f"{self._settings.cdp_port}:{target_id}"

    def _start_config(self) -> dict[str, Any]:
        s = self._settings
        return {
            "pollInterval": int(s.poll_interval_ms),
            "ide": s.ide,
            "bannedCommands": list(s.banned_commands),
        }

    # ---- map ----

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def _live_records(self) -> list[ConnectionRecord]:
        # Snapshot: the map can change while we await.
        return [r for r in list(self._connections.values()) if r.link.is_open]

    def _on_link_closed(self, link: Any) -> None:
        record = self._connections.get(link.target_id)
        if record is not None and record.link is link:
            del self._connections[link.target_id]

    def connection_summaries(self) -> list[dict[str, Any]]:
        return [
            {
                "id": r.id,
                "title": r.title,
                "url": r.url,
                "injected": r.injected,
                "open": bool(r.link.is_open),
            }
            for r in self._connections.values()
        ]

    # ---- refresh / inject ----

    async def refresh(self, *, force: bool = False) -> int:
        """
        Discover targets, connect new ones and (re-)inject the payload.

        Suppressed entirely in standby or while disabled. A non-forced refresh
        within resync_throttle_s of the previous one is skipped.
        Returns the number of known connections.
        """
        if self._shared.standby or not self._shared.enabled:
            logger.debug(
                "Refresh suppressed (standby=%s, enabled=%s)",
                self._shared.standby,
                self._shared.enabled,
            )
            return self.connection_count

        now = self._clock.monotonic()
        if (
            not force
            and self._last_refresh_at is not None
            and now - self._last_refresh_at < self._settings.resync_throttle_s
        ):
            return self.connection_count

        async with self._refresh_lock:
            self._last_refresh_at = self._clock.monotonic()
            try:
                targets = await self._discover()
            except ConnectionUnavailable as e:
                logger.info("Discovery failed: %s", e)
                return self.connection_count

            for target in targets:
                if self._shared.standby:
                    break
                key = self._key(target.id)
                record = self._connections.get(key)
                if record is None or not record.link.is_open:
                    record = await self._open(key, target)
                    if record is None:
                        continue
                record.title = target.title
                record.url = target.url
                await self._inject(record)

        return self.connection_count

    async def _open(self, key: str, target: TargetInfo) -> ConnectionRecord | None:
        link = self._link_factory(key, target.ws_url, self._on_link_closed)
        try:
            await link.connect()
        except ConnectionUnavailable as e:
            logger.info("Connect failed for %s: %s", key, e)
            return None
        record = ConnectionRecord(id=key, link=link, title=target.title, url=target.url)
        self._connections[key] = record
        return record

    async def _inject(self, record: ConnectionRecord) -> None:
        s = self._settings
        try:
            if not record.injected:
                script = self._payload_loader()
                # First injection is large; give it the long timeout.
                await record.link.evaluate(script, timeout=s.inject_timeout_s)
                record.injected = True
                logger.info("Payload injected into %s", record.id)
            await record.link.evaluate(payload.start_expr(self._start_config()), timeout=s.eval_timeout_s)
        except (OSError, ValueError, QueuePilotError) as e:
            logger.warning("Injection failed for %s: %s", record.id, e)

    # ---- send ----

    async def _probe(self, record: ConnectionRecord) -> Probe:
        try:
            value = await record.link.evaluate(payload.probe_expr(), timeout=self._settings.eval_timeout_s)
        except QueuePilotError as e:
            logger.debug("Probe failed for %s: %s", record.id, e)
            return Probe(record, False, False, 0.0)

        parsed = payload.parse_json_value(value)
        if not isinstance(parsed, dict):
            return Probe(record, False, False, 0.0)
        return Probe(
            record,
            has_input=bool(parsed.get("hasInput")),
            has_agent_panel=bool(parsed.get("hasAgentPanel")),
            score=_as_score(parsed.get("score")),
        )

    async def send_prompt(self, text: str, target_conversation: str = "") -> SendResult:
        """Deliver text to the single best-ranked connection."""
        if not text:
            return SendResult.unconfirmed("empty prompt")
        if self._shared.standby:
            return SendResult.unconfirmed("standby")

        records = self._live_records()
        if not records:
            logger.warning("No CDP connections available, cannot send prompt")
            return SendResult.unconfirmed("no connections")

        probes = [await self._probe(r) for r in records]
        ranked = rank_candidates(probes, self._settings.workspace_name)
        if not ranked:
            logger.info("No connection reports a prompt input (%d probed)", len(probes))
            return SendResult.unconfirmed("no prompt input")

        best = ranked[0]
        logger.info(
            "Sending prompt to %s (panel=%s, score=%s)%s: %.50r",
            best.record.id,
            best.has_agent_panel,
            best.score,
            f" target={target_conversation!r}" if target_conversation else "",
            text,
        )

        try:
            value = await best.record.link.evaluate(
                payload.send_expr(text, target_conversation),
                timeout=self._settings.send_timeout_s,
            )
        except QueuePilotError as e:
            logger.warning("Send evaluation failed on %s: %s", best.record.id, e)
            return SendResult.protocol_error(str(e))

        parsed = payload.parse_json_value(value)
        if isinstance(parsed, dict) and parsed.get("ok"):
            logger.info("Prompt sent via %s", parsed.get("method"))
            return SendResult.confirmed(1)

        if isinstance(parsed, dict):
            reason = str(parsed.get("error") or "unknown error")
        else:
            reason = str(value or "no result")
        logger.info("Prompt NOT sent on %s: %s", best.record.id, reason)
        return SendResult.unconfirmed(reason)

    # ---- best-effort reads ----

    async def _eval_each(self, expression: str) -> list[tuple[ConnectionRecord, Any]]:
        out: list[tuple[ConnectionRecord, Any]] = []
        for record in self._live_records():
            try:
                value = await record.link.evaluate(expression, timeout=self._settings.eval_timeout_s)
            except QueuePilotError as e:
                logger.debug("Evaluation failed on %s: %s", record.id, e)
                continue
            out.append((record, value))
        return out

    async def get_stats(self) -> ClickStats:
        stats = ClickStats()
        for _, value in await self._eval_each(payload.stats_expr()):
            parsed = payload.parse_json_value(value)
            if isinstance(parsed, dict):
                stats.add(parsed)
        return stats

    async def reset_stats(self) -> ClickStats:
        stats = ClickStats()
        for _, value in await self._eval_each(payload.reset_stats_expr()):
            parsed = payload.parse_json_value(value)
            if isinstance(parsed, dict):
                stats.add(parsed)
        return stats

    async def get_away_actions(self) -> int:
        total = 0
        for _, value in await self._eval_each(payload.away_actions_expr()):
            try:
                total += int(value or 0)
            except (TypeError, ValueError):
                continue
        return total

    async def set_focus_state(self, focused: bool) -> None:
        await self._eval_each(payload.focus_expr(focused))

    async def get_conversations(self) -> list[str]:
        names: dict[str, None] = {}
        for _, value in await self._eval_each(payload.tab_names_expr()):
            parsed = payload.parse_json_value(value)
            if isinstance(parsed, list):
                for name in parsed:
                    if isinstance(name, str) and name:
                        names.setdefault(name, None)
        return list(names)

    async def get_active_conversation(self) -> str:
        for record in self._live_records():
            try:
                value = await record.link.evaluate(payload.active_tab_expr(), timeout=self._settings.eval_timeout_s)
            except QueuePilotError:
                continue
            if isinstance(value, str) and value.strip():
                return value.strip()
        return ""

    async def evaluate_all(self, expression: str) -> Any:
        """Debug helper: evaluate everywhere, return the first non-null value."""
        result: Any = None
        for _, value in await self._eval_each(expression):
            if result is None and value is not None:
                result = value
        return result

    # ---- shutdown ----

    async def stop(self) -> None:
        records = list(self._connections.values())
        self._connections.clear()
        for record in records:
            if record.link.is_open:
                try:
                    await record.link.evaluate(payload.stop_expr(), timeout=self._settings.eval_timeout_s)
                except QueuePilotError as e:
                    logger.debug("Remote stop failed on %s: %s", record.id, e)
            await record.link.close()
        if records:
            logger.info("Connection pool stopped (%d connection(s) closed)", len(records))
