# tests/fakes.py

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any

from queue_pilot.cdp.discovery import TargetInfo
from queue_pilot.core.errors import ConnectionUnavailable, EvalError, EvalTimeout
from queue_pilot.core.results import ClickStats, SendResult

PAYLOAD_SCRIPT = "/*payload*/ window.__autoAcceptStart = function(){};"


class FakeClock:
    """Manual clock: monotonic and wall time move together, only via advance()."""

    def __init__(self, start: float = 1000.0, wall_offset: float = 1_700_000_000.0) -> None:
        self.now = start
        self._wall_offset = wall_offset

    def monotonic(self) -> float:
        return self.now

    def time(self) -> float:
        return self._wall_offset + self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass(slots=True)
class FakeTransport:
    """
    Scripted PromptTransport.

    Each send pops the next result from `results` (confirmed once they run out).
    If `gate` is set, sends block until the event is set.
    `refresh_gate` does the same for refresh; `send_error` makes every send raise.
    """

    results: list[SendResult] = field(default_factory=list)
    sent: list[tuple[str, str]] = field(default_factory=list)
    refreshes: list[bool] = field(default_factory=list)
    clicks: int = 0
    stats_reads: int = 0
    stats_error: Exception | None = None
    conversations: list[str] = field(default_factory=list)
    gate: asyncio.Event | None = None
    refresh_gate: asyncio.Event | None = None
    send_error: Exception | None = None

    async def refresh(self, *, force: bool = False) -> int:
        self.refreshes.append(force)
        if self.refresh_gate is not None:
            await self.refresh_gate.wait()
        return 1

    async def send_prompt(self, text: str, target_conversation: str = "") -> SendResult:
        self.sent.append((text, target_conversation))
        if self.send_error is not None:
            raise self.send_error
        if self.gate is not None:
            await self.gate.wait()
        if self.results:
            return self.results.pop(0)
        return SendResult.confirmed(1)

    async def get_stats(self) -> ClickStats:
        self.stats_reads += 1
        if self.stats_error is not None:
            raise self.stats_error
        return ClickStats(clicks=self.clicks)

    async def get_conversations(self) -> list[str]:
        return list(self.conversations)

    @property
    def sent_texts(self) -> list[str]:
        return [text for text, _ in self.sent]


@dataclass(slots=True)
class MemoryTaskSource:
    prompts: list[str] = field(default_factory=list)
    schedule: dict[str, Any] = field(default_factory=dict)

    def list_prompts(self) -> list[str]:
        return list(self.prompts)

    def consume_first(self) -> str | None:
        return self.prompts.pop(0) if self.prompts else None

    def clear_prompts(self) -> None:
        self.prompts.clear()

    def get_schedule(self) -> dict[str, Any]:
        return dict(self.schedule)


@dataclass(slots=True)
class RecordingNotifier:
    messages: list[tuple[str, str]] = field(default_factory=list)

    def info(self, message: str) -> None:
        self.messages.append(("info", message))

    def warning(self, message: str) -> None:
        self.messages.append(("warning", message))

    def error(self, message: str) -> None:
        self.messages.append(("error", message))

    def of(self, level: str) -> list[str]:
        return [m for lvl, m in self.messages if lvl == level]


# ---- remote side ----


class FakeWebSocket:
    """
    In-memory stand-in for a websockets client connection.

    `responder(msg)` may return frames to push back for each sent request.
    push(None) / close() end the incoming stream like a dropped transport.
    """

    def __init__(self, responder=None) -> None:
        self.sent: list[dict[str, Any]] = []
        self.responder = responder
        self.closed = False
        self._inbox: asyncio.Queue[str | None] = asyncio.Queue()

    def push(self, frame: Any) -> None:
        if frame is None or isinstance(frame, str):
            self._inbox.put_nowait(frame)
        else:
            self._inbox.put_nowait(json.dumps(frame))

    async def send(self, data: str) -> None:
        msg = json.loads(data)
        self.sent.append(msg)
        if self.responder is not None:
            for frame in self.responder(msg) or []:
                self.push(frame)

    def __aiter__(self) -> FakeWebSocket:
        return self

    async def __anext__(self) -> str:
        frame = await self._inbox.get()
        if frame is None:
            raise StopAsyncIteration
        return frame

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._inbox.put_nowait(None)


def value_reply(msg: dict[str, Any], value: Any) -> dict[str, Any]:
    return {"id": msg["id"], "result": {"result": {"type": type(value).__name__, "value": value}}}


@dataclass(slots=True)
class FakeRemote:
    """What one debug target answers to the payload's entry points."""

    has_input: bool = True
    has_agent_panel: bool = False
    score: float = 1.0
    send_ok: bool = True
    send_raises: bool = False
    clicks: int = 0
    blocked: int = 0
    away_actions: int = 0
    focused: bool | None = None
    tab_names: list[str] = field(default_factory=list)
    fail_connect: bool = False
    fail_inject: bool = False


class FakeLink:
    """ProtocolLink double driven by a FakeRemote."""

    def __init__(self, target_id: str, ws_url: str, on_close, remote: FakeRemote) -> None:
        self.target_id = target_id
        self.ws_url = ws_url
        self._on_close = on_close
        self.remote = remote
        self.is_open = False
        self.evaluated: list[str] = []

    async def connect(self) -> FakeLink:
        if self.remote.fail_connect:
            raise ConnectionUnavailable(f"cannot connect to {self.target_id}")
        self.is_open = True
        return self

    async def evaluate(self, expression: str, timeout: float = 2.0) -> Any:
        self.evaluated.append(expression)
        r = self.remote
        if expression.startswith("/*payload*/"):
            if r.fail_inject:
                raise EvalTimeout("payload evaluation timed out")
            return None
        if "__autoAcceptSendPromptToConversation" in expression:
            if r.send_raises:
                raise EvalError("Target closed")
            if r.send_ok:
                return json.dumps({"ok": True, "method": "sendPromptToConversation", "error": None})
            return json.dumps({"ok": False, "method": None, "error": "no send functions found"})
        if "__autoAcceptProbePrompt" in expression:
            return json.dumps({"hasInput": r.has_input, "hasAgentPanel": r.has_agent_panel, "score": r.score})
        if "__autoAcceptGetAwayActions" in expression:
            return r.away_actions
        if "__autoAcceptSetFocusState" in expression:
            r.focused = expression.rstrip(")").endswith("true")
            return None
        if "__autoAcceptResetStats" in expression:
            clicks, blocked, r.clicks, r.blocked = r.clicks, r.blocked, 0, 0
            return json.dumps({"clicks": clicks, "blocked": blocked})
        if "__autoAcceptGetStats" in expression:
            return json.dumps({"clicks": r.clicks, "blocked": 1, "fileEdits": 2, "terminalCommands": 0})
        if "tabNames" in expression:
            return json.dumps(r.tab_names)
        return None

    def sends(self) -> list[str]:
        return [e for e in self.evaluated if "__autoAcceptSendPromptToConversation" in e]

    async def close(self) -> None:
        if self.is_open:
            self.is_open = False
            self._on_close(self)


class FakeTargets:
    """Discovery and link factory over in-memory debug targets."""

    def __init__(self, port: int = 9004) -> None:
        self.port = port
        self.targets: list[TargetInfo] = []
        self.remotes: dict[str, FakeRemote] = {}
        self.links: dict[str, FakeLink] = {}
        self.discoveries = 0
        self.discovery_error: Exception | None = None

    def add(self, tid: str, title: str = "", **remote: Any) -> FakeRemote:
        self.targets.append(
            TargetInfo(id=tid, type="page", title=title or tid, url=f"vscode-file://{tid}", ws_url=f"ws://x/{tid}")
        )
        self.remotes[f"{self.port}:{tid}"] = FakeRemote(**remote)
        return self.remotes[f"{self.port}:{tid}"]

    async def discover(self) -> list[TargetInfo]:
        self.discoveries += 1
        if self.discovery_error is not None:
            raise self.discovery_error
        return list(self.targets)

    def link(self, conn_id: str, ws_url: str, on_close) -> FakeLink:
        link = FakeLink(conn_id, ws_url, on_close, self.remotes[conn_id])
        self.links[conn_id] = link
        return link
