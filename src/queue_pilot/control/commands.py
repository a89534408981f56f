# src/queue_pilot/control/commands.py

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import cast

from ..core.state import AppState
from ..scheduler.models import ControlResult, DispatchOutcome, ExecutionMode, StartSource

CommandEmitter = Callable[[str], None]
CommandHandler2 = Callable[[AppState, list[str]], Awaitable[str]]
CommandHandler3 = Callable[[AppState, list[str], CommandEmitter | None], Awaitable[str]]
CommandHandler = CommandHandler2 | CommandHandler3

logger = logging.getLogger(__name__)


class CommandRegistry:
    """Slash-command registry used by the console (/start, /status, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    async def handle(
        self,
        state: AppState,
        line: str,
        emit: CommandEmitter | None = None,
    ) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            nparams = len(inspect.signature(handler).parameters)
        except Exception:
            nparams = 3

        if nparams >= 3:
            h3 = cast(CommandHandler3, handler)
            return await h3(state, args, emit)

        h2 = cast(CommandHandler2, handler)
        return await h2(state, args)

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


def _reply(result: ControlResult, ok_text: str) -> str:
    if result.accepted:
        return ok_text
    return f"Not done: {result.reason}."


async def cmd_help(state: AppState, args: list[str]) -> str:
    return registry.build_help()


async def cmd_start(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    if emit:
        emit("[queue] Starting (syncing connections first)...")
    result = await state.scheduler.start(StartSource.MANUAL)
    return _reply(result, f"Queue started: {result.reason}.")


async def cmd_pause(state: AppState, args: list[str]) -> str:
    return _reply(state.scheduler.pause(), "Queue paused.")


async def cmd_resume(state: AppState, args: list[str]) -> str:
    return _reply(await state.scheduler.resume(), "Queue resumed.")


async def cmd_skip(state: AppState, args: list[str]) -> str:
    result = await state.scheduler.skip()
    return _reply(result, f"Skipped ({result.reason}).")


async def cmd_stop(state: AppState, args: list[str]) -> str:
    result = state.scheduler.stop()
    return "Queue stopped." if result.accepted else "Queue is not running (nothing to do)."


async def cmd_reset(state: AppState, args: list[str]) -> str:
    return _reply(state.scheduler.reset(), "Queue reset and prompt list cleared.")


async def cmd_status(state: AppState, args: list[str]) -> str:
    s = state.scheduler.status()
    position = f"{min(s['queue_index'] + 1, s['queue_length'])}/{s['queue_length']}" if s["queue_length"] else "-"
    lines = [
        "Status:",
        f"  Automation: {'ON' if s['enabled'] else 'OFF'}{' (standby)' if s['standby'] else ''}",
        f"  Mode: {s['mode']} ({s['completion_policy']})",
        f"  Queue: {s['state']} {position}",
        f"  Current: {s['current_label'] or '-'}{' (sent)' if s['item_dispatched'] else ''}",
        f"  Quota exhausted: {'yes' if s['is_quota_exhausted'] else 'no'}",
        f"  Target conversation: {s['target_conversation'] or 'current'}",
        f"  Connections: {state.pool.connection_count}",
        f"  Stored prompts: {len(state.store.list_prompts())}",
    ]
    return "\n".join(lines)


async def cmd_history(state: AppState, args: list[str]) -> str:
    history = state.scheduler.history()
    if not history:
        return "No prompts sent yet."
    lines = ["Prompt history (oldest first):"]
    for h in history[-20:]:
        lines.append(f"  [{h['time_ago']}] ({h['conversation']}) {h['text']}")
    return "\n".join(lines)


async def cmd_target(state: AppState, args: list[str]) -> str:
    """
    /target          -> list conversations
    /target <name>   -> send to that conversation
    /target current  -> send to whatever tab is active
    """
    if not args:
        names = await state.pool.get_conversations()
        current = state.shared.target_conversation or "current"
        if not names:
            return f"Target: {current}. No conversations reported by the targets."
        return f"Target: {current}. Known conversations: {', '.join(names)}"

    name = " ".join(args)
    state.scheduler.set_target_conversation("" if name.lower() == "current" else name)
    return f"Target conversation set to: {state.shared.target_conversation or 'current'}."


async def cmd_quota(state: AppState, args: list[str]) -> str:
    """
    /quota            -> show gate state
    /quota exhausted  -> mark quota exhausted
    /quota available  -> mark quota available (may re-send the current item)
    """
    if not args:
        return f"Quota exhausted: {'yes' if state.gate.exhausted else 'no'}."

    arg = args[0].lower()
    if arg in ("exhausted", "on", "1", "true", "yes"):
        await state.gate.set_exhausted(True)
        return "Quota marked exhausted."
    if arg in ("available", "off", "0", "false", "no"):
        reaction = await state.gate.set_exhausted(False)
        return f"Quota marked available ({reaction.value})."
    return "Usage: /quota exhausted | /quota available."


async def cmd_send(state: AppState, args: list[str]) -> str:
    text = " ".join(args).strip()
    if not text:
        return "Usage: /send <prompt text>."
    outcome = await state.scheduler.send_prompt(text)
    if outcome == DispatchOutcome.DELIVERED:
        return "Prompt sent."
    return f"Prompt not sent ({outcome.value})."


async def cmd_prompts(state: AppState, args: list[str]) -> str:
    """
    /prompts             -> list stored prompts
    /prompts add <text>  -> append a prompt
    /prompts clear       -> remove all prompts
    """
    if not args:
        prompts = state.store.list_prompts()
        if not prompts:
            return "Prompt list is empty. Use /prompts add <text>."
        return "\n".join(["Prompts:"] + [f"  {i}. {p}" for i, p in enumerate(prompts, start=1)])

    sub = args[0].lower()
    if sub == "add":
        text = " ".join(args[1:]).strip()
        if not text:
            return "Usage: /prompts add <text>."
        count = state.store.add_prompt(text)
        return f"Prompt added ({count} total)."
    if sub == "clear":
        state.store.clear_prompts()
        return "Prompt list cleared."
    return "Usage: /prompts | /prompts add <text> | /prompts clear."


async def cmd_mode(state: AppState, args: list[str]) -> str:
    """
    /mode                  -> show mode
    /mode queue|interval|daily [value]
    /mode policy consume|loop
    """
    cfg = state.scheduler.config()
    if not args:
        return f"Mode: {cfg.mode.value} (value={cfg.value}), completion policy: {cfg.completion_policy.value}."

    sub = args[0].lower()
    if sub == "policy":
        if len(args) < 2 or args[1].lower() not in ("consume", "loop"):
            return "Usage: /mode policy consume|loop."
        state.store.update_schedule({"completion_policy": args[1].lower()})
        return f"Completion policy set to {args[1].lower()}."

    if sub not in {m.value for m in ExecutionMode}:
        return "Usage: /mode queue|interval|daily [value] | /mode policy consume|loop."

    changes: dict[str, object] = {"mode": sub}
    if sub != ExecutionMode.QUEUE:
        changes["enabled"] = True
    if len(args) > 1:
        changes["value"] = args[1]
    state.store.update_schedule(changes)
    return f"Mode set to {sub}."


async def cmd_stats(state: AppState, args: list[str]) -> str:
    if args and args[0].lower() == "reset":
        stats = await state.pool.reset_stats()
        state.monitor.counters_reset(stats.clicks)
        return f"Stats reset (had {stats.clicks} click(s), {stats.blocked} blocked)."
    stats = await state.pool.get_stats()
    week = state.collector.totals()
    return (
        "Stats:\n"
        f"  Clicks: {stats.clicks}\n"
        f"  Blocked: {stats.blocked}\n"
        f"  File edits: {stats.file_edits}\n"
        f"  Terminal commands: {stats.terminal_commands}\n"
        f"This week: {week['clicks_this_week']} click(s), {week['blocked_this_week']} blocked, "
        f"{week['sessions_this_week']} session(s), ~{week['time_saved']} saved"
    )


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("start", cmd_start, help_text="Start the prompt queue.")
registry.register("pause", cmd_pause, help_text="Pause queue progression.")
registry.register("resume", cmd_resume, help_text="Resume a paused queue.")
registry.register("skip", cmd_skip, help_text="Skip to the next queue item.")
registry.register("stop", cmd_stop, help_text="Stop the queue.")
registry.register("reset", cmd_reset, help_text="Stop the queue and clear the prompt list.")
registry.register("status", cmd_status, help_text="Show queue and connection status.")
registry.register("history", cmd_history, help_text="Show recently sent prompts.")
registry.register("target", cmd_target, help_text="Show or set the target conversation: /target [name|current].")
registry.register("quota", cmd_quota, help_text="Show or set quota state: /quota [exhausted|available].")
registry.register("send", cmd_send, help_text="Send one prompt now: /send <text>.")
registry.register("prompts", cmd_prompts, help_text="Manage prompts: /prompts [add <text>|clear].")
registry.register("mode", cmd_mode, help_text="Show or set mode: /mode queue|interval|daily [value].")
registry.register("stats", cmd_stats, help_text="Show click stats: /stats [reset].")
