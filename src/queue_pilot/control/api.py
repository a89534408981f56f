# src/queue_pilot/control/api.py

from __future__ import annotations

"""
Action dispatcher behind the control server (and usable from tests/scripts).

Every action takes (state, params) and returns a JSON-able dict with a
"success" flag. Unknown actions and handler failures come back as
{"success": False, "error": ...} rather than exceptions.
"""

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from ..core.state import AppState
from ..scheduler.models import ControlResult, DispatchOutcome, StartSource

logger = logging.getLogger(__name__)

ActionHandler = Callable[[AppState, dict[str, Any]], Awaitable[dict[str, Any]]]

_ACTIONS: dict[str, ActionHandler] = {}


def action(name: str) -> Callable[[ActionHandler], ActionHandler]:
    def deco(fn: ActionHandler) -> ActionHandler:
        _ACTIONS[name] = fn
        return fn

    return deco


def available_actions() -> list[str]:
    return sorted(_ACTIONS)


def _from_control(result: ControlResult) -> dict[str, Any]:
    out: dict[str, Any] = {"success": result.accepted, "reason": result.reason}
    if not result.accepted:
        out["error"] = result.reason
    return out


async def handle_action(state: AppState, name: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
    handler = _ACTIONS.get(name)
    if handler is None:
        return {"success": False, "error": f"Unknown action: {name}"}
    try:
        return await handler(state, params or {})
    except (KeyError, TypeError, ValueError) as e:
        return {"success": False, "error": str(e)}
    except Exception as e:
        logger.exception("Control action %s failed", name)
        return {"success": False, "error": str(e) or e.__class__.__name__}


# ---- master switch ----


@action("getEnabled")
async def _get_enabled(state: AppState, params: dict[str, Any]) -> dict[str, Any]:
    return {"success": True, "enabled": state.shared.enabled}


@action("setEnabled")
async def _set_enabled(state: AppState, params: dict[str, Any]) -> dict[str, Any]:
    enabled = bool(params["enabled"])
    was = state.shared.enabled
    state.shared.enabled = enabled
    if not enabled:
        await state.pool.stop()
    elif not was:
        state.collector.start_session()
    logger.info("Automation %s via control surface", "enabled" if enabled else "disabled")
    return {"success": True, "enabled": enabled}


@action("toggle")
async def _toggle(state: AppState, params: dict[str, Any]) -> dict[str, Any]:
    return await _set_enabled(state, {"enabled": not state.shared.enabled})


# ---- queue control ----


@action("startQueue")
async def _start_queue(state: AppState, params: dict[str, Any]) -> dict[str, Any]:
    return _from_control(await state.scheduler.start(StartSource.CONTROL))


@action("pauseQueue")
async def _pause_queue(state: AppState, params: dict[str, Any]) -> dict[str, Any]:
    return _from_control(state.scheduler.pause())


@action("resumeQueue")
async def _resume_queue(state: AppState, params: dict[str, Any]) -> dict[str, Any]:
    return _from_control(await state.scheduler.resume())


@action("skipPrompt")
async def _skip_prompt(state: AppState, params: dict[str, Any]) -> dict[str, Any]:
    return _from_control(await state.scheduler.skip())


@action("stopQueue")
async def _stop_queue(state: AppState, params: dict[str, Any]) -> dict[str, Any]:
    result = state.scheduler.stop()
    # Stopping an idle queue is fine, not a failure.
    return {"success": True, "stopped": result.accepted, "reason": result.reason}


@action("resetQueue")
async def _reset_queue(state: AppState, params: dict[str, Any]) -> dict[str, Any]:
    return _from_control(state.scheduler.reset())


@action("getQueueStatus")
async def _queue_status(state: AppState, params: dict[str, Any]) -> dict[str, Any]:
    return {"success": True, "status": state.scheduler.status()}


@action("getPromptHistory")
async def _history(state: AppState, params: dict[str, Any]) -> dict[str, Any]:
    return {"success": True, "history": state.scheduler.history()}


@action("sendPrompt")
async def _send_prompt(state: AppState, params: dict[str, Any]) -> dict[str, Any]:
    text = str(params.get("prompt") or "").strip()
    if not text:
        return {"success": False, "error": "No prompt provided"}
    outcome = await state.scheduler.send_prompt(text)
    return {"success": outcome == DispatchOutcome.DELIVERED, "outcome": outcome.value}


# ---- configuration store ----


@action("getSchedule")
async def _get_schedule(state: AppState, params: dict[str, Any]) -> dict[str, Any]:
    schedule = state.store.get_schedule()
    schedule["prompts"] = state.store.list_prompts()
    return {"success": True, "schedule": schedule}


@action("updateSchedule")
async def _update_schedule(state: AppState, params: dict[str, Any]) -> dict[str, Any]:
    changes = dict(params)
    prompts = changes.pop("prompts", None)
    if prompts is not None:
        if not isinstance(prompts, list):
            raise ValueError("prompts must be a list of strings")
        state.store.set_prompts(str(p) for p in prompts)
    if changes:
        state.store.update_schedule(changes)
    return await _get_schedule(state, {})


@action("getPrompts")
async def _get_prompts(state: AppState, params: dict[str, Any]) -> dict[str, Any]:
    return {"success": True, "prompts": state.store.list_prompts()}


@action("setPrompts")
async def _set_prompts(state: AppState, params: dict[str, Any]) -> dict[str, Any]:
    prompts = params["prompts"]
    if not isinstance(prompts, list):
        raise ValueError("prompts must be a list of strings")
    count = state.store.set_prompts(str(p) for p in prompts)
    return {"success": True, "count": count}


@action("addPrompt")
async def _add_prompt(state: AppState, params: dict[str, Any]) -> dict[str, Any]:
    count = state.store.add_prompt(str(params.get("prompt") or ""))
    return {"success": True, "count": count}


# ---- conversations ----


@action("getConversations")
async def _conversations(state: AppState, params: dict[str, Any]) -> dict[str, Any]:
    return {
        "success": True,
        "conversations": await state.pool.get_conversations(),
        "active": await state.pool.get_active_conversation(),
    }


@action("setTargetConversation")
async def _set_target(state: AppState, params: dict[str, Any]) -> dict[str, Any]:
    state.scheduler.set_target_conversation(str(params.get("conversationId") or ""))
    return {"success": True, "target": state.shared.target_conversation}


# ---- quota ----


@action("setQuotaExhausted")
async def _set_quota(state: AppState, params: dict[str, Any]) -> dict[str, Any]:
    reaction = await state.gate.set_exhausted(bool(params["exhausted"]))
    return {"success": True, "exhausted": state.gate.exhausted, "reaction": reaction.value}


@action("getQuotaState")
async def _quota_state(state: AppState, params: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {"success": True, "exhausted": state.gate.exhausted}
    client = state.quota_client
    out["client_configured"] = bool(client and client.configured)
    return out


# ---- connections / stats ----


@action("getStats")
async def _stats(state: AppState, params: dict[str, Any]) -> dict[str, Any]:
    stats = await state.pool.get_stats()
    return {
        "success": True,
        "stats": stats.as_dict(),
        "away_actions": await state.pool.get_away_actions(),
        "totals": state.collector.totals(),
    }


@action("resetStats")
async def _reset_stats(state: AppState, params: dict[str, Any]) -> dict[str, Any]:
    stats = await state.pool.reset_stats()
    state.monitor.counters_reset(stats.clicks)
    return {"success": True, "stats": stats.as_dict()}


@action("setFocusState")
async def _set_focus_state(state: AppState, params: dict[str, Any]) -> dict[str, Any]:
    """Window focus changed; coming back reports what was handled meanwhile."""
    focused = bool(params["focused"])
    await state.pool.set_focus_state(focused)
    away = await state.collector.check_away_actions() if focused else 0
    return {"success": True, "focused": focused, "away_actions": away}


@action("getCDPConnections")
async def _connections(state: AppState, params: dict[str, Any]) -> dict[str, Any]:
    return {"success": True, "connections": state.pool.connection_summaries()}


@action("refreshConnections")
async def _refresh(state: AppState, params: dict[str, Any]) -> dict[str, Any]:
    count = await state.pool.refresh(force=True)
    return {"success": True, "count": count}


@action("evaluateInBrowser")
async def _evaluate(state: AppState, params: dict[str, Any]) -> dict[str, Any]:
    expression = str(params.get("expression") or params.get("code") or "")
    if not expression:
        return {"success": False, "error": "No expression provided"}
    return {"success": True, "result": await state.pool.evaluate_all(expression)}


@action("getLockState")
async def _lock_state(state: AppState, params: dict[str, Any]) -> dict[str, Any]:
    return {"success": True, "lock": state.coordinator.describe()}


@action("getFullState")
async def _full_state(state: AppState, params: dict[str, Any]) -> dict[str, Any]:
    return {
        "success": True,
        "status": state.scheduler.status(),
        "history": state.scheduler.history(),
        "lock": state.coordinator.describe(),
        "connections": state.pool.connection_summaries(),
        "notices": [{"level": n.level, "message": n.message} for n in state.notifier.recent],
    }
