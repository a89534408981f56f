# src/queue_pilot/cdp/payload.py

from __future__ import annotations

"""
JavaScript expressions evaluated in debug targets.

The injected payload exposes a handful of window.__autoAccept* entry points.
Everything here is an opaque RPC surface: values go in through json.dumps and
structured answers come back as JSON strings, so nothing relies on how the
protocol serializes remote objects.
"""

import json
import logging
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


def load_payload(path: Path) -> str:
    """Read the automation payload script. Raises OSError if it is missing."""
    return Path(path).read_text(encoding="utf-8")


def start_expr(config: dict[str, Any]) -> str:
    return f"if(window.__autoAcceptStart) window.__autoAcceptStart({json.dumps(config)})"


def stop_expr() -> str:
    return "if(window.__autoAcceptStop) window.__autoAcceptStop()"


def probe_expr() -> str:
    # Falls back to a plain DOM scan when the payload is not injected yet.
    return """(function(){
    try {
        if (typeof window !== "undefined" && window.__autoAcceptProbePrompt) {
            return JSON.stringify(window.__autoAcceptProbePrompt());
        }
        const editables = document.querySelectorAll('[contenteditable="true"]');
        const textareas = document.querySelectorAll('textarea');
        const any = (editables && editables.length > 0) || (textareas && textareas.length > 0);
        return JSON.stringify({ hasInput: !!any, score: any ? 1 : 0 });
    } catch (e) {
        return JSON.stringify({ hasInput: false, score: 0, error: (e && e.message) ? e.message : String(e) });
    }
})()"""


def send_expr(text: str, target_conversation: str = "") -> str:
    t = json.dumps(text)
    conv = json.dumps(target_conversation or "")
    return f"""(async function(){{
    const out = {{ ok: false, method: null, error: null }};
    try {{
        if (typeof window !== "undefined" && window.__autoAcceptSendPromptToConversation) {{
            const ok = await window.__autoAcceptSendPromptToConversation({t}, {conv});
            out.ok = !!ok;
            out.method = 'sendPromptToConversation';
            if (!out.ok) out.error = 'sendPromptToConversation returned falsy';
            return JSON.stringify(out);
        }}
        if (typeof window !== "undefined" && window.__autoAcceptSendPrompt) {{
            const ok = await window.__autoAcceptSendPrompt({t});
            out.ok = !!ok;
            out.method = 'sendPrompt';
            if (!out.ok) out.error = 'sendPrompt returned falsy';
            return JSON.stringify(out);
        }}
        out.error = 'no send functions found';
        return JSON.stringify(out);
    }} catch (e) {{
        out.error = (e && e.message) ? e.message : String(e);
        return JSON.stringify(out);
    }}
}})()"""


def stats_expr() -> str:
    return "JSON.stringify(window.__autoAcceptGetStats ? window.__autoAcceptGetStats() : {})"


def reset_stats_expr() -> str:
    return """(function(){
    if (typeof window !== "undefined" && window.__autoAcceptResetStats) {
        return JSON.stringify(window.__autoAcceptResetStats());
    }
    return JSON.stringify({ clicks: 0, blocked: 0 });
})()"""


def away_actions_expr() -> str:
    return """(function(){
    if (typeof window !== "undefined" && window.__autoAcceptGetAwayActions) {
        return window.__autoAcceptGetAwayActions();
    }
    return 0;
})()"""


def focus_expr(focused: bool) -> str:
    return f"if(window.__autoAcceptSetFocusState) window.__autoAcceptSetFocusState({json.dumps(bool(focused))})"


def tab_names_expr() -> str:
    return "JSON.stringify(window.__autoAcceptState ? window.__autoAcceptState.tabNames : [])"


def active_tab_expr() -> str:
    return """(function(){
    try {
        if (typeof window !== "undefined" && window.__autoAcceptGetActiveTabName) {
            return window.__autoAcceptGetActiveTabName() || '';
        }
        return '';
    } catch (e) {
        return '';
    }
})()"""


def parse_json_value(value: Any) -> Any:
    """Decode a JSON-string answer; anything undecodable becomes None."""
    if not isinstance(value, str):
        return None
    try:
        return json.loads(value)
    except ValueError:
        logger.debug("Undecodable payload answer: %.80s", value)
        return None
