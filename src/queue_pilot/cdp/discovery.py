# src/queue_pilot/cdp/discovery.py

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from ..core.errors import ConnectionUnavailable

logger = logging.getLogger(__name__)

@dataclass(slots=True, frozen=True)
class TargetInfo:
    id: str
    type: str
    title: str
    url: str
    ws_url: str


def _is_eligible(raw: dict[str, Any], settings_surface_title: str) -> bool:
    if not raw.get("webSocketDebuggerUrl"):
        return False
    title = raw.get("title") or ""
    if settings_surface_title and settings_surface_title in title:
        return False
    return True


def parse_targets(payload: Any, settings_surface_title: str = "") -> list[TargetInfo]:
    """Filter a /json/list response down to targets we may attach to."""
    if not isinstance(payload, list):
        raise ConnectionUnavailable("Discovery returned a non-list payload")

    out: list[TargetInfo] = []
    for raw in payload:
        if not isinstance(raw, dict) or not _is_eligible(raw, settings_surface_title):
            continue
        out.append(
            TargetInfo(
                id=str(raw.get("id") or ""),
                type=str(raw.get("type") or ""),
                title=str(raw.get("title") or ""),
                url=str(raw.get("url") or ""),
                ws_url=str(raw["webSocketDebuggerUrl"]),
            )
        )
    return out


async def list_targets(
    host: str,
    port: int,
    *,
    timeout: float = 0.5,
    settings_surface_title: str = "",
    client: httpx.AsyncClient | None = None,
) -> list[TargetInfo]:
    """
    GET http://host:port/json/list and return eligible debug targets.

    The port is fixed by configuration and never scanned; attaching to whatever
    else happens to expose a debugger on a nearby port is not acceptable.
    """
    url = f"http://{host}:{port}/json/list"
    owns_client = client is None
    if client is None:
        client = httpx.AsyncClient(timeout=timeout)

    try:
        resp = await client.get(url, timeout=timeout)
        resp.raise_for_status()
        payload = resp.json()
    except (httpx.HTTPError, ValueError) as e:
        raise ConnectionUnavailable(f"Discovery at {url} failed: {e}") from e
    finally:
        if owns_client:
            await client.aclose()

    targets = parse_targets(payload, settings_surface_title)
    logger.debug("Discovery at %s: %d eligible target(s)", url, len(targets))
    return targets

