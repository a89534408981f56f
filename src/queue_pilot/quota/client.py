# src/queue_pilot/quota/client.py

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

import httpx

from ..core.errors import QuotaClientError

if TYPE_CHECKING:
    from ..scheduler.quota import QuotaGate

logger = logging.getLogger(__name__)

USER_STATUS_PATH = "/exa.language_server_pb.LanguageServerService/GetUserStatus"

# After a connection failure, wait this long before talking to the server again.
_RETRY_AFTER_FAILURE_S = 30.0


@dataclass(slots=True, frozen=True)
class ModelQuota:
    label: str
    model_id: str
    remaining_fraction: float
    exhausted: bool
    reset_time: datetime | None = None

    @property
    def remaining_percentage(self) -> float:
        return self.remaining_fraction * 100.0


@dataclass(slots=True, frozen=True)
class PromptCredits:
    available: float
    monthly: float

    @property
    def remaining_percentage(self) -> float:
        return self.available / self.monthly * 100.0


@dataclass(slots=True, frozen=True)
class QuotaSnapshot:
    models: tuple[ModelQuota, ...] = ()
    prompt_credits: PromptCredits | None = None
    user_name: str = ""
    plan: str = "Unknown"
    taken_at: float = field(default_factory=time.time)

    @property
    def any_exhausted(self) -> bool:
        return any(m.exhausted for m in self.models)

    def lowest(self) -> ModelQuota | None:
        if not self.models:
            return None
        return min(self.models, key=lambda m: (not m.exhausted, m.remaining_fraction))


def _parse_reset_time(raw: Any) -> datetime | None:
    if not raw or not isinstance(raw, str):
        return None
    try:
        dt = datetime.fromisoformat(raw)
    except ValueError:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def _parse_model(raw: dict[str, Any]) -> ModelQuota:
    label = str(raw.get("label") or "")
    model_id = str((raw.get("modelOrAlias") or {}).get("model") or "unknown")

    info = raw.get("quotaInfo")
    if not isinstance(info, dict):
        # No quota info at all is treated as exhausted.
        return ModelQuota(label=label, model_id=model_id, remaining_fraction=0.0, exhausted=True)

    fraction_raw = info.get("remainingFraction")
    try:
        fraction = float(fraction_raw) if fraction_raw is not None else 0.0
    except (TypeError, ValueError):
        fraction = 0.0
    return ModelQuota(
        label=label,
        model_id=model_id,
        remaining_fraction=fraction,
        exhausted=fraction_raw is not None and fraction == 0.0,
        reset_time=_parse_reset_time(info.get("resetTime")),
    )


def parse_user_status(data: Any) -> QuotaSnapshot:
    if not isinstance(data, dict):
        raise QuotaClientError("GetUserStatus returned a non-object payload")

    status = data.get("userStatus") or {}
    plan_status = status.get("planStatus") or {}
    plan_info = plan_status.get("planInfo") or {}

    credits: PromptCredits | None = None
    available = plan_status.get("availablePromptCredits")
    if plan_info and available is not None:
        try:
            monthly_f = float(plan_info.get("monthlyPromptCredits") or 0)
            available_f = float(available)
        except (TypeError, ValueError):
            monthly_f = 0.0
            available_f = 0.0
        if monthly_f > 0:
            credits = PromptCredits(available=available_f, monthly=monthly_f)

    configs = (status.get("cascadeModelConfigData") or {}).get("clientModelConfigs") or []
    models = tuple(_parse_model(m) for m in configs if isinstance(m, dict))

    return QuotaSnapshot(
        models=models,
        prompt_credits=credits,
        user_name=str(status.get("name") or ""),
        plan=str(plan_info.get("planName") or "Unknown"),
    )


class QuotaClient:
    """
    Reads per-model quota from the local language server.

    The server listens on HTTPS with a self-signed certificate on 127.0.0.1, so
    verification is off. Port and CSRF token come from configuration.
    """

    def __init__(
        self,
        port: int,
        csrf_token: str,
        *,
        timeout: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.port = port
        self._csrf_token = csrf_token
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None
        self._retry_at: float | None = None  # monotonic

    @property
    def configured(self) -> bool:
        return self.port > 0 and bool(self._csrf_token)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                verify=False,
                timeout=httpx.Timeout(self._timeout, connect=min(self._timeout, 2.0)),
            )
        return self._client

    async def get_user_status(self) -> QuotaSnapshot:
        if not self.configured:
            raise QuotaClientError("Quota client is not configured (port/CSRF token missing)")

        now = time.monotonic()
        if self._retry_at is not None and now < self._retry_at:
            raise QuotaClientError("Quota server backing off after a connection failure")

        url = f"https://127.0.0.1:{self.port}{USER_STATUS_PATH}"
        body = {"metadata": {"ideName": "antigravity", "extensionName": "antigravity", "locale": "en"}}
        headers = {
            "Content-Type": "application/json",
            "Connect-Protocol-Version": "1",
            "X-Codeium-Csrf-Token": self._csrf_token,
        }

        try:
            resp = await self._get_client().post(url, json=body, headers=headers)
        except httpx.TransportError as e:
            self._retry_at = time.monotonic() + _RETRY_AFTER_FAILURE_S
            raise QuotaClientError(f"Quota server unreachable: {e}") from e

        self._retry_at = None
        if resp.status_code >= 400:
            raise QuotaClientError(f"GetUserStatus failed: HTTP {resp.status_code}")
        try:
            data = resp.json()
        except ValueError as e:
            raise QuotaClientError("Invalid JSON response from quota server") from e

        return parse_user_status(data)

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


async def run_quota_poller(client: QuotaClient, gate: QuotaGate, interval: float) -> None:
    """Poll forever and feed the gate. Failures leave the gate where it is."""
    logger.info("Quota poller started (every %.0fs)", interval)
    while True:
        try:
            snapshot = await client.get_user_status()
        except QuotaClientError as e:
            logger.info("Quota poll failed: %s", e)
        except Exception:
            logger.exception("Quota poll crashed")
        else:
            lowest = snapshot.lowest()
            if lowest is not None:
                logger.debug(
                    "Quota: %d model(s), lowest %s at %.0f%%",
                    len(snapshot.models),
                    lowest.label or lowest.model_id,
                    lowest.remaining_percentage,
                )
            await gate.set_exhausted(snapshot.any_exhausted)

        await asyncio.sleep(interval)
