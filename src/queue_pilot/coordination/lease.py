# src/queue_pilot/coordination/lease.py

from __future__ import annotations

"""
Single-driver lease across concurrently running instances.

Every instance ticks on the heartbeat interval. Whoever finds the record empty,
its own, or stale writes a fresh heartbeat and drives the targets; everyone else
goes to standby. The record is shared between processes, so it carries wall
clock milliseconds rather than a per-process monotonic reading.
"""

import json
import logging
import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

from ..core.clock import SystemClock
from ..core.ports import Clock, LeaseStore
from ..core.state import SharedState

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class LockRecord:
    owner_id: str
    last_heartbeat_ms: int

    @classmethod
    def from_dict(cls, raw: Any) -> LockRecord | None:
        if not isinstance(raw, dict):
            return None
        owner = raw.get("owner_id")
        ts = raw.get("last_heartbeat_ms")
        if not isinstance(owner, str) or not owner:
            return None
        try:
            return cls(owner_id=owner, last_heartbeat_ms=int(ts))
        except (TypeError, ValueError):
            return None


class MemoryLeaseStore:
    def __init__(self) -> None:
        self._record: LockRecord | None = None

    def read(self) -> LockRecord | None:
        return self._record

    def write(self, record: LockRecord) -> None:
        self._record = record

    def clear(self) -> None:
        self._record = None


class FileLeaseStore:
    """JSON lock record on disk, replaced atomically on every write."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def read(self) -> LockRecord | None:
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning("Unreadable lock record %s: %s", self.path, e)
            return None
        return LockRecord.from_dict(raw)

    def write(self, record: LockRecord) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(f"{self.path.name}.{os.getpid()}.tmp")
        tmp.write_text(json.dumps(asdict(record)), encoding="utf-8")
        os.replace(tmp, self.path)

    def clear(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass


class InstanceCoordinator:
    def __init__(
        self,
        store: LeaseStore,
        shared: SharedState,
        instance_id: str,
        *,
        stale_after_s: float = 15.0,
        clock: Clock | None = None,
    ) -> None:
        self._store = store
        self._shared = shared
        self.instance_id = instance_id
        self._stale_after_ms = int(stale_after_s * 1000)
        self._clock = clock or SystemClock()

    def _now_ms(self) -> int:
        return int(self._clock.time() * 1000)

    @property
    def is_leader(self) -> bool:
        return not self._shared.standby

    def tick(self) -> bool:
        """Renew or take the lease. Returns True if this instance may drive targets."""
        record = self._store.read()
        now = self._now_ms()

        if (
            record is not None
            and record.owner_id != self.instance_id
            and now - record.last_heartbeat_ms < self._stale_after_ms
        ):
            if not self._shared.standby:
                logger.info("Targets locked by another instance (%s). Standby mode.", record.owner_id)
                self._shared.standby = True
            return False

        if record is not None and record.owner_id != self.instance_id:
            logger.info("Lease of %s is stale, taking over", record.owner_id)

        self._store.write(LockRecord(owner_id=self.instance_id, last_heartbeat_ms=now))
        if self._shared.standby:
            logger.info("Lease acquired. Resuming control.")
            self._shared.standby = False
        return True

    def release(self) -> None:
        record = self._store.read()
        if record is not None and record.owner_id == self.instance_id:
            self._store.clear()
            logger.info("Lease released")

    def describe(self) -> dict[str, Any]:
        record = self._store.read()
        return {
            "instance_id": self.instance_id,
            "standby": self._shared.standby,
            "owner_id": record.owner_id if record else None,
            "last_heartbeat_ms": record.last_heartbeat_ms if record else None,
            "age_ms": self._now_ms() - record.last_heartbeat_ms if record else None,
        }
