# src/queue_pilot/core/errors.py

from __future__ import annotations

"""
Error taxonomy.

Quota exhaustion and lease loss are not here: they are states
(SharedState.quota_exhausted / SharedState.standby), not failures.
"""


class QueuePilotError(Exception):
    """Base class for all project errors."""


class ConnectionUnavailable(QueuePilotError):
    """No eligible debug target, or the discovery endpoint is down. Retried on next refresh."""


class LinkClosed(QueuePilotError):
    """The transport behind a ProtocolLink is gone."""


class EvalError(QueuePilotError):
    """Runtime.evaluate failed: protocol error or an exception thrown by the remote expression."""


class EvalTimeout(EvalError):
    """No response with the matching correlation id arrived in time. The link stays up."""


class DeliveryUnconfirmed(QueuePilotError):
    """No connection accepted a prompt, even after a forced resync and one retry."""


class QuotaClientError(QueuePilotError):
    """Quota endpoint unreachable or returned something we cannot parse."""
