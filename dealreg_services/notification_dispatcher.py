"""
dealreg_services.notification_dispatcher -- Observer interface for deal transitions.

Responsibility:
    Defines what the coordinator tells the outside world after a transition
    has been committed, and a default dispatcher that records notifications
    as structured log events.

Architecture position:
    Services -- outbound boundary.  Delivery (email, in-app, webhooks) is an
    external collaborator that implements ``NotificationDispatcher``.

Invariants enforced:
    - Dispatchers are informed of committed transitions only; they never
      drive or veto a transition.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Protocol
from uuid import UUID

from dealreg_kernel.domain.approval import ApproverRef
from dealreg_kernel.logging_config import get_logger

logger = get_logger("services.notifications")


class NotificationKind(str, Enum):
    APPROVAL_REQUIRED = "approval_required"
    DEAL_APPROVED = "deal_approved"
    DEAL_REJECTED = "deal_rejected"
    DEAL_ASSIGNED = "deal_assigned"


@dataclass(frozen=True)
class Notification:
    """One outbound notification about a committed deal transition."""

    kind: NotificationKind
    deal_id: UUID
    actor_id: UUID
    recipients: tuple[ApproverRef, ...] = ()
    reason: str | None = None
    step_number: int | None = None
    reseller_id: UUID | None = None


class NotificationDispatcher(Protocol):
    def dispatch(self, notification: Notification) -> None:
        ...


class LoggingNotificationDispatcher:
    """Dispatcher that writes each notification to the structured log."""

    def __init__(self) -> None:
        self.sent: list[Notification] = []

    def dispatch(self, notification: Notification) -> None:
        self.sent.append(notification)
        logger.info(
            "notification_dispatched",
            extra={
                "kind": notification.kind.value,
                "notified_deal_id": str(notification.deal_id),
                "recipient_count": len(notification.recipients),
                "recipients": [str(r.actor_id) for r in notification.recipients],
                "reason": notification.reason,
                "step_number": notification.step_number,
            },
        )
