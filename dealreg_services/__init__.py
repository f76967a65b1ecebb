"""
dealreg_services -- Package init and public API.

Responsibility:
    Transaction-owning entry points over the kernel, plus the outbound
    notification interface.  This is the only layer that commits.

Architecture position:
    Services -- orchestration over dealreg_kernel and dealreg_engines.

        dealreg_services/ -> dealreg_kernel/   (allowed)
        dealreg_kernel/   -> dealreg_services/ (FORBIDDEN)
"""

from dealreg_services.coordinator import DealApprovalCoordinator
from dealreg_services.notification_dispatcher import (
    LoggingNotificationDispatcher,
    Notification,
    NotificationDispatcher,
    NotificationKind,
)

__all__ = [
    "DealApprovalCoordinator",
    "LoggingNotificationDispatcher",
    "Notification",
    "NotificationDispatcher",
    "NotificationKind",
]
