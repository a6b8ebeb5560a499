"""
Notification triggers.

Each lifecycle transition queues exactly one notification to the
counter-party. Rows go through the operation's store transaction (an outbox);
a delivery collaborator reads the notifications table and handles channels,
read state and retries.
"""

import logging
from typing import Any
from uuid import UUID, uuid4

from core.config import MaintenanceConfig
from core.models import Notification, NotificationType
from core.stores import StoreTransaction
from utils.timezone import now_utc

logger = logging.getLogger(__name__)


class Notifier:
    """Queues notification rows and builds their action links."""

    def __init__(self, config: MaintenanceConfig | None = None):
        self.config = config or MaintenanceConfig()

    def action_url(self, path: str) -> str:
        """Absolute link into the dashboard."""
        return f"{self.config.app_base_url}/{path.lstrip('/')}"

    def ticket_url(self, ticket_id: UUID) -> str:
        return self.action_url(f"/dashboard/maintenance/{ticket_id}")

    def invoice_url(self, invoice_id: UUID) -> str:
        return self.action_url(f"/dashboard/invoices/{invoice_id}")

    def schedule_url(self) -> str:
        return self.action_url("/dashboard/vendor/schedule")

    def notify(
        self,
        tx: StoreTransaction,
        user_id: UUID,
        type: NotificationType,
        title: str,
        message: str,
        action_url: str | None = None,
        metadata: dict[str, Any] | None = None
    ) -> Notification:
        """
        Queue one notification through the transaction.

        Args:
            tx: Open store transaction of the triggering operation
            user_id: Recipient
            type: Routing category
            title: Short headline
            message: Body text
            action_url: Where the recipient should go to act
            metadata: JSON-compatible ids and values

        Returns:
            The staged notification
        """
        notification = Notification(
            id=uuid4(),
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            action_url=action_url,
            metadata=metadata or {},
            created_at=now_utc(),
        )
        tx.insert_notification(notification)
        logger.debug(f"Queued {type.value} notification for user {user_id}")
        return notification
