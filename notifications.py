import logging
from enum import Enum
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from database import Notification
from store import LedgerStore

logger = logging.getLogger(__name__)

BUDGET_ALERT_TITLE = "Budget Alert"


def budget_alert_message(category_name: str) -> str:
    return f"Category {category_name} has exceeded its budget limit!"


class NotifyPolicy(str, Enum):
    # fire on every transaction that leaves the budget over its limit
    ALWAYS = "always"
    # fire only when a transaction moves the budget into Over Budget
    ON_TRANSITION = "on_transition"


class NotificationEmitter:
    def __init__(self, store: LedgerStore, policy=NotifyPolicy.ALWAYS):
        self.store = store
        self.policy = NotifyPolicy(policy)

    def should_notify(self, was_over_budget: bool) -> bool:
        """Decide for a budget that is now over its limit."""
        if self.policy is NotifyPolicy.ON_TRANSITION:
            return not was_over_budget
        return True

    def emit_budget_alert(
        self, user_id: int, category_name: str
    ) -> Optional[Notification]:
        try:
            notification = self.store.create_notification(
                user_id, BUDGET_ALERT_TITLE, budget_alert_message(category_name)
            )
        except SQLAlchemyError:
            self.store.rollback()
            logger.exception(
                "Failed to store budget alert for user %s, category %r",
                user_id,
                category_name,
            )
            return None
        logger.info(
            "Budget alert %s stored for user %s, category %r",
            notification.id,
            user_id,
            category_name,
        )
        return notification
