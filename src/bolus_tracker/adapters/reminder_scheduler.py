"""Reminder scheduler that records requests in the application log."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from uuid import UUID

REMINDER_DELAY = timedelta(hours=2)

_logger = logging.getLogger(__name__)


@dataclass
class LoggingReminderScheduler:
    """Logs each requested post-meal reminder and remembers when it is due."""

    scheduled: dict[UUID, datetime] = field(default_factory=dict)

    def schedule_2h_reminder(self, meal_id: UUID, meal_at: datetime) -> None:
        due_at = meal_at + REMINDER_DELAY
        self.scheduled[meal_id] = due_at
        _logger.info("Glucose reminder for meal %s due at %s", meal_id, due_at)
