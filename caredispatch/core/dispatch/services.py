# caredispatch/core/dispatch/services.py
"""
Volunteer notification hand-off, isolated from intake.

Delivery success or failure never affects the dispatch that was already
committed: failures are logged and counted, not raised.
"""
from __future__ import annotations

import logging

from caredispatch.config import settings
from caredispatch.core.dispatch.domain import IntakeResult
from caredispatch.core.dispatch.ports import VolunteerNotifier
from caredispatch.infra.metrics import DispatchMetrics, inc_counter

logger = logging.getLogger(__name__)


class LogVolunteerNotifier:
    """
    Default notifier: writes one line per matched volunteer.

    Stands in for the real delivery channel (email / SMS), which lives
    outside this service.
    """

    name = "log"

    async def notify(self, result: IntakeResult) -> None:
        for category, volunteer in result.assigned_volunteers.items():
            if volunteer is None:
                continue
            logger.info(
                "Volunteer notified: volunteer_id=%s category=%s dispatch_id=%s complaint_type=%s",
                volunteer.id, category.value, result.dispatch.id, result.complaint.type,
                extra={
                    "volunteer_id": volunteer.id,
                    "dispatch_id": result.dispatch.id,
                    "complaint_id": result.complaint.id,
                },
            )
            inc_counter("volunteer_notifications_sent_total", category=category.value)


async def notify_assigned_volunteers(
    notifier: VolunteerNotifier,
    result: IntakeResult,
) -> bool:
    """
    Hand the created dispatch to the notification collaborator.

    Returns:
        True if the notifier ran (or notifications are disabled), False if it raised
    """
    if not settings.volunteer_notifications_enabled:
        logger.debug(
            "Volunteer notifications disabled, skipping dispatch_id=%s",
            result.dispatch.id,
        )
        return True

    try:
        await notifier.notify(result)
        return True
    except Exception:
        logger.error(
            "Failed to notify volunteers: dispatch_id=%s, complaint_id=%s",
            result.dispatch.id, result.complaint.id,
            exc_info=True,
        )
        DispatchMetrics.notification_failed()
        return False
