"""
Event Publisher Service for Campus Events Service.
Publishes registration and event changes to Redis for real-time dashboards
and for the discussion/feedback services.
"""

import json
import logging
from typing import Optional

from campus_events.core.time_utils import utcnow, isoformat
from campus_events.db.redis_client import RedisManager

logger = logging.getLogger(__name__)


class CampusEventPublisher:
    """
    Publishes domain events to Redis channels.
    Publishing is best-effort: failures are logged and never raised.
    """

    def __init__(self, redis_manager: RedisManager):
        self.redis_manager = redis_manager
        self.registration_prefix = "campus:registrations"
        self.event_prefix = "campus:events"

    async def _publish(self, channel: str, message: dict):
        try:
            message.setdefault("timestamp", isoformat(utcnow()))
            await self.redis_manager.publish(channel, json.dumps(message))
            logger.info(f"Published {message['type']} on {channel}")
        except Exception as e:
            logger.error(f"Failed to publish {message.get('type')}: {e}")

    @staticmethod
    def _registration_data(registration) -> dict:
        return {
            "id": registration.id,
            "event_id": registration.event_id,
            "user_id": registration.user_id,
            "status": registration.status.value if registration.status else None,
            "payment_approval_status": registration.payment_approval_status.value,
            "registration_approval_status": registration.registration_approval_status.value,
            "ticket_id": registration.ticket_id,
            "attendance_status": registration.attendance_status.value,
        }

    async def publish_registration_finalized(self, registration):
        """Publish that a ticket was issued and inventory committed."""
        await self._publish(f"{self.registration_prefix}:finalized", {
            "type": "RegistrationFinalized",
            "registration_id": registration.id,
            "event_id": registration.event_id,
            "user_id": registration.user_id,
            "registration_data": self._registration_data(registration),
        })

    async def publish_gate_decision(self, registration, gate: str, approved: bool, reason: Optional[str] = None):
        """
        Publish a payment or registration approval decision.

        Args:
            gate: "payment" or "registration"
        """
        decision = "approved" if approved else "rejected"
        await self._publish(f"{self.registration_prefix}:{gate}_{decision}", {
            "type": f"{gate.capitalize()}{decision.capitalize()}",
            "registration_id": registration.id,
            "event_id": registration.event_id,
            "user_id": registration.user_id,
            "reason": reason,
            "registration_data": self._registration_data(registration),
        })

    async def publish_attendance_marked(self, registration, manual: bool = False):
        """Publish an attendance change."""
        await self._publish(f"{self.registration_prefix}:attendance", {
            "type": "AttendanceMarked",
            "registration_id": registration.id,
            "event_id": registration.event_id,
            "user_id": registration.user_id,
            "attendance_status": registration.attendance_status.value,
            "manual_override": manual,
            "marked_at": isoformat(registration.attendance_marked_at),
        })

    async def publish_event_updated(self, event, previous_status: Optional[str] = None):
        """Publish an event update, including status transitions."""
        await self._publish(f"{self.event_prefix}:updated", {
            "type": "EventUpdated",
            "event_id": event.id,
            "previous_status": previous_status,
            "event_data": event.to_dict(),
        })

    async def publish_event_deleted(self, event_id: int):
        """Publish an event deletion so dependent services drop their threads."""
        await self._publish(f"{self.event_prefix}:deleted", {
            "type": "EventDeleted",
            "event_id": event_id,
        })
