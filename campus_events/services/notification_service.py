"""
Notification Service for Campus Events Service.
Dispatches email and Discord webhook notifications to Celery workers.
Dispatch is fire-and-forget: failures are logged and reported as False, never raised.
"""
import ssl
import base64
import logging
from typing import Optional, Dict, Any

from celery import Celery

from campus_events.core.config import config

logger = logging.getLogger(__name__)

EMAIL_QUEUE = 'email_notifications'
WEBHOOK_QUEUE = 'webhook_notifications'


class NotificationService:
    """
    Notification service sending tasks to Celery workers.
    """

    def __init__(self):
        self.enabled = True
        self.frontend_url = None
        self._celery_app = None
        self._initialized = False

    async def _initialize_celery(self):
        """Initialize Celery app for task dispatch."""
        try:
            if self._initialized:
                return

            self._celery_app = Celery('campus_events')

            logger.info("Initializing Celery app for notification dispatch")
            redis_url = await config.get_redis_url()
            notification_config = await config.get_notification_config()
            self.enabled = notification_config["enable_notifications"]
            self.frontend_url = notification_config["frontend_url"]

            celery_settings = dict(
                broker_url=redis_url,
                result_backend=redis_url,
                task_serializer='json',
                result_serializer='json',
                accept_content=['json'],
                task_routes={
                    'email_workers.tasks.*': {'queue': EMAIL_QUEUE},
                    'webhook_workers.tasks.*': {'queue': WEBHOOK_QUEUE},
                },
            )
            if redis_url.startswith("rediss://"):
                celery_settings.update(
                    broker_use_ssl={
                        'ssl_cert_reqs': ssl.CERT_NONE,
                        'ssl_check_hostname': False,
                    },
                    redis_backend_use_ssl={
                        'ssl_cert_reqs': ssl.CERT_NONE,
                        'ssl_check_hostname': False,
                    },
                )
            self._celery_app.conf.update(**celery_settings)

            self._initialized = True
            logger.info("Celery app initialized for notification dispatch")

        except Exception as e:
            logger.error(f"Failed to initialize Celery app: {e}")
            self._celery_app = None
            self._initialized = False

    async def _send_task(self, task_name: str, queue: str, args: list) -> bool:
        """
        Send a task to Celery workers.

        Returns:
            True if task sent successfully, False otherwise
        """
        try:
            if not self._initialized:
                await self._initialize_celery()

            if not self._celery_app:
                logger.error("Celery app not initialized, cannot send task")
                return False

            task = self._celery_app.send_task(task_name, args=args, queue=queue)

            logger.info(f"Task {task_name} sent with ID: {task.id}")
            return True

        except Exception as e:
            logger.error(f"Failed to send task {task_name}: {e}")
            return False

    async def send_registration_confirmation(
        self,
        user_id: int,
        registration_data: Dict[str, Any],
        event_data: Dict[str, Any],
        qr_image: Optional[bytes] = None
    ) -> bool:
        """
        Send the ticket confirmation email, with the QR image attached.

        Args:
            user_id: ID of the user (workers resolve the address)
            registration_data: Registration information
            event_data: Event information
            qr_image: PNG bytes of the ticket QR code

        Returns:
            True if notification sent successfully, False otherwise
        """
        try:
            if not self.enabled:
                logger.info("Notification service disabled, skipping registration confirmation")
                return True

            logger.info(f"Sending registration confirmation to user {user_id}")

            task_data = {
                'registration_id': registration_data.get('id'),
                'ticket_id': registration_data.get('ticket_id'),
                'email': registration_data.get('participant_email'),
                'participant_name': registration_data.get('participant_name'),
                'event_id': event_data.get('id'),
                'event_name': event_data.get('name', 'Your Event'),
                'event_start_date': event_data.get('event_start_date'),
                'event_type': event_data.get('event_type'),
                'qr_code_base64': base64.b64encode(qr_image).decode("ascii") if qr_image else None,
            }

            return await self._send_task(
                'email_workers.tasks.send_registration_confirmation',
                EMAIL_QUEUE,
                [user_id, task_data]
            )

        except Exception as e:
            logger.error(f"Failed to send registration confirmation: {e}")
            return False

    async def send_registration_rejection(
        self,
        user_id: int,
        registration_data: Dict[str, Any],
        event_data: Dict[str, Any],
        gate: str,
        reason: Optional[str] = None
    ) -> bool:
        """
        Tell a participant their payment or registration was rejected.

        Args:
            gate: "payment" or "registration"
        """
        try:
            if not self.enabled:
                logger.info("Notification service disabled, skipping rejection notice")
                return True

            logger.info(f"Sending {gate} rejection to user {user_id}")

            task_data = {
                'registration_id': registration_data.get('id'),
                'email': registration_data.get('participant_email'),
                'participant_name': registration_data.get('participant_name'),
                'event_name': event_data.get('name', 'Your Event'),
                'gate': gate,
                'reason': reason,
            }

            return await self._send_task(
                'email_workers.tasks.send_registration_rejection',
                EMAIL_QUEUE,
                [user_id, task_data]
            )

        except Exception as e:
            logger.error(f"Failed to send rejection notice: {e}")
            return False

    async def send_event_announcement(self, event_data: Dict[str, Any]) -> bool:
        """Announce a newly published event on the Discord webhook."""
        try:
            if not self.enabled:
                logger.info("Notification service disabled, skipping event announcement")
                return True

            if not self._initialized:
                await self._initialize_celery()

            logger.info(f"Announcing event {event_data.get('id')}")

            task_data = {
                'event_id': event_data.get('id'),
                'name': event_data.get('name'),
                'description': event_data.get('description'),
                'event_type': event_data.get('event_type'),
                'event_start_date': event_data.get('event_start_date'),
                'registration_deadline': event_data.get('registration_deadline'),
                'registration_fee': event_data.get('registration_fee'),
                'event_url': f"{self.frontend_url}/events/{event_data.get('id')}" if self.frontend_url else None,
            }

            return await self._send_task(
                'webhook_workers.tasks.announce_event',
                WEBHOOK_QUEUE,
                [task_data]
            )

        except Exception as e:
            logger.error(f"Failed to send event announcement: {e}")
            return False

    def enable(self):
        """Enable notifications."""
        self.enabled = True
        logger.info("Notifications enabled")

    def disable(self):
        """Disable notifications."""
        self.enabled = False
        logger.info("Notifications disabled")


# Global notification service instance
notification_service = NotificationService()
