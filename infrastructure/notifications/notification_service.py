# infrastructure/notifications/notification_service.py
import uuid
from typing import Dict, Any, Optional, Callable, Awaitable

from domain.models.agent_task import utcnow
from infrastructure.storage.document_store import DocumentStore
from shared.logging import logger

PROFILES_COLLECTION = "profiles"

PushSender = Callable[[str, str, str, Dict[str, str]], Awaitable[str]]

async def log_push_sender(token: str, title: str, body: str, data: Dict[str, str]) -> str:
    """Default push transport: records the push in the log and returns a message id"""
    message_id = f"msg_{uuid.uuid4().hex[:16]}"
    logger.info("Push notification dispatched",
               message_id=message_id,
               token_suffix=token[-6:],
               title=title)
    return message_id

class NotificationService:
    """In-app notification records plus push delivery to registered devices"""

    def __init__(self, store: DocumentStore, push_sender: Optional[PushSender] = None):
        self.store = store
        self.push_sender = push_sender or log_push_sender

    async def record(self, user_id: str, notification_type: str, title: str, message: str,
                     severity: str = "medium", data: Optional[Dict[str, Any]] = None) -> str:
        """Store an in-app notification under the user's notifications"""
        notifications = self.store.collection("users").doc(user_id).collection("notifications")
        notification_id = await notifications.add({
            "type": notification_type,
            "title": title,
            "message": message,
            "severity": severity,
            "data": data or {},
            "read": False,
            "createdAt": utcnow(),
        })
        logger.info("Notification recorded",
                   user_id=user_id,
                   notification_id=notification_id,
                   notification_type=notification_type)
        return notification_id

    async def send(self, user_id: str, title: str, body: str,
                   data: Optional[Dict[str, Any]] = None) -> str:
        """Push to the user's registered device; raises NoTokenError when none is registered"""
        profile = await self.store.collection(PROFILES_COLLECTION).doc(user_id).get()
        token = profile.get("fcmToken") if profile.exists else None
        if not token:
            raise NoTokenError(f"User {user_id} has no registered push token")

        payload = {key: str(value) for key, value in (data or {}).items()}
        message_id = await self.push_sender(token, title, body, payload)
        logger.info("Push notification sent", user_id=user_id, message_id=message_id)
        return message_id

class NoTokenError(Exception):
    pass
