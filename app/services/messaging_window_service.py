"""MessagingWindowService: track WhatsApp's 24h customer-service window."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable, Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session as DBSession

from app.models.messaging_window import MessagingWindow
from app.utils.dates import ensure_utc, utcnow

WINDOW_DURATION = timedelta(hours=24)


def is_window_open(window: Optional[MessagingWindow], now: datetime) -> bool:
    return window is not None and ensure_utc(window.window_expires_at) > now


class MessagingWindowService:
    def __init__(self, db: DBSession, clock: Callable[[], datetime] = utcnow) -> None:
        self.db = db
        self._now = clock

    def get_window(self, user_id: UUID) -> Optional[MessagingWindow]:
        return (
            self.db.query(MessagingWindow)
            .filter(MessagingWindow.user_id == user_id)
            .first()
        )

    def record_inbound(
        self, user_id: UUID, phone_number: str, message_id: Optional[str] = None
    ) -> MessagingWindow:
        """Open the window, or extend it 24h from now if it is still open."""
        now = self._now()
        window = self.get_window(user_id)
        if window is None:
            window = MessagingWindow(
                user_id=user_id,
                phone_number=phone_number,
                window_opened_at=now,
                window_expires_at=now + WINDOW_DURATION,
                last_user_message_id=message_id,
            )
            self.db.add(window)
            try:
                self.db.commit()
            except IntegrityError:
                self.db.rollback()
                window = self.get_window(user_id)
                if window is None:
                    raise
            else:
                self.db.refresh(window)
                return window

        if not is_window_open(window, now):
            window.window_opened_at = now
        window.window_expires_at = now + WINDOW_DURATION
        window.phone_number = phone_number
        if message_id:
            window.last_user_message_id = message_id
        self.db.commit()
        self.db.refresh(window)
        return window
