"""
First-contact onboarding gate.

New users are asked once for a name and an email. While the signup is in
progress their messages are held back from the assistant; a reply that
contains an email completes the signup and lets the turn continue.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.orm import Session as DBSession

from app.config import Settings, get_settings
from app.constants.notices import UserNotices
from app.core.runtime import Messenger
from app.models.user import User
from app.services.session_message_service import SessionMessageService
from app.services.user_service import UserService
from app.utils.dates import ensure_utc, utcnow
from app.utils.flags import is_onboarding_enabled

logger = logging.getLogger(__name__)

SIGNUP_IN_PROGRESS_WINDOW = timedelta(minutes=60)

EMAIL_PATTERN = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")
NAME_PATTERN = re.compile(
    r"(?:me llamo|mi nombre es|soy|my name is|i am)\s+([^,.\n@]+)", re.IGNORECASE
)

REASON_DISABLED = "disabled"
REASON_ALREADY_COMPLETED = "already_completed"
REASON_ALREADY_IN_PROGRESS = "already_in_progress"
REASON_FLOW_SENT = "flow_sent"
REASON_FLOW_SEND_FAILED = "flow_send_failed"
REASON_COMPLETED = "completed"


@dataclass(frozen=True)
class OnboardingGate:
    blocked: bool
    reason: str


def extract_email(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    match = EMAIL_PATTERN.search(text)
    return match.group(0).lower() if match else None


def extract_name(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    match = NAME_PATTERN.search(text)
    if not match:
        return None
    name = match.group(1).strip()
    return name.title() if name else None


class OnboardingService:
    def __init__(
        self,
        db: DBSession,
        messenger: Messenger,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.db = db
        self.messenger = messenger
        self.settings = settings or get_settings()
        self.users = UserService(db)
        self.messages = SessionMessageService(db)
        self._now = clock

    def _already_onboarded(self, user: User) -> bool:
        if user.onboarding_completed_at is not None:
            return True
        if user.display_name and user.email:
            return True
        # users who already talked with the assistant are not asked retroactively
        return self.messages.count_outbound_for_user(user.id) > 0

    def _in_progress(self, user: User) -> bool:
        started = ensure_utc(user.onboarding_started_at)
        return started is not None and self._now() - started < SIGNUP_IN_PROGRESS_WINDOW

    async def ensure_signup_on_first_contact(
        self, user: User, text: Optional[str] = None
    ) -> OnboardingGate:
        if not is_onboarding_enabled(self.settings):
            return OnboardingGate(blocked=False, reason=REASON_DISABLED)
        if self._already_onboarded(user):
            return OnboardingGate(blocked=False, reason=REASON_ALREADY_COMPLETED)

        if self._in_progress(user):
            email = extract_email(text)
            if email is None:
                await self.messenger.send_text(user.phone_number, UserNotices.SIGNUP_PENDING)
                return OnboardingGate(blocked=True, reason=REASON_ALREADY_IN_PROGRESS)
            name = extract_name(text) or user.display_name or ""
            self.users.mark_onboarding_completed(user, email=email, display_name=name or None)
            logger.info("Onboarding completed", extra={"user_id": str(user.id)})
            await self.messenger.send_text(
                user.phone_number,
                UserNotices.signup_completed(name),
            )
            return OnboardingGate(blocked=False, reason=REASON_COMPLETED)

        message_id = await self.messenger.send_text(user.phone_number, UserNotices.SIGNUP_PROMPT)
        if message_id is None:
            logger.warning(
                "Signup prompt could not be sent; letting the turn through",
                extra={"user_id": str(user.id)},
            )
            return OnboardingGate(blocked=False, reason=REASON_FLOW_SEND_FAILED)
        self.users.mark_onboarding_started(user)
        return OnboardingGate(blocked=True, reason=REASON_FLOW_SENT)
