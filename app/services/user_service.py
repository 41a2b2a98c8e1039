"""User lookup and upsert by WhatsApp phone number."""

from __future__ import annotations

from typing import Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session as DBSession

from app.models.user import User
from app.utils.dates import utcnow


class UserService:
    def __init__(self, db: DBSession) -> None:
        self.db = db

    def get_user(self, user_id: UUID) -> Optional[User]:
        return self.db.query(User).filter(User.id == user_id).first()

    def get_by_phone(self, phone_number: str) -> Optional[User]:
        return self.db.query(User).filter(User.phone_number == phone_number).first()

    def upsert_by_phone(self, phone_number: str, display_name: Optional[str] = None) -> User:
        """Return the user for ``phone_number``, creating it on first contact."""
        user = self.get_by_phone(phone_number)
        if user is None:
            user = User(phone_number=phone_number, display_name=display_name)
            self.db.add(user)
            try:
                self.db.commit()
            except IntegrityError:
                # created concurrently by another request
                self.db.rollback()
                user = self.get_by_phone(phone_number)
                if user is None:
                    raise
        elif display_name and not user.display_name:
            user.display_name = display_name
        user.last_seen_at = utcnow()
        self.db.commit()
        self.db.refresh(user)
        return user

    def mark_onboarding_started(self, user: User) -> User:
        user.onboarding_started_at = utcnow()
        self.db.commit()
        self.db.refresh(user)
        return user

    def mark_onboarding_completed(
        self, user: User, email: Optional[str] = None, display_name: Optional[str] = None
    ) -> User:
        user.onboarding_completed_at = utcnow()
        if email:
            user.email = email
        if display_name:
            user.display_name = display_name
        self.db.commit()
        self.db.refresh(user)
        return user
