"""
Authentication and sessions.

A :class:`Session` is the explicit identity handed to every operation that
acts on behalf of a user.  The logged-in user's snapshot is mirrored into
the current-user slot so a restarted process can pick the session up again
with :meth:`AuthManager.current_session`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, Optional, Tuple

from models import ROLES, User
from repository import (
    SAVE_CONFLICT,
    SESSION_KEY,
    ConcurrentModificationError,
    MarketplaceRepository,
    Rollback,
)

logger = logging.getLogger(__name__)

# Profile fields a user may change on their own account
PROFILE_FIELDS = {
    "user": ("name", "email", "phone", "address"),
    "farmer": ("name", "email", "phone", "farm_name", "location", "description"),
    "admin": ("name", "email", "phone", "department"),
}


@dataclass
class Session:
    """Identity of the logged-in user plus the profile snapshot taken at login."""

    user: User

    @property
    def user_id(self) -> int:
        return self.user.id

    @property
    def role(self) -> str:
        return self.user.role

    def has_role(self, role: str) -> bool:
        return self.user.role == role


class AuthManager:
    def __init__(self, repository: MarketplaceRepository) -> None:
        self.repository = repository
        self._session: Optional[Session] = None

    def login(self, email: str, password: str, role: str) -> Optional[Session]:
        """Match email, password and role exactly; return the new session or None."""
        data = self.repository.snapshot()
        user = next(
            (u for u in data.users if u.email == email and u.password == password and u.role == role),
            None,
        )
        if user is None:
            logger.info("Login failed", extra={"extra": {"email": email, "role": role}})
            return None
        self._set_session(user)
        logger.info("Login succeeded", extra={"user_id": user.id, "extra": {"role": role}})
        return self._session

    def register(
        self, name: str, email: str, password: str, role: str, **profile: Any
    ) -> Tuple[bool, str]:
        if not name or not email or not password:
            return False, "Name, email and password are required"
        if role not in ROLES:
            return False, f"Unknown role: {role}"
        unknown = set(profile) - set(PROFILE_FIELDS[role])
        if unknown:
            return False, f"Unknown profile fields: {', '.join(sorted(unknown))}"
        try:
            with self.repository.transaction() as data:
                if data.user_by_email(email):
                    raise Rollback("Email already exists")
                user = User(
                    id=data.next_user_id(),
                    name=name,
                    email=email,
                    password=password,
                    role=role,
                    joined_date=date.today().isoformat(),
                    **profile,
                )
                if role == "farmer":
                    user.is_active = True
                    user.rating = 0.0
                    user.total_ratings = 0
                data.users.append(user)
        except Rollback as e:
            logger.info("Registration rejected", extra={"extra": {"email": email, "reason": str(e)}})
            return False, str(e)
        except ConcurrentModificationError:
            logger.warning("Registration lost to a concurrent write", extra={"extra": {"email": email}})
            return False, SAVE_CONFLICT
        logger.info("User registered", extra={"user_id": user.id, "extra": {"role": role}})
        return True, "Registration successful"

    def logout(self) -> None:
        if self._session:
            logger.info("Logout", extra={"user_id": self._session.user_id})
        self._session = None
        self.repository.delete(SESSION_KEY)

    def current_session(self) -> Optional[Session]:
        """In-memory session, or the one mirrored in storage by an earlier process."""
        if self._session is None:
            stored = self.repository.read_json(SESSION_KEY)
            if stored:
                try:
                    self._session = Session(User.from_dict(stored))
                except (TypeError, KeyError, ValueError):
                    logger.warning("Stored session unreadable; ignoring it")
                    self.repository.delete(SESSION_KEY)
        return self._session

    def is_authenticated(self) -> bool:
        return self.current_session() is not None

    def update_profile(self, session: Session, **fields: Any) -> Tuple[bool, str]:
        """Update the session user's own profile and refresh the session snapshot."""
        allowed = PROFILE_FIELDS[session.role]
        unknown = set(fields) - set(allowed)
        if unknown:
            return False, f"Unknown profile fields: {', '.join(sorted(unknown))}"
        try:
            with self.repository.transaction() as data:
                user = data.user(session.user_id)
                if user is None:
                    raise Rollback("User not found")
                new_email = fields.get("email")
                if new_email and new_email != user.email and data.user_by_email(new_email):
                    raise Rollback("Email already exists")
                for key, value in fields.items():
                    setattr(user, key, value)
        except Rollback as e:
            return False, str(e)
        except ConcurrentModificationError:
            logger.warning("Profile update lost to a concurrent write", extra={"user_id": session.user_id})
            return False, SAVE_CONFLICT
        self.refresh(session, user)
        return True, "Profile updated successfully"

    def refresh(self, session: Session, user: Optional[User] = None) -> None:
        """Reload the session snapshot from storage (or from ``user``)."""
        if user is None:
            user = self.repository.snapshot().user(session.user_id)
            if user is None:
                return
        session.user = user
        if self._session is not None and self._session.user_id == user.id:
            self._session = session
            self._mirror(user)

    def _set_session(self, user: User) -> None:
        self._session = Session(user)
        self._mirror(user)

    def _mirror(self, user: User) -> None:
        snapshot: Dict[str, Any] = user.to_dict()
        self.repository.write_json(SESSION_KEY, snapshot)
