"""Signed-in user session. Processing only runs while a user is signed in."""

import json
import logging
from pathlib import Path
from typing import Any, Callable, List, Optional

from pydantic import BaseModel, ValidationError, field_validator

from .errors import SessionError

logger = logging.getLogger(__name__)


class User(BaseModel):
    """The stored credential."""

    email: str

    @field_validator("email")
    @classmethod
    def check_email(cls, v: str) -> str:
        v = v.strip()
        if not v or "@" not in v:
            raise ValueError("A valid email address is required")
        return v


class SessionStore:
    """Persists the signed-in user as a small JSON file."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._user: Optional[User] = None
        self._observers: List[Callable[[Optional[User]], Any]] = []

    @property
    def user(self) -> Optional[User]:
        return self._user

    @property
    def is_authenticated(self) -> bool:
        return self._user is not None

    def add_observer(self, observer: Callable[[Optional[User]], Any]) -> None:
        """Add a callback invoked with the user (or None) on sign-in/out."""
        self._observers.append(observer)

    def _notify_observers(self) -> None:
        for observer in self._observers:
            try:
                observer(self._user)
            except Exception:
                logger.exception("Session observer failed")

    def load(self) -> Optional[User]:
        """Restore the stored user, if any.

        An unreadable or corrupt session file is treated as signed out.
        """
        if not self.path.exists():
            self._user = None
            return None

        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            self._user = User.model_validate(data)
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.warning(f"Ignoring unreadable session file {self.path}: {e}")
            self._user = None

        return self._user

    def login(self, email: str) -> User:
        """Sign in and persist the user.

        Raises:
            SessionError: If the email is invalid or the session can't be saved.
        """
        try:
            user = User(email=email)
        except ValidationError as e:
            raise SessionError(f"Invalid email address: {email!r}") from e

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(user.model_dump_json(), encoding="utf-8")
        except OSError as e:
            raise SessionError(f"Could not save session to {self.path}: {e}") from e

        self._user = user
        logger.info(f"Signed in as {user.email}")
        self._notify_observers()
        return user

    def logout(self) -> None:
        """Sign out and delete the stored session."""
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            raise SessionError(f"Could not remove session {self.path}: {e}") from e

        if self._user is not None:
            logger.info(f"Signed out {self._user.email}")
            self._user = None
            self._notify_observers()
