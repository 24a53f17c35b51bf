"""User repository."""

from sqlalchemy import select

from issue_watcher.models import User

from .base import BaseRepository


class UserRepository(BaseRepository[User]):
    model = User

    def get_by_email(self, email: str) -> User | None:
        return self.session.scalar(select(User).where(User.email == email))

    def get_or_create(self, email: str) -> User:
        """Return the user for ``email``, creating the row on first sight."""
        normalized = email.strip().lower()
        user = self.get_by_email(normalized)
        if user is None:
            user = self.create(email=normalized)
        return user
