"""User model."""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from gitpulse.models.base import Base, IntegerIdMixin


class User(Base, IntegerIdMixin):
    """A commit or pull request author.

    ``external_id`` is the Bitbucket account uuid, or a synthetic identifier
    (``synthetic:<email>`` / ``synthetic:unknown:<hash>``) for authors that
    only appear as a raw ``Name <email>`` string on commits.
    """

    __tablename__ = "users"

    external_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    avatar_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    created_on: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    exclude_from_reporting: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    def __repr__(self) -> str:
        return f"<User {self.display_name}>"
