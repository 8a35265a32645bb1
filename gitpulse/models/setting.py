"""Key/value settings stored in the database."""

import json
from typing import Any

from sqlalchemy import Boolean, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from gitpulse.models.base import Base, IntegerIdMixin, TimestampMixin


class Setting(Base, IntegerIdMixin, TimestampMixin):
    """Runtime-editable setting grouped by category.

    ``value_type`` is one of ``String``, ``Boolean``, ``Integer`` or ``Array``
    (a JSON encoded list).
    """

    __tablename__ = "settings"
    __table_args__ = (UniqueConstraint("category", "key", name="uq_settings_category_key"),)

    category: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    key: Mapped[str] = mapped_column(String(100), nullable=False)
    value: Mapped[str] = mapped_column(Text, nullable=False, default="")
    value_type: Mapped[str] = mapped_column(String(20), nullable=False, default="String")
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def typed_value(self) -> Any:
        """Decode ``value`` according to ``value_type``."""
        kind = self.value_type.lower()
        if kind == "boolean":
            return self.value.strip().lower() in ("true", "1", "yes")
        if kind == "integer":
            return int(self.value)
        if kind in ("array", "json"):
            return json.loads(self.value) if self.value else []
        return self.value

    def __repr__(self) -> str:
        return f"<Setting {self.category}.{self.key}>"
