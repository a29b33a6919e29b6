"""Key/value business settings editable at runtime."""

from typing import Optional

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from orderdesk.database.base import BaseModel


class Setting(BaseModel):
    __tablename__ = "settings"

    key: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        unique=True,
    )

    value: Mapped[str] = mapped_column(Text, nullable=False)

    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
