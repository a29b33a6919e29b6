"""
Settings repository.

Business settings are read from the ``settings`` table on every call, never
cached, so an edit takes effect on the next policy decision. Missing or
malformed values fall back to the defaults in application configuration.
"""

from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from orderdesk.core.config import get_settings
from orderdesk.core.logging import get_logger
from orderdesk.database.models.setting import Setting

logger = get_logger(__name__)

ADDON_MAX_PERCENT_KEY = "addon_max_percent"
KIT_SIZE_KEY = "kit_size"


class SettingsRepositoryError(Exception):
    """Base exception for settings repository errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class SettingsRepository:
    """Reads and writes rows of the ``settings`` table."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_value(self, key: str) -> Optional[str]:
        """
        Fetch the raw text value of a setting.

        Args:
            key: Setting key

        Returns:
            Stored value, or None when the key is absent

        Raises:
            SettingsRepositoryError: If the query fails
        """
        try:
            result = await self.session.execute(
                select(Setting.value).where(Setting.key == key)
            )
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("Failed to read setting", key=key, error=str(e))
            raise SettingsRepositoryError(
                "Failed to read setting",
                key=key,
                error=str(e),
            ) from e

    async def set_value(
        self,
        key: str,
        value: str,
        description: Optional[str] = None,
    ) -> Setting:
        """Insert or update a setting."""
        result = await self.session.execute(select(Setting).where(Setting.key == key))
        setting = result.scalar_one_or_none()

        if setting is None:
            setting = Setting(key=key, value=value, description=description)
            self.session.add(setting)
        else:
            setting.value = value
            if description is not None:
                setting.description = description

        await self.session.flush()
        logger.info("Setting updated", key=key, value=value)
        return setting

    async def get_addon_max_percent(self) -> Decimal:
        """Maximum add-on size as a percent of the parent total, 0 = no limit."""
        default = Decimal(get_settings().default_addon_max_percent)
        raw = await self.get_value(ADDON_MAX_PERCENT_KEY)
        if raw is None:
            return default

        try:
            value = Decimal(raw.strip())
        except (InvalidOperation, AttributeError):
            value = None

        # NaN and Infinity parse but are not usable limits.
        if value is None or not value.is_finite():
            logger.warning(
                "Malformed setting value, using default",
                key=ADDON_MAX_PERCENT_KEY,
                value=raw,
                default=str(default),
            )
            return default
        return value

    async def get_kit_size(self) -> int:
        """Bottles per kit."""
        default = get_settings().default_kit_size
        raw = await self.get_value(KIT_SIZE_KEY)
        if raw is None:
            return default

        try:
            kit_size = int(raw.strip())
        except (ValueError, AttributeError):
            kit_size = 0

        if kit_size <= 0:
            logger.warning(
                "Malformed setting value, using default",
                key=KIT_SIZE_KEY,
                value=raw,
                default=default,
            )
            return default
        return kit_size
