"""
System setting repository.
"""
from typing import Optional

from beacon.models.system_setting import SystemSetting
from beacon.repositories.base import BaseRepository


class SettingRepository(BaseRepository[SystemSetting]):
    """Repository for SystemSetting key/value rows."""

    model = SystemSetting

    async def get_value(self, key: str) -> Optional[str]:
        setting = await self.get_by_id(key)
        return setting.value if setting else None

    async def set_value(self, key: str, value: str) -> SystemSetting:
        """Create or overwrite a setting."""
        existing = await self.get_by_id(key)
        if existing:
            existing.value = value
            await self.session.flush()
            return existing

        setting = SystemSetting(key=key, value=value)
        self.session.add(setting)
        await self.session.flush()
        return setting
