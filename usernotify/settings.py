"""Persistence of the custom login and password reset page slugs."""

from __future__ import annotations

from typing import Optional

from .database import Database
from .models import ResetLinkConfig

SETTINGS_OPTION = "user_notification_settings"


def _clean_slug(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    cleaned = value.strip()
    return cleaned or None


class NotificationSettings:
    """Read and write the named settings record used by the composer."""

    def __init__(self, database: Database, *, option_name: str = SETTINGS_OPTION) -> None:
        self._database = database
        self._option_name = option_name

    @property
    def option_name(self) -> str:
        return self._option_name

    def load(self) -> ResetLinkConfig:
        return ResetLinkConfig.from_mapping(self._database.get_option(self._option_name, {}))

    def save(self, *, login_slug: Optional[str], reset_slug: Optional[str]) -> ResetLinkConfig:
        """Store both slugs; blank values are dropped so the default pages apply."""

        config = ResetLinkConfig(
            login_slug=_clean_slug(login_slug),
            reset_slug=_clean_slug(reset_slug),
        )
        self._database.update_option(self._option_name, config.as_mapping())
        return config


__all__ = ["NotificationSettings", "SETTINGS_OPTION"]
