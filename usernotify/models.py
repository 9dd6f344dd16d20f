"""Domain models shared by the composer, the settings page and the database."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional, Tuple


@dataclass(frozen=True)
class Account:
    """Represents a registered account stored in the notification database."""

    id: int
    login: str
    email: str
    first_name: str
    locale: str
    created_at: datetime


@dataclass(frozen=True)
class ResetLinkConfig:
    """Custom page slugs used when building links in the user email."""

    login_slug: Optional[str] = None
    reset_slug: Optional[str] = None

    @staticmethod
    def from_mapping(data: object) -> "ResetLinkConfig":
        if not isinstance(data, dict):
            return ResetLinkConfig()
        login_slug = data.get("login_slug")
        reset_slug = data.get("reset_slug")
        return ResetLinkConfig(
            login_slug=str(login_slug) if login_slug is not None else None,
            reset_slug=str(reset_slug) if reset_slug is not None else None,
        )

    def as_mapping(self) -> Dict[str, str]:
        mapping: Dict[str, str] = {}
        if self.login_slug is not None:
            mapping["login_slug"] = self.login_slug
        if self.reset_slug is not None:
            mapping["reset_slug"] = self.reset_slug
        return mapping


@dataclass(frozen=True)
class ComposedMessage:
    """A fully rendered email handed to the mail transport."""

    recipient: str
    subject: str
    body: str
    headers: Tuple[str, ...] = field(default_factory=tuple)


__all__ = ["Account", "ComposedMessage", "ResetLinkConfig"]
