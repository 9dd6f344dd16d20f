"""Configuration management for the notification service."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

import yaml


def _optional_str(value: object) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _require(data: Dict[str, object], section: str, fields: set[str]) -> None:
    missing = {name for name in fields if not _optional_str(data.get(name))}
    if missing:
        raise ValueError(
            f"Missing required {section} configuration fields: {', '.join(sorted(missing))}"
        )


def _parse_bool(value: object, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() not in {"0", "false", "no", "off"}


@dataclass(frozen=True)
class SiteConfig:
    """Site identity and the URLs used when composing notifications."""

    name: str
    home_url: str
    admin_email: str
    site_url: Optional[str] = None
    locale: str = "en_US"
    login_path: str = "login"
    reset_path: str = "reset-password"

    @staticmethod
    def from_dict(data: Dict[str, object]) -> "SiteConfig":
        """Create a :class:`SiteConfig` from raw dictionary data."""
        _require(data, "site", {"name", "home_url", "admin_email"})
        return SiteConfig(
            name=str(data["name"]),
            home_url=str(data["home_url"]).strip(),
            admin_email=str(data["admin_email"]).strip(),
            site_url=_optional_str(data.get("site_url")),
            locale=_optional_str(data.get("locale")) or "en_US",
            login_path=_optional_str(data.get("login_path")) or "login",
            reset_path=_optional_str(data.get("reset_path")) or "reset-password",
        )

    def home(self, path: str = "") -> str:
        """Return an absolute URL below the public home page."""
        return _join_url(self.home_url, path)

    def site(self, path: str = "") -> str:
        """Return an absolute URL below the site installation."""
        return _join_url(self.site_url or self.home_url, path)

    @property
    def login_url(self) -> str:
        return self.site(self.login_path)


def _join_url(base: str, path: str) -> str:
    base = base.rstrip("/")
    if not path:
        return base
    return f"{base}/{path.lstrip('/')}"


@dataclass(frozen=True)
class MailConfig:
    """Outbound mail transport settings."""

    backend: str = "smtp"
    host: str = "localhost"
    port: int = 587
    username: Optional[str] = None
    password: Optional[str] = None
    from_address: Optional[str] = None
    use_tls: bool = True
    timeout: float = 30.0

    @staticmethod
    def from_dict(data: Dict[str, object]) -> "MailConfig":
        backend = (_optional_str(data.get("backend")) or "smtp").lower()
        if backend not in {"smtp", "memory"}:
            raise ValueError(f"Unsupported mail backend '{backend}'")
        return MailConfig(
            backend=backend,
            host=_optional_str(data.get("host")) or "localhost",
            port=int(data.get("port", 587)),
            username=_optional_str(data.get("username")),
            password=_optional_str(data.get("password")),
            from_address=_optional_str(data.get("from_address")),
            use_tls=_parse_bool(data.get("use_tls"), True),
            timeout=float(data.get("timeout", 30.0)),
        )


@dataclass(frozen=True)
class AdminCredentials:
    """HTTP Basic credentials guarding the settings page."""

    username: str
    password: str

    @staticmethod
    def from_dict(data: Dict[str, object]) -> "AdminCredentials":
        _require(data, "admin", {"username", "password"})
        return AdminCredentials(username=str(data["username"]), password=str(data["password"]))


@dataclass(frozen=True)
class AppConfig:
    """Complete service configuration."""

    site: SiteConfig
    mail: MailConfig
    admin: AdminCredentials
    wrap_email: Optional[str] = None
    locale_dir: Optional[Path] = None

    @staticmethod
    def from_dict(data: Dict[str, object], base_path: Path | None = None) -> "AppConfig":
        site_raw = data.get("site")
        if not isinstance(site_raw, dict):
            raise ValueError("Configuration file must define a 'site' section")
        admin_raw = data.get("admin")
        if not isinstance(admin_raw, dict):
            raise ValueError("Configuration file must define an 'admin' section")
        mail_raw = data.get("mail") or {}
        hooks_raw = data.get("hooks") or {}

        locale_dir: Optional[Path] = None
        raw_locale_dir = _optional_str(data.get("locale_dir"))
        if raw_locale_dir:
            candidate = Path(raw_locale_dir).expanduser()
            if not candidate.is_absolute() and base_path is not None:
                candidate = base_path / candidate
            locale_dir = candidate.resolve(strict=False)

        return AppConfig(
            site=SiteConfig.from_dict(site_raw),
            mail=MailConfig.from_dict(mail_raw),
            admin=AdminCredentials.from_dict(admin_raw),
            wrap_email=_optional_str(hooks_raw.get("wrap_email")),
            locale_dir=locale_dir,
        )


def load_config(config_path: Path) -> AppConfig:
    """Load the service configuration from a YAML file."""
    with config_path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}
    if not isinstance(raw, dict):
        raise ValueError("Configuration file must contain a mapping at the top level")
    return AppConfig.from_dict(raw, base_path=config_path.parent)


def resolve_config_path(env_value: Optional[str]) -> Path:
    """Resolve the path to the configuration file."""
    if env_value:
        candidate = Path(env_value).expanduser().resolve(strict=False)
    else:
        candidate = (Path(__file__).resolve().parent.parent / "config" / "usernotify.yaml").resolve(strict=False)
    return candidate


__all__ = [
    "AdminCredentials",
    "AppConfig",
    "MailConfig",
    "SiteConfig",
    "load_config",
    "resolve_config_path",
]
